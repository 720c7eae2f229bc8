"""Filesystem event records handed from the monitor to the pipeline."""

import os
import time
from dataclasses import dataclass, field

EVENT_TYPES = ("add", "addDir", "change", "unlink", "unlinkDir")


# ---------------------------------------------------------------------------
# ULID generation (stdlib-only, no external dependency)
# ---------------------------------------------------------------------------

_ULID_ENCODING = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"


def ulid() -> str:
    """Generate a ULID (Universally Unique Lexicographically Sortable Identifier)."""
    t = int(time.time() * 1000)
    # 10-char timestamp (48 bits)
    ts = ""
    for _ in range(10):
        ts = _ULID_ENCODING[t & 0x1F] + ts
        t >>= 5
    # 16-char randomness (80 bits)
    r = int.from_bytes(os.urandom(10), "big")
    rs = ""
    for _ in range(16):
        rs = _ULID_ENCODING[r & 0x1F] + rs
        r >>= 5
    return ts + rs


# ---------------------------------------------------------------------------
# IoEvent
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class IoEvent:
    """One filesystem occurrence.

    The path fields never change after creation. ``context`` is the per-run
    scratch space reactors write derived values into (timestamp, targets).
    """

    event_type: str
    full_path: str
    parent_path: str
    parent_name: str
    filename: str
    uuid: str = field(default_factory=ulid)
    context: dict = field(default_factory=dict, compare=False)

    @classmethod
    def from_path(cls, event_type: str, path: str) -> "IoEvent":
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {event_type}")
        full_path = os.path.abspath(path)
        parent_path = os.path.dirname(full_path)
        return cls(
            event_type=event_type,
            full_path=full_path,
            parent_path=parent_path,
            parent_name=os.path.basename(parent_path),
            filename=os.path.basename(full_path),
        )

    def template_scope(self) -> dict:
        """Names available to reactor templates as ``{{ioEvent.*}}``."""
        return {
            "ioEvent": {
                "eventType": self.event_type,
                "fullPath": self.full_path,
                "parentPath": self.parent_path,
                "parentName": self.parent_name,
                "filename": self.filename,
                "uuid": self.uuid,
                "context": self.context,
            }
        }
