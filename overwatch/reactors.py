"""Reactors and the chain builder.

A chain always starts with ``genTimestamp``; every requested kind after it
gets the id ``<kind><position>``, position counting from 1 in the order the
kinds were requested.
"""

import datetime
import logging

from overwatch.commands import SHELL_GENERATORS, SQL_GENERATORS
from overwatch.errors import UnknownReactorKind
from overwatch.shell import ShellPoolHandle
from overwatch.sql import SqlSink

TIMESTAMP_REACTOR_ID = "genTimestamp"
REACTOR_KINDS = tuple(SHELL_GENERATORS) + tuple(SQL_GENERATORS)


def format_timestamp(now: datetime.datetime = None) -> str:
    """Timestamp as YYYYMMDD_HHMMSS followed by hundredths, e.g. 20240131_15450207."""
    now = now or datetime.datetime.now()
    return f"{now:%Y%m%d_%H%M%S}{now.microsecond // 10000:02d}"


class Reactor:
    """One step of a chain."""

    kind = ""

    def __init__(self, reactor_id: str):
        self.id = reactor_id
        self._log = logging.getLogger("overwatch.reactor")

    def apply(self, event):
        raise NotImplementedError

    def close(self):
        pass

    def __repr__(self):
        return f"<{type(self).__name__} {self.id}>"


class TimestampReactor(Reactor):
    kind = "timestamp"

    def __init__(self, reactor_id: str = TIMESTAMP_REACTOR_ID, clock=None):
        super().__init__(reactor_id)
        self._clock = clock or datetime.datetime.now

    def apply(self, event):
        event.context["timestamp"] = format_timestamp(self._clock())
        return True


class ShellReactor(Reactor):
    """Runs generated shell commands on the shared pool."""

    def __init__(self, reactor_id: str, generator, pool: ShellPoolHandle, dry_run: bool = False):
        super().__init__(reactor_id)
        self.kind = generator.kind
        self.generator = generator
        self._pool = pool.retain()
        self._dry_run = dry_run

    def apply(self, event):
        commands = self.generator.generate(event)
        if self._dry_run:
            for command in commands:
                self._log.info("[DRY RUN] %s would execute: %s", self.id, command)
            return commands
        self._log.info("%s executing: %s", self.id, "; ".join(commands))
        return self._pool.execute(commands)

    def close(self):
        self._pool.release()


class SqlReactor(Reactor):
    """Runs generated SQL through the sink."""

    def __init__(self, reactor_id: str, generator, sink: SqlSink, dry_run: bool = False):
        super().__init__(reactor_id)
        self.kind = generator.kind
        self.generator = generator
        self._sink = sink
        self._dry_run = dry_run

    def apply(self, event):
        statements = self.generator.generate(event)
        if self._dry_run:
            for statement in statements:
                self._log.info("[DRY RUN] %s would execute: %s", self.id, statement)
            return statements
        for statement in statements:
            self._log.info("%s executing: %s", self.id, statement)
            self._sink.execute(statement)
        return statements


# ---------------------------------------------------------------------------
# Chain builder
# ---------------------------------------------------------------------------

def build_reactors(kinds: list[str], params: dict, shell_pool: ShellPoolHandle = None,
                   sql_sink_factory=None, dry_run: bool = False) -> list[Reactor]:
    """Build the ordered chain for *kinds*.

    ``params`` maps kind -> static parameters (``[reactor.<kind>]``). The shell
    pool handle is shared by every shell reactor; ``sql_sink_factory`` is
    called once, only if a sql kind is requested.

    Raises UnknownReactorKind / ConfigurationError before anything is built
    into the returned chain.
    """
    for kind in kinds:
        if kind not in REACTOR_KINDS:
            raise UnknownReactorKind(kind)

    # validate every generator before retaining any shared resources
    generators = [
        (SHELL_GENERATORS.get(kind) or SQL_GENERATORS[kind])(params.get(kind) or {})
        for kind in kinds
    ]

    sink = None
    if any(kind in SQL_GENERATORS for kind in kinds):
        sink = sql_sink_factory() if sql_sink_factory else SqlSink.from_config({})

    reactors: list[Reactor] = [TimestampReactor()]
    for position, (kind, generator) in enumerate(zip(kinds, generators), start=1):
        reactor_id = f"{kind}{position}"
        if kind in SHELL_GENERATORS:
            if shell_pool is None:
                shell_pool = ShellPoolHandle()
            reactors.append(ShellReactor(reactor_id, generator, shell_pool, dry_run))
        else:
            reactors.append(SqlReactor(reactor_id, generator, sink, dry_run))
    return reactors


def reactor_ids(reactors: list[Reactor]) -> list[str]:
    return [r.id for r in reactors]
