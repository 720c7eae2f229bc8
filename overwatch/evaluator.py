"""Event filter: event type + case-insensitive path regex."""

import re

from overwatch.errors import ConfigurationError
from overwatch.events import EVENT_TYPES


class RegexEvaluator:
    """Decides whether an event should run the bound reactor chain."""

    def __init__(self, events: list[str], regex: str, reactor_ids: list[str] = None):
        unknown = [e for e in events if e not in EVENT_TYPES]
        if unknown:
            raise ConfigurationError(f"Unknown event types: {', '.join(unknown)}")
        try:
            self._pattern = re.compile(regex, re.IGNORECASE)
        except re.error as e:
            raise ConfigurationError(f"Invalid evaluator regex {regex!r}: {e}") from e
        self.events = frozenset(events)
        self.regex = regex
        self.reactor_ids = list(reactor_ids or [])

    def matches(self, event) -> bool:
        if event.event_type not in self.events:
            return False
        return self._pattern.search(event.full_path) is not None
