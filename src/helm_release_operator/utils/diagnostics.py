"""Append-only trail of human-readable events for one managed release."""

import logging
from collections.abc import Iterable, Iterator

logger = logging.getLogger(__name__)


class Diagnostics:
    """
    Diagnostics accumulator threaded through a single driver step.

    The caller persists the trail between polls; the driver seeds an instance
    from it, appends while working, and returns the full list with the step's
    outcome. Consecutive duplicates are collapsed so a release that sits in
    the same pending state for many polls does not grow the trail unboundedly.
    """

    def __init__(self, entries: Iterable[str] | None = None, limit: int = 50):
        self._entries: list[str] = list(entries or [])
        self.limit = limit

    def add(self, entry: str) -> None:
        if self._entries and self._entries[-1] == entry:
            return
        logger.debug(f"Diagnostic recorded: {entry}")
        self._entries.append(entry)
        if len(self._entries) > self.limit:
            del self._entries[: len(self._entries) - self.limit]

    def extend(self, entries: Iterable[str]) -> None:
        for entry in entries:
            self.add(entry)

    def as_list(self) -> list[str]:
        return list(self._entries)

    def joined(self, separator: str = "\n ") -> str:
        return separator.join(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __bool__(self) -> bool:
        return bool(self._entries)
