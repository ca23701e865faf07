"""
registry.py — Append-only, in-memory store with monotonic integer ids.
"""
from __future__ import annotations

import threading
from typing import Callable, Generic, List, Type, TypeVar

from .exceptions import NotFoundError

T = TypeVar("T")


class AppendOnlyRegistry(Generic[T]):
    """Ordered log of immutable entries. Ids start at 1 and never repeat.

    ``append`` takes a factory receiving the new id so the entry can embed it; the
    lock serializes concurrent writers.
    """

    not_found_error: Type[NotFoundError] = NotFoundError
    kind = "entry"

    def __init__(self):
        self._entries: List[T] = []
        self._lock = threading.Lock()

    def append(self, build: Callable[[int], T]) -> T:
        with self._lock:
            entry = build(len(self._entries) + 1)
            self._entries.append(entry)
            return entry

    def get_by_id(self, entry_id: int) -> T:
        if isinstance(entry_id, bool) or not isinstance(entry_id, int) or not 1 <= entry_id <= len(self._entries):
            raise self.not_found_error(
                f"{self.kind} {entry_id!r} not found in registry",
                {"id": entry_id, "available": len(self._entries)},
            )
        return self._entries[entry_id - 1]

    def list(self) -> List[T]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
