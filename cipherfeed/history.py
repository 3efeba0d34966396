"""Bounded, newest-first activity log (in memory only)."""

from __future__ import annotations

from collections import deque
from datetime import datetime, timezone

from cipherfeed.models import HistoryAction, HistoryEntry


class HistoryLog:
    """Most-recent-first ring of HistoryEntry, capped at ``limit``."""

    def __init__(self, limit: int = 10):
        if limit < 1:
            raise ValueError("limit must be >= 1")
        self.limit = limit
        self._entries: deque[HistoryEntry] = deque(maxlen=limit)

    def push(self, entry: HistoryEntry) -> None:
        # appendleft on a bounded deque drops from the tail
        self._entries.appendleft(entry)

    def record(self, record_id: str, title: str, action: HistoryAction) -> HistoryEntry:
        entry = HistoryEntry(
            record_id=record_id,
            title=title,
            timestamp=datetime.now(timezone.utc),
            action=action,
        )
        self.push(entry)
        return entry

    def entries(self) -> list[HistoryEntry]:
        return list(self._entries)

    def recent(self, n: int = 5) -> list[HistoryEntry]:
        return list(self._entries)[:n]

    def __len__(self) -> int:
        return len(self._entries)


__all__ = ["HistoryLog"]
