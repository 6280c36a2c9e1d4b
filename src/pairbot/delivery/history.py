"""Bounded, insertion-ordered record of sent messages."""

from __future__ import annotations

from collections import deque

from pairbot.core.models import SentRecord


class SentHistory:
    """FIFO ring buffer: once full, the oldest record is evicted first."""

    def __init__(self, max_size: int = 100):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self._records: deque[SentRecord] = deque(maxlen=max_size)

    @property
    def max_size(self) -> int:
        return self._records.maxlen or 0

    def append(self, record: SentRecord) -> None:
        self._records.append(record)

    def recent(self) -> list[SentRecord]:
        """Most-recent-first copy of the history."""
        return list(reversed(self._records))

    def clear(self) -> None:
        self._records.clear()

    def __len__(self) -> int:
        return len(self._records)
