"""Interval store merging the same call leg seen across overlapping chunks."""

from typing import Iterable, Iterator

from genesys_peak.models import Interval

IntervalKey = tuple[str, str, str]


class IntervalStore:
    """Keyed interval store that only grows or widens.

    A repeated (conversation, participant, session) key widens the stored
    interval to the union envelope, so merging is idempotent and
    order-independent.
    """

    def __init__(self, intervals: Iterable[Interval] = ()):
        self._intervals: dict[IntervalKey, Interval] = {}
        for interval in intervals:
            self.merge(interval)

    def merge(self, interval: Interval) -> bool:
        """Merge one interval; returns True if its key was new."""
        existing = self._intervals.get(interval.key)
        if existing is None:
            self._intervals[interval.key] = interval.model_copy(deep=True)
            return True
        if interval.start < existing.start:
            existing.start = interval.start
        if interval.end > existing.end:
            existing.end = interval.end
        return False

    def merge_all(self, intervals: Iterable[Interval]) -> int:
        """Merge many intervals; returns how many keys were new."""
        return sum(1 for interval in intervals if self.merge(interval))

    def get(self, key: IntervalKey) -> Interval | None:
        return self._intervals.get(key)

    def intervals(self) -> list[Interval]:
        """Stored intervals ordered by start, then key."""
        return sorted(self._intervals.values(), key=lambda i: (i.start, i.key))

    def __len__(self) -> int:
        return len(self._intervals)

    def __iter__(self) -> Iterator[Interval]:
        return iter(self.intervals())

    def __contains__(self, key: object) -> bool:
        return key in self._intervals
