"""Canonical sets of half-open ``[start, end)`` minute-of-day intervals."""

from __future__ import annotations

from typing import Iterable, Iterator

from clinic_booking.services.scheduling_errors import InvertedInterval

Interval = tuple[int, int]


def _check(interval: Interval) -> Interval:
    start, end = interval
    if start >= end:
        raise InvertedInterval(f"interval start {start} is not before end {end}")
    return int(start), int(end)


def normalize(intervals: Iterable[Interval]) -> list[Interval]:
    """Sort and merge overlapping or touching intervals."""

    ordered = sorted(_check(item) for item in intervals)
    merged: list[Interval] = []
    for start, end in ordered:
        if merged and start <= merged[-1][1]:
            prev_start, prev_end = merged[-1]
            merged[-1] = (prev_start, max(prev_end, end))
        else:
            merged.append((start, end))
    return merged


class IntervalSet:
    """Immutable sorted, disjoint, coalesced interval collection."""

    __slots__ = ("_items",)

    def __init__(self, intervals: Iterable[Interval] = ()) -> None:
        self._items: tuple[Interval, ...] = tuple(normalize(intervals))

    @classmethod
    def _canonical(cls, items: list[Interval]) -> "IntervalSet":
        obj = cls.__new__(cls)
        obj._items = tuple(items)
        return obj

    def __iter__(self) -> Iterator[Interval]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __bool__(self) -> bool:
        return bool(self._items)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, IntervalSet):
            return NotImplemented
        return self._items == other._items

    def __hash__(self) -> int:
        return hash(self._items)

    def __repr__(self) -> str:
        return f"IntervalSet({list(self._items)!r})"

    @property
    def intervals(self) -> list[Interval]:
        return list(self._items)

    def is_empty(self) -> bool:
        return not self._items

    def total_minutes(self) -> int:
        return sum(end - start for start, end in self._items)

    def earliest(self) -> int | None:
        return self._items[0][0] if self._items else None

    def union(self, other: "IntervalSet") -> "IntervalSet":
        return IntervalSet(self._items + other._items)

    def difference(self, other: "IntervalSet") -> "IntervalSet":
        result: list[Interval] = []
        cuts = other._items
        idx = 0
        for start, end in self._items:
            cursor = start
            # skip cuts that end before this interval begins
            while idx < len(cuts) and cuts[idx][1] <= cursor:
                idx += 1
            probe = idx
            while probe < len(cuts) and cuts[probe][0] < end:
                cut_start, cut_end = cuts[probe]
                if cut_start > cursor:
                    result.append((cursor, cut_start))
                cursor = max(cursor, cut_end)
                if cursor >= end:
                    break
                probe += 1
            if cursor < end:
                result.append((cursor, end))
        return IntervalSet._canonical(result)

    def intersection(self, other: "IntervalSet") -> "IntervalSet":
        result: list[Interval] = []
        a, b = self._items, other._items
        i = j = 0
        while i < len(a) and j < len(b):
            start = max(a[i][0], b[j][0])
            end = min(a[i][1], b[j][1])
            if start < end:
                result.append((start, end))
            if a[i][1] < b[j][1]:
                i += 1
            else:
                j += 1
        return IntervalSet._canonical(result)

    def contains(self, start: int, end: int) -> bool:
        """True iff ``[start, end)`` is fully covered by a single member."""

        _check((start, end))
        return any(s <= start and end <= e for s, e in self._items)

    def overlaps(self, start: int, end: int) -> bool:
        _check((start, end))
        return any(s < end and start < e for s, e in self._items)


def union(a: IntervalSet, b: IntervalSet) -> IntervalSet:
    return a.union(b)


def difference(a: IntervalSet, b: IntervalSet) -> IntervalSet:
    return a.difference(b)


def intersection(a: IntervalSet, b: IntervalSet) -> IntervalSet:
    return a.intersection(b)
