from __future__ import annotations

from bisect import bisect_left, bisect_right
from collections.abc import Iterator
from datetime import datetime
from typing import Generic, TypeVar

T = TypeVar("T")

# Sort key for every indexed entry: start time first, event id as tie-breaker.
IndexKey = tuple[datetime, str]

_Entry = tuple[IndexKey, T]


def _entry_key(entry: _Entry) -> IndexKey:
    return entry[0]


class SortedIndex(Generic[T]):
    """Immutable, chunked sorted sequence of ``(key, item)`` entries.

    Every mutating method returns a *new* index and leaves the receiver
    untouched, so readers holding a reference always see a consistent
    snapshot without taking a lock.  Entries live in chunks of at most
    ``2 * chunk_size`` items; an insert copies one chunk plus the (short)
    tuple of chunk references rather than the whole sequence.

    Example::

        index = SortedIndex()
        index = index.insert((ts, "abc"), sample)
        list(index.range(start, end))
    """

    __slots__ = ("_chunks", "_maxes", "_len", "_chunk_size")

    def __init__(
        self,
        chunks: tuple[tuple[_Entry, ...], ...] = (),
        length: int = 0,
        chunk_size: int = 256,
    ) -> None:
        self._chunks = chunks
        self._maxes: tuple[IndexKey, ...] = tuple(chunk[-1][0] for chunk in chunks)
        self._len = length
        self._chunk_size = chunk_size

    def __len__(self) -> int:
        return self._len

    def __iter__(self) -> Iterator[T]:
        for chunk in self._chunks:
            for _, item in chunk:
                yield item

    # ------------------------------------------------------------------
    # Copy-on-write mutation
    # ------------------------------------------------------------------

    def insert(self, key: IndexKey, item: T) -> SortedIndex[T]:
        """Return a new index with ``(key, item)`` inserted in order.

        Raises:
            KeyError: If *key* is already present.
        """
        entry = (key, item)
        if not self._chunks:
            return self._derive(((entry,),), 1)

        pos = bisect_left(self._maxes, key)
        if pos == len(self._chunks):
            pos -= 1
        chunk = self._chunks[pos]
        offset = bisect_left(chunk, key, key=_entry_key)
        if offset < len(chunk) and chunk[offset][0] == key:
            raise KeyError(key)

        new_chunk = chunk[:offset] + (entry,) + chunk[offset:]
        if len(new_chunk) > 2 * self._chunk_size:
            half = len(new_chunk) // 2
            replacement: tuple[tuple[_Entry, ...], ...] = (new_chunk[:half], new_chunk[half:])
        else:
            replacement = (new_chunk,)
        chunks = self._chunks[:pos] + replacement + self._chunks[pos + 1 :]
        return self._derive(chunks, self._len + 1)

    def replace(self, key: IndexKey, item: T) -> SortedIndex[T]:
        """Return a new index where the entry stored under *key* holds *item*.

        Raises:
            KeyError: If *key* is not present.
        """
        pos, offset = self._locate(key)
        chunk = self._chunks[pos]
        new_chunk = chunk[:offset] + ((key, item),) + chunk[offset + 1 :]
        chunks = self._chunks[:pos] + (new_chunk,) + self._chunks[pos + 1 :]
        return self._derive(chunks, self._len)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def range(self, start: datetime, end: datetime) -> Iterator[T]:
        """Yield items whose key time lies in ``[start, end)``, in key order."""
        lower: IndexKey = (start, "")
        pos = bisect_left(self._maxes, lower)
        if pos == len(self._chunks):
            return
        offset = bisect_left(self._chunks[pos], lower, key=_entry_key)
        for chunk in self._chunks[pos:]:
            for (moment, _), item in chunk[offset:]:
                if moment >= end:
                    return
                yield item
            offset = 0

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _locate(self, key: IndexKey) -> tuple[int, int]:
        pos = bisect_left(self._maxes, key)
        if pos < len(self._chunks):
            chunk = self._chunks[pos]
            offset = bisect_right(chunk, key, key=_entry_key) - 1
            if offset >= 0 and chunk[offset][0] == key:
                return pos, offset
        raise KeyError(key)

    def _derive(self, chunks: tuple[tuple[_Entry, ...], ...], length: int) -> SortedIndex[T]:
        return SortedIndex(chunks, length, self._chunk_size)
