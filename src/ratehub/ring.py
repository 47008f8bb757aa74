"""
Script: ring.py
Created: 2026-10-16
Purpose: Fixed-capacity ring buffer used for every bounded series in RateHub
Keywords: ring, buffer, fifo, bounded, history
Status: active
Prerequisites:
  - None
Changelog:
  - 2026-10-16: Initial version
See-Also: store.py
"""

from typing import Generic, Iterator, List, Optional, TypeVar

T = TypeVar("T")


class RingBuffer(Generic[T]):
    """
    Drop-oldest FIFO with O(1) push.

    Holds at most `capacity` values. Once full, each push overwrites the
    oldest slot. Iteration is oldest to newest and can be restarted.
    """

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._capacity = int(capacity)
        self._items: List[Optional[T]] = [None] * self._capacity
        self._head = 0  # oldest
        self._size = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return self._size

    def push(self, value: T) -> None:
        tail = (self._head + self._size) % self._capacity
        self._items[tail] = value
        if self._size < self._capacity:
            self._size += 1
        else:
            self._head = (self._head + 1) % self._capacity

    def last(self, default: Optional[T] = None) -> Optional[T]:
        """Newest value, or `default` when empty."""
        if self._size == 0:
            return default
        return self._items[(self._head + self._size - 1) % self._capacity]

    def __iter__(self) -> Iterator[T]:
        for i in range(self._size):
            yield self._items[(self._head + i) % self._capacity]  # type: ignore[misc]

    def to_sequence(self) -> "RingView[T]":
        """Lazy oldest-to-newest view; each iteration starts over."""
        return RingView(self)

    def to_list(self) -> List[T]:
        return list(self)

    def clear(self) -> None:
        for i in range(self._capacity):
            self._items[i] = None
        self._head = 0
        self._size = 0

    def __repr__(self) -> str:
        return f"RingBuffer(capacity={self._capacity}, size={self._size})"


class RingView(Generic[T]):
    """Restartable iterable over a ring's live contents."""

    __slots__ = ("_ring",)

    def __init__(self, ring: RingBuffer[T]):
        self._ring = ring

    def __iter__(self) -> Iterator[T]:
        return iter(self._ring)

    def __len__(self) -> int:
        return len(self._ring)
