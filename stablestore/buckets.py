"""Segments of virtual memory and their mapping onto fixed-size buckets."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass


@dataclass(frozen=True)
class VirtualSegment:
    """A contiguous range of bytes in a virtual address space."""

    address: int
    length: int

    @property
    def end(self) -> int:
        """The address one past the last byte of the segment."""
        return self.address + self.length

    def contains_segment(self, other: VirtualSegment) -> bool:
        """Return True if ``other`` lies entirely within this segment."""
        return self.address <= other.address and other.end <= self.end


@dataclass(frozen=True)
class RealSegment:
    """A contiguous range of bytes in the underlying memory."""

    address: int
    length: int


class BucketCache:
    """Remembers the last bucket touched and where it lives in real memory."""

    def __init__(self) -> None:
        self._bucket = VirtualSegment(0, 0)
        self._real_address = 0

    def get(self, segment: VirtualSegment) -> int | None:
        """Return the real address of ``segment`` if the cached bucket holds it."""
        if not self._bucket.contains_segment(segment):
            return None
        return self._real_address + (segment.address - self._bucket.address)

    def store(self, bucket: VirtualSegment, real_address: int) -> None:
        """Cache the mapping of ``bucket`` to ``real_address``."""
        self._bucket = bucket
        self._real_address = real_address


def split_segment(
    segment: VirtualSegment, bucket_size_in_bytes: int
) -> Iterator[tuple[int, int, int]]:
    """Split ``segment`` at bucket boundaries.

    Yields ``(bucket_index, offset_in_bucket, length)`` for each piece, in
    address order. A segment of length zero yields nothing.
    """
    if bucket_size_in_bytes <= 0:
        raise ValueError("bucket size must be positive")
    if segment.address < 0 or segment.length < 0:
        raise ValueError("segment address and length must be non-negative")

    remaining = segment.length
    bucket_index, offset_in_bucket = divmod(segment.address, bucket_size_in_bytes)
    while remaining > 0:
        piece = min(bucket_size_in_bytes - offset_in_bucket, remaining)
        yield bucket_index, offset_in_bucket, piece
        remaining -= piece
        bucket_index += 1
        offset_in_bucket = 0