"""Several independently growable memories sharing one underlying memory.

The underlying memory is divided into buckets of a fixed number of pages.
Each virtual memory is a list of buckets, and buckets of different
memories may be interleaved. The first page holds the manager's state:

    magic "MGR"                      3 bytes
    layout version                   1 byte
    number of allocated buckets      2 bytes
    bucket size in pages             2 bytes
    reserved                         32 bytes
    size of memory 0..254 in pages   8 bytes each
    owner of bucket 0..32767         1 byte each

Buckets start at page 1.
"""

from __future__ import annotations

import struct
import weakref
from dataclasses import dataclass
from typing import Iterator

from stablestore.buckets import BucketCache, RealSegment, VirtualSegment, split_segment
from stablestore.memory import WASM_PAGE_SIZE, Memory, write

MAGIC = b"MGR"
LAYOUT_VERSION = 1

MAX_NUM_MEMORIES = 255
"""The maximum number of memories that can be created."""

MAX_NUM_BUCKETS = 32768
"""The maximum number of buckets the manager can handle."""

BUCKET_SIZE_IN_PAGES = 128
"""The default bucket size in pages."""

UNALLOCATED_BUCKET_MARKER = MAX_NUM_MEMORIES

BUCKETS_OFFSET_IN_PAGES = 1
BUCKETS_OFFSET_IN_BYTES = BUCKETS_OFFSET_IN_PAGES * WASM_PAGE_SIZE

HEADER_RESERVED_BYTES = 32

_HEADER = struct.Struct(f"<3sBHH{HEADER_RESERVED_BYTES}s{MAX_NUM_MEMORIES}Q")

HEADER_SIZE = _HEADER.size
"""The size of the packed header in bytes."""

BUCKET_ALLOCATIONS_OFFSET = HEADER_SIZE
"""Where the table of bucket owners starts."""


@dataclass(frozen=True, order=True)
class MemoryId:
    """Identifies one of the memories of a manager."""

    id: int

    def __post_init__(self) -> None:
        if not 0 <= self.id < UNALLOCATED_BUCKET_MARKER:
            raise ValueError(
                f"memory id must be in range 0..{UNALLOCATED_BUCKET_MARKER - 1}, "
                f"got {self.id}"
            )


class MemoryManager:
    """Simulates up to 255 growable memories inside a single memory."""

    def __init__(
        self, memory: Memory, bucket_size_in_pages: int = BUCKET_SIZE_IN_PAGES
    ) -> None:
        if not 1 <= bucket_size_in_pages <= 0xFFFF:
            raise ValueError("bucket size must be between 1 and 65535 pages")
        self._memory = memory
        self._virtual_memories: weakref.WeakSet[VirtualMemory] = weakref.WeakSet()
        if memory.size() > 0 and memory.read(0, len(MAGIC)) == MAGIC:
            self._load()
        else:
            self._create(bucket_size_in_pages)

    @classmethod
    def init(cls, memory: Memory) -> MemoryManager:
        """Load the manager stored in ``memory`` or create a new one."""
        return cls(memory, BUCKET_SIZE_IN_PAGES)

    @classmethod
    def init_with_bucket_size(
        cls, memory: Memory, bucket_size_in_pages: int
    ) -> MemoryManager:
        """Like ``init``, using the given bucket size when creating a new manager."""
        return cls(memory, bucket_size_in_pages)

    def get(self, memory_id: MemoryId | int) -> VirtualMemory:
        """Return the memory with the given id."""
        if not isinstance(memory_id, MemoryId):
            memory_id = MemoryId(memory_id)
        return VirtualMemory(self, memory_id)

    def into_memory(self) -> Memory | None:
        """Return the underlying memory, or None while virtual memories are alive."""
        if len(self._virtual_memories) > 0:
            return None
        return self._memory

    def bucket_size_in_pages(self) -> int:
        """Return the size of a bucket in pages."""
        return self._bucket_size_in_pages

    def memory_buckets(self, memory_id: MemoryId | int) -> list[int]:
        """Return the ids of the buckets allocated to a memory, in order."""
        if not isinstance(memory_id, MemoryId):
            memory_id = MemoryId(memory_id)
        return list(self._memory_buckets[memory_id.id])

    # -- state -----------------------------------------------------------

    def _create(self, bucket_size_in_pages: int) -> None:
        self._allocated_buckets = 0
        self._bucket_size_in_pages = bucket_size_in_pages
        self._memory_sizes = [0] * MAX_NUM_MEMORIES
        self._memory_buckets: list[list[int]] = [[] for _ in range(MAX_NUM_MEMORIES)]
        self._save_header()
        write(
            self._memory,
            BUCKET_ALLOCATIONS_OFFSET,
            bytes([UNALLOCATED_BUCKET_MARKER]) * MAX_NUM_BUCKETS,
        )

    def _load(self) -> None:
        magic, version, allocated, bucket_size, _reserved, *sizes = _HEADER.unpack(
            self._memory.read(0, HEADER_SIZE)
        )
        if magic != MAGIC:
            raise ValueError("Bad magic.")
        if version != LAYOUT_VERSION:
            raise ValueError("Unsupported version.")

        self._allocated_buckets = allocated
        self._bucket_size_in_pages = bucket_size
        self._memory_sizes = list(sizes)
        self._memory_buckets = [[] for _ in range(MAX_NUM_MEMORIES)]
        owners = self._memory.read(BUCKET_ALLOCATIONS_OFFSET, MAX_NUM_BUCKETS)
        for bucket_id, owner in enumerate(owners):
            if owner != UNALLOCATED_BUCKET_MARKER:
                self._memory_buckets[owner].append(bucket_id)

    def _save_header(self) -> None:
        header = _HEADER.pack(
            MAGIC,
            LAYOUT_VERSION,
            self._allocated_buckets,
            self._bucket_size_in_pages,
            bytes(HEADER_RESERVED_BYTES),
            *self._memory_sizes,
        )
        write(self._memory, 0, header)

    @property
    def _bucket_size_in_bytes(self) -> int:
        return self._bucket_size_in_pages * WASM_PAGE_SIZE

    def _num_buckets_needed(self, num_pages: int) -> int:
        return -(-num_pages // self._bucket_size_in_pages)

    def _bucket_address(self, bucket_id: int) -> int:
        return BUCKETS_OFFSET_IN_BYTES + self._bucket_size_in_bytes * bucket_id

    # -- operations on virtual memories ----------------------------------

    def _memory_size(self, memory_id: MemoryId) -> int:
        return self._memory_sizes[memory_id.id]

    def _grow(self, memory_id: MemoryId, pages: int) -> int:
        if pages < 0:
            raise ValueError("cannot grow by a negative number of pages")
        old_size = self._memory_size(memory_id)
        new_size = old_size + pages
        new_buckets_needed = self._num_buckets_needed(
            new_size
        ) - self._num_buckets_needed(old_size)

        if new_buckets_needed + self._allocated_buckets > MAX_NUM_BUCKETS:
            return -1

        buckets = self._memory_buckets[memory_id.id]
        for _ in range(new_buckets_needed):
            bucket_id = self._allocated_buckets
            buckets.append(bucket_id)
            write(
                self._memory,
                BUCKET_ALLOCATIONS_OFFSET + bucket_id,
                bytes([memory_id.id]),
            )
            self._allocated_buckets += 1

        pages_needed = (
            BUCKETS_OFFSET_IN_PAGES
            + self._bucket_size_in_pages * self._allocated_buckets
        )
        current_pages = self._memory.size()
        if pages_needed > current_pages:
            if self._memory.grow(pages_needed - current_pages) == -1:
                raise RuntimeError(f"{memory_id!r}: grow failed")

        self._memory_sizes[memory_id.id] = new_size
        self._save_header()
        return old_size

    def _real_segments(
        self, memory_id: MemoryId, segment: VirtualSegment, cache: BucketCache
    ) -> Iterator[RealSegment]:
        buckets = self._memory_buckets[memory_id.id]
        bucket_size = self._bucket_size_in_bytes
        for bucket_index, offset_in_bucket, length in split_segment(
            segment, bucket_size
        ):
            if bucket_index >= len(buckets):
                raise IndexError("bucket idx out of bounds")
            bucket_address = self._bucket_address(buckets[bucket_index])
            cache.store(
                VirtualSegment(bucket_index * bucket_size, bucket_size), bucket_address
            )
            yield RealSegment(bucket_address + offset_in_bucket, length)

    def _read(
        self, memory_id: MemoryId, offset: int, count: int, cache: BucketCache
    ) -> bytes:
        if offset < 0 or count < 0:
            raise IndexError(f"{memory_id!r}: read out of bounds")
        segment = VirtualSegment(offset, count)
        real_address = cache.get(segment)
        if real_address is not None:
            return self._memory.read(real_address, count)
        if offset + count > self._memory_size(memory_id) * WASM_PAGE_SIZE:
            raise IndexError(f"{memory_id!r}: read out of bounds")
        return b"".join(
            self._memory.read(part.address, part.length)
            for part in self._real_segments(memory_id, segment, cache)
        )

    def _write(
        self, memory_id: MemoryId, offset: int, data: bytes, cache: BucketCache
    ) -> None:
        if offset < 0:
            raise IndexError(f"{memory_id!r}: write out of bounds")
        data = bytes(data)
        segment = VirtualSegment(offset, len(data))
        real_address = cache.get(segment)
        if real_address is not None:
            self._memory.write(real_address, data)
            return
        if offset + len(data) > self._memory_size(memory_id) * WASM_PAGE_SIZE:
            raise IndexError(f"{memory_id!r}: write out of bounds")
        written = 0
        for part in self._real_segments(memory_id, segment, cache):
            self._memory.write(part.address, data[written : written + part.length])
            written += part.length


class VirtualMemory(Memory):
    """One of the memories handed out by a ``MemoryManager``."""

    def __init__(self, manager: MemoryManager, memory_id: MemoryId) -> None:
        self._manager = manager
        self._id = memory_id
        self._cache = BucketCache()
        manager._virtual_memories.add(self)

    @property
    def id(self) -> MemoryId:
        return self._id

    def size(self) -> int:
        return self._manager._memory_size(self._id)

    def grow(self, pages: int) -> int:
        return self._manager._grow(self._id, pages)

    def read(self, offset: int, count: int) -> bytes:
        return self._manager._read(self._id, offset, count, self._cache)

    def write(self, offset: int, data: bytes) -> None:
        self._manager._write(self._id, offset, data, self._cache)