"""Page-addressed linear memories and helpers for reading and writing them."""

from __future__ import annotations

import abc
import struct

WASM_PAGE_SIZE = 65536
"""The size of one memory page in bytes."""

MAX_PAGES = (2**64 - 1) // WASM_PAGE_SIZE
"""The maximum number of pages a memory can address."""

_ADDRESS_LIMIT = 2**64 - 1


class Memory(abc.ABC):
    """A growable linear memory measured in 64 KiB pages.

    Out-of-bounds reads and writes raise ``IndexError``.
    """

    @abc.abstractmethod
    def size(self) -> int:
        """Return the current size of the memory in pages."""

    @abc.abstractmethod
    def grow(self, pages: int) -> int:
        """Grow the memory by ``pages`` zero-filled pages.

        Return the previous size in pages, or -1 if the memory could not grow.
        """

    @abc.abstractmethod
    def read(self, offset: int, count: int) -> bytes:
        """Return ``count`` bytes starting at ``offset``."""

    @abc.abstractmethod
    def write(self, offset: int, data: bytes) -> None:
        """Copy ``data`` into the memory starting at ``offset``."""


def _check_bounds(offset: int, count: int, limit: int) -> None:
    if offset < 0 or count < 0 or offset + count > limit:
        raise IndexError(
            f"out of bounds: offset={offset}, count={count}, size={limit}"
        )


class VectorMemory(Memory):
    """A memory held in a byte array."""

    def __init__(self, data: bytes | bytearray = b"") -> None:
        self._buffer = bytearray(data)

    def size(self) -> int:
        return len(self._buffer) // WASM_PAGE_SIZE

    def grow(self, pages: int) -> int:
        if pages < 0:
            raise ValueError("cannot grow by a negative number of pages")
        previous = self.size()
        if previous + pages > MAX_PAGES:
            return -1
        self._buffer.extend(bytes(pages * WASM_PAGE_SIZE))
        return previous

    def read(self, offset: int, count: int) -> bytes:
        _check_bounds(offset, count, len(self._buffer))
        return bytes(self._buffer[offset : offset + count])

    def write(self, offset: int, data: bytes) -> None:
        _check_bounds(offset, len(data), len(self._buffer))
        self._buffer[offset : offset + len(data)] = data

    def getvalue(self) -> bytes:
        """Return a copy of the whole memory contents."""
        return bytes(self._buffer)


class RestrictedMemory(Memory):
    """A view of another memory limited to a range of its pages."""

    def __init__(self, memory: Memory, page_range: range) -> None:
        if page_range.step != 1:
            raise ValueError("page range must be contiguous")
        if page_range.stop > MAX_PAGES:
            raise ValueError("page range exceeds the addressable memory")
        self._memory = memory
        self._start = page_range.start
        self._stop = page_range.stop

    @property
    def page_range(self) -> range:
        return range(self._start, self._stop)

    def size(self) -> int:
        base_size = self._memory.size()
        if base_size < self._start:
            return 0
        if base_size > self._stop:
            return self._stop - self._start
        return base_size - self._start

    def grow(self, pages: int) -> int:
        base_size = self._memory.size()
        if base_size < self._start:
            return min(self._memory.grow(self._start - base_size + pages), 0)
        if base_size >= self._stop:
            return self._stop - self._start if pages == 0 else -1
        if self._stop - base_size < pages:
            return -1
        result = self._memory.grow(pages)
        return result if result < 0 else result - self._start

    def read(self, offset: int, count: int) -> bytes:
        return self._memory.read(self._start * WASM_PAGE_SIZE + offset, count)

    def write(self, offset: int, data: bytes) -> None:
        self._memory.write(self._start * WASM_PAGE_SIZE + offset, data)


class GrowFailed(Exception):
    """Raised when a memory could not be grown to hold a write."""

    def __init__(self, current_size: int, delta: int) -> None:
        super().__init__(
            f"Failed to grow memory: current size={current_size}, delta={delta}"
        )
        self.current_size = current_size
        self.delta = delta

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, GrowFailed):
            return NotImplemented
        return (self.current_size, self.delta) == (other.current_size, other.delta)

    def __hash__(self) -> int:
        return hash((self.current_size, self.delta))


def safe_write(memory: Memory, offset: int, data: bytes) -> None:
    """Write ``data`` at ``offset``, growing the memory if needed.

    Raises ``GrowFailed`` if the memory cannot be grown.
    """
    last_byte = offset + len(data)
    if last_byte > _ADDRESS_LIMIT:
        raise OverflowError("Address space overflow")
    size_pages = memory.size()
    size_bytes = size_pages * WASM_PAGE_SIZE
    if size_bytes < last_byte:
        diff_pages = -(-(last_byte - size_bytes) // WASM_PAGE_SIZE)
        if memory.grow(diff_pages) == -1:
            raise GrowFailed(size_pages, diff_pages)
    memory.write(offset, data)


def write(memory: Memory, offset: int, data: bytes) -> None:
    """Write ``data`` at ``offset``, growing the memory if needed.

    Raises ``RuntimeError`` if the memory cannot be grown.
    """
    try:
        safe_write(memory, offset, data)
    except GrowFailed as error:
        raise RuntimeError(
            f"Failed to grow memory from {error.current_size} pages to "
            f"{error.current_size + error.delta} pages (delta = {error.delta} pages)."
        ) from error


def read_u32(memory: Memory, offset: int) -> int:
    """Read a little-endian 32-bit unsigned integer."""
    return struct.unpack("<I", memory.read(offset, 4))[0]


def read_u64(memory: Memory, offset: int) -> int:
    """Read a little-endian 64-bit unsigned integer."""
    return struct.unpack("<Q", memory.read(offset, 8))[0]


def write_u32(memory: Memory, offset: int, value: int) -> None:
    """Write a little-endian 32-bit unsigned integer, growing if needed."""
    write(memory, offset, struct.pack("<I", value))


def write_u64(memory: Memory, offset: int, value: int) -> None:
    """Write a little-endian 64-bit unsigned integer, growing if needed."""
    write(memory, offset, struct.pack("<Q", value))