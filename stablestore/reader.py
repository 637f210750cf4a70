"""Stream readers over a memory."""

from __future__ import annotations

import io

from stablestore.memory import WASM_PAGE_SIZE, Memory


class OutOfBounds(Exception):
    """Raised when a read starts beyond the end of the memory."""

    def __init__(self, max_address: int, attempted_read_address: int) -> None:
        super().__init__(
            f"read at {attempted_read_address} is beyond the end of memory "
            f"at {max_address}"
        )
        self.max_address = max_address
        self.attempted_read_address = attempted_read_address


class Reader(io.RawIOBase):
    """Reads a memory consecutively, starting from an offset."""

    def __init__(self, memory: Memory, offset: int = 0) -> None:
        super().__init__()
        self.memory = memory
        self.offset = offset

    def read_chunk(self, size: int) -> bytes:
        """Read up to ``size`` bytes, stopping at the end of memory.

        Raises ``OutOfBounds`` if the read starts past the end of memory.
        """
        memory_end = self.memory.size() * WASM_PAGE_SIZE
        if size + self.offset > memory_end:
            if self.offset >= memory_end:
                raise OutOfBounds(memory_end, self.offset)
            size = memory_end - self.offset
        data = self.memory.read(self.offset, size)
        self.offset += len(data)
        return data

    def readinto(self, buffer) -> int:
        view = memoryview(buffer).cast("B")
        try:
            data = self.read_chunk(len(view))
        except OutOfBounds:
            return 0
        view[: len(data)] = data
        return len(data)

    def readable(self) -> bool:
        return True


def buffered_reader(buffer_size: int, reader: Reader) -> io.BufferedReader:
    """Wrap ``reader`` so that it reads the memory a chunk at a time."""
    return io.BufferedReader(reader, max(buffer_size, 1))