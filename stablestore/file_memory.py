"""A memory backed by a binary file."""

from __future__ import annotations

import os
from typing import BinaryIO

from stablestore.memory import WASM_PAGE_SIZE, Memory


class FileMemory(Memory):
    """A memory whose contents live in a seekable binary file."""

    def __init__(self, file: BinaryIO) -> None:
        self._file = file

    def _length(self) -> int:
        return self._file.seek(0, os.SEEK_END)

    def size(self) -> int:
        length = self._length()
        if length % WASM_PAGE_SIZE:
            raise ValueError("File size must correspond to exact page sizes")
        return length // WASM_PAGE_SIZE

    def grow(self, pages: int) -> int:
        if pages < 0:
            raise ValueError("cannot grow by a negative number of pages")
        previous = self.size()
        new_length = (previous + pages) * WASM_PAGE_SIZE
        self._file.truncate(new_length)
        current = self._length()
        if current < new_length:
            self._file.seek(current)
            self._file.write(bytes(new_length - current))
        self._file.flush()
        if self.size() != previous + pages:
            raise OSError("failed to grow the file")
        return previous

    def read(self, offset: int, count: int) -> bytes:
        length = self._length()
        if offset < 0 or count < 0 or offset + count > length:
            raise IndexError("out of bounds")
        self._file.seek(offset)
        data = self._file.read(count)
        if len(data) != count:
            raise IndexError("out of bounds")
        return data

    def write(self, offset: int, data: bytes) -> None:
        length = self._length()
        if offset < 0 or offset + len(data) > length:
            raise IndexError("out of bounds")
        self._file.seek(offset)
        written = self._file.write(data)
        if written != len(data):
            raise IndexError("out of bounds")
        self._file.flush()