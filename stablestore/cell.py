"""A single value stored in a memory and persisted on every write.

Layout:

    magic "SCL"        3 bytes
    layout version     1 byte
    value length = N   4 bytes, little-endian
    encoded value      N bytes
"""

from __future__ import annotations

import struct
from typing import Callable, Generic, TypeVar

from stablestore.memory import WASM_PAGE_SIZE, Memory

T = TypeVar("T")

MAGIC = b"SCL"
LAYOUT_VERSION = 1
HEADER_V1_SIZE = 8

_HEADER = struct.Struct("<3sBI")
_MAX_VALUE_LENGTH = 2**32 - 1


class CellInitError(Exception):
    """Raised when a cell cannot be initialized."""


class IncompatibleVersionError(CellInitError):
    """The memory holds a cell layout version this code does not support."""

    def __init__(self, last_supported_version: int, decoded_version: int) -> None:
        super().__init__(
            "Incompatible version: last supported version is "
            f"{last_supported_version}, but the memory contains version "
            f"{decoded_version}"
        )
        self.last_supported_version = last_supported_version
        self.decoded_version = decoded_version


class ValueTooLargeError(CellInitError):
    """The value does not fit into the memory."""

    def __init__(self, value_size: int) -> None:
        super().__init__(
            "The initial value is too large to fit into the memory: "
            f"{value_size} bytes"
        )
        self.value_size = value_size


def _identity_bytes(value) -> bytes:
    return bytes(value)


class Cell(Generic[T]):
    """A value kept in memory; every update is written through immediately."""

    def __init__(
        self,
        memory: Memory,
        value: T,
        encode: Callable[[T], bytes],
        decode: Callable[[bytes], T],
    ) -> None:
        self._memory = memory
        self._value = value
        self._encode = encode
        self._decode = decode

    @classmethod
    def new(
        cls,
        memory: Memory,
        value: T,
        encode: Callable[[T], bytes] = _identity_bytes,
        decode: Callable[[bytes], T] = _identity_bytes,
    ) -> Cell[T]:
        """Create a cell holding ``value``, overwriting the memory's contents."""
        _flush_value(memory, encode(value))
        return cls(memory, value, encode, decode)

    @classmethod
    def init(
        cls,
        memory: Memory,
        default_value: T,
        encode: Callable[[T], bytes] = _identity_bytes,
        decode: Callable[[bytes], T] = _identity_bytes,
    ) -> Cell[T]:
        """Load the cell stored in ``memory``, or create one holding ``default_value``.

        Raises ``IncompatibleVersionError`` if the memory holds a cell of an
        unsupported layout version.
        """
        if memory.size() == 0:
            return cls.new(memory, default_value, encode, decode)
        magic, version, length = _HEADER.unpack(memory.read(0, HEADER_V1_SIZE))
        if magic != MAGIC:
            return cls.new(memory, default_value, encode, decode)
        if version != LAYOUT_VERSION:
            raise IncompatibleVersionError(LAYOUT_VERSION, version)
        value = decode(memory.read(HEADER_V1_SIZE, length))
        return cls(memory, value, encode, decode)

    @property
    def value(self) -> T:
        """The current value of the cell."""
        return self._value

    def set(self, value: T) -> T:
        """Store ``value`` and return the previous one.

        Raises ``ValueTooLargeError`` and keeps the old value if the new one
        does not fit into the memory.
        """
        _flush_value(self._memory, self._encode(value))
        previous, self._value = self._value, value
        return previous

    def into_memory(self) -> Memory:
        """Return the underlying memory."""
        return self._memory


def _flush_value(memory: Memory, encoded: bytes) -> None:
    length = len(encoded)
    if length > _MAX_VALUE_LENGTH:
        raise ValueTooLargeError(length)
    size = memory.size()
    available = size * WASM_PAGE_SIZE
    if length > max(available - HEADER_V1_SIZE, 0) or size == 0:
        grow_by = (
            length + HEADER_V1_SIZE + WASM_PAGE_SIZE - available - 1
        ) // WASM_PAGE_SIZE
        if memory.grow(grow_by) < 0:
            raise ValueTooLargeError(length)
    memory.write(0, _HEADER.pack(MAGIC, LAYOUT_VERSION, length))
    memory.write(HEADER_V1_SIZE, bytes(encoded))