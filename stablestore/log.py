"""An append-only list of variable-size entries, also known as a log.

The log uses two independently growable memories: one for an index of
entry end offsets and one for the entry bytes themselves.

Index memory:

    magic "GLI"              3 bytes
    layout version           1 byte
    reserved                 28 bytes
    number of entries = L    8 bytes       (at address 32)
    E_0                      8 bytes
    E_0 + E_1                8 bytes
    ...
    E_0 + ... + E_(L-1)      8 bytes

Data memory:

    magic "GLD"              3 bytes
    layout version           1 byte
    reserved                 28 bytes
    entry 0 bytes            E_0 bytes     (at address 32)
    ...
    entry L-1 bytes          E_(L-1) bytes
"""

from __future__ import annotations

import struct
from typing import Callable, Generic, TypeVar

from stablestore.memory import GrowFailed, Memory, read_u64, safe_write, write_u64

T = TypeVar("T")

INDEX_MAGIC = b"GLI"
"""The magic number of the index memory: Growable Log Index."""

DATA_MAGIC = b"GLD"
"""The magic number of the data memory: Growable Log Data."""

LAYOUT_VERSION = 1
HEADER_V1_SIZE = 4
RESERVED_HEADER_SIZE = 28
HEADER_OFFSET = HEADER_V1_SIZE + RESERVED_HEADER_SIZE

_U64_SIZE = 8
_ADDRESS_LIMIT = 2**64 - 1


class LogInitError(Exception):
    """Raised when a log cannot be initialized from its memories."""


class IncompatibleDataVersionError(LogInitError):
    """The data memory holds an unsupported layout version."""

    def __init__(self, last_supported_version: int, decoded_version: int) -> None:
        super().__init__(
            "Incompatible data version: last supported version is "
            f"{last_supported_version}, but decoded version is {decoded_version}"
        )
        self.last_supported_version = last_supported_version
        self.decoded_version = decoded_version


class IncompatibleIndexVersionError(LogInitError):
    """The index memory holds an unsupported layout version."""

    def __init__(self, last_supported_version: int, decoded_version: int) -> None:
        super().__init__(
            "Incompatible index version: last supported version is "
            f"{last_supported_version}, but decoded version is {decoded_version}"
        )
        self.last_supported_version = last_supported_version
        self.decoded_version = decoded_version


class InvalidIndexError(LogInitError):
    """The index memory does not hold a valid log index."""

    def __init__(self, detail: str | None = None) -> None:
        message = "Invalid index" if detail is None else f"Invalid index: {detail}"
        super().__init__(message)


class WriteError(Exception):
    """Raised when an entry cannot be appended because a memory cannot grow."""

    def __init__(self, current_size: int, delta: int) -> None:
        super().__init__(
            f"Failed to grow memory: current size={current_size}, delta={delta}"
        )
        self.current_size = current_size
        self.delta = delta

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, WriteError):
            return NotImplemented
        return (self.current_size, self.delta) == (other.current_size, other.delta)

    def __hash__(self) -> int:
        return hash((self.current_size, self.delta))


class NoSuchEntry(IndexError):
    """Raised when an entry index is beyond the end of the log."""


def _identity_bytes(value) -> bytes:
    return bytes(value)


def _write_header(memory: Memory, magic: bytes) -> None:
    if memory.size() < 1 and memory.grow(1) == -1:
        raise RuntimeError("failed to allocate the first memory page")
    memory.write(0, magic + bytes([LAYOUT_VERSION]))


def _read_header(memory: Memory) -> tuple[bytes, int]:
    magic, version = struct.unpack("<3sB", memory.read(0, HEADER_V1_SIZE))
    return magic, version


def _index_entry_offset(idx: int) -> int:
    return HEADER_OFFSET + _U64_SIZE + idx * _U64_SIZE


def _validate_v1_index(memory: Memory) -> None:
    num_entries = read_u64(memory, HEADER_OFFSET)
    previous = 0
    for i in range(num_entries):
        entry = read_u64(memory, _index_entry_offset(i))
        if i > 0 and entry < previous:
            raise InvalidIndexError(f"invalid entry I[{i}]: {entry} < {previous}")
        previous = entry


class Log(Generic[T]):
    """Append-only list of variable-size entries stored in two memories."""

    def __init__(
        self,
        index_memory: Memory,
        data_memory: Memory,
        encode: Callable[[T], bytes],
        decode: Callable[[bytes], T],
    ) -> None:
        self._index_memory = index_memory
        self._data_memory = data_memory
        self._encode = encode
        self._decode = decode

    @classmethod
    def new(
        cls,
        index_memory: Memory,
        data_memory: Memory,
        encode: Callable[[T], bytes] = _identity_bytes,
        decode: Callable[[bytes], T] = _identity_bytes,
    ) -> Log[T]:
        """Create an empty log, overwriting the previous contents of the memories."""
        _write_header(index_memory, INDEX_MAGIC)
        _write_header(data_memory, DATA_MAGIC)
        write_u64(index_memory, HEADER_OFFSET, 0)
        return cls(index_memory, data_memory, encode, decode)

    @classmethod
    def init(
        cls,
        index_memory: Memory,
        data_memory: Memory,
        encode: Callable[[T], bytes] = _identity_bytes,
        decode: Callable[[bytes], T] = _identity_bytes,
    ) -> Log[T]:
        """Load the log stored in the memories, or create an empty one.

        Raises a ``LogInitError`` subclass if the memories hold a log this
        code cannot read.
        """
        if data_memory.size() == 0:
            return cls.new(index_memory, data_memory, encode, decode)
        data_magic, data_version = _read_header(data_memory)
        if data_magic != DATA_MAGIC:
            return cls.new(index_memory, data_memory, encode, decode)
        if data_version != LAYOUT_VERSION:
            raise IncompatibleDataVersionError(LAYOUT_VERSION, data_version)

        if index_memory.size() == 0:
            raise InvalidIndexError()
        index_magic, index_version = _read_header(index_memory)
        if index_magic != INDEX_MAGIC:
            raise InvalidIndexError()
        if index_version != LAYOUT_VERSION:
            raise IncompatibleIndexVersionError(LAYOUT_VERSION, index_version)

        if __debug__:
            _validate_v1_index(index_memory)

        return cls(index_memory, data_memory, encode, decode)

    def into_memories(self) -> tuple[Memory, Memory]:
        """Return the index memory and the data memory."""
        return self._index_memory, self._data_memory

    def __len__(self) -> int:
        return read_u64(self._index_memory, HEADER_OFFSET)

    def is_empty(self) -> bool:
        """Return True if the log has no entries."""
        return len(self) == 0

    def index_size_bytes(self) -> int:
        """Return the number of index memory bytes in use."""
        return _index_entry_offset(len(self))

    def data_size_bytes(self) -> int:
        """Return the number of data memory bytes in use."""
        return self.log_size_bytes() + HEADER_OFFSET

    def log_size_bytes(self) -> int:
        """Return the total size of all entries in bytes."""
        num_entries = len(self)
        if num_entries == 0:
            return 0
        return read_u64(self._index_memory, _index_entry_offset(num_entries - 1))

    def get(self, idx: int) -> T | None:
        """Return the entry at ``idx``, or None if there is no such entry."""
        try:
            raw = self.read_entry(idx)
        except NoSuchEntry:
            return None
        return self._decode(raw)

    def read_entry(self, idx: int) -> bytes:
        """Return the raw bytes of the entry at ``idx``.

        Raises ``NoSuchEntry`` if the entry does not exist.
        """
        meta = self._entry_meta(idx)
        if meta is None:
            raise NoSuchEntry(f"no entry with index {idx}")
        offset, length = meta
        return self._data_memory.read(HEADER_OFFSET + offset, length)

    def append(self, item: T) -> int:
        """Append ``item`` and return its index.

        Raises ``WriteError`` if a memory cannot grow; the log is then unchanged.
        """
        idx = len(self)
        data_offset = (
            0
            if idx == 0
            else read_u64(self._index_memory, _index_entry_offset(idx - 1))
        )
        encoded = bytes(self._encode(item))
        new_offset = data_offset + len(encoded)
        entry_offset = HEADER_OFFSET + data_offset
        if new_offset > _ADDRESS_LIMIT or entry_offset > _ADDRESS_LIMIT:
            raise OverflowError("address overflow")

        try:
            # Data first, so a failure leaves the index untouched.
            safe_write(self._data_memory, entry_offset, encoded)
            safe_write(
                self._index_memory,
                _index_entry_offset(idx),
                struct.pack("<Q", new_offset),
            )
        except GrowFailed as error:
            raise WriteError(error.current_size, error.delta) from error

        write_u64(self._index_memory, HEADER_OFFSET, idx + 1)
        return idx

    def iter(self) -> LogIterator[T]:
        """Return an iterator over the entries, oldest first."""
        return LogIterator(self)

    def __iter__(self) -> LogIterator[T]:
        return self.iter()

    def _entry_meta(self, idx: int) -> tuple[int, int] | None:
        if idx < 0 or len(self) <= idx:
            return None
        if idx == 0:
            return 0, read_u64(self._index_memory, _index_entry_offset(0))
        offset = read_u64(self._index_memory, _index_entry_offset(idx - 1))
        end = read_u64(self._index_memory, _index_entry_offset(idx))
        return offset, end - offset


class LogIterator(Generic[T]):
    """Iterates over the entries of a log by position."""

    def __init__(self, log: Log[T]) -> None:
        self._log = log
        self._pos = 0

    def __iter__(self) -> LogIterator[T]:
        return self

    def __next__(self) -> T:
        try:
            raw = self._log.read_entry(self._pos)
        except NoSuchEntry:
            raise StopIteration from None
        self._pos += 1
        return self._log._decode(raw)

    def nth(self, n: int) -> T | None:
        """Skip ``n`` entries and return the next one, or None if exhausted."""
        if n < 0:
            raise ValueError("n must be non-negative")
        self._pos += n
        return next(self, None)

    def remaining(self) -> int:
        """Return the number of entries not yet visited."""
        return max(len(self._log) - self._pos, 0)

    def __length_hint__(self) -> int:
        return self.remaining()