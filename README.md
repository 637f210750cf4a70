# stablestore

Data structures that live in a page-addressed linear memory and survive being
reloaded. Memory grows in pages of 64 KiB. Every structure writes its state
straight into the memory it was given, so that memory can later be handed to
a fresh instance and the data is still there.

The package has no dependencies outside the standard library.

## Installation

```
pip install stablestore
```

To run the test suite:

```
pip install "stablestore[test]"
pytest
```

## Memories (`stablestore.memory`, `stablestore.file_memory`)

Each memory implements the abstract `Memory` interface: `size()` in pages,
`grow(pages)`, `read(offset, count)` returning `bytes`, and
`write(offset, data)`.

- `VectorMemory`: an in-process byte buffer. `getvalue()` returns a copy of
  its contents.
- `FileMemory`: a memory backed by an open, seekable binary file. The file's
  length must be a whole number of pages, otherwise `size()` raises
  `ValueError`.
- `RestrictedMemory(memory, range(start, stop))`: a view onto a page range of
  another memory.
- `VirtualMemory`: one of up to 255 independent memories carved out of a
  single memory by a `MemoryManager` (see below).

`grow` returns the previous size in pages, or `-1` if the memory cannot grow.
A read or write past the end of a memory raises `IndexError`.

Helpers in `stablestore.memory`:

- `safe_write(memory, offset, data)` grows the memory as far as the write
  needs and raises `GrowFailed` (with `current_size` and `delta`) when the
  memory refuses to grow.
- `write(memory, offset, data)` does the same but raises `RuntimeError`.
- `read_u32`, `read_u64`, `write_u32`, `write_u64` read and write
  little-endian unsigned integers; the write helpers grow the memory if needed.

```python
from stablestore.memory import VectorMemory, safe_write, read_u64, write_u64

mem = VectorMemory()
mem.grow(1)
mem.write(0, b"abc")
assert mem.read(0, 3) == b"abc"

write_u64(mem, 8, 42)
assert read_u64(mem, 8) == 42

# Grows the memory as far as the write needs it to.
safe_write(mem, 100_000, b"xyz")
assert mem.size() == 2
```

## Memory manager (`stablestore.memory_manager`)

```python
from stablestore.memory import VectorMemory
from stablestore.memory_manager import MemoryId, MemoryManager

manager = MemoryManager.init(VectorMemory())

first = manager.get(MemoryId(0))
second = manager.get(MemoryId(1))

first.grow(1)
second.grow(1)
first.write(0, b"\x01\x02\x03")
second.write(0, b"\x04\x05\x06")

assert first.read(0, 3) == b"\x01\x02\x03"
assert second.read(0, 3) == b"\x04\x05\x06"
```

Memory ids run from 0 to 254; any other id raises `ValueError`. `get` also
accepts a plain integer.

Memory is handed out in buckets of 128 pages by default;
`MemoryManager.init_with_bucket_size` picks a different size. Calling
`MemoryManager.init` on memory that already holds a manager loads it,
including its bucket size (`bucket_size_in_pages()`). At most 32768 buckets
can be allocated; a `grow` that would need more returns `-1`.
`memory_buckets(memory_id)` lists the buckets owned by a memory, and
`into_memory()` returns the underlying memory, or `None` while any
`VirtualMemory` it handed out is still alive.

The helpers in `stablestore.buckets` (`VirtualSegment`, `RealSegment`,
`BucketCache`, `split_segment`) describe how a virtual address range is split
across buckets.

## Cell (`stablestore.cell`)

A `Cell` stores one value, encoded to bytes by the `encode` and `decode`
functions you supply. Without them the value is taken to be bytes.

```python
from stablestore.cell import Cell
from stablestore.memory import VectorMemory

encode = lambda n: n.to_bytes(8, "little")
decode = lambda raw: int.from_bytes(raw, "little")

cell = Cell.init(VectorMemory(), 1024, encode, decode)
assert cell.set(2048) == 1024

reloaded = Cell.init(cell.into_memory(), 0, encode, decode)
assert reloaded.value == 2048
```

`Cell.init` loads an existing cell or writes the default value; `Cell.new`
always overwrites. `set` returns the previous value. A layout version it does
not understand raises `IncompatibleVersionError`; a value that does not fit
raises `ValueTooLargeError`, and the cell keeps its old value. Both derive
from `CellInitError`.

## Log (`stablestore.log`)

An append-only list of variable-size entries kept in two memories, one for
the index and one for the data.

```python
from stablestore.log import Log
from stablestore.memory import VectorMemory

log = Log.new(VectorMemory(), VectorMemory(), str.encode, bytes.decode)
assert log.append("apple") == 0
assert log.append("banana") == 1

assert len(log) == 2
assert log.get(1) == "banana"
assert log.get(5) is None
assert list(log.iter()) == ["apple", "banana"]

index_memory, data_memory = log.into_memories()
log = Log.init(index_memory, data_memory, str.encode, bytes.decode)
assert not log.is_empty()
```

`append` raises `WriteError` when a memory cannot grow, leaving the log
unchanged; `read_entry` returns an entry's raw bytes and raises `NoSuchEntry`
for an index past the end. `log_size_bytes`, `index_size_bytes` and
`data_size_bytes` report space in use. The iterator returned by `iter()` also
offers `nth(n)` and `remaining()`.

Loading memory with an unknown layout raises `IncompatibleDataVersionError`,
`IncompatibleIndexVersionError` or `InvalidIndexError`, all subclasses of
`LogInitError`.

## Reading as a stream (`stablestore.reader`)

```python
from stablestore.memory import VectorMemory
from stablestore.reader import Reader, buffered_reader

mem = VectorMemory()
mem.grow(1)
mem.write(0, b"hello")

reader = Reader(mem, 0)
assert reader.read_chunk(5) == b"hello"

stream = buffered_reader(4096, Reader(mem, 0))
data = stream.read()
assert len(data) == 65536
```

A `Reader` is a readable binary stream (`io.RawIOBase`) over a memory,
starting at a given offset; reading stops at the end of the memory, where the
stream reports end of file. `read_chunk` from an offset at or past the end
raises `OutOfBounds`.

## What it does not provide

The package offers memories, a memory manager, a single-value cell and an
append-only log. It has no sorted map or set, no growable vector and no heap
built on these memories, and no command-line tool.