import struct

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from stablestore.memory import (
    MAX_PAGES,
    WASM_PAGE_SIZE,
    GrowFailed,
    RestrictedMemory,
    VectorMemory,
    read_u32,
    read_u64,
    safe_write,
    write,
    write_u32,
    write_u64,
)


def test_one_page_is_64_kib():
    mem = VectorMemory()
    assert mem.grow(1) == 0
    assert len(mem.getvalue()) == 65536
    assert WASM_PAGE_SIZE == 65536
    assert MAX_PAGES == (2**64 - 1) // 65536


def test_vector_memory_grow_returns_previous_size():
    mem = VectorMemory()
    assert mem.size() == 0
    assert mem.grow(1) == 0
    assert mem.grow(2) == 1
    assert mem.size() == 3
    assert mem.getvalue() == bytes(3 * WASM_PAGE_SIZE)


def test_vector_memory_grow_beyond_max_fails():
    mem = VectorMemory()
    assert mem.grow(MAX_PAGES + 1) == -1
    assert mem.size() == 0


def test_vector_memory_read_write_round_trip():
    mem = VectorMemory()
    mem.grow(1)
    mem.write(10, b"\x01\x02\x03")
    assert mem.read(10, 3) == b"\x01\x02\x03"


def test_vector_memory_out_of_bounds():
    mem = VectorMemory()
    mem.grow(1)
    with pytest.raises(IndexError):
        mem.read(0, WASM_PAGE_SIZE + 1)
    with pytest.raises(IndexError):
        mem.write(WASM_PAGE_SIZE - 1, b"ab")


def test_zero_length_access_on_empty_memory():
    mem = VectorMemory()
    mem.write(0, b"")
    assert mem.read(0, 0) == b""


def test_safe_write_grows_memory():
    mem = VectorMemory()
    safe_write(mem, WASM_PAGE_SIZE - 1, b"xy")
    assert mem.size() == 2
    assert mem.read(WASM_PAGE_SIZE - 1, 2) == b"xy"


def test_safe_write_reports_grow_failure():
    mem = RestrictedMemory(VectorMemory(), range(0, 1))
    safe_write(mem, 0, b"\x01" * WASM_PAGE_SIZE)
    with pytest.raises(GrowFailed) as info:
        safe_write(mem, WASM_PAGE_SIZE, b"\x01")
    assert info.value == GrowFailed(current_size=1, delta=1)
    assert "current size=1, delta=1" in str(info.value)


def test_write_raises_runtime_error_when_growth_fails():
    mem = RestrictedMemory(VectorMemory(), range(0, 1))
    with pytest.raises(RuntimeError, match="Failed to grow memory"):
        write(mem, WASM_PAGE_SIZE, b"\x01")


def test_safe_write_overflow():
    mem = VectorMemory()
    with pytest.raises(OverflowError):
        safe_write(mem, 2**64 - 1, b"ab")


@settings(max_examples=50, deadline=None)
@given(value=st.integers(0, 2**32 - 1), offset=st.integers(0, 2 * WASM_PAGE_SIZE))
def test_u32_round_trip(value, offset):
    mem = VectorMemory()
    write_u32(mem, offset, value)
    assert read_u32(mem, offset) == value
    assert mem.read(offset, 4) == struct.pack("<I", value)


@settings(max_examples=50, deadline=None)
@given(value=st.integers(0, 2**64 - 1), offset=st.integers(0, 2 * WASM_PAGE_SIZE))
def test_u64_round_trip(value, offset):
    mem = VectorMemory()
    write_u64(mem, offset, value)
    assert read_u64(mem, offset) == value
    assert mem.read(offset, 8) == struct.pack("<Q", value)


def test_restricted_memory_size_and_grow():
    base = VectorMemory()
    mem = RestrictedMemory(base, range(1, 3))
    assert mem.size() == 0
    assert mem.grow(1) == 0
    assert base.size() == 2
    assert mem.size() == 1
    assert mem.grow(1) == 1
    assert mem.size() == len(mem.page_range)
    assert mem.grow(1) == -1
    assert mem.grow(0) == len(mem.page_range)


def test_restricted_memory_offsets_into_base():
    base = VectorMemory()
    mem = RestrictedMemory(base, range(1, 3))
    mem.grow(1)
    mem.write(0, b"abc")
    assert base.read(WASM_PAGE_SIZE, 3) == b"abc"
    assert mem.read(0, 3) == b"abc"


def test_restricted_memory_rejects_range_past_max():
    with pytest.raises(ValueError):
        RestrictedMemory(VectorMemory(), range(0, MAX_PAGES + 1))