import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from stablestore.memory import WASM_PAGE_SIZE, VectorMemory, write
from stablestore.memory_manager import (
    BUCKET_ALLOCATIONS_OFFSET,
    BUCKET_SIZE_IN_PAGES,
    LAYOUT_VERSION,
    MAGIC,
    MAX_NUM_BUCKETS,
    MemoryId,
    MemoryManager,
)

MAX_MEMORY_IN_PAGES = MAX_NUM_BUCKETS * BUCKET_SIZE_IN_PAGES


def test_can_get_memory():
    mem_mgr = MemoryManager.init(VectorMemory())
    memory = mem_mgr.get(MemoryId(0))
    assert memory.size() == 0


def test_can_allocate_and_use_memory():
    mem_mgr = MemoryManager.init(VectorMemory())
    memory = mem_mgr.get(MemoryId(0))
    assert memory.grow(1) == 0
    assert memory.size() == 1

    memory.write(0, bytes([1, 2, 3]))
    assert memory.read(0, 3) == bytes([1, 2, 3])

    assert mem_mgr.memory_buckets(MemoryId(0)) == [0]
    assert all(mem_mgr.memory_buckets(MemoryId(i)) == [] for i in range(1, 255))


def test_can_allocate_and_use_multiple_memories():
    mem = VectorMemory()
    mem_mgr = MemoryManager.init(mem)
    memory_0 = mem_mgr.get(MemoryId(0))
    memory_1 = mem_mgr.get(MemoryId(1))

    assert memory_0.grow(1) == 0
    assert memory_1.grow(1) == 0
    assert memory_0.size() == 1
    assert memory_1.size() == 1

    assert mem_mgr.memory_buckets(MemoryId(0)) == [0]
    assert mem_mgr.memory_buckets(MemoryId(1)) == [1]
    assert all(mem_mgr.memory_buckets(MemoryId(i)) == [] for i in range(2, 255))

    memory_0.write(0, bytes([1, 2, 3]))
    memory_0.write(0, bytes([1, 2, 3]))
    memory_1.write(0, bytes([4, 5, 6]))

    assert memory_0.read(0, 3) == bytes([1, 2, 3])
    assert memory_1.read(0, 3) == bytes([4, 5, 6])

    # + 1 is for the header.
    assert mem.size() == 2 * BUCKET_SIZE_IN_PAGES + 1


def test_can_be_reinitialized_from_memory():
    mem = VectorMemory()
    mem_mgr = MemoryManager.init(mem)
    memory_0 = mem_mgr.get(MemoryId(0))
    memory_1 = mem_mgr.get(MemoryId(1))
    assert memory_0.grow(1) == 0
    assert memory_1.grow(1) == 0
    memory_0.write(0, bytes([1, 2, 3]))
    memory_1.write(0, bytes([4, 5, 6]))

    mem_mgr = MemoryManager.init(mem)
    memory_0 = mem_mgr.get(MemoryId(0))
    memory_1 = mem_mgr.get(MemoryId(1))
    assert memory_0.read(0, 3) == bytes([1, 2, 3])
    assert memory_1.read(0, 3) == bytes([4, 5, 6])


def test_growing_same_memory_multiple_times_doesnt_increase_underlying_allocation():
    mem = VectorMemory()
    mem_mgr = MemoryManager.init(mem)
    memory_0 = mem_mgr.get(MemoryId(0))

    assert memory_0.grow(1) == 0
    assert mem.size() == 1 + BUCKET_SIZE_IN_PAGES

    assert memory_0.grow(1) == 1
    assert memory_0.size() == 2
    assert mem.size() == 1 + BUCKET_SIZE_IN_PAGES

    assert memory_0.grow(BUCKET_SIZE_IN_PAGES - 2) == 2
    assert memory_0.size() == BUCKET_SIZE_IN_PAGES
    assert mem.size() == 1 + BUCKET_SIZE_IN_PAGES

    assert memory_0.grow(1) == BUCKET_SIZE_IN_PAGES
    assert memory_0.size() == BUCKET_SIZE_IN_PAGES + 1
    assert mem.size() == 1 + 2 * BUCKET_SIZE_IN_PAGES


def test_does_not_grow_memory_unnecessarily():
    mem = VectorMemory()
    initial_size = BUCKET_SIZE_IN_PAGES * 2
    mem.grow(initial_size)

    mem_mgr = MemoryManager.init(mem)
    memory_0 = mem_mgr.get(MemoryId(0))

    assert memory_0.grow(1) == 0
    assert mem.size() == initial_size

    assert memory_0.grow(BUCKET_SIZE_IN_PAGES) == 1
    assert mem.size() == 1 + BUCKET_SIZE_IN_PAGES * 2


def test_growing_beyond_capacity_fails():
    mem_mgr = MemoryManager.init(VectorMemory())
    memory_0 = mem_mgr.get(MemoryId(0))

    assert memory_0.grow(MAX_MEMORY_IN_PAGES + 1) == -1
    assert memory_0.grow(1) == 0
    assert memory_0.grow(MAX_MEMORY_IN_PAGES) == -1
    assert memory_0.size() == 1


def test_can_write_across_bucket_boundaries():
    mem_mgr = MemoryManager.init(VectorMemory())
    memory_0 = mem_mgr.get(MemoryId(0))
    assert memory_0.grow(BUCKET_SIZE_IN_PAGES + 1) == 0

    offset = mem_mgr.bucket_size_in_pages() * WASM_PAGE_SIZE - 1
    memory_0.write(offset, bytes([1, 2, 3]))
    assert memory_0.read(offset, 3) == bytes([1, 2, 3])


def test_can_write_across_bucket_boundaries_with_interleaving_memories():
    mem_mgr = MemoryManager.init(VectorMemory())
    memory_0 = mem_mgr.get(MemoryId(0))
    memory_1 = mem_mgr.get(MemoryId(1))

    assert memory_0.grow(BUCKET_SIZE_IN_PAGES) == 0
    assert memory_1.grow(1) == 0
    assert memory_0.grow(1) == BUCKET_SIZE_IN_PAGES

    memory_0.write(mem_mgr.bucket_size_in_pages() * WASM_PAGE_SIZE - 1, bytes([1, 2, 3]))
    memory_1.write(0, bytes([4, 5, 6]))

    assert memory_0.read(WASM_PAGE_SIZE * BUCKET_SIZE_IN_PAGES - 1, 3) == bytes([1, 2, 3])
    assert memory_1.read(0, 3) == bytes([4, 5, 6])
    assert mem_mgr.memory_buckets(MemoryId(0)) == [0, 2]


def test_reading_out_of_bounds_raises():
    mem_mgr = MemoryManager.init(VectorMemory())
    memory_0 = mem_mgr.get(MemoryId(0))
    memory_1 = mem_mgr.get(MemoryId(1))
    assert memory_0.grow(1) == 0
    assert memory_1.grow(1) == 0
    with pytest.raises(IndexError):
        memory_0.read(0, WASM_PAGE_SIZE + 1)


def test_writing_out_of_bounds_raises():
    mem_mgr = MemoryManager.init(VectorMemory())
    memory_0 = mem_mgr.get(MemoryId(0))
    memory_1 = mem_mgr.get(MemoryId(1))
    assert memory_0.grow(1) == 0
    assert memory_1.grow(1) == 0
    with pytest.raises(IndexError):
        memory_0.write(0, bytes(WASM_PAGE_SIZE + 1))


def test_reading_zero_bytes_from_empty_memory():
    mem_mgr = MemoryManager.init(VectorMemory())
    memory_0 = mem_mgr.get(MemoryId(0))
    assert memory_0.size() == 0
    assert memory_0.read(0, 0) == b""


def test_writing_zero_bytes_to_empty_memory():
    mem_mgr = MemoryManager.init(VectorMemory())
    memory_0 = mem_mgr.get(MemoryId(0))
    memory_0.write(0, b"")
    assert memory_0.size() == 0
    assert memory_0.read(0, 0) == b""


@settings(max_examples=25, deadline=None)
@given(
    num_memories=st.integers(min_value=0, max_value=3),
    data=st.binary(min_size=0, max_size=3 * 1024),
    offset=st.integers(min_value=0, max_value=10 * WASM_PAGE_SIZE),
)
def test_write_and_read_random_bytes(num_memories, data, offset):
    mem_mgr = MemoryManager.init_with_bucket_size(VectorMemory(), 1)
    memories = [mem_mgr.get(MemoryId(i)) for i in range(num_memories)]
    for memory in memories:
        write(memory, offset, data)
    for memory in memories:
        assert memory.read(offset, len(data)) == data
    reloaded = MemoryManager.init(mem_mgr.into_memory() or mem_mgr._memory)
    for i in range(num_memories):
        assert reloaded.get(MemoryId(i)).read(offset, len(data)) == data


def test_init_with_non_default_bucket_size():
    bucket_size = 256
    assert bucket_size != BUCKET_SIZE_IN_PAGES

    mem = VectorMemory()
    mem_mgr = MemoryManager.init_with_bucket_size(mem, bucket_size)
    memory_0 = mem_mgr.get(MemoryId(0))
    memory_1 = mem_mgr.get(MemoryId(1))
    memory_0.grow(300)
    memory_1.grow(100)
    memory_0.write(0, bytes([1]) * 1000)
    memory_1.write(0, bytes([2]) * 1000)

    mem_mgr = MemoryManager.init(mem)
    assert mem_mgr.bucket_size_in_pages() == bucket_size

    memory_0 = mem_mgr.get(MemoryId(0))
    memory_1 = mem_mgr.get(MemoryId(1))
    assert memory_0.size() == 300
    assert memory_1.size() == 100
    assert memory_0.read(0, 1000) == bytes([1]) * 1000
    assert memory_1.read(0, 1000) == bytes([2]) * 1000


def test_header_layout_on_disk():
    mem = VectorMemory()
    mem_mgr = MemoryManager.init(mem)
    mem_mgr.get(MemoryId(0)).grow(1)
    mem_mgr.get(MemoryId(1)).grow(1)
    raw = mem.getvalue()
    assert raw[:3] == MAGIC
    assert raw[3] == LAYOUT_VERSION
    assert raw[BUCKET_ALLOCATIONS_OFFSET] == 0
    assert raw[BUCKET_ALLOCATIONS_OFFSET + 1] == 1
    assert raw[BUCKET_ALLOCATIONS_OFFSET + 2] == 255


def test_load_with_unsupported_version_fails():
    mem = VectorMemory()
    MemoryManager.init(mem)
    mem.write(3, bytes([LAYOUT_VERSION + 1]))
    with pytest.raises(ValueError, match="Unsupported version"):
        MemoryManager.init(mem)


def test_memory_without_magic_is_overwritten():
    mem = VectorMemory()
    mem.grow(1)
    mem.write(0, b"XYZ")
    mem_mgr = MemoryManager.init(mem)
    assert mem.read(0, 3) == MAGIC
    assert mem_mgr.get(MemoryId(0)).size() == 0


def test_memory_id_rejects_reserved_value():
    with pytest.raises(ValueError):
        MemoryId(255)
    with pytest.raises(ValueError):
        MemoryId(-1)
    assert MemoryId(254).id == 254


def test_into_memory_only_without_live_virtual_memories():
    mem = VectorMemory()
    mem_mgr = MemoryManager.init(mem)
    memory_0 = mem_mgr.get(MemoryId(0))
    assert mem_mgr.into_memory() is None
    del memory_0
    assert mem_mgr.into_memory() is mem


def test_get_accepts_plain_integer_id():
    mem_mgr = MemoryManager.init(VectorMemory())
    memory = mem_mgr.get(7)
    assert memory.id == MemoryId(7)
    assert memory.grow(2) == 0
    assert mem_mgr.get(MemoryId(7)).size() == 2


def test_invalid_bucket_size_rejected():
    with pytest.raises(ValueError):
        MemoryManager.init_with_bucket_size(VectorMemory(), 0)