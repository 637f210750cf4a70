"""Persistent data structures laid out in page-addressed linear memory.

Memories, a memory manager, a single-value cell, an append-only log and
stream readers.
"""

__version__ = "0.7.0"

__all__ = [
    "memory",
    "file_memory",
    "reader",
    "buckets",
    "memory_manager",
    "cell",
    "log",
]