"""Chunk planning for multipart uploads."""

import math
from typing import List

from .models import Chunk


def plan_chunks(file_size: int, chunk_size: int) -> List[Chunk]:
    """Partition ``[0, file_size)`` into contiguous chunks.

    Part ``i`` covers ``[(i-1)*chunk_size, min(i*chunk_size, file_size))``. A file
    no larger than one chunk (including an empty file) yields a single chunk.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if file_size < 0:
        raise ValueError("file_size must not be negative")

    total_chunks = max(1, math.ceil(file_size / chunk_size))
    chunks = []
    for part_number in range(1, total_chunks + 1):
        start = (part_number - 1) * chunk_size
        end = min(part_number * chunk_size, file_size) - 1
        chunks.append(Chunk(part_number=part_number, start=start, end=end))
    return chunks
