"""Chunking utilities for streaming images."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator


@dataclass(frozen=True)
class ImageChunk:
    """A contiguous byte range of an image."""

    index: int
    offset: int
    length: int

    @property
    def end(self) -> int:
        return self.offset + self.length


def chunk_image(total_size: int, chunk_size: int) -> Iterator[ImageChunk]:
    """Yield ``ImageChunk`` objects covering ``total_size`` bytes.

    Every chunk is ``chunk_size`` bytes except possibly the last one. An empty
    image yields nothing.
    """

    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if total_size < 0:
        raise ValueError("total_size must not be negative")

    offset = 0
    index = 0
    while offset < total_size:
        length = min(chunk_size, total_size - offset)
        yield ImageChunk(index=index, offset=offset, length=length)
        offset += length
        index += 1


def chunk_count(total_size: int, chunk_size: int) -> int:
    return -(-total_size // chunk_size)


__all__ = ["ImageChunk", "chunk_count", "chunk_image"]
