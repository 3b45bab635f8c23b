from __future__ import annotations

import os
from typing import BinaryIO, Iterator, List

from .constants import DEFAULT_CHUNK_SIZE
from .packet import Chunk


def split(file_name: str, data: bytes, chunk_size: int = DEFAULT_CHUNK_SIZE) -> List[Chunk]:
    """Cut ``data`` into chunks at multiples of ``chunk_size``.

    An empty file still produces one empty chunk so the receiver creates it.
    """
    if chunk_size <= 0:
        raise ValueError(f"chunk size must be positive, got {chunk_size}")
    if not data:
        return [Chunk.create(file_name, 0, b"")]
    return [
        Chunk.create(file_name, block_number, data[offset : offset + chunk_size])
        for block_number, offset in enumerate(range(0, len(data), chunk_size))
    ]


def _read_full(f: BinaryIO, size: int) -> bytes:
    parts = []
    remaining = size
    while remaining > 0:
        part = f.read(remaining)
        if not part:
            break
        parts.append(part)
        remaining -= len(part)
    return b"".join(parts)


def iter_chunks(f: BinaryIO, file_name: str, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[Chunk]:
    if chunk_size <= 0:
        raise ValueError(f"chunk size must be positive, got {chunk_size}")
    block_number = 0
    while True:
        data = _read_full(f, chunk_size)
        if not data and block_number > 0:
            return
        yield Chunk.create(file_name, block_number, data)
        block_number += 1
        if len(data) < chunk_size:
            return


def iter_file_chunks(
    path: str | os.PathLike[str],
    file_name: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> Iterator[Chunk]:
    with open(path, "rb") as f:
        yield from iter_chunks(f, file_name, chunk_size)
