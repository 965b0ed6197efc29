# astrocat/hashing.py
import os
from typing import Union

import numpy as np
import xxhash

# Read files in 1 MB chunks, like the rest of the pipeline.
CHUNK_SIZE = 1024 * 1024


def effective_seed(length: int, seed: int = 0) -> int:
    """A zero seed means "use the input length as the seed"."""
    return length if seed == 0 else seed


def hash_bytes(data: Union[bytes, bytearray, memoryview], seed: int = 0) -> str:
    """xxHash64 hex digest of an in-memory byte buffer."""
    view = memoryview(data)
    return xxhash.xxh64(view, seed=effective_seed(view.nbytes, seed)).hexdigest()


def image_hash(pixels: np.ndarray, seed: int = 0) -> str:
    """
    Hash of a decoded pixel buffer, as its raw bytes sit in memory.
    Non-contiguous arrays are made C-contiguous first.
    """
    raw = np.ascontiguousarray(pixels).reshape(-1).view(np.uint8)
    return xxhash.xxh64(raw, seed=effective_seed(raw.nbytes, seed)).hexdigest()


def file_hash(path: Union[str, os.PathLike], seed: int = 0) -> str:
    """Hash of the file's byte stream, read in chunks. The default seed is the file size."""
    size = os.path.getsize(path)
    hasher = xxhash.xxh64(seed=effective_seed(size, seed))
    with open(path, "rb") as f:
        while chunk := f.read(CHUNK_SIZE):
            hasher.update(chunk)
    return hasher.hexdigest()
