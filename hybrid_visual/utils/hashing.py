"""SHA-256 fingerprints for model artifacts and pixel buffers.

Provides:
    - sha256_file(): Hash model weight files (logged when a loader tier succeeds)
    - sha256_array(): Hash numpy buffers (baseline/actual/embedding fingerprints in DEBUG logs)
    - short_digest(): 12-character prefix for log lines

Deterministic hashing:
    - Arrays hashed as dtype + shape + C-contiguous bytes
    - Files read in chunks (1 MB default) for memory efficiency
    - Results are hex strings (64 chars)

Usage:
    from hybrid_visual.utils import hashing
    digest = hashing.sha256_file("/models/resnet18.pt")

Note: Module named `hashing.py` to avoid shadowing builtin `hash()`.
"""

import hashlib
from pathlib import Path
from typing import Union

import numpy as np


def sha256_file(path: Union[str, Path], chunk_size: int = 1 << 20) -> str:
    """Compute SHA-256 hash of file contents.

    Parameters
    ----------
    path : Union[str, Path]
        File path
    chunk_size : int
        Read chunk size in bytes, default 1 MB

    Returns
    -------
    str
        SHA-256 hex digest (64 characters)

    Raises
    ------
    FileNotFoundError
        If file doesn't exist
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"File not found: {path}")

    sha256 = hashlib.sha256()
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(chunk_size), b''):
            sha256.update(chunk)
    return sha256.hexdigest()


def sha256_array(a: np.ndarray) -> str:
    """Compute SHA-256 hash of array values.

    Notes
    -----
    dtype and shape are part of the digest: a (10, 10) and a (100,) view of the
    same bytes hash differently.
    """
    a = np.ascontiguousarray(a)
    sha256 = hashlib.sha256()
    sha256.update(f"{a.dtype.str}{a.shape}".encode('utf-8'))
    sha256.update(a.tobytes())
    return sha256.hexdigest()


def short_digest(digest: str, length: int = 12) -> str:
    return digest[:length]
