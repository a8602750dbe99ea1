"""SHA-256 hashing for source-image provenance and result fingerprints.

Provides:
    - sha256_file(): Hash file contents (uploaded photos, exported patterns)
    - sha256_bytes(): Hash in-memory payloads (uploads before decoding)
    - sha256_array(): Hash numpy arrays (working image, importance field)
    - hash_dict(): Hash JSON-serializable dicts (SynthesisResult.to_dict())

Deterministic hashing:
    - Arrays hashed over dtype, shape and C-contiguous bytes
    - Dicts serialized with sorted keys and compact separators
    - Results are hex strings (64 chars)

Usage:
    from src.utils import hashing
    source_sha = hashing.sha256_file("uploads/portrait.jpg")
    assert hashing.hash_dict(run_a.to_dict()) == hashing.hash_dict(run_b.to_dict())

Note: Module named `hashing.py` to avoid shadowing builtin `hash()`.
"""

import hashlib
import json
from pathlib import Path
from typing import Union

import numpy as np


def sha256_file(path: Union[str, Path], chunk_size: int = 1 << 20) -> str:
    """Compute SHA-256 hash of file contents, read in chunks.

    Raises
    ------
    FileNotFoundError
        If file doesn't exist
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    sha256 = hashlib.sha256()
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(chunk_size), b''):
            sha256.update(chunk)
    return sha256.hexdigest()


def sha256_bytes(data: bytes) -> str:
    """Compute SHA-256 hash of a bytes payload."""
    return hashlib.sha256(data).hexdigest()


def sha256_array(arr: np.ndarray) -> str:
    """Compute SHA-256 hash of array values.

    Notes
    -----
    Hash covers dtype and shape, so a (10, 10) float32 array and its
    (100,) reshape hash differently.
    """
    sha256 = hashlib.sha256()
    sha256.update(str(arr.dtype).encode('utf-8'))
    sha256.update(str(arr.shape).encode('utf-8'))
    sha256.update(np.ascontiguousarray(arr).tobytes())
    return sha256.hexdigest()


def sha256_string(s: str) -> str:
    """Compute SHA-256 hash of a UTF-8 string."""
    return hashlib.sha256(s.encode('utf-8')).hexdigest()


def hash_dict(d: dict) -> str:
    """Compute SHA-256 hash of a dictionary (sorted keys).

    Parameters
    ----------
    d : dict
        JSON-serializable dictionary

    Returns
    -------
    str
        SHA-256 hex digest; independent of key insertion order
    """
    json_str = json.dumps(d, sort_keys=True, separators=(',', ':'))
    return sha256_string(json_str)
