"""IO helpers for cache and record files."""

from __future__ import annotations
from pathlib import Path

__all__ = ["DataError", "safe_read_file", "atomic_write_bytes"]

MAX_CACHE_FILE_SIZE = 0xFFFFFFFF


class DataError(RuntimeError):
    pass


def safe_read_file(path: Path, max_size: int = MAX_CACHE_FILE_SIZE) -> bytes:
    if not path.exists():
        raise DataError(f"File not found: {path}")
    size = path.stat().st_size
    if size > max_size:
        raise DataError(f"File too large: {size}>{max_size}")
    return path.read_bytes()


def atomic_write_bytes(path: Path, data: bytes) -> int:
    """Write via a sibling temp file so readers never see a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_bytes(data)
    tmp.replace(path)
    return len(data)
