"""Path utilities (safe resolution, tag path to file name mapping)."""

from __future__ import annotations
from pathlib import Path
import re
from typing import List, Optional

__all__ = ["safe_file_path", "tag_path_segments", "record_file_name"]

_UNSAFE = re.compile(r'[<>:"|?*\x00-\x1f]')


def safe_file_path(base_dir: Path, file_path: str | Path) -> Path:
    base_dir = base_dir.resolve()
    resolved = (base_dir / file_path).resolve()
    resolved.relative_to(base_dir)  # raises ValueError if escapes
    return resolved


def tag_path_segments(tag_path: str) -> List[str]:
    """Split a backslash separated tag path into file system segments."""
    parts = [p for p in re.split(r"[\\/]+", tag_path) if p]
    segments = [_UNSAFE.sub("_", p) for p in parts if p not in (".", "..")]
    return segments or ["_unnamed"]


def record_file_name(
    tag_path: str, tag_class: Optional[str], suffix: str, tag_id: Optional[int] = None
) -> Path:
    segments = tag_path_segments(tag_path)
    stem = segments[-1]
    cls = _UNSAFE.sub("_", (tag_class or "none").strip()) or "none"
    if tag_id is not None:
        stem = f"{stem}.{tag_id:08x}"
    return Path(*segments[:-1], f"{stem}.{cls}{suffix}")
