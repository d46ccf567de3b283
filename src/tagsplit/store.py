"""Directory store: one standalone record per file plus the manifest.

A tag path such as ``levels\\a10\\a10`` of class ``scnr`` is stored as
``levels/a10/a10.scnr.tagrec`` under the root. When two tags would map to
the same file (including case-only differences) the later one gets its tag
id appended to the stem.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Tuple

from .cache.constants import RECORD_SUFFIX
from .cache.disassociator import Disassociation
from .cache.model import TagRecord
from .cache.records import decode_record, encode_record
from .logging import get_logger
from .manifest import Manifest, load_manifest, write_manifest
from .reporting import task
from .utils.io import atomic_write_bytes, safe_read_file
from .utils.paths import record_file_name, safe_file_path

__all__ = [
    "DEFAULT_MANIFEST_NAME",
    "StoreResult",
    "write_directory",
    "read_directory",
]

DEFAULT_MANIFEST_NAME = "manifest.json"


@dataclass(slots=True)
class StoreResult:
    root: Path
    manifest_path: Path
    record_files: List[Path] = field(default_factory=list)
    removed_files: List[Path] = field(default_factory=list)
    bytes_written: int = 0


def _assign_file_names(records: List[TagRecord]) -> List[Path]:
    used: set[str] = set()
    names: List[Path] = []
    for rec in records:
        name = record_file_name(rec.path, rec.tag_class, RECORD_SUFFIX)
        if name.as_posix().lower() in used:
            name = record_file_name(rec.path, rec.tag_class, RECORD_SUFFIX, rec.tag_id)
        used.add(name.as_posix().lower())
        names.append(name)
    return names


def write_directory(
    root: Path,
    disassociation: Disassociation,
    *,
    manifest_name: str = DEFAULT_MANIFEST_NAME,
    prune_stale: bool = True,
) -> StoreResult:
    """Write every record and the manifest under ``root``.

    With ``prune_stale`` record files already under ``root`` that are not
    part of this export are deleted.
    """
    root.mkdir(parents=True, exist_ok=True)
    records = disassociation.records
    result = StoreResult(root=root, manifest_path=safe_file_path(root, manifest_name))
    with task("store.write", "Write records", total=len(records)) as stats:
        for rec, rel in zip(records, _assign_file_names(records)):
            target = safe_file_path(root, rel)
            result.bytes_written += atomic_write_bytes(target, encode_record(rec))
            result.record_files.append(target)
        stats.update(records=len(records), bytes=result.bytes_written)
    write_manifest(disassociation.manifest, result.manifest_path)
    if prune_stale:
        keep = {p.resolve() for p in result.record_files}
        for existing in sorted(root.resolve().rglob(f"*{RECORD_SUFFIX}")):
            if existing not in keep:
                existing.unlink()
                result.removed_files.append(existing)
        if result.removed_files:
            get_logger().info(
                "Removed %d stale record file(s)", len(result.removed_files)
            )
    return result


def read_directory(
    root: Path, *, manifest_name: str = DEFAULT_MANIFEST_NAME
) -> Tuple[Manifest, List[TagRecord]]:
    manifest = load_manifest(safe_file_path(root, manifest_name))
    files = sorted(root.resolve().rglob(f"*{RECORD_SUFFIX}"))
    records: List[TagRecord] = []
    with task("store.read", "Read records", total=len(files)) as stats:
        for path in files:
            rel = path.relative_to(root.resolve()).as_posix()
            records.append(decode_record(safe_read_file(path), source=rel))
        stats.update(records=len(records))
    return manifest, records
