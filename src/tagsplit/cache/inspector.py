"""Read-only cache inspection.

Public functions:
- inspect_cache(data) -> dict (JSON-serialisable summary, tolerant read)
- validate_cache(data, registry=None) -> list[str] (issues; empty means ok)
"""

from __future__ import annotations

from collections import Counter
from typing import Any, Dict, List, Optional

from ..schema.models import SchemaRegistry
from .constants import CHECKSUM_CRC32, HEADER_SIZE, MAP_TYPES
from .errors import CacheError
from .graph import build_graph
from .packers import compute_checksum
from .reader import read_cache

__all__ = ["inspect_cache", "validate_cache"]


def _hex(value: Optional[int]) -> Optional[str]:
    return None if value is None else f"{value:08x}"


def inspect_cache(data: bytes) -> Dict[str, Any]:
    parsed = read_cache(data, tolerant=True)
    h = parsed.header
    computed = compute_checksum(memoryview(data)[HEADER_SIZE : h.file_size], parsed.format.checksum)
    tags = []
    for entry, payload in parsed.entries:
        tags.append(
            {
                "id": _hex(entry.tag_id),
                "classes": list(entry.classes),
                "path": entry.path,
                "offset": entry.payload_offset,
                "size": entry.payload_size,
                "indexed": entry.indexed,
                "resource_index": entry.resource_index,
                "crc32": _hex(compute_checksum(payload, CHECKSUM_CRC32)),
            }
        )
    by_class = Counter(e.tag_class or "none" for e, _ in parsed.entries)
    return {
        "header": {
            "version": h.version,
            "format": parsed.format.name,
            "name": h.name,
            "build": h.build,
            "map_type": h.map_type,
            "map_type_name": MAP_TYPES.get(h.map_type, "unknown"),
            "file_size": h.file_size,
            "tag_data_offset": h.tag_data_offset,
            "tag_data_size": h.tag_data_size,
            "tag_index_offset": h.tag_index_offset,
            "tag_count": h.tag_count,
            "principal_tag": _hex(h.principal_tag),
            "random_seed": h.random_seed,
        },
        "checksum": {
            "algorithm": parsed.format.checksum,
            "stored": _hex(h.checksum),
            "computed": _hex(computed),
            "ok": parsed.verified,
        },
        "tags": tags,
        "statistics": {
            "payload_bytes": sum(e.payload_size for e, _ in parsed.entries),
            "indexed": sum(1 for e, _ in parsed.entries if e.indexed),
            "classes": dict(sorted(by_class.items())),
        },
    }


def validate_cache(data: bytes, registry: SchemaRegistry | None = None) -> List[str]:
    issues: List[str] = []
    try:
        parsed = read_cache(data)
    except CacheError as e:
        return [f"{e.code}: {e.message}"]
    if len(data) > parsed.header.file_size:
        issues.append(
            f"{len(data) - parsed.header.file_size} trailing byte(s) after declared file size"
        )
    if parsed.header.map_type not in MAP_TYPES:
        issues.append(f"Unknown map type {parsed.header.map_type}")
    if registry is not None:
        try:
            build_graph(parsed, registry)
        except CacheError as e:
            issues.append(f"{e.code}: {e.message}")
    return issues
