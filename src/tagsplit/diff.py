"""Structured diff of two cache files.

Compares header fields, checksums and the tag index (by tag id). The result
is JSON-serialisable with a stable shape::

    {"header": [...], "tags": [...], "summary": {"count": n, ...}}
"""

from __future__ import annotations
from typing import Any, Dict, List

from .cache.inspector import inspect_cache

__all__ = ["diff_caches"]

_HEADER_FIELDS = (
    "version",
    "name",
    "build",
    "map_type",
    "file_size",
    "tag_count",
    "principal_tag",
    "random_seed",
)
_TAG_FIELDS = ("classes", "path", "size", "offset", "indexed", "resource_index", "crc32")


def diff_caches(left: bytes, right: bytes) -> Dict[str, Any]:
    a = inspect_cache(left)
    b = inspect_cache(right)
    header: List[Dict[str, Any]] = [
        {"field": f, "left": a["header"][f], "right": b["header"][f]}
        for f in _HEADER_FIELDS
        if a["header"][f] != b["header"][f]
    ]
    if a["checksum"]["stored"] != b["checksum"]["stored"]:
        header.append(
            {
                "field": "checksum",
                "left": a["checksum"]["stored"],
                "right": b["checksum"]["stored"],
            }
        )

    left_tags = {t["id"]: t for t in a["tags"]}
    right_tags = {t["id"]: t for t in b["tags"]}
    tags: List[Dict[str, Any]] = []
    for tag_id in sorted(set(left_tags) | set(right_tags)):
        lt = left_tags.get(tag_id)
        rt = right_tags.get(tag_id)
        if rt is None:
            tags.append({"id": tag_id, "path": lt["path"], "status": "removed"})
            continue
        if lt is None:
            tags.append({"id": tag_id, "path": rt["path"], "status": "added"})
            continue
        for f in _TAG_FIELDS:
            if lt[f] != rt[f]:
                tags.append(
                    {"id": tag_id, "path": lt["path"], "field": f, "left": lt[f], "right": rt[f]}
                )
    if [t["id"] for t in a["tags"] if t["id"] in right_tags] != [
        t["id"] for t in b["tags"] if t["id"] in left_tags
    ]:
        tags.append({"field": "index_order", "status": "changed"})
    return {
        "header": header,
        "tags": tags,
        "summary": {
            "count": len(header) + len(tags),
            "added": sum(1 for t in tags if t.get("status") == "added"),
            "removed": sum(1 for t in tags if t.get("status") == "removed"),
        },
    }
