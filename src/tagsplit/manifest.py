"""Manifest: the layout-independent description of a tag graph.

The manifest records tag ids, classes and paths in index order, the payload
layout order and every reference edge. It holds no offsets, sizes or
checksums, so a directory of standalone records plus its manifest is enough
to rebuild the cache file.

File form is JSON (``indent=2``, sorted keys) or YAML when the path ends in
``.yaml``/``.yml``. Tag ids are written as 8-digit hex strings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
import json
from typing import Any, Dict, List, Optional

import yaml

from .cache.constants import DEFAULT_RANDOM_SEED, DEFAULT_VERSION, MANIFEST_FORMAT
from .cache.model import CacheInfo, Classes

__all__ = [
    "ManifestTag",
    "ManifestEdge",
    "Manifest",
    "manifest_dict",
    "manifest_from_dict",
    "write_manifest",
    "load_manifest",
]


@dataclass(frozen=True, slots=True)
class ManifestTag:
    tag_id: int
    classes: Classes
    path: str
    indexed: bool = False
    resource_index: Optional[int] = None

    @property
    def tag_class(self) -> Optional[str]:
        return self.classes[0]


@dataclass(frozen=True, slots=True)
class ManifestEdge:
    source: int
    offset: int
    width: int
    kind: str
    target: Optional[int]
    addend: int = 0
    external: Optional[int] = None


@dataclass(slots=True)
class Manifest:
    cache: CacheInfo
    tags: List[ManifestTag] = field(default_factory=list)
    layout: List[int] = field(default_factory=list)
    edges: List[ManifestEdge] = field(default_factory=list)
    format: int = MANIFEST_FORMAT

    def tag_ids(self) -> List[int]:
        return [t.tag_id for t in self.tags]

    def edges_by_source(self) -> Dict[int, List[ManifestEdge]]:
        out: Dict[int, List[ManifestEdge]] = {}
        for e in self.edges:
            out.setdefault(e.source, []).append(e)
        return out


def _hex(value: Optional[int]) -> Optional[str]:
    return None if value is None else f"{value:08x}"


def _parse_id(value: Any, where: str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{where}: tag id must be hex string or integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 16)
        except ValueError as e:
            raise ValueError(f"{where}: invalid tag id {value!r}") from e
    raise ValueError(f"{where}: tag id must be hex string or integer")


def _opt_id(value: Any, where: str) -> Optional[int]:
    return None if value is None else _parse_id(value, where)


def manifest_dict(manifest: Manifest) -> Dict[str, Any]:
    info = manifest.cache
    return {
        "manifest_format": manifest.format,
        "cache": {
            "version": info.version,
            "name": info.name,
            "build": info.build,
            "map_type": info.map_type,
            "principal_tag": _hex(info.principal_tag),
            "random_seed": info.random_seed,
        },
        "tags": [
            {
                "id": _hex(t.tag_id),
                "classes": list(t.classes),
                "path": t.path,
                "indexed": t.indexed,
                "resource_index": t.resource_index,
            }
            for t in manifest.tags
        ],
        "layout": [_hex(i) for i in manifest.layout],
        "edges": [
            {
                "source": _hex(e.source),
                "offset": e.offset,
                "width": e.width,
                "kind": e.kind,
                "target": _hex(e.target),
                "addend": e.addend,
                "external": e.external,
            }
            for e in manifest.edges
        ],
    }


def manifest_from_dict(data: Dict[str, Any]) -> Manifest:
    fmt = data.get("manifest_format")
    if fmt != MANIFEST_FORMAT:
        raise ValueError(f"Unsupported manifest format: {fmt!r}")
    cache = data.get("cache") or {}
    info = CacheInfo(
        version=int(cache.get("version", DEFAULT_VERSION)),
        name=str(cache.get("name", "")),
        build=str(cache.get("build", "")),
        map_type=int(cache.get("map_type", 0)),
        principal_tag=_opt_id(cache.get("principal_tag"), "cache.principal_tag"),
        random_seed=int(cache.get("random_seed", DEFAULT_RANDOM_SEED)),
    )
    tags: List[ManifestTag] = []
    for i, t in enumerate(data.get("tags") or []):
        classes = list(t.get("classes") or [])
        if len(classes) != 3:
            raise ValueError(f"tags[{i}]: expected 3 class entries")
        tags.append(
            ManifestTag(
                tag_id=_parse_id(t.get("id"), f"tags[{i}].id"),
                classes=tuple(classes),  # type: ignore[arg-type]
                path=str(t.get("path", "")),
                indexed=bool(t.get("indexed", False)),
                resource_index=t.get("resource_index"),
            )
        )
    layout = [
        _parse_id(v, f"layout[{i}]") for i, v in enumerate(data.get("layout") or [])
    ]
    edges: List[ManifestEdge] = []
    for i, e in enumerate(data.get("edges") or []):
        edges.append(
            ManifestEdge(
                source=_parse_id(e.get("source"), f"edges[{i}].source"),
                offset=int(e["offset"]),
                width=int(e.get("width", 4)),
                kind=str(e.get("kind", "address")),
                target=_opt_id(e.get("target"), f"edges[{i}].target"),
                addend=int(e.get("addend", 0)),
                external=e.get("external"),
            )
        )
    return Manifest(cache=info, tags=tags, layout=layout, edges=edges, format=fmt)


def _is_yaml(path: Path) -> bool:
    return path.suffix.lower() in {".yaml", ".yml"}


def write_manifest(manifest: Manifest, output_path: Path) -> Path:
    output_path.parent.mkdir(parents=True, exist_ok=True)
    data = manifest_dict(manifest)
    with output_path.open("w", encoding="utf-8") as f:
        if _is_yaml(output_path):
            yaml.safe_dump(data, f, sort_keys=True)
        else:
            json.dump(data, f, indent=2, sort_keys=True)
            f.write("\n")
    return output_path


def load_manifest(path: str | Path) -> Manifest:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(p)
    text = p.read_text(encoding="utf-8")
    data: Any = yaml.safe_load(text) if _is_yaml(p) else json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("Root of manifest must be an object")
    return manifest_from_dict(data)
