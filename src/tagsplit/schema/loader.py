"""Schema registry loading utilities (JSON/YAML)."""

from __future__ import annotations
from pathlib import Path
from typing import Any
import json

import yaml

from .models import ClassSchema, FieldLayout, PruneRoot, SchemaRegistry
from .validator import validate_registry


def load_registry(path: str | Path) -> SchemaRegistry:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(p)
    text = p.read_text(encoding="utf-8")
    if p.suffix.lower() in {".yaml", ".yml"}:
        data: Any = yaml.safe_load(text)
    else:
        data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("Root of schema registry must be an object")
    return registry_from_dict(data)


def registry_from_dict(data: dict[str, Any]) -> SchemaRegistry:
    errors = validate_registry(data)
    if errors:
        raise ValueError(
            "Schema registry validation failed: "
            + "; ".join(f"{e.code}:{e.path}:{e.message}" for e in errors)
        )
    roots = data.get("prune_roots")
    registry = SchemaRegistry(
        prune_roots=None
        if roots is None
        else (PruneRoot(r["class"], r.get("path")) for r in roots)
    )
    for sig, body in data["classes"].items():
        body = body or {}
        fields = tuple(
            sorted(
                (
                    FieldLayout(
                        offset=f["offset"],
                        width=f.get("width", 4),
                        kind=f.get("kind", "address"),
                        external=bool(f.get("external", False)),
                        name=str(f.get("name", "")),
                    )
                    for f in body.get("fields", [])
                ),
                key=lambda f: f.offset,
            )
        )
        registry.register(
            ClassSchema(
                signature=sig,
                fields=fields,
                alignment=body.get("alignment", 1),
            )
        )
    return registry


def registry_to_dict(registry: SchemaRegistry) -> dict[str, Any]:
    classes: dict[str, Any] = {}
    for schema in registry:
        classes[schema.signature] = {
            "alignment": schema.alignment,
            "fields": [
                {
                    "offset": f.offset,
                    "width": f.width,
                    "kind": f.kind,
                    "external": f.external,
                    "name": f.name,
                }
                for f in schema.fields
            ],
        }
    return {
        "registry_format": 1,
        "classes": classes,
        "prune_roots": [
            {"class": r.tag_class, **({"path": r.path} if r.path is not None else {})}
            for r in registry.prune_roots
        ],
    }


__all__ = ["load_registry", "registry_from_dict", "registry_to_dict"]
