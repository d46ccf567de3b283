"""Manifest + standalone records -> cache file bytes."""

from __future__ import annotations

from typing import Iterable, Optional, Sequence

from ..manifest import Manifest
from ..schema.models import SchemaRegistry
from .graph import TagGraph, build_graph, graph_from_records
from .model import TagRecord
from .reader import read_cache
from .writer import write_cache

__all__ = ["reassemble", "verify_cache"]


def verify_cache(data: bytes, registry: SchemaRegistry) -> TagGraph:
    """Re-read ``data`` strictly and rebuild its graph; raises on any defect."""
    return build_graph(read_cache(data), registry)


def reassemble(
    manifest: Manifest,
    records: Iterable[TagRecord],
    registry: SchemaRegistry,
    *,
    order: Optional[Sequence[int]] = None,
    verify: bool = False,
) -> bytes:
    """Validate the inputs, then lay out, fix up and emit the cache.

    Nothing is laid out until every record and reference checked out, and
    no bytes are returned unless the output passes the strict reader.
    """
    graph = graph_from_records(manifest, records, registry)
    data = write_cache(graph, registry, order)
    if verify:
        verify_cache(data, registry)
    return data
