"""Layout planning for reassembly.

:func:`compute_cache_plan` walks the fixed sections of the tag data block
(tag data header, index, path table) and then every payload in layout order,
rounding each payload up to its class alignment. The result is an immutable
:class:`CachePlan`; the writer consumes it and refuses to diverge from it.

All layout state lives in a :class:`_LayoutContext` created per call.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from ..schema.models import SchemaRegistry
from .constants import (
    HEADER_SIZE,
    INDEX_ENTRY_SIZE,
    MAX_FILE_SIZE,
    MAX_TAGS,
    PATH_TABLE_ALIGNMENT,
    TAG_DATA_HEADER_SIZE,
    format_for,
)
from .errors import CorruptHeader, OffsetOutOfRange, TagLimitExceeded
from .graph import TagGraph

__all__ = [
    "RegionPlan",
    "TagPlan",
    "PaddingStats",
    "CachePlan",
    "compute_cache_plan",
    "to_plan_dict",
    "encode_path",
]


@dataclass(frozen=True, slots=True)
class RegionPlan:
    name: str
    offset: int
    size: int
    alignment: int
    padding_before: int


@dataclass(frozen=True, slots=True)
class TagPlan:
    tag_id: int
    tag_class: Optional[str]
    path: str
    offset: int
    address: int
    size: int
    alignment: int
    padding_before: int


@dataclass(frozen=True, slots=True)
class PaddingStats:
    total: int
    by_section: Dict[str, int]


@dataclass(frozen=True, slots=True)
class CachePlan:
    version: int
    base_address: int
    checksum: str
    regions: List[RegionPlan]
    tags: List[TagPlan]
    index_order: List[int]
    path_addresses: Dict[int, int]
    padding: PaddingStats
    tag_data_offset: int
    tag_data_size: int
    index_address: int
    file_size: int
    _by_id: Dict[int, TagPlan] = field(default_factory=dict, repr=False, compare=False)

    def tag(self, tag_id: int) -> TagPlan:
        return self._by_id[tag_id]

    def region(self, name: str) -> RegionPlan:
        for r in self.regions:
            if r.name == name:
                return r
        raise KeyError(name)


class _LayoutContext:
    """Running cursor (block offset) plus padding accounting."""

    def __init__(self) -> None:
        self.cursor = 0
        self.padding: Dict[str, int] = {}

    def align(self, alignment: int, label: str) -> int:
        pad = (alignment - (self.cursor % alignment)) % alignment
        if pad:
            self.padding[label] = self.padding.get(label, 0) + pad
            self.cursor += pad
        return pad

    def take(self, size: int) -> int:
        start = self.cursor
        self.cursor += size
        return start


def encode_path(path: str) -> bytes:
    raw = path.encode("latin-1")
    if b"\x00" in raw:
        raise ValueError(f"Tag path contains NUL: {path!r}")
    return raw + b"\x00"


def _layout_order(graph: TagGraph, order: Optional[Sequence[int]]) -> List[int]:
    default = graph.layout
    if order is None:
        return default
    order = list(order)
    if len(order) != len(default) or set(order) != set(default):
        raise ValueError(
            "Layout order must be a permutation of the payload-carrying tag ids"
        )
    return order


def compute_cache_plan(
    graph: TagGraph,
    registry: SchemaRegistry,
    order: Optional[Sequence[int]] = None,
) -> CachePlan:
    with graph.lock:
        fmt = format_for(graph.info.version)
        if fmt is None:
            raise CorruptHeader(
                f"Unknown cache version {graph.info.version:#x}",
                {"version": graph.info.version},
            )
        tags = list(graph)
        if len(tags) > MAX_TAGS:
            raise TagLimitExceeded(
                f"{len(tags)} tags exceed the limit of {MAX_TAGS}", {"count": len(tags)}
            )
        layout = _layout_order(graph, order)
        base = fmt.base_address
        ctx = _LayoutContext()
        regions: List[RegionPlan] = [RegionPlan("header", 0, HEADER_SIZE, 1, 0)]

        start = ctx.take(TAG_DATA_HEADER_SIZE)
        regions.append(
            RegionPlan("tag_data_header", HEADER_SIZE + start, TAG_DATA_HEADER_SIZE, 1, 0)
        )
        index_start = ctx.take(len(tags) * INDEX_ENTRY_SIZE)
        regions.append(
            RegionPlan("index", HEADER_SIZE + index_start, len(tags) * INDEX_ENTRY_SIZE, 1, 0)
        )

        paths_start = ctx.cursor
        path_addresses: Dict[int, int] = {}
        for t in tags:
            path_addresses[t.tag_id] = base + ctx.take(len(encode_path(t.path)))
        ctx.align(PATH_TABLE_ALIGNMENT, "paths")
        regions.append(
            RegionPlan(
                "paths",
                HEADER_SIZE + paths_start,
                ctx.cursor - paths_start,
                PATH_TABLE_ALIGNMENT,
                0,
            )
        )

        payloads_start = ctx.cursor
        planned: List[TagPlan] = []
        for tag_id in layout:
            t = graph.get(tag_id)
            alignment = registry.alignment_of(t.tag_class)
            pad = ctx.align(alignment, "payloads")
            offset = ctx.take(t.size)
            planned.append(
                TagPlan(
                    tag_id=tag_id,
                    tag_class=t.tag_class,
                    path=t.path,
                    offset=HEADER_SIZE + offset,
                    address=base + offset,
                    size=t.size,
                    alignment=alignment,
                    padding_before=pad,
                )
            )
        regions.append(
            RegionPlan("payloads", HEADER_SIZE + payloads_start, ctx.cursor - payloads_start, 1, 0)
        )

        tag_data_size = ctx.cursor
        file_size = HEADER_SIZE + tag_data_size
        if file_size > MAX_FILE_SIZE or base + tag_data_size > 0xFFFFFFFF:
            raise OffsetOutOfRange(
                "Cache does not fit the 32-bit address space",
                {"file_size": file_size, "base_address": f"{base:08x}"},
            )
        padding = PaddingStats(sum(ctx.padding.values()), dict(ctx.padding))
        return CachePlan(
            version=fmt.version,
            base_address=base,
            checksum=fmt.checksum,
            regions=regions,
            tags=planned,
            index_order=[t.tag_id for t in tags],
            path_addresses=path_addresses,
            padding=padding,
            tag_data_offset=HEADER_SIZE,
            tag_data_size=tag_data_size,
            index_address=base + index_start,
            file_size=file_size,
            _by_id={p.tag_id: p for p in planned},
        )


def to_plan_dict(plan: CachePlan) -> Dict[str, Any]:
    return {
        "version": plan.version,
        "base_address": f"{plan.base_address:08x}",
        "checksum": plan.checksum,
        "file_size": plan.file_size,
        "tag_data": {"offset": plan.tag_data_offset, "size": plan.tag_data_size},
        "regions": [
            {
                "name": r.name,
                "offset": r.offset,
                "size": r.size,
                "alignment": r.alignment,
                "padding_before": r.padding_before,
            }
            for r in plan.regions
        ],
        "tags": [
            {
                "id": f"{t.tag_id:08x}",
                "class": t.tag_class,
                "path": t.path,
                "offset": t.offset,
                "address": f"{t.address:08x}",
                "size": t.size,
                "alignment": t.alignment,
                "padding_before": t.padding_before,
            }
            for t in plan.tags
        ],
        "padding": {
            "total": plan.padding.total,
            "by_section": dict(plan.padding.by_section),
        },
        "statistics": {
            "tag_count": len(plan.index_order),
            "payload_count": len(plan.tags),
            "payload_bytes": sum(t.size for t in plan.tags),
        },
    }
