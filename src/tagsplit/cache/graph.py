"""Tag graph: an arena of tags linked by symbolic references.

Two builders produce a :class:`TagGraph`:

- :func:`build_graph` resolves the raw reference fields of a parsed cache
  against the payload address ranges (binary search) and the tag index.
- :func:`graph_from_records` rebuilds the graph from a manifest and the
  standalone records, reading targets from the placeholder bytes.

Per-tag resolution is a pure function of the tag and read-only lookup
tables; tags are only inserted into the arena once all of them resolved.
"""

from __future__ import annotations

import threading
from bisect import bisect_right
from dataclasses import replace
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Set, Tuple

from ..logging import get_logger
from ..manifest import Manifest, ManifestEdge
from ..schema.models import ADDRESS, TAG_ID, ClassSchema, SchemaRegistry
from .constants import MAX_TAGS
from .errors import (
    DanglingReference,
    DuplicateTagId,
    MissingTagRecord,
    OffsetOutOfRange,
    TagLimitExceeded,
    UnknownTagId,
)
from .model import CacheInfo, Reference, Tag, TagIndexEntry, TagRecord
from .packers import align_up, ordinal_of, read_uint, tag_id_from_ordinal
from .reader import ParsedCache

__all__ = [
    "TagGraph",
    "AddressResolver",
    "build_graph",
    "graph_from_records",
    "null_value",
    "check_reference",
    "symbolic_references",
]


def null_value(kind: str, width: int) -> int:
    """Raw value meaning "no reference" for a field of this kind/width."""
    return (1 << (8 * width)) - 1 if kind == TAG_ID else 0


class TagGraph:
    """All tags of one cache, in index order, plus the payload layout order.

    Mutation goes through :class:`~tagsplit.cache.mutator.Mutator`; ``lock``
    serialises mutators and reassembly of the same graph.
    """

    def __init__(self, info: Optional[CacheInfo] = None) -> None:
        self.info = info if info is not None else CacheInfo()
        self._tags: Dict[int, Tag] = {}
        self._layout: List[int] = []
        self._next_ordinal = 0
        # Ids removed during this session.
        self._retired: Set[int] = set()
        self.lock = threading.RLock()

    # Queries -----------------------------------------------------------------
    def __len__(self) -> int:
        return len(self._tags)

    def __contains__(self, tag_id: object) -> bool:
        return tag_id in self._tags

    def __iter__(self) -> Iterator[Tag]:
        return iter(list(self._tags.values()))

    def get(self, tag_id: int) -> Tag:
        tag = self._tags.get(tag_id)
        if tag is None:
            raise UnknownTagId(f"No tag with id {tag_id:08x}", {"tag_id": f"{tag_id:08x}"})
        return tag

    def ids(self) -> List[int]:
        return list(self._tags)

    @property
    def layout(self) -> List[int]:
        return list(self._layout)

    def edges(self) -> Iterator[Tuple[int, Reference]]:
        for tag in self._tags.values():
            for ref in tag.references:
                yield tag.tag_id, ref

    def reverse_index(self) -> Dict[int, Set[int]]:
        """target id -> ids of other tags referencing it."""
        out: Dict[int, Set[int]] = {}
        for source, ref in self.edges():
            if ref.target is not None and ref.target != source:
                out.setdefault(ref.target, set()).add(source)
        return out

    def referrers(self, tag_id: int) -> Set[int]:
        return {
            source
            for source, ref in self.edges()
            if ref.target == tag_id and source != tag_id
        }

    def find(self, path: str, tag_class: Optional[str] = None) -> Optional[Tag]:
        for tag in self._tags.values():
            if tag.path == path and (tag_class is None or tag.tag_class == tag_class):
                return tag
        return None

    def find_tags(
        self, path: Optional[str] = None, tag_class: Optional[str] = None
    ) -> List[Tag]:
        """Every tag matching ``path`` and ``tag_class``, in index order.

        Either filter may be omitted; omitting both returns every tag.
        """
        return [
            tag
            for tag in self._tags.values()
            if (path is None or tag.path == path)
            and (tag_class is None or tag.tag_class == tag_class)
        ]

    def snapshot(self) -> tuple:
        """Comparable view of everything that ends up in a cache file."""
        return (
            tuple(self._tags.values()),
            tuple(self._layout),
            replace(self.info),
        )

    # Ids ---------------------------------------------------------------------
    def is_taken(self, tag_id: int) -> bool:
        """True for ids in use or removed earlier; neither may be handed out."""
        return tag_id in self._tags or tag_id in self._retired

    def peek_ids(self, count: int, exclude: Iterable[int] = ()) -> List[int]:
        """The ids the next ``count`` allocations would return, skipping
        ``exclude``. Nothing is reserved."""
        skip = set(exclude)
        out: List[int] = []
        ordinal = self._next_ordinal
        while len(out) < count:
            if ordinal >= MAX_TAGS:
                raise TagLimitExceeded(
                    "No tag ids left", {"max_tags": MAX_TAGS, "requested": count}
                )
            tag_id = tag_id_from_ordinal(ordinal)
            ordinal += 1
            if not self.is_taken(tag_id) and tag_id not in skip:
                out.append(tag_id)
        return out

    def allocate_id(self) -> int:
        """Hand out a fresh id; ids are never handed out twice per graph."""
        (tag_id,) = self.peek_ids(1)
        self.reserve_id(tag_id)
        return tag_id

    def reserve_id(self, tag_id: int) -> None:
        self._next_ordinal = max(self._next_ordinal, ordinal_of(tag_id) + 1)

    # Mutation primitives (Mutator and builders only) -------------------------
    def _add(self, tag: Tag) -> None:
        self._tags[tag.tag_id] = tag
        if not tag.indexed:
            self._layout.append(tag.tag_id)
        self.reserve_id(tag.tag_id)

    def _discard(self, tag_id: int) -> Tag:
        tag = self._tags.pop(tag_id)
        self._retired.add(tag_id)
        if tag_id in self._layout:
            self._layout.remove(tag_id)
        if self.info.principal_tag == tag_id:
            self.info.principal_tag = None
        return tag

    def _set_layout(self, order: Sequence[int]) -> None:
        self._layout = list(order)

    # Invariants --------------------------------------------------------------
    def validate(self) -> None:
        """Raise if any reference or the principal tag is unresolvable."""
        principal = self.info.principal_tag
        if principal is not None and principal not in self._tags:
            raise DanglingReference(
                f"Principal tag {principal:08x} is not in the graph",
                {"target": f"{principal:08x}"},
            )
        for source, ref in self.edges():
            check_reference(self._tags, source, ref)


def check_reference(tags: Dict[int, Tag], source: int, ref: Reference) -> None:
    if ref.target is None:
        return
    ctx = {
        "source": f"{source:08x}",
        "offset": ref.offset,
        "target": f"{ref.target:08x}",
    }
    target = tags.get(ref.target)
    if target is None:
        raise DanglingReference(
            f"Tag {source:08x} references missing tag {ref.target:08x}", ctx
        )
    if ref.kind != ADDRESS:
        return
    if target.indexed:
        raise DanglingReference(
            f"Tag {source:08x} points into indexed tag {ref.target:08x}", ctx
        )
    if not 0 <= ref.addend < max(target.size, 1):
        raise OffsetOutOfRange(
            f"Reference addend {ref.addend:#x} beyond payload of {ref.target:08x}",
            {**ctx, "addend": ref.addend, "size": target.size},
        )


# ---------------------------------------------------------------------------
# Building from a parsed cache
# ---------------------------------------------------------------------------


class AddressResolver:
    """Maps absolute addresses to (tag id, addend) by binary search."""

    def __init__(self, ranges: Iterable[Tuple[int, int, int]], ids: Iterable[int]):
        spans = sorted(r for r in ranges if r[1] > r[0])
        self._starts = [s for s, _, _ in spans]
        self._spans = spans
        self._ids = frozenset(ids)

    def by_address(self, address: int) -> Optional[Tuple[int, int]]:
        i = bisect_right(self._starts, address) - 1
        if i < 0:
            return None
        start, end, tag_id = self._spans[i]
        if address >= end:
            return None
        return tag_id, address - start

    def by_id(self, tag_id: int) -> Optional[Tuple[int, int]]:
        return (tag_id, 0) if tag_id in self._ids else None


def _resolve_tag(
    entry: TagIndexEntry,
    payload: memoryview,
    schema: ClassSchema,
    resolver: AddressResolver,
) -> Tag:
    refs: List[Reference] = []
    if not entry.indexed:
        for f in schema.fields:
            if f.end > len(payload):
                raise OffsetOutOfRange(
                    f"Field {f.name or hex(f.offset)} beyond payload of {entry.path!r}",
                    {"tag_id": f"{entry.tag_id:08x}", "offset": f.offset, "size": len(payload)},
                )
            value = read_uint(payload, f.offset, f.width)
            if value == null_value(f.kind, f.width):
                continue
            hit = resolver.by_address(value) if f.kind == ADDRESS else resolver.by_id(value)
            if hit is not None:
                refs.append(Reference(f.offset, f.width, f.kind, hit[0], hit[1]))
            elif f.external:
                refs.append(Reference(f.offset, f.width, f.kind, None, 0, value))
            else:
                raise DanglingReference(
                    f"Unresolvable {f.kind} {value:#x} in {entry.path!r} at {f.offset:#x}",
                    {"tag_id": f"{entry.tag_id:08x}", "offset": f.offset, "value": value},
                )
    return Tag(
        tag_id=entry.tag_id,
        classes=entry.classes,
        path=entry.path,
        data=bytes(payload),
        references=tuple(refs),
        indexed=entry.indexed,
        resource_index=entry.resource_index,
    )


def _check_payload_padding(
    parsed: ParsedCache, by_offset: Sequence[TagIndexEntry], registry: SchemaRegistry
) -> None:
    """Each payload must sit at the first offset its class alignment allows."""
    block_start = parsed.header.tag_data_offset
    cursor = parsed.payloads_offset - block_start
    for e in by_offset:
        expected = align_up(cursor, registry.alignment_of(e.tag_class))
        actual = e.payload_offset - block_start
        if actual != expected:
            raise OffsetOutOfRange(
                f"Payload of {e.path!r} is padded past its class alignment",
                {"tag_id": f"{e.tag_id:08x}", "offset": actual, "expected": expected},
            )
        cursor = expected + e.payload_size
    if cursor != parsed.header.tag_data_size:
        raise OffsetOutOfRange(
            "Tag data block does not end after the last payload",
            {"end": cursor, "size": parsed.header.tag_data_size},
        )


def build_graph(parsed: ParsedCache, registry: SchemaRegistry) -> TagGraph:
    header = parsed.header
    base = parsed.format.base_address - header.tag_data_offset
    resolver = AddressResolver(
        (
            (base + e.payload_offset, base + e.payload_offset + e.payload_size, e.tag_id)
            for e, _ in parsed.entries
            if not e.indexed
        ),
        (e.tag_id for e, _ in parsed.entries),
    )
    tags = [
        _resolve_tag(entry, payload, registry.lookup(entry.tag_class), resolver)
        for entry, payload in parsed.entries
    ]
    graph = TagGraph(
        CacheInfo(
            version=header.version,
            name=header.name,
            build=header.build,
            map_type=header.map_type,
            principal_tag=header.principal_tag,
            random_seed=header.random_seed,
        )
    )
    # Zero-size payloads sharing an offset with a real one were laid out first.
    by_offset = sorted(
        (e for e, _ in parsed.entries if not e.indexed),
        key=lambda e: (e.payload_offset, e.payload_size != 0),
    )
    _check_payload_padding(parsed, by_offset, registry)
    for tag in tags:
        graph._add(tag)
    graph._set_layout([e.tag_id for e in by_offset])
    graph.validate()
    get_logger().debug(
        "Built graph: tags=%d edges=%d", len(graph), sum(1 for _ in graph.edges())
    )
    return graph


# ---------------------------------------------------------------------------
# Building from manifest + records
# ---------------------------------------------------------------------------


def symbolic_references(
    record: TagRecord,
    schema: ClassSchema,
    edges: Sequence[ManifestEdge],
    known: Set[int],
) -> Tuple[Reference, ...]:
    """Read reference targets back out of placeholder bytes.

    Schema fields and manifest edges are both consulted: edges carry addends
    and external raw values, schema fields pick up references added by
    editing a placeholder that was null at split time.
    """
    ctx_id = f"{record.tag_id:08x}"
    if record.indexed:
        if edges:
            raise OffsetOutOfRange(
                f"Manifest lists edges for indexed tag {ctx_id}", {"tag_id": ctx_id}
            )
        return ()
    slots: Dict[int, Tuple[int, str, Optional[ManifestEdge]]] = {
        f.offset: (f.width, f.kind, None) for f in schema.fields
    }
    for e in edges:
        slots[e.offset] = (e.width, e.kind, e)
    refs: List[Reference] = []
    payload = record.payload
    for offset in sorted(slots):
        width, kind, edge = slots[offset]
        if offset < 0 or offset + width > len(payload):
            raise OffsetOutOfRange(
                f"Reference field {offset:#x} beyond payload of {record.path!r}",
                {"tag_id": ctx_id, "offset": offset, "size": len(payload)},
            )
        if edge is not None and edge.target is None:
            refs.append(Reference(offset, width, kind, None, 0, edge.external))
            continue
        value = read_uint(payload, offset, width)
        if value == null_value(kind, width):
            continue
        if value not in known:
            raise DanglingReference(
                f"Tag {ctx_id} references unknown tag {value:08x}",
                {"tag_id": ctx_id, "offset": offset, "target": f"{value:08x}"},
            )
        refs.append(
            Reference(offset, width, kind, value, edge.addend if edge is not None else 0)
        )
    return tuple(refs)


def _index_records(records: Iterable[TagRecord]) -> Dict[int, TagRecord]:
    by_id: Dict[int, TagRecord] = {}
    for rec in records:
        if rec.tag_id in by_id:
            raise DuplicateTagId(
                f"Two records carry tag id {rec.tag_id:08x}",
                {"tag_id": f"{rec.tag_id:08x}", "paths": [by_id[rec.tag_id].path, rec.path]},
            )
        by_id[rec.tag_id] = rec
    return by_id


def _resolve_layout(manifest: Manifest, tags: Dict[int, Tag]) -> List[int]:
    order: List[int] = []
    seen: Set[int] = set()
    for tag_id in manifest.layout:
        if tag_id not in tags:
            raise MissingTagRecord(
                f"Layout lists unknown tag {tag_id:08x}", {"tag_id": f"{tag_id:08x}"}
            )
        if tag_id in seen:
            raise DuplicateTagId(
                f"Layout lists tag {tag_id:08x} twice", {"tag_id": f"{tag_id:08x}"}
            )
        seen.add(tag_id)
        if not tags[tag_id].indexed:
            order.append(tag_id)
    # Payload tags the layout forgot go last, in index order.
    order.extend(i for i, t in tags.items() if not t.indexed and i not in seen)
    return order


def graph_from_records(
    manifest: Manifest, records: Iterable[TagRecord], registry: SchemaRegistry
) -> TagGraph:
    """Validate manifest + records and rebuild the tag graph.

    Raises before building anything: DuplicateTagId, MissingTagRecord,
    UnknownTagClass, OffsetOutOfRange or DanglingReference.
    """
    by_id = _index_records(records)
    known: Set[int] = set()
    for t in manifest.tags:
        if t.tag_id in known:
            raise DuplicateTagId(
                f"Manifest lists tag {t.tag_id:08x} twice", {"tag_id": f"{t.tag_id:08x}"}
            )
        known.add(t.tag_id)
    missing = [f"{i:08x}" for i in manifest.tag_ids() if i not in by_id]
    if missing:
        raise MissingTagRecord(
            f"{len(missing)} manifest tag(s) have no record", {"missing": missing}
        )
    edges = manifest.edges_by_source()
    orphans = [f"{s:08x}" for s in edges if s not in known]
    if orphans:
        raise MissingTagRecord(
            "Manifest edges start at unknown tags", {"missing": orphans}
        )
    principal = manifest.cache.principal_tag
    if principal is not None and principal not in known:
        raise MissingTagRecord(
            f"Principal tag {principal:08x} has no record",
            {"tag_id": f"{principal:08x}"},
        )
    extra = sorted(set(by_id) - known)
    if extra:
        get_logger().warning(
            "Ignoring %d record(s) not listed in manifest: %s",
            len(extra),
            ", ".join(f"{i:08x}" for i in extra),
        )

    tags: Dict[int, Tag] = {}
    for t in manifest.tags:
        rec = by_id[t.tag_id]
        schema = registry.lookup(rec.tag_class)
        tags[t.tag_id] = Tag(
            tag_id=rec.tag_id,
            classes=rec.classes,
            path=rec.path,
            data=bytes(rec.payload),
            references=symbolic_references(rec, schema, edges.get(t.tag_id, ()), known),
            indexed=rec.indexed,
            resource_index=rec.resource_index,
        )
    layout = _resolve_layout(manifest, tags)

    graph = TagGraph(replace(manifest.cache))
    for tag in tags.values():
        graph._add(tag)
    graph._set_layout(layout)
    graph.validate()
    return graph
