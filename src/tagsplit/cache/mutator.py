"""Insert/remove operations on a TagGraph.

Every operation validates completely before touching the graph, so a
failure leaves the graph exactly as it was. Operations hold the graph lock
for their whole duration.

Tag ids are never handed out twice for one graph. Fresh ids come from a
monotonic ordinal counter and removed ids stay retired; survivors are
never renumbered.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from ..logging import get_logger
from ..schema.models import SchemaRegistry
from .constants import MAX_TAGS, NULL_TAG_ID
from .errors import (
    DanglingReference,
    DuplicateTagId,
    DuplicateTagPath,
    OffsetOutOfRange,
    TagInUse,
    TagLimitExceeded,
)
from .graph import TagGraph, check_reference, symbolic_references
from .model import Reference, Tag, TagRecord
from .planner import encode_path

__all__ = ["NewTag", "Mutator"]


@dataclass(slots=True)
class NewTag:
    """A tag to insert. ``payload`` holds symbolic placeholders.

    Without explicit ``references`` they are read from the placeholders at
    the class schema's reference fields. Give ``tag_id`` (usually from
    :meth:`Mutator.allocate_id`) when other tags of the same batch point at
    this one.
    """

    tag_class: str
    path: str
    payload: bytes = b""
    tag_id: Optional[int] = None
    references: Optional[Sequence[Reference]] = None
    parent_classes: Tuple[Optional[str], Optional[str]] = (None, None)
    indexed: bool = False
    resource_index: Optional[int] = None


def _explicit_references(
    item: NewTag, known: Set[int]
) -> Tuple[Reference, ...]:
    refs = sorted(item.references or (), key=lambda r: r.offset)
    for r in refs:
        if r.offset < 0 or r.end > len(item.payload):
            raise OffsetOutOfRange(
                f"Reference at {r.offset:#x} beyond payload of {item.path!r}",
                {"offset": r.offset, "size": len(item.payload)},
            )
        if r.target is not None and r.target not in known:
            raise DanglingReference(
                f"{item.path!r} references unknown tag {r.target:08x}",
                {"target": f"{r.target:08x}"},
            )
    return tuple(refs)


class Mutator:
    def __init__(self, graph: TagGraph, registry: SchemaRegistry) -> None:
        self.graph = graph
        self.registry = registry

    def allocate_id(self) -> int:
        with self.graph.lock:
            return self.graph.allocate_id()

    # Insert ------------------------------------------------------------------
    def insert(
        self,
        tag_class: str,
        path: str,
        payload: bytes,
        *,
        tag_id: Optional[int] = None,
        references: Optional[Sequence[Reference]] = None,
        parent_classes: Tuple[Optional[str], Optional[str]] = (None, None),
        indexed: bool = False,
        resource_index: Optional[int] = None,
    ) -> int:
        return self.insert_batch(
            [
                NewTag(
                    tag_class=tag_class,
                    path=path,
                    payload=payload,
                    tag_id=tag_id,
                    references=references,
                    parent_classes=parent_classes,
                    indexed=indexed,
                    resource_index=resource_index,
                )
            ]
        )[0]

    def insert_record(self, record: TagRecord) -> int:
        """Insert a standalone record; a null record id gets a fresh one."""
        return self.insert(
            record.tag_class or "",
            record.path,
            record.payload,
            tag_id=None if record.tag_id == NULL_TAG_ID else record.tag_id,
            parent_classes=(record.classes[1], record.classes[2]),
            indexed=record.indexed,
            resource_index=record.resource_index,
        )

    def insert_batch(self, new_tags: Iterable[NewTag]) -> List[int]:
        """Insert several tags atomically; they may reference each other.

        Ids for tags without one are planned before anything is staged, so
        they never collide with explicit ids of the same batch, and running
        out of ids leaves the graph as it was.
        """
        items = list(new_tags)
        graph = self.graph
        with graph.lock:
            if len(graph) + len(items) > MAX_TAGS:
                raise TagLimitExceeded(
                    f"Inserting {len(items)} tag(s) exceeds {MAX_TAGS}",
                    {"count": len(graph), "inserting": len(items)},
                )
            known: Set[int] = set(graph.ids())
            for item in items:
                if item.tag_id is None:
                    continue
                if (
                    item.tag_id == NULL_TAG_ID
                    or item.tag_id in known
                    or graph.is_taken(item.tag_id)
                ):
                    raise DuplicateTagId(
                        f"Tag id {item.tag_id:08x} is already in use",
                        {"tag_id": f"{item.tag_id:08x}", "path": item.path},
                    )
                known.add(item.tag_id)
            self._check_paths(items)

            fresh = iter(
                graph.peek_ids(sum(1 for i in items if i.tag_id is None), exclude=known)
            )
            ids = [
                item.tag_id if item.tag_id is not None else next(fresh)
                for item in items
            ]
            known.update(ids)
            staged = [
                self._stage(item, new_id, known) for item, new_id in zip(items, ids)
            ]

            merged: Dict[int, Tag] = {t.tag_id: t for t in graph}
            merged.update((t.tag_id, t) for t in staged)
            for t in staged:
                for ref in t.references:
                    check_reference(merged, t.tag_id, ref)

            for t in staged:
                graph._add(t)
        get_logger().debug(
            "Inserted %d tag(s): %s", len(ids), ", ".join(f"{i:08x}" for i in ids)
        )
        return ids

    def _check_paths(self, items: Sequence[NewTag]) -> None:
        seen: Set[Tuple[str, str]] = set()
        for item in items:
            key = (item.tag_class, item.path)
            if key in seen or self.graph.find(item.path, item.tag_class) is not None:
                raise DuplicateTagPath(
                    f"A {item.tag_class} tag already exists at {item.path!r}",
                    {"class": item.tag_class, "path": item.path},
                )
            seen.add(key)

    def _stage(self, item: NewTag, tag_id: int, known: Set[int]) -> Tag:
        schema = self.registry.lookup(item.tag_class)
        encode_path(item.path)
        classes = (item.tag_class, *item.parent_classes)
        if item.indexed:
            if item.payload or item.references:
                raise ValueError(f"Indexed tag {item.path!r} cannot carry a payload")
            if item.resource_index is None:
                raise ValueError(f"Indexed tag {item.path!r} needs a resource index")
            refs: Tuple[Reference, ...] = ()
        elif item.references is not None:
            refs = _explicit_references(item, known)
        else:
            refs = symbolic_references(
                TagRecord(tag_id, classes, item.path, bytes(item.payload)),
                schema,
                (),
                known,
            )
        return Tag(
            tag_id=tag_id,
            classes=classes,  # type: ignore[arg-type]
            path=item.path,
            data=bytes(item.payload),
            references=refs,
            indexed=item.indexed,
            resource_index=item.resource_index if item.indexed else None,
        )

    def import_tags(self, source: TagGraph, tag_id: int) -> List[int]:
        """Copy ``tag_id`` from ``source`` along with every dependency missing here.

        Dependencies are matched by class and path: a tag already present is
        reused rather than copied. Returns the ids of the copied tags, the
        requested one first. The copy is one atomic batch.
        """
        graph = self.graph
        with graph.lock:
            root = source.get(tag_id)
            if graph.find(root.path, root.tag_class) is not None:
                raise DuplicateTagPath(
                    f"A {root.tag_class} tag already exists at {root.path!r}",
                    {"class": root.tag_class, "path": root.path},
                )
            mapping: Dict[int, int] = {}
            copied: List[Tag] = []
            seen: Set[int] = set()
            worklist = [root.tag_id]
            while worklist:
                current = source.get(worklist.pop())
                if current.tag_id in seen:
                    continue
                seen.add(current.tag_id)
                existing = graph.find(current.path, current.tag_class)
                if existing is not None:
                    mapping[current.tag_id] = existing.tag_id
                    continue
                copied.append(current)
                worklist.extend(current.targets() - seen)
            new_ids = graph.peek_ids(len(copied))
            mapping.update((t.tag_id, new_id) for t, new_id in zip(copied, new_ids))
            ids = self.insert_batch(_imported(t, mapping) for t in copied)
        get_logger().info(
            "Imported %s with %d dependency tag(s)", root.path, len(ids) - 1
        )
        return ids

    # Remove ------------------------------------------------------------------
    def remove(self, tag_id: int, *, cascade: bool = False) -> List[int]:
        """Remove ``tag_id``; returns the removed ids in index order.

        Without ``cascade`` a tag still referenced by another tag raises
        :class:`TagInUse`. With it, every tag that transitively references
        ``tag_id`` goes too, followed by the tags left with no referrers
        once those are gone.
        """
        graph = self.graph
        with graph.lock:
            graph.get(tag_id)
            reverse = graph.reverse_index()
            users = reverse.get(tag_id, set())
            if users and not cascade:
                raise TagInUse(
                    f"Tag {tag_id:08x} is referenced by {len(users)} tag(s)",
                    {
                        "tag_id": f"{tag_id:08x}",
                        "referrers": sorted(f"{u:08x}" for u in users),
                    },
                )
            doomed = {tag_id}
            if cascade:
                doomed = _referrer_closure(tag_id, reverse)
                doomed |= _orphaned_dependencies(graph, doomed, reverse)
            removed = [i for i in graph.ids() if i in doomed]
            for i in removed:
                graph._discard(i)
        get_logger().debug(
            "Removed %d tag(s): %s", len(removed), ", ".join(f"{i:08x}" for i in removed)
        )
        return removed

    def prune(self, roots: Optional[Iterable[int]] = None) -> List[int]:
        """Remove every tag not reachable from ``roots``.

        By default the roots are the principal tag and every tag the
        registry lists in its prune roots.
        """
        graph = self.graph
        with graph.lock:
            if roots is None:
                roots = self.default_roots()
                if not roots:
                    raise ValueError(
                        "No roots given and the cache has no principal or prune-root tag"
                    )
            reachable: Set[int] = set()
            worklist = [graph.get(r).tag_id for r in roots]
            while worklist:
                current = worklist.pop()
                if current in reachable:
                    continue
                reachable.add(current)
                worklist.extend(graph.get(current).targets() - reachable)
            removed = [i for i in graph.ids() if i not in reachable]
            for i in removed:
                graph._discard(i)
        get_logger().debug("Pruned %d unreachable tag(s)", len(removed))
        return removed

    def default_roots(self) -> List[int]:
        graph = self.graph
        principal = graph.info.principal_tag
        return [
            t.tag_id
            for t in graph
            if t.tag_id == principal or self.registry.is_prune_root(t.tag_class, t.path)
        ]


def _imported(tag: Tag, mapping: Dict[int, int]) -> NewTag:
    parents = (tag.classes[1], tag.classes[2])
    if tag.indexed:
        return NewTag(
            tag.tag_class or "",
            tag.path,
            tag_id=mapping[tag.tag_id],
            parent_classes=parents,
            indexed=True,
            resource_index=tag.resource_index,
        )
    return NewTag(
        tag.tag_class or "",
        tag.path,
        tag.data,
        tag_id=mapping[tag.tag_id],
        references=[
            r if r.target is None else replace(r, target=mapping[r.target])
            for r in tag.references
        ],
        parent_classes=parents,
    )


def _referrer_closure(tag_id: int, reverse: Dict[int, Set[int]]) -> Set[int]:
    closure = {tag_id}
    worklist = [tag_id]
    while worklist:
        current = worklist.pop()
        for source in reverse.get(current, ()):
            if source not in closure:
                closure.add(source)
                worklist.append(source)
    return closure


def _orphaned_dependencies(
    graph: TagGraph, doomed: Set[int], reverse: Dict[int, Set[int]]
) -> Set[int]:
    """Tags whose every referrer is being removed, found transitively."""
    principal = graph.info.principal_tag
    orphans: Set[int] = set()
    gone = set(doomed)
    worklist = [t for d in doomed for t in graph.get(d).targets()]
    while worklist:
        candidate = worklist.pop()
        if candidate in gone or candidate == principal:
            continue
        if reverse.get(candidate, set()) <= gone:
            orphans.add(candidate)
            gone.add(candidate)
            worklist.extend(graph.get(candidate).targets())
    return orphans
