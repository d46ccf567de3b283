"""Graph -> standalone records + manifest.

Each record carries the tag payload with every reference field replaced by
the target tag id (little-endian, in the field width). External references
keep their raw value. The pass is read-only on the graph and deterministic.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import List

from ..logging import get_logger
from ..manifest import Manifest, ManifestEdge, ManifestTag
from .graph import TagGraph
from .model import Tag, TagRecord
from .packers import write_uint

__all__ = ["Disassociation", "symbolic_payload", "disassociate"]


@dataclass(slots=True)
class Disassociation:
    records: List[TagRecord]
    manifest: Manifest


def symbolic_payload(tag: Tag) -> bytes:
    buf = bytearray(tag.data)
    for ref in tag.references:
        value = ref.external if ref.target is None else ref.target
        write_uint(buf, ref.offset, ref.width, value)
    return bytes(buf)


def disassociate(graph: TagGraph) -> Disassociation:
    with graph.lock:
        tags = list(graph)
        records = [
            TagRecord(
                tag_id=t.tag_id,
                classes=t.classes,
                path=t.path,
                payload=symbolic_payload(t),
                indexed=t.indexed,
                resource_index=t.resource_index,
            )
            for t in tags
        ]
        manifest = Manifest(
            cache=replace(graph.info),
            tags=[
                ManifestTag(
                    tag_id=t.tag_id,
                    classes=t.classes,
                    path=t.path,
                    indexed=t.indexed,
                    resource_index=t.resource_index,
                )
                for t in tags
            ],
            layout=graph.layout,
            edges=[
                ManifestEdge(
                    source=t.tag_id,
                    offset=r.offset,
                    width=r.width,
                    kind=r.kind,
                    target=r.target,
                    addend=r.addend,
                    external=r.external,
                )
                for t in tags
                for r in t.references
            ],
        )
    get_logger().debug(
        "Disassociated %d tag(s), %d edge(s)", len(records), len(manifest.edges)
    )
    return Disassociation(records=records, manifest=manifest)
