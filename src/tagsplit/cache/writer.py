"""Binary writer emitting a cache file from a tag graph and its CachePlan.

The writer performs no layout math of its own: offsets, addresses and sizes
come from the plan, and every section write is checked against it. Any
divergence raises instead of producing a subtly corrupt file.

Emission order inside the tag data block is: tag data header, index, path
table, payloads. The file header is written last, once the checksum over
everything after it is known, and the finished buffer is re-read by the
strict reader before it is handed out.
"""

from __future__ import annotations

import io
from typing import Dict, Optional, Sequence

from ..logging import get_logger
from ..reporting import get_reporter
from ..schema.models import ADDRESS, SchemaRegistry
from .constants import HEADER_SIZE, NULL_TAG_ID
from .errors import CacheError, OffsetOutOfRange, internal_error
from .graph import TagGraph
from .model import Tag
from .packers import (
    compute_checksum,
    encode_classes,
    pack_header,
    pack_index_entry,
    pack_tag_data_header,
    write_uint,
)
from .planner import CachePlan, compute_cache_plan, encode_path
from .reader import read_cache

__all__ = ["fixup_payload", "write_cache"]


def _pad_to(f, target_offset: int) -> None:
    """Write zero padding until file position reaches ``target_offset``."""
    pos = f.tell()
    if pos > target_offset:
        raise RuntimeError(
            f"Writer position {pos} surpassed planned offset {target_offset}"
        )
    if pos < target_offset:
        f.write(b"\x00" * (target_offset - pos))


def fixup_payload(tag: Tag, addresses: Dict[int, int]) -> bytes:
    """Return ``tag.data`` with every reference field set to its final value."""
    buf = bytearray(tag.data)
    for ref in tag.references:
        if ref.target is None:
            value = ref.external
        elif ref.kind == ADDRESS:
            value = addresses[ref.target] + ref.addend
        else:
            value = ref.target
        if value is None or value >= 1 << (8 * ref.width):
            raise OffsetOutOfRange(
                f"Value for field {ref.offset:#x} of {tag.tag_id:08x} does not fit {ref.width} bytes",
                {"tag_id": f"{tag.tag_id:08x}", "offset": ref.offset, "value": value},
            )
        write_uint(buf, ref.offset, ref.width, value)
    return bytes(buf)


def _write_index(f, graph: TagGraph, plan: CachePlan) -> None:
    _pad_to(f, plan.region("index").offset)
    for tag_id in plan.index_order:
        t = graph.get(tag_id)
        if t.indexed:
            data_address = t.resource_index or 0
            size = 0
        else:
            tp = plan.tag(tag_id)
            data_address = tp.address
            size = tp.size
        f.write(
            pack_index_entry(
                encode_classes(t.classes),
                tag_id,
                plan.path_addresses[tag_id],
                data_address,
                t.indexed,
                size,
            )
        )


def _write_paths(f, graph: TagGraph, plan: CachePlan) -> None:
    region = plan.region("paths")
    _pad_to(f, region.offset)
    for tag_id in plan.index_order:
        expected = HEADER_SIZE + plan.path_addresses[tag_id] - plan.base_address
        if f.tell() != expected:
            raise RuntimeError(
                f"Path of {tag_id:08x} at {f.tell()} but planned at {expected}"
            )
        f.write(encode_path(graph.get(tag_id).path))
    _pad_to(f, region.offset + region.size)


def _write_payloads(f, plan: CachePlan, payloads: Sequence[bytes]) -> None:
    rep = get_reporter()
    rep.start_task("write.payloads", "Payloads", total=len(plan.tags))
    written = 0
    for tp, data in zip(plan.tags, payloads):
        _pad_to(f, tp.offset)
        if len(data) != tp.size:
            raise RuntimeError(
                f"Payload size mismatch for {tp.tag_id:08x}: plan={tp.size} actual={len(data)}"
            )
        f.write(data)
        written += len(data)
        rep.advance("write.payloads", current_item=tp.path)
    rep.end_task("write.payloads", tags=len(plan.tags), bytes=written)


def write_cache(
    graph: TagGraph,
    registry: SchemaRegistry,
    order: Optional[Sequence[int]] = None,
) -> bytes:
    """Lay out, fix up and emit ``graph`` as cache file bytes."""
    with graph.lock:
        graph.validate()
        plan = compute_cache_plan(graph, registry, order)
        addresses = {tp.tag_id: tp.address for tp in plan.tags}
        payloads = [fixup_payload(graph.get(tp.tag_id), addresses) for tp in plan.tags]

        f = io.BytesIO()
        f.write(b"\x00" * HEADER_SIZE)
        _pad_to(f, plan.region("tag_data_header").offset)
        principal = graph.info.principal_tag
        f.write(
            pack_tag_data_header(
                plan.index_address,
                NULL_TAG_ID if principal is None else principal,
                graph.info.random_seed,
                len(plan.index_order),
            )
        )
        _write_index(f, graph, plan)
        _write_paths(f, graph, plan)
        _write_payloads(f, plan, payloads)
        if f.tell() != plan.file_size:
            raise RuntimeError(
                f"File size mismatch: plan={plan.file_size} written={f.tell()}"
            )

        buf = bytearray(f.getvalue())
        checksum = compute_checksum(memoryview(buf)[HEADER_SIZE:], plan.checksum)
        buf[:HEADER_SIZE] = pack_header(
            version=plan.version,
            file_size=plan.file_size,
            tag_data_offset=plan.tag_data_offset,
            tag_data_size=plan.tag_data_size,
            name=graph.info.name,
            build=graph.info.build,
            map_type=graph.info.map_type,
            checksum=checksum,
        )
        out = bytes(buf)

    try:
        read_cache(out)
    except CacheError as e:
        raise internal_error(
            "Reassembled cache failed its own read-back check", e.to_dict()
        ) from e
    get_logger().debug(
        "Wrote cache: bytes=%d tags=%d padding=%d checksum=%08x",
        len(out),
        len(plan.index_order),
        plan.padding.total,
        checksum,
    )
    return out
