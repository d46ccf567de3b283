"""Split/merge round trips on the fixture caches."""

from dataclasses import replace
import struct

import pytest

from cache_builder import (
    BITMAP,
    ENGINE_ADDRESS,
    INDEXED_BITMAP,
    MODEL,
    SCENARIO,
    SHADER,
    STANDARD_TAGS,
    STRINGS,
    standard_cache,
    tag_id,
)
from tagsplit.cache.disassociator import disassociate
from tagsplit.cache.errors import (
    DanglingReference,
    DuplicateTagId,
    MissingTagRecord,
)
from tagsplit.cache.graph import build_graph, graph_from_records
from tagsplit.cache.reader import read_cache
from tagsplit.cache.reassembler import reassemble, verify_cache


def _split(data: bytes, registry):
    return disassociate(build_graph(read_cache(data), registry))


def _record(exported, ordinal):
    return next(r for r in exported.records if r.tag_id == tag_id(ordinal))


def test_reassemble_is_byte_exact(cache_bytes: bytes, registry):
    exported = _split(cache_bytes, registry)
    assert reassemble(exported.manifest, exported.records, registry) == cache_bytes


def test_reassemble_xbox_is_byte_exact(registry):
    data = standard_cache(version=0x5, name="xbox", map_type=1)
    exported = _split(data, registry)
    out = reassemble(exported.manifest, exported.records, registry, verify=True)
    assert out == data


def test_disassociation_is_deterministic(cache_bytes: bytes, registry):
    first = _split(cache_bytes, registry)
    second = _split(cache_bytes, registry)
    assert first.records == second.records
    assert first.manifest == second.manifest


def test_placeholders_hold_target_ids(cache_bytes: bytes, registry):
    scnr = _record(_split(cache_bytes, registry), SCENARIO).payload
    assert struct.unpack_from("<I", scnr, 0x00)[0] == tag_id(MODEL)
    assert struct.unpack_from("<I", scnr, 0x04)[0] == tag_id(SHADER)
    assert struct.unpack_from("<I", scnr, 0x08)[0] == ENGINE_ADDRESS
    assert struct.unpack_from("<Q", scnr, 0x10)[0] == tag_id(SCENARIO)
    # null fields stay null
    assert struct.unpack_from("<I", scnr, 0x18)[0] == 0xFFFFFFFF
    assert struct.unpack_from("<I", scnr, 0x1C)[0] == 0


def test_records_are_address_independent(cache_bytes: bytes, registry):
    exported = _split(cache_bytes, registry)
    reordered = [tag_id(i) for i in (STRINGS, BITMAP, MODEL, SHADER, SCENARIO)]
    out = reassemble(exported.manifest, exported.records, registry, order=reordered)
    assert out != cache_bytes
    again = _split(out, registry)
    assert again.records == exported.records
    assert again.manifest.layout == reordered
    assert again.manifest.edges == exported.manifest.edges


def test_reassembled_addresses_follow_new_layout(cache_bytes: bytes, registry):
    exported = _split(cache_bytes, registry)
    reordered = [tag_id(i) for i in (STRINGS, BITMAP, MODEL, SHADER, SCENARIO)]
    out = reassemble(exported.manifest, exported.records, registry, order=reordered)
    graph = verify_cache(out, registry)
    parsed = read_cache(out)
    base = parsed.format.base_address - parsed.header.tag_data_offset
    offsets = {e.tag_id: e.payload_offset for e, _ in parsed.entries}
    scnr = graph.get(tag_id(SCENARIO)).data
    assert struct.unpack_from("<I", scnr, 0)[0] == base + offsets[tag_id(MODEL)]
    model = graph.get(tag_id(MODEL)).data
    assert struct.unpack_from("<I", model, 0)[0] == base + offsets[tag_id(SHADER)] + 4


def test_edited_payload_bytes_survive(cache_bytes: bytes, registry):
    exported = _split(cache_bytes, registry)
    strings = _record(exported, STRINGS)
    records = [
        replace(r, payload=b"HELLO") if r is strings else r for r in exported.records
    ]
    out = reassemble(exported.manifest, records, registry)
    parsed = read_cache(out)
    entry, payload = parsed.entries[STRINGS]
    assert bytes(payload) == b"HELLO"
    assert len(out) == len(cache_bytes)


def test_grown_payload_moves_followers(cache_bytes: bytes, registry):
    exported = _split(cache_bytes, registry)
    scnr = _record(exported, SCENARIO)
    records = [
        replace(r, payload=r.payload + b"\x00" * 0x40) if r is scnr else r
        for r in exported.records
    ]
    out = reassemble(exported.manifest, records, registry, verify=True)
    graph = build_graph(read_cache(out), registry)
    assert graph.get(tag_id(SCENARIO)).size == 0x34 + 0x40
    again = disassociate(graph)
    assert again.records == records
    assert again.manifest == exported.manifest


def test_indexed_tag_round_trips(cache_bytes: bytes, registry):
    exported = _split(cache_bytes, registry)
    rec = _record(exported, INDEXED_BITMAP)
    assert rec.indexed
    assert rec.payload == b""
    assert rec.resource_index == 3
    assert tag_id(INDEXED_BITMAP) not in exported.manifest.layout


def test_missing_record_rejected(cache_bytes: bytes, registry):
    exported = _split(cache_bytes, registry)
    records = [r for r in exported.records if r.tag_id != tag_id(BITMAP)]
    with pytest.raises(MissingTagRecord):
        reassemble(exported.manifest, records, registry)


def test_duplicate_record_rejected(cache_bytes: bytes, registry):
    exported = _split(cache_bytes, registry)
    records = exported.records + [_record(exported, STRINGS)]
    with pytest.raises(DuplicateTagId):
        reassemble(exported.manifest, records, registry)


def test_placeholder_to_unknown_tag_rejected(cache_bytes: bytes, registry):
    exported = _split(cache_bytes, registry)
    without_bitmap = replace(
        exported.manifest,
        tags=[t for t in exported.manifest.tags if t.tag_id != tag_id(BITMAP)],
        layout=[i for i in exported.manifest.layout if i != tag_id(BITMAP)],
    )
    records = [r for r in exported.records if r.tag_id != tag_id(BITMAP)]
    with pytest.raises(DanglingReference):
        reassemble(without_bitmap, records, registry)


def test_unlisted_record_is_ignored(cache_bytes: bytes, registry, caplog):
    exported = _split(cache_bytes, registry)
    extra = replace(_record(exported, STRINGS), tag_id=0x0BAD0BAD)
    out = reassemble(exported.manifest, exported.records + [extra], registry)
    assert out == cache_bytes
    assert any("not listed in manifest" in r.getMessage() for r in caplog.records)


def test_layout_with_unknown_tag_rejected(cache_bytes: bytes, registry):
    exported = _split(cache_bytes, registry)
    manifest = replace(exported.manifest, layout=exported.manifest.layout + [0x0BAD0BAD])
    with pytest.raises(MissingTagRecord):
        graph_from_records(manifest, exported.records, registry)


def test_layout_omissions_are_appended(cache_bytes: bytes, registry):
    exported = _split(cache_bytes, registry)
    layout = [i for i in exported.manifest.layout if i != tag_id(SCENARIO)]
    graph = graph_from_records(
        replace(exported.manifest, layout=layout), exported.records, registry
    )
    assert graph.layout == layout + [tag_id(SCENARIO)]


def test_principal_without_record_rejected(cache_bytes: bytes, registry):
    exported = _split(cache_bytes, registry)
    manifest = exported.manifest
    manifest = replace(manifest, cache=replace(manifest.cache, principal_tag=0x0BAD0BAD))
    with pytest.raises(MissingTagRecord):
        graph_from_records(manifest, exported.records, registry)


def test_graph_from_records_matches_built_graph(cache_bytes: bytes, registry):
    built = build_graph(read_cache(cache_bytes), registry)
    exported = disassociate(built)
    rebuilt = graph_from_records(exported.manifest, exported.records, registry)
    assert [t.references for t in rebuilt] == [t.references for t in built]
    assert rebuilt.layout == built.layout
    assert rebuilt.info == built.info
    assert len(rebuilt) == len(STANDARD_TAGS)
