import io

import pytest

from cache_builder import (
    BITMAP,
    MODEL,
    SCENARIO,
    SHADER,
    STANDARD_TAGS,
    STRINGS,
    tag_id,
)
from tagsplit.cache.errors import CorruptHeader
from tagsplit.cache.graph import build_graph
from tagsplit.cache.planner import compute_cache_plan, encode_path, to_plan_dict
from tagsplit.cache.reader import read_cache
from tagsplit.cache.writer import _pad_to, write_cache


@pytest.fixture
def graph(cache_bytes: bytes, registry):
    return build_graph(read_cache(cache_bytes), registry)


def test_plan_regions_are_contiguous(graph, registry):
    plan = compute_cache_plan(graph, registry)
    names = [r.name for r in plan.regions]
    assert names == ["header", "tag_data_header", "index", "paths", "payloads"]
    for prev, cur in zip(plan.regions, plan.regions[1:]):
        assert cur.offset == prev.offset + prev.size
    last = plan.regions[-1]
    assert last.offset + last.size == plan.file_size


def test_plan_matches_fixture_layout(graph, registry, cache_bytes: bytes):
    plan = compute_cache_plan(graph, registry)
    assert plan.file_size == len(cache_bytes)
    assert plan.padding.by_section == {"paths": 3, "payloads": 13}
    assert plan.padding.total == 16
    assert plan.region("index").size == len(STANDARD_TAGS) * 0x20
    parsed = read_cache(cache_bytes)
    for entry, _ in parsed.entries:
        if not entry.indexed:
            assert plan.tag(entry.tag_id).offset == entry.payload_offset


def test_payloads_respect_class_alignment(graph, registry):
    plan = compute_cache_plan(graph, registry)
    for tp in plan.tags:
        assert (tp.offset - plan.tag_data_offset) % tp.alignment == 0
        assert tp.address == plan.base_address + tp.offset - plan.tag_data_offset
    assert plan.tag(tag_id(MODEL)).alignment == 16
    assert plan.tag(tag_id(MODEL)).padding_before == 12
    assert plan.tag(tag_id(STRINGS)).padding_before == 1


def test_plan_with_custom_order(graph, registry):
    order = [tag_id(i) for i in (BITMAP, STRINGS, SCENARIO, MODEL, SHADER)]
    plan = compute_cache_plan(graph, registry, order)
    assert [t.tag_id for t in plan.tags] == order
    offsets = [t.offset for t in plan.tags]
    assert offsets == sorted(offsets)


def test_plan_rejects_non_permutation(graph, registry):
    with pytest.raises(ValueError):
        compute_cache_plan(graph, registry, [tag_id(SCENARIO)])
    with pytest.raises(ValueError):
        compute_cache_plan(graph, registry, graph.layout + [tag_id(SCENARIO)])


def test_plan_unknown_version(graph, registry):
    graph.info.version = 0x99
    with pytest.raises(CorruptHeader):
        compute_cache_plan(graph, registry)


def test_plan_dict_is_json_shaped(graph, registry):
    d = to_plan_dict(compute_cache_plan(graph, registry))
    assert d["statistics"] == {
        "tag_count": len(STANDARD_TAGS),
        "payload_count": len(STANDARD_TAGS) - 1,
        "payload_bytes": 0x34 + 0x18 + 0x0C + 7 + 5,
    }
    assert d["base_address"] == "40440000"
    assert d["tags"][0]["id"] == f"{tag_id(SCENARIO):08x}"


def test_plan_is_deterministic(graph, registry):
    a = to_plan_dict(compute_cache_plan(graph, registry))
    b = to_plan_dict(compute_cache_plan(graph, registry))
    assert a == b


def test_write_cache_matches_plan(graph, registry):
    out = write_cache(graph, registry)
    plan = compute_cache_plan(graph, registry)
    assert len(out) == plan.file_size
    parsed = read_cache(out)
    assert parsed.verified
    for entry, _ in parsed.entries:
        if not entry.indexed:
            assert entry.payload_offset == plan.tag(entry.tag_id).offset


def test_padding_bytes_are_zero(graph, registry):
    out = write_cache(graph, registry)
    plan = compute_cache_plan(graph, registry)
    for tp in plan.tags:
        assert out[tp.offset - tp.padding_before : tp.offset] == b"\x00" * tp.padding_before


def test_pad_to_refuses_to_move_backwards():
    f = io.BytesIO()
    f.write(b"abcd")
    with pytest.raises(RuntimeError):
        _pad_to(f, 2)
    _pad_to(f, 8)
    assert f.getvalue() == b"abcd\x00\x00\x00\x00"


def test_encode_path_rejects_nul():
    assert encode_path("a\\b") == b"a\\b\x00"
    with pytest.raises(ValueError):
        encode_path("a\x00b")
