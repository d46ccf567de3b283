import json
import struct

from cache_builder import (
    INDEXED_BITMAP,
    STANDARD_REFS,
    STANDARD_TAGS,
    STRINGS,
    build_cache,
    restamp_checksum,
    tag_id,
)
from tagsplit.cache.inspector import inspect_cache, validate_cache
from tagsplit.diff import diff_caches


def test_inspect_summary(cache_bytes: bytes):
    info = inspect_cache(cache_bytes)
    json.dumps(info)
    assert info["header"]["format"] == "custom"
    assert info["header"]["map_type_name"] == "singleplayer"
    assert info["checksum"]["algorithm"] == "crc32"
    assert info["checksum"]["stored"] == info["checksum"]["computed"]
    assert len(info["tags"]) == len(STANDARD_TAGS)
    assert info["tags"][INDEXED_BITMAP]["indexed"] is True
    assert info["statistics"]["indexed"] == 1
    assert info["statistics"]["classes"] == {
        "bitm": 2,
        "mod2": 1,
        "scnr": 1,
        "shdr": 1,
        "ustr": 1,
    }


def test_inspect_bad_checksum_is_reported(cache_bytes: bytes):
    buf = bytearray(cache_bytes)
    buf[-1] ^= 0xFF
    info = inspect_cache(bytes(buf))
    assert info["checksum"]["ok"] is False
    assert info["checksum"]["stored"] != info["checksum"]["computed"]


def test_validate_cache(cache_bytes: bytes, registry):
    assert validate_cache(cache_bytes) == []
    assert validate_cache(cache_bytes, registry) == []
    assert validate_cache(cache_bytes + b"\x00\x00") == [
        "2 trailing byte(s) after declared file size"
    ]


def test_validate_cache_reports_errors(cache_bytes: bytes, registry):
    buf = bytearray(cache_bytes)
    buf[-1] ^= 0xFF
    issues = validate_cache(bytes(buf))
    assert len(issues) == 1 and issues[0].startswith("E_CHECKSUM_MISMATCH")
    refs = [r for r in STANDARD_REFS if r[1] != 0x00 or r[0] != 0]
    refs.append((0, 0x00, 4, ("raw", 0x1234)))
    dangling = build_cache(STANDARD_TAGS, refs)
    assert validate_cache(dangling) == []
    assert validate_cache(dangling, registry)[0].startswith("E_DANGLING_REFERENCE")


def test_unknown_map_type(cache_bytes: bytes):
    buf = bytearray(cache_bytes)
    struct.pack_into("<I", buf, 0x60, 7)
    assert validate_cache(bytes(buf)) == ["Unknown map type 7"]


def test_diff_identical(cache_bytes: bytes):
    result = diff_caches(cache_bytes, cache_bytes)
    assert result["summary"] == {"count": 0, "added": 0, "removed": 0}


def test_diff_payload_change(cache_bytes: bytes):
    buf = bytearray(cache_bytes)
    buf[-1] ^= 0xFF
    result = diff_caches(cache_bytes, restamp_checksum(buf))
    fields = [d["field"] for d in result["header"]]
    assert fields == ["checksum"]
    assert [(d["id"], d["field"]) for d in result["tags"]] == [
        (f"{tag_id(STRINGS):08x}", "crc32")
    ]


def test_diff_added_and_removed():
    left = build_cache(STANDARD_TAGS, STANDARD_REFS)
    right = build_cache(STANDARD_TAGS[:-1], STANDARD_REFS, name="other")
    result = diff_caches(left, right)
    assert {"field": "name", "left": "test", "right": "other"} in result["header"]
    assert result["summary"]["removed"] == 1
    assert result["summary"]["added"] == 0
    removed = [d for d in result["tags"] if d.get("status") == "removed"]
    assert removed[0]["path"] == "strings\\orphan"
