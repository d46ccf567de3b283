import logging
import struct

import pytest

from cache_builder import (
    BASE_ADDRESS,
    INDEXED_BITMAP,
    SCENARIO,
    STANDARD_TAGS,
    FixtureTag,
    build_cache,
    restamp_checksum,
    standard_cache,
    tag_id,
)
from tagsplit.cache.errors import (
    ChecksumMismatch,
    CorruptHeader,
    DuplicateTagId,
    OffsetOutOfRange,
)
from tagsplit.cache.reader import read_cache


def test_read_standard_cache_header(cache_bytes: bytes):
    parsed = read_cache(cache_bytes)
    h = parsed.header
    assert parsed.verified
    assert parsed.format.name == "custom"
    assert h.name == "test"
    assert h.build == "01.01.01.0001"
    assert h.file_size == len(cache_bytes)
    assert h.tag_data_offset == 0x800
    assert h.tag_count == len(STANDARD_TAGS)
    assert h.principal_tag == tag_id(SCENARIO)
    assert h.random_seed == 0x00010000


def test_read_entries_in_index_order(cache_bytes: bytes):
    parsed = read_cache(cache_bytes)
    assert [e.tag_id for e, _ in parsed.entries] == [
        tag_id(i) for i in range(len(STANDARD_TAGS))
    ]
    assert [e.path for e, _ in parsed.entries] == [t.path for t in STANDARD_TAGS]
    shader, _ = parsed.entries[2]
    assert shader.classes == ("shdr", "shdr", None)
    for (entry, payload), fixture in zip(parsed.entries, STANDARD_TAGS):
        assert len(payload) == (0 if fixture.indexed else fixture.size)


def test_indexed_entry_has_resource_index(cache_bytes: bytes):
    entry, payload = read_cache(cache_bytes).entries[INDEXED_BITMAP]
    assert entry.indexed
    assert entry.resource_index == 3
    assert entry.payload_size == 0
    assert len(payload) == 0


def test_payload_views_do_not_copy(cache_bytes: bytes):
    parsed = read_cache(cache_bytes)
    entry, payload = parsed.entries[SCENARIO]
    assert isinstance(payload, memoryview)
    assert bytes(payload) == cache_bytes[entry.payload_offset : entry.payload_offset + 0x34]


def test_short_buffer_is_corrupt_header():
    with pytest.raises(CorruptHeader):
        read_cache(b"\x00" * 0x100)


def test_bad_head_magic(cache_bytes: bytes):
    buf = bytearray(cache_bytes)
    buf[0:4] = b"xxxx"
    with pytest.raises(CorruptHeader):
        read_cache(bytes(buf))


def test_bad_foot_magic(cache_bytes: bytes):
    buf = bytearray(cache_bytes)
    buf[0x7FC:0x800] = b"\x00\x00\x00\x00"
    with pytest.raises(CorruptHeader):
        read_cache(bytes(buf))


def test_unknown_version(cache_bytes: bytes):
    buf = bytearray(cache_bytes)
    struct.pack_into("<I", buf, 4, 0x99)
    with pytest.raises(CorruptHeader):
        read_cache(bytes(buf))


def test_file_size_beyond_buffer(cache_bytes: bytes):
    with pytest.raises(CorruptHeader):
        read_cache(cache_bytes[:-1])


def test_bad_tags_magic(cache_bytes: bytes):
    buf = bytearray(cache_bytes)
    struct.pack_into("<I", buf, 0x800 + 0x24, 0)
    with pytest.raises(CorruptHeader):
        read_cache(restamp_checksum(buf))


def test_checksum_mismatch_strict(cache_bytes: bytes):
    buf = bytearray(cache_bytes)
    buf[-1] ^= 0xFF
    with pytest.raises(ChecksumMismatch) as exc:
        read_cache(bytes(buf))
    assert exc.value.code == "E_CHECKSUM_MISMATCH"


def test_checksum_mismatch_tolerant(cache_bytes: bytes, caplog):
    buf = bytearray(cache_bytes)
    buf[-1] ^= 0xFF
    with caplog.at_level(logging.WARNING, logger="tagsplit"):
        parsed = read_cache(bytes(buf), tolerant=True)
    assert not parsed.verified
    assert parsed.header.tag_count == len(STANDARD_TAGS)
    assert any("Checksum mismatch" in r.getMessage() for r in caplog.records)


def test_every_tag_data_byte_is_covered_by_checksum(cache_bytes: bytes):
    for offset in range(0x800, len(cache_bytes), 37):
        buf = bytearray(cache_bytes)
        buf[offset] ^= 0x01
        with pytest.raises((ChecksumMismatch, CorruptHeader)):
            read_cache(bytes(buf))


def test_xbox_format_uses_adler32():
    data = standard_cache(version=0x5)
    parsed = read_cache(data)
    assert parsed.format.name == "xbox"
    assert parsed.format.checksum == "adler32"
    assert parsed.verified


def test_index_outside_block(cache_bytes: bytes):
    buf = bytearray(cache_bytes)
    struct.pack_into("<I", buf, 0x800, BASE_ADDRESS + 0x100000)
    with pytest.raises(OffsetOutOfRange):
        read_cache(restamp_checksum(buf))


def test_payload_outside_block(cache_bytes: bytes):
    buf = bytearray(cache_bytes)
    # size field of the first index entry
    struct.pack_into("<I", buf, 0x800 + 0x28 + 0x1C, 0x10000)
    with pytest.raises(OffsetOutOfRange):
        read_cache(restamp_checksum(buf))


def test_unterminated_path():
    tags = [FixtureTag("ustr", "abc", size=0, alignment=1)]
    data = bytearray(build_cache(tags, principal=None))
    # "abc\0" ends exactly at the block end; overwrite its terminator
    assert data[-1] == 0
    data[-1] = ord("y")
    with pytest.raises(OffsetOutOfRange):
        read_cache(restamp_checksum(data))


def test_duplicate_tag_id(cache_bytes: bytes):
    buf = bytearray(cache_bytes)
    entry0 = 0x800 + 0x28
    struct.pack_into("<I", buf, entry0 + 0x20 + 0x0C, tag_id(0))
    with pytest.raises(DuplicateTagId):
        read_cache(restamp_checksum(buf))


def test_overlapping_payloads(cache_bytes: bytes):
    buf = bytearray(cache_bytes)
    entry0 = 0x800 + 0x28
    first_address = struct.unpack_from("<I", buf, entry0 + 0x14)[0]
    # point the second entry into the first payload
    struct.pack_into("<I", buf, entry0 + 0x20 + 0x14, first_address + 4)
    with pytest.raises(OffsetOutOfRange):
        read_cache(restamp_checksum(buf))


def _path_table_end() -> int:
    return 0x28 + len(STANDARD_TAGS) * 0x20 + sum(len(t.path) + 1 for t in STANDARD_TAGS)


def test_reserved_tag_data_header_bytes_are_rejected(cache_bytes: bytes):
    buf = bytearray(cache_bytes)
    struct.pack_into("<I", buf, 0x800 + 0x14, 0x1234)
    struct.pack_into("<I", buf, 0x800 + 0x20, 0x40)
    with pytest.raises(CorruptHeader):
        read_cache(restamp_checksum(buf))


@pytest.mark.parametrize("offset", [0x0C, 0x18, 0x68, 0x400, 0x7F8])
def test_reserved_header_bytes_are_rejected(cache_bytes: bytes, offset: int):
    buf = bytearray(cache_bytes)
    buf[offset] = 0x01
    with pytest.raises(CorruptHeader):
        read_cache(bytes(buf))


def test_name_bytes_after_terminator_are_rejected(cache_bytes: bytes):
    buf = bytearray(cache_bytes)
    # "test" is followed by NUL padding
    buf[0x20 + 10] = ord("x")
    with pytest.raises(CorruptHeader):
        read_cache(bytes(buf))


def test_file_bytes_after_tag_data_are_rejected(cache_bytes: bytes):
    buf = bytearray(cache_bytes) + bytearray(4)
    struct.pack_into("<I", buf, 8, len(buf))
    with pytest.raises(CorruptHeader):
        read_cache(restamp_checksum(buf))


def test_short_tag_data_size_is_rejected(cache_bytes: bytes):
    buf = bytearray(cache_bytes)
    size = struct.unpack_from("<I", buf, 0x14)[0]
    struct.pack_into("<I", buf, 0x14, size - 4)
    with pytest.raises(CorruptHeader):
        read_cache(bytes(buf))


def test_index_must_follow_tag_data_header(cache_bytes: bytes):
    buf = bytearray(cache_bytes)
    struct.pack_into("<I", buf, 0x800, BASE_ADDRESS + 0x2C)
    with pytest.raises(OffsetOutOfRange):
        read_cache(restamp_checksum(buf))


def test_paths_must_be_packed_in_index_order(cache_bytes: bytes):
    buf = bytearray(cache_bytes)
    entry0 = 0x800 + 0x28
    first = struct.unpack_from("<I", buf, entry0 + 0x10)[0]
    # second entry reuses the first entry's path
    struct.pack_into("<I", buf, entry0 + 0x20 + 0x10, first)
    with pytest.raises(OffsetOutOfRange):
        read_cache(restamp_checksum(buf))


def test_nonzero_path_table_padding_is_rejected(cache_bytes: bytes):
    end = _path_table_end()
    assert end % 4, "fixture paths must leave padding"
    buf = bytearray(cache_bytes)
    buf[0x800 + end] = 0x01
    with pytest.raises(OffsetOutOfRange):
        read_cache(restamp_checksum(buf))


def test_nonzero_gap_between_payloads_is_rejected(cache_bytes: bytes):
    parsed = read_cache(cache_bytes)
    spans = sorted(
        (e.payload_offset, e.payload_offset + e.payload_size)
        for e, _ in parsed.entries
        if not e.indexed
    )
    gap = next(end for (_, end), (start, _) in zip(spans, spans[1:]) if start > end)
    buf = bytearray(cache_bytes)
    buf[gap] = 0xAA
    with pytest.raises(OffsetOutOfRange):
        read_cache(restamp_checksum(buf))


def test_payload_inside_path_table_is_rejected(cache_bytes: bytes):
    buf = bytearray(cache_bytes)
    entry0 = 0x800 + 0x28
    struct.pack_into("<I", buf, entry0 + 0x14, BASE_ADDRESS + 0x28 + len(STANDARD_TAGS) * 0x20)
    with pytest.raises(OffsetOutOfRange):
        read_cache(restamp_checksum(buf))


def test_unknown_index_flags_are_rejected(cache_bytes: bytes):
    buf = bytearray(cache_bytes)
    struct.pack_into("<I", buf, 0x800 + 0x28 + 0x18, 0x2)
    with pytest.raises(CorruptHeader):
        read_cache(restamp_checksum(buf))


def test_indexed_entry_with_size_is_rejected(cache_bytes: bytes):
    buf = bytearray(cache_bytes)
    entry = 0x800 + 0x28 + INDEXED_BITMAP * 0x20
    struct.pack_into("<I", buf, entry + 0x1C, 4)
    with pytest.raises(CorruptHeader):
        read_cache(restamp_checksum(buf))


def test_payloads_offset_is_aligned_path_table_end(cache_bytes: bytes):
    parsed = read_cache(cache_bytes)
    end = _path_table_end()
    assert parsed.payloads_offset == 0x800 + end + (-end % 4)
