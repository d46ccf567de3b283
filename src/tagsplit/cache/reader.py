"""Cache file reader.

Parses a raw cache buffer into a header value object and the ordered tag
index, pairing each entry with a read-only slice of its payload. The input
buffer is borrowed, never copied wholesale or mutated.

Only the canonical layout is accepted: every byte of the file must be
accounted for by a header field, an index entry, a path or a payload, and
everything else must be zero. Anything the writer would not reproduce is
rejected here rather than silently dropped on reassembly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Tuple

from ..logging import get_logger
from .constants import (
    CHECKSUM_OFFSET,
    FOOT_MAGIC,
    FOOT_MAGIC_OFFSET,
    HEAD_MAGIC,
    HEADER_SIZE,
    INDEX_ENTRY_SIZE,
    INDEXED_FLAG,
    NULL_TAG_ID,
    PATH_TABLE_ALIGNMENT,
    TAG_DATA_HEADER_SIZE,
    TAGS_MAGIC,
    FormatVersion,
    format_for,
)
from .errors import ChecksumMismatch, CorruptHeader, DuplicateTagId, OffsetOutOfRange
from .model import CacheHeader, TagIndexEntry
from .packers import (
    HEADER_STRUCT,
    INDEX_ENTRY_STRUCT,
    TAG_DATA_HEADER_STRUCT,
    U32,
    align_up,
    compute_checksum,
    decode_classes,
    unpack_name,
)

__all__ = ["ParsedCache", "read_cache"]

# Header padding between the tag-data size and the name field.
_HEADER_PAD = (0x18, 0x20)
# Reserved span of the tag-data header, relative to the block start.
_TAG_DATA_RESERVED = (0x10, 0x24)


@dataclass(slots=True)
class ParsedCache:
    header: CacheHeader
    format: FormatVersion
    entries: List[Tuple[TagIndexEntry, memoryview]] = field(default_factory=list)
    verified: bool = True
    # File offset of the payload region (path table end, aligned).
    payloads_offset: int = 0

    @property
    def tag_count(self) -> int:
        return len(self.entries)


def _parse_header(view: memoryview) -> tuple:
    if len(view) < HEADER_SIZE:
        raise CorruptHeader(
            "Buffer shorter than cache header",
            {"size": len(view), "header_size": HEADER_SIZE},
        )
    fields = HEADER_STRUCT.unpack_from(view, 0)
    head = fields[0]
    foot = U32.unpack_from(view, FOOT_MAGIC_OFFSET)[0]
    if head != HEAD_MAGIC or foot != FOOT_MAGIC:
        raise CorruptHeader(
            "Bad header magic", {"head": f"{head:08x}", "foot": f"{foot:08x}"}
        )
    return fields


def _all_zero(raw: bytes | bytearray, start: int, end: int) -> bool:
    return raw.count(0, start, end) == end - start


def _check_name_field(raw_field: bytes, label: str) -> None:
    end = raw_field.find(b"\x00")
    if end < 0 or not _all_zero(raw_field, end, len(raw_field)):
        raise CorruptHeader(
            f"Header {label} is not a NUL-padded string", {"field": label}
        )


def _check_header_padding(
    raw: bytes | bytearray, reserved: int, name_raw: bytes, build_raw: bytes
) -> None:
    if (
        reserved
        or not _all_zero(raw, *_HEADER_PAD)
        or not _all_zero(raw, CHECKSUM_OFFSET + 4, FOOT_MAGIC_OFFSET)
    ):
        raise CorruptHeader("Reserved header bytes are not zero", {"reserved": reserved})
    _check_name_field(name_raw, "name")
    _check_name_field(build_raw, "build")


def read_cache(buffer: bytes | bytearray | memoryview, *, tolerant: bool = False) -> ParsedCache:
    """Parse ``buffer`` as a cache file.

    With ``tolerant`` a checksum mismatch is logged and the result flagged
    ``verified=False`` instead of raising :class:`ChecksumMismatch`.
    Bytes past the declared file size are ignored.
    """
    view = memoryview(buffer).toreadonly()
    (
        _head,
        version,
        file_size,
        reserved,
        tag_data_offset,
        tag_data_size,
        name_raw,
        build_raw,
        map_type,
        stored_checksum,
    ) = _parse_header(view)
    raw = buffer if isinstance(buffer, (bytes, bytearray)) else view.tobytes()

    fmt = format_for(version)
    if fmt is None:
        raise CorruptHeader(f"Unknown cache version {version:#x}", {"version": version})
    _check_header_padding(raw, reserved, name_raw, build_raw)
    if file_size < HEADER_SIZE or file_size > len(view):
        raise CorruptHeader(
            "Declared file size outside buffer",
            {"file_size": file_size, "buffer_size": len(view)},
        )
    block_ctx = {
        "tag_data_offset": tag_data_offset,
        "tag_data_size": tag_data_size,
        "file_size": file_size,
    }
    if (
        tag_data_offset < HEADER_SIZE
        or tag_data_size < TAG_DATA_HEADER_SIZE
        or tag_data_offset + tag_data_size > file_size
    ):
        raise CorruptHeader("Tag data block outside file", block_ctx)
    if tag_data_offset != HEADER_SIZE or tag_data_offset + tag_data_size != file_size:
        raise CorruptHeader(
            "Tag data block must follow the header and end the file", block_ctx
        )
    (
        index_address,
        principal,
        random_seed,
        tag_count,
        tags_magic,
    ) = TAG_DATA_HEADER_STRUCT.unpack_from(view, tag_data_offset)
    if tags_magic != TAGS_MAGIC:
        raise CorruptHeader("Bad tag data magic", {"magic": f"{tags_magic:08x}"})
    reserved_start, reserved_end = _TAG_DATA_RESERVED
    if not _all_zero(raw, tag_data_offset + reserved_start, tag_data_offset + reserved_end):
        raise CorruptHeader(
            "Reserved tag data header bytes are not zero",
            {"offset": tag_data_offset + reserved_start},
        )

    actual = compute_checksum(view[HEADER_SIZE:file_size], fmt.checksum)
    verified = actual == stored_checksum
    if not verified:
        ctx = {"stored": f"{stored_checksum:08x}", "computed": f"{actual:08x}"}
        if not tolerant:
            raise ChecksumMismatch("Cache checksum mismatch", ctx)
        get_logger().warning(
            "Checksum mismatch (stored=%s computed=%s); continuing unverified",
            ctx["stored"],
            ctx["computed"],
        )

    base = fmt.base_address

    def block_offset(address: int, size: int, label: str) -> int:
        off = address - base
        if off < 0 or off + size > tag_data_size:
            raise OffsetOutOfRange(
                f"{label} outside tag data block",
                {"address": f"{address:08x}", "size": size},
            )
        return off

    block_start = tag_data_offset
    block_end = tag_data_offset + tag_data_size

    def read_path(address: int) -> str:
        start = block_start + block_offset(address, 1, "Tag path")
        end = raw.find(b"\x00", start, block_end)
        if end < 0:
            raise OffsetOutOfRange(
                "Unterminated tag path", {"address": f"{address:08x}"}
            )
        return bytes(raw[start:end]).decode("latin-1")

    index_off = block_offset(index_address, tag_count * INDEX_ENTRY_SIZE, "Tag index")
    if index_off != TAG_DATA_HEADER_SIZE:
        raise OffsetOutOfRange(
            "Tag index does not follow the tag data header",
            {"address": f"{index_address:08x}", "expected": f"{base + TAG_DATA_HEADER_SIZE:08x}"},
        )
    # Paths are packed in index order right after the index.
    path_cursor = index_off + tag_count * INDEX_ENTRY_SIZE
    entries: List[Tuple[TagIndexEntry, memoryview]] = []
    seen: set[int] = set()
    for i in range(tag_count):
        (
            c0,
            c1,
            c2,
            tag_id,
            path_address,
            data_address,
            flags,
            data_size,
        ) = INDEX_ENTRY_STRUCT.unpack_from(
            view, block_start + index_off + i * INDEX_ENTRY_SIZE
        )
        if tag_id in seen:
            raise DuplicateTagId(
                f"Tag id {tag_id:08x} appears twice in index", {"index": i}
            )
        seen.add(tag_id)
        path = read_path(path_address)
        if path_address - base != path_cursor:
            raise OffsetOutOfRange(
                f"Path of index entry {i} is not packed after the previous one",
                {"index": i, "address": f"{path_address:08x}", "expected": f"{base + path_cursor:08x}"},
            )
        path_cursor += len(path) + 1
        if flags & ~INDEXED_FLAG:
            raise CorruptHeader(
                f"Unknown flags {flags:#x} on index entry {i}", {"index": i, "flags": flags}
            )
        if flags & INDEXED_FLAG:
            if data_size:
                raise CorruptHeader(
                    f"Indexed tag {path!r} declares a payload size",
                    {"index": i, "size": data_size},
                )
            entry = TagIndexEntry(
                tag_id=tag_id,
                classes=decode_classes((c0, c1, c2)),
                path=path,
                payload_offset=0,
                payload_size=0,
                indexed=True,
                resource_index=data_address,
            )
            entries.append((entry, view[0:0]))
            continue
        start = block_start + block_offset(data_address, data_size, f"Payload of {path!r}")
        entry = TagIndexEntry(
            tag_id=tag_id,
            classes=decode_classes((c0, c1, c2)),
            path=path,
            payload_offset=start,
            payload_size=data_size,
        )
        entries.append((entry, view[start : start + data_size]))

    payloads_start = align_up(path_cursor, PATH_TABLE_ALIGNMENT)
    if payloads_start > tag_data_size:
        raise OffsetOutOfRange(
            "Path table runs past the tag data block",
            {"end": payloads_start, "size": tag_data_size},
        )
    _check_overlaps(entries)
    _check_unclaimed_bytes(
        raw, entries, block_start + path_cursor, block_start + payloads_start, block_end
    )

    header = CacheHeader(
        version=version,
        name=unpack_name(name_raw),
        build=unpack_name(build_raw),
        map_type=map_type,
        file_size=file_size,
        tag_data_offset=tag_data_offset,
        tag_data_size=tag_data_size,
        checksum=stored_checksum,
        tag_index_offset=block_start + index_off,
        tag_count=tag_count,
        principal_tag=None if principal == NULL_TAG_ID else principal,
        random_seed=random_seed,
    )
    return ParsedCache(
        header=header,
        format=fmt,
        entries=entries,
        verified=verified,
        payloads_offset=block_start + payloads_start,
    )


def _check_overlaps(entries: List[Tuple[TagIndexEntry, memoryview]]) -> None:
    spans = sorted(
        (e.payload_offset, e.payload_offset + e.payload_size, e.tag_id)
        for e, _ in entries
        if not e.indexed and e.payload_size
    )
    for (s0, e0, id0), (s1, _e1, id1) in zip(spans, spans[1:]):
        if s1 < e0:
            raise OffsetOutOfRange(
                f"Payloads of {id0:08x} and {id1:08x} overlap",
                {"first": f"{id0:08x}", "second": f"{id1:08x}", "offset": s1},
            )


def _check_unclaimed_bytes(
    raw: bytes | bytearray,
    entries: List[Tuple[TagIndexEntry, memoryview]],
    paths_end: int,
    payloads_start: int,
    block_end: int,
) -> None:
    """Payloads sit after the path table; path padding and gaps are zero."""
    spans = sorted(
        (e.payload_offset, e.payload_offset + e.payload_size, e.tag_id)
        for e, _ in entries
        if not e.indexed
    )
    for start, _end, tag_id in spans:
        if start < payloads_start:
            raise OffsetOutOfRange(
                f"Payload of {tag_id:08x} starts inside the index or path table",
                {"tag_id": f"{tag_id:08x}", "offset": start, "payloads_start": payloads_start},
            )
    cursor = paths_end
    for start, end, _tag_id in spans + [(block_end, block_end, None)]:
        if start > cursor and not _all_zero(raw, cursor, start):
            raise OffsetOutOfRange(
                "Nonzero bytes outside every payload",
                {"offset": cursor, "end": start},
            )
        cursor = max(cursor, end)
