"""Standalone tag record codec.

Layout (little-endian): a 36-byte header followed by the tag path
(ISO-8859-1, no terminator) and the symbolic payload.
"""

from __future__ import annotations

import struct

from .constants import (
    INDEXED_FLAG,
    NO_RESOURCE_INDEX,
    RECORD_FORMAT,
    RECORD_HEADER_SIZE,
    RECORD_MAGIC,
)
from .errors import CorruptRecord
from .model import TagRecord
from .packers import decode_classes, encode_classes

__all__ = ["RECORD_HEADER_STRUCT", "encode_record", "decode_record"]

# magic, format, flags, class x3, tag id, resource index, path len, reserved,
# payload size
RECORD_HEADER_STRUCT = struct.Struct("<4sHHIIIIIHHI")


def encode_record(record: TagRecord) -> bytes:
    path = record.path.encode("latin-1")
    if len(path) > 0xFFFF:
        raise ValueError(f"Tag path too long: {len(path)} bytes")
    resource_index = (
        NO_RESOURCE_INDEX if record.resource_index is None else record.resource_index
    )
    header = RECORD_HEADER_STRUCT.pack(
        RECORD_MAGIC,
        RECORD_FORMAT,
        INDEXED_FLAG if record.indexed else 0,
        *encode_classes(record.classes),
        record.tag_id,
        resource_index,
        len(path),
        0,
        len(record.payload),
    )
    return header + path + bytes(record.payload)


def decode_record(data: bytes, *, source: str = "") -> TagRecord:
    if len(data) < RECORD_HEADER_SIZE:
        raise CorruptRecord("Record shorter than header", {"source": source})
    (
        magic,
        fmt,
        flags,
        c0,
        c1,
        c2,
        tag_id,
        resource_index,
        path_len,
        _reserved,
        payload_size,
    ) = RECORD_HEADER_STRUCT.unpack_from(data, 0)
    if magic != RECORD_MAGIC:
        raise CorruptRecord("Bad record magic", {"source": source, "magic": magic.hex()})
    if fmt != RECORD_FORMAT:
        raise CorruptRecord(
            f"Unsupported record format {fmt}", {"source": source, "format": fmt}
        )
    expected = RECORD_HEADER_SIZE + path_len + payload_size
    if len(data) != expected:
        raise CorruptRecord(
            "Record size does not match header",
            {"source": source, "expected": expected, "actual": len(data)},
        )
    path_end = RECORD_HEADER_SIZE + path_len
    return TagRecord(
        tag_id=tag_id,
        classes=decode_classes((c0, c1, c2)),
        path=bytes(data[RECORD_HEADER_SIZE:path_end]).decode("latin-1"),
        payload=bytes(data[path_end:]),
        indexed=bool(flags & INDEXED_FLAG),
        resource_index=None if resource_index == NO_RESOURCE_INDEX else resource_index,
    )
