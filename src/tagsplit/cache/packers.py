"""Low level struct packing helpers for cache files.

All multi-byte integers are little-endian. Class signatures are stored as the
big-endian integer of their four ISO-8859-1 characters, which puts them in
reverse character order on disk.
"""

from __future__ import annotations

import struct
import zlib
from typing import Optional, Tuple

from .constants import (
    CHECKSUM_ADLER32,
    CHECKSUM_CRC32,
    FOOT_MAGIC,
    FOOT_MAGIC_OFFSET,
    HEAD_MAGIC,
    HEADER_SIZE,
    INDEXED_FLAG,
    NAME_FIELD_SIZE,
    NO_CLASS,
    TAG_ID_SALT,
    TAGS_MAGIC,
)

__all__ = [
    "HEADER_STRUCT",
    "TAG_DATA_HEADER_STRUCT",
    "INDEX_ENTRY_STRUCT",
    "U32",
    "encode_class",
    "decode_class",
    "encode_classes",
    "decode_classes",
    "pack_name",
    "unpack_name",
    "pack_header",
    "pack_tag_data_header",
    "pack_index_entry",
    "compute_checksum",
    "tag_id_from_ordinal",
    "ordinal_of",
    "align_up",
    "read_uint",
    "write_uint",
]

# head, version, file_size, reserved, tag_data_offset, tag_data_size,
# 8 reserved, name, build, map_type, checksum
HEADER_STRUCT = struct.Struct("<IIIIII8x32s32sII")
# index address, principal tag id, random seed, tag count, 20 reserved, 'tags'
TAG_DATA_HEADER_STRUCT = struct.Struct("<IIII20xI")
# class, parent, grandparent, tag id, path address, data address, flags, size
INDEX_ENTRY_STRUCT = struct.Struct("<8I")
U32 = struct.Struct("<I")

_UINT_FORMATS = {4: "<I", 8: "<Q"}


def encode_class(signature: Optional[str]) -> int:
    if signature is None:
        return NO_CLASS
    raw = signature.encode("latin-1")
    if len(raw) != 4:
        raise ValueError(f"Class signature must be 4 characters: {signature!r}")
    return int.from_bytes(raw, "big")


def decode_class(value: int) -> Optional[str]:
    if value == NO_CLASS:
        return None
    return value.to_bytes(4, "big").decode("latin-1")


def encode_classes(
    classes: Tuple[Optional[str], Optional[str], Optional[str]],
) -> Tuple[int, int, int]:
    return tuple(encode_class(c) for c in classes)  # type: ignore[return-value]


def decode_classes(
    values: Tuple[int, int, int],
) -> Tuple[Optional[str], Optional[str], Optional[str]]:
    return tuple(decode_class(v) for v in values)  # type: ignore[return-value]


def pack_name(text: str, size: int = NAME_FIELD_SIZE) -> bytes:
    raw = text.encode("latin-1")
    if len(raw) >= size or b"\x00" in raw:
        raise ValueError(f"Name does not fit a {size}-byte field: {text!r}")
    return raw.ljust(size, b"\x00")


def unpack_name(raw: bytes) -> str:
    return bytes(raw).split(b"\x00", 1)[0].decode("latin-1")


def pack_header(
    *,
    version: int,
    file_size: int,
    tag_data_offset: int,
    tag_data_size: int,
    name: str,
    build: str,
    map_type: int,
    checksum: int,
) -> bytes:
    buf = bytearray(HEADER_SIZE)
    HEADER_STRUCT.pack_into(
        buf,
        0,
        HEAD_MAGIC,
        version,
        file_size,
        0,
        tag_data_offset,
        tag_data_size,
        pack_name(name),
        pack_name(build),
        map_type,
        checksum,
    )
    U32.pack_into(buf, FOOT_MAGIC_OFFSET, FOOT_MAGIC)
    return bytes(buf)


def pack_tag_data_header(
    index_address: int, principal_tag_id: int, random_seed: int, tag_count: int
) -> bytes:
    return TAG_DATA_HEADER_STRUCT.pack(
        index_address, principal_tag_id, random_seed, tag_count, TAGS_MAGIC
    )


def pack_index_entry(
    classes: Tuple[int, int, int],
    tag_id: int,
    path_address: int,
    data_address: int,
    indexed: bool,
    data_size: int,
) -> bytes:
    return INDEX_ENTRY_STRUCT.pack(
        *classes,
        tag_id,
        path_address,
        data_address,
        INDEXED_FLAG if indexed else 0,
        data_size,
    )


def compute_checksum(data: bytes | memoryview, algorithm: str) -> int:
    if algorithm == CHECKSUM_CRC32:
        return zlib.crc32(data) & 0xFFFFFFFF
    if algorithm == CHECKSUM_ADLER32:
        return zlib.adler32(data) & 0xFFFFFFFF
    raise ValueError(f"Unknown checksum algorithm: {algorithm}")


def tag_id_from_ordinal(ordinal: int) -> int:
    return (((ordinal + TAG_ID_SALT) & 0xFFFF) << 16) | (ordinal & 0xFFFF)


def ordinal_of(tag_id: int) -> int:
    return tag_id & 0xFFFF


def align_up(value: int, alignment: int) -> int:
    return value + ((alignment - (value % alignment)) % alignment)


def read_uint(data: bytes | memoryview, offset: int, width: int) -> int:
    return struct.unpack_from(_UINT_FORMATS[width], data, offset)[0]


def write_uint(buf: bytearray, offset: int, width: int, value: int) -> None:
    struct.pack_into(_UINT_FORMATS[width], buf, offset, value)
