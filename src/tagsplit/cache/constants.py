"""Binary layout constants for cache files and standalone tag records."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

# File header -----------------------------------------------------------------
HEAD_MAGIC = 0x68656164  # 'head'
FOOT_MAGIC = 0x666F6F74  # 'foot'
HEADER_SIZE = 0x800
FOOT_MAGIC_OFFSET = 0x7FC
CHECKSUM_OFFSET = 0x64
NAME_FIELD_SIZE = 0x20
MAX_FILE_SIZE = 0xFFFFFFFF

# Tag-data block --------------------------------------------------------------
TAGS_MAGIC = 0x74616773  # 'tags'
TAG_DATA_HEADER_SIZE = 0x28
INDEX_ENTRY_SIZE = 0x20
PATH_TABLE_ALIGNMENT = 4
DEFAULT_RANDOM_SEED = 0x00010000

INDEXED_FLAG = 0x1

NULL_TAG_ID = 0xFFFFFFFF
NULL_ADDRESS = 0
NO_CLASS = 0xFFFFFFFF

# Tag ids: ordinal in the low half, salted ordinal in the high half.
TAG_ID_SALT = 0xE174
MAX_TAGS = 0xFFFF

MAX_ALIGNMENT = 4096

MAP_TYPES = {0: "singleplayer", 1: "multiplayer", 2: "user_interface"}

# Standalone record -----------------------------------------------------------
RECORD_MAGIC = b"TAGR"
RECORD_FORMAT = 1
RECORD_HEADER_SIZE = 36
RECORD_SUFFIX = ".tagrec"
NO_RESOURCE_INDEX = 0xFFFFFFFF

MANIFEST_FORMAT = 1
REGISTRY_FORMAT = 1

CHECKSUM_CRC32 = "crc32"
CHECKSUM_ADLER32 = "adler32"


@dataclass(frozen=True, slots=True)
class FormatVersion:
    version: int
    name: str
    checksum: str
    base_address: int
    header_size: int = HEADER_SIZE


FORMAT_VERSIONS: Dict[int, FormatVersion] = {
    0x5: FormatVersion(0x5, "xbox", CHECKSUM_ADLER32, 0x803A6000),
    0x7: FormatVersion(0x7, "retail", CHECKSUM_CRC32, 0x40440000),
    0x261: FormatVersion(0x261, "custom", CHECKSUM_CRC32, 0x40440000),
}

DEFAULT_VERSION = 0x261


def format_for(version: int) -> Optional[FormatVersion]:
    return FORMAT_VERSIONS.get(version)


__all__ = [
    "HEAD_MAGIC",
    "FOOT_MAGIC",
    "HEADER_SIZE",
    "FOOT_MAGIC_OFFSET",
    "CHECKSUM_OFFSET",
    "NAME_FIELD_SIZE",
    "MAX_FILE_SIZE",
    "TAGS_MAGIC",
    "TAG_DATA_HEADER_SIZE",
    "INDEX_ENTRY_SIZE",
    "PATH_TABLE_ALIGNMENT",
    "DEFAULT_RANDOM_SEED",
    "INDEXED_FLAG",
    "NULL_TAG_ID",
    "NULL_ADDRESS",
    "NO_CLASS",
    "TAG_ID_SALT",
    "MAX_TAGS",
    "MAX_ALIGNMENT",
    "MAP_TYPES",
    "RECORD_MAGIC",
    "RECORD_FORMAT",
    "RECORD_HEADER_SIZE",
    "RECORD_SUFFIX",
    "NO_RESOURCE_INDEX",
    "MANIFEST_FORMAT",
    "REGISTRY_FORMAT",
    "CHECKSUM_CRC32",
    "CHECKSUM_ADLER32",
    "FormatVersion",
    "FORMAT_VERSIONS",
    "DEFAULT_VERSION",
    "format_for",
]
