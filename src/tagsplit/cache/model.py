"""Value types shared by the reader, graph, disassociator and reassembler."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

from .constants import DEFAULT_RANDOM_SEED, DEFAULT_VERSION

Classes = Tuple[Optional[str], Optional[str], Optional[str]]

__all__ = [
    "Classes",
    "CacheHeader",
    "TagIndexEntry",
    "CacheInfo",
    "Reference",
    "Tag",
    "TagRecord",
]


@dataclass(frozen=True, slots=True)
class CacheHeader:
    version: int
    name: str
    build: str
    map_type: int
    file_size: int
    tag_data_offset: int
    tag_data_size: int
    checksum: int
    tag_index_offset: int
    tag_count: int
    principal_tag: Optional[int]
    random_seed: int


@dataclass(frozen=True, slots=True)
class TagIndexEntry:
    tag_id: int
    classes: Classes
    path: str
    payload_offset: int
    payload_size: int
    indexed: bool = False
    resource_index: Optional[int] = None

    @property
    def tag_class(self) -> Optional[str]:
        return self.classes[0]


@dataclass(slots=True)
class CacheInfo:
    """Cache-level metadata carried between split and merge."""

    version: int = DEFAULT_VERSION
    name: str = ""
    build: str = ""
    map_type: int = 0
    principal_tag: Optional[int] = None
    random_seed: int = DEFAULT_RANDOM_SEED


@dataclass(frozen=True, slots=True)
class Reference:
    """A resolved reference field.

    ``addend`` is the distance from the target payload start to the address
    stored in the field. External references have no target and keep the
    raw field value instead.
    """

    offset: int
    width: int
    kind: str
    target: Optional[int]
    addend: int = 0
    external: Optional[int] = None

    @property
    def is_external(self) -> bool:
        return self.target is None

    @property
    def end(self) -> int:
        return self.offset + self.width


@dataclass(slots=True)
class Tag:
    tag_id: int
    classes: Classes
    path: str
    data: bytes = b""
    references: Tuple[Reference, ...] = ()
    indexed: bool = False
    resource_index: Optional[int] = None

    @property
    def tag_class(self) -> Optional[str]:
        return self.classes[0]

    @property
    def size(self) -> int:
        return len(self.data)

    def targets(self) -> set[int]:
        return {r.target for r in self.references if r.target is not None}


@dataclass(slots=True)
class TagRecord:
    """Standalone, address-independent form of one tag."""

    tag_id: int
    classes: Classes
    path: str
    payload: bytes = b""
    indexed: bool = False
    resource_index: Optional[int] = None

    @property
    def tag_class(self) -> Optional[str]:
        return self.classes[0]
