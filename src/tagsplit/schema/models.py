"""Schema registry models: per-class reference field layouts."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, Optional, Tuple

from ..cache.errors import UnknownTagClass

ADDRESS = "address"
TAG_ID = "tag_id"
FIELD_KINDS = (ADDRESS, TAG_ID)
FIELD_WIDTHS = (4, 8)

__all__ = [
    "ADDRESS",
    "TAG_ID",
    "FIELD_KINDS",
    "FIELD_WIDTHS",
    "FieldLayout",
    "ClassSchema",
    "PruneRoot",
    "DEFAULT_PRUNE_ROOTS",
    "SchemaRegistry",
]


@dataclass(frozen=True, slots=True)
class FieldLayout:
    """One reference-shaped field inside a tag payload.

    ``address`` fields hold an absolute address into some tag's payload,
    ``tag_id`` fields hold a raw tag id. ``external`` marks fields allowed to
    hold values that resolve to no tag (engine-reserved addresses).
    """

    offset: int
    width: int = 4
    kind: str = ADDRESS
    external: bool = False
    name: str = ""

    @property
    def end(self) -> int:
        return self.offset + self.width


@dataclass(frozen=True, slots=True)
class ClassSchema:
    signature: str
    fields: Tuple[FieldLayout, ...] = ()
    alignment: int = 1

    def field_at(self, offset: int) -> Optional[FieldLayout]:
        for f in self.fields:
            if f.offset == offset:
                return f
        return None


@dataclass(frozen=True, slots=True)
class PruneRoot:
    """Tags a prune always keeps: every tag of ``tag_class``, or only the
    one at ``path`` when given."""

    tag_class: str
    path: Optional[str] = None

    def matches(self, tag_class: Optional[str], path: str) -> bool:
        return tag_class == self.tag_class and (self.path is None or self.path == path)


# Used when a registry does not list its own roots.
DEFAULT_PRUNE_ROOTS: Tuple[PruneRoot, ...] = (
    PruneRoot("tagc"),
    PruneRoot("matg", "globals\\globals"),
    PruneRoot("bitm", "ui\\shell\\bitmaps\\background"),
    PruneRoot("bitm", "ui\\shell\\bitmaps\\trouble_brewing"),
    PruneRoot("snd!", "sound\\sfx\\ui\\cursor"),
    PruneRoot("snd!", "sound\\sfx\\ui\\forward"),
    PruneRoot("snd!", "sound\\sfx\\ui\\back"),
    PruneRoot("ustr", "ui\\shell\\strings\\loading"),
    PruneRoot("ustr", "ui\\shell\\main_menu\\mp_map_list"),
)


class SchemaRegistry:
    """Lookup table from class signature to :class:`ClassSchema`, plus the
    tags a prune keeps besides the principal tag."""

    def __init__(
        self,
        classes: Iterable[ClassSchema] = (),
        prune_roots: Optional[Iterable[PruneRoot]] = None,
    ) -> None:
        self._classes: Dict[str, ClassSchema] = {}
        for schema in classes:
            self.register(schema)
        self.prune_roots: Tuple[PruneRoot, ...] = (
            DEFAULT_PRUNE_ROOTS if prune_roots is None else tuple(prune_roots)
        )

    def is_prune_root(self, tag_class: Optional[str], path: str) -> bool:
        return any(root.matches(tag_class, path) for root in self.prune_roots)

    def register(self, schema: ClassSchema) -> None:
        self._classes[schema.signature] = schema

    def lookup(self, signature: Optional[str]) -> ClassSchema:
        schema = self._classes.get(signature) if signature else None
        if schema is None:
            raise UnknownTagClass(
                f"No schema registered for class {signature!r}",
                {"class": signature},
            )
        return schema

    def alignment_of(self, signature: Optional[str]) -> int:
        return self.lookup(signature).alignment

    def signatures(self) -> list[str]:
        return sorted(self._classes)

    def __contains__(self, signature: object) -> bool:
        return signature in self._classes

    def __iter__(self) -> Iterator[ClassSchema]:
        return iter(self._classes.values())

    def __len__(self) -> int:
        return len(self._classes)
