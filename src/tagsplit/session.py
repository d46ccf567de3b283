"""Session state machine around one tag graph.

``LOADED -> GRAPH_BUILT -> DISASSOCIATED <-> MUTATED -> REASSEMBLED ->
VERIFIED -> COMMITTED``. Verification is optional; committing hands the
reassembled bytes to a caller supplied sink. Calling an operation from the
wrong state raises :class:`SessionStateError` and changes nothing.
"""

from __future__ import annotations

from enum import Enum, auto
from typing import Callable, Iterable, List, Optional, Sequence

from .cache.disassociator import Disassociation, disassociate
from .cache.errors import SessionStateError
from .cache.graph import TagGraph, build_graph, graph_from_records
from .cache.model import TagRecord
from .cache.mutator import Mutator, NewTag
from .cache.reader import ParsedCache, read_cache
from .cache.reassembler import reassemble, verify_cache
from .manifest import Manifest
from .schema.models import SchemaRegistry

__all__ = ["SessionState", "CacheSession"]


class SessionState(Enum):
    LOADED = auto()
    GRAPH_BUILT = auto()
    DISASSOCIATED = auto()
    MUTATED = auto()
    REASSEMBLED = auto()
    VERIFIED = auto()
    COMMITTED = auto()


_EDITABLE = (SessionState.DISASSOCIATED, SessionState.MUTATED)


class CacheSession:
    def __init__(self, registry: SchemaRegistry) -> None:
        self.registry = registry
        self.state: Optional[SessionState] = None
        self.parsed: Optional[ParsedCache] = None
        self.graph: Optional[TagGraph] = None
        self.disassociation: Optional[Disassociation] = None
        self.output: Optional[bytes] = None

    # Entry points --------------------------------------------------------------
    @classmethod
    def load(
        cls, data: bytes, registry: SchemaRegistry, *, tolerant: bool = False
    ) -> "CacheSession":
        session = cls(registry)
        session.parsed = read_cache(data, tolerant=tolerant)
        session.state = SessionState.LOADED
        return session

    @classmethod
    def from_records(
        cls,
        manifest: Manifest,
        records: Iterable[TagRecord],
        registry: SchemaRegistry,
    ) -> "CacheSession":
        """Resume from an exported directory: starts out DISASSOCIATED."""
        session = cls(registry)
        records = list(records)
        session.graph = graph_from_records(manifest, records, registry)
        session.disassociation = Disassociation(records=records, manifest=manifest)
        session.state = SessionState.DISASSOCIATED
        return session

    # Transitions ---------------------------------------------------------------
    def _require(self, *allowed: SessionState) -> None:
        if self.state not in allowed:
            raise SessionStateError(
                f"Operation not allowed in state {self.state.name if self.state else None}",
                {
                    "state": self.state.name if self.state else None,
                    "allowed": [s.name for s in allowed],
                },
            )

    @property
    def verified_input(self) -> bool:
        return self.parsed.verified if self.parsed is not None else True

    def build_graph(self) -> TagGraph:
        self._require(SessionState.LOADED)
        assert self.parsed is not None
        self.graph = build_graph(self.parsed, self.registry)
        self.state = SessionState.GRAPH_BUILT
        return self.graph

    def disassociate(self) -> Disassociation:
        self._require(SessionState.GRAPH_BUILT, *_EDITABLE)
        assert self.graph is not None
        self.disassociation = disassociate(self.graph)
        self.state = SessionState.DISASSOCIATED
        return self.disassociation

    @property
    def mutator(self) -> Mutator:
        self._require(*_EDITABLE)
        assert self.graph is not None
        return Mutator(self.graph, self.registry)

    def insert(self, *new_tags: NewTag) -> List[int]:
        ids = self.mutator.insert_batch(new_tags)
        self._mutated()
        return ids

    def insert_record(self, record: TagRecord) -> int:
        tag_id = self.mutator.insert_record(record)
        self._mutated()
        return tag_id

    def import_tags(self, source: TagGraph, tag_id: int) -> List[int]:
        ids = self.mutator.import_tags(source, tag_id)
        self._mutated()
        return ids

    def remove(self, tag_id: int, *, cascade: bool = False) -> List[int]:
        removed = self.mutator.remove(tag_id, cascade=cascade)
        self._mutated()
        return removed

    def prune(self, roots: Optional[Iterable[int]] = None) -> List[int]:
        removed = self.mutator.prune(roots)
        self._mutated()
        return removed

    def _mutated(self) -> None:
        self.state = SessionState.MUTATED
        self.disassociation = None
        self.output = None

    def reassemble(self, order: Optional[Sequence[int]] = None) -> bytes:
        """Rebuild the cache through the full manifest + records path."""
        self._require(*_EDITABLE)
        assert self.graph is not None
        exported = self.disassociation or disassociate(self.graph)
        self.output = reassemble(
            exported.manifest, exported.records, self.registry, order=order
        )
        self.disassociation = exported
        self.state = SessionState.REASSEMBLED
        return self.output

    def verify(self) -> TagGraph:
        self._require(SessionState.REASSEMBLED)
        assert self.output is not None
        graph = verify_cache(self.output, self.registry)
        self.state = SessionState.VERIFIED
        return graph

    def commit(self, sink: Callable[[bytes], object]) -> None:
        self._require(SessionState.REASSEMBLED, SessionState.VERIFIED)
        assert self.output is not None
        sink(self.output)
        self.state = SessionState.COMMITTED
