"""High-level file based API for tagsplit.

These functions are the I/O layer around the byte-oriented core: they read
cache files and record directories, run the session, and write results.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import json
from pathlib import Path
from typing import Any, List, Tuple

from .cache.constants import CHECKSUM_OFFSET
from .cache.graph import graph_from_records
from .cache.inspector import inspect_cache as _inspect_cache_impl
from .cache.inspector import validate_cache as _validate_cache_impl
from .cache.planner import CachePlan, compute_cache_plan, to_plan_dict
from .cache.packers import U32
from .cache.records import decode_record
from .diff import diff_caches
from .logging import get_logger
from .reporting import get_reporter, task
from .schema.loader import load_registry
from .schema.models import SchemaRegistry
from .session import CacheSession
from .store import DEFAULT_MANIFEST_NAME, read_directory, write_directory
from .utils.io import atomic_write_bytes, safe_read_file

__all__ = [
    "SplitOptions",
    "SplitResult",
    "MergeOptions",
    "MergeResult",
    "split_cache",
    "merge_cache",
    "plan_dry_run",
    "inspect_cache",
    "validate_cache",
    "diff_cache_files",
    "remove_tag",
    "insert_record_file",
    "CachePlan",
]


@dataclass(slots=True)
class SplitOptions:
    cache_path: Path
    output_dir: Path
    schema_path: Path
    tolerant: bool = False
    manifest_name: str = DEFAULT_MANIFEST_NAME


@dataclass(slots=True)
class SplitResult:
    output_dir: Path
    manifest_path: Path
    tag_count: int
    edge_count: int
    verified: bool
    record_files: List[Path] = field(default_factory=list)


@dataclass(slots=True)
class MergeOptions:
    input_dir: Path
    output_path: Path
    schema_path: Path
    verify: bool = False
    # Optional path; when provided the layout plan JSON is written there
    plan_path: Path | None = None
    manifest_name: str = DEFAULT_MANIFEST_NAME


@dataclass(slots=True)
class MergeResult:
    output_file: Path
    bytes_written: int
    tag_count: int
    checksum: int


def _registry(schema: Path | SchemaRegistry) -> SchemaRegistry:
    return schema if isinstance(schema, SchemaRegistry) else load_registry(schema)


def split_cache(options: SplitOptions) -> SplitResult:
    rep = get_reporter()
    registry = _registry(options.schema_path)
    data = safe_read_file(Path(options.cache_path))
    with task("split.read", "Read cache"):
        session = CacheSession.load(data, registry, tolerant=options.tolerant)
    with task("split.graph", "Resolve references") as stats:
        graph = session.build_graph()
        edge_count = sum(1 for _ in graph.edges())
        stats.update(tags=len(graph), edges=edge_count)
    exported = session.disassociate()
    stored = write_directory(
        Path(options.output_dir), exported, manifest_name=options.manifest_name
    )
    rep.status(
        "Split summary: "
        + f"tags={len(graph)} edges={edge_count} records={len(stored.record_files)} "
        + f"bytes={stored.bytes_written} verified={str(session.verified_input).lower()}"
    )
    return SplitResult(
        output_dir=Path(options.output_dir),
        manifest_path=stored.manifest_path,
        tag_count=len(graph),
        edge_count=edge_count,
        verified=session.verified_input,
        record_files=stored.record_files,
    )


def merge_cache(options: MergeOptions) -> MergeResult:
    rep = get_reporter()
    registry = _registry(options.schema_path)
    manifest, records = read_directory(
        Path(options.input_dir), manifest_name=options.manifest_name
    )
    session = CacheSession.from_records(manifest, records, registry)
    if options.plan_path is not None:
        assert session.graph is not None
        plan = compute_cache_plan(session.graph, registry)
        Path(options.plan_path).parent.mkdir(parents=True, exist_ok=True)
        with Path(options.plan_path).open("w", encoding="utf-8") as f:
            json.dump(to_plan_dict(plan), f, indent=2, sort_keys=True)
            f.write("\n")
    with task("merge.reassemble", "Reassemble cache") as stats:
        data = session.reassemble()
        stats.update(tags=len(manifest.tags), bytes=len(data))
    if options.verify:
        with task("merge.verify", "Verify output"):
            session.verify()
    session.commit(lambda out: atomic_write_bytes(Path(options.output_path), out))
    checksum = U32.unpack_from(data, CHECKSUM_OFFSET)[0]
    rep.status(
        "Merge summary: "
        + f"file={Path(options.output_path).name} bytes={len(data)} "
        + f"tags={len(manifest.tags)} checksum={checksum:08x}"
    )
    return MergeResult(
        output_file=Path(options.output_path),
        bytes_written=len(data),
        tag_count=len(manifest.tags),
        checksum=checksum,
    )


def plan_dry_run(
    input_dir: str | Path,
    schema: Path | SchemaRegistry,
    *,
    manifest_name: str = DEFAULT_MANIFEST_NAME,
) -> Tuple[CachePlan, dict]:
    """Compute the layout plan for a record directory without writing.

    Returns (CachePlan, plan_dict) where plan_dict is JSON-serialisable.
    """
    registry = _registry(schema)
    manifest, records = read_directory(Path(input_dir), manifest_name=manifest_name)
    graph = graph_from_records(manifest, records, registry)
    plan = compute_cache_plan(graph, registry)
    return plan, to_plan_dict(plan)


def inspect_cache(path: str | Path) -> dict:
    return _inspect_cache_impl(safe_read_file(Path(path)))


def validate_cache(path: str | Path, schema: Path | SchemaRegistry | None = None) -> list[str]:
    registry = _registry(schema) if schema is not None else None
    return _validate_cache_impl(safe_read_file(Path(path)), registry)


def diff_cache_files(left: str | Path, right: str | Path) -> dict[str, Any]:
    return diff_caches(safe_read_file(Path(left)), safe_read_file(Path(right)))


def _edit_directory(
    input_dir: Path, registry: SchemaRegistry, manifest_name: str
) -> CacheSession:
    manifest, records = read_directory(input_dir, manifest_name=manifest_name)
    return CacheSession.from_records(manifest, records, registry)


def remove_tag(
    input_dir: str | Path,
    schema: Path | SchemaRegistry,
    tag_id: int,
    *,
    cascade: bool = False,
    manifest_name: str = DEFAULT_MANIFEST_NAME,
) -> List[int]:
    """Remove a tag from a record directory and rewrite the directory."""
    root = Path(input_dir)
    session = _edit_directory(root, _registry(schema), manifest_name)
    removed = session.remove(tag_id, cascade=cascade)
    write_directory(root, session.disassociate(), manifest_name=manifest_name)
    get_reporter().status(
        "Mutate summary: "
        + f"removed={len(removed)} ids={','.join(f'{i:08x}' for i in removed)}"
    )
    return removed


def insert_record_file(
    input_dir: str | Path,
    schema: Path | SchemaRegistry,
    record_path: str | Path,
    *,
    manifest_name: str = DEFAULT_MANIFEST_NAME,
) -> int:
    """Insert a standalone record file into a record directory."""
    root = Path(input_dir)
    record = decode_record(safe_read_file(Path(record_path)), source=str(record_path))
    session = _edit_directory(root, _registry(schema), manifest_name)
    tag_id = session.insert_record(record)
    write_directory(root, session.disassociate(), manifest_name=manifest_name)
    get_logger().info("Inserted %s as %08x", record.path, tag_id)
    get_reporter().status(f"Mutate summary: inserted=1 id={tag_id:08x}")
    return tag_id
