"""Command line interface for tagsplit."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from .api import (
    MergeOptions,
    SplitOptions,
    diff_cache_files,
    insert_record_file,
    inspect_cache,
    merge_cache,
    plan_dry_run,
    remove_tag,
    split_cache,
)
from .cache.errors import CacheError
from .logging import configure_logging, step
from .reporting import (
    JsonLinesReporter,
    PlainReporter,
    RichReporter,
    SilentReporter,
    get_reporter,
    set_reporter,
    set_verbosity,
)
from .store import DEFAULT_MANIFEST_NAME
from .utils.io import DataError


def _tag_id(value: str) -> int:
    try:
        return int(value, 16)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"not a hex tag id: {value!r}") from e


def _split_cmd(args: argparse.Namespace) -> int:
    split_cache(
        SplitOptions(
            cache_path=args.cache,
            output_dir=args.outdir,
            schema_path=args.schema,
            tolerant=args.tolerant,
            manifest_name=args.manifest_name,
        )
    )
    return 0


def _merge_cmd(args: argparse.Namespace) -> int:
    merge_cache(
        MergeOptions(
            input_dir=args.indir,
            output_path=args.output,
            schema_path=args.schema,
            verify=args.verify,
            plan_path=args.emit_plan,
            manifest_name=args.manifest_name,
        )
    )
    return 0


def _plan_cmd(args: argparse.Namespace) -> int:
    plan, plan_dict = plan_dry_run(
        args.indir, args.schema, manifest_name=args.manifest_name
    )
    rep = get_reporter()
    # Finalize any live progress UI before writing to stdout
    rep.flush()
    if args.json:
        print(json.dumps(plan_dict, indent=2, sort_keys=True))
    else:
        regions_summary = ",".join(
            f"{r.name}@{r.offset}+{r.size}" for r in plan.regions if r.size
        )
        rep.status(
            f"Plan summary: file_size={plan.file_size} tags={len(plan.tags)} "
            + f"padding={plan.padding.total} regions={regions_summary}",
        )
    return 0


def _inspect_cmd(args: argparse.Namespace) -> int:
    step(f"inspecting {args.cache.name}")
    info = inspect_cache(args.cache)
    rep = get_reporter()
    rep.flush()
    if args.json:
        print(json.dumps(info, indent=2, sort_keys=True))
    else:
        h = info["header"]
        rep.status(
            "Inspect summary: "
            + f"format={h['format']} name={h['name']} tags={h['tag_count']} "
            + f"file_size={h['file_size']} checksum_ok={str(info['checksum']['ok']).lower()}"
        )
    return 0


def _diff_cmd(args: argparse.Namespace) -> int:
    step("diffing cache files")
    result = diff_cache_files(args.left, args.right)
    rep = get_reporter()
    rep.section("Diff results")
    summary = result.get("summary", {})
    diff_count = summary.get("count")
    rep.status(
        "Diff summary: count="
        + f"{diff_count} left={args.left.name} right={args.right.name}",
    )
    rep.flush()
    print(json.dumps(result, indent=2, sort_keys=True))
    return 1 if diff_count else 0


def _remove_cmd(args: argparse.Namespace) -> int:
    remove_tag(
        args.indir,
        args.schema,
        args.tag_id,
        cascade=args.cascade,
        manifest_name=args.manifest_name,
    )
    return 0


def _insert_cmd(args: argparse.Namespace) -> int:
    insert_record_file(
        args.indir, args.schema, args.record, manifest_name=args.manifest_name
    )
    return 0


def _add_schema(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--schema",
        type=Path,
        required=True,
        help="Schema registry file (YAML or JSON)",
    )


def _add_manifest_name(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--manifest-name",
        dest="manifest_name",
        default=DEFAULT_MANIFEST_NAME,
        help="Manifest file name inside the record directory",
    )


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="tagsplit", description="Split and merge tag cache files"
    )
    p.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (repeatable)",
    )
    p.add_argument(
        "-r",
        "--reporter",
        choices=["plain", "rich", "json", "silent"],
        default="plain",
        help="Select reporter backend: plain (default), rich, json (JSONL events), silent",
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    s = sub.add_parser("split", help="Split a cache into standalone records")
    s.add_argument("cache", type=Path)
    s.add_argument("outdir", type=Path)
    _add_schema(s)
    s.add_argument(
        "--tolerant",
        action="store_true",
        help="Accept a checksum mismatch (reported as a warning)",
    )
    _add_manifest_name(s)
    s.set_defaults(func=_split_cmd)

    m = sub.add_parser("merge", help="Reassemble a cache from a record directory")
    m.add_argument("indir", type=Path)
    m.add_argument("output", type=Path)
    _add_schema(m)
    m.add_argument(
        "--verify",
        action="store_true",
        help="Re-read and re-resolve the output before committing it",
    )
    m.add_argument(
        "--emit-plan",
        dest="emit_plan",
        type=Path,
        help="Optional path to write the layout plan JSON",
    )
    _add_manifest_name(m)
    m.set_defaults(func=_merge_cmd)

    pl = sub.add_parser("plan", help="Compute layout plan (dry run, no write)")
    pl.add_argument("indir", type=Path)
    _add_schema(pl)
    pl.add_argument("--json", action="store_true", help="Emit JSON plan")
    _add_manifest_name(pl)
    pl.set_defaults(func=_plan_cmd)

    i = sub.add_parser("inspect", help="Inspect a cache file")
    i.add_argument("cache", type=Path)
    i.add_argument("--json", action="store_true", help="Emit JSON summary")
    i.set_defaults(func=_inspect_cmd)

    d = sub.add_parser("diff", help="Diff two cache files")
    d.add_argument("left", type=Path)
    d.add_argument("right", type=Path)
    d.set_defaults(func=_diff_cmd)

    r = sub.add_parser("remove", help="Remove a tag from a record directory")
    r.add_argument("indir", type=Path)
    r.add_argument("tag_id", type=_tag_id, help="Tag id in hex")
    _add_schema(r)
    r.add_argument(
        "--cascade",
        action="store_true",
        help="Also remove referrers and dependencies left unreferenced",
    )
    _add_manifest_name(r)
    r.set_defaults(func=_remove_cmd)

    ins = sub.add_parser("insert", help="Insert a record file into a record directory")
    ins.add_argument("indir", type=Path)
    ins.add_argument("record", type=Path)
    _add_schema(ins)
    _add_manifest_name(ins)
    ins.set_defaults(func=_insert_cmd)

    return p


def main(argv: list[str] | None = None) -> int:
    argv = argv if argv is not None else sys.argv[1:]
    parser = build_parser()
    args = parser.parse_args(argv)
    requested = args.reporter
    if requested == "json":
        set_reporter(JsonLinesReporter())
    elif requested == "silent":
        set_reporter(SilentReporter())
    elif requested == "rich" and sys.stderr.isatty():
        set_reporter(RichReporter())
    else:
        # plain, or rich without a TTY
        set_reporter(PlainReporter())
    set_verbosity(args.verbose)
    configure_logging(args.verbose)
    try:
        return args.func(args)
    except CacheError as e:
        get_reporter().error(str(e), code=e.code)
        return 2
    except (DataError, OSError, ValueError) as e:
        get_reporter().error(str(e))
        return 2


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
