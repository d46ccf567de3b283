import io
import json
import logging

import pytest
from rich.console import Console

from tagsplit.logging import configure_logging, get_logger, step
from tagsplit.reporting import (
    JsonLinesReporter,
    PlainReporter,
    RichReporter,
    SilentReporter,
    TaskStatus,
    set_reporter,
    set_verbosity,
    task,
)
from tagsplit.reporting.base import TaskRecord


def test_plain_reporter_lines():
    stream = io.StringIO()
    rep = PlainReporter(stream=stream, use_color=False)
    rep.status("hello")
    rep.warning("careful")
    rep.error("broken")
    rep.section("Layout")
    assert stream.getvalue() == "INFO: hello\nWARN: careful\nERROR: broken\n\n[Layout]\n"


def test_plain_reporter_task_stats():
    stream = io.StringIO()
    set_reporter(PlainReporter(stream=stream, use_color=False))
    with task("merge.reassemble", "Reassembling", total=None) as stats:
        stats["tags"] = 6
        stats["bytes"] = 2176
        stats["ignored"] = "x"
    line = stream.getvalue().strip()
    assert line.startswith("✔ Reassembling (")
    assert line.endswith("[tags=6 bytes=2176]")


def test_task_failure_propagates():
    stream = io.StringIO()
    set_reporter(JsonLinesReporter(stream=stream))
    with pytest.raises(RuntimeError):
        with task("split.read", "Reading"):
            raise RuntimeError("boom")
    events = [json.loads(line) for line in stream.getvalue().splitlines()]
    assert [e["event"] for e in events] == ["task_start", "task_end"]
    assert events[-1]["status"] == "failed"


def test_completion_line_progress():
    rec = TaskRecord("t", "Writing", total=4, completed=2)
    rec.finish(TaskStatus.SKIPPED, {"records": 2})
    assert rec.completion_line().startswith("→ Writing 2/4 (")
    assert rec.completion_line().endswith("[records=2]")


def test_jsonl_summary_event():
    stream = io.StringIO()
    rep = JsonLinesReporter(stream=stream)
    rep.status("Merge summary: file=out.map bytes=10 tags=3")
    rep.status("Something else: a=1")
    events = [json.loads(line) for line in stream.getvalue().splitlines()]
    summaries = [e for e in events if e["event"] == "summary"]
    assert len(summaries) == 1
    assert summaries[0]["summary_type"] == "merge"
    assert summaries[0]["bytes"] == "10"
    assert summaries[0]["file"] == "out.map"
    assert len([e for e in events if e["event"] == "status"]) == 2


def test_jsonl_verbose_respects_verbosity():
    stream = io.StringIO()
    rep = JsonLinesReporter(stream=stream)
    set_verbosity(0)
    rep.verbose("hidden")
    assert stream.getvalue() == ""
    set_verbosity(1)
    try:
        rep.verbose("shown")
    finally:
        set_verbosity(0)
    assert json.loads(stream.getvalue())["level"] == "verbose1"


def test_logging_routes_to_reporter():
    stream = io.StringIO()
    set_reporter(PlainReporter(stream=stream, use_color=False))
    configure_logging(0)
    logger = get_logger()
    logger.warning("record %s skipped", "x")
    logger.info("loaded")
    logger.debug("not shown")
    step("writing")
    assert stream.getvalue().splitlines() == [
        "WARN: record x skipped",
        "INFO: loaded",
        "INFO:   -> writing",
    ]
    assert logger.level == logging.INFO


def test_rich_reporter_prints_stats_literally(monkeypatch):
    monkeypatch.delenv("TAGSPLIT_PROGRESS_TRANSIENT", raising=False)
    stream = io.StringIO()
    rep = RichReporter(Console(file=stream, force_terminal=False, width=120))
    set_reporter(rep)
    with task("split.write", "Writing records", total=2) as stats:
        rep.advance("split.write", current_item="a.tagrec")
        rep.advance("split.write", current_item="b.tagrec")
        stats["records"] = 2
    rep.status("Split summary: dir=[out]")
    rep.flush()
    out = stream.getvalue()
    assert "[records=2]" in out
    assert "Split summary: dir=[out]" in out
    assert rep.progress is None


def test_silent_reporter_counts_problems():
    rep = SilentReporter()
    set_reporter(rep)
    with task("merge.write", "Writing"):
        rep.status("ignored")
    rep.warning("slow")
    rep.error("broken")
    rep.error("still broken")
    assert (rep.errors, rep.warnings) == (2, 1)
