"""Progress and status output for the split, merge and edit commands.

Library code reports through :func:`task`, :func:`section` and
:func:`get_reporter`; the CLI installs one backend per run with
:func:`set_reporter`.
"""

from .base import (
    Reporter,
    TaskRecord,
    TaskStatus,
    get_reporter,
    get_verbosity,
    section,
    set_reporter,
    set_verbosity,
    task,
)
from .jsonl import JsonLinesReporter
from .plain import PlainReporter
from .rich_reporter import RichReporter
from .silent import SilentReporter

__all__ = [
    # backends
    "PlainReporter",
    "RichReporter",
    "JsonLinesReporter",
    "SilentReporter",
    # reporting api
    "Reporter",
    "TaskRecord",
    "TaskStatus",
    "task",
    "section",
    "get_reporter",
    "set_reporter",
    "get_verbosity",
    "set_verbosity",
]
