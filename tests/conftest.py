from __future__ import annotations

import json
from pathlib import Path

import pytest

from cache_builder import STANDARD_REGISTRY, standard_cache
from tagsplit.reporting import SilentReporter, get_reporter, set_reporter
from tagsplit.schema.loader import registry_from_dict


@pytest.fixture(autouse=True)
def _silent_reporter():
    previous = get_reporter()
    set_reporter(SilentReporter())
    yield
    set_reporter(previous)


@pytest.fixture
def registry():
    return registry_from_dict(STANDARD_REGISTRY)


@pytest.fixture
def cache_bytes() -> bytes:
    return standard_cache()


@pytest.fixture
def schema_file(tmp_path: Path) -> Path:
    path = tmp_path / "registry.json"
    path.write_text(json.dumps(STANDARD_REGISTRY), encoding="utf-8")
    return path


@pytest.fixture
def cache_file(tmp_path: Path, cache_bytes: bytes) -> Path:
    path = tmp_path / "test.map"
    path.write_bytes(cache_bytes)
    return path
