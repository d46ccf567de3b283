from dataclasses import replace
from pathlib import Path

import pytest

from cache_builder import SHADER, STANDARD_TAGS, tag_id
from tagsplit.cache.disassociator import disassociate
from tagsplit.cache.errors import CorruptRecord
from tagsplit.cache.graph import build_graph
from tagsplit.cache.reader import read_cache
from tagsplit.store import read_directory, write_directory
from tagsplit.utils.paths import record_file_name, safe_file_path, tag_path_segments


@pytest.fixture
def exported(cache_bytes: bytes, registry):
    return disassociate(build_graph(read_cache(cache_bytes), registry))


def test_write_directory_layout(tmp_path: Path, exported):
    result = write_directory(tmp_path / "out", exported)
    root = (tmp_path / "out").resolve()
    assert result.manifest_path == root / "manifest.json"
    assert len(result.record_files) == len(STANDARD_TAGS)
    assert (root / "levels" / "test" / "test.scnr.tagrec").is_file()
    assert (root / "ui" / "hud" / "crosshair.bitm.tagrec").is_file()
    assert result.bytes_written == sum(p.stat().st_size for p in result.record_files)


def test_read_directory_round_trip(tmp_path: Path, exported):
    write_directory(tmp_path, exported)
    manifest, records = read_directory(tmp_path)
    assert manifest == exported.manifest
    assert sorted(records, key=lambda r: r.tag_id) == sorted(
        exported.records, key=lambda r: r.tag_id
    )


def test_case_collision_gets_id_suffix(tmp_path: Path, exported):
    shader = next(r for r in exported.records if r.tag_id == tag_id(SHADER))
    twin = replace(shader, tag_id=0x0BAD0BAD, path="SHADERS\\BOX")
    exported.records.append(twin)
    result = write_directory(tmp_path, exported)
    names = {p.name for p in result.record_files}
    assert "box.shdr.tagrec" in names
    assert "BOX.0bad0bad.shdr.tagrec" in names


def test_stale_records_are_pruned(tmp_path: Path, exported):
    stale = tmp_path / "old" / "gone.ustr.tagrec"
    stale.parent.mkdir(parents=True)
    stale.write_bytes(b"")
    keep = tmp_path / "notes.txt"
    keep.write_text("keep me")
    result = write_directory(tmp_path, exported)
    assert not stale.exists()
    assert keep.exists()
    assert result.removed_files == [stale.resolve()]


def test_corrupt_record_file(tmp_path: Path, exported):
    result = write_directory(tmp_path, exported)
    result.record_files[0].write_bytes(b"garbage")
    with pytest.raises(CorruptRecord):
        read_directory(tmp_path)


def test_missing_manifest(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        read_directory(tmp_path)


def test_tag_path_segments():
    assert tag_path_segments("levels\\a10\\a10") == ["levels", "a10", "a10"]
    assert tag_path_segments("..\\..\\etc\\passwd") == ["etc", "passwd"]
    assert tag_path_segments("a/b\\c") == ["a", "b", "c"]
    assert tag_path_segments("") == ["_unnamed"]
    assert tag_path_segments("bad:name?") == ["bad_name_"]


def test_record_file_name():
    assert record_file_name("a\\b", "bitm", ".tagrec") == Path("a", "b.bitm.tagrec")
    assert record_file_name("a", None, ".tagrec", 0x1234) == Path("a.00001234.none.tagrec")


def test_safe_file_path_rejects_escape(tmp_path: Path):
    with pytest.raises(ValueError):
        safe_file_path(tmp_path, "../outside")
