#!/usr/bin/env python3
"""Part-set resolution and the split-archive entry stream."""
from pathlib import Path

import pytest

from conftest import read_paths, write_archive, write_split_archive
from vaultline_errors import CorruptArchiveError
from vaultline_format import file_entry
from vaultline_split import (
    PasswordAccessor,
    SplitArchiveReader,
    collect_split_archives,
    list_entries,
    mmap_enabled,
    remove_part,
    with_part,
)


def test_part_naming():
    assert with_part(Path("dir/foo.vla"), 2) == Path("dir/foo.part2.vla")
    assert with_part(Path("foo.part1.vla"), 3) == Path("foo.part3.vla")
    assert remove_part(Path("dir/foo.part1.vla")) == Path("dir/foo.vla")
    assert remove_part(Path("foo.vla")) == Path("foo.vla")


def test_collect_split_archives_in_order(tmp_path):
    groups = [[file_entry("a", b"1")], [file_entry("b", b"2")], [file_entry("c", b"3")]]
    paths = write_split_archive(tmp_path / "set.part1.vla", groups)
    assert collect_split_archives(paths[0]) == paths


def test_collect_missing_first_part(tmp_path):
    with pytest.raises(FileNotFoundError):
        collect_split_archives(tmp_path / "absent.vla")


@pytest.mark.parametrize("use_mmap", [False, True])
def test_entries_span_parts_in_order(tmp_path, use_mmap):
    groups = [
        [file_entry("a", b"1"), file_entry("b", b"2")],
        [file_entry("c", b"3")],
        [file_entry("d", b"4")],
    ]
    first = write_split_archive(tmp_path / "set.part1.vla", groups)[0]
    assert read_paths(first, use_mmap=use_mmap) == ["a", "b", "c", "d"]


def test_buffered_and_mapped_yield_identical_records(tmp_path):
    first = write_split_archive(
        tmp_path / "set.part1.vla",
        [[file_entry("a", b"x" * 5000)], [file_entry("b", b"y", password="pw")]],
    )[0]
    parts = collect_split_archives(first)
    with SplitArchiveReader(parts, use_mmap=False) as r1:
        buffered = [raw.to_bytes() for raw in r1.raw_entries()]
    with SplitArchiveReader(parts, use_mmap=True) as r2:
        mapped = [raw.to_bytes() for raw in r2.raw_entries()]
    assert buffered == mapped
    assert len(buffered) == 2


def test_missing_next_part_is_corrupt(tmp_path):
    paths = write_split_archive(tmp_path / "set.part1.vla", [[file_entry("a", b"1")], [file_entry("b", b"2")]])
    paths[1].unlink()
    with SplitArchiveReader(collect_split_archives(paths[0])) as reader:
        it = reader.raw_entries()
        assert next(it).path == "a"
        with pytest.raises(CorruptArchiveError):
            next(it)


def test_empty_part_under_mmap_is_corrupt(tmp_path):
    empty = tmp_path / "empty.vla"
    empty.write_bytes(b"")
    with pytest.raises(CorruptArchiveError):
        with SplitArchiveReader([empty], use_mmap=True) as reader:
            list(reader.raw_entries())


def test_abandoned_generator_is_closed(tmp_path):
    path = write_archive(tmp_path / "a.vla", [file_entry("a", b"1"), file_entry("b", b"2")])
    reader = SplitArchiveReader([path], use_mmap=True)
    with reader:
        it = reader.entries()
        next(it)
    with pytest.raises(StopIteration):
        next(it)


def test_mmap_enabled_from_env(monkeypatch):
    assert mmap_enabled() is False
    monkeypatch.setenv("VAULTLINE_MMAP", "1")
    assert mmap_enabled() is True
    assert mmap_enabled(False) is False


def test_password_accessor_prompts_once():
    accessor = PasswordAccessor(lambda: "pw")
    assert accessor.calls == 0
    assert accessor.get() == "pw"
    assert accessor() == "pw"
    assert accessor.calls == 1


def test_password_accessor_sources(tmp_path, monkeypatch):
    pw_file = tmp_path / "pw.txt"
    pw_file.write_text("from-file\nignored\n", encoding="utf-8")
    assert PasswordAccessor.from_sources(password_file=pw_file).get() == "from-file"
    monkeypatch.setenv("VAULTLINE_PASSWORD", "from-env")
    assert PasswordAccessor.from_sources().get() == "from-env"
    assert PasswordAccessor.from_sources(password="explicit").get() == "explicit"


def test_list_entries_reports_kinds(tmp_path, sample_entries):
    path = write_archive(tmp_path / "s.vla", sample_entries)
    rows = list_entries([path])
    assert [(r["path"], r["kind"]) for r in rows] == [
        ("docs", "directory"),
        ("docs/readme.txt", "file"),
        ("docs/latest", "symbolic_link"),
    ]
    assert rows[1]["modified_ns"] == 1_000_000_000
