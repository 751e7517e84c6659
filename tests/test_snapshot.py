#!/usr/bin/env python3
import json
from pathlib import Path

import pytest

from vaultline_errors import SnapshotFormatError
from vaultline_snapshot import Snapshot, load_snapshot, normalize_snapshot_path, save_snapshot

NANOS = 1_000_000_000


def test_relative_paths_share_one_key():
    assert normalize_snapshot_path("foo") == "./foo"
    assert normalize_snapshot_path("./foo") == "./foo"
    assert normalize_snapshot_path(".") == "./"
    assert normalize_snapshot_path(Path("a") / "b") == "./a/b"


def test_absolute_path_is_kept(tmp_path):
    assert normalize_snapshot_path(tmp_path / "x") == str(tmp_path / "x")


def test_insert_and_get_use_whole_seconds():
    snap = Snapshot()
    snap.insert("foo", 1_700_000_000 * NANOS + 999_999_999)
    assert snap.get("./foo") == 1_700_000_000 * NANOS
    assert snap.to_dict() == {"./foo": 1_700_000_000}
    assert snap.get("bar") is None


def test_pre_epoch_mtime_is_not_stored():
    snap = Snapshot()
    snap.insert("old", -5 * NANOS)
    assert len(snap) == 0


def test_is_changed_ignores_sub_second_noise():
    snap = Snapshot()
    snap.insert("f", 100 * NANOS + 10)
    assert not snap.is_changed("./f", 100 * NANOS + 900_000_000)
    assert snap.is_changed("f", 101 * NANOS)
    assert snap.is_changed("never-seen", 0)


def test_save_and_load_persist(tmp_path):
    path = tmp_path / "state" / "nested" / "snapshot.json"
    snap = Snapshot()
    snap.insert("b", 2 * NANOS)
    snap.insert("a", 1 * NANOS)
    save_snapshot(path, snap)

    assert json.loads(path.read_text(encoding="utf-8")) == {"./a": 1, "./b": 2}
    assert load_snapshot(path) == snap
    assert list(load_snapshot(path).items()) == [("./a", 1), ("./b", 2)]


def test_missing_snapshot_is_empty(tmp_path):
    assert len(load_snapshot(tmp_path / "absent.json")) == 0


@pytest.mark.parametrize("content", ["{not json", "[1, 2]", '{"./a": "soon"}', '{"./a": -1}', '{"./a": true}'])
def test_malformed_snapshot_raises(tmp_path, content):
    path = tmp_path / "snap.json"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(SnapshotFormatError):
        load_snapshot(path)
