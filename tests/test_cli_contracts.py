#!/usr/bin/env python3
"""CLI JSON contract tests for the vaultline entry-stream commands."""
import json
import os
import subprocess
import sys
from pathlib import Path

from conftest import write_archive, write_split_archive
from vaultline_format import directory_entry, file_entry

REPO_ROOT = Path(__file__).resolve().parent.parent
CLI = REPO_ROOT / "tools" / "vaultline_cli.py"


def _run_json(args, cwd=None):
    proc = subprocess.run([sys.executable, str(CLI), *args], capture_output=True, text=True, check=True, cwd=cwd)
    try:
        return json.loads(proc.stdout)
    except Exception as exc:
        raise AssertionError(f"stdout was not valid JSON: {exc}\nSTDOUT:\n{proc.stdout}\nSTDERR:\n{proc.stderr}")


def _run_json_no_check(args, env=None):
    proc = subprocess.run([sys.executable, str(CLI), *args], capture_output=True, text=True, check=False, env=env)
    payload = None
    if proc.stdout.strip():
        try:
            payload = json.loads(proc.stdout)
        except Exception as exc:
            raise AssertionError(f"stdout was not valid JSON: {exc}\nSTDOUT:\n{proc.stdout}\nSTDERR:\n{proc.stderr}")
    return proc, payload


def _assert_envelope(payload, command):
    assert payload["schema_version"] == "vaultline.cli.v1"
    assert payload["tool"] == "vaultline"
    assert payload["command"] == command
    assert payload["ok"] is True
    assert payload["exit_code"] == 0
    assert isinstance(payload["result"], dict)


def test_list_json_contract(tmp_path):
    archive = write_archive(tmp_path / "a.vla", [directory_entry("d"), file_entry("d/f", b"x", modified=7)])
    payload = _run_json(["list", str(archive), "--json"])
    _assert_envelope(payload, "list")
    rows = payload["result"]["entries"]
    assert [(r["path"], r["kind"]) for r in rows] == [("d", "directory"), ("d/f", "file")]
    assert rows[1]["modified_ns"] == 7


def test_concat_json_contract(tmp_path):
    a = write_archive(tmp_path / "a.vla", [file_entry("a", b"1")])
    first = write_split_archive(tmp_path / "b.part1.vla", [[file_entry("b", b"2")], [file_entry("c", b"3")]])[0]
    dest = tmp_path / "all.vla"
    payload = _run_json(["concat", str(dest), str(a), str(first), "--json", "--mmap"])
    _assert_envelope(payload, "concat")
    result = payload["result"]
    assert result["version"] == "vaultline-concat-v1"
    assert result["entries"] == 3
    assert [s["parts"] for s in result["sources"]] == [1, 2]


def test_concat_existing_destination_error_envelope(tmp_path):
    a = write_archive(tmp_path / "a.vla", [file_entry("a", b"1")])
    dest = tmp_path / "taken.vla"
    dest.write_bytes(b"keep")
    proc, payload = _run_json_no_check(["concat", str(dest), str(a), "--json"])
    assert proc.returncode == 1
    assert payload["ok"] is False
    assert payload["exit_code"] == 1
    assert payload["error"]["code"] == "already_exists"
    assert dest.read_bytes() == b"keep"


def test_sort_json_contract(tmp_path):
    archive = write_archive(tmp_path / "s.vla", [
        file_entry("b", b"", modified=1),
        file_entry("a", b"", modified=2),
    ])
    payload = _run_json(["sort", str(archive), "--by", "mtime:desc", "name", "--json"])
    _assert_envelope(payload, "sort")
    assert payload["result"]["keys"] == ["mtime:desc", "name:asc"]
    listed = _run_json(["list", str(archive), "--json"])
    assert [r["path"] for r in listed["result"]["entries"]] == ["a", "b"]


def test_sort_rejects_unknown_key(tmp_path):
    archive = write_archive(tmp_path / "s.vla", [file_entry("a", b"")])
    proc, _ = _run_json_no_check(["sort", str(archive), "--by", "size"])
    assert proc.returncode == 2
    assert "INVALID_SORT_KEY" in proc.stderr


def test_diff_json_contract_keeps_stdout_clean(tmp_path):
    live = tmp_path / "live"
    live.mkdir()
    (live / "same.txt").write_bytes(b"ok")
    archive = write_archive(tmp_path / "d.vla", [
        file_entry("same.txt", b"ok"),
        file_entry("gone.txt", b"?"),
        directory_entry("nodir"),
    ])
    proc, payload = _run_json_no_check(["diff", str(archive), "--root", str(live), "--json"])
    assert proc.returncode == 0
    _assert_envelope(payload, "diff")
    assert payload["result"]["discrepancies"] == ["Missing file: gone.txt", "Missing directory: nodir"]
    assert "Missing file: gone.txt" in proc.stderr


def test_diff_password_from_env(tmp_path):
    live = tmp_path / "live"
    live.mkdir()
    (live / "s.txt").write_bytes(b"secret")
    archive = write_archive(tmp_path / "e.vla", [file_entry("s.txt", b"secret", password="pw")])
    env = dict(os.environ, VAULTLINE_PASSWORD="pw")
    proc, payload = _run_json_no_check(["diff", str(archive), "--root", str(live), "--json"], env=env)
    assert proc.returncode == 0, proc.stderr
    assert payload["result"]["discrepancies"] == []

    env["VAULTLINE_PASSWORD"] = "wrong"
    proc, payload = _run_json_no_check(["diff", str(archive), "--root", str(live), "--json"], env=env)
    assert proc.returncode == 1
    assert payload["error"]["code"] == "decryption_failure"


def test_create_and_split_json_contract(tmp_path):
    src = tmp_path / "data"
    src.mkdir()
    for i in range(4):
        (src / f"f{i}.bin").write_bytes(os.urandom(600))
    payload = _run_json(["create", "out.vla", "data", "--no-compress", "--json"], cwd=tmp_path)
    _assert_envelope(payload, "create")
    assert payload["result"]["entries"] == 5

    payload = _run_json(["split", str(tmp_path / "out.vla"), "--max-size", "1K",
                         "--out-dir", str(tmp_path / "parts"), "--json"])
    _assert_envelope(payload, "split")
    parts = payload["result"]["parts"]
    assert len(parts) > 1
    assert Path(parts[0]["part"]).name == "out.part1.vla"


def test_runtime_version_json_contract():
    payload = _run_json(["version", "--json"])
    assert payload["command"] == "version"
    assert payload["ok"] is True
    assert payload["result"]["version"] == "vaultline-cli-version-v1"
    assert "build" in payload["result"]


def test_runtime_self_test_json_contract(tmp_path):
    json_file = tmp_path / "self_test.json"
    payload = _run_json(["self-test", "--json", "--json-file", str(json_file)])
    assert payload["command"] == "self_test"
    assert payload["ok"] is True
    assert payload["result"]["summary"]["ok"] is True
    assert json.loads(json_file.read_text(encoding="utf-8")) == payload


def test_runtime_doctor_json_contract(tmp_path):
    archive = write_archive(tmp_path / "a.vla", [file_entry("a", b"1")])
    payload = _run_json(["doctor", "--archive", str(archive), "--out-dir", str(tmp_path / "new"), "--json"])
    assert payload["command"] == "doctor"
    assert payload["ok"] is True
    checks = {c["name"]: c for c in payload["result"]["checks"]}
    assert checks["archive"]["ok"] is True
    assert checks["out_dir"]["detail"] == "will be created"
    assert checks["import_dateparser"]["ok"] is True
