#!/usr/bin/env python3
"""
vaultline_cli.py
================
Entry-stream commands for Vaultline archives.

Usage:
    python tools/vaultline_cli.py create  backup.vla ./data --incremental ./.vaultline/snap.json
    python tools/vaultline_cli.py list    backup.vla --json
    python tools/vaultline_cli.py concat  all.vla a.vla b.part1.vla --overwrite
    python tools/vaultline_cli.py diff    backup.vla --password
    python tools/vaultline_cli.py sort    backup.vla --by mtime:desc name
    python tools/vaultline_cli.py split   backup.vla --max-size 64M --out-dir ./parts
    python tools/vaultline_cli.py version | self-test | doctor
"""

from __future__ import annotations

import argparse
import contextlib
import json
import re
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from cli_runtime import (
    doctor_checks_common,
    ensure_api_path,
    resolve_repo_root,
    self_test_core,
    version_result,
    write_json_private_default,
)

CLI_SCHEMA_VERSION = "vaultline.cli.v1"
REPO_ROOT = resolve_repo_root(__file__)
ensure_api_path(REPO_ROOT)

from vaultline_concat import concat_archives  # noqa: E402
from vaultline_create import create_archive  # noqa: E402
from vaultline_datetime import TimeFilter  # noqa: E402
from vaultline_diff import diff_archive  # noqa: E402
from vaultline_errors import SortKeyError, error_payload  # noqa: E402
from vaultline_sort import parse_sort_key, sort_archive  # noqa: E402
from vaultline_split import PasswordAccessor, collect_split_archives, list_entries  # noqa: E402
from vaultline_splitter import split_archive  # noqa: E402

PROMPT = object()
_SIZE_RE = re.compile(r"^\s*(\d+)\s*([kmgt]?)i?b?\s*$", re.IGNORECASE)
_SIZE_UNITS = {"": 1, "k": 1 << 10, "m": 1 << 20, "g": 1 << 30, "t": 1 << 40}


def parse_size(text: str) -> int:
    m = _SIZE_RE.match(text or "")
    if not m:
        raise argparse.ArgumentTypeError(f"invalid size: {text!r}")
    return int(m.group(1)) * _SIZE_UNITS[m.group(2).lower()]


def _sort_key(text: str):
    try:
        return parse_sort_key(text)
    except SortKeyError as exc:
        raise argparse.ArgumentTypeError(str(exc))


def _emit_json(payload: Dict, enabled: bool, json_file: Optional[Path]) -> None:
    if json_file:
        write_json_private_default(json_file, payload)
    if enabled:
        print(json.dumps(payload, indent=2))


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("--json", action="store_true", help="Emit machine-readable JSON to stdout (human logs go to stderr).")
    p.add_argument("--json-file", default=None, help="Optional path to write the same machine-readable JSON result.")
    p.add_argument("--quiet", action="store_true", help="Suppress human progress output.")
    p.add_argument("--mmap", action="store_true", default=None, help="Memory-map archive parts while reading.")


def _add_password(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--password",
        nargs="?",
        const=PROMPT,
        default=None,
        help="Password for encrypted entries; without a value it is prompted once.",
    )
    p.add_argument("--password-file", default=None, help="Read the password from the first line of this file.")


def _accessor(args: argparse.Namespace) -> PasswordAccessor:
    pw = getattr(args, "password", None)
    return PasswordAccessor.from_sources(
        password=None if pw is PROMPT else pw,
        password_file=getattr(args, "password_file", None),
        prompt=pw is PROMPT,
    )


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="vaultline", description="Vaultline archive entry-stream tools")
    sub = ap.add_subparsers(dest="command")

    p = sub.add_parser("create", help="Create an archive from files and directories")
    p.add_argument("archive")
    p.add_argument("paths", nargs="+")
    p.add_argument("--overwrite", action="store_true")
    p.add_argument("--no-compress", action="store_true")
    p.add_argument("--incremental", default=None, metavar="SNAPSHOT",
                   help="Skip files whose mtime has not advanced since the snapshot; update it afterwards.")
    p.add_argument("--newer-mtime", default=None, help="Only files modified after this datetime.")
    p.add_argument("--older-mtime", default=None, help="Only files modified before this datetime.")
    p.add_argument("--keep-permission", action="store_true")
    p.add_argument("--no-keep-timestamp", action="store_true")
    _add_password(p)
    _add_common(p)

    p = sub.add_parser("list", help="List archive entries")
    p.add_argument("archive")
    _add_common(p)

    p = sub.add_parser("concat", help="Concatenate archives without re-encoding")
    p.add_argument("archive", help="Destination archive")
    p.add_argument("files", nargs="+", help="Source archives (first part of split archives)")
    p.add_argument("--overwrite", action="store_true")
    _add_common(p)

    p = sub.add_parser("diff", help="Compare archive entries with the filesystem")
    p.add_argument("archive")
    p.add_argument("--root", default=None, help="Resolve relative entry paths against this directory.")
    _add_password(p)
    _add_common(p)

    p = sub.add_parser("sort", help="Reorder archive entries")
    p.add_argument("archive")
    p.add_argument("--output", default=None, help="Output file path (default: archive path without part suffix)")
    p.add_argument("--by", nargs="+", default=None, type=_sort_key,
                   help="Sort keys, e.g. name mtime:desc (later keys break ties)")
    _add_common(p)

    p = sub.add_parser("split", help="Split an archive into size-bounded parts")
    p.add_argument("archive")
    p.add_argument("--max-size", type=parse_size, required=True)
    p.add_argument("--out-dir", default=None)
    p.add_argument("--overwrite", action="store_true")
    _add_common(p)

    for name in ("version", "self-test", "doctor"):
        p = sub.add_parser(name)
        p.add_argument("--archive", default=None)
        p.add_argument("--out-dir", default=None, help="Destination directory to check (doctor only).")
        p.add_argument("--json", action="store_true")
        p.add_argument("--json-file", default=None)
        p.add_argument("--quiet", action="store_true")

    return ap


def _log(args: argparse.Namespace, message: str) -> None:
    if not getattr(args, "quiet", False):
        print(message)


def _run_command(args: argparse.Namespace) -> Dict[str, Any]:
    cmd = args.command
    if cmd == "create":
        result = create_archive(
            args.archive,
            args.paths,
            overwrite=args.overwrite,
            password=_accessor(args),
            compress=not args.no_compress,
            snapshot_path=args.incremental,
            time_filter=TimeFilter.from_strings(args.newer_mtime, args.older_mtime),
            keep_timestamp=not args.no_keep_timestamp,
            keep_permission=args.keep_permission,
        )
        _log(args, f"[create] {result['archive']}: {result['entries']} entries, {len(result['skipped'])} skipped")
        return result

    if cmd == "list":
        rows = list_entries(collect_split_archives(args.archive), use_mmap=args.mmap)
        for row in rows:
            _log(args, f"{row['kind']:<13} {row['encryption']:<7} {row['path']}")
        return {"version": "vaultline-list-v1", "archive": args.archive, "entries": rows}

    if cmd == "concat":
        result = concat_archives(args.archive, args.files, overwrite=args.overwrite, use_mmap=args.mmap)
        _log(args, f"[concat] {result['destination']}: {result['entries']} entries from {len(result['sources'])} archives")
        return result

    if cmd == "diff":
        lines: List[str] = []
        parts = collect_split_archives(args.archive)
        for line in diff_archive(parts, _accessor(args), root=args.root, use_mmap=args.mmap):
            lines.append(line)
            # Findings are the command's output, so --quiet does not hide them.
            print(line)
        return {"version": "vaultline-diff-v1", "archive": args.archive, "discrepancies": lines}

    if cmd == "sort":
        result = sort_archive(args.archive, keys=args.by, output=args.output, use_mmap=args.mmap)
        _log(args, f"[sort] {result['output']}: {result['entries']} entries by {', '.join(result['keys'])}")
        return result

    if cmd == "split":
        result = split_archive(
            args.archive,
            out_dir=args.out_dir,
            max_part_size=args.max_size,
            overwrite=args.overwrite,
            use_mmap=args.mmap,
        )
        _log(args, f"[split] {result['archive']}: {len(result['parts'])} parts")
        return result

    raise SystemExit(f"Unknown command: {cmd}")


def _runtime_command(args: argparse.Namespace) -> int:
    archive = Path(args.archive).resolve() if args.archive else None
    if args.command == "version":
        result = version_result(tool="vaultline", repo_root=REPO_ROOT)
        ok = True
    elif args.command == "self-test":
        result = self_test_core(tool="vaultline", repo_root=REPO_ROOT)
        ok = bool(result.get("summary", {}).get("ok"))
    else:
        out_dir = Path(args.out_dir).resolve() if args.out_dir else None
        result = doctor_checks_common(tool="vaultline", repo_root=REPO_ROOT, archive=archive, out_dir=out_dir)
        ok = bool(result.get("summary", {}).get("ok"))

    payload = {
        "schema_version": CLI_SCHEMA_VERSION,
        "tool": "vaultline",
        "command": args.command.replace("-", "_"),
        "ok": ok,
        "exit_code": 0 if ok else 1,
        "result": result,
    }
    json_file = Path(args.json_file).resolve() if args.json_file else None
    _emit_json(payload, args.json, json_file)
    if not args.json and not args.quiet:
        if args.command == "version":
            build = result.get("build", {})
            print(f"vaultline {build.get('vaultline_version', 'dev')} ({build.get('system', '?')}/{build.get('machine', '?')})")
        else:
            summary = result.get("summary", {})
            print(
                f"[{args.command}] ok={summary.get('ok')} "
                f"passed={summary.get('checks_passed')}/{summary.get('checks_total')} "
                f"errors={summary.get('errors')} warnings={summary.get('warnings')}"
            )
    return 0 if ok else 1


def run(argv: Optional[List[str]] = None) -> int:
    ap = build_parser()
    args = ap.parse_args(argv)
    if not args.command:
        ap.print_help()
        return 2
    if args.command in {"version", "self-test", "doctor"}:
        return _runtime_command(args)

    json_file = Path(args.json_file).resolve() if args.json_file else None
    base = {
        "schema_version": CLI_SCHEMA_VERSION,
        "tool": "vaultline",
        "command": args.command,
        "archive": str(args.archive),
    }
    try:
        if args.json:
            with contextlib.redirect_stdout(sys.stderr):
                result = _run_command(args)
        else:
            result = _run_command(args)
    except Exception as exc:
        if args.json or json_file:
            _emit_json({**base, "ok": False, "exit_code": 1, "error": error_payload(exc)}, args.json, json_file)
        else:
            print(f"error: {exc}", file=sys.stderr)
        return 1

    _emit_json({**base, "ok": True, "exit_code": 0, "result": result}, args.json, json_file)
    return 0


def main() -> None:
    raise SystemExit(run())


if __name__ == "__main__":
    main()
