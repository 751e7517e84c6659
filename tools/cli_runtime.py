#!/usr/bin/env python3
"""Shared runtime helpers for Vaultline CLI wrappers."""

from __future__ import annotations

import hashlib
import io
import json
import os
import platform
import stat
import sys
import time
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional


def resolve_repo_root(script_file: str) -> Path:
    """Resolve repo root for source and PyInstaller-frozen execution."""
    meipass = getattr(sys, "_MEIPASS", None)
    if meipass:
        root = Path(meipass)
        if (root / "api").exists():
            return root
        if (root / "_internal" / "api").exists():
            return root / "_internal"
    return Path(script_file).resolve().parent.parent


def ensure_api_path(repo_root: Path) -> None:
    api_dir = str(repo_root / "api")
    if api_dir not in sys.path:
        sys.path.insert(0, api_dir)


def _component_version(module_name: str) -> Optional[str]:
    try:
        mod = __import__(module_name)
    except Exception:
        return None
    return getattr(mod, "__version__", None) or getattr(mod, "VERSION", None)


def get_build_info(tool: str, repo_root: Path) -> Dict[str, Any]:
    return {
        "tool": tool,
        "vaultline_version": os.environ.get("VAULTLINE_BUILD_VERSION", "dev"),
        "build_commit": os.environ.get("GITHUB_SHA") or os.environ.get("VAULTLINE_BUILD_COMMIT") or "",
        "platform": platform.platform(),
        "system": platform.system(),
        "machine": platform.machine(),
        "python": platform.python_version(),
        "frozen": bool(getattr(sys, "frozen", False)),
        "repo_root": str(repo_root),
        "components": {
            "zstandard": _component_version("zstandard"),
            "cryptography": _component_version("cryptography"),
            "xxhash": _component_version("xxhash"),
            "dateparser": _component_version("dateparser"),
        },
    }


def _check(name: str, ok: bool, severity: str = "error", **extra: Any) -> Dict[str, Any]:
    row = {"name": name, "ok": bool(ok), "severity": severity}
    row.update(extra)
    return row


def summarize_checks(checks: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    checks = list(checks)
    errors = sum(1 for c in checks if not c.get("ok") and c.get("severity") == "error")
    warnings = sum(1 for c in checks if not c.get("ok") and c.get("severity") == "warning")
    return {
        "checks_total": len(checks),
        "checks_passed": sum(1 for c in checks if c.get("ok")),
        "errors": errors,
        "warnings": warnings,
        "ok": errors == 0,
    }


def group_or_world_writable(path: Path) -> bool:
    if os.name == "nt":
        return False
    try:
        mode = path.stat().st_mode
    except OSError:
        return False
    return bool(mode & (stat.S_IWGRP | stat.S_IWOTH))


def doctor_checks_common(
    *,
    tool: str,
    repo_root: Path,
    archive: Optional[Path] = None,
    out_dir: Optional[Path] = None,
    password_env: str = "VAULTLINE_PASSWORD",
) -> Dict[str, Any]:
    checks: List[Dict[str, Any]] = []

    checks.append(_check("repo_root_exists", repo_root.exists(), path=str(repo_root)))
    checks.append(_check("api_dir_exists", (repo_root / "api").exists(), path=str(repo_root / "api")))
    checks.append(_check("tool_name", True, severity="info", tool=tool))

    for module_name in ("zstandard", "cryptography", "xxhash", "dateparser"):
        checks.append(_check(f"import_{module_name}", _component_version(module_name) is not None, module=module_name))

    if archive is not None:
        exists = archive.exists()
        checks.append(_check("archive", exists, severity="warning", path=str(archive), exists=exists))
    if out_dir is not None:
        if out_dir.exists():
            ok = out_dir.is_dir()
            detail = None
            if ok and group_or_world_writable(out_dir):
                detail = "group/world-writable"
            checks.append(_check("out_dir", ok, severity="warning", path=str(out_dir), detail=detail))
        else:
            checks.append(_check("out_dir", True, severity="info", path=str(out_dir), detail="will be created"))

    password_present = bool(os.environ.get(password_env))
    checks.append(_check("password_env", password_present, severity="info", env=password_env,
                         detail="required only for encrypted entries"))
    checks.append(_check("mmap_mode", True, severity="info", enabled=os.getenv("VAULTLINE_MMAP", "") == "1"))

    return {
        "version": "vaultline-cli-doctor-v1",
        "build": get_build_info(tool, repo_root),
        "checks": checks,
        "summary": summarize_checks(checks),
    }


def self_test_core(*, tool: str, repo_root: Path) -> Dict[str, Any]:
    checks: List[Dict[str, Any]] = []
    started = time.time()
    payload = b"vaultline-self-test::" + os.urandom(32)
    ensure_api_path(repo_root)

    # zstd roundtrip
    try:
        import common_zstd  # type: ignore

        comp = common_zstd.compress(payload)
        checks.append(_check("zstd_roundtrip", common_zstd.decompress(comp) == payload, comp_bytes=len(comp)))
    except Exception as exc:
        checks.append(_check("zstd_roundtrip", False, detail=str(exc)))

    # AES-GCM seal roundtrip
    try:
        import vaultline_security  # type: ignore

        params, blob = vaultline_security.seal(payload, "vaultline-self-test", iters=1000)
        out = vaultline_security.unseal(params, blob, "vaultline-self-test")
        checks.append(_check("seal_roundtrip", out == payload))
    except Exception as exc:
        checks.append(_check("seal_roundtrip", False, detail=str(exc)))

    # epoch datetime roundtrip
    try:
        from vaultline_datetime import parse_datetime  # type: ignore

        text = "@-123.456000000"
        checks.append(_check("datetime_roundtrip", str(parse_datetime(text)) == text))
    except Exception as exc:
        checks.append(_check("datetime_roundtrip", False, detail=str(exc)))

    # archive write/read roundtrip in memory
    try:
        from vaultline_format import ArchivePartReader, ArchiveWriter, NormalEntry, file_entry  # type: ignore

        buf = io.BytesIO()
        writer = ArchiveWriter.write_header(buf)
        writer.add_entry(file_entry("self-test.bin", payload))
        writer.finalize()
        buf.seek(0)
        raws = list(ArchivePartReader(buf).raw_entries())
        ok = len(raws) == 1 and NormalEntry.from_raw(raws[0]).read_all() == payload
        checks.append(_check("archive_roundtrip", ok, archive_bytes=writer.bytes_written))
    except Exception as exc:
        checks.append(_check("archive_roundtrip", False, detail=str(exc)))

    return {
        "version": "vaultline-cli-self-test-v1",
        "build": get_build_info(tool, repo_root),
        "summary": summarize_checks(checks),
        "checks": checks,
        "duration_seconds": round(time.time() - started, 3),
        "fingerprint_sha256": hashlib.sha256(payload).hexdigest(),
    }


def version_result(*, tool: str, repo_root: Path) -> Dict[str, Any]:
    return {
        "version": "vaultline-cli-version-v1",
        "build": get_build_info(tool, repo_root),
    }


def write_json_private_default(path: Path, payload: Dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    if os.name != "nt":
        try:
            path.chmod(0o600)
        except OSError:
            pass
