#!/usr/bin/env python3
"""
Compare archive entries against the live filesystem.

Discrepancies are yielded as report lines and never stop the walk; only
decode and I/O failures on the archive side propagate.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Iterator, Optional, Sequence, Union

from vaultline_format import DataKind, NormalEntry
from vaultline_split import PasswordAccessor, SplitArchiveReader, as_accessor

PathLike = Union[str, os.PathLike]


def _live_path(entry: NormalEntry, root: Optional[Path]) -> Path:
    path = Path(entry.path)
    if root is None or path.is_absolute():
        return path
    return root / path


def compare_entry(entry: NormalEntry, password: PasswordAccessor, root: Optional[Path] = None) -> Optional[str]:
    """Return a discrepancy line for one entry, or None when it matches."""
    live = _live_path(entry, root)
    kind = entry.header.kind
    shown = entry.path

    if kind == DataKind.FILE:
        try:
            current = live.read_bytes()
        except OSError:
            return f"Missing file: {shown}"
        stored = entry.read_all(password.get() if entry.encrypted else None)
        if stored != current:
            return f"Different file content: {shown}"
        return None

    if kind == DataKind.DIRECTORY:
        if not live.is_dir():
            return f"Missing directory: {shown}"
        return None

    if kind == DataKind.SYMBOLIC_LINK:
        try:
            current_target = os.readlink(live)
        except OSError:
            return f"Missing symlink: {shown}"
        stored_target = entry.read_all(password.get() if entry.encrypted else None).decode("utf-8")
        if Path(current_target) != Path(stored_target):
            return f"Different symlink: {shown}"
        return None

    if kind == DataKind.HARD_LINK:
        # Only existence is checked; link identity with the recorded target is not.
        if not live.exists():
            return f"Missing hardlink: {shown}"
        return None

    return None


def diff_archive(
    parts: Sequence[PathLike],
    password: Union[PasswordAccessor, str, None] = None,
    root: Optional[PathLike] = None,
    use_mmap: Optional[bool] = None,
) -> Iterator[str]:
    accessor = as_accessor(password)
    base = Path(root) if root is not None else None
    with SplitArchiveReader(parts, use_mmap=use_mmap) as reader:
        for entry in reader.entries():
            line = compare_entry(entry, accessor, base)
            if line is not None:
                yield line
