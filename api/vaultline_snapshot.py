#!/usr/bin/env python3
"""
Incremental snapshot store: normalized path -> last archived mtime (whole
epoch seconds), persisted as a flat JSON object between runs.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Dict, Iterator, Optional, Tuple, Union

from vaultline_errors import SnapshotFormatError

NANOS = 1_000_000_000
PathLike = Union[str, os.PathLike]


def normalize_snapshot_path(path: PathLike) -> str:
    """
    Absolute paths stay as-is, ``.`` becomes ``./`` and any other relative
    path gains a leading ``./``, so ``foo`` and ``./foo`` share one key.
    """
    p = Path(path)
    if p.is_absolute():
        return str(p)
    text = p.as_posix()
    if text == ".":
        return "./"
    return f"./{text}"


class Snapshot:
    def __init__(self, entries: Optional[Dict[str, int]] = None):
        self._entries: Dict[str, int] = dict(entries or {})

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other) -> bool:
        return isinstance(other, Snapshot) and self._entries == other._entries

    def items(self) -> Iterator[Tuple[str, int]]:
        return iter(sorted(self._entries.items()))

    def to_dict(self) -> Dict[str, int]:
        return dict(self._entries)

    def get(self, path: PathLike) -> Optional[int]:
        """Stored mtime as an instant in nanoseconds, or None."""
        secs = self._entries.get(normalize_snapshot_path(path))
        return None if secs is None else secs * NANOS

    def insert(self, path: PathLike, mtime_ns: int) -> None:
        # Pre-epoch mtimes cannot be stored as unsigned seconds; skip them.
        if mtime_ns < 0:
            return
        self._entries[normalize_snapshot_path(path)] = int(mtime_ns) // NANOS

    def is_changed(self, path: PathLike, mtime_ns: int) -> bool:
        stored = self.get(path)
        if stored is None:
            return True
        return (int(mtime_ns) // NANOS) * NANOS > stored


def load_snapshot(path: PathLike) -> Snapshot:
    p = Path(path)
    try:
        raw = p.read_bytes()
    except FileNotFoundError:
        return Snapshot()
    try:
        data = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as exc:
        raise SnapshotFormatError(f"{p}: {exc}")
    if not isinstance(data, dict):
        raise SnapshotFormatError(f"{p}: expected a JSON object")
    entries: Dict[str, int] = {}
    for key, value in data.items():
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise SnapshotFormatError(f"{p}: invalid mtime for {key!r}")
        entries[str(key)] = value
    return Snapshot(entries)


def save_snapshot(path: PathLike, snapshot: Snapshot) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(json.dumps(snapshot.to_dict(), indent=2, sort_keys=True), encoding="utf-8")
