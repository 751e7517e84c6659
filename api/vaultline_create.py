#!/usr/bin/env python3
"""
Minimal archive creation: walk paths, emit file / directory / symlink /
hard-link entries, optionally skipping files that an incremental snapshot
or a time filter says are unchanged.
"""

from __future__ import annotations

import os
import stat
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Tuple, Union

from vaultline_datetime import TimeFilter
from vaultline_errors import ArchiveExistsError
from vaultline_format import (
    ArchiveWriter,
    Compression,
    NormalEntry,
    directory_entry,
    file_entry,
    hardlink_entry,
    symlink_entry,
)
from vaultline_snapshot import Snapshot, load_snapshot, save_snapshot
from vaultline_split import PasswordAccessor, as_accessor

PathLike = Union[str, os.PathLike]
SKIP_DIRS = {".git", "__pycache__", ".pytest_cache"}


def walk_paths(paths: Sequence[PathLike]) -> Iterator[Path]:
    """Each root, then its tree in sorted order; directory symlinks are not followed."""
    for item in paths:
        root = Path(item)
        yield root
        if root.is_dir() and not root.is_symlink():
            for dirpath, dirnames, filenames in os.walk(root):
                dirnames[:] = sorted(d for d in dirnames if d not in SKIP_DIRS)
                base = Path(dirpath)
                children = sorted(dirnames + filenames)
                for name in children:
                    yield base / name


def _metadata(st: os.stat_result, keep_timestamp: bool, keep_permission: bool) -> Dict:
    meta: Dict = {}
    if keep_timestamp:
        meta["created"] = getattr(st, "st_birthtime_ns", None)
        meta["modified"] = st.st_mtime_ns
        meta["accessed"] = st.st_atime_ns
    if keep_permission:
        meta["permission"] = {
            "uid": st.st_uid,
            "gid": st.st_gid,
            "mode": stat.S_IMODE(st.st_mode),
        }
    return meta


def build_entry(
    path: Path,
    st: os.stat_result,
    password: Optional[str],
    compress: bool,
    seen_inodes: Dict[Tuple[int, int], str],
    keep_timestamp: bool = True,
    keep_permission: bool = False,
) -> Optional[NormalEntry]:
    name = path.as_posix()
    meta = _metadata(st, keep_timestamp, keep_permission)
    if stat.S_ISLNK(st.st_mode):
        return symlink_entry(name, os.readlink(path), password=password, **meta)
    if stat.S_ISDIR(st.st_mode):
        return directory_entry(name, **meta)
    if stat.S_ISREG(st.st_mode):
        inode = (st.st_dev, st.st_ino)
        if st.st_nlink > 1 and inode in seen_inodes:
            return hardlink_entry(name, seen_inodes[inode], password=password, **meta)
        seen_inodes[inode] = name
        compression = Compression.ZSTD if compress else Compression.NONE
        return file_entry(name, path.read_bytes(), compression=compression, password=password, **meta)
    return None


def create_archive(
    archive: PathLike,
    paths: Sequence[PathLike],
    overwrite: bool = False,
    password: Union[PasswordAccessor, str, None] = None,
    compress: bool = True,
    snapshot_path: Optional[PathLike] = None,
    time_filter: Optional[TimeFilter] = None,
    keep_timestamp: bool = True,
    keep_permission: bool = False,
) -> Dict:
    target = Path(archive)
    if not overwrite and target.exists():
        raise ArchiveExistsError(f"{target} already exists")
    accessor = as_accessor(password)
    snapshot: Optional[Snapshot] = load_snapshot(snapshot_path) if snapshot_path else None
    time_filter = time_filter or TimeFilter()

    seen: Dict[Tuple[int, int], str] = {}
    skipped: List[Dict] = []
    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open("wb") as out:
        writer = ArchiveWriter.write_header(out)
        for path in walk_paths(paths):
            if path.resolve() == target.resolve():
                continue
            st = path.lstat()
            if not stat.S_ISDIR(st.st_mode):
                if not time_filter.matches(st.st_mtime_ns):
                    skipped.append({"path": path.as_posix(), "reason": "time_filter"})
                    continue
                if snapshot is not None:
                    if not snapshot.is_changed(path, st.st_mtime_ns):
                        skipped.append({"path": path.as_posix(), "reason": "unchanged"})
                        continue
                    snapshot.insert(path, st.st_mtime_ns)
            entry = build_entry(path, st, accessor.get(), compress, seen, keep_timestamp, keep_permission)
            if entry is None:
                skipped.append({"path": path.as_posix(), "reason": "unsupported_type"})
                continue
            writer.add_entry(entry)
        writer.finalize()

    if snapshot is not None:
        save_snapshot(snapshot_path, snapshot)

    return {
        "version": "vaultline-create-v1",
        "archive": str(target),
        "entries": writer.entries_written,
        "bytes_written": writer.bytes_written,
        "skipped": skipped,
        "encrypted": accessor.get() is not None,
    }
