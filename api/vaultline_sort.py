#!/usr/bin/env python3
"""
Multi-key archive sort.

Keys cascade left to right: a later key only breaks ties left by the
earlier ones. The rewritten archive is staged next to its destination and
moved into place with ``os.replace`` once finalized.
"""

from __future__ import annotations

import functools
import os
import tempfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Union

from vaultline_errors import SortKeyError
from vaultline_format import ArchiveWriter, NormalEntry
from vaultline_split import PasswordAccessor, SplitArchiveReader, collect_split_archives, remove_part

PathLike = Union[str, os.PathLike]


class SortField(Enum):
    NAME = "name"
    CTIME = "ctime"
    MTIME = "mtime"
    ATIME = "atime"


class SortOrder(Enum):
    ASC = "asc"
    DESC = "desc"


_FIELD_ALIASES = {
    "name": SortField.NAME,
    "path": SortField.NAME,
    "ctime": SortField.CTIME,
    "created": SortField.CTIME,
    "mtime": SortField.MTIME,
    "modified": SortField.MTIME,
    "atime": SortField.ATIME,
    "accessed": SortField.ATIME,
}
_ORDER_ALIASES = {
    "asc": SortOrder.ASC,
    "ascending": SortOrder.ASC,
    "desc": SortOrder.DESC,
    "descending": SortOrder.DESC,
}


@dataclass(frozen=True)
class SortKey:
    field: SortField
    order: SortOrder = SortOrder.ASC

    def __str__(self) -> str:
        return f"{self.field.value}:{self.order.value}"


DEFAULT_KEYS = (SortKey(SortField.NAME),)


def parse_sort_key(text: str) -> SortKey:
    """``name``, ``mtime:desc``, ``atime:ascending`` ..."""
    name, sep, order = (text or "").strip().lower().partition(":")
    field = _FIELD_ALIASES.get(name)
    if field is None:
        raise SortKeyError(f"unknown sort field {name!r} (expected one of name, ctime, mtime, atime)")
    if not sep:
        return SortKey(field)
    direction = _ORDER_ALIASES.get(order)
    if direction is None:
        raise SortKeyError(f"unknown sort order {order!r} (expected asc or desc)")
    return SortKey(field, direction)


def _field_value(entry: NormalEntry, field: SortField):
    if field == SortField.NAME:
        return entry.path
    meta = entry.metadata
    if field == SortField.CTIME:
        return meta.created
    if field == SortField.MTIME:
        return meta.modified
    return meta.accessed


def _cmp(a, b) -> int:
    # Entries without the timestamp order before any entry that has one.
    if a is None or b is None:
        return (a is not None) - (b is not None)
    return (a > b) - (a < b)


def compare_entries(a: NormalEntry, b: NormalEntry, keys: Sequence[SortKey]) -> int:
    for key in keys:
        result = _cmp(_field_value(a, key.field), _field_value(b, key.field))
        if key.order == SortOrder.DESC:
            result = -result
        if result != 0:
            return result
    return 0


def sort_entries(entries: Iterable[NormalEntry], keys: Sequence[SortKey] = DEFAULT_KEYS) -> List[NormalEntry]:
    keys = tuple(keys) or DEFAULT_KEYS
    return sorted(entries, key=functools.cmp_to_key(lambda a, b: compare_entries(a, b, keys)))


def _cleanup_tmp(path: Path) -> None:
    try:
        if path.exists():
            path.unlink()
    except OSError:
        pass


def write_archive_atomic(entries: Iterable[NormalEntry], output: PathLike) -> Dict:
    """Stage into a temp file in the destination directory, then os.replace it."""
    target = Path(output)
    target.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        prefix=f".{target.name}.", suffix=".tmp", dir=str(target.parent), delete=False
    ) as tf:
        tmp_path = Path(tf.name)
    try:
        with tmp_path.open("wb") as out:
            writer = ArchiveWriter.write_header(out)
            for entry in entries:
                writer.add_entry(entry)
            writer.finalize()
            out.flush()
            os.fsync(out.fileno())
        os.replace(tmp_path, target)
    except BaseException:
        _cleanup_tmp(tmp_path)
        raise
    return {"entries": writer.entries_written, "bytes_written": writer.bytes_written}


def sort_archive(
    archive: PathLike,
    keys: Optional[Sequence[SortKey]] = None,
    output: Optional[PathLike] = None,
    password: Union[PasswordAccessor, str, None] = None,
    use_mmap: Optional[bool] = None,
) -> Dict:
    """
    Materialize every entry of ``archive`` (all parts), order them by
    ``keys`` and rewrite to ``output`` (default: archive path minus its
    ``.partN`` suffix).

    Content is never decoded: entries keep their stored bytes, so sorting
    an encrypted archive never evaluates ``password``.
    """
    keys = tuple(keys) if keys else DEFAULT_KEYS
    parts = collect_split_archives(archive)
    target = Path(output) if output is not None else remove_part(archive)

    # Inputs (and their maps) are released when this block exits, before
    # the staged file can replace one of them.
    with SplitArchiveReader(parts, use_mmap=use_mmap) as reader:
        entries = list(reader.entries())

    ordered = sort_entries(entries, keys)
    written = write_archive_atomic(ordered, target)
    return {
        "version": "vaultline-sort-v1",
        "archive": str(archive),
        "parts": len(parts),
        "output": str(target),
        "keys": [str(k) for k in keys],
        **written,
    }
