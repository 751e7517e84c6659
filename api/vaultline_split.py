#!/usr/bin/env python3
"""
Split-archive entry stream
==========================
Presents the ordered part files of one logical archive (``name.vla``,
``name.part2.vla``, ...) as a single lazy entry sequence.

Two interchangeable backings per part:
  - BufferedPart  buffered ``open(path, "rb")``
  - MappedPart    read-only ``mmap`` of the whole part

Selection is configuration (``use_mmap`` or ``VAULTLINE_MMAP=1``), never
type inspection; both expose the same file-like ``read`` to the codec.
"""

from __future__ import annotations

import contextlib
import errno
import getpass
import mmap
import os
import re
from pathlib import Path
from typing import Any, BinaryIO, Callable, Dict, Iterator, List, Optional, Sequence, Union

from vaultline_errors import CorruptArchiveError
from vaultline_format import ArchivePartReader, NormalEntry, RawEntry
from vaultline_format.chunks import ANXT

PART_RE = re.compile(r"\.part(\d+)$")
PASSWORD_ENV = "VAULTLINE_PASSWORD"

PathLike = Union[str, os.PathLike]


# =========================================================
# Part-set resolution
# =========================================================

def _split_name(path: Path):
    stem, suffix = path.stem, path.suffix
    m = PART_RE.search(stem)
    if m:
        stem = stem[: m.start()]
    return stem, suffix


def with_part(path: PathLike, n: int) -> Path:
    """``foo.vla`` / ``foo.part1.vla`` -> ``foo.part<n>.vla``."""
    p = Path(path)
    stem, suffix = _split_name(p)
    return p.with_name(f"{stem}.part{int(n)}{suffix}")


def remove_part(path: PathLike) -> Path:
    """``foo.part1.vla`` -> ``foo.vla``; paths without a part suffix are returned as-is."""
    p = Path(path)
    stem, suffix = _split_name(p)
    return p.with_name(f"{stem}{suffix}")


def collect_split_archives(path: PathLike) -> List[Path]:
    first = Path(path)
    if not first.is_file():
        raise FileNotFoundError(errno.ENOENT, "archive not found", str(first))
    parts = [first]
    n = 2
    while True:
        nxt = with_part(first, n)
        if not nxt.is_file():
            break
        parts.append(nxt)
        n += 1
    return parts


# =========================================================
# Password accessor
# =========================================================

class PasswordAccessor:
    """Evaluates its supplier lazily, at most once per command."""

    def __init__(self, supplier: Optional[Callable[[], Optional[str]]] = None):
        self._supplier = supplier
        self._resolved = False
        self._value: Optional[str] = None
        self.calls = 0

    def get(self) -> Optional[str]:
        if not self._resolved:
            if self._supplier is not None:
                self.calls += 1
                self._value = self._supplier() or None
            self._resolved = True
        return self._value

    __call__ = get

    @classmethod
    def fixed(cls, password: Optional[str]) -> "PasswordAccessor":
        return cls(lambda: password)

    @classmethod
    def from_sources(
        cls,
        password: Optional[str] = None,
        password_file: Optional[PathLike] = None,
        prompt: bool = False,
        env: str = PASSWORD_ENV,
    ) -> "PasswordAccessor":
        def supplier() -> Optional[str]:
            if password:
                return password
            if password_file:
                text = Path(password_file).read_text(encoding="utf-8")
                return text.splitlines()[0] if text else None
            if os.environ.get(env):
                return os.environ[env]
            if prompt:
                return getpass.getpass("Enter password: ")
            return None

        return cls(supplier)


def as_accessor(password: Union[PasswordAccessor, str, None]) -> PasswordAccessor:
    if isinstance(password, PasswordAccessor):
        return password
    return PasswordAccessor.fixed(password)


# =========================================================
# Part backings
# =========================================================

def mmap_enabled(use_mmap: Optional[bool] = None) -> bool:
    if use_mmap is not None:
        return bool(use_mmap)
    return os.getenv("VAULTLINE_MMAP", "").strip() == "1"


class BufferedPart:
    def __init__(self, path: PathLike):
        self.path = Path(path)
        self._file: Optional[BinaryIO] = None

    def __enter__(self) -> BinaryIO:
        self._file = self.path.open("rb")
        return self._file

    def __exit__(self, *exc) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None


class MappedPart:
    def __init__(self, path: PathLike):
        self.path = Path(path)
        self._file: Optional[BinaryIO] = None
        self._map: Optional[mmap.mmap] = None

    def __enter__(self) -> mmap.mmap:
        self._file = self.path.open("rb")
        if os.fstat(self._file.fileno()).st_size == 0:
            self._file.close()
            self._file = None
            raise CorruptArchiveError(f"{self.path}: empty archive part")
        self._map = mmap.mmap(self._file.fileno(), 0, access=mmap.ACCESS_READ)
        return self._map

    def __exit__(self, *exc) -> None:
        if self._map is not None:
            self._map.close()
            self._map = None
        if self._file is not None:
            self._file.close()
            self._file = None


# =========================================================
# Reader
# =========================================================

class SplitArchiveReader:
    """
    Lazy entry sequence across all parts, in ascending part order.

    Use as a context manager; leaving the block closes the current part and
    releases any memory map, even when a generator was abandoned midway.
    """

    def __init__(self, parts: Sequence[PathLike], use_mmap: Optional[bool] = None):
        if not parts:
            raise ValueError("at least one archive part is required")
        self.parts = [Path(p) for p in parts]
        self.use_mmap = mmap_enabled(use_mmap)
        self._generators: List[Iterator[Any]] = []

    def __enter__(self) -> "SplitArchiveReader":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        for gen in self._generators:
            gen.close()
        self._generators.clear()

    def _backing(self, path: Path):
        return MappedPart(path) if self.use_mmap else BufferedPart(path)

    def _iter_raw(self) -> Iterator[RawEntry]:
        last = len(self.parts) - 1
        for i, path in enumerate(self.parts):
            with self._backing(path) as stream:
                part = ArchivePartReader(stream, name=str(path))
                yield from part.raw_entries()
                terminator = part.terminator
            if terminator != ANXT:
                return
            if i == last:
                raise CorruptArchiveError(
                    f"{path}: archive continues in {with_part(self.parts[0], i + 2)} which was not found"
                )

    def raw_entries(self) -> Iterator[RawEntry]:
        gen = self._iter_raw()
        self._generators.append(gen)
        return gen

    def _iter_entries(self) -> Iterator[NormalEntry]:
        for raw in self._iter_raw():
            yield NormalEntry.from_raw(raw)

    def entries(self) -> Iterator[NormalEntry]:
        gen = self._iter_entries()
        self._generators.append(gen)
        return gen


def open_archive(path: PathLike, use_mmap: Optional[bool] = None) -> SplitArchiveReader:
    return SplitArchiveReader(collect_split_archives(path), use_mmap=use_mmap)


def list_entries(parts: Sequence[PathLike], use_mmap: Optional[bool] = None) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []
    with SplitArchiveReader(parts, use_mmap=use_mmap) as reader:
        for entry in reader.entries():
            meta = entry.metadata
            rows.append({
                "path": entry.path,
                "kind": entry.header.kind.name.lower(),
                "compression": entry.header.compression.name.lower(),
                "encryption": entry.header.encryption.name.lower(),
                "stored_bytes": len(entry.data),
                "created_ns": meta.created,
                "modified_ns": meta.modified,
                "accessed_ns": meta.accessed,
            })
    return rows
