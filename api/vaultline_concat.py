#!/usr/bin/env python3
"""
Concatenate whole archives into one, copying raw records byte-for-byte.

Nothing is decoded: compressed and encrypted entries travel as stored, so
no password is needed.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, Optional, Sequence, Union

from vaultline_errors import ArchiveExistsError, InvalidArchiveError
from vaultline_format import ArchiveWriter, is_archive
from vaultline_split import SplitArchiveReader, collect_split_archives

PathLike = Union[str, os.PathLike]


def check_sources(sources: Sequence[PathLike]) -> None:
    for src in sources:
        try:
            ok = is_archive(src)
        except OSError as exc:
            raise InvalidArchiveError(f"{src} is not readable: {exc}")
        if not ok:
            raise InvalidArchiveError(f"{src} is not a vaultline archive")


def concat_archives(
    destination: PathLike,
    sources: Sequence[PathLike],
    overwrite: bool = False,
    use_mmap: Optional[bool] = None,
) -> Dict:
    dest = Path(destination)
    if not overwrite and dest.exists():
        raise ArchiveExistsError(f"{dest} already exists")
    if not sources:
        raise InvalidArchiveError("no source archives given")
    check_sources(sources)
    source_parts = [collect_split_archives(src) for src in sources]
    if any(dest.resolve() == p.resolve() for parts in source_parts for p in parts):
        raise InvalidArchiveError(f"{dest} is also one of the sources")

    per_source = []
    dest.parent.mkdir(parents=True, exist_ok=True)
    with dest.open("wb") as out:
        writer = ArchiveWriter.write_header(out)
        for src, parts in zip(sources, source_parts):
            count = 0
            with SplitArchiveReader(parts, use_mmap=use_mmap) as reader:
                for raw in reader.raw_entries():
                    writer.add_entry(raw)
                    count += 1
            per_source.append({"source": str(src), "parts": len(parts), "entries": count})
        writer.finalize()

    return {
        "version": "vaultline-concat-v1",
        "destination": str(dest),
        "sources": per_source,
        "entries": writer.entries_written,
        "bytes_written": writer.bytes_written,
    }
