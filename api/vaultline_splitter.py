#!/usr/bin/env python3
"""
Split one archive into size-bounded parts (``name.part1.vla``,
``name.part2.vla``, ...). Records are copied raw and never cut in two, so
a part may overshoot the limit when a single record is larger than it.

Parts are staged as temp files next to their destination and moved into
place only after every input part is closed, so an archive can be
re-split onto its own part names.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import BinaryIO, Dict, List, Optional, Union

from vaultline_errors import ArchiveExistsError
from vaultline_format import ArchiveWriter
from vaultline_format.chunks import CHUNK_CRC_SIZE, CHUNK_HDR_SIZE, archive_header
from vaultline_split import SplitArchiveReader, collect_split_archives, with_part

PathLike = Union[str, os.PathLike]

TERMINATOR_SIZE = CHUNK_HDR_SIZE + CHUNK_CRC_SIZE
MIN_PART_SIZE = len(archive_header()) + TERMINATOR_SIZE + 64


def _cleanup_tmp(paths: List[Path]) -> None:
    for path in paths:
        try:
            if path.exists():
                path.unlink()
        except OSError:
            pass


def _refuse_existing(targets: List[Path]) -> None:
    for target in targets:
        if target.exists():
            raise ArchiveExistsError(f"{target} already exists")


def split_archive(
    archive: PathLike,
    out_dir: Optional[PathLike] = None,
    max_part_size: int = 64 * 1024 * 1024,
    overwrite: bool = False,
    use_mmap: Optional[bool] = None,
) -> Dict:
    if max_part_size < MIN_PART_SIZE:
        raise ValueError(f"INVALID_PART_SIZE: max_part_size must be at least {MIN_PART_SIZE} bytes")
    src = Path(archive)
    parts_in = collect_split_archives(src)
    dest_dir = Path(out_dir) if out_dir is not None else src.parent
    first_out = dest_dir / src.name
    if not overwrite:
        _refuse_existing([with_part(first_out, 1)])
    dest_dir.mkdir(parents=True, exist_ok=True)

    staged: List[Path] = []
    written: List[Dict] = []
    out: Optional[BinaryIO] = None
    writer: Optional[ArchiveWriter] = None

    def _open_part(index: int) -> ArchiveWriter:
        nonlocal out
        target = with_part(first_out, index)
        with tempfile.NamedTemporaryFile(
            prefix=f".{target.name}.", suffix=".tmp", dir=str(dest_dir), delete=False
        ) as tf:
            staged.append(Path(tf.name))
        out = staged[-1].open("wb")
        written.append({"part": str(target), "entries": 0})
        return ArchiveWriter.write_header(out, part_index=index)

    def _close_part(last: bool) -> None:
        if last:
            writer.finalize()
        else:
            writer.finalize_part()
        written[-1]["entries"] = writer.entries_written
        written[-1]["bytes"] = writer.bytes_written
        out.flush()
        os.fsync(out.fileno())
        out.close()

    try:
        with SplitArchiveReader(parts_in, use_mmap=use_mmap) as reader:
            for raw in reader.raw_entries():
                if writer is None:
                    writer = _open_part(1)
                elif (
                    writer.entries_written > 0
                    and writer.bytes_written + raw.encoded_size + TERMINATOR_SIZE > max_part_size
                ):
                    _close_part(last=False)
                    writer = _open_part(writer.part_index + 1)
                writer.add_entry(raw)
        if writer is None:
            writer = _open_part(1)
        _close_part(last=True)

        # Inputs are closed (and unmapped) here; nothing has touched a target yet.
        targets = [Path(p["part"]) for p in written]
        if not overwrite:
            _refuse_existing(targets)
        for tmp, target in zip(staged, targets):
            os.replace(tmp, target)
    except BaseException:
        if out is not None and not out.closed:
            out.close()
        _cleanup_tmp(staged)
        raise

    return {
        "version": "vaultline-split-v1",
        "archive": str(src),
        "max_part_size": int(max_part_size),
        "parts": written,
    }
