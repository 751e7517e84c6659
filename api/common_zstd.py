#!/usr/bin/env python3
"""
Shared zstd compressor/decompressor factory for Vaultline entry data.

Centralizes level/window defaults so entries written by create, split or
self-test all carry the same frame settings.
"""

from __future__ import annotations

import math
import os
from typing import Optional

import zstandard as zstd

DEFAULT_LEVEL = 9


def default_level() -> int:
    raw = os.getenv("VAULTLINE_ZSTD_LEVEL", "").strip()
    if not raw:
        return DEFAULT_LEVEL
    return max(1, min(22, int(raw)))


def _adaptive_window_log(source_size: Optional[int]) -> int:
    """Choose a conservative adaptive window log (10..27)."""
    if not source_size or source_size <= 0:
        return 20
    wl = int(math.ceil(math.log2(max(1, int(source_size)))))
    return max(10, min(27, wl))


def make_cctx(
    *,
    level: Optional[int] = None,
    source_size: Optional[int] = None,
    write_checksum: bool = True,
) -> zstd.ZstdCompressor:
    """
    Build a zstd compressor with consistent defaults.

    - Content size is always written so readers can size their buffers.
    - Small entries get a small window to keep decoder memory flat.
    """
    eff_level = default_level() if level is None else int(level)
    params = zstd.ZstdCompressionParameters.from_level(
        eff_level,
        source_size=int(source_size or 0),
        window_log=_adaptive_window_log(source_size),
        write_content_size=True,
        write_checksum=write_checksum,
    )
    return zstd.ZstdCompressor(compression_params=params)


def compress(data: bytes, level: Optional[int] = None) -> bytes:
    return make_cctx(level=level, source_size=len(data)).compress(data)


def decompress(data: bytes) -> bytes:
    # decompressobj tolerates frames written without a content size (empty input).
    return zstd.ZstdDecompressor().decompressobj().decompress(data)
