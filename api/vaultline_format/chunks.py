from __future__ import annotations

import os
import struct
from dataclasses import dataclass
from typing import BinaryIO, Iterator, Union

import xxhash

from vaultline_errors import CorruptArchiveError

MAGIC = b"\x89VLA\r\n\x1a\n"
VERSION = 1

# Chunk: length(u32) + type(4s) + payload + xxh32(type + payload)(u32)
CHUNK_HDR_FMT = "<I4s"
CHUNK_HDR_SIZE = struct.calcsize(CHUNK_HDR_FMT)
CHUNK_CRC_FMT = "<I"
CHUNK_CRC_SIZE = struct.calcsize(CHUNK_CRC_FMT)
MAX_CHUNK_LEN = 1 << 31

# Archive header payload: version(u8) + flags(u8) + part_index(u16)
AHED_FMT = "<BBH"

AHED = b"AHED"
AEND = b"AEND"
ANXT = b"ANXT"
FHED = b"FHED"
FDAT = b"FDAT"
FEND = b"FEND"
PHSF = b"PHSF"
CTIM = b"cTIM"
MTIM = b"mTIM"
ATIM = b"aTIM"
FPRM = b"fPRM"
XATR = b"xATR"

MAX_FDAT_LEN = 1 << 20


def is_private_type(ctype: bytes) -> bool:
    """Lower-case leading letter marks an ancillary chunk readers may carry blindly."""
    return len(ctype) == 4 and 0x61 <= ctype[0] <= 0x7A


def _checksum(ctype: bytes, payload: bytes) -> int:
    h = xxhash.xxh32()
    h.update(ctype)
    h.update(payload)
    return h.intdigest()


@dataclass(frozen=True)
class Chunk:
    ctype: bytes
    payload: bytes = b""

    def encode(self) -> bytes:
        return (
            struct.pack(CHUNK_HDR_FMT, len(self.payload), self.ctype)
            + self.payload
            + struct.pack(CHUNK_CRC_FMT, _checksum(self.ctype, self.payload))
        )

    @property
    def encoded_size(self) -> int:
        return CHUNK_HDR_SIZE + len(self.payload) + CHUNK_CRC_SIZE


def _read_exact(stream: BinaryIO, n: int, what: str) -> bytes:
    buf = stream.read(n)
    if len(buf) != n:
        raise CorruptArchiveError(f"unexpected end of data while reading {what}")
    return buf


def iter_chunks(stream: BinaryIO) -> Iterator[Chunk]:
    """Yield chunks until a clean EOF; a torn chunk raises CorruptArchiveError."""
    while True:
        hdr = stream.read(CHUNK_HDR_SIZE)
        if not hdr:
            return
        if len(hdr) != CHUNK_HDR_SIZE:
            raise CorruptArchiveError("truncated chunk header")
        length, ctype = struct.unpack(CHUNK_HDR_FMT, hdr)
        if length > MAX_CHUNK_LEN:
            raise CorruptArchiveError(f"chunk {ctype!r} too large ({length} bytes)")
        payload = _read_exact(stream, length, f"chunk {ctype!r}")
        (crc,) = struct.unpack(CHUNK_CRC_FMT, _read_exact(stream, CHUNK_CRC_SIZE, "chunk checksum"))
        if crc != _checksum(ctype, payload):
            raise CorruptArchiveError(f"checksum mismatch in chunk {ctype!r}")
        yield Chunk(ctype, payload)


def archive_header(part_index: int = 1, flags: int = 0) -> bytes:
    return MAGIC + Chunk(AHED, struct.pack(AHED_FMT, VERSION, flags, part_index)).encode()


def read_archive_header(stream: BinaryIO) -> int:
    """Validate magic + AHED; returns the part index recorded in the header."""
    magic = stream.read(len(MAGIC))
    if magic != MAGIC:
        raise CorruptArchiveError("bad magic (not a vaultline archive part)")
    first = next(iter_chunks(stream), None)
    if first is None or first.ctype != AHED:
        raise CorruptArchiveError("missing archive header chunk")
    if len(first.payload) != struct.calcsize(AHED_FMT):
        raise CorruptArchiveError("malformed archive header chunk")
    ver, _flags, part_index = struct.unpack(AHED_FMT, first.payload)
    if ver != VERSION:
        raise CorruptArchiveError(f"unsupported archive version {ver}")
    return part_index


def is_archive(source: Union[str, os.PathLike, BinaryIO]) -> bool:
    """Cheap format probe: compare the leading magic bytes only."""
    if hasattr(source, "read"):
        return source.read(len(MAGIC)) == MAGIC
    with open(source, "rb") as f:
        return f.read(len(MAGIC)) == MAGIC
