from __future__ import annotations

import io
import json
import struct
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

import common_zstd
import vaultline_security
from vaultline_errors import CorruptArchiveError

from .chunks import (
    ATIM,
    CTIM,
    FDAT,
    FEND,
    FHED,
    FPRM,
    MAX_FDAT_LEN,
    MTIM,
    PHSF,
    XATR,
    Chunk,
    is_private_type,
)

NANOS = 1_000_000_000

# Entry header payload: version(u8) + kind(u8) + compression(u8) + encryption(u8) + path(utf-8)
FHED_FMT = "<BBBB"
FHED_SIZE = struct.calcsize(FHED_FMT)
FHED_VERSION = 1

# Timestamp payload: seconds(i64) + nanos(u32)
TIME_FMT = "<qI"


class DataKind(IntEnum):
    FILE = 0
    DIRECTORY = 1
    SYMBOLIC_LINK = 2
    HARD_LINK = 3


class Compression(IntEnum):
    NONE = 0
    ZSTD = 1


class Encryption(IntEnum):
    NONE = 0
    AES_GCM = 1


@dataclass(frozen=True)
class EntryHeader:
    path: str
    kind: DataKind
    compression: Compression = Compression.NONE
    encryption: Encryption = Encryption.NONE

    def encode(self) -> bytes:
        return struct.pack(
            FHED_FMT, FHED_VERSION, int(self.kind), int(self.compression), int(self.encryption)
        ) + self.path.encode("utf-8")

    @classmethod
    def decode(cls, payload: bytes) -> "EntryHeader":
        if len(payload) < FHED_SIZE:
            raise CorruptArchiveError("entry header chunk too short")
        ver, kind, comp, enc = struct.unpack(FHED_FMT, payload[:FHED_SIZE])
        if ver != FHED_VERSION:
            raise CorruptArchiveError(f"unsupported entry header version {ver}")
        try:
            path = payload[FHED_SIZE:].decode("utf-8")
            return cls(path, DataKind(kind), Compression(comp), Encryption(enc))
        except (UnicodeDecodeError, ValueError) as exc:
            raise CorruptArchiveError(f"malformed entry header: {exc}")


@dataclass(frozen=True)
class Metadata:
    created: Optional[int] = None
    modified: Optional[int] = None
    accessed: Optional[int] = None
    permission: Optional[Dict[str, object]] = None
    xattrs: Tuple[Tuple[str, bytes], ...] = ()


def _encode_time(instant_ns: int) -> bytes:
    seconds, nanos = divmod(int(instant_ns), NANOS)
    return struct.pack(TIME_FMT, seconds, nanos)


def _decode_time(payload: bytes) -> int:
    try:
        seconds, nanos = struct.unpack(TIME_FMT, payload)
    except struct.error:
        raise CorruptArchiveError("malformed timestamp chunk")
    if nanos >= NANOS:
        raise CorruptArchiveError("timestamp nanos out of range")
    return seconds * NANOS + nanos


def _entry_path(chunks: Sequence[Chunk]) -> str:
    if not chunks or chunks[0].ctype != FHED:
        raise CorruptArchiveError("entry does not start with FHED")
    return EntryHeader.decode(chunks[0].payload).path


@dataclass(frozen=True)
class RawEntry:
    """An entry exactly as stored: every chunk from FHED through FEND."""

    chunks: Tuple[Chunk, ...]

    @property
    def path(self) -> str:
        return _entry_path(self.chunks)

    def to_bytes(self) -> bytes:
        return b"".join(c.encode() for c in self.chunks)

    @property
    def encoded_size(self) -> int:
        return sum(c.encoded_size for c in self.chunks)


@dataclass
class NormalEntry:
    """
    Decoded entry. Content stays encoded in ``data`` until :meth:`reader`
    is called, so rewriting an entry never re-compresses or re-encrypts it.
    """

    header: EntryHeader
    metadata: Metadata = field(default_factory=Metadata)
    data: bytes = b""
    kdf_params: Optional[bytes] = None
    private_chunks: Tuple[Chunk, ...] = ()
    raw: Optional[RawEntry] = field(default=None, repr=False, compare=False)

    @property
    def path(self) -> str:
        return self.header.path

    @property
    def encrypted(self) -> bool:
        return self.header.encryption != Encryption.NONE

    @classmethod
    def from_raw(cls, raw: RawEntry) -> "NormalEntry":
        chunks = raw.chunks
        header = EntryHeader.decode(chunks[0].payload) if chunks and chunks[0].ctype == FHED else None
        if header is None:
            raise CorruptArchiveError("entry does not start with FHED")
        if chunks[-1].ctype != FEND:
            raise CorruptArchiveError(f"entry {header.path!r} missing FEND")

        times: Dict[bytes, int] = {}
        permission = None
        xattrs: List[Tuple[str, bytes]] = []
        private: List[Chunk] = []
        data_parts: List[bytes] = []
        kdf_params = None
        for chunk in chunks[1:-1]:
            if chunk.ctype == FDAT:
                data_parts.append(chunk.payload)
            elif chunk.ctype in (CTIM, MTIM, ATIM):
                times[chunk.ctype] = _decode_time(chunk.payload)
            elif chunk.ctype == PHSF:
                kdf_params = chunk.payload
            elif chunk.ctype == FPRM:
                try:
                    permission = json.loads(chunk.payload.decode("utf-8"))
                except (UnicodeDecodeError, ValueError):
                    raise CorruptArchiveError(f"malformed permission chunk in {header.path!r}")
            elif chunk.ctype == XATR:
                name, sep, value = chunk.payload.partition(b"\x00")
                if not sep:
                    raise CorruptArchiveError(f"malformed xattr chunk in {header.path!r}")
                xattrs.append((name.decode("utf-8", errors="replace"), value))
            elif is_private_type(chunk.ctype):
                private.append(chunk)
            else:
                raise CorruptArchiveError(f"unexpected chunk {chunk.ctype!r} in entry {header.path!r}")

        if header.encryption != Encryption.NONE and kdf_params is None:
            raise CorruptArchiveError(f"encrypted entry {header.path!r} has no PHSF chunk")

        return cls(
            header=header,
            metadata=Metadata(
                created=times.get(CTIM),
                modified=times.get(MTIM),
                accessed=times.get(ATIM),
                permission=permission,
                xattrs=tuple(xattrs),
            ),
            data=b"".join(data_parts),
            kdf_params=kdf_params,
            private_chunks=tuple(private),
            raw=raw,
        )

    def to_raw(self) -> RawEntry:
        if self.raw is not None:
            return self.raw
        chunks: List[Chunk] = [Chunk(FHED, self.header.encode())]
        if self.kdf_params is not None:
            chunks.append(Chunk(PHSF, self.kdf_params))
        meta = self.metadata
        for ctype, value in ((CTIM, meta.created), (MTIM, meta.modified), (ATIM, meta.accessed)):
            if value is not None:
                chunks.append(Chunk(ctype, _encode_time(value)))
        if meta.permission is not None:
            chunks.append(Chunk(FPRM, json.dumps(meta.permission, sort_keys=True).encode("utf-8")))
        for name, value in meta.xattrs:
            chunks.append(Chunk(XATR, name.encode("utf-8") + b"\x00" + bytes(value)))
        chunks.extend(self.private_chunks)
        for i in range(0, len(self.data), MAX_FDAT_LEN):
            chunks.append(Chunk(FDAT, self.data[i:i + MAX_FDAT_LEN]))
        chunks.append(Chunk(FEND))
        self.raw = RawEntry(tuple(chunks))
        return self.raw

    def read_all(self, password: Union[str, bytes, None] = None) -> bytes:
        data = self.data
        if self.header.encryption == Encryption.AES_GCM:
            data = vaultline_security.unseal(self.kdf_params or b"", data, password)
        if self.header.compression == Compression.ZSTD:
            try:
                data = common_zstd.decompress(data)
            except Exception as exc:
                raise CorruptArchiveError(f"cannot decompress {self.path!r}: {exc}")
        return data

    def reader(self, password: Union[str, bytes, None] = None) -> io.BytesIO:
        return io.BytesIO(self.read_all(password))


def _build(
    path: str,
    kind: DataKind,
    content: bytes,
    *,
    compression: Compression = Compression.NONE,
    password: Union[str, bytes, None] = None,
    kdf_iters: Optional[int] = None,
    created: Optional[int] = None,
    modified: Optional[int] = None,
    accessed: Optional[int] = None,
    permission: Optional[Dict[str, object]] = None,
    xattrs: Iterable[Tuple[str, bytes]] = (),
    private_chunks: Iterable[Chunk] = (),
) -> NormalEntry:
    data = bytes(content)
    if compression == Compression.ZSTD:
        data = common_zstd.compress(data)
    kdf_params = None
    encryption = Encryption.NONE
    if password:
        kdf_params, data = vaultline_security.seal(data, password, iters=kdf_iters)
        encryption = Encryption.AES_GCM
    return NormalEntry(
        header=EntryHeader(path, kind, compression, encryption),
        metadata=Metadata(created, modified, accessed, permission, tuple(xattrs)),
        data=data,
        kdf_params=kdf_params,
        private_chunks=tuple(private_chunks),
    )


def file_entry(path: str, content: bytes, *, compression: Compression = Compression.ZSTD, **kwargs) -> NormalEntry:
    return _build(path, DataKind.FILE, content, compression=compression, **kwargs)


def directory_entry(path: str, **kwargs) -> NormalEntry:
    kwargs.pop("password", None)
    return _build(path, DataKind.DIRECTORY, b"", **kwargs)


def symlink_entry(path: str, target: str, **kwargs) -> NormalEntry:
    return _build(path, DataKind.SYMBOLIC_LINK, target.encode("utf-8"), **kwargs)


def hardlink_entry(path: str, target: str, **kwargs) -> NormalEntry:
    return _build(path, DataKind.HARD_LINK, target.encode("utf-8"), **kwargs)
