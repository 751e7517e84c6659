#!/usr/bin/env python3
"""Container codec: chunk framing, entry decode, sealing."""
import io

import pytest

from vaultline_errors import CorruptArchiveError, DecryptionError, MissingPasswordError
from vaultline_format import (
    MAGIC,
    ArchivePartReader,
    ArchiveWriter,
    Chunk,
    Compression,
    DataKind,
    Encryption,
    NormalEntry,
    directory_entry,
    file_entry,
    hardlink_entry,
    is_archive,
    symlink_entry,
)


def _roundtrip(entries):
    buf = io.BytesIO()
    writer = ArchiveWriter.write_header(buf)
    for e in entries:
        writer.add_entry(e)
    writer.finalize()
    buf.seek(0)
    reader = ArchivePartReader(buf)
    raws = list(reader.raw_entries())
    return buf.getvalue(), reader, [NormalEntry.from_raw(r) for r in raws]


def test_archive_starts_with_magic_and_is_detected():
    data, _, _ = _roundtrip([])
    assert data.startswith(MAGIC)
    assert is_archive(io.BytesIO(data))
    assert not is_archive(io.BytesIO(b"PK\x03\x04not-ours"))


def test_entry_kinds_and_metadata_survive():
    entries = [
        directory_entry("d", modified=5, created=-7),
        file_entry("d/a.txt", b"abc" * 1000, modified=1_700_000_000_123_456_789, accessed=3),
        symlink_entry("d/link", "a.txt"),
        hardlink_entry("d/hard", "d/a.txt"),
    ]
    _, reader, decoded = _roundtrip(entries)
    assert reader.terminator == b"AEND"
    assert [e.header.kind for e in decoded] == [
        DataKind.DIRECTORY, DataKind.FILE, DataKind.SYMBOLIC_LINK, DataKind.HARD_LINK,
    ]
    assert decoded[0].metadata.created == -7
    assert decoded[1].metadata.modified == 1_700_000_000_123_456_789
    assert decoded[1].header.compression == Compression.ZSTD
    assert decoded[1].read_all() == b"abc" * 1000
    assert decoded[2].read_all() == b"a.txt"
    assert decoded[3].read_all() == b"d/a.txt"


def test_decoded_entry_rewrites_byte_identical():
    entry = file_entry("x.bin", b"\x00\x01" * 10, permission={"mode": 0o644}, xattrs=[("user.k", b"v")])
    raw = entry.to_raw()
    _, _, decoded = _roundtrip([entry])
    assert decoded[0].to_raw().to_bytes() == raw.to_bytes()
    assert decoded[0].metadata.permission == {"mode": 0o644}
    assert decoded[0].metadata.xattrs == (("user.k", b"v"),)


def test_private_chunks_are_preserved():
    acl = Chunk(b"fACL", b"u:alice:rw-")
    _, _, decoded = _roundtrip([file_entry("f", b"1", private_chunks=[acl])])
    assert decoded[0].private_chunks == (acl,)


def test_encrypted_entry_needs_password():
    entry = file_entry("secret.txt", b"top secret", password="hunter2")
    _, _, decoded = _roundtrip([entry])
    assert decoded[0].header.encryption == Encryption.AES_GCM
    assert b"top secret" not in decoded[0].data
    assert decoded[0].reader("hunter2").read() == b"top secret"
    with pytest.raises(DecryptionError):
        decoded[0].read_all("wrong")
    with pytest.raises(MissingPasswordError):
        decoded[0].read_all(None)


def test_checksum_mismatch_is_corrupt():
    data, _, _ = _roundtrip([file_entry("f", b"payload", compression=Compression.NONE)])
    idx = data.index(b"payload")
    tampered = data[:idx] + b"PAYLOAD" + data[idx + 7:]
    with pytest.raises(CorruptArchiveError):
        list(ArchivePartReader(io.BytesIO(tampered)).raw_entries())


def test_truncated_part_is_corrupt():
    data, _, _ = _roundtrip([file_entry("f", b"payload")])
    with pytest.raises(CorruptArchiveError):
        list(ArchivePartReader(io.BytesIO(data[:-6])).raw_entries())


def test_bad_magic_is_corrupt():
    with pytest.raises(CorruptArchiveError):
        list(ArchivePartReader(io.BytesIO(b"not an archive at all")).raw_entries())


def test_finalized_writer_rejects_entries():
    writer = ArchiveWriter.write_header(io.BytesIO())
    writer.finalize()
    with pytest.raises(ValueError):
        writer.add_entry(file_entry("late", b""))
