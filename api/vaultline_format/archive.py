from __future__ import annotations

from typing import BinaryIO, Iterator, List, Optional, Union

from vaultline_errors import CorruptArchiveError

from .chunks import (
    AEND,
    ANXT,
    FEND,
    FHED,
    Chunk,
    archive_header,
    is_private_type,
    iter_chunks,
    read_archive_header,
)
from .entry import NormalEntry, RawEntry

EntryLike = Union[RawEntry, NormalEntry]


class ArchiveWriter:
    """Appends entries to one archive part and terminates it with AEND or ANXT."""

    def __init__(self, stream: BinaryIO, part_index: int = 1):
        self.stream = stream
        self.part_index = int(part_index)
        self.entries_written = 0
        self.bytes_written = 0
        self.finalized = False

    @classmethod
    def write_header(cls, stream: BinaryIO, part_index: int = 1) -> "ArchiveWriter":
        writer = cls(stream, part_index)
        writer._write(archive_header(part_index))
        return writer

    def _write(self, data: bytes) -> None:
        self.stream.write(data)
        self.bytes_written += len(data)

    def add_entry(self, entry: EntryLike) -> int:
        if self.finalized:
            raise ValueError("archive already finalized")
        raw = entry.to_raw() if isinstance(entry, NormalEntry) else entry
        data = raw.to_bytes()
        self._write(data)
        self.entries_written += 1
        return len(data)

    def _terminate(self, ctype: bytes) -> BinaryIO:
        if self.finalized:
            raise ValueError("archive already finalized")
        self._write(Chunk(ctype).encode())
        self.stream.flush()
        self.finalized = True
        return self.stream

    def finalize(self) -> BinaryIO:
        return self._terminate(AEND)

    def finalize_part(self) -> BinaryIO:
        """End this part with ANXT: the archive continues in the next part file."""
        return self._terminate(ANXT)


class ArchivePartReader:
    """
    Groups the chunk stream of a single part into raw entries. After
    :meth:`raw_entries` is exhausted, ``terminator`` holds AEND or ANXT.
    """

    def __init__(self, stream: BinaryIO, name: str = "<stream>"):
        self.stream = stream
        self.name = name
        self.part_index: Optional[int] = None
        self.terminator: Optional[bytes] = None

    def raw_entries(self) -> Iterator[RawEntry]:
        self.part_index = read_archive_header(self.stream)
        current: Optional[List[Chunk]] = None
        for chunk in iter_chunks(self.stream):
            if chunk.ctype == FHED:
                if current is not None:
                    raise CorruptArchiveError(f"{self.name}: entry started before previous FEND")
                current = [chunk]
            elif current is not None:
                current.append(chunk)
                if chunk.ctype == FEND:
                    yield RawEntry(tuple(current))
                    current = None
                elif chunk.ctype in (AEND, ANXT):
                    raise CorruptArchiveError(f"{self.name}: part ended inside an entry")
            elif chunk.ctype in (AEND, ANXT):
                self.terminator = chunk.ctype
                return
            elif not is_private_type(chunk.ctype):
                raise CorruptArchiveError(f"{self.name}: unexpected chunk {chunk.ctype!r} between entries")
        if current is not None:
            raise CorruptArchiveError(f"{self.name}: truncated entry at end of part")
        raise CorruptArchiveError(f"{self.name}: missing end-of-archive chunk")
