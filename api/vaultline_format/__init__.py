from .archive import ArchivePartReader, ArchiveWriter
from .chunks import MAGIC, Chunk, is_archive
from .entry import (
    Compression,
    DataKind,
    Encryption,
    EntryHeader,
    Metadata,
    NormalEntry,
    RawEntry,
    directory_entry,
    file_entry,
    hardlink_entry,
    symlink_entry,
)
