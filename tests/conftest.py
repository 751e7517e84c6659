"""Shared fixtures for the Vaultline test suite."""
import sys
from pathlib import Path

import pytest

REPO_ROOT = Path(__file__).resolve().parent.parent
for _p in (REPO_ROOT / "api", REPO_ROOT / "tools"):
    if str(_p) not in sys.path:
        sys.path.insert(0, str(_p))

# Keep PBKDF2 cheap in tests; archives still record the real iteration count.
TEST_KDF_ITERS = 1000


@pytest.fixture(autouse=True)
def _fast_kdf(monkeypatch):
    monkeypatch.setenv("VAULTLINE_KDF_ITERS", str(TEST_KDF_ITERS))
    monkeypatch.delenv("VAULTLINE_PASSWORD", raising=False)
    monkeypatch.delenv("VAULTLINE_MMAP", raising=False)


def write_archive(path, entries):
    from vaultline_format import ArchiveWriter

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("wb") as f:
        writer = ArchiveWriter.write_header(f)
        for entry in entries:
            writer.add_entry(entry)
        writer.finalize()
    return path


def write_split_archive(first_path, groups):
    """Write ``groups`` (list of entry lists) as name.part1.ext, name.part2.ext, ..."""
    from vaultline_format import ArchiveWriter
    from vaultline_split import with_part

    paths = []
    for i, group in enumerate(groups, start=1):
        part = with_part(first_path, i)
        with part.open("wb") as f:
            writer = ArchiveWriter.write_header(f, part_index=i)
            for entry in group:
                writer.add_entry(entry)
            if i == len(groups):
                writer.finalize()
            else:
                writer.finalize_part()
        paths.append(part)
    return paths


def read_paths(path, use_mmap=None):
    from vaultline_split import open_archive

    with open_archive(path, use_mmap=use_mmap) as reader:
        return [e.path for e in reader.entries()]


@pytest.fixture
def make_archive(tmp_path):
    def _make(name, entries):
        return write_archive(tmp_path / name, entries)

    return _make


@pytest.fixture
def sample_entries():
    from vaultline_format import directory_entry, file_entry, symlink_entry

    return [
        directory_entry("docs", modified=3_000_000_000),
        file_entry("docs/readme.txt", b"hello vaultline\n", modified=1_000_000_000),
        symlink_entry("docs/latest", "readme.txt", modified=2_000_000_000),
    ]
