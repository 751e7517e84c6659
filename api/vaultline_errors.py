#!/usr/bin/env python3
"""
Vaultline error taxonomy.

Every error carries an upper-case ``code`` and renders as ``CODE: message``
so CLI wrappers can surface a stable machine code next to the text.
"""

from __future__ import annotations

from typing import Optional


class VaultlineError(Exception):
    code = "VAULTLINE_ERROR"

    def __init__(self, message: str = ""):
        self.detail = message
        super().__init__(f"{self.code}: {message}" if message else self.code)


# Validation
class ArchiveExistsError(VaultlineError, FileExistsError):
    code = "ALREADY_EXISTS"


class InvalidArchiveError(VaultlineError, ValueError):
    code = "INVALID_DATA"


# Corrupt / decode
class CorruptArchiveError(VaultlineError, ValueError):
    code = "CORRUPT_ARCHIVE"


class DecryptionError(VaultlineError, PermissionError):
    code = "DECRYPTION_FAILURE"


class MissingPasswordError(VaultlineError, PermissionError):
    code = "MISSING_PASSWORD"


# Parse
class TemporalParseError(VaultlineError, ValueError):
    code = "INVALID_DATETIME"


class SortKeyError(VaultlineError, ValueError):
    code = "INVALID_SORT_KEY"


class SnapshotFormatError(VaultlineError, ValueError):
    code = "INVALID_SNAPSHOT"


_OS_ERROR_CODES = (
    (FileNotFoundError, "not_found"),
    (PermissionError, "permission_denied"),
    (IsADirectoryError, "is_a_directory"),
)


def error_code_from_exception(exc: BaseException) -> str:
    """Map an exception to the lower-case code used in CLI JSON payloads."""
    if isinstance(exc, VaultlineError):
        return exc.code.lower()
    for exc_type, code in _OS_ERROR_CODES:
        if isinstance(exc, exc_type):
            return code
    if isinstance(exc, OSError):
        return "io_error"
    if isinstance(exc, SystemExit):
        return "command_failed"
    return "unexpected_error"


def error_payload(exc: BaseException, hint: Optional[str] = None) -> dict:
    payload = {
        "code": error_code_from_exception(exc),
        "message": str(exc),
        "error_type": exc.__class__.__name__,
    }
    if hint:
        payload["hint"] = hint
    return payload
