#!/usr/bin/env python3
"""
Vaultline Security
==================
Password-gated content sealing for archive entries.
FEAT:  AES-256-GCM, PBKDF2-SHA256 password KDF, KDF params authenticated as AAD.

The KDF parameters travel in the entry's PHSF chunk so every entry can be
opened independently. Keys are derived per call and never retained; the
password itself is held only by the command's PasswordAccessor.
"""

import os
import struct
from typing import Tuple, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from vaultline_errors import CorruptArchiveError, DecryptionError, MissingPasswordError

# =========================================================
# 1. SECURITY CONFIGURATION
# =========================================================

KDF_PBKDF2_SHA256 = 1
DEFAULT_PBKDF2_ITERS = 200_000
MAX_PBKDF2_ITERS = 2_000_000
SALT_LEN = 16
NONCE_LEN = 12

# PHSF payload: kdf_id(u8) + salt(16) + nonce(12) + iters(u32)
PARAMS_FMT = ">B16s12sI"
PARAMS_SIZE = struct.calcsize(PARAMS_FMT)


def default_kdf_iters() -> int:
    raw = os.environ.get("VAULTLINE_KDF_ITERS", "").strip()
    if not raw:
        return DEFAULT_PBKDF2_ITERS
    iters = int(raw)
    if iters <= 0 or iters > MAX_PBKDF2_ITERS:
        raise ValueError(f"INVALID_PBKDF2_ITERS: {iters}")
    return iters


def _as_secret(password: Union[str, bytes, None]) -> bytes:
    if password is None or password == "" or password == b"":
        raise MissingPasswordError("entry is encrypted; supply a password")
    if isinstance(password, str):
        return password.encode("utf-8")
    if not isinstance(password, (bytes, bytearray)):
        raise TypeError("INVALID_PASSWORD_TYPE: password must be str or bytes")
    return bytes(password)


def derive_key(password: Union[str, bytes], salt: bytes, iterations: int) -> bytes:
    if len(salt) != SALT_LEN:
        raise CorruptArchiveError("invalid KDF salt length")
    if int(iterations) <= 0 or int(iterations) > MAX_PBKDF2_ITERS:
        raise CorruptArchiveError(f"invalid PBKDF2 iteration count {iterations}")
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=bytes(salt),
        iterations=int(iterations),
    )
    return kdf.derive(_as_secret(password))


def seal(data: bytes, password: Union[str, bytes], iters: int = None) -> Tuple[bytes, bytes]:
    """
    Encrypt ``data``. Returns ``(params, ciphertext)`` where ``params`` is the
    PHSF chunk payload needed to reopen it.
    """
    if data is None:
        data = b""
    if not isinstance(data, (bytes, bytearray)):
        raise TypeError("INVALID_DATA_TYPE")
    iters_i = default_kdf_iters() if iters is None else int(iters)
    if iters_i <= 0 or iters_i > MAX_PBKDF2_ITERS:
        raise ValueError("INVALID_PBKDF2_ITERS")

    salt = os.urandom(SALT_LEN)
    nonce = os.urandom(NONCE_LEN)
    params = struct.pack(PARAMS_FMT, KDF_PBKDF2_SHA256, salt, nonce, iters_i)
    key = derive_key(password, salt, iters_i)
    ciphertext = AESGCM(key).encrypt(nonce, bytes(data), params)
    return params, ciphertext


def unseal(params: bytes, ciphertext: bytes, password: Union[str, bytes, None]) -> bytes:
    """Verify and decrypt content sealed by :func:`seal`."""
    if len(params) != PARAMS_SIZE:
        raise CorruptArchiveError("invalid PHSF chunk length")
    kdf_id, salt, nonce, iters = struct.unpack(PARAMS_FMT, params)
    if kdf_id != KDF_PBKDF2_SHA256:
        raise CorruptArchiveError(f"unsupported KDF id {kdf_id}")
    key = derive_key(password, salt, iters)
    try:
        return AESGCM(key).decrypt(nonce, bytes(ciphertext), bytes(params))
    except InvalidTag:
        raise DecryptionError("wrong password or tampered entry data")
