#!/usr/bin/env python3
import pytest

import vaultline_security
from vaultline_errors import CorruptArchiveError, DecryptionError


def test_seal_unseal_roundtrip_and_aad():
    params, blob = vaultline_security.seal(b"payload", "pw")
    assert vaultline_security.unseal(params, blob, "pw") == b"payload"
    tampered = params[:-1] + bytes([params[-1] ^ 1])
    with pytest.raises(DecryptionError):
        vaultline_security.unseal(tampered, blob, "pw")
    with pytest.raises(CorruptArchiveError):
        vaultline_security.unseal(params[:-1], blob, "pw")


def test_keys_are_not_retained_between_calls(monkeypatch):
    derived = []
    real = vaultline_security.PBKDF2HMAC

    class CountingKDF:
        def __init__(self, **kwargs):
            self._kdf = real(**kwargs)

        def derive(self, key_material):
            derived.append(key_material)
            return self._kdf.derive(key_material)

    params, blob = vaultline_security.seal(b"payload", "pw")
    monkeypatch.setattr(vaultline_security, "PBKDF2HMAC", CountingKDF)
    vaultline_security.unseal(params, blob, "pw")
    vaultline_security.unseal(params, blob, "pw")
    assert derived == [b"pw", b"pw"]
