"""Tests for key derivation and rekeying.

Covers: device key stability, machine id override, passphrase keys,
rekey success, and rekey failure leaving the persisted blob untouched.
"""

import hashlib
import os
from unittest.mock import patch

import pytest

from account_vault.errors import AuthenticationFailed, CorruptData, InvalidKeyLength
from account_vault.vault import keys
from account_vault.vault.codec import KEY_SIZE, decode_vault, encode_vault
from account_vault.vault.keys import (
    APP_SALT,
    DEVICE_KEY_DOMAIN,
    derive_device_key,
    derive_user_key,
    get_machine_id,
    rekey,
)
from account_vault.vault.models import AccountRecord


@pytest.fixture
def records():
    return [
        AccountRecord(login="alpha", password="a", pinned=True),
        AccountRecord(login="bravo", password="b"),
    ]


# ── Machine id / device key ──────────────────────────────────────────


class TestDeviceKey:

    def test_override_wins(self, monkeypatch):
        monkeypatch.setenv("ACCOUNT_VAULT_MACHINE_ID", "override-123")
        assert get_machine_id() == "override-123"

    def test_blank_override_ignored(self, monkeypatch):
        monkeypatch.setenv("ACCOUNT_VAULT_MACHINE_ID", "   ")
        with patch.object(keys, "_linux_machine_id", return_value="linux-id"), \
             patch.object(keys, "_windows_machine_guid", return_value="win-id"), \
             patch.object(keys, "_darwin_platform_uuid", return_value="mac-id"):
            assert get_machine_id() in ("linux-id", "win-id", "mac-id")

    def test_fallback_when_platform_has_no_id(self, monkeypatch):
        monkeypatch.delenv("ACCOUNT_VAULT_MACHINE_ID")
        with patch.object(keys, "_linux_machine_id", return_value=None), \
             patch.object(keys, "_windows_machine_guid", return_value=None), \
             patch.object(keys, "_darwin_platform_uuid", return_value=None):
            machine_id = get_machine_id()
        assert "|" in machine_id

    def test_device_key_is_stable(self):
        assert derive_device_key() == derive_device_key()
        assert len(derive_device_key()) == KEY_SIZE

    def test_device_key_formula(self):
        expected = hashlib.sha256(DEVICE_KEY_DOMAIN + b"test-machine-0000").digest()
        assert derive_device_key() == expected

    def test_different_machines_different_keys(self):
        assert derive_device_key("machine-a") != derive_device_key("machine-b")


# ── User key ─────────────────────────────────────────────────────────


class TestUserKey:

    def test_deterministic(self):
        assert derive_user_key("hunter2") == derive_user_key("hunter2")

    def test_formula(self):
        expected = hashlib.sha256(("hunter2" + APP_SALT).encode("utf-8")).digest()
        assert derive_user_key("hunter2") == expected

    def test_differs_from_device_key(self):
        assert derive_user_key("test-machine-0000") != derive_device_key()

    def test_empty_passphrase_rejected(self):
        with pytest.raises(ValueError):
            derive_user_key("")

    def test_unicode_passphrase(self):
        assert len(derive_user_key("пароль-🔑")) == KEY_SIZE


# ── Rekey ────────────────────────────────────────────────────────────


class TestRekey:

    def test_rekey_existing_blob(self, tmp_path, records):
        path = tmp_path / "database.dat"
        old_key, new_key = os.urandom(KEY_SIZE), os.urandom(KEY_SIZE)
        path.write_bytes(encode_vault(records, old_key))

        blob = rekey(path, records, old_key, new_key)

        assert path.read_bytes() == blob
        assert decode_vault(path.read_bytes(), new_key) == records
        with pytest.raises(AuthenticationFailed):
            decode_vault(path.read_bytes(), old_key)

    def test_rekey_without_existing_file(self, tmp_path, records):
        path = tmp_path / "sub" / "database.dat"
        new_key = os.urandom(KEY_SIZE)
        rekey(path, records, os.urandom(KEY_SIZE), new_key)
        assert decode_vault(path.read_bytes(), new_key) == records

    def test_wrong_old_key_leaves_blob_intact(self, tmp_path, records):
        path = tmp_path / "database.dat"
        real_key = os.urandom(KEY_SIZE)
        original = encode_vault(records, real_key)
        path.write_bytes(original)

        with pytest.raises(AuthenticationFailed):
            rekey(path, records, os.urandom(KEY_SIZE), os.urandom(KEY_SIZE))
        assert path.read_bytes() == original

    def test_failed_verification_leaves_blob_intact(self, tmp_path, records):
        path = tmp_path / "database.dat"
        old_key, new_key = os.urandom(KEY_SIZE), os.urandom(KEY_SIZE)
        original = encode_vault(records, old_key)
        path.write_bytes(original)

        with patch.object(keys, "decode_vault", side_effect=[records, []]):
            with pytest.raises(CorruptData):
                rekey(path, records, old_key, new_key)
        assert path.read_bytes() == original

    def test_invalid_new_key(self, tmp_path, records):
        path = tmp_path / "database.dat"
        old_key = os.urandom(KEY_SIZE)
        original = encode_vault(records, old_key)
        path.write_bytes(original)

        with pytest.raises(InvalidKeyLength):
            rekey(path, records, old_key, b"too-short")
        assert path.read_bytes() == original

    def test_no_temp_file_left_behind(self, tmp_path, records):
        path = tmp_path / "database.dat"
        rekey(path, records, os.urandom(KEY_SIZE), os.urandom(KEY_SIZE))
        assert sorted(p.name for p in tmp_path.iterdir()) == ["database.dat"]
