# Vault - Key Manager
#
# Device key: SHA-256 over a stable machine identifier. Used when the user
#             has not set a passphrase, so the vault opens without a prompt
#             on the machine that created it.
# User key:   SHA-256 over passphrase ‖ application salt.
# Rekey:      decrypt-old / encrypt-new / trial-decode / atomic swap.

import hashlib
import logging
import os
import platform
import subprocess
import sys
import uuid
from pathlib import Path
from typing import Iterable, List, Optional, Union

from ..errors import CorruptData
from .codec import KEY_SIZE, decode_vault, encode_vault, validate_key
from .models import AccountRecord
from .storage import read_blob, write_blob_atomic

logger = logging.getLogger(__name__)

# Fixed application salt mixed into passphrase-derived keys
APP_SALT = "account_vault::7f3a9c2e5b1d48e6"

DEVICE_KEY_DOMAIN = b"account_vault.device\x00"

MACHINE_ID_ENV = "ACCOUNT_VAULT_MACHINE_ID"

_LINUX_MACHINE_ID_PATHS = ("/etc/machine-id", "/var/lib/dbus/machine-id")

__all__ = [
    "KEY_SIZE",
    "derive_device_key",
    "derive_user_key",
    "get_machine_id",
    "rekey",
    "validate_key",
]


# ── Machine identifier ───────────────────────────────────────────────


def _windows_machine_guid() -> Optional[str]:
    import winreg

    try:
        with winreg.OpenKey(
            winreg.HKEY_LOCAL_MACHINE,
            r"SOFTWARE\Microsoft\Cryptography",
            0,
            winreg.KEY_READ | winreg.KEY_WOW64_64KEY,
        ) as key:
            value, _ = winreg.QueryValueEx(key, "MachineGuid")
            return str(value).strip() or None
    except OSError:
        logger.debug("MachineGuid not readable", exc_info=True)
        return None


def _linux_machine_id() -> Optional[str]:
    for path in _LINUX_MACHINE_ID_PATHS:
        try:
            value = Path(path).read_text(encoding="ascii").strip()
        except OSError:
            continue
        if value:
            return value
    return None


def _darwin_platform_uuid() -> Optional[str]:
    try:
        result = subprocess.run(
            ["ioreg", "-rd1", "-c", "IOPlatformExpertDevice"],
            capture_output=True, text=True, timeout=5,
        )
    except (OSError, subprocess.SubprocessError):
        logger.debug("ioreg unavailable", exc_info=True)
        return None
    if result.returncode != 0:
        return None
    for line in result.stdout.splitlines():
        if "IOPlatformUUID" in line:
            return line.split('"')[-2]
    return None


def get_machine_id() -> str:
    """Return a stable identifier for this machine.

    Order: ACCOUNT_VAULT_MACHINE_ID override, Windows MachineGuid,
    /etc/machine-id, macOS IOPlatformUUID, node name + MAC address.
    """
    override = os.environ.get(MACHINE_ID_ENV, "").strip()
    if override:
        return override

    machine_id: Optional[str] = None
    if sys.platform == "win32":
        machine_id = _windows_machine_guid()
    elif sys.platform == "darwin":
        machine_id = _darwin_platform_uuid()
    else:
        machine_id = _linux_machine_id()

    if machine_id:
        return machine_id

    logger.warning("No platform machine id found, falling back to node name + MAC")
    return f"{platform.node()}|{uuid.getnode():012x}"


# ── Key derivation ───────────────────────────────────────────────────


def derive_device_key(machine_id: Optional[str] = None) -> bytes:
    """Derive the 32-byte device-bound key."""
    ident = machine_id if machine_id is not None else get_machine_id()
    return hashlib.sha256(DEVICE_KEY_DOMAIN + ident.encode("utf-8")).digest()


def derive_user_key(passphrase: str) -> bytes:
    """Derive the 32-byte key from a user passphrase."""
    if not passphrase:
        raise ValueError("Passphrase must not be empty")
    return hashlib.sha256((passphrase + APP_SALT).encode("utf-8")).digest()


# ── Rekey ────────────────────────────────────────────────────────────


def rekey(
    path: Union[str, Path],
    records: Iterable[AccountRecord],
    old_key: bytes,
    new_key: bytes,
) -> bytes:
    """Re-encrypt the vault at ``path`` under ``new_key``.

    The persisted blob (if any) must decrypt under ``old_key``. The new blob
    is trial-decoded and compared against ``records`` before it replaces the
    old one. On any failure the file on disk is left as it was.

    Returns:
        The new blob that was written.

    Raises:
        AuthenticationFailed: persisted blob does not open with old_key
        CorruptData: persisted blob is malformed or the trial decode differs
        IOFailure: reading or writing the file failed
        InvalidKeyLength: either key is not 32 bytes
    """
    old_key = validate_key(old_key)
    new_key = validate_key(new_key)
    snapshot: List[AccountRecord] = list(records)

    current = read_blob(path)
    if current:
        decode_vault(current, old_key)

    new_blob = encode_vault(snapshot, new_key)
    if decode_vault(new_blob, new_key) != snapshot:
        raise CorruptData("Re-encrypted snapshot failed verification")

    write_blob_atomic(path, new_blob)
    return new_blob
