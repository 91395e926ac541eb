# Vault - Encrypted Codec
#
# Wire format: IV (12 random bytes, fresh per encode) ‖ AES-256-GCM ciphertext.
# The GCM tag rides at the end of the ciphertext, so a wrong key or a flipped
# bit is reported as AuthenticationFailed before any plaintext is parsed.
#
# Plaintext is a versioned JSON document with an explicit, ordered field list:
#
#   {"schema": "account_vault.snapshot", "version": 1,
#    "fields": [...RECORD_FIELDS...], "accounts": [[...], [...]]}

import json
import os
from typing import Any, Dict, Iterable, List

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..errors import AuthenticationFailed, CorruptData, InvalidKeyLength, TruncatedStream
from .models import RECORD_FIELDS, AccountRecord

# ── Constants ────────────────────────────────────────────────────────

KEY_SIZE = 32               # AES-256 key (256 bits)
IV_SIZE = 12                # AES-256-GCM nonce (96 bits per NIST)
TAG_SIZE = 16               # GCM authentication tag

SNAPSHOT_SCHEMA = "account_vault.snapshot"
SNAPSHOT_VERSION = 1


def validate_key(key: Any) -> bytes:
    """Return ``key`` as bytes, or raise InvalidKeyLength if it is not 32 bytes."""
    if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_SIZE:
        raise InvalidKeyLength(f"Vault key must be exactly {KEY_SIZE} bytes")
    return bytes(key)


# ── Low-level sealing ────────────────────────────────────────────────


def seal(plaintext: bytes, key: bytes) -> bytes:
    """Encrypt ``plaintext`` and prepend a fresh random IV."""
    key = validate_key(key)
    iv = os.urandom(IV_SIZE)
    return iv + AESGCM(key).encrypt(iv, plaintext, None)


def unseal(blob: bytes, key: bytes) -> bytes:
    """Split IV ‖ ciphertext and decrypt.

    Raises:
        TruncatedStream: blob shorter than IV + tag
        AuthenticationFailed: wrong key or tampered ciphertext
    """
    key = validate_key(key)
    if len(blob) < IV_SIZE:
        raise TruncatedStream(f"Blob holds {len(blob)} bytes, IV needs {IV_SIZE}")
    if len(blob) < IV_SIZE + TAG_SIZE:
        raise TruncatedStream("Blob ends before the authentication tag")

    iv, ciphertext = blob[:IV_SIZE], blob[IV_SIZE:]
    try:
        return AESGCM(key).decrypt(iv, ciphertext, None)
    except InvalidTag as exc:
        raise AuthenticationFailed("Blob could not be authenticated with this key") from exc


def encode_document(document: Dict[str, Any], key: bytes) -> bytes:
    """Serialize a JSON document and seal it."""
    payload = json.dumps(document, separators=(",", ":"), ensure_ascii=False)
    return seal(payload.encode("utf-8"), key)


def decode_document(blob: bytes, key: bytes, schema: str, version: int) -> Dict[str, Any]:
    """Unseal a blob and check its schema header."""
    plaintext = unseal(blob, key)
    try:
        document = json.loads(plaintext.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise CorruptData("Decrypted payload is not valid JSON") from exc

    if not isinstance(document, dict):
        raise CorruptData("Decrypted payload is not an object")
    if document.get("schema") != schema:
        raise CorruptData(f"Unexpected payload schema: {document.get('schema')!r}")
    if document.get("version") != version:
        raise CorruptData(f"Unsupported {schema} version: {document.get('version')!r}")
    return document


# ── Vault snapshot ───────────────────────────────────────────────────


def encode_vault(records: Iterable[AccountRecord], key: bytes) -> bytes:
    """Encode an ordered vault snapshot into an encrypted blob."""
    document = {
        "schema": SNAPSHOT_SCHEMA,
        "version": SNAPSHOT_VERSION,
        "fields": list(RECORD_FIELDS),
        "accounts": [record.to_row() for record in records],
    }
    return encode_document(document, key)


def decode_vault(blob: bytes, key: bytes) -> List[AccountRecord]:
    """Decode an encrypted blob into an ordered list of records.

    Raises:
        TruncatedStream, AuthenticationFailed, CorruptData
    """
    document = decode_document(blob, key, SNAPSHOT_SCHEMA, SNAPSHOT_VERSION)

    if document.get("fields") != list(RECORD_FIELDS):
        raise CorruptData("Snapshot field list does not match the record schema")
    accounts = document.get("accounts")
    if not isinstance(accounts, list):
        raise CorruptData("Snapshot has no account list")

    return [AccountRecord.from_row(row) for row in accounts]
