"""
Account Vault Exception Classes
"""


class VaultError(Exception):
    """Base exception for vault operations"""


class AuthenticationFailed(VaultError):
    """Raised when a blob does not decrypt under the given key (wrong key or tampered data)"""


class CorruptData(VaultError):
    """Raised when decrypted plaintext is not a valid snapshot"""


class TruncatedStream(VaultError):
    """Raised when a blob is too short to hold the IV and tag"""


class InvalidKeyLength(VaultError, ValueError):
    """Raised when a key is not exactly 32 bytes"""


class RemovalBlocked(VaultError):
    """Raised when removing an account that still carries an authenticator"""


class IOFailure(VaultError):
    """Raised when the underlying file cannot be read or written"""


class KeyNotSet(VaultError, RuntimeError):
    """Raised when a save is attempted before a vault key has been established"""
