# Account Vault - Main Package
#
# Local encrypted store for account credentials: ordered vault with pinned
# accounts, nickname search, debounced saves, device- or passphrase-bound key.

__version__ = "0.1.0"
__author__ = "Account Vault Team"
__description__ = "Local encrypted account credential vault"

from .config import AppConfig, Settings
from .errors import (
    AuthenticationFailed,
    CorruptData,
    InvalidKeyLength,
    IOFailure,
    KeyNotSet,
    RemovalBlocked,
    TruncatedStream,
    VaultError,
)
from .vault.vault_manager import VaultManager

__all__ = [
    "__version__",
    "AppConfig",
    "Settings",
    "VaultManager",
    "VaultError",
    "AuthenticationFailed",
    "CorruptData",
    "TruncatedStream",
    "InvalidKeyLength",
    "RemovalBlocked",
    "IOFailure",
    "KeyNotSet",
]
