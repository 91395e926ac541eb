# Vault Module - Encrypted Account Storage
#
# Ordered in-memory account vault persisted as one AES-256-GCM blob.
# VaultManager lives in .vault_manager and is exported from the top-level
# package (it depends on account_vault.config, which depends on .codec).

from .codec import decode_vault, encode_vault, validate_key
from .keys import derive_device_key, derive_user_key, rekey
from .models import AccountRecord
from .scheduler import SaveScheduler
from .search import SearchIndex, fuzzy_ratio
from .store import ChangeKind, SortField, VaultChange, VaultStore

__all__ = [
    "AccountRecord",
    "ChangeKind",
    "SaveScheduler",
    "SearchIndex",
    "SortField",
    "VaultChange",
    "VaultStore",
    "decode_vault",
    "derive_device_key",
    "derive_user_key",
    "encode_vault",
    "fuzzy_ratio",
    "rekey",
    "validate_key",
]
