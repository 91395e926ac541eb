# Vault Manager - Owner of one vault instance
#
# Wires the pieces together and owns their lifecycle:
#
#   settings ─► AppConfig (device key) ─► vault key ─► codec ─► VaultStore
#                                                     ▲
#                                SaveScheduler ───────┘ (single writer)
#
# Construct explicitly and pass it to whatever needs it; there is no global
# instance. Call load() (or initialize_empty()) before mutating, close() on
# shutdown for the final flush.

import logging
from typing import Callable, List, Optional

from ..config import AppConfig, Settings
from ..core import AuditLogger, EventSeverity, EventType, get_audit_logger
from ..errors import AuthenticationFailed, KeyNotSet, RemovalBlocked, VaultError
from . import keys
from .codec import decode_vault, encode_vault, validate_key
from .models import AccountRecord
from .scheduler import SaveScheduler
from .search import SearchIndex
from .storage import read_blob, write_blob_atomic
from .store import VaultStore

logger = logging.getLogger(__name__)


class VaultManager:
    """
    Manages the encrypted account vault.

    Security:
    - Vault blob encrypted with AES-256-GCM under the active key
    - Default key is device-bound; a passphrase key replaces it on request
    - Remembered key lives only inside the device-encrypted config blob
    - Audit logging for unlock, save, rekey and account removal
    """

    def __init__(
        self,
        settings: Settings,
        device_key: Optional[bytes] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        """
        Args:
            settings: File locations and save delay
            device_key: Override for the device-bound key (derived lazily
                        from the machine id when None)
            audit_logger: Audit sink (default: global audit logger)
        """
        self.settings = settings
        self._device_key = validate_key(device_key) if device_key is not None else None
        self.logger = audit_logger or get_audit_logger(settings.log_dir)

        self.config = AppConfig()
        self.store = VaultStore()
        self.search_index = SearchIndex(self.store)
        self.scheduler = SaveScheduler(self._write_database)

        self._key: Optional[bytes] = None
        self.is_loaded = False
        self._loaded_callbacks: List[Callable[[], None]] = []

    # ── Keys ─────────────────────────────────────────────────────

    @property
    def device_key(self) -> bytes:
        if self._device_key is None:
            self._device_key = keys.derive_device_key()
        return self._device_key

    @property
    def has_key(self) -> bool:
        return self._key is not None

    @property
    def uses_passphrase(self) -> bool:
        return self._key is not None and self._key != self.device_key

    # ── Config ───────────────────────────────────────────────────

    def load_config(self) -> AppConfig:
        self.config = AppConfig.load(self.settings.config_path, self.device_key)
        return self.config

    def save_config(self) -> None:
        self.config.save(self.settings.config_path, self.device_key)
        self.logger.log_vault_event(EventType.CONFIG_SAVED, "Config saved")

    # ── Loading ──────────────────────────────────────────────────

    def on_loaded(self, callback: Callable[[], None]) -> None:
        """Register a callback fired after a database is loaded from disk."""
        self._loaded_callbacks.append(callback)

    def _fire_loaded(self) -> None:
        for cb in list(self._loaded_callbacks):
            try:
                cb()
            except Exception:
                logger.warning("Vault loaded callback error", exc_info=True)

    def initialize_empty(self, key: Optional[bytes] = None) -> None:
        """Start with an empty vault under ``key`` (device key by default)."""
        with self.scheduler.exclusive():
            self.store.replace_all([])
            self._key = validate_key(key) if key is not None else self.device_key
            self.is_loaded = True
        self.logger.log_vault_event(EventType.VAULT_CREATED, "Empty vault initialized")

    def load(self) -> None:
        """Load config and database.

        A missing database yields an empty vault under the remembered or
        device key.

        Raises:
            AuthenticationFailed: the database does not open with the
                available key; prompt for a passphrase and call unlock().
            CorruptData, TruncatedStream, IOFailure
        """
        self.load_config()
        key = self.config.database_key or self.device_key
        path = self.settings.database_path

        with self.scheduler.exclusive():
            blob = read_blob(path)
            if not blob:
                self.store.replace_all([])
                self._key = key
                self.is_loaded = True
                self.logger.log_vault_event(
                    EventType.VAULT_CREATED, "No database found, starting empty",
                    details={"path": str(path)},
                )
                return

            try:
                records = decode_vault(blob, key)
            except AuthenticationFailed:
                self._key = None
                self.logger.log_vault_event(
                    EventType.VAULT_UNLOCK_FAILED,
                    "Database does not open with the stored key",
                    details={"path": str(path)},
                    severity=EventSeverity.WARNING,
                )
                raise

            self.store.replace_all(records)
            self._key = key
            self.is_loaded = True

        self.logger.log_vault_event(
            EventType.VAULT_LOADED, "Database loaded",
            details={"accounts": len(records)},
        )
        self._fire_loaded()

    def unlock(self, passphrase: str, remember: bool = True) -> None:
        """Open the database with a passphrase after load() failed.

        Raises:
            AuthenticationFailed: wrong passphrase (nothing changes)
        """
        key = keys.derive_user_key(passphrase)
        path = self.settings.database_path

        with self.scheduler.exclusive():
            blob = read_blob(path)
            records: List[AccountRecord] = []
            if blob:
                try:
                    records = decode_vault(blob, key)
                except AuthenticationFailed:
                    self.logger.log_vault_event(
                        EventType.VAULT_UNLOCK_FAILED, "Wrong passphrase",
                        severity=EventSeverity.WARNING,
                    )
                    raise
            self.store.replace_all(records)
            self._key = key
            self.is_loaded = True

        if remember:
            self.config.set_database_key(key)
            self.save_config()

        self.logger.log_vault_event(
            EventType.VAULT_UNLOCKED, "Database unlocked with passphrase",
            details={"accounts": len(records), "remembered": remember},
        )
        self._fire_loaded()

    # ── Saving ───────────────────────────────────────────────────

    def _write_database(self) -> None:
        key = self._key
        if key is None:
            raise KeyNotSet("Vault key is not set; load or initialize the vault first")
        write_blob_atomic(self.settings.database_path, encode_vault(self.store.snapshot(), key))
        logger.debug("Vault written to %s", self.settings.database_path)

    def save_database(self, timeout_ms: int = 0) -> None:
        """Request a save; ``timeout_ms`` > 0 debounces (useful for text fields).

        Raises:
            KeyNotSet: no key yet (load/initialize not done)
        """
        if self._key is None:
            raise KeyNotSet("Vault key is not set; load or initialize the vault first")
        self.scheduler.request_save(timeout_ms)

    # ── Re-keying ────────────────────────────────────────────────

    def rekey(self, new_key: bytes) -> None:
        """Re-encrypt the persisted vault under ``new_key``.

        Pending saves are flushed under the old key first. On failure the
        blob on disk and the active key stay as they were.
        """
        new_key = validate_key(new_key)
        if self._key is None:
            raise KeyNotSet("Vault key is not set; load or initialize the vault first")

        self.scheduler.flush()
        with self.scheduler.exclusive():
            try:
                keys.rekey(self.settings.database_path, self.store.snapshot(), self._key, new_key)
            except VaultError as exc:
                self.logger.log_vault_event(
                    EventType.VAULT_REKEY_FAILED, "Rekey failed, previous blob kept",
                    details={"error": type(exc).__name__},
                    severity=EventSeverity.ALERT,
                )
                raise
            self._key = new_key

        self.logger.log_vault_event(EventType.VAULT_REKEYED, "Vault re-encrypted")

    def set_passphrase(self, passphrase: Optional[str], remember: bool = True) -> None:
        """Protect the vault with a passphrase, or return to the device key with None."""
        if passphrase:
            new_key = keys.derive_user_key(passphrase)
        else:
            new_key = self.device_key
        self.rekey(new_key)

        if passphrase and remember:
            self.config.set_database_key(new_key)
        else:
            self.config.set_database_key(None)
        self.save_config()

    # ── Account operations ───────────────────────────────────────

    def add_account(self, record: AccountRecord) -> int:
        index = self.store.add(record)
        self.logger.log_vault_event(
            EventType.ACCOUNT_ADDED, f"Account added: {record.login}",
            details={"index": index},
        )
        self.save_database()
        return index

    def remove_account(self, record: AccountRecord) -> int:
        try:
            index = self.store.remove(record)
        except RemovalBlocked:
            self.logger.log_vault_event(
                EventType.ACCOUNT_REMOVAL_BLOCKED,
                f"Removal blocked, authenticator attached: {record.login}",
                severity=EventSeverity.WARNING,
            )
            raise
        self.logger.log_vault_event(
            EventType.ACCOUNT_REMOVED, f"Account removed: {record.login}",
            details={"index": index},
        )
        self.save_database()
        return index

    def update_account(self, index: int, record: AccountRecord) -> None:
        """Replace the record at ``index``; the save is debounced like a text edit."""
        self.store.update(index, record)
        self.save_database(self.settings.save_delay_ms)

    def toggle_pin(self, record: AccountRecord) -> None:
        if record.pinned:
            self.store.unpin(record)
        else:
            self.store.pin(record)
        self.save_database()

    def search(self, query: Optional[str]) -> List[int]:
        return self.search_index.search(query)

    # ── Lifecycle ────────────────────────────────────────────────

    def close(self) -> None:
        """Flush pending saves and stop the scheduler."""
        self.scheduler.close()
        if self.config.is_properties_changed:
            self.save_config()
        self.logger.log_vault_event(EventType.VAULT_CLOSED, "Vault closed")

    def __enter__(self) -> "VaultManager":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
