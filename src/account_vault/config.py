# Account Vault - Configuration
#
# Settings:  where things live, read from the environment (and .env).
# AppConfig: user settings persisted as an encrypted blob under the
#            device key. Holds the remembered vault key, if any, so a
#            passphrase-protected vault reopens on the same machine without
#            prompting.

import base64
import binascii
import logging
import os
from dataclasses import dataclass, field
from enum import IntEnum
from pathlib import Path
from typing import Any, Dict, Optional, Union

from dotenv import load_dotenv

from .errors import AuthenticationFailed, CorruptData, TruncatedStream
from .vault.codec import decode_document, encode_document, validate_key
from .vault.storage import read_blob, write_blob_atomic

logger = logging.getLogger(__name__)

CONFIG_SCHEMA = "account_vault.config"
CONFIG_VERSION = 1

DEFAULT_HOME = Path.home() / ".account_vault"
DEFAULT_SAVE_DELAY_MS = 300
CONFIG_FILENAME = "config.dat"
DATABASE_FILENAME = "database.dat"


# ── Environment settings ─────────────────────────────────────────────


@dataclass
class Settings:
    """File locations and tuning knobs.

    Environment variables:
        ACCOUNT_VAULT_HOME          base directory (default ~/.account_vault)
        ACCOUNT_VAULT_CONFIG        config blob path override
        ACCOUNT_VAULT_DATABASE      database blob path override
        ACCOUNT_VAULT_LOG_DIR       audit log directory
        ACCOUNT_VAULT_SAVE_DELAY_MS debounce for text-field style saves
    """

    home: Path
    config_path: Path
    database_path: Path
    log_dir: Path
    save_delay_ms: int = DEFAULT_SAVE_DELAY_MS

    @classmethod
    def from_env(
        cls,
        home: Optional[Union[str, Path]] = None,
        env_file: Optional[Union[str, Path]] = None,
    ) -> "Settings":
        load_dotenv(dotenv_path=env_file or Path.cwd() / ".env", override=False)

        base = Path(home or os.environ.get("ACCOUNT_VAULT_HOME") or DEFAULT_HOME).expanduser()
        config_path = os.environ.get("ACCOUNT_VAULT_CONFIG")
        database_path = os.environ.get("ACCOUNT_VAULT_DATABASE")
        log_dir = os.environ.get("ACCOUNT_VAULT_LOG_DIR")

        delay_raw = os.environ.get("ACCOUNT_VAULT_SAVE_DELAY_MS", "")
        try:
            save_delay_ms = int(delay_raw) if delay_raw else DEFAULT_SAVE_DELAY_MS
        except ValueError:
            logger.warning("Ignoring invalid ACCOUNT_VAULT_SAVE_DELAY_MS=%r", delay_raw)
            save_delay_ms = DEFAULT_SAVE_DELAY_MS

        return cls(
            home=base,
            config_path=Path(config_path) if config_path else base / CONFIG_FILENAME,
            database_path=Path(database_path) if database_path else base / DATABASE_FILENAME,
            log_dir=Path(log_dir) if log_dir else base / "logs",
            save_delay_ms=max(0, save_delay_ms),
        )


# ── Persisted app config ─────────────────────────────────────────────


class SideBarState(IntEnum):
    HIDDEN = 0
    OPEN = 70
    EXPANDED = 200


@dataclass
class AppConfig:
    """User settings stored in the config blob."""

    minimize_on_start: bool = False
    minimize_to_tray: bool = False
    api_key: Optional[str] = None
    side_bar_state: SideBarState = SideBarState.EXPANDED
    database_key: Optional[bytes] = field(default=None, repr=False)

    # Not persisted: set when a setting changes so the UI knows to save
    is_properties_changed: bool = field(default=False, compare=False)

    def __post_init__(self):
        if self.database_key is not None:
            self.database_key = validate_key(self.database_key)
        self.side_bar_state = SideBarState(self.side_bar_state)

    def set_database_key(self, key: Optional[bytes]) -> None:
        """Remember (or forget, with None) the vault key."""
        self.database_key = validate_key(key) if key is not None else None
        self.is_properties_changed = True

    def to_document(self) -> Dict[str, Any]:
        return {
            "schema": CONFIG_SCHEMA,
            "version": CONFIG_VERSION,
            "minimize_on_start": self.minimize_on_start,
            "minimize_to_tray": self.minimize_to_tray,
            "api_key": self.api_key,
            "side_bar_state": int(self.side_bar_state),
            "database_key": (
                base64.b64encode(self.database_key).decode("ascii")
                if self.database_key is not None else None
            ),
        }

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "AppConfig":
        """Build from a decoded document, failing closed on bad values."""
        try:
            flags = {name: document[name] for name in ("minimize_on_start", "minimize_to_tray")}
            api_key = document["api_key"]
            side_bar = document["side_bar_state"]
            key_b64 = document["database_key"]
        except KeyError as exc:
            raise CorruptData(f"Config is missing '{exc.args[0]}'") from exc

        if not all(isinstance(v, bool) for v in flags.values()):
            raise CorruptData("Config flags must be booleans")
        if api_key is not None and not isinstance(api_key, str):
            raise CorruptData("Config api_key must be a string")

        try:
            side_bar_state = SideBarState(side_bar)
        except ValueError as exc:
            raise CorruptData(f"Unknown side bar state: {side_bar!r}") from exc

        database_key = None
        if key_b64 is not None:
            try:
                database_key = validate_key(base64.b64decode(key_b64, validate=True))
            except (TypeError, binascii.Error, ValueError) as exc:
                raise CorruptData("Config database_key is not a valid key") from exc

        return cls(
            api_key=api_key,
            side_bar_state=side_bar_state,
            database_key=database_key,
            **flags,
        )

    # ── Storing / restoring ──────────────────────────────────────

    def save(self, path: Union[str, Path], device_key: bytes) -> None:
        write_blob_atomic(path, encode_document(self.to_document(), device_key))
        self.is_properties_changed = False

    @classmethod
    def load(cls, path: Union[str, Path], device_key: bytes) -> "AppConfig":
        """Load the config blob, or return defaults if missing or unreadable.

        A config that cannot be decrypted (copied from another machine) or
        parsed is treated like a fresh install. IOFailure propagates.
        """
        blob = read_blob(path)
        if not blob:
            return cls()

        try:
            document = decode_document(blob, device_key, CONFIG_SCHEMA, CONFIG_VERSION)
            return cls.from_document(document)
        except (AuthenticationFailed, CorruptData, TruncatedStream) as exc:
            logger.warning("Config at %s is unusable (%s), using defaults", path, exc)
            return cls()
