# Core - Audit Logging
#
# Append-only structured log of security-relevant vault events (unlock,
# failed unlock, rekey, account add/remove). JSON lines, one daily file per
# log directory. Detail keys that name secrets are masked before rendering,
# but callers still should not pass passwords, keys or authenticator
# payloads into an event.

import getpass
import logging
import os
import socket
import sys
import threading
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, TextIO
from uuid import uuid4

import structlog

logger = logging.getLogger(__name__)

LOG_DIR_ENV = "ACCOUNT_VAULT_LOG_DIR"

# Detail keys masked in every event
SECRET_KEYS = frozenset({
    "password", "passphrase", "key", "database_key", "authenticator",
    "shared_secret", "identity_secret", "revocation_code",
})
REDACTED = "***"


class EventType(str, Enum):
    """Vault events recorded in the audit log."""

    VAULT_CREATED = "vault.created"
    VAULT_LOADED = "vault.loaded"
    VAULT_UNLOCKED = "vault.unlocked"
    VAULT_UNLOCK_FAILED = "vault.unlock.failed"
    VAULT_REKEYED = "vault.rekeyed"
    VAULT_REKEY_FAILED = "vault.rekey.failed"
    VAULT_CLOSED = "vault.closed"

    ACCOUNT_ADDED = "vault.account.added"
    ACCOUNT_REMOVED = "vault.account.removed"
    ACCOUNT_REMOVAL_BLOCKED = "vault.account.removal_blocked"

    CONFIG_SAVED = "config.saved"


class EventSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ALERT = "alert"
    CRITICAL = "critical"


def _redact_secrets(_logger, _method_name, event_dict):
    """structlog processor: mask secret-looking keys inside ``details``."""
    details = event_dict.get("details")
    if isinstance(details, dict):
        event_dict["details"] = {
            k: (REDACTED if k.lower() in SECRET_KEYS else v) for k, v in details.items()
        }
    return event_dict


def _host_context() -> Dict[str, Any]:
    try:
        os_user = getpass.getuser()
    except (KeyError, OSError):
        os_user = os.getenv("USERNAME") or os.getenv("USER")
    return {
        "os_user": os_user,
        "hostname": socket.gethostname(),
        "platform": sys.platform,
    }


class AuditLogger:
    """
    Writes vault events as JSON lines to ``<log_dir>/audit_YYYY-MM-DD.log``.

    Each event carries a UUID, an ISO UTC timestamp, its type and severity,
    free-form details and the OS user / host it happened on. Every instance
    owns its file and its structlog chain; two loggers never see each
    other's events, and the process-wide structlog configuration is left
    alone.
    """

    def __init__(self, log_dir: Optional[Path] = None):
        self.log_dir = Path(log_dir) if log_dir else Path("./audit_logs")
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.log_file = self.log_dir / f"audit_{datetime.now():%Y-%m-%d}.log"

        self._lock = threading.Lock()
        self._stream: Optional[TextIO] = None
        self._log = None
        self._open()

    def _open(self) -> None:
        self._stream = open(self.log_file, "a", encoding="utf-8")
        self._log = structlog.wrap_logger(
            structlog.PrintLogger(file=self._stream),
            processors=[
                structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
                _redact_secrets,
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(),
            ],
        ).bind(user_context=_host_context())
        logger.debug("Audit log opened at %s", self.log_file)

    def close(self) -> None:
        """Close the log file. A later event reopens it."""
        with self._lock:
            if self._stream is None:
                return
            self._stream.close()
            self._stream = None
            self._log = None

    def log_vault_event(
        self,
        event_type: EventType,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        severity: EventSeverity = EventSeverity.INFO,
    ) -> str:
        """Record one vault event and return its ID."""
        event_id = str(uuid4())
        with self._lock:
            if self._stream is None:
                self._open()
            emit = self._log.warning if severity is not EventSeverity.INFO else self._log.info
            emit(
                "vault_event",
                event_id=event_id,
                event_type=event_type.value,
                severity=severity.value,
                message=f"Vault: {message}",
                details=dict(details or {}),
            )
        return event_id


_audit_logger: Optional[AuditLogger] = None


def get_audit_logger(log_dir: Optional[Path] = None) -> AuditLogger:
    """Process-wide default audit logger, created on first use.

    ``log_dir`` only applies to that first creation; it falls back to
    ACCOUNT_VAULT_LOG_DIR, then ./audit_logs.
    """
    global _audit_logger
    if _audit_logger is None:
        env_dir = os.environ.get(LOG_DIR_ENV)
        _audit_logger = AuditLogger(log_dir or (Path(env_dir) if env_dir else None))
    return _audit_logger


def set_audit_logger(instance: Optional[AuditLogger]) -> None:
    """Replace the default audit logger (tests inject a temp-dir logger)."""
    global _audit_logger
    _audit_logger = instance
