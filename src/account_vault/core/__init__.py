# Core Module - Shared Utilities
#
# Audit logging shared by the vault and config layers.

from .audit_log import (
    AuditLogger,
    EventSeverity,
    EventType,
    get_audit_logger,
    set_audit_logger,
)

__all__ = [
    "AuditLogger",
    "EventType",
    "EventSeverity",
    "get_audit_logger",
    "set_audit_logger",
]
