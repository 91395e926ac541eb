"""
Shared pytest fixtures for the Account Vault test suite.

Autouse fixtures below isolate tests from the live machine:
  - Audit logger -> temp directory     (no audit files in the working dir)
  - Machine id   -> fixed test value   (stable device key on every host)
  - Vault home   -> temp directory     (no writes to ~/.account_vault)
"""

import sys
from pathlib import Path

import pytest

# Run against the source tree when the package is not installed
SRC_DIR = Path(__file__).resolve().parent.parent / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))


@pytest.fixture(autouse=True)
def _isolate_audit_logs(tmp_path_factory):
    """Point the global AuditLogger at a temp directory for every test."""
    import account_vault.core.audit_log as audit_mod

    old_logger = audit_mod._audit_logger
    test_logger = audit_mod.AuditLogger(log_dir=tmp_path_factory.mktemp("audit_logs"))
    audit_mod._audit_logger = test_logger

    yield test_logger

    test_logger.close()
    audit_mod._audit_logger = old_logger


@pytest.fixture(autouse=True)
def _isolate_environment(tmp_path, monkeypatch):
    """Fixed machine id and a temp vault home."""
    monkeypatch.setenv("ACCOUNT_VAULT_MACHINE_ID", "test-machine-0000")
    monkeypatch.setenv("ACCOUNT_VAULT_HOME", str(tmp_path / "home"))
    for name in ("ACCOUNT_VAULT_CONFIG", "ACCOUNT_VAULT_DATABASE",
                 "ACCOUNT_VAULT_LOG_DIR", "ACCOUNT_VAULT_SAVE_DELAY_MS"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def audit_logger(_isolate_audit_logs):
    return _isolate_audit_logs
