"""Pytest fixtures and utilities for pwvault tests."""

import tempfile
from pathlib import Path

import pytest

# Add src to path for imports
import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from pwvault import kdf
from pwvault.kdf import MEMORY_COST_MIN, TIME_COST_MIN, KdfParams, generate_vault_key
from pwvault.vault import create_vault

# Cheapest Argon2id settings libsodium accepts; keeps tests fast
FAST_PARAMS = KdfParams.argon2id(MEMORY_COST_MIN, TIME_COST_MIN)
STRONGER_PARAMS = KdfParams.argon2id(MEMORY_COST_MIN * 2, TIME_COST_MIN + 1)

TEST_PASSWORD = "test_password_123"


@pytest.fixture
def temp_vault_dir():
    """Create a temporary directory for vault files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def fast_params():
    return FAST_PARAMS


@pytest.fixture
def vault_key():
    """A fresh Vault Key, wiped after the test."""
    key = generate_vault_key()
    yield key
    key.wipe()


@pytest.fixture
def vault_path(temp_vault_dir):
    return temp_vault_dir / "test.pwv"


@pytest.fixture
def test_vault(vault_path):
    """Create a vault with test entries and close it.

    Returns a dict with the path, password and {title: (id, username, password, notes)}.
    """
    entries = [
        ("GitHub", "octocat", "gh_pass_123", "recovery codes in the safe"),
        ("email", "me@example.com", "hunter2", ""),
        ("Bank", "acct-0042", "b4nk_p4ss", "PIN is 4321"),
    ]

    ids = {}
    with create_vault(vault_path, TEST_PASSWORD, FAST_PARAMS) as vault:
        for title, username, password, notes in entries:
            ids[title] = (vault.add(title, username, password, notes), username, password, notes)

    return {
        "path": vault_path,
        "password": TEST_PASSWORD,
        "entries": ids,
    }


@pytest.fixture
def fast_kdf_profiles(monkeypatch):
    """Make every KDF profile the CLI can pick cheap to derive."""
    for name in list(kdf.PRESETS):
        monkeypatch.setitem(kdf.PRESETS, name, FAST_PARAMS)
    monkeypatch.setitem(kdf.PRESETS, "sensitive", STRONGER_PARAMS)
    yield kdf.PRESETS


@pytest.fixture
def cli_env(temp_vault_dir, monkeypatch, fast_kdf_profiles):
    """Environment for CLI tests: vault, audit log and password in a temp dir."""
    vault = temp_vault_dir / "cli.pwv"
    audit_log = temp_vault_dir / "audit.log"
    monkeypatch.setenv("PWVAULT_PATH", str(vault))
    monkeypatch.setenv("PWVAULT_PASSWORD", TEST_PASSWORD)
    monkeypatch.setenv("PWVAULT_AUDIT_LOG", str(audit_log))
    monkeypatch.delenv("PWVAULT_NEW_PASSWORD", raising=False)
    monkeypatch.delenv("PWVAULT_KDF", raising=False)
    monkeypatch.delenv("PWVAULT_CLIP_TIMEOUT", raising=False)
    return {
        "vault": vault,
        "audit_log": audit_log,
        "password": TEST_PASSWORD,
        "dir": temp_vault_dir,
    }


@pytest.fixture
def audit_logger(temp_vault_dir):
    """Create an audit logger with temp log path."""
    from pwvault.audit import AuditLogger
    log_path = temp_vault_dir / "audit.log"
    logger = AuditLogger(log_path)
    yield logger


def assert_log_entry(audit_logger, result, action, target=None):
    """Helper to verify a log entry exists."""
    recent = audit_logger.read_recent(100)
    for line in recent:
        parts = line.strip().split()
        if len(parts) >= 5:
            if parts[2] == result and parts[3] == action:
                if target is None or parts[4] == target:
                    return True
    return False
