"""Tests for configuration defaults and environment overrides."""

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from pwvault import config, kdf


class TestVaultPath:
    """Tests for get_vault_path."""

    def test_argument_wins(self):
        with patch.dict(os.environ, {"PWVAULT_PATH": "/env/vault.pwv"}):
            assert config.get_vault_path("/custom/path.pwv") == Path("/custom/path.pwv")

    def test_environment(self):
        with patch.dict(os.environ, {"PWVAULT_PATH": "/env/vault.pwv"}):
            assert config.get_vault_path() == Path("/env/vault.pwv")

    def test_default(self):
        with patch.dict(os.environ, {}, clear=True):
            assert config.get_vault_path() == config.DEFAULT_VAULT
            assert config.DEFAULT_VAULT.name == "vault.pwv"


class TestKdfProfile:
    """Tests for get_kdf_params."""

    def test_default_profile(self):
        with patch.dict(os.environ, {}, clear=True):
            assert config.get_kdf_params() == kdf.PRESETS["default"]

    def test_named_profile(self):
        assert config.get_kdf_params("Moderate") == kdf.PRESETS["moderate"]

    def test_environment_profile(self):
        with patch.dict(os.environ, {"PWVAULT_KDF": "interactive"}):
            assert config.get_kdf_params() == kdf.PRESETS["interactive"]

    def test_unknown_profile(self):
        with pytest.raises(ValueError, match="unknown KDF profile"):
            config.get_kdf_params("turbo")


class TestNumbers:
    """Tests for integer settings."""

    def test_clip_timeout_default(self):
        with patch.dict(os.environ, {}, clear=True):
            assert config.get_clip_timeout() == config.DEFAULT_CLIP_TIMEOUT

    def test_clip_timeout_argument_and_env(self):
        with patch.dict(os.environ, {"PWVAULT_CLIP_TIMEOUT": "45"}):
            assert config.get_clip_timeout() == 45
            assert config.get_clip_timeout(0) == 0

    def test_invalid_integer(self):
        with patch.dict(os.environ, {"PWVAULT_CLIP_TIMEOUT": "soon"}):
            with pytest.raises(ValueError, match="PWVAULT_CLIP_TIMEOUT"):
                config.get_clip_timeout()

    def test_negative_integer(self):
        with patch.dict(os.environ, {"PWVAULT_AUDIT_RETENTION_DAYS": "-1"}):
            with pytest.raises(ValueError):
                config.get_audit_retention_days()


class TestAuditSettings:
    """Tests for audit log settings."""

    def test_default_location(self):
        with patch.dict(os.environ, {}, clear=True):
            assert config.get_audit_log_path() == config.DEFAULT_AUDIT_LOG

    def test_custom_location(self):
        with patch.dict(os.environ, {"PWVAULT_AUDIT_LOG": "/var/tmp/pw.log"}):
            assert config.get_audit_log_path() == Path("/var/tmp/pw.log")

    def test_empty_disables(self):
        with patch.dict(os.environ, {"PWVAULT_AUDIT_LOG": ""}):
            assert config.get_audit_log_path() is None

    def test_retention(self):
        with patch.dict(os.environ, {"PWVAULT_AUDIT_RETENTION_DAYS": "7"}):
            assert config.get_audit_retention_days() == 7
