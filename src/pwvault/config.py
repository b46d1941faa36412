#!/usr/bin/env python3
"""Configuration - Defaults and environment overrides."""

import os
from pathlib import Path
from typing import Optional

from .kdf import PRESETS, KdfParams

# Defaults
DEFAULT_DIR = Path.home() / ".pwvault"
DEFAULT_VAULT = DEFAULT_DIR / "vault.pwv"
DEFAULT_AUDIT_LOG = DEFAULT_DIR / "audit.log"
DEFAULT_KDF_PROFILE = "default"
DEFAULT_CLIP_TIMEOUT = 20
DEFAULT_AUDIT_RETENTION_DAYS = 30
DEFAULT_PASSWORD_LENGTH = 20

# Environment variables
ENV_VAULT = "PWVAULT_PATH"
ENV_PASSWORD = "PWVAULT_PASSWORD"
ENV_NEW_PASSWORD = "PWVAULT_NEW_PASSWORD"
ENV_KDF = "PWVAULT_KDF"
ENV_CLIP_TIMEOUT = "PWVAULT_CLIP_TIMEOUT"
ENV_AUDIT_LOG = "PWVAULT_AUDIT_LOG"
ENV_AUDIT_RETENTION = "PWVAULT_AUDIT_RETENTION_DAYS"


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    if value < 0:
        raise ValueError(f"{name} must not be negative")
    return value


def get_vault_path(args_vault: Optional[str] = None) -> Path:
    """Vault path from the command line, then PWVAULT_PATH, then the default."""
    if args_vault:
        return Path(args_vault).expanduser()
    env_path = os.environ.get(ENV_VAULT)
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_VAULT


def get_kdf_params(profile: Optional[str] = None) -> KdfParams:
    """KDF preset by name (argument, then PWVAULT_KDF, then the default)."""
    name = (profile or os.environ.get(ENV_KDF) or DEFAULT_KDF_PROFILE).lower()
    try:
        return PRESETS[name]
    except KeyError:
        raise ValueError(
            f"unknown KDF profile {name!r} (choose from {', '.join(sorted(PRESETS))})"
        ) from None


def get_clip_timeout(value: Optional[int] = None) -> int:
    """Seconds before a copied secret is cleared from the clipboard (0 = never)."""
    if value is not None:
        return value
    return _env_int(ENV_CLIP_TIMEOUT, DEFAULT_CLIP_TIMEOUT)


def get_audit_log_path() -> Optional[Path]:
    """Audit log location; None when PWVAULT_AUDIT_LOG is set to an empty string."""
    raw = os.environ.get(ENV_AUDIT_LOG)
    if raw is None:
        return DEFAULT_AUDIT_LOG
    if not raw.strip():
        return None
    return Path(raw).expanduser()


def get_audit_retention_days() -> int:
    return _env_int(ENV_AUDIT_RETENTION, DEFAULT_AUDIT_RETENTION_DAYS)
