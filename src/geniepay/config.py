"""Configuration system for GeniePay.

Loads profile config from `.geniepay/<profile>/config.yaml`, supports
environment variable expansion, and exposes the session, network and
payment settings consumed by the wallet session core.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Environment-variable expansion helper
# ---------------------------------------------------------------------------

_ENV_VAR_RE = re.compile(r"\$\{([^}]+)\}")


def _expand_env_vars(value: str) -> str:
    """Replace ``${VAR_NAME}`` placeholders with their environment values.

    If the variable is not set the placeholder is left as-is so that
    validation can catch it later.
    """

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))

    return _ENV_VAR_RE.sub(_replace, value)


def _expand_env_recursive(obj: object) -> object:
    """Walk an arbitrary nested structure and expand env vars in strings."""
    if isinstance(obj, str):
        return _expand_env_vars(obj)
    if isinstance(obj, dict):
        return {k: _expand_env_recursive(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_expand_env_recursive(item) for item in obj]
    return obj


# ---------------------------------------------------------------------------
# Pydantic v2 models
# ---------------------------------------------------------------------------


class AuthConfig(BaseModel):
    """Wallet sign-in and session settings."""

    session_ttl_seconds: int = 24 * 60 * 60
    expiry_check_interval_seconds: float = 60.0
    signature_max_age_seconds: int = 0  # 0 = no age limit on the signed challenge
    terms_version: str = "1.0.0"
    app_name: str = "GeniePay"
    signature_timeout_seconds: float = 0.0  # 0 = wait for the signer indefinitely
    verifier: str = "none"            # "none", "local" or "remote"
    verify_url: str = ""                # ${GENIEPAY_VERIFY_URL}
    verify_api_key: str = ""            # ${GENIEPAY_VERIFY_API_KEY}


class NetworkConfig(BaseModel):
    """Target chain settings."""

    chain: str = "sepolia"
    rpc_url: Optional[str] = None       # Override the chain's default RPC
    block_poll_interval_seconds: float = 12.0


class PaymentConfig(BaseModel):
    """Transfer tracking settings."""

    settle_delay_seconds: float = 0.5
    confirmation_timeout_seconds: float = 0.0  # 0 = wait indefinitely


class StorageConfig(BaseModel):
    """Local persistence settings."""

    db_filename: str = "geniepay.db"
    cache_accounts: bool = True


class GeniePayConfig(BaseModel):
    """Root configuration object for one operator profile."""

    name: str = "GeniePay"
    auth: AuthConfig = Field(default_factory=AuthConfig)
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    payments: PaymentConfig = Field(default_factory=PaymentConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)


# ---------------------------------------------------------------------------
# Public helpers
# ---------------------------------------------------------------------------


def slugify(name: str) -> str:
    """Convert a profile name to a filesystem-safe slug.

    ``"Acme Payroll"`` → ``"acme-payroll"``, ``""`` → ``"default"``.
    """
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug or "default"


def get_root_dir(base: Path | None = None) -> Path:
    """Return the ``.geniepay/`` root directory (no auto-create)."""
    if base is None:
        base = Path.cwd()
    return base / ".geniepay"


def get_profile_dir(
    profile: str = "default",
    base: Path | None = None,
    *,
    create: bool = True,
) -> Path:
    """Return the directory for a specific profile, e.g. ``.geniepay/<slug>/``.

    Parameters
    ----------
    profile:
        Profile slug (e.g. ``"default"``, ``"acme"``).
    base:
        Parent directory that contains (or will contain) the ``.geniepay/``
        folder.  Defaults to the current working directory.
    create:
        If *True* (default), create the directory tree if it doesn't exist.
    """
    profile_dir = get_root_dir(base) / slugify(profile)
    if create:
        profile_dir.mkdir(parents=True, exist_ok=True)
    return profile_dir


def load_config(path: Path) -> GeniePayConfig:
    """Load and validate a profile configuration from a YAML file.

    Environment variable placeholders (``${VAR}``) are expanded before
    validation.
    """
    raw_text = path.read_text(encoding="utf-8")
    raw_data = yaml.safe_load(raw_text) or {}
    expanded = _expand_env_recursive(raw_data)
    return GeniePayConfig.model_validate(expanded)


def save_config(config: GeniePayConfig, path: Path) -> None:
    """Serialize a :class:`GeniePayConfig` to a YAML file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    data = config.model_dump(mode="python", exclude_none=True)
    with open(path, "w", encoding="utf-8") as fh:
        yaml.dump(data, fh, default_flow_style=False, sort_keys=False)
