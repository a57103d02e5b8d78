"""Client configuration.

Resolution order (later wins):
1. Defaults
2. YAML file (``--config``, ``$CHOWDER_CONFIG`` or ``~/.chowder/config.yaml``)
3. Environment variables (CHOWDER_GATEWAY_URL, CHOWDER_TOKEN, CHOWDER_SESSION_KEY)

Example config.yaml:

    gateway_url: wss://gateway.example.ts.net
    auth_token: "..."
    session_key: agent:main:main
    trusted_host_suffixes: [".ts.net"]
"""

from __future__ import annotations

import locale
import logging
import os
import sys
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .transport.base import TrustPolicy, suffix_trust_policy

logger = logging.getLogger(__name__)

CLIENT_VERSION = "0.1.0"
DEFAULT_SESSION_KEY = "agent:main:main"

# Environment variable -> config field
ENV_OVERRIDES = {
    "CHOWDER_GATEWAY_URL": "gateway_url",
    "CHOWDER_TOKEN": "auth_token",
    "CHOWDER_SESSION_KEY": "session_key",
}


def _default_locale() -> str:
    try:
        current = locale.getlocale()[0]
    except ValueError:
        current = None
    return current or "en_US"


def default_config_path() -> Path:
    return Path.home() / ".chowder" / "config.yaml"


def default_storage_dir() -> Path:
    return Path.home() / ".chowder" / "data"


class GatewayConfig(BaseModel):
    """Everything needed to reach and talk to one gateway session."""

    model_config = ConfigDict(extra="ignore")

    # Connection
    gateway_url: str = ""
    auth_token: str = Field(default="", repr=False)
    session_key: str = DEFAULT_SESSION_KEY

    # Handshake identity
    client_id: str = "cli"
    client_version: str = CLIENT_VERSION
    client_platform: str = Field(default_factory=lambda: sys.platform)
    client_mode: str = "cli"
    locale: str = Field(default_factory=_default_locale)
    user_agent: str = f"chowder-client/{CLIENT_VERSION}"
    min_protocol: int = 3
    max_protocol: int = 3

    # Timing
    reconnect_delay: float = 3.0
    min_label_duration: float = 0.8
    sync_timeout: float = 120.0

    # Workspace sync
    sync_workspace: bool = True

    # TLS
    trusted_host_suffixes: list[str] = Field(default_factory=list)
    ca_file: str | None = None

    # Local cache
    storage_dir: Path | None = None

    @field_validator("gateway_url", "auth_token", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("session_key", mode="before")
    @classmethod
    def _default_session_key(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return DEFAULT_SESSION_KEY
        return value.strip() if isinstance(value, str) else value

    @property
    def is_configured(self) -> bool:
        return bool(self.gateway_url) and bool(self.auth_token)

    def trust_policy(self) -> TrustPolicy:
        return suffix_trust_policy(self.trusted_host_suffixes, cafile=self.ca_file)

    def resolved_storage_dir(self) -> Path:
        return self.storage_dir or default_storage_dir()


def load_config(path: str | Path | None = None, env: Mapping[str, str] | None = None) -> GatewayConfig:
    """Load configuration from YAML and environment.

    Args:
        path: Explicit config file. Missing files are fine unless explicit.
        env: Environment mapping (defaults to os.environ)

    Raises:
        FileNotFoundError: If an explicit path does not exist
        ValueError: If the file is not a YAML mapping
    """
    env = os.environ if env is None else env

    explicit = path is not None
    config_path = Path(path) if path is not None else Path(env.get("CHOWDER_CONFIG") or default_config_path())

    data: dict[str, Any] = {}
    if config_path.exists():
        with open(config_path, encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"Config file must contain a mapping: {config_path}")
        data.update(loaded)
        logger.debug(f"Loaded config from {config_path}")
    elif explicit:
        raise FileNotFoundError(f"Config file not found: {config_path}")

    for env_key, field_name in ENV_OVERRIDES.items():
        value = env.get(env_key)
        if value:
            data[field_name] = value

    return GatewayConfig.model_validate(data)
