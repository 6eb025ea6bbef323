"""Klokbot configuration with 3-tier precedence.

Precedence (highest wins):
  1. Environment variables (KLOKBOT_<SECTION>_<KEY>, e.g. KLOKBOT_RETRY_MAX_RETRIES=3)
  2. Global config   (~/.klokbot/config.yaml)
  3. Pydantic defaults (see constants.py)
"""

import logging
import os
import threading
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

from .constants import (
    CHAT_TIMEOUT,
    CONNECT_TIMEOUT,
    DEFAULT_BASE_URL,
    DEFAULT_HEADERS,
    DEFAULT_LANGUAGE,
    DEFAULT_TOKEN_FILE,
    MAX_RETRIES,
    REQUEST_TIMEOUT,
    RETRY_BASE_DELAY,
    RETRY_MULTIPLIER,
    SESSION_HEADER,
    VERIFY_SETTLE_DELAY,
)

_log = logging.getLogger(__name__)

# ── Global config location ───────────────────────────────────────────────────

GLOBAL_CONFIG_DIR = os.path.join(Path.home(), ".klokbot")
GLOBAL_CONFIG_PATH = os.path.join(GLOBAL_CONFIG_DIR, "config.yaml")
ENV_PREFIX = "KLOKBOT_"


# ── Sections ─────────────────────────────────────────────────────────────────


class ApiConfig(BaseModel):
    """Remote service endpoint and HTTP settings."""

    base_url: str = DEFAULT_BASE_URL
    session_header: str = SESSION_HEADER
    connect_timeout: int = CONNECT_TIMEOUT
    request_timeout: int = REQUEST_TIMEOUT
    chat_timeout: int = CHAT_TIMEOUT
    default_headers: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_HEADERS))

    @field_validator("base_url")
    @classmethod
    def _validate_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"base_url must be an http(s) URL, got {v!r}")
        return v.rstrip("/")


class RetryConfig(BaseModel):
    """Backoff schedule for transient failures: base_delay * multiplier**attempt."""

    max_retries: int = MAX_RETRIES
    base_delay: float = RETRY_BASE_DELAY
    multiplier: float = RETRY_MULTIPLIER

    @field_validator("max_retries")
    @classmethod
    def _validate_max_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"max_retries must be >= 0, got {v}")
        return v

    @field_validator("base_delay")
    @classmethod
    def _validate_base_delay(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"base_delay must be > 0, got {v}")
        return v

    @field_validator("multiplier")
    @classmethod
    def _validate_multiplier(cls, v: float) -> float:
        if v < 1:
            raise ValueError(f"multiplier must be >= 1, got {v}")
        return v


class VerifyConfig(BaseModel):
    """Points-based verification of aborted chat streams."""

    enabled: bool = True
    settle_delay: float = VERIFY_SETTLE_DELAY

    @field_validator("settle_delay")
    @classmethod
    def _validate_settle_delay(cls, v: float) -> float:
        if v < 0:
            raise ValueError(f"settle_delay must be >= 0, got {v}")
        return v


class ChatConfig(BaseModel):
    language: str = DEFAULT_LANGUAGE
    default_model: str | None = None


class CredentialsConfig(BaseModel):
    token_file: str = DEFAULT_TOKEN_FILE

    def resolved_path(self) -> str:
        """Token file path, relative paths resolved against the working directory."""
        return os.path.abspath(os.path.expanduser(self.token_file))


class GlobalConfig(BaseModel):
    """Top-level configuration for klokbot.

    Written to ``~/.klokbot/config.yaml`` on first run.
    """

    api: ApiConfig = Field(default_factory=ApiConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    verify: VerifyConfig = Field(default_factory=VerifyConfig)
    chat: ChatConfig = Field(default_factory=ChatConfig)
    credentials: CredentialsConfig = Field(default_factory=CredentialsConfig)


# ── Singleton: the resolved global config ────────────────────────────────────

_global_config: GlobalConfig | None = None
_config_lock: threading.Lock = threading.Lock()


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Apply KLOKBOT_<SECTION>_<KEY>=<value> environment variables.

    For example:
        KLOKBOT_RETRY_MAX_RETRIES=3   → data["retry"]["max_retries"] = 3
        KLOKBOT_VERIFY_SETTLE_DELAY=1.5 → data["verify"]["settle_delay"] = 1.5
    """
    for env_key, env_val in os.environ.items():
        if not env_key.startswith(ENV_PREFIX):
            continue
        parts = env_key[len(ENV_PREFIX) :].lower().split("_", 1)
        if len(parts) != 2:
            continue
        section, field = parts
        if section not in data:
            data[section] = {}
        if not isinstance(data[section], dict):
            continue
        coerced: Any
        try:
            coerced = int(env_val)
        except ValueError:
            try:
                coerced = float(env_val)
            except ValueError:
                coerced = env_val
        data[section][field] = coerced
    return data


def load_global_config(force_reload: bool = False) -> GlobalConfig:
    """Load and cache the global config with 3-tier precedence."""
    global _global_config
    with _config_lock:
        if _global_config is not None and not force_reload:
            return _global_config

        data: dict[str, Any] = {}
        if os.path.exists(GLOBAL_CONFIG_PATH):
            try:
                with open(GLOBAL_CONFIG_PATH, encoding="utf-8") as f:
                    file_data = yaml.safe_load(f)
                    if isinstance(file_data, dict):
                        data = file_data
            except (OSError, yaml.YAMLError) as exc:
                _log.warning("Failed to read global config %s: %s", GLOBAL_CONFIG_PATH, exc)
        data = _apply_env_overrides(data)
        try:
            _global_config = GlobalConfig(**data)
        except (ValueError, TypeError) as exc:
            _log.warning("Invalid global config, using defaults: %s", exc)
            _global_config = GlobalConfig()
        return _global_config


def ensure_global_config() -> None:
    """Write the default global config to ``~/.klokbot/config.yaml`` if it doesn't exist."""
    if os.path.exists(GLOBAL_CONFIG_PATH):
        return

    os.makedirs(GLOBAL_CONFIG_DIR, exist_ok=True)
    data = GlobalConfig().model_dump()

    try:
        with open(GLOBAL_CONFIG_PATH, "w", encoding="utf-8") as f:
            f.write("# Klokbot Configuration\n")
            f.write("# Environment variables: KLOKBOT_<SECTION>_<KEY>=<value>\n\n")
            yaml.dump(data, f, default_flow_style=False, sort_keys=False, allow_unicode=True)
        _log.info("Wrote default global config to %s", GLOBAL_CONFIG_PATH)
    except OSError as exc:
        _log.warning("Failed to write global config to %s: %s", GLOBAL_CONFIG_PATH, exc)
