# src/convocore/config.py
"""
Configuration models for ConvoCore.

The configuration hierarchy:
    ConvoCoreConfig (root)
    ├── SessionsConfig   - store variant and notifier limits
    ├── StreamConfig     - stream decoding settings
    ├── ProvidersConfig  - provider selection
    │   └── GeminiConfig - Gemini REST adapter settings
    ├── logging          - dict forwarded to configure_logging()
    └── log_raw_payloads - log raw provider payloads at DEBUG

Usage:
    >>> from convocore.config import load_config
    >>> config = load_config()  # All defaults
    >>> config.sessions.single_session
    False

    >>> # Load from TOML, reading the [convocore] table
    >>> config = load_config(config_path=Path("app.toml"), section_path="convocore")

    >>> # Load from a dict
    >>> config = load_config(config_dict={"sessions": {"single_session": True}})

Environment variables override file and dict values:
    CONVOCORE_<SECTION>__<KEY>=value, e.g. CONVOCORE_PROVIDERS__GEMINI__TIMEOUT=30
"""

import logging
import os
import tomllib
from pathlib import Path
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

ENV_PREFIX = "CONVOCORE_"


class SessionsConfig(BaseModel):
    """Session store settings."""

    single_session: bool = Field(
        default=False,
        description="Use a SingleSessionStore with the fixed 'main' session",
    )
    max_listeners: int = Field(
        default=10,
        ge=0,
        description="Listener count per event above which a leak warning is logged (0 disables)",
    )


class StreamConfig(BaseModel):
    """Stream decoding settings."""

    decode_errors: Literal["replace", "ignore"] = Field(
        default="replace",
        description="How invalid UTF-8 in a streamed body is handled",
    )


class GeminiConfig(BaseModel):
    """Settings for the bundled Gemini adapter."""

    api_key: Optional[str] = Field(default=None, description="Google AI API key")
    api_key_env_var: Optional[str] = Field(
        default=None,
        description="Environment variable holding the API key (GOOGLE_API_KEY is always tried last)",
    )
    base_url: str = Field(default="https://generativelanguage.googleapis.com/v1beta")
    default_model: str = Field(default="gemini-2.0-flash")
    timeout: float = Field(default=120.0, gt=0, description="Total request timeout in seconds")

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class ProvidersConfig(BaseModel):
    """Provider selection."""

    default: Optional[str] = Field(
        default=None,
        description="Provider created automatically by ConvoCore (None = set one explicitly)",
    )
    models_page_size: int = Field(default=50, ge=1, le=1000, description="Default page size for model listing")
    gemini: GeminiConfig = Field(default_factory=GeminiConfig)


class ConvoCoreConfig(BaseModel):
    """Root configuration."""

    sessions: SessionsConfig = Field(default_factory=SessionsConfig)
    stream: StreamConfig = Field(default_factory=StreamConfig)
    providers: ProvidersConfig = Field(default_factory=ProvidersConfig)
    logging: Dict[str, Any] = Field(default_factory=dict)
    log_raw_payloads: bool = False


def load_config(
    config_path: Optional[Path] = None,
    config_dict: Optional[Dict[str, Any]] = None,
    section_path: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> ConvoCoreConfig:
    """
    Load configuration from a TOML file and/or a dictionary.

    Configuration is merged in order:
        1. Default values (from the Pydantic models)
        2. TOML config file (if provided)
        3. Config dictionary (if provided)
        4. Environment variables (CONVOCORE_*)
        5. Runtime overrides (if provided)

    Args:
        config_path: Optional path to a TOML file.
        config_dict: Optional configuration dictionary.
        section_path: Dot-separated path of the ConvoCore section inside the
            file and the dict (e.g. "tools.convocore"). None uses the root.
        overrides: Optional runtime overrides, already at section level.

    Returns:
        ConvoCoreConfig instance. Invalid configuration falls back to the
        defaults with a warning.
    """
    merged: Dict[str, Any] = {}

    if config_path is not None:
        try:
            with open(config_path, "rb") as f:
                full_config = tomllib.load(f)
            merged = _deep_merge(merged, _select_section(full_config, section_path))
            logger.debug(f"Loaded ConvoCore config from {config_path}")
        except FileNotFoundError:
            logger.warning(f"Config file not found: {config_path}")
        except (tomllib.TOMLDecodeError, OSError) as e:
            logger.warning(f"Failed to load ConvoCore config from {config_path}: {e}")

    if config_dict is not None:
        merged = _deep_merge(merged, _select_section(config_dict, section_path))

    merged = _apply_env_overrides(merged)

    if overrides is not None:
        merged = _deep_merge(merged, overrides)

    try:
        return ConvoCoreConfig.model_validate(merged)
    except Exception as e:
        logger.error(f"Invalid ConvoCore configuration: {e}")
        logger.warning("Using default configuration")
        return ConvoCoreConfig()


def _select_section(config: Dict[str, Any], section_path: Optional[str]) -> Dict[str, Any]:
    """Navigate to ``section_path``; an absent or non-table section yields {}."""
    if not section_path:
        return config if isinstance(config, dict) else {}
    section: Any = config
    for part in section_path.split("."):
        if not isinstance(section, dict):
            logger.warning(f"Config path '{section_path}' not found, using defaults")
            return {}
        section = section.get(part, {})
    if not isinstance(section, dict):
        logger.warning(f"Config section '{section_path}' is not a dict, using defaults")
        return {}
    return section


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two dictionaries, with override taking precedence."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _parse_env_value(value: str) -> Any:
    lowered = value.lower()
    if lowered in ("true", "yes", "on"):
        return True
    if lowered in ("false", "no", "off"):
        return False
    for cast in (int, float):
        try:
            return cast(value)
        except ValueError:
            pass
    return value


def _apply_env_overrides(config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Apply environment variable overrides.

    Examples:
        CONVOCORE_SESSIONS__SINGLE_SESSION=true
        CONVOCORE_PROVIDERS__GEMINI__DEFAULT_MODEL=gemini-2.5-pro
    """
    result = config.copy()
    for env_key, env_value in os.environ.items():
        if not env_key.startswith(ENV_PREFIX):
            continue
        path = [part.lower() for part in env_key[len(ENV_PREFIX):].split("__") if part]
        if not path:
            continue
        override: Dict[str, Any] = {path[-1]: _parse_env_value(env_value)}
        for part in reversed(path[:-1]):
            override = {part: override}
        result = _deep_merge(result, override)
        logger.debug(f"Applied env override: {env_key}")
    return result
