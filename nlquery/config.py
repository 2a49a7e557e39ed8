"""YAML configuration loader with env var resolution and Pydantic validation.

Loads config from (priority order):
1. Explicit path (``load_config(path)`` or NLQUERY_CONFIG_PATH)
2. ./nlquery.yaml (working directory)
3. ~/.nlquery/config.yaml (user home)

Environment variables override YAML: NLQUERY_<SECTION>_<KEY>.
${VAR} references in YAML values resolve from environment at load time.
When no file is found, the model defaults apply.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, field_validator

logger = logging.getLogger(__name__)

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")
_ENV_PREFIX = "NLQUERY_"


def resolve_env_vars(value: str) -> str:
    """Resolve ${VAR} references in a string from environment variables.

    Args:
        value: String potentially containing ${VAR} references.

    Returns:
        String with all ${VAR} references replaced by their env values.
        Missing env vars resolve to empty string.
    """
    def _replace(match: re.Match) -> str:
        return os.environ.get(match.group(1), "")

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _resolve_env_vars_recursive(data: Any) -> Any:
    """Recursively resolve ${VAR} references in a nested data structure."""
    if isinstance(data, str):
        return resolve_env_vars(data)
    elif isinstance(data, dict):
        return {k: _resolve_env_vars_recursive(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_resolve_env_vars_recursive(item) for item in data]
    return data


class GenerationConfig(BaseModel):
    """Settings for the chat-completion backend (Ollama-compatible /api/chat)."""

    base_url: str = "http://localhost:11434"
    model: str = "llama3.1"
    temperature: float = 0.1
    max_output_tokens: int = 16384
    context_window: int = 32768
    request_timeout_seconds: float = 300.0
    api_key: str | None = None

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        """Normalize base_url so request paths can be appended directly."""
        return value.rstrip("/")


class EngineDefaults(BaseModel):
    """Per-call limits applied by every engine adapter."""

    connect_timeout_seconds: int = 30
    statement_timeout_seconds: int = 60
    document_sample_size: int = 100


class DeliveryConfig(BaseModel):
    """Fan-out settings for conversation event subscribers."""

    subscriber_queue_size: int = 256
    ping_interval_seconds: float = 15.0


class ServerConfig(BaseModel):
    """HTTP server settings."""

    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "info"


class NLQueryConfig(BaseModel):
    """Top-level configuration for the nlquery service."""

    generation: GenerationConfig = GenerationConfig()
    engines: EngineDefaults = EngineDefaults()
    delivery: DeliveryConfig = DeliveryConfig()
    server: ServerConfig = ServerConfig()


def _find_config_file() -> Path | None:
    """Search for config file in standard locations.

    Returns:
        Path to config file if found, None otherwise.
    """
    candidates = [
        Path.cwd() / "nlquery.yaml",
        Path.cwd() / "nlquery.yml",
        Path.home() / ".nlquery" / "config.yaml",
        Path.home() / ".nlquery" / "config.yml",
    ]
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return None


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Apply NLQUERY_<SECTION>_<KEY> env var overrides to config data.

    Matches section names by longest prefix, so
    ``NLQUERY_GENERATION_BASE_URL`` maps to section ``generation``,
    field ``base_url``.

    Args:
        data: Parsed YAML config dict.

    Returns:
        Config dict with env var overrides applied.
    """
    known_sections = sorted(
        NLQueryConfig.model_fields.keys(), key=len, reverse=True
    )
    for key, value in os.environ.items():
        if not key.startswith(_ENV_PREFIX):
            continue
        suffix = key[len(_ENV_PREFIX):].lower()
        matched_section = None
        matched_field = None
        for section in known_sections:
            section_prefix = section + "_"
            if suffix.startswith(section_prefix):
                matched_section = section
                matched_field = suffix[len(section_prefix):]
                break
        if matched_section is None or not matched_field:
            continue
        if matched_section not in data or data[matched_section] is None:
            data[matched_section] = {}
        if isinstance(data[matched_section], dict):
            # Pydantic coerces the raw string to the field type
            data[matched_section][matched_field] = value
    return data


def load_config(config_path: str | None = None) -> NLQueryConfig:
    """Load nlquery configuration from YAML file with env var resolution.

    Args:
        config_path: Explicit path to config file. If None, uses
            NLQUERY_CONFIG_PATH or searches the standard locations.

    Returns:
        Parsed and validated NLQueryConfig.

    Raises:
        FileNotFoundError: If an explicit config path does not exist.
    """
    config_path = config_path or os.environ.get("NLQUERY_CONFIG_PATH") or None
    if config_path:
        path: Path | None = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        path = _find_config_file()

    raw_data: dict[str, Any] = {}
    if path is not None:
        logger.info("Loading config from %s", path)
        with open(path) as f:
            raw_data = yaml.safe_load(f) or {}

    data = _resolve_env_vars_recursive(raw_data)
    data = _apply_env_overrides(data)
    return NLQueryConfig(**data)
