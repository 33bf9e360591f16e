"""
Configuration management and loading.

Handles the application config file and environment variables.
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from ai_bill_reader.storage.db import DEFAULT_DB_PATH
from ai_bill_reader.storage.models import DEFAULT_OLLAMA_MODEL, DEFAULT_OLLAMA_URL

CONFIG_ENV_VAR = "AI_BILL_READER_CONFIG"

# Checked in order for the default Gemini credential
API_KEY_ENV_VARS = ("GEMINI_API_KEY", "API_KEY")

DEFAULT_GEMINI_MODEL = "gemini-2.5-flash"


@dataclass(frozen=True)
class AppConfig:
    """Application-level settings that are not edited from the settings screen."""
    database_path: str = DEFAULT_DB_PATH
    gemini_model: str = DEFAULT_GEMINI_MODEL
    ollama_url: str = DEFAULT_OLLAMA_URL
    ollama_model: str = DEFAULT_OLLAMA_MODEL

    def __post_init__(self):
        """Validate that no value is blank."""
        for name in ("database_path", "gemini_model", "ollama_url", "ollama_model"):
            if not getattr(self, name).strip():
                raise ValueError(f"{name} cannot be empty")


def resolve_default_api_key(environ: Optional[Mapping[str, str]] = None) -> str:
    """Return the deployment's default Gemini key, or "" when none is set."""
    environ = os.environ if environ is None else environ
    for var in API_KEY_ENV_VARS:
        value = (environ.get(var) or "").strip()
        if value:
            return value
    return ""


def load_app_config(path: Optional[str] = None) -> AppConfig:
    """Load and validate the application config from a YAML file.

    Unknown keys and wrong types are rejected rather than ignored.

    Args:
        path: Path to YAML configuration file; falls back to the file named by
            AI_BILL_READER_CONFIG, then to built-in defaults

    Returns:
        Validated AppConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    path = path or os.environ.get(CONFIG_ENV_VAR)
    if not path:
        return AppConfig()

    config_path = Path(path).expanduser()
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if raw_config is None:
        return AppConfig()
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration file must contain a mapping")

    return _parse_app_config(raw_config)


def _parse_app_config(data: Dict[str, Any]) -> AppConfig:
    """Parse and validate the top-level mapping.

    Raises:
        ValueError: If configuration is invalid
    """
    allowed_keys = {'database_path', 'gemini_model', 'ollama_url', 'ollama_model'}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    values: Dict[str, str] = {}
    for key, value in data.items():
        if not isinstance(value, str):
            raise ValueError(f"'{key}' must be a string")
        values[key] = value.strip()

    return AppConfig(**values)
