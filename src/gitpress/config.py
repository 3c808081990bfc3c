"""Runtime configuration with environment and CLI overrides.

Precedence (highest to lowest):
    CLI overrides > Environment variables > .env file > YAML config > defaults

Environment variables:
    GITPRESS_REPOSITORY: Repository root (working tree).
    GITPRESS_STORAGE_DIR: Entity directory inside the repository.
    GITPRESS_IDENTITY_DB: Identity SQLite file.
    GITPRESS_LOCK_TIMEOUT: Seconds to wait for the commit lock (0-600).

The caller is responsible for calling ``load_dotenv()`` first so values
from a ``.env`` file are visible through ``os.getenv()``.
"""

import logging
import os
from typing import Any

from .config_loader import load_hierarchical_config
from .config_schema import UnifiedConfig, build_config

logger = logging.getLogger(__name__)

_ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "GITPRESS_REPOSITORY": ("storage", "repository"),
    "GITPRESS_STORAGE_DIR": ("storage", "storage_dir"),
    "GITPRESS_IDENTITY_DB": ("identity", "path"),
    "GITPRESS_LOCK_TIMEOUT": ("commit", "lock_timeout"),
}

_CLI_OVERRIDES: dict[str, tuple[str, str]] = {
    "repository": ("storage", "repository"),
    "storage_dir": ("storage", "storage_dir"),
    "lock_timeout": ("commit", "lock_timeout"),
    "log_level": ("logging", "level"),
}


def _set(raw: dict[str, Any], section: str, key: str, value: Any) -> None:
    current = raw.get(section)
    raw[section] = {**(current if isinstance(current, dict) else {}), key: value}


def _parse_lock_timeout(raw_value: str) -> float:
    try:
        value = float(raw_value)
    except ValueError:
        raise ValueError(
            f"Invalid GITPRESS_LOCK_TIMEOUT '{raw_value}': must be a number between 0 and 600"
        ) from None
    if not (0 <= value <= 600):
        raise ValueError(
            f"Invalid GITPRESS_LOCK_TIMEOUT '{raw_value}': must be a number between 0 and 600"
        )
    return value


def load_config(
    overrides: dict[str, Any] | None = None,
    raw_data: dict[str, Any] | None = None,
) -> UnifiedConfig:
    """Load configuration from YAML, environment and CLI overrides.

    Args:
        overrides: CLI values (``repository``, ``storage_dir``,
            ``lock_timeout``, ``log_level``); ``None`` values are ignored.
        raw_data: Pre-loaded YAML data.  When omitted,
            ``load_hierarchical_config()`` is used.

    Returns:
        Validated ``UnifiedConfig``.

    Raises:
        ValueError: If any value is invalid.
    """
    raw = dict(raw_data if raw_data is not None else load_hierarchical_config())

    for env_name, (section, key) in _ENV_OVERRIDES.items():
        env_value = os.getenv(env_name)
        if not env_value:
            continue
        if env_name == "GITPRESS_LOCK_TIMEOUT":
            _set(raw, section, key, _parse_lock_timeout(env_value))
        else:
            _set(raw, section, key, env_value)

    for name, value in (overrides or {}).items():
        if value is None:
            continue
        if name not in _CLI_OVERRIDES:
            raise ValueError(f"Unknown configuration override: {name}")
        section, key = _CLI_OVERRIDES[name]
        _set(raw, section, key, value)

    config = build_config(raw)
    logger.debug(
        "Configuration: repository=%s storage_dir=%s identity=%s",
        config.repository_path,
        config.storage.storage_dir,
        config.identity.backend,
    )
    return config
