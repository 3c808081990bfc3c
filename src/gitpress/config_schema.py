"""Unified configuration schema for gitpress.

Pydantic models for the YAML config file, one section per concern.
Every section has defaults, so ``UnifiedConfig()`` (zero-config) is
always valid.

Usage:
    from gitpress.config_loader import load_hierarchical_config
    from gitpress.config_schema import build_config

    unified = build_config(load_hierarchical_config())
"""

from __future__ import annotations

import logging
from pathlib import Path, PurePosixPath
from typing import Literal

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class StorageConfig(BaseModel):
    """Where entity files live.

    Attributes:
        repository: Working tree / git repository root.
        storage_dir: Entity directory, relative to ``repository``.
        taxonomies: Taxonomies stored as post references.
    """

    repository: str = Field(default=".", description="Repository root")
    storage_dir: str = Field(
        default="db", description="Entity directory inside the repository"
    )
    taxonomies: list[str] = Field(
        default_factory=lambda: ["category", "post_tag"],
        description="Taxonomies versioned with posts",
    )

    model_config = {"frozen": True}

    @field_validator("storage_dir")
    @classmethod
    def _relative_storage_dir(cls, value: str) -> str:
        path = PurePosixPath(value)
        if path.is_absolute() or ".." in path.parts:
            raise ValueError(
                f"storage_dir must be relative to the repository: {value}"
            )
        return value.strip("/") or "db"


class IdentityConfig(BaseModel):
    """Backing store for the stable identity map."""

    backend: Literal["sqlite", "memory"] = Field(
        default="sqlite", description="Identity store implementation"
    )
    path: str = Field(
        default=".gitpress/identity.db",
        description="SQLite file, relative to the repository unless absolute",
    )

    model_config = {"frozen": True}


class CommitConfig(BaseModel):
    """Commit behaviour and commit-lock tuning."""

    lock_timeout: float = Field(
        default=10.0,
        ge=0,
        le=600,
        description="Seconds to wait for the commit lock (0-600)",
    )
    poll_interval: float = Field(
        default=0.05,
        gt=0,
        le=5,
        description="Seconds between commit-lock attempts",
    )
    author_name: str = Field(default="gitpress", description="Commit author")
    author_email: str = Field(
        default="gitpress@localhost", description="Commit author email"
    )
    git_timeout: float = Field(
        default=30.0, gt=0, description="Timeout for a single git command"
    )

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level configuration aggregating all sections."""

    storage: StorageConfig = Field(default_factory=StorageConfig)
    identity: IdentityConfig = Field(default_factory=IdentityConfig)
    commit: CommitConfig = Field(default_factory=CommitConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}

    @property
    def repository_path(self) -> Path:
        return Path(self.storage.repository).expanduser().resolve()

    @property
    def identity_path(self) -> Path:
        path = Path(self.identity.path).expanduser()
        if not path.is_absolute():
            path = self.repository_path / path
        return path


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from a merged raw dict.

    Missing sections get defaults.
    """
    if not raw_data:
        return UnifiedConfig()

    unknown = set(raw_data) - set(UnifiedConfig.model_fields)
    if unknown:
        logger.warning(
            "Ignoring unknown config section(s): %s", ", ".join(sorted(unknown))
        )
    known = {k: v for k, v in raw_data.items() if k in UnifiedConfig.model_fields}
    return UnifiedConfig(**known)
