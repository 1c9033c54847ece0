"""
Application configuration management.

Load order (each layer overrides the previous):
  1. ``config/default.toml``     : committed static defaults
  2. ``config/local.toml``       : optional local overrides (gitignored)
  3. ``.env``                    : local secrets and env overrides (gitignored)
  4. Environment variables       : ``REVIEWABLE_*`` prefix

Entry point: ``load_config(config_path=None) -> AppConfig``

Reviewable types are declared under ``[types.<name>]``. The raw
``ReviewableTypeConfig`` here only carries what the TOML says; scale
construction and validation happen once, in ``registry.build_registry()``.
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, field_validator


VALID_CACHE_FIELDS = frozenset({"total_reviews", "average_rating"})


# ── Sub-config models ─────────────────────────────────────────────────────────


class DatabaseConfig(BaseModel):
    """SQLite database connection settings."""

    model_config = ConfigDict(frozen=True)

    db_path: str = "data/db/reviewable.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000


class LoggingConfig(BaseModel):
    """Logging output settings."""

    model_config = ConfigDict(frozen=True)

    level: str = "INFO"
    log_file: Optional[str] = None
    json_format: bool = False

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"Log level must be one of {sorted(valid)}, got '{v}'.")
        return v.upper()


class ReviewableTypeConfig(BaseModel):
    """Raw per-type configuration as written under ``[types.<name>]``.

    ``scale`` takes precedence over ``values``, which takes precedence over
    ``range``; all three ``None`` means the default ``1..5`` scale. The scale
    fields and precision are left untyped here so that malformed input (a
    reversed or non-finite range, a string scale, a fractional ``steps``) is
    reported as ``InvalidConfigValueError`` by the registry rather than as a
    pydantic error.

    Attributes:
        scale: List of allowed ratings or a ``{first, last}`` range table.
        values: Alias for an explicit list of allowed ratings.
        range: Alias for a ``{first, last}`` range.
        step: Explicit increment between range values.
        steps: Explicit number of values a range expands to.
        total_precision: Decimal places for averages.
        average_precision: Alias for ``total_precision``.
        accept_ip: Whether anonymous IP reviewers are allowed.
        anonymous: Alias for ``accept_ip``.
        reviewer_types: Entity types allowed to review; empty = any registered type.
        cache_fields: Which of ``total_reviews``/``average_rating`` are cached
            on the target row.
    """

    model_config = ConfigDict(frozen=True)

    scale: Optional[Any] = None
    values: Optional[Any] = None
    range: Optional[Any] = None
    step: Optional[Any] = None
    steps: Optional[Any] = None
    total_precision: Optional[Any] = None
    average_precision: Optional[Any] = None
    accept_ip: Optional[bool] = None
    anonymous: Optional[bool] = None
    reviewer_types: list[str] = []
    cache_fields: list[str] = []

    @field_validator("cache_fields")
    @classmethod
    def validate_cache_fields(cls, v: list[str]) -> list[str]:
        unknown = set(v) - VALID_CACHE_FIELDS
        if unknown:
            raise ValueError(
                f"Unknown cache field(s) {sorted(unknown)}. "
                f"Must be a subset of {sorted(VALID_CACHE_FIELDS)}."
            )
        return v

    @field_validator("reviewer_types")
    @classmethod
    def normalize_reviewer_types(cls, v: list[str]) -> list[str]:
        return [t.strip().lower() for t in v]


class AppConfig(BaseModel):
    """Complete application configuration.

    Constructed by ``load_config()``, which merges TOML + .env + env vars.
    """

    model_config = ConfigDict(frozen=True)

    database: DatabaseConfig = DatabaseConfig()
    logging: LoggingConfig = LoggingConfig()
    types: dict[str, ReviewableTypeConfig] = {}
    debug: bool = False


# ── Loader ────────────────────────────────────────────────────────────────────

_PROJECT_ROOT = Path(__file__).parent.parent


def _find_project_root() -> Path:
    """Walk up from this file to find the project root (contains pyproject.toml)."""
    candidate = Path(__file__).parent
    for _ in range(5):
        if (candidate / "pyproject.toml").exists():
            return candidate
        candidate = candidate.parent
    return _PROJECT_ROOT


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """Load and merge application configuration.

    Args:
        config_path: Explicit path to a TOML config file. Defaults to
            ``<project_root>/config/default.toml``.

    Returns:
        Fully validated ``AppConfig`` instance.

    Raises:
        FileNotFoundError: If the config file does not exist.
        pydantic.ValidationError: If merged config values fail validation.
    """
    root = _find_project_root()

    load_dotenv(dotenv_path=root / ".env", override=False)

    if config_path is None:
        config_path = root / "config" / "default.toml"

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Config file not found: {config_path}\n"
            "Create config/default.toml or pass --config."
        )

    with open(config_path, "rb") as f:
        raw: dict[str, Any] = tomllib.load(f)

    local_config_path = config_path.parent / "local.toml"
    if local_config_path.exists():
        with open(local_config_path, "rb") as f:
            local_raw: dict[str, Any] = tomllib.load(f)
        raw = _deep_merge(raw, local_raw)

    raw = _apply_env_overrides(raw)

    return _build_app_config(raw)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into ``base``."""
    result = dict(base)
    for key, val in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(val, dict):
            result[key] = _deep_merge(result[key], val)
        else:
            result[key] = val
    return result


def _apply_env_overrides(raw: dict[str, Any]) -> dict[str, Any]:
    """Apply REVIEWABLE_* env vars to the raw config dict.

    Supported overrides:
      REVIEWABLE_DB_PATH    → raw["database"]["db_path"]
      REVIEWABLE_LOG_LEVEL  → raw["logging"]["level"]
      REVIEWABLE_DEBUG      → raw["debug"]
    """
    if db_path := os.environ.get("REVIEWABLE_DB_PATH"):
        raw.setdefault("database", {})["db_path"] = db_path

    if log_level := os.environ.get("REVIEWABLE_LOG_LEVEL"):
        raw.setdefault("logging", {})["level"] = log_level

    if debug := os.environ.get("REVIEWABLE_DEBUG"):
        raw["debug"] = debug.lower() in ("1", "true", "yes")

    return raw


def _build_app_config(raw: dict[str, Any]) -> AppConfig:
    """Map raw TOML dict to ``AppConfig`` model structure."""
    types_raw: dict[str, Any] = raw.get("types", {})
    return AppConfig(
        database=DatabaseConfig(**raw.get("database", {})),
        logging=LoggingConfig(**raw.get("logging", {})),
        types={
            name.strip().lower(): ReviewableTypeConfig(**block)
            for name, block in types_raw.items()
        },
        debug=raw.get("debug", False),
    )
