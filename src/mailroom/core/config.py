"""Application configuration models and loader utilities."""

from __future__ import annotations

import os
from collections.abc import Mapping
from functools import lru_cache
from pathlib import Path
from typing import Any

from dotenv import dotenv_values
from pydantic import BaseModel, Field, model_validator


class StorageSettings(BaseModel):
    """Settings for the mailbox document store."""

    db_path: Path = Field(
        default=Path("./mailroom.db"), description="SQLite database path"
    )
    pool_size: int = Field(
        default=5, ge=1, le=64, description="Store connections kept by the web app"
    )


class CacheSettings(BaseModel):
    """TTL bounds for both cache tiers.

    The TTL is only a safety net behind proactive invalidation, so it is kept
    in the range of minutes.
    """

    list_ttl_seconds: int = Field(
        default=120, ge=1, le=3600, description="Tier A (list view) entry TTL"
    )
    tag_ttl_seconds: int = Field(
        default=300, ge=1, le=3600, description="Tier B (resource tag) entry TTL"
    )
    max_entries: int = Field(
        default=10_000, ge=1, description="Per-tier entry bound before oldest entries are evicted"
    )


class DispatchSettings(BaseModel):
    """Settings for the outbound event dispatcher."""

    webhook_url: str | None = Field(
        default=None, description="Dispatcher endpoint; events are only logged if unset"
    )
    timeout_seconds: float = Field(
        default=5.0, gt=0, description="Request timeout for dispatcher calls"
    )
    queue_size: int = Field(
        default=1000, ge=1, description="Events held for delivery before new ones are dropped"
    )


class LoggingSettings(BaseModel):
    """Logging preferences."""

    level: str = Field(default="INFO", description="Root logging level")
    structured: bool = Field(
        default=False, description="Toggle JSON structured logging"
    )
    library_level: str = Field(
        default="WARNING",
        description="Level for chatty third-party loggers (httpx, uvicorn access)",
    )


class ApiSettings(BaseModel):
    """Pagination bounds for list endpoints."""

    default_page_size: int = Field(default=25, ge=1)
    max_page_size: int = Field(default=100, ge=1)

    @model_validator(mode="after")
    def _check_bounds(self) -> ApiSettings:
        if self.default_page_size > self.max_page_size:
            raise ValueError("default_page_size cannot exceed max_page_size")
        return self


class AppSettings(BaseModel):
    """Aggregated application configuration."""

    storage: StorageSettings = Field(default_factory=StorageSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    dispatch: DispatchSettings = Field(default_factory=DispatchSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    api: ApiSettings = Field(default_factory=ApiSettings)


ENV_PREFIX = "MAILROOM_"
NESTING_SEPARATOR = "__"


def _coerce(raw: str | None) -> Any:
    """Blank values mean "unset"; ``true``/``false`` become booleans."""
    if raw is None or raw == "":
        return None
    lowered = raw.lower()
    if lowered in ("true", "false"):
        return lowered == "true"
    return raw


def _prefixed(values: Mapping[str, str | None]) -> dict[str, str | None]:
    return {key: value for key, value in values.items() if key.startswith(ENV_PREFIX)}


def _as_tree(flat: Mapping[str, str | None]) -> dict[str, Any]:
    """Nest ``MAILROOM_CACHE__LIST_TTL_SECONDS`` under ``cache.list_ttl_seconds``."""
    tree: dict[str, Any] = {}
    for key, raw in flat.items():
        path = [
            part.lower()
            for part in key.removeprefix(ENV_PREFIX).split(NESTING_SEPARATOR)
            if part
        ]
        if not path:
            continue
        node = tree
        for part in path[:-1]:
            node = node.setdefault(part, {})
        node[path[-1]] = _coerce(raw)
    return tree


@lru_cache(maxsize=1)
def load_app_settings(
    env_file: Path | str | None = None,
    include_environment: bool = True,
    **overrides: Any,
) -> AppSettings:
    """Build settings from defaults, an optional ``.env`` file and the environment.

    Precedence, lowest first: defaults, ``env_file``, process environment,
    ``overrides``. A missing ``env_file`` is ignored.
    """
    flat: dict[str, str | None] = {}
    if env_file is not None and Path(env_file).is_file():
        flat.update(_prefixed(dotenv_values(env_file)))
    if include_environment:
        flat.update(_prefixed(os.environ))
    tree = _as_tree(flat)
    tree.update(overrides)
    return AppSettings.model_validate(tree)


__all__ = [
    "ApiSettings",
    "AppSettings",
    "CacheSettings",
    "DispatchSettings",
    "LoggingSettings",
    "StorageSettings",
    "load_app_settings",
]
