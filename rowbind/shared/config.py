"""Configuration loading utilities for the record-mapping engine."""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Mapping, MutableMapping
from zoneinfo import ZoneInfo

import yaml

from . import paths
from .exceptions import ConfigurationError

ENVIRONMENTS = ("development", "staging", "production")


@dataclass(frozen=True, slots=True)
class DatabaseSettings:
    """Database-related configuration."""

    path: Path
    read_only: bool = False


@dataclass(frozen=True, slots=True)
class RuntimeSettings:
    """Deployment mode and date handling."""

    environment: str  # one of ENVIRONMENTS
    timezone: str
    utc_dates: bool

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def is_development(self) -> bool:
        return self.environment == "development"


@dataclass(frozen=True, slots=True)
class QuerySettings:
    """Query builder defaults."""

    per_page: int


@dataclass(frozen=True, slots=True)
class LoggingSettings:
    """Statement logging behaviour."""

    log_queries: bool


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Top-level application configuration."""

    source_path: Path
    database: DatabaseSettings
    runtime: RuntimeSettings
    query: QuerySettings
    logging: LoggingSettings

    def with_database_path(self, new_path: str | Path) -> AppConfig:
        """Return a copy with an updated database path."""
        resolved = paths.resolve_path(new_path)
        new_db = replace(self.database, path=resolved)
        return replace(self, database=new_db)

    def as_read_only(self) -> AppConfig:
        """Return a copy whose database is opened read-only."""
        return replace(self, database=replace(self.database, read_only=True))

    def with_environment(self, environment: str) -> AppConfig:
        environment = environment.lower()
        if environment not in ENVIRONMENTS:
            raise ConfigurationError(
                f"runtime.environment must be one of {', '.join(ENVIRONMENTS)}, got '{environment}'"
            )
        return replace(self, runtime=replace(self.runtime, environment=environment))

    def with_query_logging(self, enabled: bool = True) -> AppConfig:
        return replace(self, logging=replace(self.logging, log_queries=enabled))


def _default_config(env: Mapping[str, str]) -> dict[str, Any]:
    return {
        "database": {
            "path": str(paths.default_database_path(env=env)),
            "read_only": False,
        },
        "runtime": {
            "environment": "development",
            "timezone": "UTC",
            "utc_dates": False,
        },
        "query": {"per_page": 20},
        "logging": {"log_queries": False},
    }


ENV_OVERRIDE_SPEC: dict[str, tuple[str, type]] = {
    "database.path": (paths.DATABASE_PATH_ENV, str),
    "database.read_only": ("ROWBIND_READ_ONLY", bool),
    "runtime.environment": ("ROWBIND_ENVIRONMENT", str),
    "runtime.timezone": ("ROWBIND_TIMEZONE", str),
    "runtime.utc_dates": ("ROWBIND_UTC_DATES", bool),
    "query.per_page": ("ROWBIND_PER_PAGE", int),
    "logging.log_queries": ("ROWBIND_LOG_QUERIES", bool),
}


def load_config(
    config_path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
) -> AppConfig:
    """Load configuration from defaults, YAML file, and env overrides."""
    env = dict(os.environ if env is None else env)
    resolved_config_path = _resolve_config_path(config_path, env)
    file_data = _load_yaml(resolved_config_path)
    defaults = _default_config(env)
    merged: dict[str, Any] = _deep_merge(defaults, file_data)
    merged = _apply_env_overrides(merged, env)
    return _build_config(merged, resolved_config_path)


def _resolve_config_path(
    config_path: str | Path | None, env: Mapping[str, str]
) -> Path:
    if config_path:
        return paths.resolve_path(config_path)
    return paths.default_config_path(env=env)


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as handle:
        try:
            data = yaml.safe_load(handle) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Config file at {path} is not valid YAML: {exc}") from exc
        if not isinstance(data, MutableMapping):
            raise ConfigurationError(f"Config file at {path} must define a mapping root object.")
        return dict(data)


def _deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], Mapping) and isinstance(value, Mapping):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _apply_env_overrides(config: dict[str, Any], env: Mapping[str, str]) -> dict[str, Any]:
    config_copy = _deep_merge(config, {})
    for dotted_key, (env_key, expected_type) in ENV_OVERRIDE_SPEC.items():
        if env_key not in env:
            continue
        raw_value = env[env_key]
        try:
            value = _coerce_env_value(raw_value, expected_type)
        except ValueError as exc:
            raise ConfigurationError(
                f"Environment override {env_key} has invalid value '{raw_value}': {exc}"
            ) from exc
        _assign_nested(config_copy, dotted_key.split("."), value)
    return config_copy


def _coerce_env_value(raw: str, expected_type: type) -> Any:
    cleaned = raw.strip()
    if expected_type is bool:
        lowered = cleaned.lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
        raise ValueError("expected boolean (true/false)")
    if expected_type is int:
        return int(cleaned)
    if expected_type is float:
        return float(cleaned)
    return cleaned


def _assign_nested(target: MutableMapping[str, Any], keys: list[str], value: Any) -> None:
    current = target
    for key in keys[:-1]:
        if key not in current or not isinstance(current[key], MutableMapping):
            current[key] = {}
        current = current[key]  # type: ignore[assignment]
    current[keys[-1]] = value


def _build_config(data: Mapping[str, Any], source_path: Path) -> AppConfig:
    try:
        db_cfg = data["database"]
        database = DatabaseSettings(
            path=paths.resolve_path(db_cfg["path"]),
            read_only=bool(db_cfg.get("read_only", False)),
        )
        rt_cfg = data["runtime"]
        environment = str(rt_cfg["environment"]).lower()
        if environment not in ENVIRONMENTS:
            raise ValueError(
                f"runtime.environment must be one of {', '.join(ENVIRONMENTS)}, got '{environment}'"
            )
        runtime = RuntimeSettings(
            environment=environment,
            timezone=str(rt_cfg["timezone"]),
            utc_dates=bool(rt_cfg["utc_dates"]),
        )
        runtime.tzinfo  # unknown zone names raise ZoneInfoNotFoundError (a KeyError)
        per_page = int(data["query"]["per_page"])
        if per_page < 1:
            raise ValueError("query.per_page must be at least 1")
        query = QuerySettings(per_page=per_page)
        logging = LoggingSettings(log_queries=bool(data["logging"]["log_queries"]))
    except (KeyError, TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid configuration structure: {exc}") from exc

    return AppConfig(
        source_path=source_path,
        database=database,
        runtime=runtime,
        query=query,
        logging=logging,
    )
