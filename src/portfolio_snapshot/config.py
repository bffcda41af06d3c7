"""Application configuration helpers."""
from __future__ import annotations

from dataclasses import dataclass
import math
import os
from pathlib import Path
from typing import Mapping
from urllib.parse import quote_plus
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .errors import ConfigurationError


ENV_PREFIX = "PORTFOLIO_SNAPSHOT_"

PRICE_SOURCES = ("simulated", "screener")


def _resolve_env_file(candidate: str) -> Path | None:
    """Resolve a profile file given as an absolute path or relative to the working directory."""

    path = Path(candidate)
    if not path.is_absolute():
        path = Path.cwd() / path
    return path if path.is_file() else None


def _parse_env_file(path: Path) -> dict[str, str]:
    """Parse a dotenv-style file into a mapping."""

    variables: dict[str, str] = {}
    for raw_line in path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :].strip()
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        variables[key.strip()] = value.strip().strip('"').strip("'")
    return variables


def _load_profile_env(env: Mapping[str, str]) -> dict[str, str]:
    """Load environment variables from the selected profile file."""

    explicit_file = env.get(f"{ENV_PREFIX}ENV_FILE")
    profile = env.get(f"{ENV_PREFIX}ENV", "local")
    candidate = explicit_file or f".env.{profile}"

    path = _resolve_env_file(candidate)
    if path is not None:
        return _parse_env_file(path)
    if explicit_file:
        raise ConfigurationError(f"{ENV_PREFIX}ENV_FILE points to a missing file: {explicit_file}")
    return {}


def _build_database_url(env: Mapping[str, str]) -> str | None:
    """Construct a SQLAlchemy URL from discrete environment variables."""

    host = env.get(f"{ENV_PREFIX}DB_HOST")
    if not host:
        return None

    username = env.get(f"{ENV_PREFIX}DB_USERNAME")
    if not username:
        raise ConfigurationError(
            f"{ENV_PREFIX}DB_USERNAME must be set when using discrete database settings"
        )

    if f"{ENV_PREFIX}DB_PASSWORD" not in env:
        raise ConfigurationError(
            f"{ENV_PREFIX}DB_PASSWORD must be set when using discrete database settings"
        )

    password = env.get(f"{ENV_PREFIX}DB_PASSWORD", "")
    port = env.get(f"{ENV_PREFIX}DB_PORT", "5432")
    database = env.get(f"{ENV_PREFIX}DB_NAME", "portfolio")
    driver = env.get(f"{ENV_PREFIX}DB_DRIVER", "postgresql+psycopg")

    auth = f"{quote_plus(username)}:{quote_plus(password)}"
    port_part = f":{port}" if port else ""
    return f"{driver}://{auth}@{host}{port_part}/{database}"


def _positive_number(env: Mapping[str, str], key: str, default: str, cast: type) -> float | int:
    raw = env.get(f"{ENV_PREFIX}{key}", default)
    try:
        value = cast(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{ENV_PREFIX}{key} must be a number, got {raw!r}") from exc
    if not math.isfinite(value) or value <= 0:
        raise ConfigurationError(f"{ENV_PREFIX}{key} must be a finite positive number, got {raw!r}")
    return value


def parse_schedule(value: str) -> tuple[int, int]:
    """Parse an ``HH:MM`` trigger time."""

    value = value.strip()
    if not value or ":" not in value:
        raise ConfigurationError("Schedule must be in HH:MM format")
    hour_str, minute_str = value.split(":", 1)
    try:
        hour = int(hour_str)
        minute = int(minute_str)
    except ValueError as exc:
        raise ConfigurationError(f"Schedule must be in HH:MM format, got {value!r}") from exc
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ConfigurationError("Hours must be 0-23 and minutes 0-59")
    return hour, minute


@dataclass(frozen=True)
class Settings:
    """Runtime configuration."""

    database_url: str
    price_source: str = "simulated"
    price_timeout: float = 30.0
    max_workers: int = 4
    schedule_hour: int = 2
    schedule_minute: int = 0
    timezone: str = "UTC"

    @staticmethod
    def load(env: Mapping[str, str] | None = None) -> "Settings":
        """Load settings from environment variables."""

        base_env = dict(os.environ if env is None else env)
        file_env = _load_profile_env(base_env)
        # Environment variables set in the shell take precedence over the file.
        merged_env = {**file_env, **base_env}

        database_url = merged_env.get(f"{ENV_PREFIX}DATABASE_URL")
        if not database_url:
            database_url = _build_database_url(merged_env)
        if not database_url:
            raise ConfigurationError(
                f"{ENV_PREFIX}DATABASE_URL must be set or provide discrete database settings via the env file"
            )

        price_source = merged_env.get(f"{ENV_PREFIX}PRICE_SOURCE", "simulated").strip().lower()
        if price_source not in PRICE_SOURCES:
            raise ConfigurationError(
                f"{ENV_PREFIX}PRICE_SOURCE must be one of {', '.join(PRICE_SOURCES)}, got {price_source!r}"
            )

        hour, minute = parse_schedule(merged_env.get(f"{ENV_PREFIX}SCHEDULE", "02:00"))

        timezone = merged_env.get(f"{ENV_PREFIX}TIMEZONE", "UTC")
        try:
            ZoneInfo(timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ConfigurationError(f"Unknown timezone: {timezone}") from exc

        return Settings(
            database_url=database_url,
            price_source=price_source,
            price_timeout=_positive_number(merged_env, "PRICE_TIMEOUT", "30", float),
            max_workers=_positive_number(merged_env, "MAX_WORKERS", "4", int),
            schedule_hour=hour,
            schedule_minute=minute,
            timezone=timezone,
        )


__all__ = ["Settings", "PRICE_SOURCES", "parse_schedule"]
