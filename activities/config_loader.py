"""Load and validate the activities tool configuration.

The config is a YAML file (``config.yaml`` in the working directory by
default, overridable through ``Settings.tool_config_path``).  It is loaded
once at startup into typed sections; every missing or malformed field is
reported in a single ``ConfigValidationError`` instead of failing on the
first one.

Usage::

    from activities.config_loader import load_tool_config

    config = load_tool_config()
    config.strava.client_id
    config.job("activity_sync").schedule
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger("activities.config")

# Job names known to the loader; see activities.jobs.JobName
_JOB_NAMES = ("activity_poll", "activity_sync", "activity_original", "from_export")


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------


@dataclass
class StravaConfig:
    """Provider credentials for both authentication strategies."""

    client_id: str
    client_secret: str
    refresh_token: str
    host: str
    email: str
    password: str = field(repr=False, default="")


@dataclass
class StorageConfig:
    """S3-compatible blob storage settings."""

    bucket: str
    endpoint_url: str | None = None
    access_key_id: str | None = None
    secret_access_key: str | None = field(repr=False, default=None)
    region: str = "auto"


@dataclass
class SyncConfig:
    """Reconciliation tuning."""

    data_window_days: int = 10
    original_window_days: int = 5
    listing_page_size: int = 30


@dataclass
class JobConfig:
    """Per-job overrides.  Empty / None means use the compiled-in default."""

    schedule: str = ""
    timeout_seconds: float | None = None


@dataclass
class ToolConfig:
    """Complete, validated tool configuration.

    Attributes:
        strava:  Provider credentials.
        storage: Blob store settings.
        sync:    Freshness windows and listing size.
        jobs:    Per-job schedule / timeout overrides keyed by job name.
    """

    strava: StravaConfig
    storage: StorageConfig
    sync: SyncConfig = field(default_factory=SyncConfig)
    jobs: dict[str, JobConfig] = field(default_factory=dict)

    def job(self, name: str) -> JobConfig:
        """Return the overrides for a job, or an empty JobConfig."""
        return self.jobs.get(name, JobConfig())


# ---------------------------------------------------------------------------
# Loader / validation
# ---------------------------------------------------------------------------


class ConfigValidationError(ValueError):
    """Raised when the tool config fails validation."""


def _load_yaml(path: Path) -> dict:
    """Read and parse a YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigValidationError: If the YAML is malformed or not a mapping.
    """
    if not path.exists():
        raise FileNotFoundError(f"Tool config not found: {path}")

    with path.open("r", encoding="utf-8") as fh:
        try:
            data = yaml.safe_load(fh) or {}
        except yaml.YAMLError as exc:
            raise ConfigValidationError(f"YAML parse error in {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigValidationError(f"{path} must contain a mapping at the top level")
    return data


def _validate_and_build(raw: dict) -> ToolConfig:
    """Validate the raw YAML dict and construct a ToolConfig.

    Args:
        raw: Parsed YAML dict.

    Returns:
        Validated ToolConfig instance.

    Raises:
        ConfigValidationError: Listing every missing or invalid field.
    """
    errors: list[str] = []

    def _section(key: str) -> dict:
        value = raw.get(key)
        if value is None:
            return {}
        if not isinstance(value, dict):
            errors.append(f"'{key}' must be a mapping")
            return {}
        return value

    def _require_str(d: dict, key: str, section: str) -> str:
        value = d.get(key)
        if value is None or value == "":
            errors.append(f"Missing required key '{key}' in section '{section}'")
            return ""
        if not isinstance(value, (str, int)):
            errors.append(f"{section}.{key} must be a string, got {value!r}")
            return ""
        return str(value)

    def _positive_int(d: dict, key: str, section: str, default: int) -> int:
        value = d.get(key, default)
        try:
            number = int(value)
        except (TypeError, ValueError):
            errors.append(f"{section}.{key} must be an integer, got {value!r}")
            return default
        if number <= 0:
            errors.append(f"{section}.{key} must be positive, got {number}")
        return number

    # ── Strava ──
    st_raw = _section("strava")
    strava = StravaConfig(
        client_id=_require_str(st_raw, "client_id", "strava"),
        client_secret=_require_str(st_raw, "client_secret", "strava"),
        refresh_token=_require_str(st_raw, "refresh_token", "strava"),
        host=_require_str(st_raw, "host", "strava"),
        email=_require_str(st_raw, "email", "strava"),
        password=_require_str(st_raw, "password", "strava"),
    )

    # ── Storage ──
    so_raw = _section("storage")
    storage = StorageConfig(
        bucket=_require_str(so_raw, "bucket", "storage"),
        endpoint_url=so_raw.get("endpoint_url") or None,
        access_key_id=so_raw.get("access_key_id") or None,
        secret_access_key=so_raw.get("secret_access_key") or None,
        region=str(so_raw.get("region", "auto")),
    )

    # ── Sync ──
    sy_raw = _section("sync")
    sync = SyncConfig(
        data_window_days=_positive_int(sy_raw, "data_window_days", "sync", 10),
        original_window_days=_positive_int(sy_raw, "original_window_days", "sync", 5),
        listing_page_size=_positive_int(sy_raw, "listing_page_size", "sync", 30),
    )

    # ── Jobs ──
    jobs: dict[str, JobConfig] = {}
    for name, cfg in _section("jobs").items():
        if name not in _JOB_NAMES:
            errors.append(f"jobs.{name} is not a known job (expected one of {list(_JOB_NAMES)})")
            continue
        if cfg is None:
            cfg = {}
        if not isinstance(cfg, dict):
            errors.append(f"jobs.{name} must be a mapping")
            continue
        schedule = cfg.get("schedule", "") or ""
        if not isinstance(schedule, str):
            errors.append(f"jobs.{name}.schedule must be a string, got {schedule!r}")
            schedule = ""
        elif schedule and len(schedule.split()) != 6:
            errors.append(
                f"jobs.{name}.schedule must be a 6-field cron expression, got {schedule!r}"
            )
        timeout: float | None = None
        if cfg.get("timeout_seconds") is not None:
            try:
                timeout = float(cfg["timeout_seconds"])
            except (TypeError, ValueError):
                errors.append(
                    f"jobs.{name}.timeout_seconds must be a number, got {cfg['timeout_seconds']!r}"
                )
            else:
                if timeout <= 0:
                    errors.append(f"jobs.{name}.timeout_seconds must be positive")
        jobs[name] = JobConfig(schedule=schedule, timeout_seconds=timeout)

    if errors:
        raise ConfigValidationError(
            f"tool config has {len(errors)} validation error(s):\n"
            + "\n".join(f"  • {e}" for e in errors)
        )

    return ToolConfig(strava=strava, storage=storage, sync=sync, jobs=jobs)


def load_tool_config(path: Path | None = None) -> ToolConfig:
    """Load and validate the tool config from disk.

    Args:
        path: Override path to YAML.  Defaults to ``Settings.tool_config_path``.

    Returns:
        Validated ToolConfig instance.
    """
    if path is None:
        from activities.config import get_settings

        path = Path(get_settings().tool_config_path)
    raw = _load_yaml(path)
    config = _validate_and_build(raw)
    logger.info("Loaded tool config from %s (%d job overrides)", path, len(config.jobs))
    return config
