"""
Configuration Loader (``stock_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into the frozen dataclasses
of ``stock_config.schema``.  Runtime callers go through
``stock_config.get_active_config()``, not this module.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; there are no silent defaults for required fields.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the parsed
  document for configuration identity.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError``.
* Out-of-range values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from stock_config.schema import (
    AdjusterConfig,
    DatabaseConfig,
    LoggingConfig,
    ReportingConfig,
    StockConfig,
)

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a single YAML file and return its contents as a dict."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """Deterministic SHA-256 of a parsed YAML document."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _positive_int(section: str, key: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValueError(f"{section}.{key} must be a positive integer, got {value!r}")
    return value


def _non_negative_float(section: str, key: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise ValueError(f"{section}.{key} must be a non-negative number, got {value!r}")
    return float(value)


def parse_database(data: dict[str, Any]) -> DatabaseConfig:
    return DatabaseConfig(
        url=data["url"],
        echo=bool(data.get("echo", False)),
        pool_size=_positive_int("database", "pool_size", data.get("pool_size", 20)),
        max_overflow=int(data.get("max_overflow", 10)),
        sqlite_busy_timeout_seconds=_non_negative_float(
            "database",
            "sqlite_busy_timeout_seconds",
            data.get("sqlite_busy_timeout_seconds", 30.0),
        ),
    )


def parse_adjuster(data: dict[str, Any]) -> AdjusterConfig:
    return AdjusterConfig(
        max_attempts=_positive_int("adjuster", "max_attempts", data.get("max_attempts", 3)),
        backoff_base_seconds=_non_negative_float(
            "adjuster", "backoff_base_seconds", data.get("backoff_base_seconds", 0.05)
        ),
    )


def parse_reporting(data: dict[str, Any]) -> ReportingConfig:
    reporting = ReportingConfig(
        low_stock_top_n=_positive_int(
            "reporting", "low_stock_top_n", data.get("low_stock_top_n", 5)
        ),
        default_page_size=_positive_int(
            "reporting", "default_page_size", data.get("default_page_size", 50)
        ),
        max_page_size=_positive_int(
            "reporting", "max_page_size", data.get("max_page_size", 100)
        ),
    )
    if reporting.default_page_size > reporting.max_page_size:
        raise ValueError(
            "reporting.default_page_size must not exceed reporting.max_page_size"
        )
    return reporting


def parse_logging(data: dict[str, Any]) -> LoggingConfig:
    level = str(data.get("level", "INFO")).upper()
    if level not in _LOG_LEVELS:
        raise ValueError(f"logging.level must be one of {sorted(_LOG_LEVELS)}, got {level!r}")
    return LoggingConfig(level=level)


def parse_config(data: dict[str, Any], database_url: str | None = None) -> StockConfig:
    """
    Parse a full configuration document.

    Args:
        data: Parsed YAML document.
        database_url: Overrides ``database.url`` when given.

    Raises:
        KeyError: if ``config_id``, ``version`` or ``database.url`` is missing.
        ValueError: if a value is out of range.
    """
    database_data = dict(data["database"])
    if database_url:
        database_data["url"] = database_url

    return StockConfig(
        config_id=data["config_id"],
        version=_positive_int("root", "version", data["version"]),
        database=parse_database(database_data),
        adjuster=parse_adjuster(data.get("adjuster") or {}),
        reporting=parse_reporting(data.get("reporting") or {}),
        logging=parse_logging(data.get("logging") or {}),
        checksum=compute_checksum(data),
    )
