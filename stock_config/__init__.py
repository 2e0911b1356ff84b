"""
stock_config -- single public entrypoint for stock kernel configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration files
    or environment variables directly.

Architecture position:
    Configuration.  Sits above ``stock_kernel`` and below
    ``stock_services`` and ``scripts``.  The kernel MUST NEVER import from
    ``stock_config``.

Environment:
    STOCK_CONFIG_PATH   -- path of the YAML file to load (defaults to
                           ``stock_config/sets/default.yaml``).
    STOCK_DATABASE_URL  -- overrides ``database.url``.

Failure modes:
    - ``FileNotFoundError`` -- configuration file missing.
    - ``KeyError`` / ``ValueError`` -- schema validation failures.

Audit relevance:
    Every successful call emits a ``STOCK_CONFIG_TRACE`` log record with the
    config_id, version and checksum.
"""

from __future__ import annotations

import os
from pathlib import Path

from stock_config.loader import load_yaml_file, parse_config
from stock_config.schema import (
    AdjusterConfig,
    DatabaseConfig,
    LoggingConfig,
    ReportingConfig,
    StockConfig,
)
from stock_kernel.logging_config import get_logger

_logger = get_logger("config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"

CONFIG_PATH_ENV = "STOCK_CONFIG_PATH"
DATABASE_URL_ENV = "STOCK_DATABASE_URL"


def get_active_config(config_path: Path | str | None = None) -> StockConfig:
    """The ONLY public configuration entrypoint.

    Resolution order for the file: explicit ``config_path``, then
    ``$STOCK_CONFIG_PATH``, then the packaged default.  ``$STOCK_DATABASE_URL``
    always wins over the file's ``database.url``.

    Returns:
        A frozen StockConfig.  Not cached; callers hold the returned object.
    """
    path = Path(config_path or os.environ.get(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH)
    data = load_yaml_file(path)
    config = parse_config(data, database_url=os.environ.get(DATABASE_URL_ENV))

    _logger.info(
        "STOCK_CONFIG_TRACE",
        extra={
            "trace_type": "STOCK_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "config_path": str(path),
        },
    )
    return config


__all__ = [
    "get_active_config",
    "StockConfig",
    "DatabaseConfig",
    "AdjusterConfig",
    "ReportingConfig",
    "LoggingConfig",
    "DEFAULT_CONFIG_PATH",
]
