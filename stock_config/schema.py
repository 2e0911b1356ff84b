"""
Configuration schema (``stock_config.schema``).

Frozen dataclasses describing the runtime configuration of the stock
kernel.  Parsed from YAML by ``stock_config.loader``; obtained at runtime
only through ``stock_config.get_active_config()``.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class DatabaseConfig:
    url: str
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    sqlite_busy_timeout_seconds: float = 30.0


@dataclass(frozen=True)
class AdjusterConfig:
    """
    Retry policy for the Atomic Stock Adjuster.

    max_attempts counts the first try.  Backoff before retry n (0-based) is
    backoff_base_seconds * 2**n.
    """

    max_attempts: int = 3
    backoff_base_seconds: float = 0.05


@dataclass(frozen=True)
class ReportingConfig:
    low_stock_top_n: int = 5
    default_page_size: int = 50
    max_page_size: int = 100


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class StockConfig:
    """Root configuration object.  ``checksum`` identifies the source YAML."""

    config_id: str
    version: int
    database: DatabaseConfig
    adjuster: AdjusterConfig = field(default_factory=AdjusterConfig)
    reporting: ReportingConfig = field(default_factory=ReportingConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    checksum: str = ""
