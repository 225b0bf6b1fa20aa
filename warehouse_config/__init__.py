"""
warehouse_config -- single public entrypoint for warehouse configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration files
    or environment variables directly.

Architecture position:
    Configuration.  Sits beside ``warehouse_kernel`` and below
    ``warehouse_services``.  The kernel MUST NEVER import from
    ``warehouse_config``; the services layer translates config values into
    kernel constructor arguments.

Failure modes:
    - ``FileNotFoundError`` -- the configured YAML file does not exist.
    - ``ValueError`` -- schema or structural validation failures.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``WAREHOUSE_CONFIG_TRACE`` log entry naming the source file, database
    backend and role count, tying operations to the configuration in force.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from warehouse_config.loader import load_yaml_file, parse_config
from warehouse_config.schema import (
    AccessConfig,
    CountConfig,
    DatabaseConfig,
    LoggingConfig,
    NumberingConfig,
    PaginationConfig,
    RetryConfig,
    WarehouseConfig,
)

_logger = logging.getLogger("warehouse_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"

ENV_CONFIG_PATH = "WAREHOUSE_CONFIG"
ENV_DATABASE_URL = "WAREHOUSE_DATABASE_URL"
ENV_LOG_LEVEL = "WAREHOUSE_LOG_LEVEL"


def get_active_config(path: Path | str | None = None) -> WarehouseConfig:
    """The ONLY public configuration entrypoint.

    Resolution order for the file: explicit ``path``, then
    ``$WAREHOUSE_CONFIG``, then the packaged ``defaults.yaml``.
    ``$WAREHOUSE_DATABASE_URL`` and ``$WAREHOUSE_LOG_LEVEL`` override the
    corresponding file values.

    Raises:
        FileNotFoundError: If the resolved file does not exist.
        ValueError: If configuration validation fails.
    """
    config_path = Path(path or os.environ.get(ENV_CONFIG_PATH) or DEFAULT_CONFIG_PATH)
    data = load_yaml_file(config_path)

    database_url = os.environ.get(ENV_DATABASE_URL)
    if database_url:
        data.setdefault("database", {})["url"] = database_url
    log_level = os.environ.get(ENV_LOG_LEVEL)
    if log_level:
        data.setdefault("logging", {})["level"] = log_level

    config = parse_config(data, source=str(config_path))

    _logger.info(
        "WAREHOUSE_CONFIG_TRACE",
        extra={
            "trace_type": "WAREHOUSE_CONFIG_TRACE",
            "config_source": config.source,
            "database_backend": config.database.url.split(":", 1)[0],
            "role_count": len(config.access.roles),
            "freeze_locations": config.counts.freeze_locations,
            "retry_max_attempts": config.retry.max_attempts,
        },
    )
    return config


__all__ = [
    "AccessConfig",
    "CountConfig",
    "DatabaseConfig",
    "LoggingConfig",
    "NumberingConfig",
    "PaginationConfig",
    "RetryConfig",
    "WarehouseConfig",
    "get_active_config",
]
