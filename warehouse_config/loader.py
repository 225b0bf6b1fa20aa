"""
Configuration Loader (``warehouse_config.loader``).

Responsibility
--------------
Loads a YAML file and parses it into the typed ``warehouse_config.schema``
dataclasses.  Runtime callers go through ``warehouse_config.get_active_config()``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown section, unknown document type or a value of the wrong shape
  -> ``ValueError`` with the offending key in the message.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

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

DOCUMENT_TYPES = frozenset({"RECEIPT", "ISSUE", "TRANSFER", "ADJUSTMENT"})

_SECTIONS = frozenset(
    {"database", "logging", "retry", "pagination", "numbering", "counts", "access"}
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, dict):
        raise ValueError(f"Config section '{name}' must be a mapping")
    return value


def _positive_int(section: str, key: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValueError(f"{section}.{key} must be a positive integer, got {value!r}")
    return value


def parse_database(data: dict[str, Any]) -> DatabaseConfig:
    defaults = DatabaseConfig()
    return DatabaseConfig(
        url=str(data.get("url", defaults.url)),
        echo=bool(data.get("echo", defaults.echo)),
        pool_size=_positive_int("database", "pool_size", data.get("pool_size", defaults.pool_size)),
        max_overflow=int(data.get("max_overflow", defaults.max_overflow)),
        pool_timeout=int(data.get("pool_timeout", defaults.pool_timeout)),
        pool_recycle=int(data.get("pool_recycle", defaults.pool_recycle)),
    )


def parse_retry(data: dict[str, Any]) -> RetryConfig:
    defaults = RetryConfig()
    backoff = float(data.get("backoff_seconds", defaults.backoff_seconds))
    if backoff < 0:
        raise ValueError(f"retry.backoff_seconds must be >= 0, got {backoff}")
    return RetryConfig(
        max_attempts=_positive_int(
            "retry", "max_attempts", data.get("max_attempts", defaults.max_attempts)
        ),
        backoff_seconds=backoff,
    )


def parse_pagination(data: dict[str, Any]) -> PaginationConfig:
    defaults = PaginationConfig()
    default_limit = _positive_int(
        "pagination", "default_limit", data.get("default_limit", defaults.default_limit)
    )
    max_limit = _positive_int(
        "pagination", "max_limit", data.get("max_limit", defaults.max_limit)
    )
    if default_limit > max_limit:
        raise ValueError(
            f"pagination.default_limit ({default_limit}) exceeds max_limit ({max_limit})"
        )
    return PaginationConfig(default_limit=default_limit, max_limit=max_limit)


def parse_numbering(data: dict[str, Any]) -> NumberingConfig:
    defaults = NumberingConfig()
    prefixes = dict(defaults.document_prefixes)
    for doc_type, prefix in (data.get("document_prefixes") or {}).items():
        key = str(doc_type).upper()
        if key not in DOCUMENT_TYPES:
            raise ValueError(f"numbering.document_prefixes: unknown document type '{doc_type}'")
        if not prefix:
            raise ValueError(f"numbering.document_prefixes.{key} must not be empty")
        prefixes[key] = str(prefix)
    return NumberingConfig(
        document_prefixes=prefixes,
        count_prefix=str(data.get("count_prefix", defaults.count_prefix)),
    )


def parse_access(data: dict[str, Any]) -> AccessConfig:
    roles: dict[str, frozenset[str]] = {}
    for role, permissions in (data.get("roles") or {}).items():
        if not isinstance(permissions, list):
            raise ValueError(f"access.roles.{role} must be a list of permissions")
        roles[str(role).upper()] = frozenset(str(p) for p in permissions)
    return AccessConfig(roles=roles)


def parse_config(data: dict[str, Any], source: str | None = None) -> WarehouseConfig:
    """Parse a full configuration dict.  Missing sections take their defaults."""
    unknown = set(data) - _SECTIONS
    if unknown:
        raise ValueError(f"Unknown config section(s): {', '.join(sorted(unknown))}")

    logging_section = _section(data, "logging")
    return WarehouseConfig(
        database=parse_database(_section(data, "database")),
        logging=LoggingConfig(level=str(logging_section.get("level", "INFO")).upper()),
        retry=parse_retry(_section(data, "retry")),
        pagination=parse_pagination(_section(data, "pagination")),
        numbering=parse_numbering(_section(data, "numbering")),
        counts=CountConfig(
            freeze_locations=bool(_section(data, "counts").get("freeze_locations", True))
        ),
        access=parse_access(_section(data, "access")),
        source=source,
    )
