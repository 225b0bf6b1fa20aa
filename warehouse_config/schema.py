"""
WarehouseConfig schema.

Frozen dataclasses for the runtime configuration.  The loader parses YAML
into these types; ``get_active_config()`` is the only way callers obtain one.
"""

from __future__ import annotations

from dataclasses import dataclass, field

# ---------------------------------------------------------------------------
# Infrastructure
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseConfig:
    url: str = "sqlite://"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 3600


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class RetryConfig:
    """Retry policy for deadlocks and serialization failures."""

    max_attempts: int = 3
    backoff_seconds: float = 0.05


@dataclass(frozen=True)
class PaginationConfig:
    default_limit: int = 20
    max_limit: int = 100


# ---------------------------------------------------------------------------
# Domain behaviour
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NumberingConfig:
    """Document number prefixes, keyed by document type name."""

    document_prefixes: dict[str, str] = field(
        default_factory=lambda: {
            "RECEIPT": "RCV",
            "ISSUE": "ISS",
            "TRANSFER": "TRF",
            "ADJUSTMENT": "ADJ",
        }
    )
    count_prefix: str = "INV"


@dataclass(frozen=True)
class CountConfig:
    freeze_locations: bool = True


@dataclass(frozen=True)
class AccessConfig:
    """Role name -> granted permissions.  ``"*"`` grants everything."""

    roles: dict[str, frozenset[str]] = field(default_factory=dict)

    def permissions_for(self, role: str) -> frozenset[str]:
        return self.roles.get(role, frozenset())


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WarehouseConfig:
    """Root configuration object.  ``source`` records where it was loaded from."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    pagination: PaginationConfig = field(default_factory=PaginationConfig)
    numbering: NumberingConfig = field(default_factory=NumberingConfig)
    counts: CountConfig = field(default_factory=CountConfig)
    access: AccessConfig = field(default_factory=AccessConfig)
    source: str | None = None
