"""
Declarative base for the warehouse schema.

Primary and foreign keys are UUIDs stored as ``String(36)`` so the same
schema runs on PostgreSQL and SQLite.  Stock quantities are plain integers
(BigInteger); timestamps are timezone-aware.  This module must not import
anything else from the kernel.
"""

from datetime import datetime
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, DateTime, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """uuid.UUID in Python, 36-character string in the database."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(value)


class Base(DeclarativeBase):
    type_annotation_map: ClassVar[dict] = {
        UUID: UUIDString(),
        int: BigInteger,
        datetime: DateTime(timezone=True),
    }

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)


class TrackedBase(Base):
    """
    Adds who created a row and who last touched it.

    ``updated_at`` and ``updated_by_id`` may change even on rows that are
    otherwise frozen; db/immutability.py ignores them.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now()
    )
    created_by_id: Mapped[UUID]
    updated_by_id: Mapped[UUID | None]
