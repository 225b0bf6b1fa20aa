"""
Module: warehouse_kernel.models.stock
Responsibility: ORM persistence for the stock ledger: the current quantity per
    (product, location) and the append-only movement postings behind it.
Architecture position: Kernel > Models.  Mutated only by
    services/ledger_service.py.

Invariants enforced:
    Non-negative stock -- ``stock_rows.quantity >= 0`` (service check before mutation, plus a
          database CHECK constraint as the last line of defense).
    Movement completeness -- every committed delta is one ``stock_movements`` row, so the sum of
          movement deltas for a pair equals the row quantity.
    Movements are append-only (db/immutability.py).

Failure modes:
    - IntegrityError on a second row for the same pair (lazy creation race,
      handled by the ledger with savepoint + retry).
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from warehouse_kernel.db.base import Base, UUIDString
from warehouse_kernel.domain.values import MovementKind


class StockRow(Base):
    """On-hand quantity of one product at one location."""

    __tablename__ = "stock_rows"

    __table_args__ = (
        UniqueConstraint("product_id", "location_id", name="uq_stock_product_location"),
        CheckConstraint("quantity >= 0", name="ck_stock_quantity_non_negative"),
        Index("idx_stock_location", "location_id"),
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    location_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("locations.id"),
        nullable=False,
    )

    quantity: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<StockRow {self.product_id}@{self.location_id} qty={self.quantity}>"


class StockMovement(Base):
    """
    One committed ledger delta.

    ``line_ids`` records which document lines contributed to the net delta
    so each line links to the deltas it produced.
    """

    __tablename__ = "stock_movements"

    __table_args__ = (
        Index("idx_movement_document", "document_id"),
        Index("idx_movement_pair", "product_id", "location_id"),
        Index("idx_movement_created", "created_at"),
    )

    document_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("documents.id"),
        nullable=True,
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    location_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("locations.id"),
        nullable=False,
    )

    kind: Mapped[MovementKind] = mapped_column(
        SAEnum(MovementKind, native_enum=False, length=10),
        nullable=False,
    )

    delta: Mapped[int] = mapped_column(BigInteger, nullable=False)
    quantity_before: Mapped[int] = mapped_column(BigInteger, nullable=False)
    quantity_after: Mapped[int] = mapped_column(BigInteger, nullable=False)

    line_ids: Mapped[list | None] = mapped_column(JSON, nullable=True)

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<StockMovement {self.kind.value} {self.delta:+d}>"
