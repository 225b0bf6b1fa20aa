"""
Module: warehouse_kernel.models.inventory_count
Responsibility: ORM persistence for physical inventory counts.
Architecture position: Kernel > Models.  Mutated only through
    services/count_service.py.

Invariants enforced:
    - One CountLine per (count, product, location); re-recording overwrites.
    - counted_qty >= 0.
    - A COMPLETED count with a non-zero difference references exactly one
      ADJUSTMENT document.
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
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from warehouse_kernel.db.base import Base, TrackedBase, UUIDString
from warehouse_kernel.domain.values import CountLineSnapshot, CountSnapshot, CountStatus


class InventoryCount(TrackedBase):
    """
    A stocktake of a warehouse, optionally scoped to some locations.

    ``location_ids`` is the declared scope (empty = whole warehouse).
    ``frozen_location_ids`` are the locations this count switched to
    COUNTING and must release.
    """

    __tablename__ = "inventory_counts"

    __table_args__ = (
        Index("idx_count_status", "status"),
        Index("idx_count_warehouse", "warehouse_id"),
    )

    number: Mapped[str] = mapped_column(String(30), nullable=False, unique=True)
    name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("warehouses.id"),
        nullable=False,
    )

    status: Mapped[CountStatus] = mapped_column(
        SAEnum(CountStatus, native_enum=False, length=10),
        nullable=False,
        default=CountStatus.OPEN,
    )

    location_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    frozen_location_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    adjustment_document_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("documents.id"),
        nullable=True,
    )

    lines: Mapped[list["CountLine"]] = relationship(
        back_populates="count",
        order_by="CountLine.counted_at",
        lazy="selectin",
    )

    @property
    def scope(self) -> tuple[UUID, ...]:
        return tuple(UUID(value) for value in self.location_ids or ())

    def to_snapshot(self) -> CountSnapshot:
        return CountSnapshot(
            id=self.id,
            number=self.number,
            name=self.name,
            warehouse_id=self.warehouse_id,
            status=self.status,
            location_ids=self.scope,
            adjustment_document_id=self.adjustment_document_id,
            completed_at=self.completed_at,
            lines=tuple(line.to_snapshot() for line in self.lines),
        )

    def __repr__(self) -> str:
        return f"<InventoryCount {self.number} status={self.status.value}>"


class CountLine(Base):
    """Counted quantity of one product at one location."""

    __tablename__ = "count_lines"

    __table_args__ = (
        UniqueConstraint("count_id", "product_id", "location_id", name="uq_count_line_pair"),
        CheckConstraint("counted_qty >= 0", name="ck_count_line_non_negative"),
        Index("idx_count_line_count", "count_id"),
    )

    count_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("inventory_counts.id"),
        nullable=False,
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

    counted_qty: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # Ledger quantity observed when the line was recorded (informational)
    system_qty: Mapped[int] = mapped_column(BigInteger, nullable=False)

    counted_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    counted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    count: Mapped["InventoryCount"] = relationship(back_populates="lines")

    def to_snapshot(self) -> CountLineSnapshot:
        return CountLineSnapshot(
            id=self.id,
            product_id=self.product_id,
            location_id=self.location_id,
            counted_qty=self.counted_qty,
            system_qty=self.system_qty,
            counted_by_id=self.counted_by_id,
            counted_at=self.counted_at,
        )
