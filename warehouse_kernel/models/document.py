"""
Module: warehouse_kernel.models.document
Responsibility: ORM persistence for movement documents and their lines.
Architecture position: Kernel > Models.  Mutated only through
    services/document_service.py.

Invariants enforced:
    Document immutability -- a CONFIRMED document is immutable except for the transition to
          CANCELLED; lines of a non-DRAFT document can never be added,
          edited or removed (ORM listeners in db/immutability.py).
    Documents are never deleted; cancellation is a status.

Failure modes:
    - ImmutabilityViolationError when a listener blocks a write.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from warehouse_kernel.db.base import TrackedBase, UUIDString
from warehouse_kernel.domain.values import (
    DocumentLineSnapshot,
    DocumentSnapshot,
    DocumentStatus,
    DocumentType,
)


class Document(TrackedBase):
    """
    A movement document: RECEIPT, ISSUE, TRANSFER or ADJUSTMENT.

    ``number`` is human-facing (``RCV/2024/0001``); ``id`` is the identity.
    ``source_count_id`` is set on ADJUSTMENT documents generated by an
    inventory count completion.
    """

    __tablename__ = "documents"

    __table_args__ = (
        Index("idx_document_status", "status"),
        Index("idx_document_type", "document_type"),
        Index("idx_document_warehouse", "warehouse_id"),
        Index("idx_document_source_count", "source_count_id"),
    )

    number: Mapped[str] = mapped_column(String(30), nullable=False, unique=True)

    document_type: Mapped[DocumentType] = mapped_column(
        SAEnum(DocumentType, native_enum=False, length=12),
        nullable=False,
    )

    status: Mapped[DocumentStatus] = mapped_column(
        SAEnum(DocumentStatus, native_enum=False, length=10),
        nullable=False,
        default=DocumentStatus.DRAFT,
    )

    warehouse_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("warehouses.id"),
        nullable=False,
    )

    reference_no: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    confirmed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # No FK: inventory_counts also references documents
    source_count_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    lines: Mapped[list["DocumentLine"]] = relationship(
        back_populates="document",
        order_by="DocumentLine.line_no",
        lazy="selectin",
    )

    def to_snapshot(self) -> DocumentSnapshot:
        return DocumentSnapshot(
            id=self.id,
            number=self.number,
            document_type=self.document_type,
            status=self.status,
            warehouse_id=self.warehouse_id,
            created_by_id=self.created_by_id,
            reference_no=self.reference_no,
            notes=self.notes,
            confirmed_at=self.confirmed_at,
            confirmed_by_id=self.confirmed_by_id,
            cancelled_at=self.cancelled_at,
            cancelled_by_id=self.cancelled_by_id,
            cancel_reason=self.cancel_reason,
            source_count_id=self.source_count_id,
            lines=tuple(line.to_snapshot() for line in self.lines),
        )

    def __repr__(self) -> str:
        return f"<Document {self.number} {self.document_type.value} status={self.status.value}>"


class DocumentLine(TrackedBase):
    """
    One intended stock movement on a document.

    Which of source/destination must be set depends on the document type
    (see domain/movement.py).  ``quantity`` is positive except on ADJUSTMENT
    documents, where it is a signed non-zero delta.
    """

    __tablename__ = "document_lines"

    __table_args__ = (
        UniqueConstraint("document_id", "line_no", name="uq_document_line_no"),
        Index("idx_line_document", "document_id"),
        Index("idx_line_product", "product_id"),
    )

    document_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("documents.id"),
        nullable=False,
    )

    line_no: Mapped[int] = mapped_column(Integer, nullable=False)

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    source_location_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("locations.id"),
        nullable=True,
    )

    destination_location_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("locations.id"),
        nullable=True,
    )

    quantity: Mapped[int] = mapped_column(BigInteger, nullable=False)

    document: Mapped["Document"] = relationship(back_populates="lines")

    def to_snapshot(self) -> DocumentLineSnapshot:
        return DocumentLineSnapshot(
            id=self.id,
            line_no=self.line_no,
            product_id=self.product_id,
            source_location_id=self.source_location_id,
            destination_location_id=self.destination_location_id,
            quantity=self.quantity,
        )

    def __repr__(self) -> str:
        return f"<DocumentLine {self.document_id}#{self.line_no} qty={self.quantity}>"
