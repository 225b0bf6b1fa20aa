"""
Module: warehouse_kernel.models.audit_record
Responsibility: ORM persistence for the tamper-evident audit trail.
Architecture position: Kernel > Models.  Written only by
    services/auditor_service.py, read by selectors/audit_selector.py.

Invariants enforced:
    - Append-only: no UPDATE or DELETE (ORM listeners).
    - Hash chain: hash = H(entity_type | entity_id | action | payload_hash |
      prev_hash), validated by AuditRecorder.validate_chain().
    - seq is strictly monotonic, allocated by SequenceService.

Audit relevance:
    Every document transition and every ledger row mutation produces one
    AuditRecord carrying the before/after state.  ``product_id``,
    ``location_id`` and ``document_id`` are denormalised so history queries
    do not need to parse JSON.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, BigInteger, DateTime, Enum as SAEnum, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from warehouse_kernel.db.base import Base, UUIDString


class AuditAction(str, Enum):
    """Auditable actions."""

    # Document lifecycle
    DOCUMENT_CREATED = "DOCUMENT_CREATED"
    DOCUMENT_LINE_ADDED = "DOCUMENT_LINE_ADDED"
    DOCUMENT_LINE_UPDATED = "DOCUMENT_LINE_UPDATED"
    DOCUMENT_LINE_REMOVED = "DOCUMENT_LINE_REMOVED"
    DOCUMENT_CONFIRMED = "DOCUMENT_CONFIRMED"
    DOCUMENT_CANCELLED = "DOCUMENT_CANCELLED"

    # Ledger mutations, one per affected row
    STOCK_IN = "STOCK_IN"
    STOCK_OUT = "STOCK_OUT"
    STOCK_MOVED = "STOCK_MOVED"
    STOCK_ADJUSTED = "STOCK_ADJUSTED"
    STOCK_REVERSED = "STOCK_REVERSED"

    # Inventory counts
    COUNT_STARTED = "COUNT_STARTED"
    COUNT_LINE_RECORDED = "COUNT_LINE_RECORDED"
    COUNT_LINE_REMOVED = "COUNT_LINE_REMOVED"
    COUNT_COMPLETED = "COUNT_COMPLETED"
    COUNT_REOPENED = "COUNT_REOPENED"
    COUNT_CANCELLED = "COUNT_CANCELLED"

    # Reference data
    WAREHOUSE_CREATED = "WAREHOUSE_CREATED"
    PRODUCT_CREATED = "PRODUCT_CREATED"
    PRODUCT_DEACTIVATED = "PRODUCT_DEACTIVATED"
    LOCATION_CREATED = "LOCATION_CREATED"
    LOCATION_STATUS_CHANGED = "LOCATION_STATUS_CHANGED"


class AuditRecord(Base):
    """One immutable, hash-chained audit entry."""

    __tablename__ = "audit_records"

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_action", "action"),
        Index("idx_audit_actor", "actor_id"),
        Index("idx_audit_occurred", "occurred_at"),
        Index("idx_audit_product", "product_id"),
        Index("idx_audit_location", "location_id"),
        Index("idx_audit_document", "document_id"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    action: Mapped[AuditAction] = mapped_column(
        SAEnum(AuditAction, native_enum=False, length=30),
        nullable=False,
    )

    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    before_state: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    after_state: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    product_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    location_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    document_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditRecord #{self.seq} {self.action.value} {self.entity_type}:{self.entity_id}>"
