"""
Module: warehouse_kernel.selectors.audit_selector
Responsibility: Read-only queries over the audit trail: filtered, paginated
    listings and per-entity histories (document, product, location).
Architecture position: Kernel > Selectors (read-only).  The recorder itself
    lives in services/auditor_service.py.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import or_, select

from warehouse_kernel.domain.values import Page
from warehouse_kernel.models.audit_record import AuditAction, AuditRecord
from warehouse_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class AuditFilter:
    actor_id: UUID | None = None
    action: AuditAction | None = None
    entity_type: str | None = None
    entity_id: UUID | None = None
    product_id: UUID | None = None
    location_id: UUID | None = None
    document_id: UUID | None = None
    occurred_from: datetime | None = None
    occurred_to: datetime | None = None


@dataclass(frozen=True)
class AuditEntry:
    """DTO for one audit record."""

    seq: int
    action: AuditAction
    actor_id: UUID
    entity_type: str
    entity_id: UUID
    occurred_at: datetime
    before: dict[str, Any] | None
    after: dict[str, Any] | None
    product_id: UUID | None
    location_id: UUID | None
    document_id: UUID | None
    hash: str


def _to_entry(record: AuditRecord) -> AuditEntry:
    return AuditEntry(
        seq=record.seq,
        action=record.action,
        actor_id=record.actor_id,
        entity_type=record.entity_type,
        entity_id=record.entity_id,
        occurred_at=record.occurred_at,
        before=record.before_state,
        after=record.after_state,
        product_id=record.product_id,
        location_id=record.location_id,
        document_id=record.document_id,
        hash=record.hash,
    )


class AuditSelector(BaseSelector):
    """Audit queries; newest first unless stated otherwise."""

    def list_records(
        self,
        filters: AuditFilter | None = None,
        page: int = 1,
        limit: int | None = None,
    ) -> Page[AuditEntry]:
        f = filters or AuditFilter()
        stmt = select(AuditRecord)
        if f.actor_id is not None:
            stmt = stmt.where(AuditRecord.actor_id == f.actor_id)
        if f.action is not None:
            stmt = stmt.where(AuditRecord.action == f.action)
        if f.entity_type is not None:
            stmt = stmt.where(AuditRecord.entity_type == f.entity_type)
        if f.entity_id is not None:
            stmt = stmt.where(AuditRecord.entity_id == f.entity_id)
        if f.product_id is not None:
            stmt = stmt.where(AuditRecord.product_id == f.product_id)
        if f.location_id is not None:
            stmt = stmt.where(AuditRecord.location_id == f.location_id)
        if f.document_id is not None:
            stmt = stmt.where(AuditRecord.document_id == f.document_id)
        if f.occurred_from is not None:
            stmt = stmt.where(AuditRecord.occurred_at >= f.occurred_from)
        if f.occurred_to is not None:
            stmt = stmt.where(AuditRecord.occurred_at <= f.occurred_to)
        stmt = stmt.order_by(AuditRecord.seq.desc())
        return self._paginate(stmt, _to_entry, page, limit)

    def _history(self, *criteria) -> tuple[AuditEntry, ...]:
        records = self.session.execute(
            select(AuditRecord).where(*criteria).order_by(AuditRecord.seq)
        ).scalars()
        return tuple(_to_entry(r) for r in records)

    def document_history(self, document_id: UUID) -> tuple[AuditEntry, ...]:
        """Everything recorded about a document, its lines and its stock effects."""
        return self._history(
            or_(AuditRecord.document_id == document_id, AuditRecord.entity_id == document_id)
        )

    def product_history(self, product_id: UUID) -> tuple[AuditEntry, ...]:
        return self._history(AuditRecord.product_id == product_id)

    def location_history(self, location_id: UUID) -> tuple[AuditEntry, ...]:
        return self._history(AuditRecord.location_id == location_id)

    def entity_history(self, entity_type: str, entity_id: UUID) -> tuple[AuditEntry, ...]:
        return self._history(
            AuditRecord.entity_type == entity_type,
            AuditRecord.entity_id == entity_id,
        )
