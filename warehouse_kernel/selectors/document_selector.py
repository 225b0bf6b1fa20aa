"""
Module: warehouse_kernel.selectors.document_selector
Responsibility: Read-only listings of movement documents and inventory counts.
Architecture position: Kernel > Selectors (read-only).
"""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import select

from warehouse_kernel.domain.values import (
    CountSnapshot,
    CountStatus,
    DocumentSnapshot,
    DocumentStatus,
    DocumentType,
    Page,
)
from warehouse_kernel.models.document import Document
from warehouse_kernel.models.inventory_count import InventoryCount
from warehouse_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class DocumentFilter:
    document_type: DocumentType | None = None
    status: DocumentStatus | None = None
    warehouse_id: UUID | None = None
    created_by_id: UUID | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None


class DocumentSelector(BaseSelector):
    def get_document(self, document_id: UUID) -> DocumentSnapshot | None:
        document = self.session.get(Document, document_id)
        return document.to_snapshot() if document is not None else None

    def get_by_number(self, number: str) -> DocumentSnapshot | None:
        document = self.session.execute(
            select(Document).where(Document.number == number)
        ).scalar_one_or_none()
        return document.to_snapshot() if document is not None else None

    def list_documents(
        self,
        filters: DocumentFilter | None = None,
        page: int = 1,
        limit: int | None = None,
    ) -> Page[DocumentSnapshot]:
        f = filters or DocumentFilter()
        stmt = select(Document)
        if f.document_type is not None:
            stmt = stmt.where(Document.document_type == f.document_type)
        if f.status is not None:
            stmt = stmt.where(Document.status == f.status)
        if f.warehouse_id is not None:
            stmt = stmt.where(Document.warehouse_id == f.warehouse_id)
        if f.created_by_id is not None:
            stmt = stmt.where(Document.created_by_id == f.created_by_id)
        if f.created_from is not None:
            stmt = stmt.where(Document.created_at >= f.created_from)
        if f.created_to is not None:
            stmt = stmt.where(Document.created_at <= f.created_to)
        stmt = stmt.order_by(Document.number.desc())
        return self._paginate(stmt, Document.to_snapshot, page, limit)

    def list_counts(
        self,
        warehouse_id: UUID | None = None,
        status: CountStatus | None = None,
        page: int = 1,
        limit: int | None = None,
    ) -> Page[CountSnapshot]:
        stmt = select(InventoryCount)
        if warehouse_id is not None:
            stmt = stmt.where(InventoryCount.warehouse_id == warehouse_id)
        if status is not None:
            stmt = stmt.where(InventoryCount.status == status)
        stmt = stmt.order_by(InventoryCount.number.desc())
        return self._paginate(stmt, InventoryCount.to_snapshot, page, limit)
