"""
ORM immutability listener tests.

These writes bypass the services on purpose: the listeners must stop
them at flush time.
"""

import pytest
from sqlalchemy import select

from warehouse_kernel.domain.values import DocumentStatus, DocumentType
from warehouse_kernel.exceptions import ImmutabilityViolationError
from warehouse_kernel.models.audit_record import AuditRecord
from warehouse_kernel.models.document import Document, DocumentLine
from warehouse_kernel.models.stock import StockMovement


@pytest.fixture
def confirmed_receipt(session, receive, product, loc_a):
    result = receive(product, loc_a, 10)
    return session.get(Document, result.document.id)


class TestDocumentImmutability:
    def test_confirmed_header_field_blocked(self, session, confirmed_receipt):
        confirmed_receipt.notes = "edited afterwards"
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert exc_info.value.entity_type == "Document"

    def test_confirmed_back_to_draft_blocked(self, session, confirmed_receipt):
        confirmed_receipt.status = DocumentStatus.DRAFT
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_confirmed_document_delete_blocked(self, session, confirmed_receipt):
        session.delete(confirmed_receipt)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_cancelled_document_frozen(self, session, documents, confirmed_receipt, actor_id):
        documents.cancel(confirmed_receipt.id, actor_id)
        session.refresh(confirmed_receipt)
        confirmed_receipt.cancel_reason = "rewritten"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_draft_document_is_editable(self, session, documents, warehouse, actor_id):
        snapshot = documents.create_document(DocumentType.ISSUE, warehouse.id, actor_id)
        document = session.get(Document, snapshot.id)
        document.notes = "picked by night shift"
        session.flush()
        assert documents.get_document(snapshot.id).notes == "picked by night shift"


class TestLineImmutability:
    def test_confirmed_line_update_blocked(self, session, confirmed_receipt):
        line = confirmed_receipt.lines[0]
        line.quantity = 99
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert exc_info.value.entity_type == "DocumentLine"

    def test_confirmed_line_delete_blocked(self, session, confirmed_receipt):
        session.delete(confirmed_receipt.lines[0])
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_line_moved_out_of_confirmed_blocked(
        self, session, documents, confirmed_receipt, warehouse, actor_id
    ):
        draft = documents.create_document(DocumentType.RECEIPT, warehouse.id, actor_id)
        line = confirmed_receipt.lines[0]
        line.document_id = draft.id
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert exc_info.value.entity_type == "DocumentLine"

    def test_line_insert_into_confirmed_blocked(self, session, confirmed_receipt, product, loc_b, actor_id):
        session.add(
            DocumentLine(
                document_id=confirmed_receipt.id,
                line_no=2,
                product_id=product.id,
                destination_location_id=loc_b.id,
                quantity=1,
                created_by_id=actor_id,
            )
        )
        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestAppendOnlyTables:
    def test_movement_update_blocked(self, session, confirmed_receipt):
        movement = session.execute(select(StockMovement)).scalars().first()
        movement.delta = 1000
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_movement_delete_blocked(self, session, confirmed_receipt):
        movement = session.execute(select(StockMovement)).scalars().first()
        session.delete(movement)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_audit_record_update_blocked(self, session, confirmed_receipt):
        record = session.execute(select(AuditRecord)).scalars().first()
        record.entity_type = "Nothing"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_audit_record_delete_blocked(self, session, confirmed_receipt):
        record = session.execute(select(AuditRecord)).scalars().first()
        session.delete(record)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
