"""
Document state machine tests.

DRAFT -> CONFIRMED -> CANCELLED and DRAFT -> CANCELLED.  Confirmation and
compensating cancellation are atomic: on failure the document keeps its
status and no stock row changes.
"""

from uuid import uuid4

import pytest
from sqlalchemy import select

from warehouse_kernel.domain.values import DocumentStatus, DocumentType, LocationStatus, MovementKind
from warehouse_kernel.exceptions import (
    CancellationConflictError,
    DocumentLineNotFoundError,
    DocumentNotFoundError,
    EmptyDocumentError,
    InsufficientStockError,
    InvalidLineError,
    InvalidTransitionError,
    NoOpLineError,
    ProductNotFoundError,
)
from warehouse_kernel.models.stock import StockMovement


class TestDraftEditing:
    def test_create_assigns_number_per_type_and_year(self, documents, warehouse, actor_id):
        first = documents.create_document(DocumentType.RECEIPT, warehouse.id, actor_id)
        second = documents.create_document(DocumentType.RECEIPT, warehouse.id, actor_id)
        issue = documents.create_document(DocumentType.ISSUE, warehouse.id, actor_id)

        assert first.number == "RCV/2024/0001"
        assert second.number == "RCV/2024/0002"
        assert issue.number == "ISS/2024/0001"
        assert first.status == DocumentStatus.DRAFT
        assert first.lines == ()

    def test_custom_prefixes(self, session, auditor, ledger, catalog, clock, warehouse, actor_id):
        from warehouse_kernel.services import DocumentService

        service = DocumentService(
            session, auditor, ledger=ledger, catalog=catalog, clock=clock,
            number_prefixes={DocumentType.TRANSFER: "MM"},
        )
        doc = service.create_document(DocumentType.TRANSFER, warehouse.id, actor_id)
        assert doc.number == "MM/2024/0001"

    def test_add_edit_remove_line(self, documents, warehouse, product, loc_a, loc_b, actor_id):
        doc = documents.create_document(DocumentType.RECEIPT, warehouse.id, actor_id)
        line = documents.add_line(
            doc.id, actor_id, product.id, 5, destination_location_id=loc_a.id
        )
        assert line.line_no == 1

        edited = documents.edit_line(
            doc.id, line.id, actor_id, quantity=8, destination_location_id=loc_b.id
        )
        assert edited.quantity == 8
        assert edited.destination_location_id == loc_b.id
        assert edited.product_id == product.id

        documents.remove_line(doc.id, line.id, actor_id)
        assert documents.get_document(doc.id).lines == ()

    def test_line_numbers_keep_increasing_after_removal(
        self, documents, warehouse, product, loc_a, actor_id
    ):
        doc = documents.create_document(DocumentType.RECEIPT, warehouse.id, actor_id)
        first = documents.add_line(doc.id, actor_id, product.id, 1, destination_location_id=loc_a.id)
        documents.add_line(doc.id, actor_id, product.id, 2, destination_location_id=loc_a.id)
        documents.remove_line(doc.id, first.id, actor_id)
        third = documents.add_line(doc.id, actor_id, product.id, 3, destination_location_id=loc_a.id)
        assert third.line_no == 3

    def test_invalid_line_is_not_stored(self, documents, warehouse, product, loc_a, actor_id):
        doc = documents.create_document(DocumentType.TRANSFER, warehouse.id, actor_id)
        with pytest.raises(InvalidLineError):
            documents.add_line(
                doc.id, actor_id, product.id, 3,
                source_location_id=loc_a.id, destination_location_id=loc_a.id,
            )
        assert documents.get_document(doc.id).lines == ()

    def test_invalid_edit_keeps_old_values(self, documents, warehouse, product, loc_a, actor_id):
        doc = documents.create_document(DocumentType.RECEIPT, warehouse.id, actor_id)
        line = documents.add_line(doc.id, actor_id, product.id, 5, destination_location_id=loc_a.id)
        with pytest.raises(InvalidLineError):
            documents.edit_line(doc.id, line.id, actor_id, quantity=-1)
        assert documents.get_document(doc.id).lines[0].quantity == 5

    def test_zero_adjustment_line_rejected(self, documents, warehouse, product, loc_a, actor_id):
        doc = documents.create_document(DocumentType.ADJUSTMENT, warehouse.id, actor_id)
        with pytest.raises(NoOpLineError):
            documents.add_line(doc.id, actor_id, product.id, 0, destination_location_id=loc_a.id)

    def test_issue_line_accepted_without_stock(self, documents, warehouse, product, loc_a, actor_id):
        doc = documents.create_document(DocumentType.ISSUE, warehouse.id, actor_id)
        line = documents.add_line(doc.id, actor_id, product.id, 100, source_location_id=loc_a.id)
        assert line.quantity == 100

    def test_scanned_line_resolves_ean_and_barcode(
        self, documents, warehouse, product, loc_a, actor_id
    ):
        doc = documents.create_document(DocumentType.RECEIPT, warehouse.id, actor_id)
        line = documents.add_scanned_line(
            doc.id, actor_id, "5901234123457", 2, destination_barcode=" wh1-01-01-01 "
        )
        assert line.product_id == product.id
        assert line.destination_location_id == loc_a.id

    def test_scanned_line_falls_back_to_sku(self, documents, warehouse, product, loc_a, actor_id):
        doc = documents.create_document(DocumentType.RECEIPT, warehouse.id, actor_id)
        line = documents.add_scanned_line(
            doc.id, actor_id, "sku-001", 2, destination_barcode="WH1-01-01-01"
        )
        assert line.product_id == product.id

    def test_scanned_unknown_code(self, documents, warehouse, actor_id):
        doc = documents.create_document(DocumentType.RECEIPT, warehouse.id, actor_id)
        with pytest.raises(ProductNotFoundError):
            documents.add_scanned_line(doc.id, actor_id, "0000000000000", 1)

    def test_unknown_document_and_line(self, documents, warehouse, actor_id):
        with pytest.raises(DocumentNotFoundError):
            documents.get_document(uuid4())
        doc = documents.create_document(DocumentType.RECEIPT, warehouse.id, actor_id)
        with pytest.raises(DocumentLineNotFoundError):
            documents.remove_line(doc.id, uuid4(), actor_id)


class TestConfirm:
    def test_confirm_receipt_updates_stock(
        self, documents, ledger, warehouse, product, loc_a, actor_id, clock
    ):
        doc = documents.create_document(DocumentType.RECEIPT, warehouse.id, actor_id)
        documents.add_line(doc.id, actor_id, product.id, 10, destination_location_id=loc_a.id)

        result = documents.confirm(doc.id, actor_id)

        assert result.document.status == DocumentStatus.CONFIRMED
        assert result.document.confirmed_by_id == actor_id
        assert result.document.confirmed_at is not None
        assert ledger.get_quantity(product.id, loc_a.id) == 10
        assert result.ledger.quantity_after(product.id, loc_a.id) == 10

    def test_transfer_moves_stock(self, documents, ledger, receive, warehouse, product, loc_a, loc_b, actor_id):
        receive(product, loc_a, 10)
        doc = documents.create_document(DocumentType.TRANSFER, warehouse.id, actor_id)
        documents.add_line(
            doc.id, actor_id, product.id, 4,
            source_location_id=loc_a.id, destination_location_id=loc_b.id,
        )
        documents.confirm(doc.id, actor_id)
        assert ledger.get_quantity(product.id, loc_a.id) == 6
        assert ledger.get_quantity(product.id, loc_b.id) == 4

    def test_empty_document_rejected(self, documents, warehouse, actor_id):
        doc = documents.create_document(DocumentType.RECEIPT, warehouse.id, actor_id)
        with pytest.raises(EmptyDocumentError):
            documents.confirm(doc.id, actor_id)
        assert documents.get_document(doc.id).status == DocumentStatus.DRAFT

    def test_reconfirm_rejected(self, documents, receive, product, loc_a, actor_id):
        result = receive(product, loc_a, 1)
        with pytest.raises(InvalidTransitionError):
            documents.confirm(result.document.id, actor_id)

    def test_insufficient_stock_leaves_everything_unchanged(
        self, session, documents, ledger, receive, warehouse, product, other_product,
        loc_a, actor_id,
    ):
        receive(product, loc_a, 5)
        receive(other_product, loc_a, 1)
        doc = documents.create_document(DocumentType.ISSUE, warehouse.id, actor_id)
        documents.add_line(doc.id, actor_id, product.id, 3, source_location_id=loc_a.id)
        documents.add_line(doc.id, actor_id, other_product.id, 2, source_location_id=loc_a.id)
        movement_count = len(session.execute(select(StockMovement)).scalars().all())

        with pytest.raises(InsufficientStockError):
            documents.confirm(doc.id, actor_id)

        assert documents.get_document(doc.id).status == DocumentStatus.DRAFT
        assert ledger.get_quantity(product.id, loc_a.id) == 5
        assert ledger.get_quantity(other_product.id, loc_a.id) == 1
        assert len(session.execute(select(StockMovement)).scalars().all()) == movement_count

    def test_lines_netted_across_document(self, documents, ledger, receive, warehouse, product, loc_a, actor_id):
        receive(product, loc_a, 2)
        doc = documents.create_document(DocumentType.ADJUSTMENT, warehouse.id, actor_id)
        documents.add_line(doc.id, actor_id, product.id, -3, source_location_id=loc_a.id)
        documents.add_line(doc.id, actor_id, product.id, 5, destination_location_id=loc_a.id)
        result = documents.confirm(doc.id, actor_id)
        assert len(result.ledger.changes) == 1
        assert ledger.get_quantity(product.id, loc_a.id) == 4

    def test_reference_changes_after_editing_are_caught_at_confirm(
        self, documents, catalog, warehouse, product, loc_a, actor_id
    ):
        doc = documents.create_document(DocumentType.RECEIPT, warehouse.id, actor_id)
        documents.add_line(doc.id, actor_id, product.id, 5, destination_location_id=loc_a.id)
        catalog.set_location_status(loc_a.id, LocationStatus.BLOCKED, actor_id, reason="damaged rack")

        with pytest.raises(InvalidLineError, match="BLOCKED"):
            documents.confirm(doc.id, actor_id)
        assert documents.get_document(doc.id).status == DocumentStatus.DRAFT

    def test_confirmed_document_lines_cannot_change(self, documents, receive, product, loc_a, actor_id):
        result = receive(product, loc_a, 5)
        doc = result.document
        with pytest.raises(InvalidTransitionError):
            documents.add_line(doc.id, actor_id, product.id, 1, destination_location_id=loc_a.id)
        with pytest.raises(InvalidTransitionError):
            documents.edit_line(doc.id, doc.lines[0].id, actor_id, quantity=9)
        with pytest.raises(InvalidTransitionError):
            documents.remove_line(doc.id, doc.lines[0].id, actor_id)


class TestCancel:
    def test_cancel_draft_has_no_ledger_effect(self, session, documents, warehouse, product, loc_a, actor_id):
        doc = documents.create_document(DocumentType.RECEIPT, warehouse.id, actor_id)
        documents.add_line(doc.id, actor_id, product.id, 5, destination_location_id=loc_a.id)

        result = documents.cancel(doc.id, actor_id, reason="entered twice")

        assert result.ledger is None
        assert result.document.status == DocumentStatus.CANCELLED
        assert result.document.cancel_reason == "entered twice"
        assert session.execute(select(StockMovement)).first() is None

    def test_cancel_confirmed_receipt_restores_stock(
        self, documents, ledger, receive, product, loc_a, actor_id
    ):
        receipt = receive(product, loc_a, 10)

        result = documents.cancel(receipt.document.id, actor_id)

        assert result.document.status == DocumentStatus.CANCELLED
        assert result.ledger.kind == MovementKind.REVERSAL
        assert ledger.get_quantity(product.id, loc_a.id) == 0
        reversals = ledger.movements_for_document(receipt.document.id, MovementKind.REVERSAL)
        assert [m.delta for m in reversals] == [-10]

    def test_cancel_conflict_when_stock_consumed(
        self, documents, ledger, receive, warehouse, product, loc_a, actor_id
    ):
        receipt = receive(product, loc_a, 10)
        issue = documents.create_document(DocumentType.ISSUE, warehouse.id, actor_id)
        documents.add_line(issue.id, actor_id, product.id, 6, source_location_id=loc_a.id)
        documents.confirm(issue.id, actor_id)

        with pytest.raises(CancellationConflictError) as exc_info:
            documents.cancel(receipt.document.id, actor_id)

        assert exc_info.value.requested == 10
        assert exc_info.value.available == 4
        assert documents.get_document(receipt.document.id).status == DocumentStatus.CONFIRMED
        assert ledger.get_quantity(product.id, loc_a.id) == 4

    def test_cancel_issue_returns_stock(self, documents, ledger, receive, warehouse, product, loc_a, actor_id):
        receive(product, loc_a, 10)
        issue = documents.create_document(DocumentType.ISSUE, warehouse.id, actor_id)
        documents.add_line(issue.id, actor_id, product.id, 6, source_location_id=loc_a.id)
        documents.confirm(issue.id, actor_id)

        documents.cancel(issue.id, actor_id)
        assert ledger.get_quantity(product.id, loc_a.id) == 10

    def test_cancel_twice_rejected(self, documents, receive, product, loc_a, actor_id):
        receipt = receive(product, loc_a, 1)
        documents.cancel(receipt.document.id, actor_id)
        with pytest.raises(InvalidTransitionError):
            documents.cancel(receipt.document.id, actor_id)

    def test_cancelled_document_cannot_be_confirmed(self, documents, warehouse, product, loc_a, actor_id):
        doc = documents.create_document(DocumentType.RECEIPT, warehouse.id, actor_id)
        documents.add_line(doc.id, actor_id, product.id, 1, destination_location_id=loc_a.id)
        documents.cancel(doc.id, actor_id)
        with pytest.raises(InvalidTransitionError):
            documents.confirm(doc.id, actor_id)

    def test_ledger_consistent_after_cancel(self, documents, ledger, receive, product, loc_a, actor_id):
        receipt = receive(product, loc_a, 7)
        documents.cancel(receipt.document.id, actor_id)
        assert ledger.verify_integrity() == []
