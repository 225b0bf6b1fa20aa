"""
DocumentService -- the movement document state machine.

Responsibility:
    Creates DRAFT documents, edits their lines, confirms them into the
    stock ledger and cancels them (with compensating movements when they
    were already confirmed).

Architecture position:
    Kernel > Services -- imperative shell around the pure resolver
    (domain/movement.py) and the StockLedger.  CountService generates its
    ADJUSTMENT documents through this service.

State machine:
    DRAFT --confirm--> CONFIRMED --cancel (compensate)--> CANCELLED
    DRAFT --cancel--> CANCELLED
    Everything else raises InvalidTransitionError.

Invariants enforced:
    Document immutability -- line operations are legal only in DRAFT; CONFIRMED documents change
          only to CANCELLED (also enforced by db/immutability.py).
    Line validity -- lines are validated on add/edit and the whole document is
          re-resolved at confirmation against current reference data.
    Atomicity -- resolve, ledger apply and status change run in one
          savepoint; a failure leaves the document DRAFT and the ledger
          untouched.

Failure modes:
    - InvalidTransitionError, EmptyDocumentError, InvalidLineError,
      NoOpLineError, InsufficientStockError, CancellationConflictError.
    - Audit store failures do not abort the operation; they are collected
      by the AuditRecorder (see services/auditor_service.py).
"""

from collections.abc import Mapping
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from warehouse_kernel.domain.clock import Clock, SystemClock
from warehouse_kernel.domain.movement import line_deltas, resolve_movements
from warehouse_kernel.domain.values import (
    ConfirmResult,
    DocumentLineSnapshot,
    DocumentSnapshot,
    DocumentStatus,
    DocumentType,
    LedgerDelta,
    LineSpec,
    MovementKind,
)
from warehouse_kernel.exceptions import (
    CancellationConflictError,
    DocumentLineNotFoundError,
    DocumentNotFoundError,
    EmptyDocumentError,
    InsufficientStockError,
    InvalidTransitionError,
    WarehouseKernelError,
)
from warehouse_kernel.logging_config import LogContext, get_logger
from warehouse_kernel.models.audit_record import AuditAction
from warehouse_kernel.models.document import Document, DocumentLine
from warehouse_kernel.services.auditor_service import AuditRecorder
from warehouse_kernel.services.catalog_service import CatalogService
from warehouse_kernel.services.ledger_service import StockLedger
from warehouse_kernel.services.sequence_service import SequenceService

logger = get_logger("services.documents")

DEFAULT_NUMBER_PREFIXES: dict[DocumentType, str] = {
    DocumentType.RECEIPT: "RCV",
    DocumentType.ISSUE: "ISS",
    DocumentType.TRANSFER: "TRF",
    DocumentType.ADJUSTMENT: "ADJ",
}

_UNCHANGED = object()


def _line_state(line: DocumentLine) -> dict:
    return {
        "line_no": line.line_no,
        "product_id": line.product_id,
        "source_location_id": line.source_location_id,
        "destination_location_id": line.destination_location_id,
        "quantity": line.quantity,
    }


class DocumentService:
    """
    Movement document lifecycle.

    Contract:
        Every public operation loads the document with a row lock, so
        concurrent confirm/cancel of the same document serialise.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT check permissions (see warehouse_services.access).
    """

    def __init__(
        self,
        session: Session,
        auditor: AuditRecorder,
        ledger: StockLedger | None = None,
        catalog: CatalogService | None = None,
        clock: Clock | None = None,
        number_prefixes: Mapping[DocumentType, str] | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._auditor = auditor
        self._ledger = ledger or StockLedger(session, self._clock)
        self._catalog = catalog or CatalogService(session, auditor)
        self._sequences = SequenceService(session)
        self._prefixes = {**DEFAULT_NUMBER_PREFIXES, **(number_prefixes or {})}

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load(self, document_id: UUID, lock: bool = True) -> Document:
        stmt = select(Document).where(Document.id == document_id)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        document = self._session.execute(stmt).scalar_one_or_none()
        if document is None:
            raise DocumentNotFoundError(str(document_id))
        return document

    @staticmethod
    def _require_draft(document: Document, operation: str) -> None:
        if document.status != DocumentStatus.DRAFT:
            raise InvalidTransitionError(
                "Document", str(document.id), document.status.value, operation
            )

    def _find_line(self, document: Document, line_id: UUID) -> DocumentLine:
        line = self._session.get(DocumentLine, line_id)
        if line is None or line.document_id != document.id:
            raise DocumentLineNotFoundError(str(document.id), str(line_id))
        return line

    def _line_spec(
        self,
        line_no: int,
        product_id: UUID | None,
        quantity,
        source_location_id: UUID | None,
        destination_location_id: UUID | None,
        line_id: UUID | None = None,
    ) -> LineSpec:
        products = self._catalog.product_refs([product_id])
        locations = self._catalog.location_refs([source_location_id, destination_location_id])
        return LineSpec(
            line_no=line_no,
            line_id=line_id,
            product_id=product_id,
            product=products.get(product_id),
            quantity=quantity,
            source_location_id=source_location_id,
            source=locations.get(source_location_id),
            destination_location_id=destination_location_id,
            destination=locations.get(destination_location_id),
        )

    def _specs_for(self, document: Document) -> list[LineSpec]:
        lines = list(document.lines)
        products = self._catalog.product_refs(line.product_id for line in lines)
        locations = self._catalog.location_refs(
            loc_id
            for line in lines
            for loc_id in (line.source_location_id, line.destination_location_id)
        )
        return [
            LineSpec(
                line_no=line.line_no,
                line_id=line.id,
                product_id=line.product_id,
                product=products.get(line.product_id),
                quantity=line.quantity,
                source_location_id=line.source_location_id,
                source=locations.get(line.source_location_id),
                destination_location_id=line.destination_location_id,
                destination=locations.get(line.destination_location_id),
            )
            for line in lines
        ]

    def _refresh_lines(self, document: Document) -> None:
        self._session.flush()
        self._session.expire(document, ["lines"])

    # ------------------------------------------------------------------
    # Creation and reads
    # ------------------------------------------------------------------

    def get_document(self, document_id: UUID) -> DocumentSnapshot:
        return self._load(document_id, lock=False).to_snapshot()

    def create_document(
        self,
        document_type: DocumentType,
        warehouse_id: UUID,
        actor_id: UUID,
        reference_no: str | None = None,
        notes: str | None = None,
        source_count_id: UUID | None = None,
    ) -> DocumentSnapshot:
        """Create an empty DRAFT document with the next number for its type/year."""
        document_type = DocumentType(document_type)
        warehouse = self._catalog.get_warehouse(warehouse_id)
        year = self._clock.now().year
        number = self._sequences.next_number(
            self._prefixes[document_type], document_type.value, year
        )

        document = Document(
            number=number,
            document_type=document_type,
            status=DocumentStatus.DRAFT,
            warehouse_id=warehouse.id,
            reference_no=reference_no,
            notes=notes,
            source_count_id=source_count_id,
            created_by_id=actor_id,
        )
        self._session.add(document)
        self._session.flush()

        self._auditor.record(
            AuditAction.DOCUMENT_CREATED,
            entity_type="Document",
            entity_id=document.id,
            actor_id=actor_id,
            after={
                "number": number,
                "type": document_type,
                "status": DocumentStatus.DRAFT,
                "warehouse_id": warehouse.id,
            },
            document_id=document.id,
        )
        logger.info(
            "document_created",
            extra={"document_id": str(document.id), "number": number, "type": document_type.value},
        )
        return document.to_snapshot()

    # ------------------------------------------------------------------
    # Line operations (DRAFT only)
    # ------------------------------------------------------------------

    def add_line(
        self,
        document_id: UUID,
        actor_id: UUID,
        product_id: UUID,
        quantity: int,
        source_location_id: UUID | None = None,
        destination_location_id: UUID | None = None,
    ) -> DocumentLineSnapshot:
        """
        Append a validated line to a DRAFT document.

        Stock availability is NOT checked here; it is checked at confirm.
        """
        document = self._load(document_id)
        self._require_draft(document, "add line to")

        next_no = (
            self._session.execute(
                select(func.max(DocumentLine.line_no)).where(
                    DocumentLine.document_id == document.id
                )
            ).scalar()
            or 0
        ) + 1
        spec = self._line_spec(
            next_no, product_id, quantity, source_location_id, destination_location_id
        )
        line_deltas(document.document_type, document.warehouse_id, spec)

        line = DocumentLine(
            document_id=document.id,
            line_no=next_no,
            product_id=product_id,
            source_location_id=source_location_id,
            destination_location_id=destination_location_id,
            quantity=quantity,
            created_by_id=actor_id,
        )
        self._session.add(line)
        self._refresh_lines(document)

        self._auditor.record(
            AuditAction.DOCUMENT_LINE_ADDED,
            entity_type="DocumentLine",
            entity_id=line.id,
            actor_id=actor_id,
            after=_line_state(line),
            product_id=product_id,
            document_id=document.id,
        )
        return line.to_snapshot()

    def add_scanned_line(
        self,
        document_id: UUID,
        actor_id: UUID,
        product_code: str,
        quantity: int,
        source_barcode: str | None = None,
        destination_barcode: str | None = None,
    ) -> DocumentLineSnapshot:
        """Add a line from scanner input: EAN/SKU and location barcodes."""
        product = self._catalog.find_product_by_code(product_code)
        source = (
            self._catalog.find_location_by_barcode(source_barcode) if source_barcode else None
        )
        destination = (
            self._catalog.find_location_by_barcode(destination_barcode)
            if destination_barcode
            else None
        )
        return self.add_line(
            document_id,
            actor_id,
            product.id,
            quantity,
            source_location_id=source.id if source else None,
            destination_location_id=destination.id if destination else None,
        )

    def edit_line(
        self,
        document_id: UUID,
        line_id: UUID,
        actor_id: UUID,
        *,
        product_id=_UNCHANGED,
        quantity=_UNCHANGED,
        source_location_id=_UNCHANGED,
        destination_location_id=_UNCHANGED,
    ) -> DocumentLineSnapshot:
        """Change fields of a line on a DRAFT document; omitted fields are kept."""
        document = self._load(document_id)
        self._require_draft(document, "edit line of")
        line = self._find_line(document, line_id)
        before = _line_state(line)

        new_product = line.product_id if product_id is _UNCHANGED else product_id
        new_qty = line.quantity if quantity is _UNCHANGED else quantity
        new_src = line.source_location_id if source_location_id is _UNCHANGED else source_location_id
        new_dest = (
            line.destination_location_id
            if destination_location_id is _UNCHANGED
            else destination_location_id
        )

        spec = self._line_spec(line.line_no, new_product, new_qty, new_src, new_dest, line.id)
        line_deltas(document.document_type, document.warehouse_id, spec)

        line.product_id = new_product
        line.quantity = new_qty
        line.source_location_id = new_src
        line.destination_location_id = new_dest
        line.updated_by_id = actor_id
        self._refresh_lines(document)

        self._auditor.record(
            AuditAction.DOCUMENT_LINE_UPDATED,
            entity_type="DocumentLine",
            entity_id=line.id,
            actor_id=actor_id,
            before=before,
            after=_line_state(line),
            product_id=line.product_id,
            document_id=document.id,
        )
        return line.to_snapshot()

    def remove_line(self, document_id: UUID, line_id: UUID, actor_id: UUID) -> None:
        document = self._load(document_id)
        self._require_draft(document, "remove line from")
        line = self._find_line(document, line_id)
        before = _line_state(line)

        self._session.delete(line)
        self._refresh_lines(document)

        self._auditor.record(
            AuditAction.DOCUMENT_LINE_REMOVED,
            entity_type="DocumentLine",
            entity_id=line_id,
            actor_id=actor_id,
            before=before,
            product_id=before["product_id"],
            document_id=document.id,
        )

    # ------------------------------------------------------------------
    # Confirmation
    # ------------------------------------------------------------------

    def confirm(self, document_id: UUID, actor_id: UUID) -> ConfirmResult:
        """
        Confirm a DRAFT document into the stock ledger.

        Resolve, apply and status change are one savepoint: on any failure
        the document stays DRAFT and no stock row changes.
        """
        with LogContext.bind(document_id=document_id, actor_id=actor_id):
            document = self._load(document_id)
            self._require_draft(document, "confirm")
            if not document.lines:
                raise EmptyDocumentError(str(document.id))

            try:
                with self._session.begin_nested():
                    plan = resolve_movements(
                        document.document_type, document.warehouse_id, self._specs_for(document)
                    )
                    ledger_result = self._ledger.apply_deltas(
                        plan.deltas,
                        actor_id=actor_id,
                        document_id=document.id,
                        kind=MovementKind.APPLY,
                    )
                    document.status = DocumentStatus.CONFIRMED
                    document.confirmed_at = self._clock.now()
                    document.confirmed_by_id = actor_id
                    document.updated_by_id = actor_id
                    self._session.flush()
            except WarehouseKernelError as exc:
                logger.warning(
                    "document_confirm_rejected",
                    extra={"error_code": exc.code, "number": document.number},
                )
                raise

            self._auditor.record_stock_changes(ledger_result, document.document_type, actor_id)
            self._auditor.record(
                AuditAction.DOCUMENT_CONFIRMED,
                entity_type="Document",
                entity_id=document.id,
                actor_id=actor_id,
                before={"status": DocumentStatus.DRAFT},
                after={
                    "status": DocumentStatus.CONFIRMED,
                    "deltas": [
                        {
                            "product_id": c.product_id,
                            "location_id": c.location_id,
                            "delta": c.delta,
                        }
                        for c in ledger_result.changes
                    ],
                },
                document_id=document.id,
            )
            logger.info(
                "document_confirmed",
                extra={
                    "number": document.number,
                    "type": document.document_type.value,
                    "row_count": len(ledger_result.changes),
                },
            )
            return ConfirmResult(document=document.to_snapshot(), ledger=ledger_result)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel(
        self,
        document_id: UUID,
        actor_id: UUID,
        reason: str | None = None,
    ) -> ConfirmResult:
        """
        Cancel a document.

        DRAFT: no ledger effect.  CONFIRMED: the exact inverse of the
        applied movements is applied as one batch; if that would drive any
        row negative the document stays CONFIRMED.  Adjustments generated
        by an inventory count are undone through the count's reopen.

        Raises:
            InvalidTransitionError, CancellationConflictError
        """
        return self._cancel(document_id, actor_id, reason, count_managed=False)

    def cancel_count_adjustment(
        self,
        document_id: UUID,
        actor_id: UUID,
        reason: str | None = None,
    ) -> ConfirmResult:
        """Cancel an ADJUSTMENT generated by an inventory count (used by reopen)."""
        return self._cancel(document_id, actor_id, reason, count_managed=True)

    def _cancel(
        self,
        document_id: UUID,
        actor_id: UUID,
        reason: str | None,
        count_managed: bool,
    ) -> ConfirmResult:
        with LogContext.bind(document_id=document_id, actor_id=actor_id):
            document = self._load(document_id)
            previous = document.status

            if previous == DocumentStatus.CANCELLED:
                raise InvalidTransitionError(
                    "Document", str(document.id), previous.value, "cancel"
                )
            if (
                previous == DocumentStatus.CONFIRMED
                and document.source_count_id is not None
                and not count_managed
            ):
                # Undone only by reopening the count that generated it
                raise InvalidTransitionError(
                    "Document", str(document.id), previous.value, "cancel count-generated"
                )

            ledger_result = None
            if previous == DocumentStatus.DRAFT:
                self._mark_cancelled(document, actor_id, reason)
            else:
                inverse = [
                    LedgerDelta(m.product_id, m.location_id, -m.delta)
                    for m in self._ledger.movements_for_document(document.id, MovementKind.APPLY)
                ]
                try:
                    with self._session.begin_nested():
                        ledger_result = self._ledger.apply_deltas(
                            inverse,
                            actor_id=actor_id,
                            document_id=document.id,
                            kind=MovementKind.REVERSAL,
                        )
                        self._mark_cancelled(document, actor_id, reason)
                except InsufficientStockError as exc:
                    logger.warning(
                        "document_cancel_conflict",
                        extra={
                            "number": document.number,
                            "product_id": exc.product_id,
                            "location_id": exc.location_id,
                            "requested": exc.requested,
                            "available": exc.available,
                        },
                    )
                    raise CancellationConflictError(
                        str(document.id),
                        exc.product_id,
                        exc.location_id,
                        exc.requested,
                        exc.available,
                    ) from exc
                self._auditor.record_stock_changes(ledger_result, document.document_type, actor_id)

            self._auditor.record(
                AuditAction.DOCUMENT_CANCELLED,
                entity_type="Document",
                entity_id=document.id,
                actor_id=actor_id,
                before={"status": previous},
                after={"status": DocumentStatus.CANCELLED, "reason": reason},
                document_id=document.id,
            )
            logger.info(
                "document_cancelled",
                extra={
                    "number": document.number,
                    "from_status": previous.value,
                    "compensated": ledger_result is not None,
                },
            )
            return ConfirmResult(document=document.to_snapshot(), ledger=ledger_result)

    def _mark_cancelled(self, document: Document, actor_id: UUID, reason: str | None) -> None:
        document.status = DocumentStatus.CANCELLED
        document.cancelled_at = self._clock.now()
        document.cancelled_by_id = actor_id
        document.cancel_reason = reason
        document.updated_by_id = actor_id
        self._session.flush()
