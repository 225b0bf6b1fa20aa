"""
CountService -- inventory count reconciliation.

Responsibility:
    Runs physical stocktakes: opens a count (optionally freezing its
    locations), records counted quantities, and on completion turns the
    differences between counted and ledger quantities into ONE ADJUSTMENT
    document confirmed through DocumentService.  A completed count can be
    reopened, which cancels that adjustment through the normal
    compensation path.

Architecture position:
    Kernel > Services -- orchestrates DocumentService and StockLedger; never
    writes stock rows itself.

State machine:
    OPEN --complete--> COMPLETED --reopen--> OPEN
    OPEN --cancel--> CANCELLED

Invariants enforced:
    - Adjustments use the same resolver/ledger path as every other document,
      so stock stays non-negative and fully backed by movements.
    - delta = counted - ledger, computed against LOCKED ledger rows.
    - Zero differences produce no lines; no differences produce no document.
    - Completion and reopen are single savepoints: on failure the count
      keeps its previous status and nothing else changes.

Failure modes:
    - InvalidTransitionError, EmptyCountError, CountNotFoundError.
    - InvalidLineError for negative/non-integer counts or out-of-scope
      locations.
    - CancellationConflictError from reopen when the adjusted stock was
      consumed since completion.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from warehouse_kernel.domain.clock import Clock, SystemClock
from warehouse_kernel.domain.values import (
    ConfirmResult,
    CountLineSnapshot,
    CountSnapshot,
    CountStatus,
    DocumentType,
    LocationStatus,
    StockKey,
    is_strict_int,
)
from warehouse_kernel.exceptions import (
    CountNotFoundError,
    EmptyCountError,
    InvalidLineError,
    InvalidTransitionError,
    LocationNotFoundError,
    ProductNotFoundError,
)
from warehouse_kernel.logging_config import LogContext, get_logger
from warehouse_kernel.models.audit_record import AuditAction
from warehouse_kernel.models.catalog import Location, Product
from warehouse_kernel.models.inventory_count import CountLine, InventoryCount
from warehouse_kernel.services.auditor_service import AuditRecorder
from warehouse_kernel.services.catalog_service import CatalogService
from warehouse_kernel.services.document_service import DocumentService
from warehouse_kernel.services.ledger_service import StockLedger
from warehouse_kernel.services.sequence_service import SequenceService

logger = get_logger("services.counts")


@dataclass(frozen=True)
class CountCompletion:
    """Result of completing a count."""

    count: CountSnapshot
    adjustment: ConfirmResult | None

    @property
    def has_adjustment(self) -> bool:
        return self.adjustment is not None


class CountService:
    """
    Inventory count reconciler.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(
        self,
        session: Session,
        documents: DocumentService,
        auditor: AuditRecorder,
        ledger: StockLedger | None = None,
        catalog: CatalogService | None = None,
        clock: Clock | None = None,
        freeze_locations: bool = True,
        number_prefix: str = "INV",
    ):
        self._session = session
        self._documents = documents
        self._auditor = auditor
        self._clock = clock or SystemClock()
        self._ledger = ledger or StockLedger(session, self._clock)
        self._catalog = catalog or CatalogService(session, auditor)
        self._sequences = SequenceService(session)
        self._freeze_locations = freeze_locations
        self._number_prefix = number_prefix

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load(self, count_id: UUID, lock: bool = True) -> InventoryCount:
        stmt = select(InventoryCount).where(InventoryCount.id == count_id)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        count = self._session.execute(stmt).scalar_one_or_none()
        if count is None:
            raise CountNotFoundError(str(count_id))
        return count

    @staticmethod
    def _require(count: InventoryCount, status: CountStatus, operation: str) -> None:
        if count.status != status:
            raise InvalidTransitionError(
                "InventoryCount", str(count.id), count.status.value, operation
            )

    def _freeze(self, count: InventoryCount) -> None:
        if not self._freeze_locations:
            return
        frozen = []
        for location_id in count.scope:
            location = self._session.get(Location, location_id)
            if location is not None and location.status == LocationStatus.ACTIVE:
                location.status = LocationStatus.COUNTING
                frozen.append(str(location_id))
        count.frozen_location_ids = frozen
        self._session.flush()

    def _release(self, count: InventoryCount) -> None:
        for value in count.frozen_location_ids or ():
            location = self._session.get(Location, UUID(value))
            if location is not None and location.status == LocationStatus.COUNTING:
                location.status = LocationStatus.ACTIVE
        count.frozen_location_ids = []
        self._session.flush()

    def _refresh_lines(self, count: InventoryCount) -> None:
        self._session.flush()
        self._session.expire(count, ["lines"])

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def get_count(self, count_id: UUID) -> CountSnapshot:
        return self._load(count_id, lock=False).to_snapshot()

    def start_count(
        self,
        warehouse_id: UUID,
        actor_id: UUID,
        name: str | None = None,
        location_ids: list[UUID] | None = None,
    ) -> CountSnapshot:
        """
        Open a count for a warehouse.

        With ``location_ids`` the count is scoped to those locations and,
        when freezing is enabled, the ACTIVE ones switch to COUNTING so no
        document can move stock through them until the count ends.
        """
        warehouse = self._catalog.get_warehouse(warehouse_id)

        scope: list[str] = []
        for location_id in dict.fromkeys(location_ids or ()):
            location = self._session.get(Location, location_id)
            if location is None or location.warehouse_id != warehouse.id:
                raise LocationNotFoundError(str(location_id))
            scope.append(str(location_id))

        number = self._sequences.next_number(
            self._number_prefix, "COUNT", self._clock.now().year
        )
        count = InventoryCount(
            number=number,
            name=name,
            warehouse_id=warehouse.id,
            status=CountStatus.OPEN,
            location_ids=scope,
            frozen_location_ids=[],
            created_by_id=actor_id,
        )
        self._session.add(count)
        self._session.flush()
        self._freeze(count)

        self._auditor.record(
            AuditAction.COUNT_STARTED,
            entity_type="InventoryCount",
            entity_id=count.id,
            actor_id=actor_id,
            after={
                "number": number,
                "status": CountStatus.OPEN,
                "location_ids": scope,
                "frozen_location_ids": count.frozen_location_ids,
            },
        )
        logger.info(
            "count_started",
            extra={"count_id": str(count.id), "number": number, "scope_size": len(scope)},
        )
        return count.to_snapshot()

    def record_count(
        self,
        count_id: UUID,
        product_id: UUID,
        location_id: UUID,
        counted_qty: int,
        actor_id: UUID,
    ) -> CountLineSnapshot:
        """
        Record the counted quantity of a product at a location.

        Recording the same (product, location) again replaces the earlier
        value: last write wins.
        """
        count = self._load(count_id)
        self._require(count, CountStatus.OPEN, "record line in")

        if not is_strict_int(counted_qty) or counted_qty < 0:
            raise InvalidLineError("counted quantity must be a non-negative integer")

        product = self._session.get(Product, product_id)
        if product is None or not product.is_active:
            raise ProductNotFoundError(str(product_id))

        location = self._session.get(Location, location_id)
        if location is None or location.warehouse_id != count.warehouse_id:
            raise LocationNotFoundError(str(location_id))
        if count.location_ids and str(location_id) not in count.location_ids:
            raise InvalidLineError(f"location {location.barcode} is outside the count scope")
        frozen_here = str(location_id) in (count.frozen_location_ids or ())
        if location.status != LocationStatus.ACTIVE and not frozen_here:
            raise InvalidLineError(
                f"location {location.barcode} is {location.status.value}"
            )

        system_qty = self._ledger.get_quantity(product_id, location_id)
        now = self._clock.now()

        line = self._session.execute(
            select(CountLine).where(
                CountLine.count_id == count.id,
                CountLine.product_id == product_id,
                CountLine.location_id == location_id,
            )
        ).scalar_one_or_none()

        before = None
        if line is None:
            line = CountLine(
                count_id=count.id,
                product_id=product_id,
                location_id=location_id,
                counted_qty=counted_qty,
                system_qty=system_qty,
                counted_by_id=actor_id,
                counted_at=now,
            )
            self._session.add(line)
        else:
            before = {"counted_qty": line.counted_qty, "system_qty": line.system_qty}
            line.counted_qty = counted_qty
            line.system_qty = system_qty
            line.counted_by_id = actor_id
            line.counted_at = now
        self._refresh_lines(count)

        self._auditor.record(
            AuditAction.COUNT_LINE_RECORDED,
            entity_type="InventoryCount",
            entity_id=count.id,
            actor_id=actor_id,
            before=before,
            after={"counted_qty": counted_qty, "system_qty": system_qty},
            product_id=product_id,
            location_id=location_id,
        )
        return line.to_snapshot()

    def remove_count_line(self, count_id: UUID, line_id: UUID, actor_id: UUID) -> None:
        count = self._load(count_id)
        self._require(count, CountStatus.OPEN, "remove line from")
        line = self._session.get(CountLine, line_id)
        if line is None or line.count_id != count.id:
            raise InvalidLineError(f"count line {line_id} not found on count {count.number}")

        before = {"counted_qty": line.counted_qty, "system_qty": line.system_qty}
        product_id, location_id = line.product_id, line.location_id
        self._session.delete(line)
        self._refresh_lines(count)

        self._auditor.record(
            AuditAction.COUNT_LINE_REMOVED,
            entity_type="InventoryCount",
            entity_id=count.id,
            actor_id=actor_id,
            before=before,
            product_id=product_id,
            location_id=location_id,
        )

    def complete_count(self, count_id: UUID, actor_id: UUID) -> CountCompletion:
        """
        Reconcile the count against the ledger.

        Differences are computed against locked ledger rows and packaged as
        one ADJUSTMENT document confirmed in the same savepoint.  When every
        line matches, the count completes without a document.
        """
        with LogContext.bind(count_id=count_id, actor_id=actor_id):
            count = self._load(count_id)
            self._require(count, CountStatus.OPEN, "complete")
            lines = list(count.lines)
            if not lines:
                raise EmptyCountError(str(count.id))

            adjustment = None
            with self._session.begin_nested():
                self._release(count)

                ledger_qty = self._ledger.lock_quantities(
                    StockKey(line.product_id, line.location_id) for line in lines
                )
                differences = [
                    (line, line.counted_qty - ledger_qty[StockKey(line.product_id, line.location_id)])
                    for line in lines
                ]
                differences = [(line, delta) for line, delta in differences if delta != 0]

                if differences:
                    document = self._documents.create_document(
                        DocumentType.ADJUSTMENT,
                        count.warehouse_id,
                        actor_id,
                        reference_no=count.number,
                        notes=f"Inventory count {count.number}",
                        source_count_id=count.id,
                    )
                    for line, delta in differences:
                        self._documents.add_line(
                            document.id,
                            actor_id,
                            line.product_id,
                            delta,
                            destination_location_id=line.location_id,
                        )
                    adjustment = self._documents.confirm(document.id, actor_id)
                    count.adjustment_document_id = document.id

                count.status = CountStatus.COMPLETED
                count.completed_at = self._clock.now()
                count.completed_by_id = actor_id
                count.updated_by_id = actor_id
                self._session.flush()

            self._auditor.record(
                AuditAction.COUNT_COMPLETED,
                entity_type="InventoryCount",
                entity_id=count.id,
                actor_id=actor_id,
                before={"status": CountStatus.OPEN},
                after={
                    "status": CountStatus.COMPLETED,
                    "adjustment_document_id": count.adjustment_document_id,
                    "difference_count": len(differences),
                },
                document_id=count.adjustment_document_id,
            )
            logger.info(
                "count_completed",
                extra={
                    "number": count.number,
                    "line_count": len(lines),
                    "difference_count": len(differences),
                },
            )
            return CountCompletion(count=count.to_snapshot(), adjustment=adjustment)

    def reopen_count(self, count_id: UUID, actor_id: UUID) -> CountSnapshot:
        """
        Return a COMPLETED count to OPEN, undoing its adjustment.

        Raises:
            CancellationConflictError: the adjusted stock has been consumed;
                the count stays COMPLETED.
        """
        with LogContext.bind(count_id=count_id, actor_id=actor_id):
            count = self._load(count_id)
            self._require(count, CountStatus.COMPLETED, "reopen")
            cancelled_document_id = count.adjustment_document_id

            with self._session.begin_nested():
                if cancelled_document_id is not None:
                    self._documents.cancel_count_adjustment(
                        cancelled_document_id,
                        actor_id,
                        reason=f"Inventory count {count.number} reopened",
                    )
                count.status = CountStatus.OPEN
                count.adjustment_document_id = None
                count.completed_at = None
                count.completed_by_id = None
                count.updated_by_id = actor_id
                self._session.flush()
                self._freeze(count)

            self._auditor.record(
                AuditAction.COUNT_REOPENED,
                entity_type="InventoryCount",
                entity_id=count.id,
                actor_id=actor_id,
                before={
                    "status": CountStatus.COMPLETED,
                    "adjustment_document_id": cancelled_document_id,
                },
                after={"status": CountStatus.OPEN},
                document_id=cancelled_document_id,
            )
            logger.info("count_reopened", extra={"number": count.number})
            return count.to_snapshot()

    def cancel_count(self, count_id: UUID, actor_id: UUID) -> CountSnapshot:
        count = self._load(count_id)
        self._require(count, CountStatus.OPEN, "cancel")

        self._release(count)
        count.status = CountStatus.CANCELLED
        count.updated_by_id = actor_id
        self._session.flush()

        self._auditor.record(
            AuditAction.COUNT_CANCELLED,
            entity_type="InventoryCount",
            entity_id=count.id,
            actor_id=actor_id,
            before={"status": CountStatus.OPEN},
            after={"status": CountStatus.CANCELLED},
        )
        logger.info("count_cancelled", extra={"number": count.number})
        return count.to_snapshot()
