"""
StockLedger -- current on-hand quantity per (product, location).

Responsibility:
    Owns every mutation of ``stock_rows``.  All changes go through a single
    batch operation, ``apply_deltas()``, which is all-or-nothing across
    however many rows the batch touches.

Architecture position:
    Kernel > Services -- called by DocumentService (confirm / cancel) and
    CountService (locked reads at completion).

Invariants enforced:
    Non-negative stock -- no row ever goes negative: every resulting quantity is evaluated
          under row locks BEFORE any row is touched.
    Movement completeness -- each applied delta writes one StockMovement, so
          sum(movements.delta) == stock_rows.quantity per pair
          (checked by ``verify_integrity()``).
    Deadlock avoidance -- rows are locked in (product_id, location_id)
    order regardless of input order.

Failure modes:
    - InsufficientStockError(product_id, location_id, requested, available)
      for the first pair (in lock order) that would go negative.  Nothing
      has been mutated when it is raised.
    - IntegrityError on lazy row creation races, handled by savepoint
      rollback and re-read.

Concurrency:
    ``SELECT ... FOR UPDATE`` under READ COMMITTED.  Validation and
    application happen while the locks are held, so there is no
    read-then-write window.  Batches touching disjoint pairs do not block
    each other.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from warehouse_kernel.domain.clock import Clock, SystemClock
from warehouse_kernel.domain.movement import net_deltas
from warehouse_kernel.domain.values import (
    LedgerApplyResult,
    LedgerDelta,
    MovementKind,
    RowChange,
    StockKey,
)
from warehouse_kernel.exceptions import InsufficientStockError
from warehouse_kernel.logging_config import get_logger
from warehouse_kernel.models.stock import StockMovement, StockRow

logger = get_logger("services.ledger")


@dataclass(frozen=True)
class LedgerDiscrepancy:
    """A pair whose row disagrees with its movement history or is negative."""

    product_id: UUID
    location_id: UUID
    quantity: int
    movement_total: int


class StockLedger:
    """
    The stock ledger.

    Contract:
        ``apply_deltas()`` either applies every delta of the batch or none.
        Missing rows count as zero and are created lazily, after validation.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT know about documents beyond recording their id on
          movements.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_quantity(self, product_id: UUID, location_id: UUID) -> int:
        """Current quantity (0 if the pair has never held stock)."""
        qty = self._session.execute(
            select(StockRow.quantity).where(
                StockRow.product_id == product_id,
                StockRow.location_id == location_id,
            )
        ).scalar_one_or_none()
        return qty or 0

    def lock_quantities(self, keys: Iterable[StockKey]) -> dict[StockKey, int]:
        """Lock the rows for ``keys`` (in lock order) and return their quantities."""
        result: dict[StockKey, int] = {}
        for key in sorted(set(keys), key=StockKey.sort_key):
            row = self._lock_row(key)
            result[key] = row.quantity if row is not None else 0
        return result

    def movements_for_document(
        self,
        document_id: UUID,
        kind: MovementKind | None = None,
    ) -> list[StockMovement]:
        stmt = select(StockMovement).where(StockMovement.document_id == document_id)
        if kind is not None:
            stmt = stmt.where(StockMovement.kind == kind)
        return list(
            self._session.execute(stmt.order_by(StockMovement.created_at)).scalars()
        )

    # ------------------------------------------------------------------
    # Batch apply
    # ------------------------------------------------------------------

    def _lock_row(self, key: StockKey) -> StockRow | None:
        return self._session.execute(
            select(StockRow)
            .where(
                StockRow.product_id == key.product_id,
                StockRow.location_id == key.location_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _create_row(self, key: StockKey) -> StockRow:
        savepoint = self._session.begin_nested()
        try:
            row = StockRow(product_id=key.product_id, location_id=key.location_id, quantity=0)
            self._session.add(row)
            self._session.flush()
            savepoint.commit()
            return row
        except IntegrityError:
            # A concurrent transaction created the row first
            logger.debug(
                "stock_row_create_race_retry",
                extra={"product_id": str(key.product_id), "location_id": str(key.location_id)},
            )
            savepoint.rollback()
            row = self._lock_row(key)
            if row is None:
                raise
            return row

    def apply_deltas(
        self,
        deltas: Iterable[LedgerDelta],
        *,
        actor_id: UUID,
        document_id: UUID | None = None,
        kind: MovementKind = MovementKind.APPLY,
    ) -> LedgerApplyResult:
        """
        Apply a batch of deltas atomically.

        Deltas for the same pair are summed first.  All rows are locked and
        every resulting quantity is checked before any row is modified.

        Raises:
            InsufficientStockError: a resulting quantity would be negative.
        """
        netted = net_deltas(deltas)
        if not netted:
            return LedgerApplyResult(document_id=document_id, kind=kind, changes=())

        lock_order = sorted(netted, key=lambda d: d.key.sort_key())
        rows: dict[StockKey, StockRow | None] = {
            delta.key: self._lock_row(delta.key) for delta in lock_order
        }

        # INVARIANT: validate the whole batch before mutating anything
        for delta in lock_order:
            row = rows[delta.key]
            available = row.quantity if row is not None else 0
            if available + delta.quantity < 0:
                logger.warning(
                    "insufficient_stock",
                    extra={
                        "product_id": str(delta.product_id),
                        "location_id": str(delta.location_id),
                        "requested": -delta.quantity,
                        "available": available,
                        "document_id": str(document_id) if document_id else None,
                    },
                )
                raise InsufficientStockError(
                    str(delta.product_id),
                    str(delta.location_id),
                    requested=-delta.quantity,
                    available=available,
                )

        now = self._clock.now()
        applied: dict[StockKey, RowChange] = {}
        for delta in lock_order:
            row = rows[delta.key] or self._create_row(delta.key)
            before = row.quantity
            row.quantity = before + delta.quantity
            row.updated_at = now
            self._session.add(
                StockMovement(
                    document_id=document_id,
                    product_id=delta.product_id,
                    location_id=delta.location_id,
                    kind=kind,
                    delta=delta.quantity,
                    quantity_before=before,
                    quantity_after=row.quantity,
                    line_ids=[str(line_id) for line_id in delta.line_ids],
                    actor_id=actor_id,
                    created_at=now,
                )
            )
            applied[delta.key] = RowChange(
                row_id=row.id,
                product_id=delta.product_id,
                location_id=delta.location_id,
                delta=delta.quantity,
                quantity_before=before,
                quantity_after=row.quantity,
            )

        self._session.flush()

        changes = tuple(applied[delta.key] for delta in netted)
        logger.info(
            "ledger_batch_applied",
            extra={
                "document_id": str(document_id) if document_id else None,
                "kind": kind.value,
                "row_count": len(changes),
            },
        )
        return LedgerApplyResult(document_id=document_id, kind=kind, changes=changes)

    # ------------------------------------------------------------------
    # Integrity
    # ------------------------------------------------------------------

    def verify_integrity(self) -> list[LedgerDiscrepancy]:
        """
        Compare every row with the sum of its movements.

        Returns an empty list when every row is non-negative and equals the
        sum of its movements.
        """
        totals = {
            (product_id, location_id): total
            for product_id, location_id, total in self._session.execute(
                select(
                    StockMovement.product_id,
                    StockMovement.location_id,
                    func.sum(StockMovement.delta),
                ).group_by(StockMovement.product_id, StockMovement.location_id)
            )
        }

        issues: list[LedgerDiscrepancy] = []
        seen: set[tuple[UUID, UUID]] = set()
        for row in self._session.execute(select(StockRow)).scalars():
            pair = (row.product_id, row.location_id)
            seen.add(pair)
            total = int(totals.get(pair) or 0)
            if row.quantity < 0 or row.quantity != total:
                issues.append(LedgerDiscrepancy(row.product_id, row.location_id, row.quantity, total))

        for pair, total in totals.items():
            if pair not in seen and total:
                issues.append(LedgerDiscrepancy(pair[0], pair[1], 0, int(total)))

        if issues:
            logger.critical("ledger_integrity_violation", extra={"issue_count": len(issues)})
        return issues
