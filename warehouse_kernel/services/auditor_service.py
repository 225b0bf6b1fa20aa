"""
AuditRecorder -- append-only, hash-chained audit trail.

Responsibility:
    Writes one AuditRecord for every document transition, every ledger row
    mutation, every count transition and every reference-data change.
    Provides chain validation for tamper detection.

Architecture position:
    Kernel > Services -- called by DocumentService, CountService and
    CatalogService.  Read access goes through selectors/audit_selector.py.

Invariants enforced:
    - Append-only (ORM listeners on AuditRecord).
    - Hash chain: ``hash = H(entity_type|entity_id|action|payload_hash|prev_hash)``.
    - seq allocated by SequenceService, never max-plus-one.

Failure modes:
    - A store failure while writing a record rolls back ONLY that record's
      savepoint.  The business operation is not undone; the failure is
      logged at CRITICAL and collected.  The WarehouseEngine facade commits
      and then raises AuditWriteFailedError so operators are alerted.
    - AuditChainBrokenError from ``validate_chain()``.
"""

from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from warehouse_kernel.domain.clock import Clock, SystemClock
from warehouse_kernel.domain.values import (
    DocumentType,
    LedgerApplyResult,
    MovementKind,
)
from warehouse_kernel.exceptions import AuditChainBrokenError
from warehouse_kernel.logging_config import get_logger
from warehouse_kernel.models.audit_record import AuditAction, AuditRecord
from warehouse_kernel.services.sequence_service import SequenceService
from warehouse_kernel.utils.hashing import (
    GENESIS,
    hash_audit_record,
    hash_payload,
    to_json_safe,
)

logger = get_logger("services.auditor")

_STOCK_ACTION_BY_TYPE = {
    DocumentType.RECEIPT: AuditAction.STOCK_IN,
    DocumentType.ISSUE: AuditAction.STOCK_OUT,
    DocumentType.TRANSFER: AuditAction.STOCK_MOVED,
    DocumentType.ADJUSTMENT: AuditAction.STOCK_ADJUSTED,
}


def _payload_of(
    actor_id: Any,
    before_state: Any,
    after_state: Any,
    product_id: Any,
    location_id: Any,
    document_id: Any,
) -> dict[str, Any]:
    return {
        "actor_id": str(actor_id),
        "before": before_state,
        "after": after_state,
        "product_id": str(product_id) if product_id else None,
        "location_id": str(location_id) if location_id else None,
        "document_id": str(document_id) if document_id else None,
    }


class AuditRecorder:
    """
    Service for writing and validating audit records.

    Contract:
        ``record()`` never raises on a store failure; it returns None and
        remembers the failed action.  Callers that own the transaction
        inspect ``failures`` / ``drain_failures()`` after the operation.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT update or delete records.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequence_service = SequenceService(session)
        self._failures: list[str] = []

    @property
    def failures(self) -> tuple[str, ...]:
        return tuple(self._failures)

    def drain_failures(self) -> list[str]:
        """Return and forget the actions whose records failed to write."""
        failures, self._failures = self._failures, []
        return failures

    def _get_last_hash(self) -> str | None:
        return self._session.execute(
            select(AuditRecord.hash).order_by(AuditRecord.seq.desc()).limit(1)
        ).scalar_one_or_none()

    def _insert(
        self,
        action: AuditAction,
        entity_type: str,
        entity_id: UUID,
        actor_id: UUID,
        before_state: dict | None,
        after_state: dict | None,
        product_id: UUID | None,
        location_id: UUID | None,
        document_id: UUID | None,
    ) -> AuditRecord:
        seq = self._sequence_service.next_value(SequenceService.AUDIT_RECORD)
        prev_hash = self._get_last_hash()

        payload_hash = hash_payload(
            _payload_of(actor_id, before_state, after_state, product_id, location_id, document_id)
        )
        record_hash = hash_audit_record(
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action.value,
            payload_hash=payload_hash,
            prev_hash=prev_hash,
        )

        record = AuditRecord(
            seq=seq,
            actor_id=actor_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            before_state=before_state,
            after_state=after_state,
            occurred_at=self._clock.now(),
            product_id=product_id,
            location_id=location_id,
            document_id=document_id,
            payload_hash=payload_hash,
            prev_hash=prev_hash,
            hash=record_hash,
        )
        self._session.add(record)
        self._session.flush()
        return record

    def record(
        self,
        action: AuditAction,
        *,
        entity_type: str,
        entity_id: UUID,
        actor_id: UUID,
        before: dict | None = None,
        after: dict | None = None,
        product_id: UUID | None = None,
        location_id: UUID | None = None,
        document_id: UUID | None = None,
    ) -> AuditRecord | None:
        """
        Append one audit record in its own savepoint.

        Returns the record, or None if the store rejected the write.
        """
        before_state = to_json_safe(before) if before is not None else None
        after_state = to_json_safe(after) if after is not None else None

        savepoint = self._session.begin_nested()
        try:
            record = self._insert(
                action, entity_type, entity_id, actor_id,
                before_state, after_state, product_id, location_id, document_id,
            )
            savepoint.commit()
        except SQLAlchemyError:
            savepoint.rollback()
            self._failures.append(action.value)
            logger.critical(
                "audit_write_failed",
                extra={
                    "action": action.value,
                    "entity_type": entity_type,
                    "entity_id": str(entity_id),
                },
                exc_info=True,
            )
            return None

        logger.info(
            "audit_record_created",
            extra={
                "action": action.value,
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "seq": record.seq,
            },
        )
        return record

    # Domain-specific recording helpers

    def record_stock_changes(
        self,
        ledger_result: LedgerApplyResult,
        document_type: DocumentType,
        actor_id: UUID,
    ) -> None:
        """One record per stock row touched by a ledger batch."""
        if ledger_result.kind == MovementKind.REVERSAL:
            action = AuditAction.STOCK_REVERSED
        else:
            action = _STOCK_ACTION_BY_TYPE[document_type]

        for change in ledger_result.changes:
            self.record(
                action,
                entity_type="StockRow",
                entity_id=change.row_id,
                actor_id=actor_id,
                before={"quantity": change.quantity_before},
                after={"quantity": change.quantity_after, "delta": change.delta},
                product_id=change.product_id,
                location_id=change.location_id,
                document_id=ledger_result.document_id,
            )

    # Chain validation

    def validate_chain(self) -> bool:
        """
        Recompute every payload hash and chained hash in seq order.

        Raises:
            AuditChainBrokenError: at the first record that does not verify.
        """
        records = self._session.execute(
            select(AuditRecord).order_by(AuditRecord.seq)
        ).scalars().all()

        prev_hash: str | None = None
        for record in records:
            payload_hash = hash_payload(
                _payload_of(
                    record.actor_id,
                    record.before_state,
                    record.after_state,
                    record.product_id,
                    record.location_id,
                    record.document_id,
                )
            )
            if payload_hash != record.payload_hash:
                logger.critical("audit_chain_broken", extra={"seq": record.seq, "field": "payload"})
                raise AuditChainBrokenError(str(record.id), record.payload_hash, payload_hash)

            if record.prev_hash != prev_hash:
                logger.critical("audit_chain_broken", extra={"seq": record.seq, "field": "prev_hash"})
                raise AuditChainBrokenError(
                    str(record.id), prev_hash or GENESIS, record.prev_hash or GENESIS
                )

            expected = hash_audit_record(
                entity_type=record.entity_type,
                entity_id=str(record.entity_id),
                action=record.action.value,
                payload_hash=record.payload_hash,
                prev_hash=record.prev_hash,
            )
            if record.hash != expected:
                logger.critical("audit_chain_broken", extra={"seq": record.seq, "field": "hash"})
                raise AuditChainBrokenError(str(record.id), expected, record.hash)

            prev_hash = record.hash

        logger.info("audit_chain_valid", extra={"record_count": len(records)})
        return True
