"""
warehouse_services.engine -- Transactional facade over the warehouse kernel.

Responsibility:
    One entry point per inbound operation.  Each call checks the actor's
    permission, opens exactly one transaction, wires the kernel services for
    that session, commits or rolls back, and surfaces audit write failures
    after the commit.

Architecture position:
    Services -- the only place where config values become kernel constructor
    arguments and where kernel services are composed.  The request layer
    (excluded) calls this class.

Invariants enforced:
    - One transaction per operation: a failure leaves no partial change.
    - Conflicts (deadlock 40P01, serialization failure 40001) are retried up
      to ``retry.max_attempts`` with linear backoff; each attempt is a fresh
      transaction.  Business errors are never retried.
    - If the operation committed but audit records were lost,
      ``AuditWriteFailedError`` is raised carrying the committed result.

Failure modes:
    - ``AccessDeniedError`` before any database work.
    - Any ``WarehouseKernelError`` from the kernel, after rollback.
    - ``DBAPIError`` when retries are exhausted or the error is not a conflict.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar
from uuid import UUID, uuid4

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, sessionmaker

from warehouse_config.schema import WarehouseConfig
from warehouse_kernel.db.engine import (
    get_session_factory,
    init_engine_from_url,
    session_scope,
)
from warehouse_kernel.db.immutability import register_immutability_listeners
from warehouse_kernel.domain.clock import Clock, SystemClock
from warehouse_kernel.domain.values import (
    ConfirmResult,
    CountLineSnapshot,
    CountSnapshot,
    DocumentLineSnapshot,
    DocumentSnapshot,
    DocumentType,
    LocationStatus,
    Page,
)
from warehouse_kernel.exceptions import AccessDeniedError, AuditWriteFailedError
from warehouse_kernel.logging_config import LogContext, configure_logging, get_logger
from warehouse_kernel.models.catalog import Location, Product, Warehouse
from warehouse_kernel.selectors import (
    AuditEntry,
    AuditFilter,
    AuditSelector,
    DocumentFilter,
    DocumentSelector,
    StockFilter,
    StockSelector,
    StockView,
)
from warehouse_kernel.services import (
    AuditRecorder,
    CatalogService,
    CountCompletion,
    CountService,
    DocumentService,
    LedgerDiscrepancy,
    StockLedger,
)
from warehouse_services import access
from warehouse_services.access import Actor, check_permission

logger = get_logger("services.engine")

T = TypeVar("T")

RETRYABLE_SQLSTATES = frozenset({"40P01", "40001"})


def is_retryable(exc: DBAPIError) -> bool:
    """True for deadlocks and serialization failures."""
    return getattr(exc.orig, "pgcode", None) in RETRYABLE_SQLSTATES


@dataclass
class KernelServices:
    """Kernel services sharing one session and one audit recorder."""

    session: Session
    auditor: AuditRecorder
    ledger: StockLedger
    catalog: CatalogService
    documents: DocumentService
    counts: CountService
    stock: StockSelector
    audit: AuditSelector
    listings: DocumentSelector


class WarehouseEngine:
    """Transactional facade for the request layer.

    Contract:
        Receives a ``WarehouseConfig`` and optionally a session factory and
        clock.  Every public method takes the calling ``Actor`` first and
        runs in its own transaction.

    Guarantees:
        - Results are frozen DTOs or detached ORM rows safe to read after
          the session has closed.
        - Immutability listeners are registered before the first operation.

    Non-goals:
        - Does NOT authenticate actors or resolve their roles.
        - Does NOT queue or serialize operations; concurrency is handled by
          row locks inside the kernel.
    """

    def __init__(
        self,
        config: WarehouseConfig,
        session_factory: sessionmaker[Session] | None = None,
        clock: Clock | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._config = config
        self._clock = clock or SystemClock()
        self._sleep = sleep
        configure_logging(level=config.logging.level)
        if session_factory is None:
            db = config.database
            init_engine_from_url(
                db.url,
                echo=db.echo,
                pool_size=db.pool_size,
                max_overflow=db.max_overflow,
                pool_timeout=db.pool_timeout,
                pool_recycle=db.pool_recycle,
            )
            session_factory = get_session_factory()
        self._session_factory = session_factory
        self._prefixes = {
            DocumentType(name): prefix
            for name, prefix in config.numbering.document_prefixes.items()
        }
        register_immutability_listeners()

    @property
    def config(self) -> WarehouseConfig:
        return self._config

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _build(self, session: Session) -> KernelServices:
        auditor = AuditRecorder(session, self._clock)
        ledger = StockLedger(session, self._clock)
        catalog = CatalogService(session, auditor)
        documents = DocumentService(
            session,
            auditor,
            ledger=ledger,
            catalog=catalog,
            clock=self._clock,
            number_prefixes=self._prefixes,
        )
        counts = CountService(
            session,
            documents,
            auditor,
            ledger=ledger,
            catalog=catalog,
            clock=self._clock,
            freeze_locations=self._config.counts.freeze_locations,
            number_prefix=self._config.numbering.count_prefix,
        )
        paging = self._config.pagination
        return KernelServices(
            session=session,
            auditor=auditor,
            ledger=ledger,
            catalog=catalog,
            documents=documents,
            counts=counts,
            stock=StockSelector(session, paging.default_limit, paging.max_limit),
            audit=AuditSelector(session, paging.default_limit, paging.max_limit),
            listings=DocumentSelector(session, paging.default_limit, paging.max_limit),
        )

    def authorize(self, actor: Actor, permission: str) -> None:
        allowed, reason = check_permission(self._config.access, actor, permission)
        if not allowed:
            logger.warning(
                "access_denied",
                extra={"actor_id": str(actor.id), "permission": permission, "reason": reason},
            )
            raise AccessDeniedError(str(actor.id), permission, reason)

    def run(
        self,
        actor: Actor,
        permission: str,
        operation: str,
        fn: Callable[[KernelServices], T],
    ) -> T:
        """
        Run ``fn`` in one transaction on behalf of ``actor``.

        Public so callers can compose several kernel calls atomically.
        """
        self.authorize(actor, permission)
        max_attempts = self._config.retry.max_attempts
        backoff = self._config.retry.backoff_seconds

        with LogContext.bind(
            correlation_id=uuid4(), actor_id=actor.id, operation=operation
        ):
            attempt = 1
            while True:
                try:
                    with session_scope(self._session_factory) as session:
                        services = self._build(session)
                        result = fn(services)
                    break
                except DBAPIError as exc:
                    if not is_retryable(exc) or attempt >= max_attempts:
                        raise
                    logger.warning(
                        "operation_conflict_retry",
                        extra={
                            "attempt": attempt,
                            "max_attempts": max_attempts,
                            "sqlstate": getattr(exc.orig, "pgcode", None),
                        },
                    )
                    self._sleep(backoff * attempt)
                    attempt += 1

            failures = services.auditor.drain_failures()
            if failures:
                logger.critical(
                    "operation_committed_with_audit_loss",
                    extra={"failed_actions": failures},
                )
                raise AuditWriteFailedError(failures, result)
            return result

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def create_warehouse(
        self, actor: Actor, code: str, name: str, address: str | None = None
    ) -> Warehouse:
        return self.run(
            actor,
            access.CATALOG_MANAGE,
            "create_warehouse",
            lambda s: s.catalog.create_warehouse(code, name, actor.id, address=address),
        )

    def create_product(
        self,
        actor: Actor,
        sku: str,
        name: str,
        ean: str | None = None,
        unit: str = "pcs",
    ) -> Product:
        return self.run(
            actor,
            access.CATALOG_MANAGE,
            "create_product",
            lambda s: s.catalog.create_product(sku, name, actor.id, ean=ean, unit=unit),
        )

    def deactivate_product(self, actor: Actor, product_id: UUID) -> Product:
        return self.run(
            actor,
            access.CATALOG_MANAGE,
            "deactivate_product",
            lambda s: s.catalog.deactivate_product(product_id, actor.id),
        )

    def create_location(
        self, actor: Actor, warehouse_id: UUID, barcode: str, zone: str | None = None
    ) -> Location:
        return self.run(
            actor,
            access.CATALOG_MANAGE,
            "create_location",
            lambda s: s.catalog.create_location(warehouse_id, barcode, actor.id, zone=zone),
        )

    def set_location_status(
        self,
        actor: Actor,
        location_id: UUID,
        status: LocationStatus,
        reason: str | None = None,
    ) -> Location:
        return self.run(
            actor,
            access.CATALOG_MANAGE,
            "set_location_status",
            lambda s: s.catalog.set_location_status(location_id, status, actor.id, reason=reason),
        )

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def create_document(
        self,
        actor: Actor,
        document_type: DocumentType,
        warehouse_id: UUID,
        reference_no: str | None = None,
        notes: str | None = None,
    ) -> DocumentSnapshot:
        return self.run(
            actor,
            access.DOCUMENT_CREATE,
            "create_document",
            lambda s: s.documents.create_document(
                document_type, warehouse_id, actor.id, reference_no=reference_no, notes=notes
            ),
        )

    def add_line(
        self,
        actor: Actor,
        document_id: UUID,
        product_id: UUID,
        quantity: int,
        source_location_id: UUID | None = None,
        destination_location_id: UUID | None = None,
    ) -> DocumentLineSnapshot:
        return self.run(
            actor,
            access.DOCUMENT_EDIT,
            "add_line",
            lambda s: s.documents.add_line(
                document_id,
                actor.id,
                product_id,
                quantity,
                source_location_id=source_location_id,
                destination_location_id=destination_location_id,
            ),
        )

    def add_scanned_line(
        self,
        actor: Actor,
        document_id: UUID,
        product_code: str,
        quantity: int,
        source_barcode: str | None = None,
        destination_barcode: str | None = None,
    ) -> DocumentLineSnapshot:
        return self.run(
            actor,
            access.DOCUMENT_EDIT,
            "add_scanned_line",
            lambda s: s.documents.add_scanned_line(
                document_id,
                actor.id,
                product_code,
                quantity,
                source_barcode=source_barcode,
                destination_barcode=destination_barcode,
            ),
        )

    def edit_line(
        self, actor: Actor, document_id: UUID, line_id: UUID, **changes: Any
    ) -> DocumentLineSnapshot:
        """``changes`` accepts product_id, quantity, source_location_id, destination_location_id."""
        return self.run(
            actor,
            access.DOCUMENT_EDIT,
            "edit_line",
            lambda s: s.documents.edit_line(document_id, line_id, actor.id, **changes),
        )

    def remove_line(self, actor: Actor, document_id: UUID, line_id: UUID) -> None:
        return self.run(
            actor,
            access.DOCUMENT_EDIT,
            "remove_line",
            lambda s: s.documents.remove_line(document_id, line_id, actor.id),
        )

    def confirm(self, actor: Actor, document_id: UUID) -> ConfirmResult:
        return self.run(
            actor,
            access.DOCUMENT_CONFIRM,
            "confirm",
            lambda s: s.documents.confirm(document_id, actor.id),
        )

    def cancel(
        self, actor: Actor, document_id: UUID, reason: str | None = None
    ) -> ConfirmResult:
        return self.run(
            actor,
            access.DOCUMENT_CANCEL,
            "cancel",
            lambda s: s.documents.cancel(document_id, actor.id, reason=reason),
        )

    def get_document(self, actor: Actor, document_id: UUID) -> DocumentSnapshot:
        return self.run(
            actor,
            access.STOCK_READ,
            "get_document",
            lambda s: s.documents.get_document(document_id),
        )

    def list_documents(
        self,
        actor: Actor,
        filters: DocumentFilter | None = None,
        page: int = 1,
        limit: int | None = None,
    ) -> Page[DocumentSnapshot]:
        return self.run(
            actor,
            access.STOCK_READ,
            "list_documents",
            lambda s: s.listings.list_documents(filters, page, limit),
        )

    # ------------------------------------------------------------------
    # Inventory counts
    # ------------------------------------------------------------------

    def start_count(
        self,
        actor: Actor,
        warehouse_id: UUID,
        name: str | None = None,
        location_ids: list[UUID] | None = None,
    ) -> CountSnapshot:
        return self.run(
            actor,
            access.COUNT_START,
            "start_count",
            lambda s: s.counts.start_count(
                warehouse_id, actor.id, name=name, location_ids=location_ids
            ),
        )

    def record_count(
        self,
        actor: Actor,
        count_id: UUID,
        product_id: UUID,
        location_id: UUID,
        counted_qty: int,
    ) -> CountLineSnapshot:
        return self.run(
            actor,
            access.COUNT_RECORD,
            "record_count",
            lambda s: s.counts.record_count(
                count_id, product_id, location_id, counted_qty, actor.id
            ),
        )

    def remove_count_line(self, actor: Actor, count_id: UUID, line_id: UUID) -> None:
        return self.run(
            actor,
            access.COUNT_RECORD,
            "remove_count_line",
            lambda s: s.counts.remove_count_line(count_id, line_id, actor.id),
        )

    def complete_count(self, actor: Actor, count_id: UUID) -> CountCompletion:
        return self.run(
            actor,
            access.COUNT_COMPLETE,
            "complete_count",
            lambda s: s.counts.complete_count(count_id, actor.id),
        )

    def reopen_count(self, actor: Actor, count_id: UUID) -> CountSnapshot:
        return self.run(
            actor,
            access.COUNT_REOPEN,
            "reopen_count",
            lambda s: s.counts.reopen_count(count_id, actor.id),
        )

    def cancel_count(self, actor: Actor, count_id: UUID) -> CountSnapshot:
        return self.run(
            actor,
            access.COUNT_CANCEL,
            "cancel_count",
            lambda s: s.counts.cancel_count(count_id, actor.id),
        )

    def get_count(self, actor: Actor, count_id: UUID) -> CountSnapshot:
        return self.run(
            actor,
            access.STOCK_READ,
            "get_count",
            lambda s: s.counts.get_count(count_id),
        )

    # ------------------------------------------------------------------
    # Read models
    # ------------------------------------------------------------------

    def get_quantity(self, actor: Actor, product_id: UUID, location_id: UUID) -> int:
        return self.run(
            actor,
            access.STOCK_READ,
            "get_quantity",
            lambda s: s.ledger.get_quantity(product_id, location_id),
        )

    def list_stock(
        self,
        actor: Actor,
        filters: StockFilter | None = None,
        page: int = 1,
        limit: int | None = None,
    ) -> Page[StockView]:
        return self.run(
            actor,
            access.STOCK_READ,
            "list_stock",
            lambda s: s.stock.list_stock(filters, page, limit),
        )

    def list_audit(
        self,
        actor: Actor,
        filters: AuditFilter | None = None,
        page: int = 1,
        limit: int | None = None,
    ) -> Page[AuditEntry]:
        return self.run(
            actor,
            access.AUDIT_READ,
            "list_audit",
            lambda s: s.audit.list_records(filters, page, limit),
        )

    def document_history(self, actor: Actor, document_id: UUID) -> tuple[AuditEntry, ...]:
        return self.run(
            actor,
            access.AUDIT_READ,
            "document_history",
            lambda s: s.audit.document_history(document_id),
        )

    def product_history(self, actor: Actor, product_id: UUID) -> tuple[AuditEntry, ...]:
        return self.run(
            actor,
            access.AUDIT_READ,
            "product_history",
            lambda s: s.audit.product_history(product_id),
        )

    def location_history(self, actor: Actor, location_id: UUID) -> tuple[AuditEntry, ...]:
        return self.run(
            actor,
            access.AUDIT_READ,
            "location_history",
            lambda s: s.audit.location_history(location_id),
        )

    # ------------------------------------------------------------------
    # Integrity checks
    # ------------------------------------------------------------------

    def verify_ledger(self, actor: Actor) -> list[LedgerDiscrepancy]:
        """Compare stock rows with the sum of their movements."""
        return self.run(
            actor, access.AUDIT_READ, "verify_ledger", lambda s: s.ledger.verify_integrity()
        )

    def validate_audit_chain(self, actor: Actor) -> bool:
        """Raises ``AuditChainBrokenError`` on the first tampered record."""
        return self.run(
            actor, access.AUDIT_READ, "validate_audit_chain", lambda s: s.auditor.validate_chain()
        )
