"""
Movement resolver -- document lines to netted ledger deltas.

Responsibility:
    Pure function of (document type, warehouse, lines) that either returns
    the ordered ledger deltas a document would produce or raises the first
    validation error.  Used both when a line is added/edited (single-line
    validation) and at confirmation (whole-document resolution).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Callers look up
    products and locations and pass them in as ``LineSpec`` snapshots.

Invariants enforced:
    Line validity -- every line references an existing, active product and existing
          ACTIVE locations belonging to the document's warehouse.
    Deltas for the same (product, location) are summed; pairs whose net is
    zero produce no delta.  Output order is first-seen order.

Per-type effect:
    RECEIPT     +qty at destination; source must be absent
    ISSUE       -qty at source; destination must be absent
    TRANSFER    -qty at source, +qty at destination; both required, distinct
    ADJUSTMENT  signed qty at one location (source or destination, or both
                when they are the same location)

Failure modes:
    - InvalidLineError for missing/inactive references, wrong shape, bad
      quantities, or a location outside the document's warehouse.
    - NoOpLineError for ADJUSTMENT lines with zero quantity.
"""

from collections.abc import Iterable, Sequence
from uuid import UUID

from warehouse_kernel.domain.values import (
    DocumentType,
    LedgerDelta,
    LineSpec,
    LocationRef,
    LocationStatus,
    MovementPlan,
    StockKey,
    is_strict_int,
)
from warehouse_kernel.exceptions import InvalidLineError, NoOpLineError


def _check_product(line: LineSpec) -> None:
    if line.product_id is None:
        raise InvalidLineError("product is required", line.line_no)
    if line.product is None:
        raise InvalidLineError(f"product {line.product_id} does not exist", line.line_no)
    if not line.product.is_active:
        raise InvalidLineError(f"product {line.product.sku} is inactive", line.line_no)


def _check_location(
    role: str,
    location_id: UUID | None,
    location: LocationRef | None,
    warehouse_id: UUID,
    line_no: int,
) -> LocationRef:
    if location_id is None:
        raise InvalidLineError(f"{role} location is required", line_no)
    if location is None:
        raise InvalidLineError(f"{role} location {location_id} does not exist", line_no)
    if location.status != LocationStatus.ACTIVE:
        raise InvalidLineError(
            f"{role} location {location.barcode} is {location.status.value}",
            line_no,
        )
    if location.warehouse_id != warehouse_id:
        raise InvalidLineError(
            f"{role} location {location.barcode} belongs to another warehouse",
            line_no,
        )
    return location


def _check_positive(line: LineSpec) -> int:
    if not is_strict_int(line.quantity):
        raise InvalidLineError("quantity must be an integer", line.line_no)
    if line.quantity <= 0:
        raise InvalidLineError("quantity must be positive", line.line_no)
    return line.quantity


def _forbid(role: str, location_id: UUID | None, doc_type: DocumentType, line_no: int) -> None:
    if location_id is not None:
        raise InvalidLineError(
            f"{doc_type.value} lines must not have a {role} location", line_no
        )


def line_deltas(
    document_type: DocumentType,
    warehouse_id: UUID,
    line: LineSpec,
) -> list[LedgerDelta]:
    """
    Validate a single line and return its raw (un-netted) deltas.

    Raises:
        InvalidLineError, NoOpLineError
    """
    _check_product(line)
    line_ids = (line.line_id,) if line.line_id is not None else ()
    no = line.line_no

    if document_type == DocumentType.RECEIPT:
        _forbid("source", line.source_location_id, document_type, no)
        dest = _check_location(
            "destination", line.destination_location_id, line.destination, warehouse_id, no
        )
        qty = _check_positive(line)
        return [LedgerDelta(line.product.id, dest.id, qty, line_ids)]

    if document_type == DocumentType.ISSUE:
        _forbid("destination", line.destination_location_id, document_type, no)
        src = _check_location(
            "source", line.source_location_id, line.source, warehouse_id, no
        )
        qty = _check_positive(line)
        return [LedgerDelta(line.product.id, src.id, -qty, line_ids)]

    if document_type == DocumentType.TRANSFER:
        if line.source_location_id is None or line.destination_location_id is None:
            raise InvalidLineError(
                "transfer requires both source and destination locations", no
            )
        if line.source_location_id == line.destination_location_id:
            raise InvalidLineError("transfer source and destination must differ", no)
        src = _check_location("source", line.source_location_id, line.source, warehouse_id, no)
        dest = _check_location(
            "destination", line.destination_location_id, line.destination, warehouse_id, no
        )
        qty = _check_positive(line)
        return [
            LedgerDelta(line.product.id, src.id, -qty, line_ids),
            LedgerDelta(line.product.id, dest.id, qty, line_ids),
        ]

    if document_type == DocumentType.ADJUSTMENT:
        src_id, dest_id = line.source_location_id, line.destination_location_id
        if src_id is not None and dest_id is not None and src_id != dest_id:
            raise InvalidLineError("adjustment applies to a single location", no)
        if dest_id is not None:
            loc = _check_location("adjustment", dest_id, line.destination, warehouse_id, no)
        else:
            loc = _check_location("adjustment", src_id, line.source, warehouse_id, no)
        if not is_strict_int(line.quantity):
            raise InvalidLineError("quantity must be an integer", no)
        if line.quantity == 0:
            raise NoOpLineError(no)
        return [LedgerDelta(line.product.id, loc.id, line.quantity, line_ids)]

    raise InvalidLineError(f"unsupported document type {document_type!r}", no)


def net_deltas(deltas: Iterable[LedgerDelta]) -> tuple[LedgerDelta, ...]:
    """Sum deltas per (product, location), first-seen order, zero nets dropped."""
    totals: dict[StockKey, int] = {}
    contributors: dict[StockKey, list[UUID]] = {}
    for delta in deltas:
        key = delta.key
        totals[key] = totals.get(key, 0) + delta.quantity
        ids = contributors.setdefault(key, [])
        for line_id in delta.line_ids:
            if line_id not in ids:
                ids.append(line_id)
    return tuple(
        LedgerDelta(key.product_id, key.location_id, qty, tuple(contributors[key]))
        for key, qty in totals.items()
        if qty != 0
    )


def resolve_movements(
    document_type: DocumentType,
    warehouse_id: UUID,
    lines: Sequence[LineSpec],
) -> MovementPlan:
    """
    Resolve a document's lines into a netted movement plan.

    Lines are validated in line order; the first failure is raised and no
    plan is produced.
    """
    raw: list[LedgerDelta] = []
    for line in lines:
        raw.extend(line_deltas(document_type, warehouse_id, line))
    return MovementPlan(document_type=document_type, deltas=net_deltas(raw))
