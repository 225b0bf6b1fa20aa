"""
Values -- status enums and immutable value objects of the stock domain.

Responsibility:
    Defines the lifecycle enums (document type/status, location status,
    count status, movement kind) and the frozen value objects that flow
    between the resolver, the ledger and the services.  Quantities are
    always integers; booleans are rejected even though ``bool`` subclasses
    ``int``.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Models import the
    enums from here, never the other way around.

Failure modes:
    - ValueError / TypeError on construction with malformed quantities.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Generic, TypeVar
from uuid import UUID


class DocumentType(str, Enum):
    """Kinds of movement documents."""

    RECEIPT = "RECEIPT"
    ISSUE = "ISSUE"
    TRANSFER = "TRANSFER"
    ADJUSTMENT = "ADJUSTMENT"


class DocumentStatus(str, Enum):
    """Document lifecycle: DRAFT -> CONFIRMED -> CANCELLED, or DRAFT -> CANCELLED."""

    DRAFT = "DRAFT"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"


class LocationStatus(str, Enum):
    """Only ACTIVE locations may be referenced by document lines."""

    ACTIVE = "ACTIVE"
    BLOCKED = "BLOCKED"
    INACTIVE = "INACTIVE"
    # Frozen by an open inventory count
    COUNTING = "COUNTING"


class CountStatus(str, Enum):
    OPEN = "OPEN"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class MovementKind(str, Enum):
    """Whether a ledger posting applies a document or compensates it."""

    APPLY = "APPLY"
    REVERSAL = "REVERSAL"


def is_strict_int(value: Any) -> bool:
    """True for ints that are not bools."""
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass(frozen=True, slots=True)
class StockKey:
    """Identity of a ledger row: (product, location)."""

    product_id: UUID
    location_id: UUID

    def sort_key(self) -> tuple[str, str]:
        """Deterministic lock ordering key."""
        return (str(self.product_id), str(self.location_id))


@dataclass(frozen=True, slots=True)
class LedgerDelta:
    """
    Signed change to one ledger row.

    Contract:
        ``quantity`` is a non-bool int.  Zero is permitted here (the
        resolver drops zero nets before handing deltas to the ledger).
        ``line_ids`` lists the document lines that contributed to the net.
    """

    product_id: UUID
    location_id: UUID
    quantity: int
    line_ids: tuple[UUID, ...] = ()

    def __post_init__(self) -> None:
        if not is_strict_int(self.quantity):
            raise TypeError(
                f"LedgerDelta quantity must be int, got {type(self.quantity).__name__}"
            )

    @property
    def key(self) -> StockKey:
        return StockKey(self.product_id, self.location_id)


@dataclass(frozen=True, slots=True)
class ProductRef:
    """Snapshot of the product facts the resolver needs."""

    id: UUID
    sku: str
    is_active: bool


@dataclass(frozen=True, slots=True)
class LocationRef:
    """Snapshot of the location facts the resolver needs."""

    id: UUID
    barcode: str
    warehouse_id: UUID
    status: LocationStatus


@dataclass(frozen=True, slots=True)
class LineSpec:
    """
    One document line with its references looked up.

    A reference id that is set while its ref is None means the id did not
    resolve to an existing row.
    """

    line_no: int
    product_id: UUID | None
    quantity: Any
    product: ProductRef | None = None
    source_location_id: UUID | None = None
    source: LocationRef | None = None
    destination_location_id: UUID | None = None
    destination: LocationRef | None = None
    line_id: UUID | None = None


@dataclass(frozen=True, slots=True)
class MovementPlan:
    """Netted, ordered ledger deltas for one document."""

    document_type: DocumentType
    deltas: tuple[LedgerDelta, ...]

    @property
    def is_empty(self) -> bool:
        return len(self.deltas) == 0


@dataclass(frozen=True, slots=True)
class RowChange:
    """Before/after view of one ledger row touched by an apply."""

    row_id: UUID
    product_id: UUID
    location_id: UUID
    delta: int
    quantity_before: int
    quantity_after: int


@dataclass(frozen=True, slots=True)
class LedgerApplyResult:
    document_id: UUID | None
    kind: MovementKind
    changes: tuple[RowChange, ...]

    def quantity_after(self, product_id: UUID, location_id: UUID) -> int | None:
        for change in self.changes:
            if change.product_id == product_id and change.location_id == location_id:
                return change.quantity_after
        return None


@dataclass(frozen=True, slots=True)
class DocumentLineSnapshot:
    id: UUID
    line_no: int
    product_id: UUID
    source_location_id: UUID | None
    destination_location_id: UUID | None
    quantity: int


@dataclass(frozen=True, slots=True)
class DocumentSnapshot:
    """Read model of a document and its lines."""

    id: UUID
    number: str
    document_type: DocumentType
    status: DocumentStatus
    warehouse_id: UUID
    created_by_id: UUID
    reference_no: str | None
    notes: str | None
    confirmed_at: datetime | None
    confirmed_by_id: UUID | None
    cancelled_at: datetime | None
    cancelled_by_id: UUID | None
    cancel_reason: str | None
    source_count_id: UUID | None
    lines: tuple[DocumentLineSnapshot, ...] = ()


@dataclass(frozen=True, slots=True)
class ConfirmResult:
    """Outcome of a confirm or a compensating cancel."""

    document: DocumentSnapshot
    ledger: LedgerApplyResult | None


@dataclass(frozen=True, slots=True)
class CountLineSnapshot:
    id: UUID
    product_id: UUID
    location_id: UUID
    counted_qty: int
    system_qty: int
    counted_by_id: UUID
    counted_at: datetime

    @property
    def difference(self) -> int:
        return self.counted_qty - self.system_qty


@dataclass(frozen=True, slots=True)
class CountSnapshot:
    """Read model of an inventory count."""

    id: UUID
    number: str
    name: str | None
    warehouse_id: UUID
    status: CountStatus
    location_ids: tuple[UUID, ...]
    adjustment_document_id: UUID | None
    completed_at: datetime | None
    lines: tuple[CountLineSnapshot, ...] = ()


T = TypeVar("T")


@dataclass(frozen=True)
class Page(Generic[T]):
    """One page of a paginated read."""

    items: tuple[T, ...]
    page: int
    limit: int
    total: int
    total_pages: int = field(init=False)

    def __post_init__(self) -> None:
        pages = (self.total + self.limit - 1) // self.limit if self.limit else 0
        object.__setattr__(self, "total_pages", pages)
