"""
Typed exception hierarchy for the warehouse kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (HTTP layer, batch jobs, scanner terminals) branch on the kind of
failure, never on message text.  Every exception therefore carries:

  1. A TYPED class (catch by type, not message)
  2. A ``code`` class attribute (machine-readable, API-safe)
  3. Structured attributes (product_id, requested, available, ...)

Example:
    try:
        engine.confirm(document_id, actor)
    except InsufficientStockError as e:
        respond(409, code=e.code, product=e.product_id, available=e.available)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    WarehouseKernelError (base)
    |
    +-- DocumentError
    |   +-- DocumentNotFoundError
    |   +-- DocumentLineNotFoundError
    |   +-- InvalidTransitionError
    |   +-- EmptyDocumentError
    |   +-- CancellationConflictError
    |
    +-- LineError
    |   +-- InvalidLineError
    |   +-- NoOpLineError
    |
    +-- LedgerError
    |   +-- InsufficientStockError
    |
    +-- CountError
    |   +-- CountNotFoundError
    |   +-- EmptyCountError
    |
    +-- CatalogError
    |   +-- WarehouseNotFoundError
    |   +-- ProductNotFoundError
    |   +-- LocationNotFoundError
    |   +-- DuplicateCodeError
    |   +-- InvalidCodeFormatError
    |
    +-- AuditError
    |   +-- AuditWriteFailedError
    |   +-- AuditChainBrokenError
    |
    +-- AccessError
    |   +-- AccessDeniedError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category   | Code                    | When Raised
-----------|-------------------------|---------------------------------------------
Document   | DOCUMENT_NOT_FOUND      | Document ID doesn't exist
           | DOCUMENT_LINE_NOT_FOUND | Line ID doesn't exist on the document
           | INVALID_TRANSITION      | Operation not legal in current status
           | DOCUMENT_EMPTY          | Confirming a document without lines
           | CANCELLATION_CONFLICT   | Compensation would drive stock negative
-----------|-------------------------|---------------------------------------------
Line       | INVALID_LINE            | Bad product/location/quantity/shape
           | NO_OP_LINE              | ADJUSTMENT line with zero quantity
-----------|-------------------------|---------------------------------------------
Ledger     | INSUFFICIENT_STOCK      | Net delta would drive a row below zero
-----------|-------------------------|---------------------------------------------
Count      | COUNT_NOT_FOUND         | Inventory count ID doesn't exist
           | COUNT_EMPTY             | Completing a count without lines
-----------|-------------------------|---------------------------------------------
Catalog    | WAREHOUSE_NOT_FOUND     | Warehouse ID/code doesn't exist
           | PRODUCT_NOT_FOUND       | Product ID/EAN/SKU doesn't resolve
           | LOCATION_NOT_FOUND      | Location ID/barcode doesn't resolve
           | DUPLICATE_CODE          | SKU/EAN/barcode/code already registered
           | INVALID_CODE_FORMAT     | Barcode/EAN/warehouse code malformed
-----------|-------------------------|---------------------------------------------
Audit      | AUDIT_WRITE_FAILED      | Stock committed, audit record lost
           | AUDIT_CHAIN_BROKEN      | Hash chain validation failed
-----------|-------------------------|---------------------------------------------
Access     | ACCESS_DENIED           | Actor lacks the permission
-----------|-------------------------|---------------------------------------------
Immutable  | IMMUTABILITY_VIOLATION  | Modifying a confirmed/append-only record

===============================================================================
DESIGN DECISIONS
===============================================================================

1. All exceptions inherit from Exception, not ValueError.  Domain errors are
   catchable as a group without mixing in programming errors.

2. ``code`` is a class attribute: static per type, usable without an
   instance, and serialised by the structured log formatter.

3. AuditWriteFailedError is raised AFTER commit.  It carries the committed
   operation result so the caller can still render it.
"""


class WarehouseKernelError(Exception):
    """
    Base exception for all warehouse kernel errors.

    All subclasses define a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "WAREHOUSE_KERNEL_ERROR"


# Document-related exceptions


class DocumentError(WarehouseKernelError):
    """Base exception for document lifecycle errors."""

    code: str = "DOCUMENT_ERROR"


class DocumentNotFoundError(DocumentError):
    """Document with given ID was not found."""

    code: str = "DOCUMENT_NOT_FOUND"

    def __init__(self, document_id: str):
        self.document_id = document_id
        super().__init__(f"Document not found: {document_id}")


class DocumentLineNotFoundError(DocumentError):
    """Line with given ID does not belong to the document."""

    code: str = "DOCUMENT_LINE_NOT_FOUND"

    def __init__(self, document_id: str, line_id: str):
        self.document_id = document_id
        self.line_id = line_id
        super().__init__(f"Line {line_id} not found on document {document_id}")


class InvalidTransitionError(DocumentError):
    """
    Operation is not legal in the entity's current status.

    Raised for document and inventory count state machines alike:
    editing lines of a CONFIRMED document, re-confirming, cancelling twice,
    completing a count that is not OPEN, and so on.
    """

    code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        current_status: str,
        operation: str,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.current_status = current_status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} {entity_type} {entity_id} in status {current_status}"
        )


class EmptyDocumentError(DocumentError):
    """Document has no lines and cannot be confirmed."""

    code: str = "DOCUMENT_EMPTY"

    def __init__(self, document_id: str):
        self.document_id = document_id
        super().__init__(f"Document {document_id} has no lines")


class CancellationConflictError(DocumentError):
    """
    Compensating movement for a CONFIRMED document was rejected.

    The stock produced by the document has since been consumed, so the
    inverse deltas would drive a row negative.  The document stays CONFIRMED.
    """

    code: str = "CANCELLATION_CONFLICT"

    def __init__(
        self,
        document_id: str,
        product_id: str,
        location_id: str,
        requested: int,
        available: int,
    ):
        self.document_id = document_id
        self.product_id = product_id
        self.location_id = location_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Cannot cancel document {document_id}: reversing requires "
            f"{requested} of product {product_id} at location {location_id}, "
            f"only {available} available"
        )


# Line-related exceptions


class LineError(WarehouseKernelError):
    """Base exception for document line validation errors."""

    code: str = "LINE_ERROR"


class InvalidLineError(LineError):
    """Line references are missing/inactive or its shape is wrong for the type."""

    code: str = "INVALID_LINE"

    def __init__(self, reason: str, line_no: int | None = None):
        self.reason = reason
        self.line_no = line_no
        prefix = f"Line {line_no}: " if line_no is not None else ""
        super().__init__(f"{prefix}{reason}")


class NoOpLineError(LineError):
    """ADJUSTMENT line with zero quantity."""

    code: str = "NO_OP_LINE"

    def __init__(self, line_no: int | None = None):
        self.line_no = line_no
        prefix = f"Line {line_no}: " if line_no is not None else ""
        super().__init__(f"{prefix}adjustment quantity must be non-zero")


# Ledger-related exceptions


class LedgerError(WarehouseKernelError):
    """Base exception for stock ledger errors."""

    code: str = "LEDGER_ERROR"


class InsufficientStockError(LedgerError):
    """Net delta would drive a stock row below zero."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        product_id: str,
        location_id: str,
        requested: int,
        available: int,
    ):
        self.product_id = product_id
        self.location_id = location_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock of product {product_id} at location "
            f"{location_id}: requested {requested}, available {available}"
        )


# Inventory count exceptions


class CountError(WarehouseKernelError):
    """Base exception for inventory count errors."""

    code: str = "COUNT_ERROR"


class CountNotFoundError(CountError):
    """Inventory count with given ID was not found."""

    code: str = "COUNT_NOT_FOUND"

    def __init__(self, count_id: str):
        self.count_id = count_id
        super().__init__(f"Inventory count not found: {count_id}")


class EmptyCountError(CountError):
    """Inventory count has no recorded lines."""

    code: str = "COUNT_EMPTY"

    def __init__(self, count_id: str):
        self.count_id = count_id
        super().__init__(f"Inventory count {count_id} has no lines")


# Catalog exceptions


class CatalogError(WarehouseKernelError):
    """Base exception for warehouse/product/location reference data."""

    code: str = "CATALOG_ERROR"


class WarehouseNotFoundError(CatalogError):
    """Warehouse not found or inactive."""

    code: str = "WAREHOUSE_NOT_FOUND"

    def __init__(self, warehouse_ref: str):
        self.warehouse_ref = warehouse_ref
        super().__init__(f"Warehouse not found: {warehouse_ref}")


class ProductNotFoundError(CatalogError):
    """Product ID, EAN or SKU does not resolve to an active product."""

    code: str = "PRODUCT_NOT_FOUND"

    def __init__(self, product_ref: str):
        self.product_ref = product_ref
        super().__init__(f"Product not found: {product_ref}")


class LocationNotFoundError(CatalogError):
    """Location ID or barcode does not resolve."""

    code: str = "LOCATION_NOT_FOUND"

    def __init__(self, location_ref: str):
        self.location_ref = location_ref
        super().__init__(f"Location not found: {location_ref}")


class DuplicateCodeError(CatalogError):
    """A unique business code is already registered."""

    code: str = "DUPLICATE_CODE"

    def __init__(self, entity_type: str, field: str, value: str):
        self.entity_type = entity_type
        self.field = field
        self.value = value
        super().__init__(f"{entity_type} with {field}={value!r} already exists")


class InvalidCodeFormatError(CatalogError):
    """A barcode, EAN or warehouse code does not match its format."""

    code: str = "INVALID_CODE_FORMAT"

    def __init__(self, field: str, value: str, expected: str):
        self.field = field
        self.value = value
        self.expected = expected
        super().__init__(f"Invalid {field} {value!r}: expected {expected}")


class LocationStatusLockedError(CatalogError):
    """Location status cannot be changed by hand right now."""

    code: str = "LOCATION_STATUS_LOCKED"

    def __init__(self, location_id: str, current: str, requested: str, reason: str):
        self.location_id = location_id
        self.current = current
        self.requested = requested
        self.reason = reason
        super().__init__(
            f"Location {location_id} cannot go from {current} to {requested}: {reason}"
        )


# Audit exceptions


class AuditError(WarehouseKernelError):
    """Base exception for audit trail errors."""

    code: str = "AUDIT_ERROR"


class AuditWriteFailedError(AuditError):
    """
    Stock mutation committed but one or more audit records were lost.

    Raised after commit so operators are alerted.  ``result`` holds the
    committed operation result.
    """

    code: str = "AUDIT_WRITE_FAILED"

    def __init__(self, failed_actions: list[str], result=None):
        self.failed_actions = failed_actions
        self.result = result
        super().__init__(
            f"Operation committed but {len(failed_actions)} audit record(s) "
            f"failed to write: {', '.join(failed_actions)}"
        )


class AuditChainBrokenError(AuditError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_record_id: str, expected_hash: str, actual_hash: str):
        self.audit_record_id = audit_record_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at {audit_record_id}: "
            f"expected {expected_hash}, found {actual_hash}"
        )


# Access control exceptions


class AccessError(WarehouseKernelError):
    """Base exception for access control errors."""

    code: str = "ACCESS_ERROR"


class AccessDeniedError(AccessError):
    """Actor is not permitted to perform the operation."""

    code: str = "ACCESS_DENIED"

    def __init__(self, actor_id: str, permission: str, reason: str):
        self.actor_id = actor_id
        self.permission = permission
        self.reason = reason
        super().__init__(f"Access denied for {actor_id} on {permission}: {reason}")


# Immutability exceptions


class ImmutabilityError(WarehouseKernelError):
    """Base exception for immutability violations."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Confirmed/cancelled documents, their lines, stock movements and audit
    records are protected by ORM listeners (db/immutability.py).
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
