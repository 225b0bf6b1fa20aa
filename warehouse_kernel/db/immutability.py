"""
ORM-level immutability enforcement.

===============================================================================
WHY THIS EXISTS
===============================================================================

Services already refuse to edit confirmed documents.  These listeners are the
second layer: they catch writes that bypass the services (scripts, admin
shells, future code paths) before the SQL reaches the database.

    session.flush()
         |
         v
    [before_insert / before_update / before_delete]
         |--> _check_*() --> ImmutabilityViolationError (flush aborted)
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity         | When immutable                     | Allowed change
---------------|------------------------------------|-------------------------------
Document       | status CONFIRMED                   | -> CANCELLED + cancel fields
Document       | status CANCELLED                   | none
DocumentLine   | old or new parent not DRAFT        | none (no insert/update/delete/move)
StockMovement  | always                             | none
AuditRecord    | always                             | none

``updated_at`` / ``updated_by_id`` are bookkeeping metadata and may always
change.  The previous status is read from attribute history, so the
DRAFT -> CONFIRMED transition itself is allowed.
"""

from sqlalchemy import event, select
from sqlalchemy.orm.attributes import get_history

from warehouse_kernel.domain.values import DocumentStatus
from warehouse_kernel.exceptions import ImmutabilityViolationError
from warehouse_kernel.logging_config import get_logger
from warehouse_kernel.models.audit_record import AuditRecord
from warehouse_kernel.models.document import Document, DocumentLine
from warehouse_kernel.models.stock import StockMovement

logger = get_logger("db.immutability")

_METADATA_FIELDS = frozenset({"updated_at", "updated_by_id"})

_CANCEL_FIELDS = frozenset({
    "status",
    "cancelled_at",
    "cancelled_by_id",
    "cancel_reason",
}) | _METADATA_FIELDS


def _blocked(entity_type: str, entity_id, reason: str) -> ImmutabilityViolationError:
    logger.error(
        "immutability_violation_blocked",
        extra={"entity_type": entity_type, "entity_id": str(entity_id), "reason": reason},
    )
    return ImmutabilityViolationError(entity_type, str(entity_id), reason)


def _changed_columns(mapper, target) -> set[str]:
    return {
        attr.key
        for attr in mapper.column_attrs
        if get_history(target, attr.key).has_changes()
    }


def _previous_status(target) -> DocumentStatus:
    history = get_history(target, "status")
    if history.deleted:
        return history.deleted[0]
    return target.status


# -----------------------------------------------------------------------------
# Document
# -----------------------------------------------------------------------------


def _check_document_update(mapper, connection, target):
    previous = _previous_status(target)
    if previous == DocumentStatus.DRAFT:
        return

    changed = _changed_columns(mapper, target)

    if previous == DocumentStatus.CANCELLED:
        forbidden = changed - _METADATA_FIELDS
        if forbidden:
            raise _blocked(
                "Document", target.id,
                f"cancelled document cannot be modified (fields: {sorted(forbidden)})",
            )
        return

    # CONFIRMED: the only legal change is the transition to CANCELLED
    forbidden = changed - _CANCEL_FIELDS
    if forbidden:
        raise _blocked(
            "Document", target.id,
            f"confirmed document cannot be modified (fields: {sorted(forbidden)})",
        )
    if "status" in changed and target.status != DocumentStatus.CANCELLED:
        raise _blocked(
            "Document", target.id,
            f"confirmed document can only move to CANCELLED, not {target.status.value}",
        )


def _check_document_delete(mapper, connection, target):
    if _previous_status(target) != DocumentStatus.DRAFT:
        raise _blocked("Document", target.id, "non-draft documents cannot be deleted")


# -----------------------------------------------------------------------------
# DocumentLine
# -----------------------------------------------------------------------------


def _parent_status(connection, document_id) -> DocumentStatus | None:
    return connection.execute(
        select(Document.status).where(Document.id == document_id)
    ).scalar_one_or_none()


def _parent_ids(target) -> list:
    """The line's current parent plus any parent it had before this flush."""
    ids = [target.document_id]
    ids.extend(get_history(target, "document_id").deleted)
    return [document_id for document_id in dict.fromkeys(ids) if document_id is not None]


def _check_line_write(mapper, connection, target):
    # Re-parenting, or nulling the FK while the parent is deleted, counts as
    # a write to the old parent too.
    for document_id in _parent_ids(target):
        status = _parent_status(connection, document_id)
        if status is not None and status != DocumentStatus.DRAFT:
            raise _blocked(
                "DocumentLine", target.id,
                f"lines of a {status.value} document cannot be changed",
            )


# -----------------------------------------------------------------------------
# Append-only tables
# -----------------------------------------------------------------------------


def _append_only(entity_type: str, operation: str):
    def _check(mapper, connection, target):
        raise _blocked(entity_type, target.id, f"{entity_type} rows cannot be {operation}")

    _check.__name__ = f"_check_{entity_type.lower()}_{operation}"
    return _check


_check_movement_update = _append_only("StockMovement", "updated")
_check_movement_delete = _append_only("StockMovement", "deleted")
_check_audit_update = _append_only("AuditRecord", "updated")
_check_audit_delete = _append_only("AuditRecord", "deleted")


_LISTENERS = (
    (Document, "before_update", _check_document_update),
    (Document, "before_delete", _check_document_delete),
    (DocumentLine, "before_insert", _check_line_write),
    (DocumentLine, "before_update", _check_line_write),
    (DocumentLine, "before_delete", _check_line_write),
    (StockMovement, "before_update", _check_movement_update),
    (StockMovement, "before_delete", _check_movement_delete),
    (AuditRecord, "before_update", _check_audit_update),
    (AuditRecord, "before_delete", _check_audit_delete),
)


def register_immutability_listeners() -> None:
    """Register all immutability listeners. Safe to call more than once."""
    for target, event_name, listener_fn in _LISTENERS:
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)
    logger.debug("immutability_listeners_registered", extra={"count": len(_LISTENERS)})


def _safe_remove_listener(target, event_name, listener_fn) -> None:
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners() -> None:
    """Remove the immutability listeners. FOR TESTING ONLY."""
    for target, event_name, listener_fn in _LISTENERS:
        _safe_remove_listener(target, event_name, listener_fn)
