"""
warehouse_services.access -- Role/permission check at the engine boundary.

Responsibility:
    Decide whether an actor (with assigned roles) may perform an operation
    (required permission), using the role map from ``warehouse_config``.

Architecture position:
    Services layer.  Consumes ``AccessConfig``.  Called by ``WarehouseEngine``
    before any session is opened.

Invariants:
    - The kernel remains actor-agnostic; this module does not resolve actor
      identity (the request layer supplies id and roles).
    - Fail closed: an actor without roles is denied.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING
from uuid import UUID

if TYPE_CHECKING:
    from warehouse_config.schema import AccessConfig

WILDCARD = "*"

# Permission taxonomy
DOCUMENT_CREATE = "document.create"
DOCUMENT_EDIT = "document.edit"
DOCUMENT_CONFIRM = "document.confirm"
DOCUMENT_CANCEL = "document.cancel"
COUNT_START = "count.start"
COUNT_RECORD = "count.record"
COUNT_COMPLETE = "count.complete"
COUNT_CANCEL = "count.cancel"
COUNT_REOPEN = "count.reopen"
CATALOG_MANAGE = "catalog.manage"
STOCK_READ = "stock.read"
AUDIT_READ = "audit.read"

PERMISSION_TAXONOMY: frozenset[str] = frozenset(
    {
        DOCUMENT_CREATE,
        DOCUMENT_EDIT,
        DOCUMENT_CONFIRM,
        DOCUMENT_CANCEL,
        COUNT_START,
        COUNT_RECORD,
        COUNT_COMPLETE,
        COUNT_CANCEL,
        COUNT_REOPEN,
        CATALOG_MANAGE,
        STOCK_READ,
        AUDIT_READ,
    }
)


@dataclass(frozen=True)
class Actor:
    """Who is calling: a user id and the roles the request layer resolved."""

    id: UUID
    roles: tuple[str, ...] = ()


def check_permission(
    access: AccessConfig,
    actor: Actor,
    required_permission: str,
) -> tuple[bool, str]:
    """Check whether the actor holds ``required_permission``.

    Returns:
        (allowed, reason). reason is empty when allowed, or a short
        message when denied.
    """
    if required_permission not in PERMISSION_TAXONOMY:
        return (False, f"unknown permission '{required_permission}'")
    if not actor.roles:
        return (False, "actor has no roles")

    permissions: set[str] = set()
    for role in actor.roles:
        permissions |= access.permissions_for(role.upper())

    if WILDCARD in permissions or required_permission in permissions:
        return (True, "")
    return (False, f"permission '{required_permission}' not granted to roles {sorted(actor.roles)}")
