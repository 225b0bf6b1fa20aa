"""Role/permission checks (pure, no database)."""

from uuid import uuid4

import pytest

from warehouse_config import AccessConfig
from warehouse_services import access
from warehouse_services.access import Actor, check_permission

ROLES = AccessConfig(
    roles={
        "ADMIN": frozenset({"*"}),
        "CLERK": frozenset({access.DOCUMENT_CREATE, access.DOCUMENT_EDIT}),
        "AUDITOR": frozenset({access.AUDIT_READ, access.STOCK_READ}),
    }
)


def actor(*roles):
    return Actor(id=uuid4(), roles=roles)


class TestCheckPermission:
    def test_granted_permission(self):
        assert check_permission(ROLES, actor("CLERK"), access.DOCUMENT_CREATE) == (True, "")

    def test_missing_permission(self):
        allowed, reason = check_permission(ROLES, actor("CLERK"), access.DOCUMENT_CONFIRM)
        assert not allowed
        assert access.DOCUMENT_CONFIRM in reason

    def test_wildcard_grants_everything(self):
        for permission in access.PERMISSION_TAXONOMY:
            assert check_permission(ROLES, actor("ADMIN"), permission)[0]

    def test_roles_are_case_insensitive(self):
        assert check_permission(ROLES, actor("clerk"), access.DOCUMENT_EDIT)[0]

    def test_permissions_union_across_roles(self):
        both = actor("CLERK", "AUDITOR")
        assert check_permission(ROLES, both, access.DOCUMENT_CREATE)[0]
        assert check_permission(ROLES, both, access.AUDIT_READ)[0]

    def test_no_roles_fails_closed(self):
        assert check_permission(ROLES, actor(), access.STOCK_READ) == (
            False,
            "actor has no roles",
        )

    def test_unknown_role_grants_nothing(self):
        assert not check_permission(ROLES, actor("VISITOR"), access.STOCK_READ)[0]

    @pytest.mark.parametrize("permission", ["stock.write", "", "*"])
    def test_unknown_permission_denied_even_for_admin(self, permission):
        allowed, reason = check_permission(ROLES, actor("ADMIN"), permission)
        assert not allowed
        assert "unknown permission" in reason
