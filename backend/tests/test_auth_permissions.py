from __future__ import annotations

from types import SimpleNamespace

import pytest
from fastapi import HTTPException

from labflow.auth import (
    ROLE_PERMISSIONS,
    PermissionChecker,
    check_permission,
    create_access_token,
    decode_token,
)

PERMISSION_KEYS = {
    "canViewAllOrders",
    "canEditOrders",
    "canDeleteOrders",
    "canManageStages",
    "canViewProduction",
    "canEditProduction",
    "taskMoveBackward",
}


@pytest.mark.parametrize(
    ("role", "granted"),
    [
        ("administrator", PERMISSION_KEYS),
        ("admin", PERMISSION_KEYS),
        ("manager", PERMISSION_KEYS - {"canDeleteOrders"}),
        ("tecnico", {"canViewAllOrders", "canEditOrders", "canViewProduction", "canEditProduction"}),
        ("atendente", {"canViewAllOrders", "canEditOrders", "canViewProduction"}),
        ("user", {"canEditOrders"}),
    ],
)
def test_role_permission_matrix_is_stable(role: str, granted: set[str]) -> None:
    assert set(ROLE_PERMISSIONS[role]) == PERMISSION_KEYS
    assert {key for key, value in ROLE_PERMISSIONS[role].items() if value} == granted


def test_role_lookup_is_case_insensitive_and_unknown_roles_get_nothing() -> None:
    assert check_permission(SimpleNamespace(role="Manager"), "taskMoveBackward") is True
    assert check_permission(SimpleNamespace(role="visitor"), "canEditOrders") is False
    assert check_permission(SimpleNamespace(role=None), "canEditOrders") is False


def test_permission_checker_rejects_missing_permission() -> None:
    checker = PermissionChecker("canManageStages")
    tecnico = SimpleNamespace(id=3, role="tecnico")

    with pytest.raises(HTTPException) as exc:
        checker(current_user=tecnico)

    assert exc.value.status_code == 403
    admin = SimpleNamespace(id=1, role="admin")
    assert checker(current_user=admin) is admin


def test_access_token_round_trip_and_garbage_rejected() -> None:
    payload = decode_token(create_access_token({"sub": "15"}))
    assert payload["sub"] == "15"
    assert payload["type"] == "access"

    with pytest.raises(HTTPException) as exc:
        decode_token("not-a-token")
    assert exc.value.status_code == 401
