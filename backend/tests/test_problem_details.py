from __future__ import annotations

from fastapi import FastAPI
from fastapi.testclient import TestClient

from labflow.domain_errors import ConflictError, DomainError, NotFoundError, PersistenceError
from labflow.problem_details import build_problem_details_response, domain_error_handler


def test_problem_details_payload_contains_stable_code_and_rfc7807_fields() -> None:
    response = build_problem_details_response(
        DomainError(
            code="PROBE_ERROR",
            http_status=409,
            message="probe failed",
            details={"probe": True},
        ),
        instance="/api/orders",
    )

    assert response.status_code == 409
    assert response.media_type == "application/problem+json"

    body = response.body.decode("utf-8")
    assert '"type":"https://api.labflow.local/problems/probe-error"' in body
    assert '"title":"Conflict"' in body
    assert '"status":409' in body
    assert '"detail":"probe failed"' in body
    assert '"code":"PROBE_ERROR"' in body
    assert '"instance":"/api/orders"' in body
    assert '"details":{"probe":true}' in body


def test_problem_details_omits_details_when_none() -> None:
    response = build_problem_details_response(
        DomainError(
            code="NO_DETAILS",
            http_status=422,
            message="validation failed",
            details=None,
        )
    )

    body = response.body.decode("utf-8")
    assert response.status_code == 422
    assert '"code":"NO_DETAILS"' in body
    assert '"details"' not in body
    assert '"instance"' not in body


def test_error_subclasses_carry_their_http_status() -> None:
    assert NotFoundError(code="X", message="m").http_status == 404
    assert ConflictError(code="X", message="m").http_status == 409
    assert PersistenceError(code="X", message="m").http_status == 500
    assert str(ConflictError(code="X", message="stale")) == "stale"


def test_fastapi_exception_handler_maps_domain_error_to_problem_details() -> None:
    app = FastAPI()
    app.add_exception_handler(DomainError, domain_error_handler)

    @app.get("/boom")
    def _boom():
        raise ConflictError(
            code="ORDER_VERSION_CONFLICT",
            message="Order was modified by another request",
            details={"expectedVersion": 2, "currentVersion": 3},
        )

    client = TestClient(app)
    response = client.get("/boom")

    assert response.status_code == 409
    assert response.headers["content-type"].startswith("application/problem+json")
    payload = response.json()
    assert payload["code"] == "ORDER_VERSION_CONFLICT"
    assert payload["instance"] == "/boom"
    assert payload["details"] == {"expectedVersion": 2, "currentVersion": 3}
