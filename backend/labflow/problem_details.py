"""RFC 7807 Problem Details rendering for domain errors."""
from __future__ import annotations

import logging
from http import HTTPStatus

from fastapi import Request
from fastapi.responses import JSONResponse

from .domain_errors import DomainError

logger = logging.getLogger(__name__)

PROBLEM_TYPE_BASE = "https://api.labflow.local/problems"
PROBLEM_MEDIA_TYPE = "application/problem+json"


def problem_type_url(code: str) -> str:
    return f"{PROBLEM_TYPE_BASE}/{code.lower().replace('_', '-')}"


def build_problem_details_response(exc: DomainError, instance: str | None = None) -> JSONResponse:
    """Render DomainError as RFC 7807 payload; ``code`` stays machine-readable."""
    try:
        title = HTTPStatus(exc.http_status).phrase
    except ValueError:
        title = "Domain Error"

    payload: dict[str, object] = {
        "type": problem_type_url(exc.code),
        "title": title,
        "status": exc.http_status,
        "detail": exc.message,
        "code": exc.code,
    }
    if instance:
        payload["instance"] = instance
    if exc.details:
        payload["details"] = exc.details

    return JSONResponse(
        status_code=exc.http_status,
        content=payload,
        media_type=PROBLEM_MEDIA_TYPE,
    )


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    if exc.http_status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code} {exc.message}")
    return build_problem_details_response(exc, instance=request.url.path)
