"""HTTP client for the boards.

Thin wrapper over ``requests`` that speaks the camelCase JSON of the API and
turns problem+json error bodies into ``ApiError``.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

import requests

from ..config import get_settings

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Non-2xx response or transport failure. ``status_code`` is 0 when no response arrived."""

    def __init__(self, status_code: int, message: str, code: Optional[str] = None, payload: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.code = code
        self.payload = payload


class LabApiClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        app_settings = get_settings()
        self.base_url = (base_url or app_settings.API_BASE_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else app_settings.API_TIMEOUT_SECONDS
        self.session = session or requests.Session()
        self.session.headers.update({"Accept": "application/json"})
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    def _request(self, method: str, path: str, *, params: Optional[dict] = None, json: Any = None) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, params=params, json=json, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.warning(f"{method} {url} failed: {exc}")
            raise ApiError(0, str(exc)) from exc

        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict):
                message = body.get("detail") or body.get("title") or response.reason
                code = body.get("code")
            else:
                message = response.text[:200] or response.reason
                code = None
            raise ApiError(response.status_code, str(message), code=code, payload=body)

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    # Orders

    def list_orders(self, user_id: Optional[str] = None) -> list[dict]:
        params = {"userId": user_id} if user_id else None
        return self._request("GET", "/api/orders", params=params)

    def get_order(self, order_ref: int | str) -> dict:
        return self._request("GET", "/api/orders", params={"id": str(order_ref)})

    def update_order(self, order_ref: int | str, patch: dict) -> dict:
        return self._request("PATCH", "/api/orders", params={"id": str(order_ref)}, json=patch)

    # Production jobs

    def list_jobs(self, **filters: Any) -> list[dict]:
        params = {key: value for key, value in filters.items() if value not in (None, "")}
        return self._request("GET", "/api/production", params=params or None)

    def update_job(self, job_id: int | str, patch: dict) -> dict:
        return self._request("PATCH", "/api/production", params={"id": str(job_id)}, json=patch)

    # Stage catalogs

    def list_kanban_stages(self) -> list[dict]:
        return self._request("GET", "/api/stages")

    def reorder_kanban_stages(self, items: list[dict]) -> list[dict]:
        body = self._request("PUT", "/api/stages", json={"stages": items})
        return body.get("stages", []) if isinstance(body, dict) else body

    def list_production_stages(self) -> list[dict]:
        return self._request("GET", "/api/production/stages")

    def reorder_production_stages(self, items: list[dict]) -> list[dict]:
        return self._request("PUT", "/api/production/stages", json={"stages": items})
