# Overview: HTTP client for the remote license server.

from __future__ import annotations

import logging
from typing import Any, Optional
from urllib.parse import quote

import httpx

logger = logging.getLogger(__name__)


class LicenseApiError(Exception):
    """Network failure or a non-JSON answer from the license server."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class LicenseApiClient:
    """
    Thin wrapper over httpx for the three license endpoints.

    Every method returns the decoded JSON body, including error bodies
    (4xx/5xx answers still carry {success, message, errorCode}). Transport
    failures raise LicenseApiError.
    """

    def __init__(self, base_url: str, timeout: float = 15.0, transport: Optional[httpx.BaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.Client(timeout=timeout, transport=transport)

    def _headers(self) -> dict:
        return {"Content-Type": "application/json", "Accept": "application/json"}

    def _decode(self, response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            raise LicenseApiError(
                f"License server returned non-JSON response ({response.status_code})",
                status_code=response.status_code,
            )
        if not isinstance(body, dict):
            raise LicenseApiError("License server returned an unexpected payload", status_code=response.status_code)
        if response.status_code >= 400:
            body.setdefault("success", False)
        return body

    def get(self, path: str) -> dict[str, Any]:
        try:
            response = self.client.get(f"{self.base_url}{path}", headers=self._headers())
        except httpx.HTTPError as exc:
            logger.warning("License GET %s failed: %s", path, exc)
            raise LicenseApiError(str(exc))
        return self._decode(response)

    def post(self, path: str, json: Optional[dict] = None) -> dict[str, Any]:
        try:
            response = self.client.post(f"{self.base_url}{path}", headers=self._headers(), json=json)
        except httpx.HTTPError as exc:
            logger.warning("License POST %s failed: %s", path, exc)
            raise LicenseApiError(str(exc))
        return self._decode(response)

    def get_license(self, fingerprint: str) -> dict[str, Any]:
        return self.get(f"/license/{quote(fingerprint, safe='')}")

    def first_activation(self, payload: dict) -> dict[str, Any]:
        return self.post("/first-activation", json=payload)

    def activate(self, payload: dict) -> dict[str, Any]:
        return self.post("/activate", json=payload)

    def close(self) -> None:
        self.client.close()
