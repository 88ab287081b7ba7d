"""
HTTP client for the marketplace backend

Wraps httpx.AsyncClient, unwraps the backend's ``{success, message, data}``
envelope and maps failures onto the checkout error taxonomy.
"""
from typing import Any, Dict, Optional

import httpx

from snapfest.core.config import settings
from snapfest.core.exceptions import (
    BackendError,
    NetworkError,
    NotFoundError,
    ValidationError,
)
from snapfest.core.logging_config import logger


class BackendClient:
    """Authenticated JSON client for one user session"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=(base_url or settings.BACKEND_API_URL).rstrip("/"),
            headers=headers,
            timeout=timeout if timeout is not None else settings.BACKEND_TIMEOUT,
            transport=transport,
        )

    async def __aenter__(self) -> "BackendClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self.request("POST", path, json=json)

    async def put(self, path: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await self.request("PUT", path, json=json)

    async def delete(self, path: str) -> Dict[str, Any]:
        return await self.request("DELETE", path)

    async def request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Send a request and return the envelope's ``data`` object

        Raises:
            ValidationError: 400/422
            NotFoundError: 404
            NetworkError: transport errors, timeouts and 5xx
            BackendError: any other rejection
        """
        try:
            response = await self._client.request(method, path, json=json, params=params)
        except httpx.TimeoutException as e:
            logger.error(f"Backend timeout: {method} {path}")
            raise NetworkError(f"Request to {path} timed out") from e
        except httpx.TransportError as e:
            logger.error(f"Backend transport error: {method} {path} - {str(e)}")
            raise NetworkError(f"Could not reach backend: {str(e)}") from e

        body = self._decode(response)
        message = str(body.get("message") or "")

        if response.status_code >= 400 or body.get("success") is False:
            logger.warning(
                f"Backend rejected {method} {path}: {response.status_code} - {message}"
            )
            raise self._error_for(response.status_code, message or response.reason_phrase)

        data = body.get("data")
        return data if isinstance(data, dict) else {}

    @staticmethod
    def _decode(response: httpx.Response) -> Dict[str, Any]:
        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError:
            if response.status_code >= 500:
                raise NetworkError(f"Backend error {response.status_code}")
            raise BackendError(f"Malformed backend response ({response.status_code})")
        return body if isinstance(body, dict) else {"data": body}

    @staticmethod
    def _error_for(status_code: int, message: str) -> Exception:
        if status_code in (400, 422):
            return ValidationError(message)
        if status_code == 404:
            return NotFoundError(message)
        if status_code >= 500:
            return NetworkError(message)
        return BackendError(message)
