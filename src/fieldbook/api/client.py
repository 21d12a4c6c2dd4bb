"""HTTP+JSON transport for the back-office RPC endpoints."""

from __future__ import annotations

import logging
from typing import Any, Mapping

import httpx
from pydantic import ValidationError

from fieldbook.config.models import ApiSettings
from fieldbook.errors import NetworkError, PayloadError

from .models import RpcResponse

LOGGER = logging.getLogger(__name__)

SUPPORTED_METHODS = ("GET", "POST", "PUT", "DELETE")


class RpcClient:
    """Issue authenticated calls against the back office.

    The client owns its ``httpx.AsyncClient`` unless one is injected, in which
    case closing the RPC client leaves the injected one open. ``transport`` is
    only used for an owned client.
    """

    def __init__(
        self,
        settings: ApiSettings,
        *,
        client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=settings.timeout_seconds, transport=transport
        )

    async def __aenter__(self) -> "RpcClient":
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP client when this instance created it."""
        if self._owns_client:
            await self._client.aclose()

    def headers(self) -> dict[str, str]:
        """Return the headers attached to every request."""
        return {
            "Authorization": f"Bearer {self._settings.token or ''}",
            "Content-Type": "application/json",
        }

    async def call(
        self,
        endpoint: str,
        method: str = "GET",
        *,
        query: Mapping[str, Any] | None = None,
        body: Any = None,
    ) -> RpcResponse:
        """Call ``endpoint`` and return the decoded envelope.

        Args:
            endpoint: Path appended to the configured base URL.
            method: One of GET, POST, PUT or DELETE.
            query: Query-string parameters; ``None`` values are omitted.
            body: JSON body for POST and PUT.

        Returns:
            RpcResponse: Decoded response envelope.

        Raises:
            ValueError: If ``method`` is not supported.
            NetworkError: If the request fails or the server answers non-2xx.
            PayloadError: If the response body is not a valid envelope.
        """
        verb = method.upper()
        if verb not in SUPPORTED_METHODS:
            raise ValueError(f"Unsupported HTTP method: {method}")

        url = self._settings.base_url.rstrip("/") + "/" + endpoint.lstrip("/")
        params = {key: value for key, value in (query or {}).items() if value is not None}
        try:
            response = await self._client.request(
                verb,
                url,
                params=params or None,
                json=body if verb in ("POST", "PUT") else None,
                headers=self.headers(),
                timeout=self._settings.timeout_seconds,
            )
        except httpx.HTTPError as exc:
            LOGGER.warning("Error in API call to %s: %s", endpoint, exc)
            raise NetworkError(str(exc) or type(exc).__name__) from exc

        if response.is_error:
            message = _error_message(response)
            LOGGER.warning(
                "API call to %s failed (%s): %s", endpoint, response.status_code, message
            )
            raise NetworkError(message, status_code=response.status_code)

        try:
            return RpcResponse.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise PayloadError(
                f"Unreadable response from {endpoint}: {exc}", status_code=response.status_code
            ) from exc


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict) and payload.get("message"):
        return str(payload["message"])
    return response.reason_phrase or f"HTTP {response.status_code}"


__all__ = ["RpcClient", "SUPPORTED_METHODS"]
