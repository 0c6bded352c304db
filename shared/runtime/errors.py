"""Connector error taxonomy.

Every failure raised by the OAuth, RPC and streaming layers derives from
ConnectorError so loop boundaries can catch one type and convert it into an
`error` event.
"""

from __future__ import annotations

from typing import Any, Optional


class ConnectorError(RuntimeError):
    """Base class for all connector failures."""


class TransportError(ConnectorError):
    """Network failure or a response body that could not be decoded."""


class ApiError(ConnectorError):
    """
    Non-2xx response from a remote API.

    `body` holds the decoded JSON payload when available, otherwise the raw
    response text.
    """

    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        body: Any = None,
        url: Optional[str] = None,
    ):
        super().__init__(message)
        self.status = status
        self.body = body
        self.url = url

    def __str__(self) -> str:
        base = super().__str__()
        if self.status is None:
            return base
        return f"{base} (status={self.status})"


class AuthError(ApiError):
    """
    OAuth exchange / refresh / revoke failure.

    A 4xx status means the stored grant is no longer usable and the account
    has to go through the authorization URL again.
    """

    @property
    def needs_login(self) -> bool:
        return self.status is not None and 400 <= self.status < 500


class QuotaError(ApiError):
    """HTTP 403 from the video platform API (quota exhausted)."""


class VkApiError(ApiError):
    """`{"error": {...}}` payload returned by the VK method API."""

    @property
    def error_code(self) -> Optional[int]:
        if isinstance(self.body, dict):
            return self.body.get("error_code")
        return None


class RemoteCallError(ConnectorError):
    """A single batched remote call failed; `payload` is the remote error."""

    def __init__(self, payload: Any):
        super().__init__(f"Remote call failed: {payload!r}")
        self.payload = payload


__all__ = [
    "ConnectorError",
    "TransportError",
    "ApiError",
    "AuthError",
    "QuotaError",
    "VkApiError",
    "RemoteCallError",
]
