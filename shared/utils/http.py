"""Thin httpx helpers shared by the OAuth, VK and YouTube connectors."""

from __future__ import annotations

import json
from typing import Any, Dict, Optional, Type

import httpx

from shared.runtime.errors import ApiError, TransportError

DEFAULT_TIMEOUT = 15.0


def clean_params(params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Drop None values so they never reach the query string."""
    if not params:
        return {}
    cleaned: Dict[str, Any] = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            value = "true" if value else "false"
        cleaned[key] = value
    return cleaned


def decode_body(response: httpx.Response) -> Any:
    text = response.text
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return text


async def send(
    method: str,
    url: str,
    *,
    params: Optional[Dict[str, Any]] = None,
    data: Optional[Dict[str, Any]] = None,
    json_body: Any = None,
    headers: Optional[Dict[str, str]] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    timeout: float = DEFAULT_TIMEOUT,
    error_cls: Type[ApiError] = ApiError,
) -> httpx.Response:
    """
    Perform one request and return the response.

    Raises TransportError on network failure and `error_cls` on non-2xx.
    """
    async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
        try:
            response = await client.request(
                method,
                url,
                params=clean_params(params),
                data=data,
                json=json_body,
                headers=headers,
            )
        except httpx.HTTPError as e:
            raise TransportError(f"{method} {url} failed: {e}") from e

    if response.is_error:
        raise error_cls(
            f"{method} {url} returned {response.status_code}",
            status=response.status_code,
            body=decode_body(response),
            url=str(response.request.url),
        )

    return response


async def request_json(method: str, url: str, **kwargs: Any) -> Any:
    response = await send(method, url, **kwargs)
    try:
        return response.json()
    except ValueError as e:
        raise TransportError(f"{method} {url} returned invalid JSON: {e}") from e


async def request_text(method: str, url: str, **kwargs: Any) -> str:
    response = await send(method, url, **kwargs)
    return response.text


__all__ = [
    "DEFAULT_TIMEOUT",
    "clean_params",
    "decode_body",
    "send",
    "request_json",
    "request_text",
]
