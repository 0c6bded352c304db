from typing import Any, Dict, Optional

import httpx

from services.oauth.store import CredentialStore
from shared.logging.logger import get_logger
from shared.runtime.errors import ApiError, QuotaError
from shared.utils.http import request_json, request_text

log = get_logger("youtube.client")


class YouTubeDataClient:
    """
    Bearer-authenticated access to the YouTube Data API v3.

    Every request first asks the supplied CredentialStore for a fresh token,
    so callers never send an expired one. A 403 is surfaced as QuotaError so
    account routing can fail over instead of retrying the same account.
    """

    BASE_URL = "https://www.googleapis.com/youtube/v3/"

    def __init__(
        self,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 15.0,
    ):
        self.timeout = timeout
        self._transport = transport

    async def get(
        self,
        path: str,
        params: Dict[str, Any],
        *,
        auth: CredentialStore,
    ) -> Dict[str, Any]:
        return await self._request("GET", path, params, auth=auth)

    async def post(
        self,
        path: str,
        params: Dict[str, Any],
        payload: Dict[str, Any],
        *,
        auth: CredentialStore,
    ) -> Dict[str, Any]:
        return await self._request("POST", path, params, payload=payload, auth=auth)

    async def get_text(self, url: str) -> str:
        return await request_text(
            "GET",
            url,
            transport=self._transport,
            timeout=self.timeout,
        )

    # ------------------------------------------------------------------ #

    async def _request(
        self,
        method: str,
        path: str,
        params: Dict[str, Any],
        *,
        auth: CredentialStore,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        await auth.ensure_fresh()

        try:
            return await request_json(
                method,
                self.BASE_URL + path,
                params=params,
                json_body=payload,
                headers={"Authorization": f"Bearer {auth.access_token}"},
                transport=self._transport,
                timeout=self.timeout,
            )
        except ApiError as e:
            if e.status == 403:
                log.warning(f"[YouTube] {path} forbidden (quota): {_error_message(e.body)}")
                raise QuotaError(
                    f"{method} {path} forbidden",
                    status=e.status,
                    body=e.body,
                    url=e.url,
                ) from e
            raise


def _error_message(body: Any) -> Any:
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return body["error"].get("message", body)
    return body


__all__ = ["YouTubeDataClient"]
