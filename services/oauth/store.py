import asyncio
import time
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlencode, urljoin

import httpx

from services.oauth.credentials import Credential
from shared.logging.logger import get_logger
from shared.runtime.errors import AuthError, TransportError
from shared.runtime.events import EventHub
from shared.utils.http import request_json

log = get_logger("oauth.store")


class CredentialStore:
    """
    Owner of one OAuth2 credential set.

    Responsibilities:
    - Build the provider authorization URL
    - Exchange authorization codes, refresh and revoke tokens
    - Guarantee at most one network refresh per stale window (ensure_fresh)
    - Emit `credentials` whenever the dynamic fields change

    The credential is private; consumers read the token through
    `access_token` at the moment they need it.
    """

    def __init__(
        self,
        credential: Credential,
        *,
        base_url: str,
        authorize_path: str = "authorize",
        token_path: str = "token",
        revoke_path: str = "revoke",
        extra_auth_params: Optional[Dict[str, Any]] = None,
        events: Optional[EventHub] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
    ):
        if not credential.client_id:
            raise RuntimeError("OAuth client_id is required")

        self._credential = credential
        self._base_url = base_url
        self._paths = {
            "authorize": authorize_path,
            "token": token_path,
            "revoke": revoke_path,
        }
        self._extra_auth_params = dict(extra_auth_params or {})
        self._transport = transport
        self._clock = clock
        self._refresh_task: Optional[asyncio.Future] = None

        self.events = events or EventHub(owner=f"oauth:{credential.name}")

    # ------------------------------------------------------------------ #
    # Accessors
    # ------------------------------------------------------------------ #

    @property
    def name(self) -> str:
        return self._credential.name

    @property
    def access_token(self) -> str:
        return self._credential.access_token

    @property
    def refresh_token(self) -> str:
        return self._credential.refresh_token

    @property
    def expires_time(self) -> Optional[float]:
        return self._credential.expires_time

    def is_stale(self) -> bool:
        return self._credential.is_stale(self._clock())

    def get_credentials(self) -> Dict[str, Any]:
        return self._credential.snapshot()

    def update_credentials(self, snapshot: Dict[str, Any]) -> None:
        """
        Replace the dynamic fields from an external source (for example a
        shared owner account refreshed by another process).
        """
        fresh = Credential.from_dict(
            {"client_id": self._credential.client_id, **snapshot}
        )
        self._credential.name = snapshot.get("name") or self._credential.name
        self._credential.access_token = fresh.access_token
        self._credential.refresh_token = fresh.refresh_token
        self._credential.expires_in = fresh.expires_in
        self._credential.expires_time = fresh.expires_time

    # ------------------------------------------------------------------ #
    # Authorization
    # ------------------------------------------------------------------ #

    def authorization_url(self) -> str:
        params = {
            "response_type": "code",
            "client_id": self._credential.client_id,
            "redirect_uri": self._credential.redirect_url,
            "scope": self._credential.scope_string,
        }
        params.update(self._extra_auth_params)
        return f"{self._base_url}{self._paths['authorize']}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> Dict[str, Any]:
        result = await self._post(
            "token",
            {
                "grant_type": "authorization_code",
                "client_id": self._credential.client_id,
                "client_secret": self._credential.client_secret,
                "redirect_uri": self._credential.redirect_url,
                "code": code,
            },
        )
        self._store_grant(result, previous_refresh=self._credential.refresh_token)
        log.info(f"[OAuth][{self.name}] Authorization code exchanged")
        return result

    async def refresh(self, refresh_token: Optional[str] = None) -> Dict[str, Any]:
        token = refresh_token if refresh_token is not None else self._credential.refresh_token
        result = await self._post(
            "token",
            {
                "grant_type": "refresh_token",
                "client_id": self._credential.client_id,
                "client_secret": self._credential.client_secret,
                "refresh_token": token,
            },
        )
        # Providers may not rotate the refresh token
        self._store_grant(result, previous_refresh=token)
        log.info(f"[OAuth][{self.name}] Access token refreshed")
        return result

    async def revoke(self) -> Dict[str, Any]:
        result = await self._post(
            "revoke",
            {"token": self._credential.access_token},
        )
        self._credential.access_token = ""
        self._credential.refresh_token = ""
        self._credential.expires_in = None
        self._credential.expires_time = None
        log.info(f"[OAuth][{self.name}] Tokens revoked")
        self.events.emit("credentials", self.get_credentials())
        return result if isinstance(result, dict) else {}

    # ------------------------------------------------------------------ #
    # Freshness guard
    # ------------------------------------------------------------------ #

    async def ensure_fresh(self) -> None:
        """
        Refresh the access token if it is stale.

        All callers arriving during the stale window share a single refresh
        and observe the same resulting token (or the same AuthError).
        """
        task = self._refresh_task
        if task is not None and task.done():
            self._refresh_task = task = None

        if task is None:
            if not self.is_stale():
                return
            log.debug(f"[OAuth][{self.name}] Token stale; refreshing")
            task = asyncio.ensure_future(self.refresh(self._credential.refresh_token))
            task.add_done_callback(self._on_refresh_done)
            self._refresh_task = task

        await asyncio.shield(task)

    def _on_refresh_done(self, task: asyncio.Future) -> None:
        if self._refresh_task is task:
            self._refresh_task = None
        if not task.cancelled():
            # mark retrieved even when every waiter was cancelled
            task.exception()

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #

    def _store_grant(self, result: Dict[str, Any], *, previous_refresh: str) -> None:
        expires_in = int(result.get("expires_in") or 0)
        self._credential.access_token = result.get("access_token") or ""
        self._credential.refresh_token = result.get("refresh_token") or previous_refresh
        self._credential.expires_in = expires_in
        self._credential.expires_time = int(self._clock()) + expires_in
        self.events.emit("credentials", self.get_credentials())

    async def _post(self, path_key: str, data: Dict[str, Any]) -> Dict[str, Any]:
        url = urljoin(self._base_url, self._paths[path_key])
        try:
            result = await request_json(
                "POST",
                url,
                data=data,
                transport=self._transport,
                error_cls=AuthError,
            )
        except AuthError as e:
            log.warning(
                f"[OAuth][{self.name}] status: {e.status}, url: {e.url or url}, "
                f"message: {e.body}"
            )
            raise
        except TransportError as e:
            log.warning(f"[OAuth][{self.name}] url: {url}, transport error: {e}")
            raise AuthError(str(e), status=None, body=str(e), url=url) from e

        if not isinstance(result, dict):
            raise AuthError(
                f"Unexpected token endpoint payload from {url}",
                status=None,
                body=result,
                url=url,
            )
        return result


__all__ = ["CredentialStore"]
