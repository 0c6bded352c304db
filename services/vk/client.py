import asyncio
from typing import Any, Dict, Optional

import httpx

from services.oauth.credentials import Credential
from services.oauth.store import CredentialStore
from services.vk.api.longpoll import GroupLongPoll
from services.vk.api.rpc import RpcBatcher
from shared.logging.logger import get_logger
from shared.runtime.errors import AuthError
from shared.runtime.events import EventHub

log = get_logger("vk.client")


class VkClient:
    """
    VK connector facade.

    Owns the user credential, the batched method dispatcher and (when a
    community token is configured) the community long-poll listener. All
    three publish on the same event hub.
    """

    OAUTH_BASE = "https://oauth.vk.com/"

    def __init__(
        self,
        credential: Credential,
        *,
        group_token: Optional[str] = None,
        group_id: Optional[int] = None,
        api_version: str = "5.92",
        tick_interval: float = 0.1,
        events: Optional[EventHub] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_version = api_version
        self.group_token = group_token
        self.events = events or EventHub(owner="vk")

        self.credentials = CredentialStore(
            credential,
            base_url=self.OAUTH_BASE,
            authorize_path="authorize",
            token_path="access_token",
            extra_auth_params={
                "display": "page",
                "revoke": 1,
                "v": api_version,
            },
            events=self.events,
            transport=transport,
        )
        self.rpc = RpcBatcher(
            self.credentials,
            api_version=api_version,
            tick_interval=tick_interval,
            events=self.events,
            transport=transport,
        )
        self.longpoll: Optional[GroupLongPoll] = None
        if group_token:
            self.longpoll = GroupLongPoll(
                group_token=group_token,
                group_id=group_id,
                api_version=api_version,
                events=self.events,
                transport=transport,
            )

        self._poll_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------ #

    def on(self, event: str, handler):
        return self.events.on(event, handler)

    def authorization_url(self) -> str:
        return self.credentials.authorization_url()

    def get_credentials(self) -> Dict[str, Any]:
        credentials = self.credentials.get_credentials()
        credentials["group_token"] = self.group_token
        return credentials

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def login(self) -> bool:
        if not self.credentials.access_token:
            if not self.credentials.refresh_token:
                log.info("[VK] No user token; login required")
                self.events.emit("login")
                return False
            try:
                await self.credentials.refresh()
            except AuthError as e:
                log.error(f"[VK] Token refresh failed: {e}")
                if e.needs_login:
                    self.events.emit("login")
                else:
                    self.events.emit("error", e)
                return False

        self.rpc.start()
        if self.longpoll and not (self._poll_task and not self._poll_task.done()):
            self._poll_task = asyncio.create_task(self.longpoll.run())
        log.info("[VK] Client ready")
        self.events.emit("ready")
        return True

    async def stop(self) -> None:
        if self.longpoll:
            self.longpoll.stop()
        if self._poll_task:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None
        await self.rpc.stop()

    # ------------------------------------------------------------------ #

    async def call(
        self,
        method: str,
        args: Optional[Dict[str, Any]] = None,
        token: Optional[str] = None,
    ) -> Any:
        return await self.rpc.call(method, args, token)


__all__ = ["VkClient"]
