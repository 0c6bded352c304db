import asyncio
from typing import Any, Dict, Optional

import httpx

from shared.logging.logger import get_logger
from shared.runtime.errors import ConnectorError, TransportError, VkApiError
from shared.runtime.events import EventHub
from shared.utils.http import request_json

log = get_logger("vk.longpoll")

# groups.getLongPollServer error code for a group the token cannot access
INVALID_GROUP_ERROR_CODE = 15


class GroupLongPoll:
    """
    Bots Long Poll listener for a VK community.

    Responsibilities:
    - Resolve the group id from the group token when it is not configured
    - Fetch long-poll server parameters and keep `ts` across requests
    - Emit each update as `(type, object)` on the event hub
    - Recover from `failed` codes and transport errors without exiting

    The only terminal condition is an invalid group (error code 15).
    """

    API_URL = "https://api.vk.com/method/"

    def __init__(
        self,
        *,
        group_token: str,
        group_id: Optional[int] = None,
        api_version: str = "5.92",
        wait: int = 25,
        retry_delay: float = 5.0,
        events: Optional[EventHub] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not group_token:
            raise RuntimeError("VK group_token is required for long polling")

        self.group_token = group_token
        self.group_id = group_id
        self.api_version = api_version
        self.wait = wait
        self.retry_delay = retry_delay
        self.events = events or EventHub(owner="vk.longpoll")

        self._transport = transport
        self._params: Optional[Dict[str, Any]] = None
        self._ts: Optional[str] = None
        self._stop_event = asyncio.Event()

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def run(self) -> None:
        self._stop_event.clear()
        log.info("[VK] Long polling started")

        while not self._stop_event.is_set():
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except ConnectorError as e:
                log.warning(f"[VK] Long poll error: {e}")
                self.events.emit("error", e)
                await self._sleep(self.retry_delay)

        log.info("[VK] Long polling stopped")

    def stop(self) -> None:
        self._stop_event.set()

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    # ------------------------------------------------------------------ #
    # One request cycle
    # ------------------------------------------------------------------ #

    async def poll_once(self) -> None:
        if not self.group_id:
            await self._resolve_group_id()

        if not self._params:
            await self._fetch_server()

        params = self._params or {}
        query = {
            "act": "a_check",
            "key": params.get("key"),
            "ts": self._ts or params.get("ts"),
            "wait": self.wait,
        }

        try:
            body = await request_json(
                "GET",
                params["server"],
                params=query,
                transport=self._transport,
                timeout=self.wait + 10.0,
            )
        except ConnectorError as e:
            log.warning(f"[VK] Long poll request failed: {e}")
            self.events.emit("error", TransportError(f"PollingError: {e}"))
            self._reset_server()
            return

        if not isinstance(body, dict):
            self.events.emit("error", TransportError(f"PollingError: {body!r}"))
            self._reset_server()
            return

        failed = body.get("failed")
        if not failed:
            for update in body.get("updates") or []:
                update_object = update.get("object")
                if not update_object:
                    continue
                self.events.emit(update.get("type"), update_object)
            self._ts = body.get("ts")
            return

        if failed == 1:
            # history outdated; continue from the returned ts
            self._ts = body.get("ts")
        elif failed in (2, 3):
            self._reset_server()
        else:
            self.events.emit("error", ConnectorError(f"Listening Error: {body}"))
            self._reset_server()

    def _reset_server(self) -> None:
        self._params = None
        self._ts = None

    # ------------------------------------------------------------------ #
    # Method calls
    # ------------------------------------------------------------------ #

    async def _resolve_group_id(self) -> None:
        response = await self._api_get("groups.getById", {})
        if not isinstance(response, list) or not response:
            raise TransportError("groups.getById returned no groups")
        group = response[0]
        if not isinstance(group, dict) or not group.get("id"):
            raise TransportError(f"groups.getById returned a group without id: {group!r}")
        self.group_id = group["id"]
        log.info(f"[VK] Group id resolved: {self.group_id}")

    async def _fetch_server(self) -> None:
        try:
            response = await self._api_get(
                "groups.getLongPollServer",
                {"group_id": self.group_id},
            )
        except VkApiError as e:
            if e.error_code == INVALID_GROUP_ERROR_CODE:
                self.events.emit("error", e)
                log.critical(
                    f"[VK] Group {self.group_id} is not accessible with this token; exiting"
                )
                raise SystemExit(1) from e
            raise

        if not isinstance(response, dict) or not response.get("server") or not response.get("key"):
            raise TransportError(
                f"groups.getLongPollServer returned an unexpected payload: {response!r}"
            )

        self._params = response
        self._ts = response.get("ts")

    async def _api_get(self, method: str, params: Dict[str, Any]) -> Any:
        query = {
            "v": self.api_version,
            "access_token": self.group_token,
            **params,
        }
        body = await request_json(
            "GET",
            self.API_URL + method,
            params=query,
            transport=self._transport,
        )
        if isinstance(body, dict) and body.get("error"):
            raise VkApiError(
                f"{method} failed",
                status=None,
                body=body["error"],
                url=self.API_URL + method,
            )
        if not isinstance(body, dict):
            raise TransportError(f"{method} returned an unexpected payload")
        return body.get("response")


__all__ = ["GroupLongPoll", "INVALID_GROUP_ERROR_CODE"]
