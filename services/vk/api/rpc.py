import asyncio
import json
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from services.oauth.store import CredentialStore
from shared.logging.logger import get_logger
from shared.runtime.errors import (
    ConnectorError,
    RemoteCallError,
    TransportError,
    VkApiError,
)
from shared.runtime.events import EventHub
from shared.utils.http import request_json

log = get_logger("vk.rpc")

# Remote limit of calls per `execute` request
MAX_CALLS_PER_EXECUTE = 25


@dataclass
class RpcTask:
    """One queued remote call and the future its caller awaits."""

    code: str
    future: asyncio.Future

    def resolve(self, value: Any) -> None:
        if not self.future.done():
            self.future.set_result(value)

    def reject(self, error: BaseException) -> None:
        if not self.future.done():
            self.future.set_exception(error)


class RpcBatcher:
    """
    Per-token call queues drained on a fixed tick into `execute` batches.

    Responsibilities:
    - Serialize each call into an `API.method({...})` expression
    - Group queued calls (FIFO) into chunks of MAX_CALLS_PER_EXECUTE
    - Correlate the positional response back to individual callers
    - Never leave a caller pending when a whole chunk fails
    """

    API_URL = "https://api.vk.com/method/"

    def __init__(
        self,
        credentials: CredentialStore,
        *,
        api_version: str = "5.92",
        tick_interval: float = 0.1,
        events: Optional[EventHub] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.credentials = credentials
        self.api_version = api_version
        self.tick_interval = tick_interval
        self.events = events or credentials.events

        self._transport = transport
        self._queues: Dict[str, List[RpcTask]] = {}
        self._ticker: Optional[asyncio.Task] = None
        self._inflight: set[asyncio.Task] = set()

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def call(
        self,
        method: str,
        args: Optional[Dict[str, Any]] = None,
        token: Optional[str] = None,
    ) -> asyncio.Future:
        """
        Queue `method(args)` for the next batch and return a future that
        resolves with the call's result (or raises RemoteCallError).
        Fire-and-forget callers may drop the future; a failed chunk is
        still emitted as `error` on the hub.
        """
        access_token = token or self.credentials.access_token
        if not access_token:
            raise ValueError("No access token available for VK call")

        future = asyncio.get_running_loop().create_future()
        future.add_done_callback(_mark_retrieved)
        task = RpcTask(code=self.encode_call(method, args), future=future)
        self._queues.setdefault(access_token, []).append(task)
        return future

    def encode_call(self, method: str, args: Optional[Dict[str, Any]] = None) -> str:
        payload = {"v": self.api_version, **(args or {})}
        return f"API.{method}({json.dumps(payload, ensure_ascii=False)})"

    def pending(self, token: Optional[str] = None) -> int:
        if token is not None:
            return len(self._queues.get(token, []))
        return sum(len(q) for q in self._queues.values())

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    def start(self) -> None:
        if self._ticker and not self._ticker.done():
            log.debug("RPC ticker already running")
            return
        self._ticker = asyncio.create_task(self._run())
        log.info(f"[VK] RPC batcher started (tick={self.tick_interval}s)")

    async def stop(self) -> None:
        if self._ticker:
            self._ticker.cancel()
            try:
                await self._ticker
            except asyncio.CancelledError:
                pass
            self._ticker = None

        queues, self._queues = self._queues, {}
        for tasks in queues.values():
            for task in tasks:
                task.reject(ConnectorError("RPC batcher stopped"))

        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
        log.info("[VK] RPC batcher stopped")

    async def _run(self) -> None:
        try:
            while True:
                await asyncio.sleep(self.tick_interval)
                self.drain()
        except asyncio.CancelledError:
            log.debug("RPC ticker cancelled")
            raise

    # ------------------------------------------------------------------ #
    # Draining
    # ------------------------------------------------------------------ #

    def drain(self) -> List[asyncio.Task]:
        """
        Swap every non-empty bucket for an empty one and dispatch its calls.
        Calls queued after this point start a fresh batch.
        """
        started: List[asyncio.Task] = []
        for token in list(self._queues):
            methods = self._queues[token]
            if not methods:
                continue
            self._queues[token] = []

            task = asyncio.create_task(self._process_queue(methods, token))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)
            started.append(task)
        return started

    async def flush(self) -> None:
        """Drain once and wait for every dispatched chunk to settle."""
        tasks = self.drain()
        if tasks:
            await asyncio.gather(*tasks)

    async def _process_queue(self, methods: List[RpcTask], token: str) -> None:
        chunk_count = math.ceil(len(methods) / MAX_CALLS_PER_EXECUTE)
        chunks = [
            methods[i * MAX_CALLS_PER_EXECUTE:(i + 1) * MAX_CALLS_PER_EXECUTE]
            for i in range(chunk_count)
        ]
        log.debug(
            f"[VK] Dispatching {len(methods)} call(s) in {chunk_count} execute request(s)"
        )
        await asyncio.gather(*(self._dispatch_chunk(chunk, token) for chunk in chunks))

    async def _dispatch_chunk(self, chunk: List[RpcTask], token: str) -> None:
        code = f"return [ {','.join(task.code for task in chunk)} ];"

        try:
            body = await request_json(
                "POST",
                self.API_URL + "execute",
                data={
                    "code": code,
                    "access_token": token,
                    "v": self.api_version,
                },
                transport=self._transport,
            )
            if not isinstance(body, dict):
                raise TransportError(f"Unexpected execute payload: {body!r}")
            if body.get("error"):
                raise VkApiError(
                    "execute failed",
                    status=None,
                    body=body["error"],
                    url=self.API_URL + "execute",
                )
            response = body.get("response")
            if not isinstance(response, list):
                raise TransportError("execute payload has no response array")

        except ConnectorError as e:
            log.warning(f"[VK] execute chunk failed ({len(chunk)} call(s)): {e}")
            self.events.emit("error", e)
            for task in chunk:
                task.reject(e)
            return

        self._correlate(chunk, response, body.get("execute_errors") or [])

    @staticmethod
    def _correlate(
        chunk: List[RpcTask],
        response: List[Any],
        execute_errors: List[Any],
    ) -> None:
        # execute_errors is compacted: one entry per `false`, in call order
        error_index = 0
        for index, task in enumerate(chunk):
            if index >= len(response):
                task.reject(TransportError("execute response is missing this call's slot"))
                continue

            body = response[index]
            if body is False:
                payload = execute_errors[error_index] if error_index < len(execute_errors) else {}
                error_index += 1
                task.reject(RemoteCallError(payload))
            else:
                task.resolve(body)


def _mark_retrieved(future: asyncio.Future) -> None:
    if not future.cancelled():
        future.exception()


__all__ = ["MAX_CALLS_PER_EXECUTE", "RpcBatcher", "RpcTask"]
