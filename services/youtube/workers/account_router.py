import asyncio
from functools import partial
from typing import Any, Dict, List, Optional, Sequence

from services.youtube.workers.stream_watcher import StreamWatcher
from shared.logging.logger import get_logger
from shared.runtime.errors import QuotaError

log = get_logger("youtube.router")


class AccountRouter:
    """
    Round-robin over several StreamWatcher accounts watching the same channel.

    Only the current watcher is logged in. When it reports an exhausted quota
    the router stops it and logs into the next one, so callers keep talking
    to the router without knowing which account is active.

    Each watcher must own its EventHub; handlers registered through `on()`
    are attached to every watcher.
    """

    def __init__(self, watchers: Sequence[StreamWatcher]):
        if not watchers:
            raise ValueError("AccountRouter needs at least one watcher")

        self._watchers: List[StreamWatcher] = list(watchers)
        self._cursor = 0
        self._rotation: Optional[asyncio.Future] = None

        for watcher in self._watchers:
            watcher.on("quota", partial(self._on_quota, watcher))

    # ------------------------------------------------------------------ #

    @property
    def current(self) -> StreamWatcher:
        return self._watchers[self._cursor]

    @property
    def watchers(self) -> List[StreamWatcher]:
        return list(self._watchers)

    def on(self, event: str, handler) -> "AccountRouter":
        for watcher in self._watchers:
            watcher.on(event, handler)
        return self

    def authorization_url(self) -> str:
        return self.current.authorization_url()

    def get_stream_data(self) -> Dict[str, Any]:
        return self.current.get_stream_data()

    async def send_message(self, text: str) -> Dict[str, Any]:
        return await self.current.send_message(text)

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def login(self, code: Optional[str] = None) -> bool:
        return await self.current.login(code)

    def stop(self, silent: bool = False) -> None:
        self.current.stop(silent)

    async def next(self) -> bool:
        previous = self.current
        previous.stop()
        self._advance()
        log.info(f"[YouTube] Switching account {previous.name} -> {self.current.name}")
        return await self.current.login()

    async def run_immediate(self) -> None:
        """
        Restart discovery on the current account, moving on to the next one
        whenever the quota is exhausted. Each account is tried once; the last
        QuotaError is raised if all of them are exhausted.
        """
        last_error: Optional[QuotaError] = None

        for _ in range(len(self._watchers)):
            watcher = self.current
            try:
                await watcher.run_immediate()
                return
            except QuotaError as e:
                last_error = e
                log.warning(f"[YouTube][{watcher.name}] Quota exhausted, rotating")
                watcher.stop(silent=True)
                self._advance()

        raise last_error

    # ------------------------------------------------------------------ #

    def _advance(self) -> None:
        self._cursor = (self._cursor + 1) % len(self._watchers)

    def _on_quota(self, watcher: StreamWatcher, error: QuotaError) -> None:
        if watcher is not self.current:
            return
        if self._rotation is not None and not self._rotation.done():
            return

        self._rotation = asyncio.ensure_future(self.next())
        self._rotation.add_done_callback(self._rotation_done)

    @staticmethod
    def _rotation_done(task: asyncio.Future) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            log.error(f"[YouTube] Account rotation failed: {error}")


__all__ = ["AccountRouter"]
