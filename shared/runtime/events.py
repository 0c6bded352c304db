"""In-process event hub used by connectors to notify their owners."""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Callable, Dict, List, Set

from shared.logging.logger import get_logger

log = get_logger("runtime.events")


class EventHub:
    """
    Minimal observer registry.

    - Sync handlers run inline, in registration order
    - Coroutine handlers are scheduled as tasks on the running loop
    - A failing handler is logged and never affects the emitter
    """

    def __init__(self, *, owner: str = "connector"):
        self.owner = owner
        self._handlers: Dict[str, List[Callable[..., Any]]] = {}
        self._pending: Set[asyncio.Task] = set()

    # ------------------------------------------------------------

    def on(self, event: str, handler: Callable[..., Any]) -> Callable[..., Any]:
        self._handlers.setdefault(event, []).append(handler)
        return handler

    def off(self, event: str, handler: Callable[..., Any]) -> None:
        handlers = self._handlers.get(event, [])
        if handler in handlers:
            handlers.remove(handler)

    def once(self, event: str, handler: Callable[..., Any]) -> Callable[..., Any]:
        def _wrapper(*args: Any) -> Any:
            self.off(event, _wrapper)
            return handler(*args)

        return self.on(event, _wrapper)

    def listeners(self, event: str) -> List[Callable[..., Any]]:
        return list(self._handlers.get(event, []))

    # ------------------------------------------------------------

    def emit(self, event: str, *args: Any) -> bool:
        """
        Deliver `event` to every subscriber. Returns False when nobody
        was listening.
        """
        handlers = list(self._handlers.get(event, []))
        if not handlers:
            if event == "error":
                log.warning(f"[{self.owner}] unhandled error event: {args[0] if args else None}")
            return False

        for handler in handlers:
            try:
                result = handler(*args)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._pending.add(task)
                    task.add_done_callback(self._on_task_done)
            except Exception as e:
                log.warning(
                    f"[{self.owner}] handler for '{event}' failed: {e}"
                )

        return True

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.warning(f"[{self.owner}] async handler failed: {exc}")

    async def wait_all(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


__all__ = ["EventHub"]
