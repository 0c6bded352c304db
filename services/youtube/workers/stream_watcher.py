import asyncio
from typing import Any, Callable, Dict, List, Optional, Set, Union

import httpx

from services.oauth.credentials import Credential
from services.oauth.store import CredentialStore
from services.youtube.api.chat import LiveChatPage, YouTubeChatClient
from services.youtube.api.client import YouTubeDataClient
from services.youtube.api.livestream import LiveChatLookup, YouTubeLivestreamAPI
from services.youtube.models.stream import (
    DiscoveryStrategy,
    StreamState,
    WatcherPhase,
)
from shared.logging.logger import get_logger
from shared.runtime.errors import AuthError, ConnectorError, QuotaError
from shared.runtime.events import EventHub

log = get_logger("youtube.watcher")

OwnerCredential = Union[Credential, Callable[[], Any]]


class StreamWatcher:
    """
    Discovers a channel's live stream and ingests its chat.

    Two self-rescheduling timers share one StreamState:
    - master (every `live_interval`): find the live video, then its chat id,
      and announce `online` / `offline` transitions
    - chat (server-paced, floored at `chat_interval`): page through
      liveChat/messages and emit one `message` per chat item

    Timers are `loop.call_later` handles. `stop()` cancels both and bumps
    an epoch so any tick still suspended in a request discards its result
    instead of mutating state.

    Events: credentials, ready, login, online, offline, stopped, message,
    error, quota.
    """

    OAUTH_BASE = "https://accounts.google.com/o/oauth2/"
    LIVE_STATS_URL = "https://www.youtube.com/live_stats"
    BOOTSTRAP_DELAY = 0.1

    def __init__(
        self,
        *,
        key: str,
        credential: Credential,
        name: Optional[str] = None,
        owner_credential: Optional[OwnerCredential] = None,
        channel_id: Optional[str] = None,
        playlist_id: Optional[str] = None,
        live_id: Optional[str] = None,
        chat_id: Optional[str] = None,
        auto_search: bool = False,
        live_interval: float = 300.0,
        chat_interval: float = 15.0,
        events: Optional[EventHub] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not key:
            raise RuntimeError("YouTube key is required")

        if credential.name in ("", "token"):
            credential.name = name or key

        self.key = key
        self.name = name or credential.name
        self.live_interval = live_interval
        self.chat_interval = chat_interval
        self.events = events or EventHub(owner=f"youtube:{self.name}")

        self.credentials = CredentialStore(
            credential,
            base_url=self.OAUTH_BASE,
            authorize_path="auth",
            extra_auth_params={
                "access_type": "offline",
                "approval_prompt": "force",
            },
            events=self.events,
            transport=transport,
        )

        # --------------------------------------------------
        # Elevated owner credentials (BROADCAST discovery)
        # --------------------------------------------------
        self._owner_updater: Optional[Callable[[], Any]] = None
        self.owner_credentials: Optional[CredentialStore] = None
        if owner_credential is not None:
            if callable(owner_credential):
                self._owner_updater = owner_credential
                owner_credential = _as_credential(owner_credential())
            self.owner_credentials = CredentialStore(
                owner_credential,
                base_url=self.OAUTH_BASE,
                authorize_path="auth",
                events=self.events,
                transport=transport,
            )

        self._client = YouTubeDataClient(transport=transport)
        self.livestream = YouTubeLivestreamAPI(self._client, key=key)
        self.chat = YouTubeChatClient(self._client, key=key)

        self._strategies = self._build_strategies(
            owner=self.owner_credentials is not None,
            playlist_id=playlist_id,
            channel_id=channel_id,
            live_id=live_id,
        )
        primary = self._strategies[0] if self._strategies else DiscoveryStrategy.MANUAL

        self._state = StreamState(
            key=key,
            live_id=live_id,
            chat_id=chat_id,
            channel_id=channel_id,
            playlist_id=playlist_id,
            auto_search=bool(auto_search),
            strategy=primary,
            manual_live_id=live_id if primary == DiscoveryStrategy.MANUAL else None,
        )

        self._timers: Dict[str, Optional[asyncio.TimerHandle]] = {
            "master": None,
            "chat": None,
        }
        self._tasks: Set[asyncio.Future] = set()
        self._epoch = 0
        self._announced = False
        self._started = False
        self._stopped = False

        log.debug(
            f"[YouTube][{self.name}] Discovery chain: "
            f"{[s.name for s in self._strategies] or 'none'}"
        )

    # ------------------------------------------------------------------ #
    # Accessors
    # ------------------------------------------------------------------ #

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def strategies(self) -> List[DiscoveryStrategy]:
        return list(self._strategies)

    @property
    def phase(self) -> WatcherPhase:
        if self._stopped:
            return WatcherPhase.STOPPED
        if not self._started:
            return WatcherPhase.IDLE
        if self._state.is_online:
            return WatcherPhase.ONLINE
        if self._state.live_id:
            return WatcherPhase.DISCOVERING_CHAT
        return WatcherPhase.DISCOVERING_VIDEO

    def get_stream_data(self) -> Dict[str, Any]:
        return self._state.as_dict()

    def on(self, event: str, handler):
        return self.events.on(event, handler)

    def authorization_url(self) -> str:
        return self.credentials.authorization_url()

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def login(self, code: Optional[str] = None) -> bool:
        """
        Authenticate and start the master loop.

        Emits `ready` on success, `login` when the account must go through
        the authorization URL, `error` otherwise.
        """
        if self._owner_updater is not None and self.owner_credentials is not None:
            self.owner_credentials.update_credentials(
                _as_credential(self._owner_updater()).snapshot()
            )

        try:
            if code:
                await self.credentials.exchange_code(code)
            elif self.credentials.refresh_token:
                await self.credentials.ensure_fresh()
            else:
                log.info(f"[YouTube][{self.name}] No refresh token; login required")
                self.events.emit("login")
                return False
        except AuthError as e:
            if e.needs_login and not code:
                log.warning(f"[YouTube][{self.name}] Refresh rejected; login required")
                self.events.emit("login")
            else:
                log.error(f"[YouTube][{self.name}] Login failed: {e}")
                self.events.emit("error", e)
            return False

        self._started = True
        self._stopped = False
        self._arm_master(self.BOOTSTRAP_DELAY, bootstrap=True)
        log.info(f"[YouTube][{self.name}] Watcher ready")
        self.events.emit("ready")
        return True

    def stop(self, silent: bool = False) -> None:
        """
        Cancel both loops and reset stream state. Safe to call from any
        event handler; a second call is a no-op.
        """
        self._epoch += 1

        master = self._timers["master"]
        if master is not None:
            master.cancel()
            self._timers["master"] = None
            if not silent:
                log.info(f"[YouTube][{self.name}] Watcher stopped")
                self.events.emit("stopped", self.name)

        self._cancel_timer("chat")

        if self._announced:
            self._announced = False
            self.events.emit("offline", self.name)

        self._state.reset()
        if self._started:
            self._stopped = True

    async def run_immediate(self) -> None:
        """Restart discovery now; failures are raised instead of emitted."""
        self.stop(silent=True)
        self._started = True
        self._stopped = False
        await self._run_master(bootstrap=True, raise_errors=True)

    # ------------------------------------------------------------------ #
    # Discovery
    # ------------------------------------------------------------------ #

    @staticmethod
    def _build_strategies(
        *,
        owner: bool,
        playlist_id: Optional[str],
        channel_id: Optional[str],
        live_id: Optional[str],
    ) -> List[DiscoveryStrategy]:
        chain: List[DiscoveryStrategy] = []
        if owner:
            chain.append(DiscoveryStrategy.BROADCAST)
        if playlist_id:
            chain.append(DiscoveryStrategy.PLAYLIST)
        if channel_id:
            chain.append(DiscoveryStrategy.SEARCH)
        if not chain and live_id:
            chain.append(DiscoveryStrategy.MANUAL)
        return chain

    async def search_stream(self) -> bool:
        """
        Walk the discovery chain until one strategy finds the live video.

        Empty results fall through to the next strategy. A QuotaError or a
        rejected grant is raised to the master loop; any other failure is
        emitted and ends the walk.
        """
        if not self._strategies:
            raise ConnectorError("No video_id provider is available")

        log.info(f"[YouTube][{self.name}] Searching stream...")
        epoch = self._epoch
        for strategy in self._strategies:
            try:
                found = await self._discover(strategy)
            except QuotaError:
                raise
            except ConnectorError as e:
                if isinstance(e, AuthError) and e.needs_login:
                    raise
                log.warning(
                    f"[YouTube][{self.name}] {strategy.name} discovery failed: {e}"
                )
                self.events.emit("error", e)
                return False

            if epoch != self._epoch:
                return False

            if found:
                log.info(
                    f"[YouTube][{self.name}] liveStream found via {strategy.name}: "
                    f"{self._state.live_id}"
                )
                return True

            log.info(f"[YouTube][{self.name}] liveStream not found via {strategy.name}")

        return False

    async def _discover(self, strategy: DiscoveryStrategy) -> bool:
        epoch = self._epoch
        state = self._state

        if strategy == DiscoveryStrategy.BROADCAST:
            lookup = await self.livestream.find_active_broadcast(auth=self.owner_credentials)
            if epoch != self._epoch:
                return False
            if lookup is None:
                state.live_id = None
                state.clear_chat()
                return False
            state.live_id = lookup.live_id
            state.chat_id = lookup.chat_id
            return bool(lookup.live_id)

        if strategy == DiscoveryStrategy.PLAYLIST:
            video_id = await self.livestream.find_playlist_head(
                state.playlist_id, auth=self.credentials
            )
        elif strategy == DiscoveryStrategy.SEARCH:
            video_id = await self.livestream.find_live_video(
                state.channel_id, auth=self.credentials
            )
        else:
            video_id = state.manual_live_id

        if epoch != self._epoch or not video_id:
            return False
        state.live_id = video_id
        return True

    async def search_chat(self) -> LiveChatLookup:
        live_id = self._state.live_id
        if not live_id:
            raise ConnectorError("liveId is undefined, searching chat is impossible")

        log.info(f"[YouTube][{self.name}] Searching liveChat...")
        epoch = self._epoch
        lookup = await self.livestream.resolve_live_chat(live_id, auth=self.credentials)
        if epoch != self._epoch or self._state.live_id != live_id:
            return lookup

        if lookup.chat_id:
            self._state.chat_id = lookup.chat_id
            log.info(f"[YouTube][{self.name}] {live_id} {lookup.chat_id}")
        elif lookup.found:
            log.info(f"[YouTube][{self.name}] liveChat was found, but must be rejected")
            self._state.reset()
        else:
            log.info(f"[YouTube][{self.name}] liveChat not found")
            self._state.reset()

        return lookup

    # ------------------------------------------------------------------ #
    # Channel / chat operations
    # ------------------------------------------------------------------ #

    async def get_channel(self) -> Dict[str, Any]:
        data = await self.livestream.get_own_channel(auth=self.credentials)
        items = data.get("items") or []
        if items:
            self._state.channel_id = items[0].get("id")
            if DiscoveryStrategy.SEARCH not in self._strategies:
                self._strategies = [
                    s for s in self._strategies if s != DiscoveryStrategy.MANUAL
                ] + [DiscoveryStrategy.SEARCH]
        return data

    async def get_viewers(self) -> str:
        if not self._state.live_id:
            raise ConnectorError("liveId is undefined, viewers are unavailable")
        return await self._client.get_text(
            f"{self.LIVE_STATS_URL}?v={self._state.live_id}"
        )

    async def get_live_chat(self) -> LiveChatPage:
        chat_id = self._state.chat_id
        if not chat_id:
            raise ConnectorError("chatId is undefined, getting chat is impossible")
        return await self.chat.fetch_page(
            chat_id, self._state.page_token, auth=self.credentials
        )

    async def send_message(self, text: str) -> Dict[str, Any]:
        chat_id = self._state.chat_id
        if not chat_id:
            raise ConnectorError("chatId is undefined, sending is impossible")
        return await self.chat.send_message(chat_id, text, auth=self.credentials)

    # ------------------------------------------------------------------ #
    # Master loop
    # ------------------------------------------------------------------ #

    async def _run_master(self, bootstrap: bool = False, raise_errors: bool = False) -> None:
        epoch = self._epoch
        state = self._state

        try:
            if not state.live_id and (bootstrap or state.auto_search):
                await self.search_stream()

            if epoch == self._epoch and state.live_id and not state.chat_id:
                await self.search_chat()

            if epoch == self._epoch:
                self._sync_online()

        except QuotaError as e:
            if raise_errors:
                raise
            log.warning(f"[YouTube][{self.name}] Quota exhausted: {e}")
            self.events.emit("quota", e)
            self.events.emit("error", e)
        except AuthError as e:
            if raise_errors:
                raise
            if e.needs_login:
                self._require_login(e)
            else:
                log.warning(f"[YouTube][{self.name}] Master tick failed: {e}")
                self.events.emit("error", e)
        except Exception as e:
            if raise_errors:
                raise
            log.warning(f"[YouTube][{self.name}] Master tick failed: {e}")
            self.events.emit("error", e)

        if epoch == self._epoch and (bootstrap or self._timers["master"] is not None):
            self._arm_master(self.live_interval)

    def _sync_online(self) -> None:
        state = self._state
        if state.live_id and state.chat_id:
            state.is_online = True
            if not self._announced:
                epoch = self._epoch
                self._announced = True
                log.info(f"[YouTube][{self.name}] Stream online ({state.live_id})")
                self.events.emit("online", self.name)
                if epoch != self._epoch:
                    return
            if self._timers["chat"] is None:
                self._arm_chat(self.chat_interval, bootstrap=True)
        elif self._announced:
            self._go_offline()

    def _require_login(self, e: AuthError) -> None:
        """Grant revoked mid-run: stop both loops and ask for authorization."""
        log.warning(f"[YouTube][{self.name}] Refresh rejected; login required: {e}")
        self.stop()
        self.events.emit("login")

    def _go_offline(self) -> None:
        self._cancel_timer("chat")
        was_online = self._announced
        self._announced = False
        self._state.reset()
        if was_online:
            log.info(f"[YouTube][{self.name}] Stream offline")
            self.events.emit("offline", self.name)

    # ------------------------------------------------------------------ #
    # Chat loop
    # ------------------------------------------------------------------ #

    async def _poll_chat(self, bootstrap: bool = False) -> None:
        epoch = self._epoch
        chat_id = self._state.chat_id
        if not chat_id:
            self._cancel_timer("chat")
            return

        try:
            page = await self.get_live_chat()
        except Exception as e:
            if epoch != self._epoch:
                return
            if isinstance(e, AuthError) and e.needs_login:
                self._require_login(e)
                return
            log.warning(f"[YouTube][{self.name}] Chat poll failed: {e}")
            if isinstance(e, QuotaError):
                self.events.emit("quota", e)
            self.events.emit("error", e)
            # next master tick re-discovers the chat id
            self._cancel_timer("chat")
            if self._state.is_online:
                self._state.clear_chat()
            return

        if epoch != self._epoch or self._state.chat_id != chat_id:
            return

        if page.offline_at:
            log.info(f"[YouTube][{self.name}] Chat reports offlineAt={page.offline_at}")
            self._go_offline()
            return

        self._state.page_token = page.next_page_token
        if not bootstrap:
            self._process_messages(page.items)

        if self._timers["chat"] is not None:
            delay = max(page.polling_interval or 0.0, self.chat_interval)
            self._arm_chat(delay, bootstrap=bootstrap and page.has_backlog)

    def _process_messages(self, items: List[Dict[str, Any]]) -> None:
        epoch = self._epoch
        for item in items or []:
            if epoch != self._epoch:
                break
            snippet = item.get("snippet") or {}
            if not snippet.get("displayMessage"):
                continue
            self.events.emit("message", snippet, item.get("authorDetails") or {})

    # ------------------------------------------------------------------ #
    # Timers
    # ------------------------------------------------------------------ #

    def _arm_master(self, delay: float, bootstrap: bool = False) -> None:
        self._arm("master", delay, lambda: self._run_master(bootstrap=bootstrap))

    def _arm_chat(self, delay: float, bootstrap: bool = False) -> None:
        self._arm("chat", delay, lambda: self._poll_chat(bootstrap=bootstrap))

    def _arm(self, name: str, delay: float, factory: Callable[[], Any]) -> None:
        loop = asyncio.get_running_loop()
        self._cancel_timer(name)
        self._timers[name] = loop.call_later(delay, self._fire, factory)

    def _fire(self, factory: Callable[[], Any]) -> None:
        task = asyncio.ensure_future(factory())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _cancel_timer(self, name: str) -> None:
        handle = self._timers[name]
        if handle is not None:
            handle.cancel()
            self._timers[name] = None


def _as_credential(value: Any) -> Credential:
    if isinstance(value, Credential):
        return value
    if isinstance(value, dict):
        return Credential.from_dict(value)
    raise TypeError(f"Owner credential updater returned {type(value).__name__}")


__all__ = ["StreamWatcher"]
