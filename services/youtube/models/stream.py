from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class DiscoveryStrategy(Enum):
    """How the watcher locates the live video, in precedence order."""

    BROADCAST = "broadcast"
    PLAYLIST = "playlist"
    SEARCH = "search"
    MANUAL = "manual"


class WatcherPhase(Enum):
    IDLE = "idle"
    DISCOVERING_VIDEO = "discovering_video"
    DISCOVERING_CHAT = "discovering_chat"
    ONLINE = "online"
    STOPPED = "stopped"


@dataclass
class StreamState:
    """
    Mutable state shared by the watcher's master and chat loops.

    `is_online` is only true while both `live_id` and `chat_id` are set;
    `page_token` is cleared together with `chat_id`.
    """

    key: str
    live_id: Optional[str] = None
    chat_id: Optional[str] = None
    channel_id: Optional[str] = None
    playlist_id: Optional[str] = None
    page_token: Optional[str] = None
    is_online: bool = False
    auto_search: bool = False
    strategy: DiscoveryStrategy = DiscoveryStrategy.MANUAL

    # pinned id for MANUAL discovery; restored on every reset
    manual_live_id: Optional[str] = None

    def clear_chat(self) -> None:
        self.chat_id = None
        self.page_token = None
        self.is_online = False

    def reset(self) -> None:
        self.live_id = self.manual_live_id
        self.clear_chat()

    def as_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "live_id": self.live_id,
            "chat_id": self.chat_id,
            "channel_id": self.channel_id,
            "playlist_id": self.playlist_id,
            "page_token": self.page_token,
            "is_online": self.is_online,
            "auto_search": self.auto_search,
            "strategy": self.strategy.value,
        }
