from dataclasses import dataclass
from typing import Any, Dict, Optional

from services.oauth.store import CredentialStore
from services.youtube.api.client import YouTubeDataClient
from shared.logging.logger import get_logger

log = get_logger("youtube.livestream")


@dataclass
class BroadcastLookup:
    live_id: str
    chat_id: Optional[str]


@dataclass
class LiveChatLookup:
    """
    Result of a liveStreamingDetails lookup.

    `chat_id` is only set when the stream has started and not yet ended.
    """

    chat_id: Optional[str]
    found: bool
    started: bool = False
    ended: bool = False


class YouTubeLivestreamAPI:
    """
    YouTube livestream discovery API (Data API v3).

    Responsibilities:
    - Active broadcast lookup with owner credentials (liveBroadcasts)
    - Playlist head lookup (playlistItems)
    - Channel live search (search, eventType=live)
    - Resolve activeLiveChatId from a video's liveStreamingDetails

    This module is read-only and safe to call repeatedly; it never mutates
    watcher state. Empty results are returned as None, never raised.
    """

    CHANNELS = "channels"
    BROADCASTS = "liveBroadcasts"
    PLAYLIST = "playlistItems"
    SEARCH = "search"
    VIDEOS = "videos"

    def __init__(self, client: YouTubeDataClient, *, key: Optional[str] = None):
        self.client = client
        self.key = key

    # ------------------------------------------------------------
    # Discovery strategies
    # ------------------------------------------------------------

    async def find_active_broadcast(
        self,
        *,
        auth: CredentialStore,
    ) -> Optional[BroadcastLookup]:
        """
        Look up the owner's active broadcast and its chat id in one call.
        Requires credentials of the channel owner.
        """
        data = await self.client.get(
            self.BROADCASTS,
            {
                "part": "snippet",
                "broadcastType": "all",
                "broadcastStatus": "active",
                "fields": "items(id,snippet/liveChatId)",
                "key": self.key,
            },
            auth=auth,
        )
        items = data.get("items") or []
        if not items:
            return None

        item = items[0]
        return BroadcastLookup(
            live_id=item.get("id"),
            chat_id=(item.get("snippet") or {}).get("liveChatId"),
        )

    async def find_playlist_head(
        self,
        playlist_id: str,
        *,
        auth: CredentialStore,
    ) -> Optional[str]:
        data = await self.client.get(
            self.PLAYLIST,
            {
                "part": "contentDetails",
                "maxResults": 1,
                "playlistId": playlist_id,
                "key": self.key,
            },
            auth=auth,
        )
        items = data.get("items") or []
        if not items:
            return None
        return (items[0].get("contentDetails") or {}).get("videoId")

    async def find_live_video(
        self,
        channel_id: str,
        *,
        auth: CredentialStore,
    ) -> Optional[str]:
        data = await self.client.get(
            self.SEARCH,
            {
                "part": "id",
                "channelId": channel_id,
                "eventType": "live",
                "type": "video",
                "key": self.key,
            },
            auth=auth,
        )
        items = data.get("items") or []
        if not items:
            return None
        return (items[0].get("id") or {}).get("videoId")

    # ------------------------------------------------------------
    # Chat resolution
    # ------------------------------------------------------------

    async def resolve_live_chat(
        self,
        video_id: str,
        *,
        auth: CredentialStore,
    ) -> LiveChatLookup:
        data = await self.client.get(
            self.VIDEOS,
            {
                "part": "liveStreamingDetails",
                "id": video_id,
                "key": self.key,
            },
            auth=auth,
        )
        items = data.get("items") or []
        details: Dict[str, Any] = items[0].get("liveStreamingDetails") if items else None
        if not details:
            return LiveChatLookup(chat_id=None, found=False)

        started = bool(details.get("actualStartTime"))
        ended = details.get("actualEndTime") is not None
        chat_id = details.get("activeLiveChatId") if started and not ended else None

        return LiveChatLookup(
            chat_id=chat_id,
            found=True,
            started=started,
            ended=ended,
        )

    # ------------------------------------------------------------
    # Channel
    # ------------------------------------------------------------

    async def get_own_channel(self, *, auth: CredentialStore) -> Dict[str, Any]:
        return await self.client.get(
            self.CHANNELS,
            {
                "part": "snippet,contentDetails,brandingSettings,statistics",
                "mine": True,
                "key": self.key,
            },
            auth=auth,
        )
