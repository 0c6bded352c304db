from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from services.oauth.store import CredentialStore
from services.youtube.api.client import YouTubeDataClient
from shared.logging.logger import get_logger

log = get_logger("youtube.chat")


@dataclass
class LiveChatPage:
    """One page of liveChat/messages."""

    items: List[Dict[str, Any]] = field(default_factory=list)
    next_page_token: Optional[str] = None
    polling_interval: Optional[float] = None
    offline_at: Optional[str] = None
    total_results: int = 0
    results_per_page: int = 0

    @property
    def has_backlog(self) -> bool:
        return self.total_results > self.results_per_page

    @classmethod
    def from_payload(cls, data: Dict[str, Any]) -> "LiveChatPage":
        interval_ms = data.get("pollingIntervalMillis")
        page_info = data.get("pageInfo") or {}
        return cls(
            items=data.get("items") or [],
            next_page_token=data.get("nextPageToken"),
            polling_interval=(
                interval_ms / 1000.0
                if isinstance(interval_ms, (int, float))
                else None
            ),
            offline_at=data.get("offlineAt"),
            total_results=int(page_info.get("totalResults") or 0),
            results_per_page=int(page_info.get("resultsPerPage") or 0),
        )


class YouTubeChatClient:
    """
    Live chat access via the Data API v3.

    Stateless: the caller owns the chat id and the page token, and decides
    how long to wait between pages.
    """

    CHATS = "liveChat/messages"

    def __init__(self, client: YouTubeDataClient, *, key: Optional[str] = None):
        self.client = client
        self.key = key

    async def fetch_page(
        self,
        chat_id: str,
        page_token: Optional[str],
        *,
        auth: CredentialStore,
    ) -> LiveChatPage:
        data = await self.client.get(
            self.CHATS,
            {
                "part": "snippet,authorDetails",
                "liveChatId": chat_id,
                "pageToken": page_token or None,
                "key": self.key,
            },
            auth=auth,
        )
        page = LiveChatPage.from_payload(data)
        log.debug(
            f"[YouTube] Chat page fetched (items={len(page.items)}, "
            f"interval={page.polling_interval}, offline={page.offline_at})"
        )
        return page

    async def send_message(
        self,
        chat_id: str,
        text: str,
        *,
        auth: CredentialStore,
    ) -> Dict[str, Any]:
        return await self.client.post(
            self.CHATS,
            {
                "part": "snippet",
                "fields": "snippet",
                "key": self.key,
            },
            {
                "snippet": {
                    "type": "textMessageEvent",
                    "textMessageDetails": {"messageText": text},
                    "liveChatId": chat_id,
                }
            },
            auth=auth,
        )
