from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional


@dataclass
class YouTubeChatMessage:
    """
    Normalized YouTube live chat message.

    Built from the `(snippet, authorDetails)` pair that StreamWatcher emits
    with every `message` event, so relay consumers can work with one shape
    instead of raw liveChatMessage resources.
    """

    snippet: Dict[str, Any]
    author: Dict[str, Any]
    live_chat_id: Optional[str]
    author_name: str
    text: str

    author_channel_id: Optional[str] = None
    published_at: Optional[datetime] = None
    is_owner: bool = False
    is_moderator: bool = False
    is_member: bool = False
    badges: list[str] = field(default_factory=list)

    @classmethod
    def from_snippet(
        cls,
        snippet: Dict[str, Any],
        author: Optional[Dict[str, Any]] = None,
    ) -> "YouTubeChatMessage":
        author = author or {}
        return cls(
            snippet=snippet,
            author=author,
            live_chat_id=snippet.get("liveChatId"),
            author_name=author.get("displayName") or "unknown",
            text=(snippet.get("displayMessage") or "").strip(),
            author_channel_id=author.get("channelId"),
            published_at=_parse_published_at(snippet.get("publishedAt")),
            is_owner=bool(author.get("isChatOwner")),
            is_moderator=bool(author.get("isChatModerator")),
            is_member=bool(author.get("isChatSponsor")),
            badges=[
                badge
                for badge in [
                    "owner" if author.get("isChatOwner") else None,
                    "moderator" if author.get("isChatModerator") else None,
                    "member" if author.get("isChatSponsor") else None,
                ]
                if badge
            ],
        )

    def to_event(self) -> Dict[str, Any]:
        return {
            "platform": "youtube",
            "type": "chat_message",
            "live_chat_id": self.live_chat_id,
            "user": {
                "id": self.author_channel_id,
                "name": self.author_name,
                "badges": list(self.badges),
                "is_owner": self.is_owner,
                "is_moderator": self.is_moderator,
                "is_member": self.is_member,
            },
            "text": self.text,
            "timestamp": (
                self.published_at.astimezone(timezone.utc).isoformat()
                if self.published_at
                else None
            ),
        }


def _parse_published_at(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    try:
        ts = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        return ts.astimezone(timezone.utc)
    except ValueError:
        return None
