from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from services.oauth.credentials import Credential
from shared.logging.logger import get_logger

log = get_logger("shared.config.connectors")

DEFAULT_LIVE_INTERVAL = 300.0
DEFAULT_CHAT_INTERVAL = 15.0
DEFAULT_VK_API_VERSION = "5.92"


@dataclass
class OAuthAppConfig:
    client_id: str
    client_secret: str = ""
    redirect_url: str = ""
    scopes: List[str] = field(default_factory=list)

    def credential(
        self,
        *,
        name: str = "token",
        refresh_token: Optional[str] = None,
        access_token: Optional[str] = None,
    ) -> Credential:
        return Credential(
            client_id=self.client_id,
            client_secret=self.client_secret,
            redirect_url=self.redirect_url,
            scopes=list(self.scopes),
            name=name,
            access_token=access_token or "",
            refresh_token=refresh_token or "",
        )


@dataclass
class YouTubeAccountConfig:
    name: str
    key: str
    refresh_token: Optional[str] = None
    owner_refresh_token: Optional[str] = None
    channel_id: Optional[str] = None
    playlist_id: Optional[str] = None
    live_id: Optional[str] = None
    auto_search: bool = True


@dataclass
class YouTubeConfig:
    app: OAuthAppConfig
    accounts: List[YouTubeAccountConfig] = field(default_factory=list)
    live_interval: float = DEFAULT_LIVE_INTERVAL
    chat_interval: float = DEFAULT_CHAT_INTERVAL


@dataclass
class VkConfig:
    app: OAuthAppConfig
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    group_id: Optional[int] = None
    group_token: Optional[str] = None
    api_version: str = DEFAULT_VK_API_VERSION


@dataclass
class ConnectorsConfig:
    youtube: Optional[YouTubeConfig] = None
    vk: Optional[VkConfig] = None


# ------------------------------------------------------------
# Secret resolution
# ------------------------------------------------------------

def _env(raw: Dict[str, Any], key: str) -> Optional[str]:
    """
    Resolve `<key>` (an env var name) from the environment.
    A referenced variable that is unset is a hard error.
    """
    var = raw.get(key)
    if not var:
        return None

    value = os.getenv(str(var))
    if not value:
        raise RuntimeError(f"Environment variable {var} is not set ({key})")
    return value


def _interval(raw: Dict[str, Any], key: str, default: float) -> float:
    value = raw.get(key, default)
    try:
        interval = float(value)
    except (TypeError, ValueError):
        log.warning(f"{key} must be a number; defaulting to {default}")
        return default

    if interval <= 0:
        log.warning(f"{key} must be positive; defaulting to {default}")
        return default
    return interval


# ------------------------------------------------------------
# Section loaders
# ------------------------------------------------------------

def _load_app(raw: Any, section: str) -> OAuthAppConfig:
    if not isinstance(raw, dict) or not raw.get("client_id"):
        raise RuntimeError(f"{section}.app.client_id is required")

    scopes = raw.get("scopes") or []
    if isinstance(scopes, str):
        scopes = scopes.split()

    return OAuthAppConfig(
        client_id=str(raw["client_id"]),
        client_secret=_env(raw, "client_secret_env") or "",
        redirect_url=str(raw.get("redirect_url") or ""),
        scopes=[str(s) for s in scopes],
    )


def _load_youtube_account(raw: Dict[str, Any], index: int) -> YouTubeAccountConfig:
    key = _env(raw, "key_env") or raw.get("key")
    if not key:
        raise RuntimeError(f"youtube.accounts[{index}] needs key or key_env")

    return YouTubeAccountConfig(
        name=str(raw.get("name") or f"youtube-{index}"),
        key=str(key),
        refresh_token=_env(raw, "refresh_token_env"),
        owner_refresh_token=_env(raw, "owner_refresh_token_env"),
        channel_id=raw.get("channel_id"),
        playlist_id=raw.get("playlist_id"),
        live_id=raw.get("live_id"),
        auto_search=bool(raw.get("auto_search", True)),
    )


def _load_youtube(raw: Any) -> Optional[YouTubeConfig]:
    if not isinstance(raw, dict) or not raw.get("enabled", True):
        return None

    accounts = [
        _load_youtube_account(entry, i)
        for i, entry in enumerate(raw.get("accounts") or [])
        if isinstance(entry, dict)
    ]
    if not accounts:
        log.warning("youtube section has no accounts; YouTube disabled")
        return None

    return YouTubeConfig(
        app=_load_app(raw.get("app"), "youtube"),
        accounts=accounts,
        live_interval=_interval(raw, "live_interval", DEFAULT_LIVE_INTERVAL),
        chat_interval=_interval(raw, "chat_interval", DEFAULT_CHAT_INTERVAL),
    )


def _load_vk(raw: Any) -> Optional[VkConfig]:
    if not isinstance(raw, dict) or not raw.get("enabled", True):
        return None

    group_id = raw.get("group_id")
    return VkConfig(
        app=_load_app(raw.get("app"), "vk"),
        access_token=_env(raw, "access_token_env"),
        refresh_token=_env(raw, "refresh_token_env"),
        group_id=int(group_id) if group_id not in (None, "") else None,
        group_token=_env(raw, "group_token_env"),
        api_version=str(raw.get("api_version") or DEFAULT_VK_API_VERSION),
    )


def load_connectors_config(raw: Optional[Dict[str, Any]]) -> ConnectorsConfig:
    raw = raw if isinstance(raw, dict) else {}
    return ConnectorsConfig(
        youtube=_load_youtube(raw.get("youtube")),
        vk=_load_vk(raw.get("vk")),
    )
