"""
======================================================================
 StreamRelay Connectors - Version v0.3.0-alpha (Build 2026.10)
======================================================================
"""

import argparse
import asyncio
import os

from dotenv import load_dotenv

from services.oauth.credentials import Credential
from services.youtube.models.message import YouTubeChatMessage
from services.youtube.workers.stream_watcher import StreamWatcher
from shared.logging.logger import get_logger

log = get_logger("youtube.poc")

SCOPES = [
    "https://www.googleapis.com/auth/youtube",
    "https://www.googleapis.com/auth/youtube.force-ssl",
]


def _env(key: str) -> str:
    return os.getenv(key, "").strip()


async def _run(args) -> None:
    load_dotenv()

    key = args.key or _env("YOUTUBE_API_KEY")
    client_id = _env("YOUTUBE_CLIENT_ID")
    if not key:
        raise RuntimeError("Missing API key. Provide --key or set YOUTUBE_API_KEY")
    if not client_id:
        raise RuntimeError("Missing OAuth client. Set YOUTUBE_CLIENT_ID")
    if not (args.channel or args.live_id):
        raise RuntimeError("Provide --channel or --live-id")

    watcher = StreamWatcher(
        key=key,
        name="poc",
        credential=Credential(
            client_id=client_id,
            client_secret=_env("YOUTUBE_CLIENT_SECRET"),
            redirect_url=_env("YOUTUBE_REDIRECT_URL") or "urn:ietf:wg:oauth:2.0:oob",
            scopes=SCOPES,
            refresh_token=_env("YOUTUBE_REFRESH_TOKEN"),
        ),
        channel_id=args.channel,
        live_id=args.live_id,
        auto_search=True,
        live_interval=args.live_interval,
        chat_interval=args.chat_interval,
    )

    def _on_message(snippet, author):
        msg = YouTubeChatMessage.from_snippet(snippet, author)
        print(f"💬 {msg.author_name} → {msg.text}")

    watcher.on("message", _on_message)
    watcher.on("online", lambda name: log.info("Stream online, listening for chat"))
    watcher.on("offline", lambda name: log.info("Stream offline"))
    watcher.on("error", lambda err: log.warning(f"Watcher error: {err}"))
    watcher.on("credentials", lambda creds: log.info(
        f"Refresh token for .env: {creds.get('refresh_token')}"
    ))

    def _on_login():
        print(f"Open this URL, then rerun with --code:\n{watcher.authorization_url()}")

    watcher.on("login", _on_login)

    if not await watcher.login(args.code):
        return

    log.info("YouTube chat POC started, Ctrl+C to exit")
    try:
        await asyncio.Event().wait()
    finally:
        watcher.stop()


def main() -> None:
    parser = argparse.ArgumentParser(
        description="StreamRelay YouTube live chat smoke test"
    )
    parser.add_argument("--key", help="Data API key (defaults to YOUTUBE_API_KEY)")
    parser.add_argument("--channel", help="Channel id to search for a live stream")
    parser.add_argument("--live-id", help="Pinned live video id")
    parser.add_argument("--code", help="OAuth authorization code to exchange")
    parser.add_argument("--live-interval", type=float, default=60.0)
    parser.add_argument("--chat-interval", type=float, default=5.0)

    args = parser.parse_args()
    try:
        asyncio.run(_run(args))
    except KeyboardInterrupt:
        log.info("KeyboardInterrupt received, shutting down POC")


if __name__ == "__main__":
    main()
