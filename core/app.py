"""
======================================================================
 StreamRelay Connectors - Version v0.3.0-alpha (Build 2026.10)
======================================================================
"""

import asyncio
import signal
import sys
from typing import List, Optional

from dotenv import load_dotenv

from core.config_loader import ConfigLoader
from runtime.version import as_string
from services.vk.client import VkClient
from services.youtube.models.message import YouTubeChatMessage
from services.youtube.workers.account_router import AccountRouter
from services.youtube.workers.stream_watcher import StreamWatcher
from shared.config.connectors import VkConfig, YouTubeConfig
from shared.logging.logger import get_logger

log = get_logger("core.app")


# ----------------------------------------------------------------------
# CONNECTOR FACTORIES
# ----------------------------------------------------------------------

def build_watchers(config: YouTubeConfig) -> List[StreamWatcher]:
    watchers = []
    for account in config.accounts:
        owner = None
        if account.owner_refresh_token:
            owner = config.app.credential(
                name=f"{account.name}-owner",
                refresh_token=account.owner_refresh_token,
            )

        watchers.append(
            StreamWatcher(
                key=account.key,
                name=account.name,
                credential=config.app.credential(
                    name=account.name,
                    refresh_token=account.refresh_token,
                ),
                owner_credential=owner,
                channel_id=account.channel_id,
                playlist_id=account.playlist_id,
                live_id=account.live_id,
                auto_search=account.auto_search,
                live_interval=config.live_interval,
                chat_interval=config.chat_interval,
            )
        )
    return watchers


def build_vk(config: VkConfig) -> VkClient:
    return VkClient(
        config.app.credential(
            name="vk",
            access_token=config.access_token,
            refresh_token=config.refresh_token,
        ),
        group_token=config.group_token,
        group_id=config.group_id,
        api_version=config.api_version,
    )


# ----------------------------------------------------------------------
# LOGGING SUBSCRIBERS
# ----------------------------------------------------------------------

def _wire_watcher(watcher: StreamWatcher) -> None:
    tag = f"[YouTube][{watcher.name}]"

    watcher.on(
        "login",
        lambda: log.warning(f"{tag} Authorization required: {watcher.authorization_url()}"),
    )
    watcher.on(
        "credentials",
        lambda creds: log.info(f"{tag} Credentials updated for {creds.get('name')}"),
    )
    watcher.on("online", lambda name: log.info(f"{tag} ONLINE"))
    watcher.on("offline", lambda name: log.info(f"{tag} OFFLINE"))
    watcher.on("error", lambda err: log.warning(f"{tag} {err}"))

    def _on_message(snippet, author):
        msg = YouTubeChatMessage.from_snippet(snippet, author)
        log.info(f"{tag} {msg.author_name}: {msg.text}")

    watcher.on("message", _on_message)


def _wire_vk(client: VkClient) -> None:
    client.on(
        "login",
        lambda: log.warning(f"[VK] Authorization required: {client.authorization_url()}"),
    )
    client.on("error", lambda err: log.warning(f"[VK] {err}"))
    client.on(
        "message_new",
        lambda obj: log.info(f"[VK] message_new from {obj.get('from_id')}: {obj.get('text')}"),
    )


# ----------------------------------------------------------------------
# MAIN
# ----------------------------------------------------------------------

async def main(stop_event: asyncio.Event):
    # --------------------------------------------------
    # ENV + CONFIG
    # --------------------------------------------------
    load_dotenv()
    log.info("Environment variables loaded")
    log.info(f"{as_string()} booting")

    config = ConfigLoader().load()

    router: Optional[AccountRouter] = None
    vk: Optional[VkClient] = None

    # --------------------------------------------------
    # START CONNECTORS
    # --------------------------------------------------
    if config.youtube:
        watchers = build_watchers(config.youtube)
        for watcher in watchers:
            _wire_watcher(watcher)
        router = AccountRouter(watchers)
        await router.login()
        log.info(f"YouTube started with {len(watchers)} account(s)")

    if config.vk:
        vk = build_vk(config.vk)
        _wire_vk(vk)
        await vk.login()

    if not router and not vk:
        log.warning("No connectors configured; nothing to do")
        return

    # --------------------------------------------------
    # BLOCK UNTIL SHUTDOWN SIGNAL
    # --------------------------------------------------
    await stop_event.wait()

    log.info("Shutdown initiated")

    if router:
        router.stop()

    if vk:
        try:
            await vk.stop()
        except Exception as e:
            log.warning(f"VK shutdown error ignored: {e}")

    log.info("StreamRelay stopped")


# ----------------------------------------------------------------------
# SIGNAL HANDLING (WINDOWS-SAFE)
# ----------------------------------------------------------------------

def _install_signal_handlers(
    loop: asyncio.AbstractEventLoop,
    stop_event: asyncio.Event,
):
    """
    Ctrl+C / SIGTERM handler.
    Uses signal.signal + asyncio.Event to unwind cleanly.
    """

    def _handler(signum, frame):
        loop.call_soon_threadsafe(stop_event.set)

    try:
        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
    except (ValueError, OSError) as e:
        log.debug(f"Signal handlers not installed: {e}")


# ----------------------------------------------------------------------
# ENTRYPOINT
# ----------------------------------------------------------------------

def run():
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    stop_event = asyncio.Event()
    _install_signal_handlers(loop, stop_event)

    try:
        loop.run_until_complete(main(stop_event))

    except KeyboardInterrupt:
        log.info("KeyboardInterrupt received, shutting down")

    finally:
        # --------------------------------------------------
        # CANCEL REMAINING TASKS
        # --------------------------------------------------
        pending = [t for t in asyncio.all_tasks(loop) if not t.done()]
        for task in pending:
            task.cancel()

        if pending:
            loop.run_until_complete(
                asyncio.gather(*pending, return_exceptions=True)
            )

        loop.run_until_complete(loop.shutdown_asyncgens())
        asyncio.set_event_loop(None)
        loop.close()


if __name__ == "__main__":
    run()
    sys.exit(0)
