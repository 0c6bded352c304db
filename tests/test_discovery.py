"""
Tests for live video discovery: strategy precedence, fallthrough on empty
results and quota propagation
"""
import pytest

from services.oauth.credentials import Credential
from services.youtube.models.stream import DiscoveryStrategy
from services.youtube.workers.stream_watcher import StreamWatcher
from shared.runtime.errors import ConnectorError, QuotaError

API = "/youtube/v3/"
BROADCASTS = API + "liveBroadcasts"
PLAYLIST = API + "playlistItems"
SEARCH = API + "search"
VIDEOS = API + "videos"

EMPTY = (200, {"items": []})
VIDEO_LIVE = (200, {"items": [{"liveStreamingDetails": {
    "actualStartTime": "2026-10-19T10:00:00Z",
    "activeLiveChatId": "chat-from-video",
}}]})
QUOTA = (403, {"error": {"code": 403, "message": "quotaExceeded"}})


def owner_credential():
    return Credential(
        client_id="client-123",
        name="owner",
        access_token="owner-access",
        refresh_token="owner-refresh",
        expires_time=4_000_000_000,
    )


@pytest.fixture
def watcher_factory(fake_api, fresh_credential):
    created = []

    def _make(**kwargs):
        watcher = StreamWatcher(
            key="api-key",
            name="disc",
            credential=fresh_credential,
            transport=fake_api.transport,
            auto_search=True,
            **kwargs,
        )
        created.append(watcher)
        return watcher

    yield _make
    for watcher in created:
        watcher.stop(silent=True)


@pytest.mark.unit
class TestStrategyChain:
    """Strategy precedence is fixed at construction"""

    def test_full_configuration_order(self, watcher_factory):
        watcher = watcher_factory(
            owner_credential=owner_credential(),
            playlist_id="PL-1",
            channel_id="UC-1",
            live_id="pinned",
        )
        assert watcher.strategies == [
            DiscoveryStrategy.BROADCAST,
            DiscoveryStrategy.PLAYLIST,
            DiscoveryStrategy.SEARCH,
        ]
        assert watcher.state.strategy == DiscoveryStrategy.BROADCAST

    def test_manual_only_when_nothing_else(self, watcher_factory):
        watcher = watcher_factory(live_id="pinned")
        assert watcher.strategies == [DiscoveryStrategy.MANUAL]
        assert watcher.state.manual_live_id == "pinned"

    @pytest.mark.asyncio
    async def test_no_provider_is_an_error(self, watcher_factory):
        watcher = watcher_factory()
        with pytest.raises(ConnectorError):
            await watcher.search_stream()

    @pytest.mark.asyncio
    async def test_no_provider_is_emitted_from_master_tick(self, watcher_factory):
        watcher = watcher_factory()
        errors = []
        watcher.on("error", errors.append)

        await watcher._run_master(bootstrap=True)

        assert len(errors) == 1
        assert isinstance(errors[0], ConnectorError)


@pytest.mark.unit
class TestFallthrough:
    """Empty results fall through to the next strategy"""

    @pytest.mark.asyncio
    async def test_broadcast_before_playlist(self, fake_api, watcher_factory):
        fake_api.add(BROADCASTS, EMPTY)
        fake_api.add(PLAYLIST, (200, {"items": [{"contentDetails": {"videoId": "vid-pl"}}]}))
        watcher = watcher_factory(owner_credential=owner_credential(), playlist_id="PL-1")

        found = await watcher.search_stream()

        assert found is True
        assert watcher.state.live_id == "vid-pl"
        paths = [r.url.path for r in fake_api.requests]
        assert paths == [BROADCASTS, PLAYLIST]

    @pytest.mark.asyncio
    async def test_broadcast_uses_owner_token(self, fake_api, watcher_factory):
        fake_api.add(BROADCASTS, (200, {"items": [{
            "id": "vid-b", "snippet": {"liveChatId": "chat-b"},
        }]}))
        watcher = watcher_factory(owner_credential=owner_credential(), channel_id="UC-1")

        await watcher.search_stream()

        request = fake_api.calls(BROADCASTS)[0]
        assert request.headers["Authorization"] == "Bearer owner-access"
        assert request.url.params["broadcastStatus"] == "active"
        assert watcher.state.live_id == "vid-b"
        assert watcher.state.chat_id == "chat-b"
        assert fake_api.calls(SEARCH) == []

    @pytest.mark.asyncio
    async def test_broadcast_sets_both_ids_and_skips_chat_lookup(self, fake_api, watcher_factory):
        fake_api.add(BROADCASTS, (200, {"items": [{
            "id": "vid-b", "snippet": {"liveChatId": "chat-b"},
        }]}))
        watcher = watcher_factory(owner_credential=owner_credential())
        online = []
        watcher.on("online", online.append)

        await watcher.run_immediate()

        assert online == ["disc"]
        assert fake_api.calls(VIDEOS) == []

    @pytest.mark.asyncio
    async def test_all_empty_leaves_live_id_unset(self, fake_api, watcher_factory):
        fake_api.add(PLAYLIST, EMPTY).add(SEARCH, EMPTY)
        watcher = watcher_factory(playlist_id="PL-1", channel_id="UC-1")

        found = await watcher.search_stream()

        assert found is False
        assert watcher.state.live_id is None
        assert len(fake_api.requests) == 2

    @pytest.mark.asyncio
    async def test_generic_failure_stops_the_walk(self, fake_api, watcher_factory):
        """A non-quota failure is emitted and later strategies are not tried"""
        fake_api.add(PLAYLIST, (500, "backend error"))
        watcher = watcher_factory(playlist_id="PL-1", channel_id="UC-1")
        errors = []
        watcher.on("error", errors.append)

        found = await watcher.search_stream()

        assert found is False
        assert len(errors) == 1
        assert fake_api.calls(SEARCH) == []

    @pytest.mark.asyncio
    async def test_manual_id_survives_reset(self, fake_api, watcher_factory):
        fake_api.add(VIDEOS, VIDEO_LIVE)
        watcher = watcher_factory(live_id="pinned")

        await watcher.run_immediate()
        watcher.stop()

        assert watcher.state.live_id == "pinned"
        assert watcher.state.chat_id is None


@pytest.mark.unit
class TestQuota:
    """403 responses surface as QuotaError"""

    @pytest.mark.asyncio
    async def test_search_403_propagates_as_quota(self, fake_api, watcher_factory):
        fake_api.add(SEARCH, QUOTA)
        watcher = watcher_factory(channel_id="UC-1")

        with pytest.raises(QuotaError) as exc:
            await watcher.search_stream()

        assert exc.value.status == 403

    @pytest.mark.asyncio
    async def test_quota_skips_remaining_strategies(self, fake_api, watcher_factory):
        fake_api.add(PLAYLIST, QUOTA)
        watcher = watcher_factory(playlist_id="PL-1", channel_id="UC-1")

        with pytest.raises(QuotaError):
            await watcher.search_stream()

        assert fake_api.calls(SEARCH) == []

    @pytest.mark.asyncio
    async def test_master_tick_emits_quota_and_error(self, fake_api, watcher_factory):
        fake_api.add(SEARCH, QUOTA)
        watcher = watcher_factory(channel_id="UC-1")
        seen = []
        watcher.on("quota", lambda err: seen.append("quota"))
        watcher.on("error", lambda err: seen.append("error"))

        await watcher._run_master(bootstrap=True)

        assert seen == ["quota", "error"]

    @pytest.mark.asyncio
    async def test_run_immediate_raises_quota(self, fake_api, watcher_factory):
        fake_api.add(SEARCH, QUOTA)
        watcher = watcher_factory(channel_id="UC-1")

        with pytest.raises(QuotaError):
            await watcher.run_immediate()

    @pytest.mark.asyncio
    async def test_chat_lookup_403_is_quota(self, fake_api, watcher_factory):
        fake_api.add(VIDEOS, QUOTA)
        watcher = watcher_factory(live_id="pinned")

        with pytest.raises(QuotaError):
            await watcher.search_chat()
