"""
Tests for CredentialStore: authorization URL, grants, revoke and the
single-flight freshness guard
"""
import asyncio
from urllib.parse import parse_qs, urlparse

import pytest

from conftest import form, token_reply
from services.oauth.store import CredentialStore
from shared.runtime.errors import AuthError
from shared.runtime.events import EventHub

BASE = "https://auth.example.com/oauth/"
TOKEN_PATH = "/oauth/token"


def make_store(credential, fake_api, **kwargs):
    return CredentialStore(
        credential,
        base_url=BASE,
        events=kwargs.pop("events", None) or EventHub(owner="test"),
        transport=fake_api.transport,
        clock=kwargs.pop("clock", lambda: 1_000_000.0),
        **kwargs,
    )


@pytest.mark.unit
class TestAuthorizationUrl:
    """Authorization URL construction"""

    def test_contains_standard_parameters(self, credential, fake_api):
        """The URL carries response_type, client, redirect and joined scopes"""
        store = make_store(credential, fake_api)
        url = urlparse(store.authorization_url())
        query = parse_qs(url.query)

        assert url.path == "/oauth/authorize"
        assert query["response_type"] == ["code"]
        assert query["client_id"] == ["client-123"]
        assert query["redirect_uri"] == ["http://localhost/callback"]
        assert query["scope"] == ["scope.read scope.write"]

    def test_provider_extras_are_appended(self, credential, fake_api):
        """Provider-specific parameters follow the standard ones"""
        store = make_store(
            credential,
            fake_api,
            authorize_path="auth",
            extra_auth_params={"access_type": "offline", "approval_prompt": "force"},
        )
        url = store.authorization_url()

        assert url.startswith(BASE + "auth?response_type=code")
        assert url.endswith("access_type=offline&approval_prompt=force")

    def test_is_deterministic(self, credential, fake_api):
        store = make_store(credential, fake_api)
        assert store.authorization_url() == store.authorization_url()


@pytest.mark.unit
class TestGrants:
    """Code exchange and refresh"""

    @pytest.mark.asyncio
    async def test_exchange_code_stores_tokens_and_emits(self, credential, fake_api):
        """A successful exchange updates the credential and emits a snapshot"""
        events = EventHub(owner="test")
        seen = []
        events.on("credentials", seen.append)
        fake_api.add(TOKEN_PATH, token_reply("access-a", "refresh-a", 600))
        store = make_store(credential, fake_api, events=events)

        await store.exchange_code("the-code")

        sent = form(fake_api.calls(TOKEN_PATH)[0])
        assert sent["grant_type"] == "authorization_code"
        assert sent["code"] == "the-code"
        assert store.access_token == "access-a"
        assert store.refresh_token == "refresh-a"
        assert store.expires_time == 1_000_600
        assert seen == [store.get_credentials()]

    @pytest.mark.asyncio
    async def test_refresh_keeps_previous_refresh_token(self, credential, fake_api):
        """Providers that do not rotate refresh tokens keep the old one"""
        fake_api.add(TOKEN_PATH, token_reply("access-b"))
        store = make_store(credential, fake_api)

        await store.refresh()

        sent = form(fake_api.calls(TOKEN_PATH)[0])
        assert sent["grant_type"] == "refresh_token"
        assert sent["refresh_token"] == "refresh-1"
        assert store.access_token == "access-b"
        assert store.refresh_token == "refresh-1"

    @pytest.mark.asyncio
    async def test_refresh_adopts_rotated_token(self, credential, fake_api):
        fake_api.add(TOKEN_PATH, token_reply("access-c", "refresh-2"))
        store = make_store(credential, fake_api)

        await store.refresh()

        assert store.refresh_token == "refresh-2"

    @pytest.mark.asyncio
    async def test_client_error_requires_login(self, credential, fake_api):
        """A 4xx from the token endpoint is an AuthError that needs login"""
        fake_api.add(TOKEN_PATH, (400, {"error": "invalid_grant"}))
        store = make_store(credential, fake_api)

        with pytest.raises(AuthError) as exc:
            await store.refresh()

        assert exc.value.status == 400
        assert exc.value.needs_login
        assert exc.value.body == {"error": "invalid_grant"}
        assert store.refresh_token == "refresh-1"

    @pytest.mark.asyncio
    async def test_server_error_does_not_require_login(self, credential, fake_api):
        fake_api.add(TOKEN_PATH, (503, "unavailable"))
        store = make_store(credential, fake_api)

        with pytest.raises(AuthError) as exc:
            await store.refresh()

        assert exc.value.status == 503
        assert not exc.value.needs_login


@pytest.mark.unit
class TestRevoke:
    """Token revocation"""

    @pytest.mark.asyncio
    async def test_revoke_clears_dynamic_fields(self, fresh_credential, fake_api):
        events = EventHub(owner="test")
        seen = []
        events.on("credentials", seen.append)
        fake_api.add("/oauth/revoke", (200, {}))
        store = make_store(fresh_credential, fake_api, events=events)

        await store.revoke()

        assert form(fake_api.calls("/oauth/revoke")[0]) == {"token": "access-live"}
        assert store.access_token == ""
        assert store.refresh_token == ""
        assert store.expires_time is None
        assert seen[-1]["access_token"] == ""


@pytest.mark.unit
class TestEnsureFresh:
    """Single-flight refresh guard"""

    @pytest.mark.asyncio
    async def test_fresh_token_makes_no_request(self, fresh_credential, fake_api):
        store = make_store(fresh_credential, fake_api)

        await store.ensure_fresh()

        assert fake_api.requests == []

    @pytest.mark.asyncio
    async def test_unknown_expiry_is_stale(self, credential, fake_api):
        """No expires_time means the token must be refreshed before use"""
        fake_api.add(TOKEN_PATH, token_reply("access-d"))
        store = make_store(credential, fake_api)

        await store.ensure_fresh()

        assert store.access_token == "access-d"
        assert len(fake_api.calls(TOKEN_PATH)) == 1

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_refresh(self, credential, fake_api):
        """N callers during the stale window cause exactly one network refresh"""
        fake_api.add(TOKEN_PATH, token_reply("access-shared"))
        store = make_store(credential, fake_api)

        async def caller():
            await store.ensure_fresh()
            return store.access_token

        tokens = await asyncio.gather(*(caller() for _ in range(10)))

        assert len(fake_api.calls(TOKEN_PATH)) == 1
        assert set(tokens) == {"access-shared"}

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_the_failure(self, credential, fake_api):
        fake_api.add(TOKEN_PATH, (401, {"error": "invalid_client"}))
        store = make_store(credential, fake_api)

        results = await asyncio.gather(
            *(store.ensure_fresh() for _ in range(5)),
            return_exceptions=True,
        )

        assert len(fake_api.calls(TOKEN_PATH)) == 1
        assert all(isinstance(r, AuthError) for r in results)

    @pytest.mark.asyncio
    async def test_failed_refresh_can_be_retried(self, credential, fake_api):
        """A settled failure does not poison later calls"""
        fake_api.add(TOKEN_PATH, (500, "boom"), token_reply("access-retry"))
        store = make_store(credential, fake_api)

        with pytest.raises(AuthError):
            await store.ensure_fresh()
        await store.ensure_fresh()

        assert store.access_token == "access-retry"
        assert len(fake_api.calls(TOKEN_PATH)) == 2


@pytest.mark.unit
class TestUpdateCredentials:
    """External credential updates"""

    def test_update_replaces_dynamic_fields(self, credential, fake_api):
        store = make_store(credential, fake_api)

        store.update_credentials({
            "access_token": "external",
            "refresh_token": "external-refresh",
            "expires_time": 2_000_000,
        })

        assert store.access_token == "external"
        assert store.refresh_token == "external-refresh"
        assert not store.is_stale()
