"""
Tests for the VkClient facade
"""
import asyncio
from urllib.parse import parse_qs, urlparse

import pytest

from services.vk.client import VkClient

EXECUTE = "/method/execute"


@pytest.mark.integration
class TestVkClient:
    """Credential, batching and lifecycle wiring"""

    def test_authorization_url(self, credential, fake_api):
        client = VkClient(credential, transport=fake_api.transport)
        url = urlparse(client.authorization_url())
        query = parse_qs(url.query)

        assert url.netloc == "oauth.vk.com"
        assert url.path == "/authorize"
        assert query["display"] == ["page"]
        assert query["revoke"] == ["1"]
        assert query["v"] == ["5.92"]

    def test_credentials_include_group_token(self, fresh_credential, fake_api):
        client = VkClient(fresh_credential, group_token="gt", transport=fake_api.transport)
        creds = client.get_credentials()
        assert creds["access_token"] == "access-live"
        assert creds["group_token"] == "gt"

    @pytest.mark.asyncio
    async def test_login_without_tokens_asks_for_login(self, credential, fake_api):
        credential.refresh_token = ""
        client = VkClient(credential, transport=fake_api.transport)
        seen = []
        client.on("login", lambda: seen.append("login"))

        assert await client.login() is False
        assert seen == ["login"]

    @pytest.mark.asyncio
    async def test_login_refreshes_missing_access_token(self, credential, fake_api):
        fake_api.add("/access_token", (200, {"access_token": "vk-access", "expires_in": 0}))
        client = VkClient(credential, transport=fake_api.transport)

        assert await client.login() is True
        try:
            assert client.credentials.access_token == "vk-access"
        finally:
            await client.stop()

    @pytest.mark.asyncio
    async def test_call_is_batched_through_execute(self, fresh_credential, fake_api):
        fake_api.add(EXECUTE, (200, {"response": [{"id": 1}]}))
        client = VkClient(fresh_credential, tick_interval=0.01, transport=fake_api.transport)
        ready = []
        client.on("ready", lambda: ready.append(True))

        await client.login()
        try:
            result = await asyncio.wait_for(client.call("users.get", {"user_ids": 1}), 2.0)
        finally:
            await client.stop()

        assert ready == [True]
        assert result == {"id": 1}
        assert len(fake_api.calls(EXECUTE)) == 1
