"""
Pytest configuration
Shared fixtures: a scripted HTTP backend and OAuth credentials
"""
import os
from typing import Any, Callable, Dict, List, Union

import httpx
import pytest

# keep test runs from writing log files
os.environ.setdefault("RELAY_LOG_FILE", "0")

from services.oauth.credentials import Credential  # noqa: E402

Reply = Union[tuple, Callable[[httpx.Request], httpx.Response]]


class FakeApi:
    """
    Scripted backend for httpx.MockTransport.

    Replies are registered per URL path and consumed in order; the last
    reply for a path is sticky. Every request is recorded.
    """

    def __init__(self):
        self.routes: Dict[str, List[Reply]] = {}
        self.requests: List[httpx.Request] = []

    def add(self, path: str, *replies: Reply) -> "FakeApi":
        self.routes.setdefault(path, []).extend(replies)
        return self

    def calls(self, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.path == path]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get(request.url.path)
        if not queue:
            return httpx.Response(404, json={"error": f"no route for {request.url.path}"})

        reply = queue.pop(0) if len(queue) > 1 else queue[0]
        if callable(reply):
            return reply(request)

        status, body = reply
        if isinstance(body, str):
            return httpx.Response(status, text=body)
        return httpx.Response(status, json=body)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def form(request: httpx.Request) -> Dict[str, str]:
    """Decode a form-encoded request body."""
    return dict(httpx.QueryParams(request.content.decode()))


@pytest.fixture
def fake_api():
    return FakeApi()


@pytest.fixture
def credential():
    """Credential with a usable refresh token and no access token yet"""
    return Credential(
        client_id="client-123",
        client_secret="secret-xyz",
        redirect_url="http://localhost/callback",
        scopes=["scope.read", "scope.write"],
        name="primary",
        refresh_token="refresh-1",
    )


@pytest.fixture
def fresh_credential():
    """Credential whose access token is valid for a long time"""
    return Credential(
        client_id="client-123",
        client_secret="secret-xyz",
        redirect_url="http://localhost/callback",
        scopes=["scope.read"],
        name="primary",
        access_token="access-live",
        refresh_token="refresh-1",
        expires_in=3600,
        expires_time=4_000_000_000,
    )


def token_reply(access: str = "access-new", refresh: Any = None, expires_in: int = 3600):
    body = {"access_token": access, "expires_in": expires_in}
    if refresh:
        body["refresh_token"] = refresh
    return (200, body)
