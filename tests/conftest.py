"""Shared fixtures: temporary database, controllable clock, provider stubs."""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
import pytest

from quota_proxy.db import Account, close_db, init_db


T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC)


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class ProviderStub:
    """httpx.MockTransport handler answering from per-URL response queues.

    The last queued response for a URL is repeated. Queued exceptions are
    raised instead of answered.
    """

    def __init__(self) -> None:
        self.routes: dict[str, list[httpx.Response | Exception]] = {}
        self.requests: list[httpx.Request] = []

    @staticmethod
    def _key(url: httpx.URL | str) -> str:
        url = httpx.URL(url)
        return f"{url.host}{url.path}"

    def add(self, url: str, *responses: httpx.Response | Exception) -> None:
        self.routes.setdefault(self._key(url), []).extend(responses)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get(self._key(request.url))
        if not queue:
            return httpx.Response(404, json={"error": "not_stubbed"})
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        # Fresh copy: a response object is bound to the request that received it
        return httpx.Response(item.status_code, headers=item.headers, content=item.content)

    def calls(self, url: str) -> list[httpx.Request]:
        key = self._key(url)
        return [r for r in self.requests if self._key(r.url) == key]

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
async def db(tmp_path):
    """Fresh SQLite database per test."""
    await init_db(tmp_path / "test.db")
    yield tmp_path / "test.db"
    await close_db()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def provider() -> ProviderStub:
    return ProviderStub()


@pytest.fixture
async def http_client(provider: ProviderStub):
    client = provider.client()
    yield client
    await client.aclose()


@pytest.fixture
def make_account() -> Callable[..., Account]:
    """Build unsaved accounts with sensible defaults."""

    def _make(account_id: str = "acct-1", **overrides: Any) -> Account:
        values: dict[str, Any] = {
            "account_id": account_id,
            "owner_user_id": "user-1",
            "is_shared": False,
            "access_token": f"access-{account_id}",
            "refresh_token": f"refresh-{account_id}",
            "token_expires_at": datetime.now(UTC) + timedelta(hours=1),
        }
        values.update(overrides)
        return Account(**values)

    return _make
