"""Tests for wiring the credential pool components together."""

import httpx
import pytest

from quota_proxy.auth.store import SqlFlowStateStore
from quota_proxy.config import Settings
from quota_proxy.config.oauth import DEFAULT_MODELS_URL, DEFAULT_TOKEN_URL
from quota_proxy.db import get_engine
from quota_proxy.services import open_credential_pool


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database={"path": tmp_path / "pool.db"},
        scheduler={"enabled": False},
    )


@pytest.mark.asyncio
async def test_linked_shared_account_feeds_owner_pool(settings, provider, http_client):
    provider.add(
        DEFAULT_TOKEN_URL,
        httpx.Response(
            200,
            json={"access_token": "at", "refresh_token": "rt", "expires_in": 3600},
        ),
    )
    provider.add(DEFAULT_MODELS_URL, httpx.Response(200, json={"models": {"model-x": {}}}))

    async with open_credential_pool(settings, http_client=http_client) as pool:
        assert isinstance(pool.store, SqlFlowStateStore)
        started = await pool.code_flow.begin("user-1", is_shared=True)
        account = await pool.code_flow.complete("auth-code", started.state)

        remaining = await pool.ledger.consume("user-1", "model-x", 0.5, shared=True)
        dedicated = await pool.ledger.get_balance(account.account_id, "model-x")

    assert remaining == 1.5
    assert dedicated == 1.0
    assert not http_client.is_closed


@pytest.mark.asyncio
async def test_database_closed_on_exit(settings):
    async with open_credential_pool(settings) as pool:
        assert get_engine() is not None
        owned_client = pool.http_client

    assert owned_client.is_closed
    with pytest.raises(RuntimeError):
        get_engine()


@pytest.mark.asyncio
async def test_background_jobs_follow_settings(tmp_path, http_client):
    settings = Settings(
        database={"path": tmp_path / "jobs.db"},
        scheduler={"quota_recovery_enabled": False},
    )

    async with open_credential_pool(
        settings, start_jobs=True, http_client=http_client
    ) as pool:
        assert pool.refresh_scheduler.is_running
        assert not pool.recovery_scheduler.is_running

    assert not pool.refresh_scheduler.is_running
