"""Tests for FlowStateRepository expiry handling."""

import pytest

from quota_proxy.db.repositories import FlowStateRepository


@pytest.fixture
def repo(db, clock):
    return FlowStateRepository(clock=clock)


@pytest.mark.asyncio
async def test_state_visible_until_expiry(repo, clock):
    await repo.put("k", '{"a": 1}', ttl_seconds=300)

    clock.advance(299)
    record = await repo.get_valid("k")
    assert record is not None
    assert record.value == '{"a": 1}'

    clock.advance(1)
    assert await repo.get_valid("k") is None


@pytest.mark.asyncio
async def test_put_replaces_existing_value(repo):
    await repo.put("k", "old", ttl_seconds=60)
    await repo.put("k", "new", ttl_seconds=60)

    assert (await repo.get_valid("k")).value == "new"


@pytest.mark.asyncio
async def test_delete(repo):
    await repo.put("k", "v", ttl_seconds=60)

    assert await repo.delete("k") is True
    assert await repo.delete("k") is False
    assert await repo.get_valid("k") is None


@pytest.mark.asyncio
async def test_cleanup_expired_removes_only_expired(repo, clock):
    await repo.put("short", "v", ttl_seconds=10)
    await repo.put("long", "v", ttl_seconds=1000)
    clock.advance(60)

    assert await repo.cleanup_expired() == 1
    assert await repo.get_valid("long") is not None
