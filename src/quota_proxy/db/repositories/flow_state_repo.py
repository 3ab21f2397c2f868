"""Flow state repository for database operations."""

from datetime import timedelta

from sqlalchemy import delete
from sqlmodel import select

from quota_proxy.core.async_utils import Clock, utc_now
from quota_proxy.db.engine import get_session
from quota_proxy.db.models import FlowStateRecord


class FlowStateRepository:
    """Repository for pending OAuth flow state.

    Rows past ``expires_at`` are invisible to reads; ``cleanup_expired``
    removes them physically.
    """

    def __init__(self, clock: Clock = utc_now) -> None:
        self._clock = clock

    async def put(self, key: str, value: str, ttl_seconds: int) -> FlowStateRecord:
        """Create or replace the state stored under ``key``."""
        now = self._clock()
        async with get_session() as session:
            record = FlowStateRecord(
                key=key,
                value=value,
                created_at=now,
                expires_at=now + timedelta(seconds=ttl_seconds),
            )
            merged = await session.merge(record)
            await session.commit()
            return merged

    async def get_valid(self, key: str) -> FlowStateRecord | None:
        """Get a state if it exists and hasn't expired."""
        async with get_session() as session:
            result = await session.execute(
                select(FlowStateRecord).where(
                    FlowStateRecord.key == key,
                    FlowStateRecord.expires_at > self._clock(),
                )
            )
            return result.scalar_one_or_none()

    async def delete(self, key: str) -> bool:
        """Delete a state.

        A single DELETE, so of two concurrent callers exactly one gets True.
        """
        async with get_session() as session:
            result = await session.execute(
                delete(FlowStateRecord).where(FlowStateRecord.key == key)
            )
            await session.commit()
            return result.rowcount == 1

    async def cleanup_expired(self) -> int:
        """Delete all expired states. Returns count deleted."""
        async with get_session() as session:
            result = await session.execute(
                select(FlowStateRecord).where(
                    FlowStateRecord.expires_at <= self._clock()
                )
            )
            expired = list(result.scalars().all())
            for record in expired:
                await session.delete(record)
            await session.commit()
            return len(expired)
