"""Key/value store with expiry for pending flow state.

Values are JSON documents. An entry is invisible once its TTL has elapsed,
whether or not it has been physically removed yet.
"""

import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

import orjson
from cachetools import TLRUCache
from sqlalchemy.exc import SQLAlchemyError
from structlog import get_logger

from quota_proxy.db.repositories import FlowStateRepository
from quota_proxy.exceptions import StorageError


logger = get_logger(__name__)

# Keys under which each flow keeps its state
CODE_FLOW_KEY_PREFIX = "oauth:code:state:"
DEVICE_FLOW_KEY_PREFIX = "oauth:device:state:"

DEFAULT_MEMORY_STORE_SIZE = 1024


class FlowStateStore(ABC):
    """Abstract interface for flow state storage."""

    @abstractmethod
    async def get(self, key: str) -> dict[str, Any] | None:
        """Load a value.

        Returns:
            The stored document, or None if absent or expired
        """

    @abstractmethod
    async def set(self, key: str, value: dict[str, Any], ttl_seconds: int) -> None:
        """Store ``value`` under ``key`` for ``ttl_seconds``.

        A non-positive TTL removes the key.
        """

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove a key.

        Returns:
            True if a value was removed
        """


class SqlFlowStateStore(FlowStateStore):
    """Flow state kept in the ``flow_states`` table, shared across processes."""

    def __init__(self, repository: FlowStateRepository | None = None) -> None:
        self.repository = repository or FlowStateRepository()

    async def get(self, key: str) -> dict[str, Any] | None:
        try:
            record = await self.repository.get_valid(key)
        except SQLAlchemyError as e:
            logger.error("flow_state_read_failed", key=key, error=str(e))
            raise StorageError(f"Failed to read flow state: {e}") from e
        if record is None:
            return None
        try:
            return orjson.loads(record.value)
        except orjson.JSONDecodeError as e:
            logger.warning("flow_state_corrupt", key=key, error=str(e))
            return None

    async def set(self, key: str, value: dict[str, Any], ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            await self.delete(key)
            return
        try:
            await self.repository.put(key, orjson.dumps(value).decode(), ttl_seconds)
        except SQLAlchemyError as e:
            logger.error("flow_state_write_failed", key=key, error=str(e))
            raise StorageError(f"Failed to write flow state: {e}") from e

    async def delete(self, key: str) -> bool:
        try:
            return await self.repository.delete(key)
        except SQLAlchemyError as e:
            logger.error("flow_state_delete_failed", key=key, error=str(e))
            raise StorageError(f"Failed to delete flow state: {e}") from e

    async def cleanup_expired(self) -> int:
        """Physically remove expired rows."""
        try:
            count = await self.repository.cleanup_expired()
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to clean up flow states: {e}") from e
        logger.info("flow_states_cleaned", count=count)
        return count


class MemoryFlowStateStore(FlowStateStore):
    """In-process store backed by a per-item TTL cache.

    Only suitable for a single process; values are serialized so callers never
    share mutable state with the store.
    """

    def __init__(
        self,
        maxsize: int = DEFAULT_MEMORY_STORE_SIZE,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        self._cache: TLRUCache[str, tuple[int, bytes]] = TLRUCache(
            maxsize=maxsize, ttu=self._time_to_use, timer=timer
        )

    @staticmethod
    def _time_to_use(key: str, value: tuple[int, bytes], now: float) -> float:
        ttl_seconds, _ = value
        return now + ttl_seconds

    async def get(self, key: str) -> dict[str, Any] | None:
        entry = self._cache.get(key)
        if entry is None:
            return None
        return orjson.loads(entry[1])

    async def set(self, key: str, value: dict[str, Any], ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            self._cache.pop(key, None)
            return
        self._cache[key] = (ttl_seconds, orjson.dumps(value))

    async def delete(self, key: str) -> bool:
        return self._cache.pop(key, None) is not None

    def __len__(self) -> int:
        self._cache.expire()
        return len(self._cache)
