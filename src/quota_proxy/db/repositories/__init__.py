"""Repository layer for database operations."""

from quota_proxy.db.repositories.account_repo import AccountRepository
from quota_proxy.db.repositories.flow_state_repo import FlowStateRepository
from quota_proxy.db.repositories.quota_repo import QuotaRepository


__all__ = ["AccountRepository", "FlowStateRepository", "QuotaRepository"]
