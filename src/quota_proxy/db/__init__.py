"""Database package for SQLite persistence."""

from quota_proxy.db.engine import close_db, get_engine, get_session, init_db
from quota_proxy.db.models import (
    Account,
    AccountStatus,
    AuthMethod,
    FlowStateRecord,
    ModelQuota,
    Provider,
    SharedPoolQuota,
)


__all__ = [
    "Account",
    "AccountStatus",
    "AuthMethod",
    "FlowStateRecord",
    "ModelQuota",
    "Provider",
    "SharedPoolQuota",
    "close_db",
    "get_engine",
    "get_session",
    "init_db",
]
