"""Account repository for database operations."""

from datetime import UTC, datetime

from sqlmodel import select

from quota_proxy.db.engine import get_session
from quota_proxy.db.models import Account, AccountStatus


class AccountRepository:
    """Repository for Account operations."""

    async def create(self, account: Account) -> Account:
        """Create a new account."""
        async with get_session() as session:
            session.add(account)
            await session.commit()
            await session.refresh(account)
            return account

    async def update(self, account: Account) -> Account:
        """Write every field of ``account`` over the stored row."""
        account.updated_at = datetime.now(UTC)
        async with get_session() as session:
            merged = await session.merge(account)
            await session.commit()
            await session.refresh(merged)
            return merged

    async def get(self, account_id: str) -> Account | None:
        """Get an account by id."""
        async with get_session() as session:
            result = await session.execute(
                select(Account).where(Account.account_id == account_id)
            )
            return result.scalar_one_or_none()

    async def list_all(self) -> list[Account]:
        """List all accounts."""
        async with get_session() as session:
            result = await session.execute(select(Account))
            return list(result.scalars().all())

    async def list_by_owner(
        self, owner_user_id: str, *, is_shared: bool | None = None
    ) -> list[Account]:
        """List a user's accounts, optionally only shared or dedicated ones."""
        async with get_session() as session:
            query = select(Account).where(Account.owner_user_id == owner_user_id)
            if is_shared is not None:
                query = query.where(Account.is_shared == is_shared)
            result = await session.execute(query)
            return list(result.scalars().all())

    async def list_expiring(self, before: datetime) -> list[Account]:
        """Active accounts whose access token expires at or before ``before``."""
        async with get_session() as session:
            result = await session.execute(
                select(Account).where(
                    Account.status == AccountStatus.ACTIVE,
                    Account.token_expires_at <= before,
                )
            )
            return list(result.scalars().all())

    async def update_tokens(
        self,
        account_id: str,
        access_token: str,
        refresh_token: str,
        expires_at: datetime,
    ) -> Account | None:
        """Update account tokens."""
        async with get_session() as session:
            result = await session.execute(
                select(Account).where(Account.account_id == account_id)
            )
            account = result.scalar_one_or_none()
            if account:
                account.access_token = access_token
                account.refresh_token = refresh_token
                account.token_expires_at = expires_at
                account.updated_at = datetime.now(UTC)
                session.add(account)
                await session.commit()
                await session.refresh(account)
            return account

    async def set_status(
        self, account_id: str, status: AccountStatus, error: str | None = None
    ) -> Account | None:
        """Change an account's status. Returns None if not found."""
        async with get_session() as session:
            result = await session.execute(
                select(Account).where(Account.account_id == account_id)
            )
            account = result.scalar_one_or_none()
            if account:
                account.status = status
                account.last_error = error
                account.updated_at = datetime.now(UTC)
                session.add(account)
                await session.commit()
                await session.refresh(account)
            return account
