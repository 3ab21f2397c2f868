"""Persisting linked accounts and keeping quota rows in step with them."""

from collections.abc import Iterable

from sqlalchemy.exc import SQLAlchemyError
from structlog import get_logger

from quota_proxy.db.models import Account, AccountStatus
from quota_proxy.db.repositories import AccountRepository
from quota_proxy.exceptions import StorageError
from quota_proxy.quota.ledger import QuotaLedger


logger = get_logger(__name__)


class AccountLinker:
    """Writes accounts and the quota rows they imply.

    Linking seeds the account's dedicated rows; for a shared account the
    owner's pool ceilings are recomputed too. Status changes recompute the
    owner's pools, since only active accounts contribute capacity.
    """

    def __init__(
        self,
        ledger: QuotaLedger,
        accounts: AccountRepository | None = None,
    ) -> None:
        self.ledger = ledger
        self.accounts = accounts or AccountRepository()

    async def link(self, account: Account, model_names: Iterable[str]) -> Account:
        """Create or refresh an account and initialize its quota rows.

        Linking an account id that already exists updates it in place, so
        re-linking never adds a second row or a second pool contribution.

        Raises:
            StorageError: The account could not be written
        """
        models = list(dict.fromkeys(model_names))
        existing = await self.accounts.get(account.account_id)

        try:
            if existing is None:
                saved = await self.accounts.create(account)
            else:
                account.created_at = existing.created_at
                account.status = AccountStatus.ACTIVE
                account.last_error = None
                saved = await self.accounts.update(account)
        except SQLAlchemyError as e:
            logger.error(
                "account_write_failed", account_id=account.account_id, error=str(e)
            )
            raise StorageError(f"Failed to store account: {e}") from e

        await self.ledger.initialize_or_update(saved.account_id, models, is_shared=False)
        dropped = await self.ledger.retire_dedicated(saved.account_id, models)
        if saved.is_shared:
            await self.ledger.initialize_or_update(
                saved.owner_user_id, models, is_shared=True
            )
            if dropped:
                await self.ledger.refresh_shared_pools_for_owner(
                    saved.owner_user_id, dropped
                )

        if existing is not None and existing.is_shared and (
            existing.owner_user_id != saved.owner_user_id or not saved.is_shared
        ):
            # The account left its previous owner's pools
            await self.ledger.refresh_shared_pools_for_owner(existing.owner_user_id)

        logger.info(
            "account_linked",
            account_id=saved.account_id,
            owner_user_id=saved.owner_user_id,
            provider=saved.provider,
            is_shared=saved.is_shared,
            relinked=existing is not None,
            models=len(models),
        )
        return saved

    async def set_status(
        self,
        account_id: str,
        status: AccountStatus,
        error: str | None = None,
    ) -> Account | None:
        """Change an account's status and rebalance its owner's pools.

        Returns:
            The updated account, or None if it does not exist
        """
        account = await self.accounts.set_status(account_id, status, error)
        if account is None:
            logger.warning("account_status_unknown_account", account_id=account_id)
            return None

        if account.is_shared:
            rows = await self.ledger.repository.list_dedicated(account_id)
            await self.ledger.refresh_shared_pools_for_owner(
                account.owner_user_id, [row.model_name for row in rows]
            )

        logger.info(
            "account_status_changed",
            account_id=account_id,
            status=status,
            error=error,
        )
        return account
