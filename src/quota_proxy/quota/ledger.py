"""Quota ledger: consumption and recovery of per-model capacity.

Dedicated rows are keyed by account id, shared pools by owner user id. The
ledger owns the policy (allotments, per-account capacity, recovery fraction);
the repository owns the atomic SQL.
"""

from collections.abc import Iterable

from structlog import get_logger

from quota_proxy.config.quota import QuotaSettings
from quota_proxy.core.async_utils import Clock, utc_now
from quota_proxy.db.models import SharedPoolQuota
from quota_proxy.db.repositories import QuotaRepository
from quota_proxy.exceptions import InsufficientQuotaError, ValidationError


logger = get_logger(__name__)


class QuotaLedger:
    """Numeric model of quota consumption and recovery."""

    def __init__(
        self,
        settings: QuotaSettings | None = None,
        repository: QuotaRepository | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.settings = settings or QuotaSettings()
        self.repository = repository or QuotaRepository()
        self._clock = clock

    async def initialize_or_update(
        self, key: str, model_names: Iterable[str], is_shared: bool
    ) -> int:
        """Make sure a quota row exists for every model.

        Args:
            key: Account id for dedicated rows, owner user id for shared pools
            model_names: Models exposed by the account
            is_shared: Recompute the owner's pools instead of seeding account rows

        Returns:
            Number of rows created
        """
        models = list(dict.fromkeys(model_names))
        if not models:
            return 0

        now = self._clock()
        if not is_shared:
            created = await self.repository.ensure_dedicated(
                key, models, self.settings.dedicated_allotment, now
            )
            logger.info(
                "dedicated_quotas_initialized",
                account_id=key,
                models=len(models),
                created=created,
            )
            return created

        created = 0
        for model_name in models:
            if await self._recompute_shared(key, model_name):
                created += 1
        logger.info(
            "shared_pool_ceilings_updated",
            owner_user_id=key,
            models=len(models),
            created=created,
        )
        return created

    async def retire_dedicated(
        self, account_id: str, model_names: Iterable[str]
    ) -> list[str]:
        """Disable the account's rows for models missing from ``model_names``.

        A disabled row no longer makes the account count toward that
        model's shared pool; linking the model again re-enables it.

        Returns:
            The models that were disabled
        """
        disabled = await self.repository.disable_dedicated_except(
            account_id, list(dict.fromkeys(model_names)), self._clock()
        )
        if disabled:
            logger.info(
                "dedicated_quotas_disabled", account_id=account_id, models=disabled
            )
        return disabled

    async def refresh_shared_pools_for_owner(
        self, owner_user_id: str, model_names: Iterable[str] | None = None
    ) -> None:
        """Recompute pool ceilings after an owner's shared accounts changed.

        With no ``model_names`` every existing pool of the owner is recomputed.
        """
        if model_names is None:
            pools = await self.repository.list_shared(owner_user_id)
            model_names = [pool.model_name for pool in pools]
        for model_name in dict.fromkeys(model_names):
            await self._recompute_shared(owner_user_id, model_name)

    async def _recompute_shared(self, owner_user_id: str, model_name: str) -> bool:
        count = await self.repository.count_valid_shared_accounts(
            owner_user_id, model_name
        )
        max_balance = self.settings.capacity_per_account * count
        created = await self.repository.set_shared_ceiling(
            owner_user_id, model_name, max_balance, self._clock()
        )
        logger.debug(
            "shared_pool_ceiling_recomputed",
            owner_user_id=owner_user_id,
            model=model_name,
            contributing_accounts=count,
            max_balance=max_balance,
        )
        return created

    async def consume(
        self, key: str, model: str, amount: float, *, shared: bool = False
    ) -> float:
        """Atomically debit ``amount`` from a quota row.

        Returns:
            Remaining balance

        Raises:
            ValidationError: If amount is not positive
            InsufficientQuotaError: If the row holds less than ``amount``;
                nothing is debited
        """
        if amount <= 0:
            raise ValidationError(
                "Consumption amount must be positive", details={"amount": amount}
            )

        now = self._clock()
        if shared:
            debited, balance = await self.repository.decrement_shared(
                key, model, amount, now
            )
        else:
            debited, balance = await self.repository.decrement_dedicated(
                key, model, amount, now
            )

        if not debited:
            logger.info(
                "quota_insufficient",
                key=key,
                model=model,
                shared=shared,
                requested=amount,
                available=balance,
            )
            raise InsufficientQuotaError(key, model, amount, balance)

        return balance

    async def recover_all(self) -> int:
        """Restore ``recovery_fraction`` of capacity to every shared pool.

        Balances are clamped to ``max_balance``; dedicated rows are untouched.

        Returns:
            Number of pool rows updated
        """
        count = await self.repository.recover_shared(
            self.settings.recovery_fraction, self._clock()
        )
        logger.info(
            "shared_pools_recovered",
            rows=count,
            fraction=self.settings.recovery_fraction,
        )
        return count

    async def get_balance(self, key: str, model: str, *, shared: bool = False) -> float:
        """Current balance of a row, 0.0 when the row does not exist."""
        if shared:
            pool = await self.repository.get_shared(key, model)
            return pool.balance if pool else 0.0
        row = await self.repository.get_dedicated(key, model)
        return row.balance if row else 0.0

    async def list_shared_pools(self, owner_user_id: str) -> list[SharedPoolQuota]:
        return await self.repository.list_shared(owner_user_id)
