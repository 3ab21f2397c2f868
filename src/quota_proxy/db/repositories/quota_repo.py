"""Quota repository for database operations.

Every balance mutation is a single conditional UPDATE evaluated against the
stored value, so concurrent consumers and the recovery job never overwrite
each other.
"""

from datetime import datetime

from sqlalchemy import case, func, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlmodel import select

from quota_proxy.db.engine import get_session
from quota_proxy.db.models import Account, AccountStatus, ModelQuota, SharedPoolQuota


class QuotaRepository:
    """Repository for dedicated and shared quota rows."""

    # ------------------------------------------------------------------
    # Dedicated rows
    # ------------------------------------------------------------------

    async def ensure_dedicated(
        self,
        account_id: str,
        model_names: list[str],
        allotment: float,
        now: datetime,
    ) -> int:
        """Insert missing rows with ``allotment`` and re-enable existing ones.

        Returns the number of rows created.
        """
        created = 0
        async with get_session() as session:
            for model_name in model_names:
                result = await session.execute(
                    sqlite_insert(ModelQuota)
                    .values(
                        account_id=account_id,
                        model_name=model_name,
                        balance=allotment,
                        enabled=True,
                        updated_at=now,
                    )
                    .on_conflict_do_nothing(index_elements=["account_id", "model_name"])
                )
                if result.rowcount == 1:
                    created += 1
                else:
                    await session.execute(
                        update(ModelQuota)
                        .where(
                            ModelQuota.account_id == account_id,
                            ModelQuota.model_name == model_name,
                        )
                        .values(enabled=True, updated_at=now)
                        .execution_options(synchronize_session=False)
                    )
            await session.commit()
        return created

    async def disable_dedicated_except(
        self, account_id: str, model_names: list[str], now: datetime
    ) -> list[str]:
        """Disable the account's enabled rows for models it no longer exposes.

        Returns the disabled model names.
        """
        stale = (
            ModelQuota.account_id == account_id,
            ModelQuota.enabled == True,  # noqa: E712
            ModelQuota.model_name.not_in(model_names),
        )
        async with get_session() as session:
            # Write first so the lock is held before the names are read
            await session.execute(
                update(ModelQuota)
                .where(*stale)
                .values(updated_at=now)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(select(ModelQuota.model_name).where(*stale))
            disabled = list(result.scalars().all())
            if disabled:
                await session.execute(
                    update(ModelQuota)
                    .where(*stale)
                    .values(enabled=False)
                    .execution_options(synchronize_session=False)
                )
            await session.commit()
            return disabled

    async def get_dedicated(self, account_id: str, model_name: str) -> ModelQuota | None:
        async with get_session() as session:
            result = await session.execute(
                select(ModelQuota).where(
                    ModelQuota.account_id == account_id,
                    ModelQuota.model_name == model_name,
                )
            )
            return result.scalar_one_or_none()

    async def list_dedicated(self, account_id: str) -> list[ModelQuota]:
        async with get_session() as session:
            result = await session.execute(
                select(ModelQuota).where(ModelQuota.account_id == account_id)
            )
            return list(result.scalars().all())

    async def decrement_dedicated(
        self, account_id: str, model_name: str, amount: float, now: datetime
    ) -> tuple[bool, float]:
        """Debit ``amount`` only if the row holds at least that much.

        Returns (debited, balance after the attempt).
        """
        async with get_session() as session:
            result = await session.execute(
                update(ModelQuota)
                .where(
                    ModelQuota.account_id == account_id,
                    ModelQuota.model_name == model_name,
                    ModelQuota.enabled == True,  # noqa: E712
                    ModelQuota.balance >= amount,
                )
                .values(balance=ModelQuota.balance - amount, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            balance = (
                await session.execute(
                    select(ModelQuota.balance).where(
                        ModelQuota.account_id == account_id,
                        ModelQuota.model_name == model_name,
                    )
                )
            ).scalar_one_or_none()
            await session.commit()
            return result.rowcount == 1, balance or 0.0

    # ------------------------------------------------------------------
    # Shared pools
    # ------------------------------------------------------------------

    async def count_valid_shared_accounts(
        self, owner_user_id: str, model_name: str
    ) -> int:
        """Shared, active accounts of ``owner_user_id`` that still expose ``model_name``."""
        async with get_session() as session:
            result = await session.execute(
                select(func.count(func.distinct(Account.account_id)))
                .select_from(Account)
                .join(ModelQuota, ModelQuota.account_id == Account.account_id)
                .where(
                    Account.owner_user_id == owner_user_id,
                    Account.is_shared == True,  # noqa: E712
                    Account.status == AccountStatus.ACTIVE,
                    ModelQuota.model_name == model_name,
                    ModelQuota.enabled == True,  # noqa: E712
                )
            )
            return int(result.scalar_one())

    async def set_shared_ceiling(
        self,
        owner_user_id: str,
        model_name: str,
        max_balance: float,
        now: datetime,
    ) -> bool:
        """Apply a recomputed ceiling to a pool row.

        A new row starts full. An existing row keeps its balance, clamped to
        the new ceiling. Returns True if the row was created.
        """
        async with get_session() as session:
            result = await session.execute(
                sqlite_insert(SharedPoolQuota)
                .values(
                    owner_user_id=owner_user_id,
                    model_name=model_name,
                    balance=max_balance,
                    max_balance=max_balance,
                    updated_at=now,
                )
                .on_conflict_do_nothing(index_elements=["owner_user_id", "model_name"])
            )
            created = result.rowcount == 1
            if not created:
                await session.execute(
                    update(SharedPoolQuota)
                    .where(
                        SharedPoolQuota.owner_user_id == owner_user_id,
                        SharedPoolQuota.model_name == model_name,
                    )
                    .values(
                        max_balance=max_balance,
                        balance=case(
                            (SharedPoolQuota.balance > max_balance, max_balance),
                            else_=SharedPoolQuota.balance,
                        ),
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
            await session.commit()
            return created

    async def get_shared(
        self, owner_user_id: str, model_name: str
    ) -> SharedPoolQuota | None:
        async with get_session() as session:
            result = await session.execute(
                select(SharedPoolQuota).where(
                    SharedPoolQuota.owner_user_id == owner_user_id,
                    SharedPoolQuota.model_name == model_name,
                )
            )
            return result.scalar_one_or_none()

    async def list_shared(self, owner_user_id: str) -> list[SharedPoolQuota]:
        async with get_session() as session:
            result = await session.execute(
                select(SharedPoolQuota)
                .where(SharedPoolQuota.owner_user_id == owner_user_id)
                .order_by(SharedPoolQuota.model_name)
            )
            return list(result.scalars().all())

    async def decrement_shared(
        self, owner_user_id: str, model_name: str, amount: float, now: datetime
    ) -> tuple[bool, float]:
        """Debit a pool only if it holds at least ``amount``.

        Returns (debited, balance after the attempt).
        """
        async with get_session() as session:
            result = await session.execute(
                update(SharedPoolQuota)
                .where(
                    SharedPoolQuota.owner_user_id == owner_user_id,
                    SharedPoolQuota.model_name == model_name,
                    SharedPoolQuota.balance >= amount,
                )
                .values(balance=SharedPoolQuota.balance - amount, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            balance = (
                await session.execute(
                    select(SharedPoolQuota.balance).where(
                        SharedPoolQuota.owner_user_id == owner_user_id,
                        SharedPoolQuota.model_name == model_name,
                    )
                )
            ).scalar_one_or_none()
            await session.commit()
            return result.rowcount == 1, balance or 0.0

    async def recover_shared(self, fraction: float, now: datetime) -> int:
        """Add ``max_balance * fraction`` to every pool below its ceiling, clamped.

        Returns the number of rows updated.
        """
        recovered = SharedPoolQuota.balance + SharedPoolQuota.max_balance * fraction
        async with get_session() as session:
            result = await session.execute(
                update(SharedPoolQuota)
                .where(SharedPoolQuota.balance < SharedPoolQuota.max_balance)
                .values(
                    balance=case(
                        (recovered > SharedPoolQuota.max_balance, SharedPoolQuota.max_balance),
                        else_=recovered,
                    ),
                    last_recovered_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return int(result.rowcount)
