"""Tests for QuotaLedger."""

import asyncio

import pytest

from quota_proxy.auth.linking import AccountLinker
from quota_proxy.config.quota import QuotaSettings
from quota_proxy.db import AccountStatus
from quota_proxy.exceptions import InsufficientQuotaError, ValidationError
from quota_proxy.quota import QuotaLedger


MODEL = "gemini-2.5-pro"


@pytest.fixture
def ledger(db):
    return QuotaLedger(
        QuotaSettings(
            capacity_per_account=2.0,
            dedicated_allotment=1.0,
            recovery_fraction=0.25,
        )
    )


@pytest.fixture
def linker(ledger):
    return AccountLinker(ledger)


async def link_shared(linker, make_account, account_id, models=(MODEL,)):
    return await linker.link(make_account(account_id, is_shared=True), models)


class TestDedicatedQuota:
    @pytest.mark.asyncio
    async def test_initialize_seeds_allotment(self, ledger, linker, make_account):
        await linker.link(make_account("acct-1"), [MODEL, "claude-sonnet-4-5"])

        assert await ledger.get_balance("acct-1", MODEL) == 1.0
        assert await ledger.get_balance("acct-1", "claude-sonnet-4-5") == 1.0

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, ledger, linker, make_account):
        await linker.link(make_account("acct-1"), [MODEL])
        await ledger.consume("acct-1", MODEL, 0.5)

        created = await ledger.initialize_or_update("acct-1", [MODEL], is_shared=False)

        assert created == 0
        assert await ledger.get_balance("acct-1", MODEL) == 0.5

    @pytest.mark.asyncio
    async def test_consume_dedicated(self, ledger, linker, make_account):
        await linker.link(make_account("acct-1"), [MODEL])

        remaining = await ledger.consume("acct-1", MODEL, 0.25)

        assert remaining == 0.75

    @pytest.mark.asyncio
    async def test_consume_more_than_balance_changes_nothing(
        self, ledger, linker, make_account
    ):
        await linker.link(make_account("acct-1"), [MODEL])

        with pytest.raises(InsufficientQuotaError) as exc_info:
            await ledger.consume("acct-1", MODEL, 1.5)

        assert exc_info.value.available == 1.0
        assert exc_info.value.status_code == 429
        assert await ledger.get_balance("acct-1", MODEL) == 1.0

    @pytest.mark.asyncio
    async def test_consume_unknown_row(self, ledger):
        with pytest.raises(InsufficientQuotaError) as exc_info:
            await ledger.consume("nobody", MODEL, 0.5)
        assert exc_info.value.available == 0.0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, -1.0])
    async def test_consume_rejects_non_positive_amount(self, ledger, amount):
        with pytest.raises(ValidationError):
            await ledger.consume("acct-1", MODEL, amount)


class TestSharedPools:
    @pytest.mark.asyncio
    async def test_ceiling_is_capacity_times_accounts(
        self, ledger, linker, make_account
    ):
        for account_id in ("a", "b", "c"):
            await link_shared(linker, make_account, account_id)

        pool = (await ledger.list_shared_pools("user-1"))[0]
        assert pool.model_name == MODEL
        assert pool.max_balance == 6.0
        # Only a new pool starts full; added capacity arrives through recovery
        assert pool.balance == 2.0

    @pytest.mark.asyncio
    async def test_dedicated_accounts_do_not_feed_pools(
        self, ledger, linker, make_account
    ):
        await link_shared(linker, make_account, "a")
        await linker.link(make_account("b", is_shared=False), [MODEL])

        pool = await ledger.repository.get_shared("user-1", MODEL)
        assert pool.max_balance == 2.0

    @pytest.mark.asyncio
    async def test_adding_account_raises_ceiling_keeps_balance(
        self, ledger, linker, make_account
    ):
        await link_shared(linker, make_account, "a")
        await link_shared(linker, make_account, "b")
        await ledger.consume("user-1", MODEL, 1.5, shared=True)

        await link_shared(linker, make_account, "c")

        pool = await ledger.repository.get_shared("user-1", MODEL)
        assert pool.max_balance == 6.0
        assert pool.balance == 0.5

    @pytest.mark.asyncio
    async def test_relinking_does_not_double_count(self, ledger, linker, make_account):
        await link_shared(linker, make_account, "a")
        await link_shared(linker, make_account, "a")

        pool = await ledger.repository.get_shared("user-1", MODEL)
        assert pool.max_balance == 2.0

    @pytest.mark.asyncio
    async def test_deactivated_account_lowers_ceiling_and_clamps(
        self, ledger, linker, make_account
    ):
        await link_shared(linker, make_account, "a")
        await link_shared(linker, make_account, "b")
        await ledger.recover_all()
        await ledger.recover_all()
        assert await ledger.get_balance("user-1", MODEL, shared=True) == 4.0

        await linker.set_status("b", AccountStatus.DISABLED)

        pool = await ledger.repository.get_shared("user-1", MODEL)
        assert pool.max_balance == 2.0
        assert pool.balance == 2.0

    @pytest.mark.asyncio
    async def test_concurrent_consumption_never_overspends(
        self, ledger, linker, make_account
    ):
        await link_shared(linker, make_account, "a")

        results = await asyncio.gather(
            *(ledger.consume("user-1", MODEL, 0.5, shared=True) for _ in range(10)),
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, InsufficientQuotaError)]
        assert len(successes) == 4
        assert len(failures) == 6
        assert await ledger.get_balance("user-1", MODEL, shared=True) == 0.0


class TestRecovery:
    @pytest.mark.asyncio
    async def test_recovery_adds_fraction_and_clamps(
        self, ledger, linker, make_account
    ):
        await link_shared(linker, make_account, "a")
        await link_shared(linker, make_account, "b")
        await ledger.consume("user-1", MODEL, 1.5, shared=True)

        assert await ledger.recover_all() == 1
        assert await ledger.get_balance("user-1", MODEL, shared=True) == 1.5

        assert await ledger.recover_all() == 1
        assert await ledger.recover_all() == 1
        assert await ledger.get_balance("user-1", MODEL, shared=True) == 3.5

        assert await ledger.recover_all() == 1
        assert await ledger.get_balance("user-1", MODEL, shared=True) == 4.0

    @pytest.mark.asyncio
    async def test_recovery_is_idempotent_at_cap(self, ledger, linker, make_account):
        await link_shared(linker, make_account, "a")

        assert await ledger.recover_all() == 0
        assert await ledger.recover_all() == 0
        assert await ledger.get_balance("user-1", MODEL, shared=True) == 2.0

    @pytest.mark.asyncio
    async def test_recovery_leaves_dedicated_rows_alone(
        self, ledger, linker, make_account
    ):
        await link_shared(linker, make_account, "a")
        await ledger.consume("a", MODEL, 0.5)
        await ledger.consume("user-1", MODEL, 1.0, shared=True)

        await ledger.recover_all()

        assert await ledger.get_balance("a", MODEL) == 0.5
        assert await ledger.get_balance("user-1", MODEL, shared=True) == 1.5
