"""Wiring of the credential pool components and their lifecycle."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
from structlog import get_logger

from quota_proxy.auth.linking import AccountLinker
from quota_proxy.auth.oauth import (
    AuthorizationCodeFlow,
    CodeFlowClient,
    DeviceCodeFlow,
    DeviceFlowClient,
    UpstreamModelsClient,
)
from quota_proxy.auth.refresh import TokenRefresher, TokenRefreshScheduler
from quota_proxy.auth.store import FlowStateStore, SqlFlowStateStore
from quota_proxy.config.settings import Settings
from quota_proxy.db import close_db, init_db
from quota_proxy.quota import QuotaLedger, QuotaRecoveryScheduler


logger = get_logger(__name__)


class CredentialPool:
    """All components sharing one HTTP client, one store and one ledger."""

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient,
        store: FlowStateStore | None = None,
    ) -> None:
        self.settings = settings
        self.http_client = http_client
        self.store = store or SqlFlowStateStore()

        self.ledger = QuotaLedger(settings.quota)
        self.linker = AccountLinker(self.ledger)

        self.code_client = CodeFlowClient(settings.oauth, http_client)
        self.device_client = DeviceFlowClient(settings.device_flow, http_client)
        self.entitlement = UpstreamModelsClient(settings.upstream, http_client)

        self.code_flow = AuthorizationCodeFlow(
            self.store, self.code_client, self.entitlement, self.linker
        )
        self.device_flow = DeviceCodeFlow(self.store, self.device_client, self.linker)
        self.refresher = TokenRefresher(self.code_client, self.device_client)

        scheduler = settings.scheduler
        self.refresh_scheduler = TokenRefreshScheduler(
            self.refresher,
            self.linker,
            check_interval=scheduler.token_refresh_interval_seconds,
            refresh_buffer=scheduler.token_refresh_buffer_seconds,
            max_retries=scheduler.token_refresh_max_retries,
        )
        self.recovery_scheduler = QuotaRecoveryScheduler(self.ledger)

    async def start_background_jobs(self) -> None:
        scheduler = self.settings.scheduler
        if not scheduler.enabled:
            logger.info("background_jobs_disabled")
            return
        if scheduler.token_refresh_enabled:
            await self.refresh_scheduler.start()
        if scheduler.quota_recovery_enabled:
            await self.recovery_scheduler.start()

    async def stop_background_jobs(self) -> None:
        await self.refresh_scheduler.stop()
        await self.recovery_scheduler.stop()


@asynccontextmanager
async def open_credential_pool(
    settings: Settings,
    *,
    start_jobs: bool = False,
    http_client: httpx.AsyncClient | None = None,
    store: FlowStateStore | None = None,
) -> AsyncIterator[CredentialPool]:
    """Open the database, build the components and tear everything down on exit.

    Args:
        settings: Application settings
        start_jobs: Start the refresh and recovery schedulers
        http_client: Shared client; one is created and closed here if omitted
        store: Flow state store, the database-backed one by default
    """
    await init_db(settings.database.path, echo=settings.database.echo)
    owns_client = http_client is None
    client = http_client or httpx.AsyncClient(timeout=settings.oauth.request_timeout)
    pool = CredentialPool(settings, client, store)
    logger.debug("credential_pool_opened", database=str(settings.database.path))
    try:
        if start_jobs:
            await pool.start_background_jobs()
        yield pool
    finally:
        await pool.stop_background_jobs()
        if owns_client:
            await client.aclose()
        await close_db()
        logger.debug("credential_pool_closed")
