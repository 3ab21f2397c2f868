"""Shared pool recovery: in-process scheduler and one-shot trigger."""

from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy.exc import SQLAlchemyError
from structlog import get_logger

from quota_proxy.config.settings import Settings
from quota_proxy.db import close_db, init_db
from quota_proxy.quota.ledger import QuotaLedger


logger = get_logger(__name__)


async def run_quota_recovery(settings: Settings) -> int:
    """Run one recovery pass for an external scheduler (cron).

    Opens the database, recovers every shared pool and always closes the
    engine afterwards. Errors propagate so the caller can exit non-zero.

    Returns:
        Number of pool rows updated
    """
    logger.info("quota_recovery_started")
    try:
        await init_db(settings.database.path, echo=settings.database.echo)
        ledger = QuotaLedger(settings.quota)
        count = await ledger.recover_all()
        logger.info("quota_recovery_completed", rows=count)
        return count
    except Exception as e:
        logger.error("quota_recovery_failed", error=str(e), error_type=type(e).__name__)
        raise
    finally:
        await close_db()


class QuotaRecoveryScheduler:
    """Background job that replenishes shared pools on a fixed cadence."""

    def __init__(self, ledger: QuotaLedger, interval_seconds: int | None = None):
        """Initialize recovery scheduler.

        Args:
            ledger: Ledger whose shared pools are recovered
            interval_seconds: Seconds between runs, defaults to the ledger policy
        """
        self.ledger = ledger
        self.interval_seconds = (
            interval_seconds or ledger.settings.recovery_interval_seconds
        )
        self._scheduler: Any = None  # AsyncIOScheduler from apscheduler
        self._running = False
        self.last_count: int | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the recovery scheduler."""
        if self._running:
            logger.warning("quota_recovery_scheduler_already_running")
            return

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self.run_once,
            "interval",
            seconds=self.interval_seconds,
            id="quota_recovery",
            name="Shared Pool Recovery",
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        self._running = True

        logger.info(
            "quota_recovery_scheduler_started",
            interval_seconds=self.interval_seconds,
        )

    async def stop(self) -> None:
        """Stop the recovery scheduler."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

        self._running = False
        logger.info("quota_recovery_scheduler_stopped")

    async def run_once(self) -> int | None:
        """Run one recovery pass; failures are logged and retried next interval."""
        try:
            self.last_count = await self.ledger.recover_all()
        except SQLAlchemyError as e:
            logger.error(
                "quota_recovery_job_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            return None
        return self.last_count
