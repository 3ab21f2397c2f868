"""Token lifecycle: on-demand refresh and proactive background refresh.

Refreshes are serialized per account, so two concurrent callers never redeem
the same refresh token twice. A refresh token the provider reports as
invalid moves the account to ``auth_error``, which removes its contribution
from the owner's shared pools.
"""

from datetime import timedelta
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from structlog import get_logger
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from quota_proxy.auth.constants import DEFAULT_TOKEN_EXPIRY_SECONDS
from quota_proxy.auth.linking import AccountLinker
from quota_proxy.auth.models import TokenResponse
from quota_proxy.auth.oauth.clients import CodeFlowClient, DeviceFlowClient
from quota_proxy.core.async_utils import Clock, KeyedLock, utc_now
from quota_proxy.db.models import Account, AccountStatus, Provider
from quota_proxy.db.repositories import AccountRepository
from quota_proxy.exceptions import ProviderError, RefreshFailedError, StorageError


logger = get_logger(__name__)

# Refresh settings
REFRESH_CHECK_INTERVAL_SECONDS = 60  # Check every minute
REFRESH_BUFFER_SECONDS = 600  # Refresh 10 minutes before expiry
MAX_REFRESH_RETRIES = 3


def _is_transient(exc: BaseException) -> bool:
    """Provider unreachable: worth retrying, unlike a rejected grant."""
    return isinstance(exc, ProviderError) and exc.provider_status is None


class TokenRefresher:
    """Redeems refresh tokens and persists the rotated credentials."""

    def __init__(
        self,
        code_client: CodeFlowClient,
        device_client: DeviceFlowClient,
        accounts: AccountRepository | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.code_client = code_client
        self.device_client = device_client
        self.accounts = accounts or AccountRepository()
        self._clock = clock
        self._locks = KeyedLock()

    async def refresh(self, account: Account) -> Account:
        """Refresh ``account``'s access token and persist the result.

        If another caller rotated the token while this one waited for the
        account's lock, the stored credential is returned as is.

        Raises:
            RefreshFailedError: The provider rejected the refresh or was
                unreachable; the stored credential is left unchanged
            StorageError: The account no longer exists
        """
        async with self._locks.acquire(account.account_id):
            current = await self.accounts.get(account.account_id)
            if current is None:
                raise StorageError(f"Account {account.account_id} not found")

            now = self._clock()
            if current.access_token != account.access_token and not current.needs_refresh(
                0, now
            ):
                logger.debug(
                    "token_refresh_skipped_already_rotated",
                    account_id=account.account_id,
                )
                return current

            token = await self._request_refresh(current)
            expires_in = token.expires_in or DEFAULT_TOKEN_EXPIRY_SECONDS
            updated = await self.accounts.update_tokens(
                current.account_id,
                token.access_token,
                # Providers that don't rotate refresh tokens omit it
                token.refresh_token or current.refresh_token,
                now + timedelta(seconds=expires_in),
            )
            if updated is None:
                raise StorageError(f"Account {account.account_id} not found")

        logger.info(
            "token_refresh_success",
            account_id=updated.account_id,
            provider=updated.provider,
            new_expires_in=updated.expires_in_seconds(now),
            rotated=updated.refresh_token != current.refresh_token,
        )
        return updated

    async def ensure_fresh(
        self, account: Account, buffer_seconds: int = REFRESH_BUFFER_SECONDS
    ) -> Account:
        """Return ``account`` unchanged unless it expires within the buffer."""
        if account.needs_refresh(buffer_seconds, self._clock()):
            return await self.refresh(account)
        return account

    async def _request_refresh(self, account: Account) -> TokenResponse:
        if account.provider == Provider.AWS:
            if not account.client_id or not account.client_secret:
                raise RefreshFailedError(
                    "Device-flow account has no registered client",
                    provider_status=400,
                    provider_body="invalid_grant: missing client registration",
                )
            return await self.device_client.refresh(
                account.client_id, account.client_secret, account.refresh_token
            )
        return await self.code_client.refresh(account.refresh_token)


class TokenRefreshScheduler:
    """Background scheduler for proactive token refresh.

    Features:
    - Checks active accounts on a fixed interval
    - Refreshes tokens expiring within the buffer
    - Retries with exponential backoff while the provider is unreachable
    - Marks accounts as auth_error if the refresh token is invalid
    """

    def __init__(
        self,
        refresher: TokenRefresher,
        linker: AccountLinker,
        check_interval: int = REFRESH_CHECK_INTERVAL_SECONDS,
        refresh_buffer: int = REFRESH_BUFFER_SECONDS,
        max_retries: int = MAX_REFRESH_RETRIES,
        retry_wait: wait_base | None = None,
    ) -> None:
        """Initialize token refresh scheduler.

        Args:
            refresher: Performs the individual refreshes
            linker: Applies status changes and rebalances shared pools
            check_interval: Seconds between refresh checks
            refresh_buffer: Refresh when expiring within this many seconds
            max_retries: Attempts per account while the provider is unreachable
            retry_wait: Wait strategy between attempts
        """
        self.refresher = refresher
        self.linker = linker
        self.check_interval = check_interval
        self.refresh_buffer = refresh_buffer
        self.max_retries = max_retries
        self.retry_wait = retry_wait or wait_exponential(multiplier=1, min=5, max=60)
        self._scheduler: AsyncIOScheduler | None = None

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    async def start(self) -> None:
        """Start the refresh scheduler and schedule an immediate first check."""
        if self._scheduler is not None:
            logger.warning("refresh_scheduler_already_running")
            return

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self.check_and_refresh_all,
            "interval",
            seconds=self.check_interval,
            id="token_refresh_check",
            name="Token Refresh Check",
            max_instances=1,
            coalesce=True,
            next_run_time=utc_now(),
        )
        self._scheduler.start()

        logger.info(
            "token_refresh_scheduler_started",
            check_interval=self.check_interval,
            refresh_buffer=self.refresh_buffer,
        )

    async def stop(self) -> None:
        """Stop the refresh scheduler."""
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("token_refresh_scheduler_stopped")

    async def check_and_refresh_all(self) -> int:
        """Refresh every active account expiring within the buffer.

        Returns:
            Number of accounts refreshed
        """
        before = utc_now() + timedelta(seconds=self.refresh_buffer)
        accounts = await self.refresher.accounts.list_expiring(before)
        refreshed = 0
        for account in accounts:
            logger.info(
                "token_refresh_needed",
                account_id=account.account_id,
                expires_in=account.expires_in_seconds(),
            )
            if await self.refresh_with_retry(account):
                refreshed += 1
        return refreshed

    async def refresh_with_retry(self, account: Account) -> bool:
        """Refresh one account, retrying while the provider is unreachable.

        Returns:
            True if refresh succeeded
        """

        def before_sleep_log(retry_state: Any) -> None:
            logger.warning(
                "token_refresh_retry",
                account_id=account.account_id,
                attempt=retry_state.attempt_number,
                max_attempts=self.max_retries,
                wait_seconds=retry_state.next_action.sleep
                if retry_state.next_action
                else 0,
                error=str(retry_state.outcome.exception())
                if retry_state.outcome
                else None,
            )

        try:
            async for attempt in AsyncRetrying(
                wait=self.retry_wait,
                stop=stop_after_attempt(self.max_retries),
                retry=retry_if_exception(_is_transient),
                before_sleep=before_sleep_log,
                reraise=True,
            ):
                with attempt:
                    await self.refresher.refresh(account)
            return True

        except RefreshFailedError as e:
            if e.is_invalid_grant:
                logger.error(
                    "refresh_token_expired",
                    account_id=account.account_id,
                    error=str(e),
                )
                await self.linker.set_status(
                    account.account_id,
                    AccountStatus.AUTH_ERROR,
                    "Refresh token expired. Please re-authenticate.",
                )
                return False

            # Transient or unexpected failures leave the account untouched;
            # its access token may still be valid for a while
            logger.error(
                "token_refresh_failed",
                account_id=account.account_id,
                provider_status=e.provider_status,
                error=str(e),
            )
            return False

        except (RetryError, StorageError) as e:
            logger.error(
                "token_refresh_failed",
                account_id=account.account_id,
                attempts=self.max_retries,
                error=str(e),
            )
            return False
