"""OAuth device-code flow against the OIDC provider.

``begin`` registers a client and obtains a device code; the user approves
it on another device. ``poll_once`` performs a single token request and is
what a front-end calls on demand; ``poll`` loops over it until the flow
completes, fails or reaches its deadline. ``link`` persists the resulting
credential.
"""

import asyncio
import math
from collections.abc import Awaitable, Callable
from datetime import timedelta

from pydantic import ValidationError as PydanticValidationError
from structlog import get_logger

from quota_proxy.auth.constants import DEFAULT_TOKEN_EXPIRY_SECONDS, SLOW_DOWN_FACTOR
from quota_proxy.auth.linking import AccountLinker
from quota_proxy.auth.models import (
    DeviceAuthResponse,
    DeviceFlowState,
    DeviceFlowStatus,
    DevicePollResult,
    TokenResponse,
)
from quota_proxy.auth.oauth.clients import DeviceFlowClient
from quota_proxy.auth.pkce import (
    derive_account_id,
    extract_email,
    generate_machine_id,
    generate_state,
)
from quota_proxy.auth.store import DEVICE_FLOW_KEY_PREFIX, FlowStateStore
from quota_proxy.config.oauth import DeviceFlowSettings
from quota_proxy.core.async_utils import Clock, as_utc, utc_now
from quota_proxy.db.models import Account, AccountStatus, AuthMethod, Provider
from quota_proxy.exceptions import (
    AuthorizationTimeoutError,
    DeviceAuthorizationError,
    InvalidStateError,
    ValidationError,
)


logger = get_logger(__name__)

AUTHORIZATION_PENDING = "authorization_pending"
SLOW_DOWN = "slow_down"

Sleep = Callable[[float], Awaitable[None]]


class DeviceCodeFlow:
    """Begin, poll and link device-code flows."""

    def __init__(
        self,
        store: FlowStateStore,
        client: DeviceFlowClient,
        linker: AccountLinker,
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self.client = client
        self.linker = linker
        self._clock = clock

    @property
    def settings(self) -> DeviceFlowSettings:
        return self.client.config

    @staticmethod
    def _key(state: str) -> str:
        return f"{DEVICE_FLOW_KEY_PREFIX}{state}"

    async def _save(self, flow: DeviceFlowState) -> None:
        """Write ``flow`` back with whatever is left of its lifetime."""
        ttl = math.ceil((as_utc(flow.expires_at) - self._clock()).total_seconds())
        await self.store.set(self._key(flow.state), flow.model_dump(mode="json"), ttl)

    async def begin(
        self,
        user_id: str,
        is_shared: bool = False,
        bearer_token: str | None = None,
    ) -> DeviceAuthResponse:
        """Register a client, request a device code and store the pending flow.

        Args:
            user_id: Owner of the account being linked
            is_shared: Whether the account contributes to the owner's pools
            bearer_token: Caller credential kept with the flow for later lookup

        Raises:
            DeviceAuthorizationError: Registration or device authorization rejected
        """
        if not user_id:
            raise ValidationError("user_id is required")

        state = generate_state()
        machine_id = generate_machine_id()
        log = logger.bind(state_prefix=state[:8], owner_user_id=user_id)
        log.debug("device_flow_transition", status=DeviceFlowStatus.INIT)

        registration = await self.client.register_client(
            f"{self.settings.client_name_prefix}-{machine_id[:8]}"
        )
        log.debug("device_flow_transition", status=DeviceFlowStatus.REGISTERED)

        authorization = await self.client.start_device_authorization(
            registration.client_id, registration.client_secret
        )

        now = self._clock()
        # The configured interval is a floor: providers may declare a shorter one
        interval = max(authorization.interval or 0, self.settings.poll_interval_seconds)
        flow = DeviceFlowState(
            state=state,
            owner_user_id=user_id,
            is_shared=is_shared,
            client_id=registration.client_id,
            client_secret=registration.client_secret,
            device_code=authorization.device_code,
            machine_id=machine_id,
            interval=interval,
            status=DeviceFlowStatus.AUTHORIZING,
            bearer_token=bearer_token,
            created_at=now,
            expires_at=now + timedelta(seconds=authorization.expires_in),
        )
        await self.store.set(
            self._key(state), flow.model_dump(mode="json"), authorization.expires_in
        )
        log.info(
            "device_flow_started",
            status=flow.status,
            expires_in=authorization.expires_in,
            interval=interval,
        )

        return DeviceAuthResponse(
            auth_url=authorization.verification_uri_complete
            or authorization.verification_uri,
            verification_uri=authorization.verification_uri,
            user_code=authorization.user_code,
            state=state,
            expires_in=authorization.expires_in,
            interval=interval,
        )

    async def lookup(self, state: str) -> DeviceFlowState | None:
        """Pending flow for ``state``, or None if unknown or expired."""
        data = await self.store.get(self._key(state))
        if data is None:
            return None
        try:
            flow = DeviceFlowState.model_validate(data)
        except PydanticValidationError as e:
            logger.warning("device_flow_state_invalid", error=str(e))
            return None
        if flow.is_expired(self._clock()):
            return None
        return flow

    async def _load_pollable(self, state: str) -> DeviceFlowState:
        flow = await self.lookup(state)
        if flow is None:
            raise InvalidStateError()
        if flow.status == DeviceFlowStatus.COMPLETED:
            raise InvalidStateError("Device flow already completed")
        return flow

    async def _discard(self, flow: DeviceFlowState, status: DeviceFlowStatus) -> None:
        await self.store.delete(self._key(flow.state))
        logger.info(
            "device_flow_ended",
            state_prefix=flow.state[:8],
            owner_user_id=flow.owner_user_id,
            status=status,
        )

    async def poll_once(self, state: str) -> DevicePollResult:
        """Make one token request for a pending flow.

        Returns:
            The new status and the interval to wait before the next poll;
            ``account`` is set (unsaved) once the user has approved

        Raises:
            InvalidStateError: Unknown, expired or already completed state
            DeviceAuthorizationError: Terminal provider error; the flow is deleted
        """
        flow = await self._load_pollable(state)

        try:
            result = await self.client.create_token(
                flow.client_id, flow.client_secret, flow.device_code
            )
        except DeviceAuthorizationError:
            await self._discard(flow, DeviceFlowStatus.FAILED)
            raise

        if result.token is not None:
            if not result.token.refresh_token:
                await self._discard(flow, DeviceFlowStatus.FAILED)
                raise DeviceAuthorizationError(
                    "Device token response has no refresh token", provider_status=200
                )
            account = self._build_account(flow, result.token, result.token.refresh_token)
            flow.status = DeviceFlowStatus.COMPLETED
            await self._save(flow)
            logger.info(
                "device_flow_authorized",
                state_prefix=state[:8],
                account_id=account.account_id,
            )
            return DevicePollResult(
                status=flow.status, interval=flow.interval, account=account
            )

        if result.error == AUTHORIZATION_PENDING:
            flow.status = DeviceFlowStatus.PENDING
        elif result.error == SLOW_DOWN:
            flow.status = DeviceFlowStatus.THROTTLED
            flow.interval *= SLOW_DOWN_FACTOR
        else:
            await self._discard(flow, DeviceFlowStatus.FAILED)
            raise DeviceAuthorizationError(
                result.description or f"Device authorization failed: {result.error}",
                provider_status=400,
                provider_body=result.error,
            )

        await self._save(flow)
        logger.debug(
            "device_flow_poll",
            state_prefix=state[:8],
            status=flow.status,
            interval=flow.interval,
        )
        return DevicePollResult(status=flow.status, interval=flow.interval)

    async def poll(self, state: str, *, sleep: Sleep = asyncio.sleep) -> Account:
        """Poll until the user approves, the provider fails or the deadline passes.

        Cancelling the task stops polling without writing anything; the
        stored flow is left to expire.

        Raises:
            AuthorizationTimeoutError: Deadline reached; the flow is deleted
            DeviceAuthorizationError: Terminal provider error
            InvalidStateError: Unknown, expired or already completed state
        """
        flow = await self._load_pollable(state)
        deadline = as_utc(flow.expires_at)

        while True:
            if self._clock() >= deadline:
                await self._discard(flow, DeviceFlowStatus.EXPIRED)
                raise AuthorizationTimeoutError()

            result = await self.poll_once(state)
            if result.account is not None:
                return result.account
            await sleep(result.interval)

    async def link(self, state: str, credential: Account) -> Account:
        """Persist the credential of a completed flow and seed its quota.

        The device-flow provider offers no model listing to check against,
        so the account is entitled to exactly the configured
        ``device_flow.models``. Whoever completed the device authorization
        is trusted to hold a subscription covering them; a model the account
        cannot actually serve surfaces later as an upstream error on use.

        Raises:
            InvalidStateError: The flow is not completed, was already
                linked, or the credential belongs to a different flow
        """
        flow = await self.lookup(state)
        if flow is None or flow.status != DeviceFlowStatus.COMPLETED:
            raise InvalidStateError("Device flow is not completed")
        if credential.machine_id != flow.machine_id:
            raise InvalidStateError("Credential does not belong to this device flow")
        if not await self.store.delete(self._key(state)):
            raise InvalidStateError("Device flow was already linked")

        account = await self.linker.link(credential, self.settings.models)
        logger.info(
            "device_flow_linked",
            account_id=account.account_id,
            owner_user_id=account.owner_user_id,
        )
        return account

    def _build_account(
        self, flow: DeviceFlowState, token: TokenResponse, refresh_token: str
    ) -> Account:
        now = self._clock()
        expires_in = token.expires_in or DEFAULT_TOKEN_EXPIRY_SECONDS
        return Account(
            account_id=derive_account_id(refresh_token),
            owner_user_id=flow.owner_user_id,
            is_shared=flow.is_shared,
            provider=Provider.AWS,
            auth_method=AuthMethod.BUILDER_ID,
            access_token=token.access_token,
            refresh_token=refresh_token,
            token_expires_at=now + timedelta(seconds=expires_in),
            client_id=flow.client_id,
            client_secret=flow.client_secret,
            machine_id=flow.machine_id,
            email=extract_email(token.access_token),
            status=AccountStatus.ACTIVE,
            created_at=now,
            updated_at=now,
        )
