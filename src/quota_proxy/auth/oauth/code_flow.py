"""OAuth authorization-code flow with an entitlement check before linking."""

from datetime import timedelta

from pydantic import ValidationError as PydanticValidationError
from structlog import get_logger

from quota_proxy.auth.constants import DEFAULT_TOKEN_EXPIRY_SECONDS
from quota_proxy.auth.linking import AccountLinker
from quota_proxy.auth.models import AuthUrlResponse, CodeFlowState
from quota_proxy.auth.oauth.clients import CodeFlowClient
from quota_proxy.auth.oauth.entitlement import UpstreamModelsClient
from quota_proxy.auth.pkce import (
    derive_account_id,
    extract_email,
    generate_code_challenge,
    generate_code_verifier,
    generate_state,
)
from quota_proxy.auth.store import CODE_FLOW_KEY_PREFIX, FlowStateStore
from quota_proxy.core.async_utils import Clock, KeyedLock, utc_now
from quota_proxy.db.models import Account, AccountStatus, AuthMethod, Provider
from quota_proxy.exceptions import InvalidStateError, ProviderError, ValidationError


logger = get_logger(__name__)


class AuthorizationCodeFlow:
    """Begin, look up and complete authorization-code flows.

    A state is single use: completing it deletes it before the account is
    linked, and only the caller whose delete succeeds goes on to link. A
    state that is unknown, expired or already used is rejected.
    """

    def __init__(
        self,
        store: FlowStateStore,
        client: CodeFlowClient,
        entitlement: UpstreamModelsClient,
        linker: AccountLinker,
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self.client = client
        self.entitlement = entitlement
        self.linker = linker
        self._clock = clock
        self._locks = KeyedLock()

    @property
    def state_ttl_seconds(self) -> int:
        return self.client.config.state_ttl_seconds

    @staticmethod
    def _key(state: str) -> str:
        return f"{CODE_FLOW_KEY_PREFIX}{state}"

    async def begin(self, user_id: str, is_shared: bool = False) -> AuthUrlResponse:
        """Create a pending flow and the URL the user must visit."""
        if not user_id:
            raise ValidationError("user_id is required")

        now = self._clock()
        ttl = self.state_ttl_seconds
        code_verifier = generate_code_verifier() if self.client.config.use_pkce else None
        flow = CodeFlowState(
            state=generate_state(),
            owner_user_id=user_id,
            is_shared=is_shared,
            code_verifier=code_verifier,
            created_at=now,
            expires_at=now + timedelta(seconds=ttl),
        )
        await self.store.set(self._key(flow.state), flow.model_dump(mode="json"), ttl)

        auth_url = self.client.build_authorization_url(
            flow.state,
            generate_code_challenge(code_verifier) if code_verifier else None,
        )
        logger.info(
            "code_flow_started",
            owner_user_id=user_id,
            is_shared=is_shared,
            pkce=code_verifier is not None,
        )
        return AuthUrlResponse(auth_url=auth_url, state=flow.state, expires_in=ttl)

    async def lookup(self, state: str) -> CodeFlowState | None:
        """Pending flow for ``state``, or None if unknown or expired."""
        data = await self.store.get(self._key(state))
        if data is None:
            return None
        try:
            flow = CodeFlowState.model_validate(data)
        except PydanticValidationError as e:
            logger.warning("code_flow_state_invalid", error=str(e))
            return None
        if flow.is_expired(self._clock()):
            return None
        return flow

    async def complete(self, code: str, state: str) -> Account:
        """Exchange ``code``, check entitlement and link the account.

        Raises:
            InvalidStateError: Unknown, expired or already used state
            ProviderError: Token exchange rejected
            NoEntitlementError: The account lists no usable models; nothing
                is written and the state stays valid until it expires
        """
        if not code:
            raise ValidationError("Authorization code is required")

        async with self._locks.acquire(state):
            flow = await self.lookup(state)
            if flow is None:
                logger.warning("code_flow_invalid_state")
                raise InvalidStateError()

            token = await self.client.exchange_code(code, flow.code_verifier)
            if not token.refresh_token:
                raise ProviderError(
                    "Token exchange returned no refresh token",
                    provider_status=200,
                )

            models = await self.entitlement.fetch_models(token.access_token)

            # Claim the state: another process sharing the store may have
            # completed it since the lookup
            if not await self.store.delete(self._key(state)):
                logger.warning("code_flow_state_already_claimed")
                raise InvalidStateError()

            now = self._clock()
            expires_in = token.expires_in or DEFAULT_TOKEN_EXPIRY_SECONDS
            account = Account(
                account_id=derive_account_id(token.refresh_token),
                owner_user_id=flow.owner_user_id,
                is_shared=flow.is_shared,
                provider=Provider.GOOGLE,
                auth_method=AuthMethod.OAUTH,
                access_token=token.access_token,
                refresh_token=token.refresh_token,
                token_expires_at=now + timedelta(seconds=expires_in),
                email=extract_email(token.id_token or token.access_token),
                status=AccountStatus.ACTIVE,
                created_at=now,
                updated_at=now,
            )
            account = await self.linker.link(account, models.keys())

        logger.info(
            "code_flow_completed",
            account_id=account.account_id,
            owner_user_id=account.owner_user_id,
            models=len(models),
        )
        return account
