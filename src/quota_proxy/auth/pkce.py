"""Random identifiers, PKCE pairs and token inspection helpers."""

import base64
import hashlib
import secrets
import uuid
from typing import Any

import jwt
from structlog import get_logger


logger = get_logger(__name__)

# Length of the account id derived from a refresh token
ACCOUNT_ID_LENGTH = 32


def _base64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode().rstrip("=")


def generate_state() -> str:
    """Unguessable state parameter for a new flow."""
    return str(uuid.uuid4())


def generate_machine_id() -> str:
    """Random 64 character hex machine id sent with device-flow requests."""
    return secrets.token_bytes(32).hex()


def generate_code_verifier() -> str:
    """PKCE code verifier (43 URL-safe characters)."""
    return _base64url(secrets.token_bytes(32))


def generate_code_challenge(code_verifier: str) -> str:
    """S256 challenge for ``code_verifier``."""
    return _base64url(hashlib.sha256(code_verifier.encode()).digest())


def derive_account_id(refresh_token: str) -> str:
    """Stable account id: the first 32 hex characters of sha256(refresh_token).

    Linking the same upstream account twice yields the same id.
    """
    return hashlib.sha256(refresh_token.encode()).hexdigest()[:ACCOUNT_ID_LENGTH]


def decode_token_claims(token: str) -> dict[str, Any] | None:
    """Read the payload of a JWT access token without verifying it.

    The token comes straight from the provider's token endpoint, so the
    claims are only used as display metadata.
    """
    try:
        return jwt.decode(token, options={"verify_signature": False})
    except jwt.PyJWTError as e:
        logger.debug("token_claims_unreadable", error=str(e))
        return None


def extract_email(token: str) -> str | None:
    """Email claim of an access token, if it is a JWT carrying one."""
    claims = decode_token_claims(token)
    if not claims:
        return None
    email = claims.get("email")
    return email if isinstance(email, str) else None
