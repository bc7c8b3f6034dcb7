from __future__ import annotations

import logging
from typing import Dict, Optional, Protocol

from hostedauth.config import AuthConfig
from hostedauth.location import Location
from hostedauth.models import AuthSession, CodeDelivery, CurrentUser, SignInResult, SignUpResult

logger = logging.getLogger(__name__)


class IdentityClient(Protocol):
    """
    Capability interface to an identity provider.

    Implementations: `CognitoIdentityClient` (live) and `MockIdentityClient` (development).
    """

    async def sign_in(self, username: str, password: str) -> SignInResult:
        """
        Authenticate with username/password.

        Raises AuthenticationError subclasses when the provider rejects the credentials.
        """

    async def sign_up(self, username: str, password: str, attributes: Dict[str, str]) -> SignUpResult:
        """Register a new user."""

    async def confirm_sign_up(self, username: str, code: str) -> SignUpResult:
        """Confirm a registration with the code delivered to the user."""

    async def resend_confirmation_code(self, username: str) -> Optional[CodeDelivery]:
        """Send a fresh confirmation code."""

    async def sign_out(self) -> None:
        """End the provider session and forget local tokens."""

    async def sign_in_with_redirect(self) -> SignInResult:
        """
        Start hosted sign-in.

        Live clients navigate away (`next_step == "REDIRECT"`); the flow completes on
        the callback page via fetch_session().
        """

    async def fetch_session(self) -> AuthSession:
        """
        Return current token material, completing a pending redirect callback if present.

        Raises on exchange/transport failure; returns AuthSession(tokens=None) when signed out.
        """

    async def get_current_user(self) -> CurrentUser:
        """Return the signed-in identity. Raises SessionAbsentError when unauthenticated."""

    async def fetch_user_attributes(self) -> Dict[str, str]:
        """Return user attributes (email, name, sub, ...). Raises SessionAbsentError when unauthenticated."""


def build_identity_client(
    cfg: AuthConfig,
    *,
    location: Location,
    live: Optional[IdentityClient] = None,
) -> IdentityClient:
    """
    Select the identity client for this configuration, once.

    In development mode the live client (even if supplied) is never used.
    """
    if cfg.dev_mode:
        from hostedauth.mock import MockIdentityClient

        if cfg.use_real_provider:
            logger.warning("Identity provider configuration incomplete; falling back to development mode")
        else:
            logger.info("Development mode: using mock identity client")
        return MockIdentityClient(cfg)

    if live is not None:
        return live

    from hostedauth.cognito import CognitoIdentityClient

    logger.info("Using Cognito identity client (region=%s, pool=%s)", cfg.region, cfg.user_pool_id)
    return CognitoIdentityClient(cfg, location=location)
