from __future__ import annotations

from typing import Dict, Optional

from hostedauth.config import AuthConfig
from hostedauth.errors import SessionAbsentError
from hostedauth.models import (
    AuthSession,
    AuthTokens,
    CodeDelivery,
    CurrentUser,
    SignInResult,
    SignUpResult,
    UserProfile,
)

MOCK_ACCESS_TOKEN = "mock-jwt-token"

DEV_USER = UserProfile(
    username="devuser",
    email="dev@example.com",
    name="Development User",
    subject_id="dev-user-123",
)


def mock_profile(username: str) -> UserProfile:
    """Deterministic profile for a username: same input, same profile."""
    return UserProfile(
        username=username,
        email=f"{username}@example.com",
        name=username,
        subject_id=f"mock-{username}-123",
    )


class MockIdentityClient:
    """
    Offline identity client for development.

    Every call answers immediately and never touches the network. Any password is accepted.
    """

    def __init__(self, cfg: AuthConfig) -> None:
        self._current: Optional[UserProfile] = DEV_USER if cfg.dev_auto_sign_in else None

    async def sign_in(self, username: str, password: str) -> SignInResult:
        self._current = mock_profile(username)
        return SignInResult(is_signed_in=True, next_step="DONE")

    async def sign_up(self, username: str, password: str, attributes: Dict[str, str]) -> SignUpResult:
        return SignUpResult(
            is_sign_up_complete=True,
            next_step="DONE",
            user_id=mock_profile(username).subject_id,
        )

    async def confirm_sign_up(self, username: str, code: str) -> SignUpResult:
        return SignUpResult(is_sign_up_complete=True, next_step="DONE")

    async def resend_confirmation_code(self, username: str) -> Optional[CodeDelivery]:
        return CodeDelivery(destination=mock_profile(username).email, medium="EMAIL", attribute="email")

    async def sign_out(self) -> None:
        self._current = None

    async def sign_in_with_redirect(self) -> SignInResult:
        self._current = DEV_USER
        return SignInResult(is_signed_in=True, next_step="DONE")

    async def fetch_session(self) -> AuthSession:
        if self._current is None:
            return AuthSession(tokens=None)
        return AuthSession(tokens=AuthTokens(access_token=MOCK_ACCESS_TOKEN))

    async def get_current_user(self) -> CurrentUser:
        if self._current is None:
            raise SessionAbsentError("No mock user signed in")
        return CurrentUser(username=self._current.username, user_id=self._current.subject_id)

    async def fetch_user_attributes(self) -> Dict[str, str]:
        if self._current is None:
            raise SessionAbsentError("No mock user signed in")
        return {
            "email": self._current.email,
            "name": self._current.name,
            "sub": self._current.subject_id,
        }
