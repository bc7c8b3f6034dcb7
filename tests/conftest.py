"""
Pytest config.

Pins the repo root on sys.path so `import hostedauth` works without an editable
install, and provides scriptable identity clients for SessionManager tests.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Dict, List
from unittest.mock import AsyncMock

import pytest


def _ensure_repo_root_on_syspath() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root_on_syspath()

from hostedauth.config import AuthConfig, load_auth_config  # noqa: E402
from hostedauth.errors import SessionAbsentError  # noqa: E402
from hostedauth.location import BrowserLocation  # noqa: E402
from hostedauth.models import AuthSession, AuthTokens, CurrentUser, SignInResult, SignUpResult  # noqa: E402

ORIGIN = "https://app.example.com"


@pytest.fixture(autouse=True)
def _clear_cached_auth_config():
    load_auth_config.cache_clear()
    yield
    load_auth_config.cache_clear()


@pytest.fixture
def live_cfg() -> AuthConfig:
    return AuthConfig(
        region="us-east-1",
        user_pool_id="us-east-1_TestPool",
        client_id="test-client-id",
        oauth_domain="test.auth.us-east-1.amazoncognito.com",
        redirect_sign_in_uris=(f"{ORIGIN}/auth/callback",),
        redirect_sign_out_uris=(ORIGIN,),
        app_origin=ORIGIN,
        use_real_provider=True,
    )


@pytest.fixture
def dev_cfg() -> AuthConfig:
    return AuthConfig(app_origin=ORIGIN, use_real_provider=False)


@pytest.fixture
def location() -> BrowserLocation:
    opened: List[str] = []
    return BrowserLocation(f"{ORIGIN}/", opener=opened.append)


class FakeIdentityClient:
    """
    Scriptable live client: every capability is an AsyncMock.

    By default nobody is signed in; `sign_in_as` switches to a signed-in user.
    """

    def __init__(self) -> None:
        self.attributes: Dict[str, str] = {}
        self.sign_in = AsyncMock(return_value=SignInResult(is_signed_in=True))
        self.sign_up = AsyncMock(return_value=SignUpResult(is_sign_up_complete=False, next_step="CONFIRM_SIGN_UP"))
        self.confirm_sign_up = AsyncMock(return_value=SignUpResult(is_sign_up_complete=True))
        self.resend_confirmation_code = AsyncMock(return_value=None)
        self.sign_out = AsyncMock(return_value=None)
        self.sign_in_with_redirect = AsyncMock(return_value=SignInResult(is_signed_in=False, next_step="REDIRECT"))
        self.fetch_session = AsyncMock(return_value=AuthSession(tokens=None))
        self.get_current_user = AsyncMock(side_effect=SessionAbsentError("no user"))
        self.fetch_user_attributes = AsyncMock(side_effect=SessionAbsentError("no user"))

    def sign_in_as(self, username: str, **attributes: str) -> None:
        self.attributes = dict(attributes)
        self.get_current_user.side_effect = None
        self.get_current_user.return_value = CurrentUser(username=username, user_id=attributes.get("sub", ""))
        self.fetch_user_attributes.side_effect = None
        self.fetch_user_attributes.return_value = dict(attributes)
        self.fetch_session.return_value = AuthSession(tokens=AuthTokens(access_token=f"access-{username}"))

    def signed_out(self) -> None:
        self.get_current_user.side_effect = SessionAbsentError("no user")
        self.fetch_user_attributes.side_effect = SessionAbsentError("no user")
        self.fetch_session.return_value = AuthSession(tokens=None)

    def calls(self) -> int:
        return sum(
            m.await_count
            for m in (
                self.sign_in,
                self.sign_up,
                self.confirm_sign_up,
                self.resend_confirmation_code,
                self.sign_out,
                self.sign_in_with_redirect,
                self.fetch_session,
                self.get_current_user,
                self.fetch_user_attributes,
            )
        )


@pytest.fixture
def fake_client() -> FakeIdentityClient:
    return FakeIdentityClient()

