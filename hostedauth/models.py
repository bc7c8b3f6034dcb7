from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Mapping, Optional

from pydantic import BaseModel, field_validator


class SessionStatus(str, Enum):
    INITIALIZING = "initializing"
    CHECKING_SESSION = "checking_session"
    AUTHENTICATED = "authenticated"
    UNAUTHENTICATED = "unauthenticated"


@dataclass(frozen=True)
class UserProfile:
    """Snapshot of the signed-in user."""

    username: str
    email: str = ""
    name: str = ""
    subject_id: str = ""

    @classmethod
    def from_identity(cls, username: str, attributes: Mapping[str, Optional[str]]) -> "UserProfile":
        email = str(attributes.get("email") or "")
        name = str(attributes.get("name") or "") or email or username
        return cls(
            username=username,
            email=email,
            name=name,
            subject_id=str(attributes.get("sub") or ""),
        )


@dataclass(frozen=True)
class SessionState:
    status: SessionStatus
    user: Optional[UserProfile] = None
    loading: bool = False

    @property
    def authenticated(self) -> bool:
        return self.status is SessionStatus.AUTHENTICATED


@dataclass(frozen=True)
class CurrentUser:
    username: str
    user_id: str = ""


@dataclass(frozen=True)
class AuthTokens:
    access_token: str
    id_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_at: Optional[float] = None  # epoch seconds

    def expired_or_soon(self, buffer_seconds: int = 60, *, now: Optional[float] = None) -> bool:
        if self.expires_at is None:
            return False
        t = time.time() if now is None else now
        return t >= self.expires_at - buffer_seconds


@dataclass(frozen=True)
class AuthSession:
    """Result of fetch_session(); tokens is None when nobody is signed in."""

    tokens: Optional[AuthTokens] = None


@dataclass(frozen=True)
class SignInResult:
    is_signed_in: bool
    next_step: str = "DONE"  # DONE | REDIRECT | provider challenge name


@dataclass(frozen=True)
class CodeDelivery:
    destination: Optional[str] = None
    medium: Optional[str] = None  # EMAIL | SMS
    attribute: Optional[str] = None


@dataclass(frozen=True)
class SignUpResult:
    is_sign_up_complete: bool
    next_step: str = "DONE"  # DONE | CONFIRM_SIGN_UP
    user_id: Optional[str] = None
    code_delivery: Optional[CodeDelivery] = None


class CheckOutcome(str, Enum):
    SIGNED_IN = "signed_in"
    NO_SESSION = "no_session"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


@dataclass(frozen=True)
class SessionCheckResult:
    outcome: CheckOutcome
    user: Optional[UserProfile] = None
    error: Optional[str] = None

    @property
    def signed_in(self) -> bool:
        return self.outcome is CheckOutcome.SIGNED_IN and self.user is not None


@dataclass(frozen=True)
class CallbackResult:
    exchanged: bool
    address: str
    user: Optional[UserProfile] = None
    error: Optional[str] = None


class Credentials(BaseModel):
    username: str
    password: str

    @field_validator("username")
    @classmethod
    def _username_required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("username is required")
        return v

    @field_validator("password")
    @classmethod
    def _password_required(cls, v: str) -> str:
        if not v:
            raise ValueError("password is required")
        return v


class Registration(Credentials):
    email: Optional[str] = None
    name: Optional[str] = None

    def attributes(self) -> Dict[str, str]:
        attrs: Dict[str, str] = {}
        if self.email and self.email.strip():
            attrs["email"] = self.email.strip()
        if self.name and self.name.strip():
            attrs["name"] = self.name.strip()
        return attrs
