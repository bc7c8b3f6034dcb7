from __future__ import annotations

import logging
from typing import Callable, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from hostedauth.client import IdentityClient, build_identity_client
from hostedauth.config import AuthConfig
from hostedauth.errors import AuthError, InvalidParameterError, ProviderError, SessionAbsentError
from hostedauth.location import BrowserLocation, Location
from hostedauth.models import (
    CallbackResult,
    CheckOutcome,
    CodeDelivery,
    Credentials,
    Registration,
    SessionCheckResult,
    SessionState,
    SessionStatus,
    SignInResult,
    SignUpResult,
    UserProfile,
)
from hostedauth.race import first_settled
from hostedauth.util import origin_of

logger = logging.getLogger(__name__)

SESSION_CHECK_TIMEOUT_SECONDS = 5.0
CALLBACK_EXCHANGE_TIMEOUT_SECONDS = 15.0

Listener = Callable[[SessionState], None]
M = TypeVar("M", bound=BaseModel)


def _validated(model: Type[M], **values: object) -> M:
    try:
        return model.model_validate(values)
    except ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        raise InvalidParameterError(str(first.get("msg") or "Invalid input"), code="InvalidParameterException") from e


class SessionManager:
    """
    Owns the authentication session for one page load / process.

    Session checks, sign-outs and callback completion each take a new generation
    number; a completion is applied only while its generation is still the latest, so
    an older, slower result can never overwrite a newer one.
    """

    def __init__(
        self,
        cfg: AuthConfig,
        *,
        client: Optional[IdentityClient] = None,
        location: Optional[Location] = None,
        check_timeout: float = SESSION_CHECK_TIMEOUT_SECONDS,
        exchange_timeout: float = CALLBACK_EXCHANGE_TIMEOUT_SECONDS,
    ) -> None:
        self.cfg = cfg
        self.location = location if location is not None else BrowserLocation(cfg.app_origin + "/")
        self.client = build_identity_client(cfg, location=self.location, live=client)
        self.check_timeout = check_timeout
        self.exchange_timeout = exchange_timeout
        self._state = SessionState(status=SessionStatus.INITIALIZING, user=None, loading=True)
        self._generation = 0
        self._listeners: List[Listener] = []

    # Reads

    @property
    def dev_mode(self) -> bool:
        return self.cfg.dev_mode

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def status(self) -> SessionStatus:
        return self._state.status

    @property
    def user(self) -> Optional[UserProfile]:
        return self._state.user

    @property
    def loading(self) -> bool:
        return self._state.loading

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a state listener; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # State transitions

    def _set_state(self, status: SessionStatus, user: Optional[UserProfile], loading: bool) -> None:
        if status is not SessionStatus.AUTHENTICATED:
            user = None
        new = SessionState(status=status, user=user, loading=loading)
        if new == self._state:
            return
        self._state = new
        for listener in list(self._listeners):
            try:
                listener(new)
            except Exception:
                logger.exception("Session listener failed")

    def _next_generation(self) -> int:
        self._generation += 1
        return self._generation

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    def _settle(self, generation: int, user: Optional[UserProfile]) -> bool:
        if not self._is_current(generation):
            logger.debug("Discarding stale session result (generation %d < %d)", generation, self._generation)
            return False
        if user is not None:
            self._set_state(SessionStatus.AUTHENTICATED, user, False)
        else:
            self._set_state(SessionStatus.UNAUTHENTICATED, None, False)
        return True

    # Page load

    def is_callback_location(self) -> bool:
        return not self.dev_mode and self.cfg.is_callback(self.location.href)

    async def initialize(self) -> SessionState:
        """
        Entry point, once per page load: finish a hosted UI callback if we are on the
        callback route, then run the session check.
        """
        if self.is_callback_location():
            await self.complete_redirect_callback()
        await self.check_session()
        return self._state

    async def complete_redirect_callback(self) -> CallbackResult:
        """
        Complete the hosted UI redirect: exchange the code, try to show the user right
        away, and always scrub the code from the visible address.

        Never raises; the session check that follows decides the final state. Live mode
        only: in development mode the address is left untouched.
        """
        if self.dev_mode:
            return CallbackResult(exchanged=False, address=self.location.href)

        generation = self._next_generation()
        self._set_state(self._state.status, self._state.user, True)
        exchanged = False
        user: Optional[UserProfile] = None
        error: Optional[str] = None
        target = (origin_of(self.location.href) or self.cfg.app_origin.rstrip("/")) + "/"
        try:
            exchange = await first_settled(self.client.fetch_session(), self.exchange_timeout)
            if exchange.ok:
                exchanged = True
            else:
                error = "timeout" if exchange.timed_out else str(exchange.error)
                logger.error("Hosted UI callback processing failed: %s", error)

            profile = await first_settled(self._fetch_profile(), self.check_timeout)
            if profile.ok and profile.value is not None:
                user = profile.value
                if self._is_current(generation):
                    self._set_state(SessionStatus.AUTHENTICATED, user, True)
            else:
                reason = "timeout" if profile.timed_out else str(profile.error)
                logger.warning("Unable to populate user immediately after callback: %s", reason)
        finally:
            try:
                self.location.replace_state(target)
            finally:
                self._settle(generation, self._state.user)
        return CallbackResult(exchanged=exchanged, address=target, user=user, error=error)

    # Session check

    async def _fetch_profile(self) -> UserProfile:
        current = await self.client.get_current_user()
        username = str(getattr(current, "username", "") or "")
        if not username:
            raise ProviderError("Current user has no username")
        attributes = await self.client.fetch_user_attributes()
        if not isinstance(attributes, dict):
            raise ProviderError("Malformed user attributes")
        return UserProfile.from_identity(username, attributes)

    async def _lookup(self) -> SessionCheckResult:
        settled = await first_settled(self._fetch_profile(), self.check_timeout)
        if settled.timed_out:
            logger.warning("Session check timed out after %.1fs; treating as signed out", self.check_timeout)
            return SessionCheckResult(outcome=CheckOutcome.TIMED_OUT, error="timeout")
        if isinstance(settled.error, SessionAbsentError):
            logger.info("No authenticated user found")
            return SessionCheckResult(outcome=CheckOutcome.NO_SESSION)
        if settled.error is not None:
            logger.warning("Session check failed: %s", settled.error)
            return SessionCheckResult(outcome=CheckOutcome.FAILED, error=str(settled.error))
        return SessionCheckResult(outcome=CheckOutcome.SIGNED_IN, user=settled.value)

    async def check_session(self) -> SessionCheckResult:
        """
        Ask the provider who is signed in, bounded by `check_timeout`.

        Never raises for provider failures; anything but a user collapses to UNAUTHENTICATED.
        """
        generation = self._next_generation()
        if self._state.authenticated:
            # Revalidate in place; the user stays visible while loading.
            self._set_state(SessionStatus.AUTHENTICATED, self._state.user, True)
        else:
            self._set_state(SessionStatus.CHECKING_SESSION, None, True)

        result = SessionCheckResult(outcome=CheckOutcome.FAILED, error="cancelled")
        try:
            result = await self._lookup()
        finally:
            self._settle(generation, result.user if result.signed_in else None)
        return result

    # User-initiated operations

    async def sign_in(self, username: str, password: str) -> SignInResult:
        creds = _validated(Credentials, username=username, password=password)
        try:
            result = await self.client.sign_in(creds.username, creds.password)
        except AuthError as e:
            logger.info("Sign in failed for %s: %s", creds.username, e)
            raise
        if result.is_signed_in:
            logger.info("Signed in: %s", creds.username)
            await self.check_session()
        return result

    async def sign_up(
        self,
        username: str,
        password: str,
        email: Optional[str] = None,
        name: Optional[str] = None,
    ) -> SignUpResult:
        reg = _validated(Registration, username=username, password=password, email=email, name=name)
        try:
            result = await self.client.sign_up(reg.username, reg.password, reg.attributes())
        except AuthError as e:
            logger.info("Sign up failed for %s: %s", reg.username, e)
            raise
        logger.info("Sign up for %s: next step %s", reg.username, result.next_step)
        return result

    async def confirm_sign_up(self, username: str, code: str) -> SignUpResult:
        username = (username or "").strip()
        code = (code or "").strip()
        if not username or not code:
            raise InvalidParameterError("username and confirmation code are required", code="InvalidParameterException")
        try:
            return await self.client.confirm_sign_up(username, code)
        except AuthError as e:
            logger.info("Sign up confirmation failed for %s: %s", username, e)
            raise

    async def resend_confirmation_code(self, username: str) -> Optional[CodeDelivery]:
        username = (username or "").strip()
        if not username:
            raise InvalidParameterError("username is required", code="InvalidParameterException")
        try:
            return await self.client.resend_confirmation_code(username)
        except AuthError as e:
            logger.info("Resending confirmation code failed for %s: %s", username, e)
            raise

    async def sign_in_with_redirect(self) -> SignInResult:
        """
        Start hosted sign-in. Live clients navigate away; the development client signs
        in the placeholder user immediately.
        """
        try:
            result = await self.client.sign_in_with_redirect()
        except AuthError as e:
            logger.error("Hosted UI redirect error: %s", e)
            raise
        if result.is_signed_in:
            await self.check_session()
        return result

    async def sign_out(self) -> None:
        """
        Sign out. Always ends UNAUTHENTICATED; provider failures are logged, not raised.
        """
        generation = self._next_generation()
        self._set_state(self._state.status, self._state.user, True)
        try:
            await self.client.sign_out()
            logger.info("Signed out")
        except Exception as e:
            logger.error("Sign out error (local session cleared): %s", e)
        finally:
            self._settle(generation, None)

    async def get_access_token(self) -> Optional[str]:
        """
        Access token for API calls, or None when signed out or on any failure.
        """
        if not self._state.authenticated:
            return None
        try:
            session = await self.client.fetch_session()
        except Exception as e:
            logger.error("Error getting access token: %s", e)
            return None
        tokens = getattr(session, "tokens", None)
        token = getattr(tokens, "access_token", None) if tokens is not None else None
        return str(token) if token else None
