from __future__ import annotations

from typing import Dict, Optional, Type


class AuthError(Exception):
    """Base class for every error raised by this package."""

    def __init__(self, message: str = "", *, code: Optional[str] = None) -> None:
        super().__init__(message or code or self.__class__.__name__)
        self.message = message or code or self.__class__.__name__
        self.code = code


class AuthenticationError(AuthError):
    """The provider rejected a user-initiated request (credentials, registration, code)."""


class NotAuthorizedError(AuthenticationError):
    pass


class UserNotFoundError(AuthenticationError):
    pass


class UsernameExistsError(AuthenticationError):
    pass


class CodeMismatchError(AuthenticationError):
    pass


class ExpiredCodeError(AuthenticationError):
    pass


class UserNotConfirmedError(AuthenticationError):
    pass


class InvalidPasswordError(AuthenticationError):
    pass


class InvalidParameterError(AuthenticationError):
    pass


class LimitExceededError(AuthenticationError):
    pass


class SessionAbsentError(AuthError):
    """No authenticated user. Expected; never surfaced by SessionManager."""


class ProviderError(AuthError):
    """Transport failure, malformed provider response, or misconfigured hosted UI."""


_PROVIDER_ERRORS: Dict[str, Type[AuthError]] = {
    "NotAuthorizedException": NotAuthorizedError,
    "UserNotFoundException": UserNotFoundError,
    "UsernameExistsException": UsernameExistsError,
    "AliasExistsException": UsernameExistsError,
    "CodeMismatchException": CodeMismatchError,
    "ExpiredCodeException": ExpiredCodeError,
    "UserNotConfirmedException": UserNotConfirmedError,
    "InvalidPasswordException": InvalidPasswordError,
    "PasswordResetRequiredException": NotAuthorizedError,
    "InvalidParameterException": InvalidParameterError,
    "LimitExceededException": LimitExceededError,
    "TooManyRequestsException": LimitExceededError,
    "TooManyFailedAttemptsException": LimitExceededError,
    # OAuth token endpoint errors
    "invalid_grant": NotAuthorizedError,
}


def error_from_provider(type_name: str | None, message: str | None = None) -> AuthError:
    """
    Map a provider error type (Cognito `__type`, optionally `namespace#Name`) to an exception.
    """
    name = (type_name or "").strip().split("#")[-1]
    cls = _PROVIDER_ERRORS.get(name, ProviderError)
    return cls((message or "").strip() or name or "Identity provider error", code=name or None)
