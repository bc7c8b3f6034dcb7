from __future__ import annotations

import time
from typing import Any, Dict, Optional

import jwt  # PyJWT

from hostedauth.models import AuthTokens


def token_claims(token: str | None) -> Dict[str, Any]:
    """
    Read JWT claims WITHOUT verifying the signature.

    Tokens come straight from the provider over TLS; validation is the API's job.
    Returns {} for anything that doesn't decode.
    """
    if not token:
        return {}
    try:
        claims = jwt.decode(token, options={"verify_signature": False, "verify_exp": False})
    except jwt.PyJWTError:
        return {}
    return claims if isinstance(claims, dict) else {}


def tokens_from_response(
    *,
    access_token: str,
    id_token: Optional[str],
    refresh_token: Optional[str],
    expires_in: Optional[int],
    previous_refresh_token: Optional[str] = None,
) -> AuthTokens:
    # Prefer the exp claim; fall back to expires_in from the response.
    exp = token_claims(access_token).get("exp")
    if isinstance(exp, (int, float)):
        expires_at: Optional[float] = float(exp)
    elif expires_in:
        expires_at = time.time() + int(expires_in)
    else:
        expires_at = None
    return AuthTokens(
        access_token=access_token,
        id_token=id_token,
        # Refresh responses don't repeat the refresh token.
        refresh_token=refresh_token or previous_refresh_token,
        expires_at=expires_at,
    )


class TokenStore:
    """
    In-memory token set for the current user (one user per client instance).
    """

    def __init__(self) -> None:
        self._tokens: Optional[AuthTokens] = None
        self._via_hosted_ui = False

    @property
    def tokens(self) -> Optional[AuthTokens]:
        return self._tokens

    @property
    def via_hosted_ui(self) -> bool:
        return self._via_hosted_ui

    def store(self, tokens: AuthTokens, *, via_hosted_ui: Optional[bool] = None) -> None:
        self._tokens = tokens
        if via_hosted_ui is not None:
            self._via_hosted_ui = via_hosted_ui

    def clear(self) -> None:
        self._tokens = None
        self._via_hosted_ui = False

    def claims(self) -> Dict[str, Any]:
        """Merged identity claims: id token first, access token fills gaps."""
        if self._tokens is None:
            return {}
        merged = dict(token_claims(self._tokens.access_token))
        merged.update(token_claims(self._tokens.id_token))
        return merged
