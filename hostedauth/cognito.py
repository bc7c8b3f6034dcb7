from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Set
from urllib.parse import urlencode

import requests
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from hostedauth.config import AuthConfig
from hostedauth.errors import AuthenticationError, AuthError, ProviderError, SessionAbsentError, error_from_provider
from hostedauth.location import Location
from hostedauth.models import AuthSession, AuthTokens, CodeDelivery, CurrentUser, SignInResult, SignUpResult
from hostedauth.tokens import TokenStore, tokens_from_response
from hostedauth.util import pkce_challenge, query_param, random_token

logger = logging.getLogger(__name__)

HTTP_TIMEOUT_SECONDS = 10


class CognitoAuthResult(BaseModel):
    """`AuthenticationResult` block of an InitiateAuth response."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    access_token: str = Field(alias="AccessToken")
    id_token: Optional[str] = Field(default=None, alias="IdToken")
    refresh_token: Optional[str] = Field(default=None, alias="RefreshToken")
    expires_in: Optional[int] = Field(default=None, alias="ExpiresIn")


class OAuthTokenResponse(BaseModel):
    """Hosted UI /oauth2/token response."""

    model_config = ConfigDict(extra="ignore")

    access_token: str
    id_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    token_type: str = "Bearer"


def _error_body(r: requests.Response) -> Dict[str, Any]:
    try:
        body = r.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _idp_call(cfg: AuthConfig, action: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Call one action of the Cognito user-pool JSON API.

    These actions are public (client id only); no AWS request signing is needed.
    """
    headers = {
        "Content-Type": "application/x-amz-json-1.1",
        "X-Amz-Target": f"AWSCognitoIdentityProviderService.{action}",
    }
    try:
        r = requests.post(cfg.idp_endpoint, data=json.dumps(payload), headers=headers, timeout=HTTP_TIMEOUT_SECONDS)
    except requests.RequestException as e:
        raise ProviderError(f"{action} request failed: {e}") from e
    if r.status_code >= 400:
        body = _error_body(r)
        raise error_from_provider(
            str(body.get("__type") or ""),
            str(body.get("message") or body.get("Message") or f"{action} failed (status={r.status_code})"),
        )
    try:
        data = r.json()
    except ValueError as e:
        raise ProviderError(f"Invalid {action} response") from e
    if not isinstance(data, dict):
        raise ProviderError(f"Invalid {action} response")
    return data


def initiate_password_auth(cfg: AuthConfig, username: str, password: str) -> Dict[str, Any]:
    return _idp_call(
        cfg,
        "InitiateAuth",
        {
            "AuthFlow": "USER_PASSWORD_AUTH",
            "ClientId": cfg.client_id,
            "AuthParameters": {"USERNAME": username, "PASSWORD": password},
        },
    )


def refresh_tokens(cfg: AuthConfig, refresh_token: str) -> CognitoAuthResult:
    data = _idp_call(
        cfg,
        "InitiateAuth",
        {
            "AuthFlow": "REFRESH_TOKEN_AUTH",
            "ClientId": cfg.client_id,
            "AuthParameters": {"REFRESH_TOKEN": refresh_token},
        },
    )
    try:
        return CognitoAuthResult.model_validate(data.get("AuthenticationResult"))
    except ValidationError as e:
        raise ProviderError("Invalid token refresh response") from e


def revoke_refresh_token(cfg: AuthConfig, refresh_token: str) -> None:
    _idp_call(cfg, "RevokeToken", {"Token": refresh_token, "ClientId": cfg.client_id})


def build_authorize_url(cfg: AuthConfig, *, state: str, code_challenge: str) -> str:
    """
    Build the hosted UI authorization URL (authorization code + PKCE).
    """
    base = cfg.oauth_base_url
    if not base:
        raise ProviderError("Hosted UI domain not configured")
    if not cfg.redirect_sign_in_uri:
        raise ProviderError("Hosted UI redirect URI not configured")

    params = {
        "client_id": cfg.client_id or "",
        "redirect_uri": cfg.redirect_sign_in_uri,
        "response_type": cfg.response_type or "code",
        "scope": " ".join(cfg.scopes),
        "state": state,
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
    }
    return f"{base}/oauth2/authorize?{urlencode(params)}"


def build_logout_url(cfg: AuthConfig) -> Optional[str]:
    base = cfg.oauth_base_url
    if not base or not cfg.redirect_sign_out_uri:
        return None
    params = {"client_id": cfg.client_id or "", "logout_uri": cfg.redirect_sign_out_uri}
    return f"{base}/logout?{urlencode(params)}"


def exchange_code_for_tokens(cfg: AuthConfig, *, code: str, code_verifier: str) -> OAuthTokenResponse:
    """
    Exchange an authorization code for tokens at the hosted UI token endpoint.
    """
    base = cfg.oauth_base_url
    if not base:
        raise ProviderError("Hosted UI domain not configured")

    payload = {
        "grant_type": "authorization_code",
        "client_id": cfg.client_id or "",
        "code": code,
        "redirect_uri": cfg.redirect_sign_in_uri or "",
        "code_verifier": code_verifier,
    }
    try:
        r = requests.post(f"{base}/oauth2/token", data=payload, timeout=HTTP_TIMEOUT_SECONDS)
    except requests.RequestException as e:
        raise ProviderError(f"Token exchange request failed: {e}") from e
    if r.status_code >= 400:
        body = _error_body(r)
        # Avoid leaking sensitive info; include minimal context.
        raise error_from_provider(
            str(body.get("error") or ""),
            str(body.get("error_description") or f"Token exchange failed (status={r.status_code})"),
        )
    try:
        return OAuthTokenResponse.model_validate(r.json())
    except (ValueError, ValidationError) as e:
        raise ProviderError("Invalid token response") from e


def _code_delivery(data: Dict[str, Any]) -> Optional[CodeDelivery]:
    details = data.get("CodeDeliveryDetails")
    if not isinstance(details, dict):
        return None
    return CodeDelivery(
        destination=details.get("Destination"),
        medium=details.get("DeliveryMedium"),
        attribute=details.get("AttributeName"),
    )


def _attributes(data: Dict[str, Any]) -> Dict[str, str]:
    items = data.get("UserAttributes")
    if not isinstance(items, list):
        raise ProviderError("Invalid GetUser response")
    out: Dict[str, str] = {}
    for item in items:
        if isinstance(item, dict) and item.get("Name"):
            out[str(item["Name"])] = str(item.get("Value") or "")
    return out


class CognitoIdentityClient:
    """
    Live identity client for a Cognito user pool.

    Notes:
    - Blocking HTTP (requests) runs in worker threads via asyncio.to_thread.
    - Tokens live in memory only; a new process starts signed out.
    - A redirect callback is completed lazily by fetch_session(), exactly once per code.
    """

    def __init__(self, cfg: AuthConfig, *, location: Location, store: Optional[TokenStore] = None) -> None:
        if not cfg.provider_configured:
            raise ProviderError("Cognito user pool / client id not configured")
        self.cfg = cfg
        self.location = location
        self.store = store if store is not None else TokenStore()
        self._pending: Dict[str, str] = {}  # OAuth state -> PKCE verifier
        self._consumed_codes: Set[str] = set()
        self._lock = asyncio.Lock()

    async def sign_in(self, username: str, password: str) -> SignInResult:
        data = await asyncio.to_thread(initiate_password_auth, self.cfg, username, password)
        result = data.get("AuthenticationResult")
        if isinstance(result, dict):
            try:
                parsed = CognitoAuthResult.model_validate(result)
            except ValidationError as e:
                raise ProviderError("Invalid InitiateAuth response") from e
            self._store(parsed.access_token, parsed.id_token, parsed.refresh_token, parsed.expires_in, hosted=False)
            return SignInResult(is_signed_in=True, next_step="DONE")

        challenge = str(data.get("ChallengeName") or "")
        if challenge:
            logger.info("Sign in requires challenge: %s", challenge)
            return SignInResult(is_signed_in=False, next_step=challenge)
        raise ProviderError("Invalid InitiateAuth response")

    async def sign_up(self, username: str, password: str, attributes: Dict[str, str]) -> SignUpResult:
        payload = {
            "ClientId": self.cfg.client_id,
            "Username": username,
            "Password": password,
            "UserAttributes": [{"Name": k, "Value": v} for k, v in sorted(attributes.items())],
        }
        data = await asyncio.to_thread(_idp_call, self.cfg, "SignUp", payload)
        confirmed = bool(data.get("UserConfirmed"))
        return SignUpResult(
            is_sign_up_complete=confirmed,
            next_step="DONE" if confirmed else "CONFIRM_SIGN_UP",
            user_id=str(data.get("UserSub") or "") or None,
            code_delivery=_code_delivery(data),
        )

    async def confirm_sign_up(self, username: str, code: str) -> SignUpResult:
        payload = {"ClientId": self.cfg.client_id, "Username": username, "ConfirmationCode": code}
        await asyncio.to_thread(_idp_call, self.cfg, "ConfirmSignUp", payload)
        return SignUpResult(is_sign_up_complete=True, next_step="DONE")

    async def resend_confirmation_code(self, username: str) -> Optional[CodeDelivery]:
        payload = {"ClientId": self.cfg.client_id, "Username": username}
        data = await asyncio.to_thread(_idp_call, self.cfg, "ResendConfirmationCode", payload)
        return _code_delivery(data)

    async def sign_out(self) -> None:
        tokens = self.store.tokens
        via_hosted_ui = self.store.via_hosted_ui
        self.store.clear()
        if tokens is None:
            return

        if tokens.refresh_token:
            try:
                await asyncio.to_thread(revoke_refresh_token, self.cfg, tokens.refresh_token)
            except AuthError as e:
                logger.warning("Refresh token revocation failed (tokens cleared locally): %s", e)

        if via_hosted_ui:
            url = build_logout_url(self.cfg)
            if url:
                self.location.assign(url)

    async def sign_in_with_redirect(self) -> SignInResult:
        if not self.cfg.hosted_ui_enabled:
            raise ProviderError("Hosted UI is not configured (COGNITO_DOMAIN / COGNITO_CALLBACK_URL)")
        verifier = random_token(48)
        state = random_token(24)
        url = build_authorize_url(self.cfg, state=state, code_challenge=pkce_challenge(verifier))
        self._pending[state] = verifier
        self.location.assign(url)
        return SignInResult(is_signed_in=False, next_step="REDIRECT")

    async def fetch_session(self) -> AuthSession:
        async with self._lock:
            await self._complete_callback()
            tokens = self.store.tokens
            if tokens is not None and tokens.expired_or_soon():
                tokens = await self._refresh(tokens)
            return AuthSession(tokens=tokens)

    async def get_current_user(self) -> CurrentUser:
        session = await self.fetch_session()
        if session.tokens is None:
            raise SessionAbsentError("No authenticated user")
        claims = self.store.claims()
        username = str(claims.get("cognito:username") or claims.get("username") or "")
        if not username:
            raise ProviderError("Token is missing the username claim")
        return CurrentUser(username=username, user_id=str(claims.get("sub") or ""))

    async def fetch_user_attributes(self) -> Dict[str, str]:
        session = await self.fetch_session()
        if session.tokens is None:
            raise SessionAbsentError("No authenticated user")
        data = await asyncio.to_thread(_idp_call, self.cfg, "GetUser", {"AccessToken": session.tokens.access_token})
        return _attributes(data)

    def pending_states(self) -> List[str]:
        return list(self._pending)

    def _store(
        self,
        access_token: str,
        id_token: Optional[str],
        refresh_token: Optional[str],
        expires_in: Optional[int],
        *,
        hosted: Optional[bool],
        previous_refresh_token: Optional[str] = None,
    ) -> AuthTokens:
        tokens = tokens_from_response(
            access_token=access_token,
            id_token=id_token,
            refresh_token=refresh_token,
            expires_in=expires_in,
            previous_refresh_token=previous_refresh_token,
        )
        self.store.store(tokens, via_hosted_ui=hosted)
        return tokens

    async def _complete_callback(self) -> None:
        href = self.location.href
        if not self.cfg.is_callback(href):
            return

        code = query_param(href, "code")
        if code and code in self._consumed_codes:
            return
        error = query_param(href, "error")
        if error:
            raise ProviderError(query_param(href, "error_description") or error, code=error)
        if not code:
            return

        # Consumed regardless of outcome: a code is never presented twice.
        self._consumed_codes.add(code)
        verifier = self._pending.pop(query_param(href, "state") or "", None)
        if verifier is None:
            raise ProviderError("OAuth state mismatch", code="invalid_state")

        resp = await asyncio.to_thread(exchange_code_for_tokens, self.cfg, code=code, code_verifier=verifier)
        self._store(resp.access_token, resp.id_token, resp.refresh_token, resp.expires_in, hosted=True)
        logger.info("Hosted UI sign-in completed")

    async def _refresh(self, tokens: AuthTokens) -> Optional[AuthTokens]:
        if not tokens.refresh_token:
            logger.info("Access token expired and no refresh token; session ended")
            self.store.clear()
            return None
        try:
            result = await asyncio.to_thread(refresh_tokens, self.cfg, tokens.refresh_token)
        except AuthenticationError as e:
            logger.info("Refresh token rejected; session ended: %s", e)
            self.store.clear()
            return None
        return self._store(
            result.access_token,
            result.id_token,
            result.refresh_token,
            result.expires_in,
            hosted=None,
            previous_refresh_token=tokens.refresh_token,
        )
