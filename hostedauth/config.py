from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional, Tuple

from hostedauth.util import normalize_path, path_of

logger = logging.getLogger(__name__)

DEFAULT_CALLBACK_PATH = "/auth/callback"
DEFAULT_SCOPES = ("email", "openid", "profile")


@dataclass(frozen=True)
class AuthConfig:
    # Identity provider (Cognito user pool)
    region: str = "us-east-1"
    user_pool_id: Optional[str] = None
    client_id: Optional[str] = None
    identity_pool_id: Optional[str] = None

    # Hosted UI / OAuth
    oauth_domain: Optional[str] = None  # e.g. myapp.auth.us-east-1.amazoncognito.com
    redirect_sign_in_uris: Tuple[str, ...] = ()
    redirect_sign_out_uris: Tuple[str, ...] = ()
    scopes: Tuple[str, ...] = DEFAULT_SCOPES
    response_type: str = "code"

    # Application
    app_origin: str = "http://localhost:3000"

    # Development mode: the real provider is used only when explicitly opted in.
    use_real_provider: bool = False
    dev_auto_sign_in: bool = True  # Mock client starts with the dev user signed in

    @property
    def provider_configured(self) -> bool:
        """The user pool can be reached only with both pool and client identifiers."""
        return bool(self.user_pool_id and self.client_id)

    @property
    def dev_mode(self) -> bool:
        return not (self.use_real_provider and self.provider_configured)

    @property
    def hosted_ui_enabled(self) -> bool:
        return bool(self.oauth_domain and self.redirect_sign_in_uris)

    @property
    def redirect_sign_in_uri(self) -> Optional[str]:
        return self.redirect_sign_in_uris[0] if self.redirect_sign_in_uris else None

    @property
    def redirect_sign_out_uri(self) -> Optional[str]:
        return self.redirect_sign_out_uris[0] if self.redirect_sign_out_uris else None

    @property
    def callback_path(self) -> str:
        uri = self.redirect_sign_in_uri
        if not uri:
            return DEFAULT_CALLBACK_PATH
        p = normalize_path(path_of(uri))
        return DEFAULT_CALLBACK_PATH if p == "/" else p

    def is_callback(self, href: str) -> bool:
        """True when `href` is on the hosted UI callback route (or below it)."""
        p = normalize_path(path_of(href))
        cb = self.callback_path
        return p == cb or p.startswith(cb + "/")

    @property
    def idp_endpoint(self) -> str:
        return f"https://cognito-idp.{self.region}.amazonaws.com/"

    @property
    def oauth_base_url(self) -> Optional[str]:
        domain = (self.oauth_domain or "").strip().rstrip("/")
        if not domain:
            return None
        if domain.startswith("https://") or domain.startswith("http://"):
            return domain
        return f"https://{domain}"


def _parse_csv(value: str, *, lower: bool = False) -> Tuple[str, ...]:
    items = [x.strip() for x in (value or "").split(",")]
    if lower:
        items = [x.lower() for x in items]
    return tuple(x for x in items if x)


def _parse_bool(value: str | None, default: bool) -> bool:
    v = (value or "").strip().lower()
    if v in ("1", "true", "yes", "on"):
        return True
    if v in ("0", "false", "no", "off"):
        return False
    return default


def _env(name: str) -> Optional[str]:
    return (os.getenv(name, "") or "").strip() or None


@lru_cache(maxsize=1)
def load_auth_config() -> AuthConfig:
    """
    Load authentication configuration from environment variables.

    The real identity provider is used only when USE_AWS_AUTH is truthy and both
    COGNITO_USER_POOL_ID and COGNITO_CLIENT_ID are set. Anything else selects
    development mode.
    """
    app_origin = (_env("AUTH_APP_ORIGIN") or "http://localhost:3000").rstrip("/")

    sign_in_uris = _parse_csv(os.getenv("COGNITO_CALLBACK_URL", ""))
    if not sign_in_uris:
        sign_in_uris = (f"{app_origin}{DEFAULT_CALLBACK_PATH}",)
    sign_out_uris = _parse_csv(os.getenv("COGNITO_LOGOUT_URL", ""))
    if not sign_out_uris:
        sign_out_uris = (app_origin,)

    scopes = _parse_csv(os.getenv("COGNITO_SCOPES", ""), lower=True) or DEFAULT_SCOPES

    cfg = AuthConfig(
        region=_env("AUTH_REGION") or _env("AWS_REGION") or "us-east-1",
        user_pool_id=_env("COGNITO_USER_POOL_ID"),
        client_id=_env("COGNITO_CLIENT_ID"),
        identity_pool_id=_env("COGNITO_IDENTITY_POOL_ID"),
        oauth_domain=_env("COGNITO_DOMAIN"),
        redirect_sign_in_uris=sign_in_uris,
        redirect_sign_out_uris=sign_out_uris,
        scopes=scopes,
        response_type=(_env("COGNITO_RESPONSE_TYPE") or "code").lower(),
        app_origin=app_origin,
        use_real_provider=_parse_bool(os.getenv("USE_AWS_AUTH"), False),
        dev_auto_sign_in=_parse_bool(os.getenv("AUTH_DEV_AUTO_SIGN_IN"), True),
    )
    if cfg.use_real_provider and not cfg.provider_configured:
        logger.warning(
            "USE_AWS_AUTH is set but COGNITO_USER_POOL_ID/COGNITO_CLIENT_ID are missing; using development mode"
        )
    return cfg
