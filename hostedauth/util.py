from __future__ import annotations

import base64
import hashlib
import os
from typing import Optional
from urllib.parse import parse_qs, urlsplit


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def random_token(nbytes: int = 32) -> str:
    return b64url(os.urandom(nbytes))


def pkce_challenge(verifier: str) -> str:
    """
    Generate PKCE challenge from verifier using SHA256.
    """
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return b64url(digest)


def origin_of(url: str) -> str:
    parts = urlsplit(url or "")
    if not parts.scheme or not parts.netloc:
        return ""
    return f"{parts.scheme}://{parts.netloc}"


def path_of(url: str) -> str:
    return urlsplit(url or "").path or "/"


def query_param(url: str, name: str) -> Optional[str]:
    values = parse_qs(urlsplit(url or "").query).get(name)
    if not values:
        return None
    return values[0]


def normalize_path(path: str | None, default: str = "/") -> str:
    """
    Normalize a route path for prefix matching: leading slash, no trailing slash.
    """
    p = (path or "").strip()
    if not p:
        return default
    if not p.startswith("/"):
        p = "/" + p
    if len(p) > 1:
        p = p.rstrip("/") or "/"
    return p
