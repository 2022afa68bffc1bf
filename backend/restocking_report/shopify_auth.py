from __future__ import annotations

import os
import re
import urllib.parse
from typing import Any, Dict, Optional, Tuple

from fastapi import Depends, HTTPException, Request
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from .db import get_session
from .session_store import get_shop_session
from .shopify_client import AdminGraphQL

_SHOP_RE = re.compile(r"([a-z0-9][a-z0-9-]*\.myshopify\.com)")


def normalize_shop_domain(raw: str) -> str:
    """Bare ``<name>.myshopify.com`` host out of whatever was pasted (URL, admin link, doubled suffix)."""
    value = (raw or "").strip().lower()
    if not value:
        raise HTTPException(status_code=400, detail="missing shop")

    try:
        hostname = urllib.parse.urlsplit(value if "://" in value else f"//{value}").hostname or ""
    except ValueError:
        hostname = ""

    for candidate in (hostname, value):
        found = _SHOP_RE.search(candidate)
        if found:
            return found.group(1)
    raise HTTPException(status_code=400, detail="invalid shop (expected *.myshopify.com)")


def client_creds() -> Tuple[str, str]:
    cid = (os.environ.get("SHOPIFY_CLIENT_ID") or "").strip()
    sec = (os.environ.get("SHOPIFY_CLIENT_SECRET") or "").strip()
    if not cid or not sec:
        raise HTTPException(status_code=500, detail="SHOPIFY_CLIENT_ID/SHOPIFY_CLIENT_SECRET not configured")
    return cid, sec


def custom_app_credentials() -> Optional[Tuple[str, str]]:
    """(shop, token) for a custom app installed straight from the Shopify admin."""
    domain = (os.environ.get("SHOPIFY_STORE_DOMAIN") or "").strip()
    token = (os.environ.get("SHOPIFY_ACCESS_TOKEN") or "").strip()
    if not domain or not token:
        return None
    return normalize_shop_domain(domain), token


def decode_session_token(token: str) -> Dict[str, Any]:
    """Verify an App Bridge session token (HS256, signed with the client secret)."""
    cid, secret = client_creds()
    try:
        return jwt.decode(token, secret, algorithms=["HS256"], audience=cid)
    except JWTError:
        raise HTTPException(status_code=401, detail="invalid session token")


def shop_from_claims(claims: Dict[str, Any]) -> str:
    dest = str(claims.get("dest") or "")
    if not dest:
        raise HTTPException(status_code=401, detail="session token has no dest")
    return normalize_shop_domain(dest)


def _session_token_from_request(request: Request) -> Optional[str]:
    auth = (request.headers.get("Authorization") or "").strip()
    if auth.lower().startswith("bearer "):
        return auth[7:].strip() or None
    return (request.query_params.get("id_token") or "").strip() or None


async def authenticate_admin(request: Request, db: AsyncSession = Depends(get_session)) -> AdminGraphQL:
    """Resolve the Admin API client for the shop behind this request.

    A session token wins; the shop it names must have completed OAuth.
    Without one, fall back to the custom-app credentials from the environment.
    """
    token = _session_token_from_request(request)
    if token:
        shop = shop_from_claims(decode_session_token(token))
        stored = await get_shop_session(db, shop)
        if not stored or not (stored.access_token or "").strip():
            raise HTTPException(status_code=401, detail=f"app not installed for {shop}")
        return AdminGraphQL(shop, stored.access_token)

    creds = custom_app_credentials()
    if creds:
        return AdminGraphQL(*creds)
    raise HTTPException(status_code=401, detail="missing session token")
