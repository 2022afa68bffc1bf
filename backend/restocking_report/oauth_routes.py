from __future__ import annotations

import hashlib
import hmac
import os
import urllib.parse
from datetime import datetime, timezone
from typing import Any, Dict, List, Tuple

import requests
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from .db import get_session
from .logs import log_event
from .session_store import get_shop_session, save_shop_session
from .shopify_auth import client_creds, normalize_shop_domain

router = APIRouter()

DEFAULT_SCOPES = "read_orders,read_products,read_inventory"


def _base_url() -> str:
    base = (os.environ.get("BASE_URL") or "").strip()
    if not base:
        raise HTTPException(status_code=500, detail="BASE_URL not configured")
    return base.rstrip("/")


def _oauth_scopes() -> str:
    scopes = (os.environ.get("SHOPIFY_OAUTH_SCOPES") or DEFAULT_SCOPES).strip()
    # Shopify expects comma-separated
    return ",".join([s.strip() for s in scopes.split(",") if s.strip()])


def _state_secret() -> str:
    sec = (os.environ.get("OAUTH_STATE_SECRET") or "").strip()
    if sec:
        return sec
    _, client_secret = client_creds()
    return client_secret


def _now_ts() -> int:
    return int(datetime.now(timezone.utc).timestamp())


def sign_state(payload: Dict[str, Any]) -> str:
    return jwt.encode(payload, _state_secret(), algorithm="HS256")


def verify_state(token: str) -> Dict[str, Any]:
    try:
        return jwt.decode(token, _state_secret(), algorithms=["HS256"])
    except JWTError:
        raise HTTPException(status_code=400, detail="invalid state")


def canonical_hmac_message(qp: List[Tuple[str, str]]) -> str:
    keep = [(k, v) for (k, v) in qp if k not in ("hmac", "signature")]
    keep.sort(key=lambda kv: (kv[0], kv[1]))
    return urllib.parse.urlencode(keep, doseq=True)


def verify_shopify_hmac(qp: List[Tuple[str, str]], client_secret: str) -> bool:
    provided = ""
    for k, v in qp:
        if k == "hmac":
            provided = (v or "").strip().lower()
    if not provided:
        return False
    msg = canonical_hmac_message(qp)
    expected = hmac.new(client_secret.encode("utf-8"), msg.encode("utf-8"), hashlib.sha256).hexdigest().lower()
    return hmac.compare_digest(expected, provided)


@router.get("/api/shopify/oauth/status")
async def oauth_status(
    shop: str = Query(...),
    db: AsyncSession = Depends(get_session),
):
    shop_norm = normalize_shop_domain(shop)
    rec = await get_shop_session(db, shop_norm)
    if not rec:
        return {"connected": False, "shop": shop_norm, "scopes": None}
    return {
        "connected": bool((rec.access_token or "").strip()),
        "shop": rec.shop,
        "scopes": rec.scopes,
    }


@router.get("/api/shopify/oauth/start")
async def oauth_start(shop: str = Query(..., description="Shop domain, e.g. example.myshopify.com")):
    shop_norm = normalize_shop_domain(shop)
    cid, _ = client_creds()
    now = _now_ts()
    state = sign_state(
        {
            "shop": shop_norm,
            "nonce": os.urandom(16).hex(),
            "iat": now,
            "exp": now + 10 * 60,
        }
    )
    qs = urllib.parse.urlencode(
        {
            "client_id": cid,
            "scope": _oauth_scopes(),
            "redirect_uri": f"{_base_url()}/api/shopify/oauth/callback",
            "state": state,
        }
    )
    return RedirectResponse(url=f"https://{shop_norm}/admin/oauth/authorize?{qs}", status_code=302)


@router.get("/api/shopify/oauth/callback")
async def oauth_callback(
    request: Request,
    state: str = Query(...),
    shop: str = Query(...),
    code: str = Query(...),
    db: AsyncSession = Depends(get_session),
):
    shop_norm = normalize_shop_domain(shop)
    st = verify_state(state)
    shop_in_state = normalize_shop_domain(str(st.get("shop") or ""))
    if not hmac.compare_digest(shop_in_state, shop_norm):
        raise HTTPException(status_code=400, detail="state/shop mismatch")

    cid, client_secret = client_creds()
    qp = [(k, str(v)) for (k, v) in request.query_params.multi_items()]
    if not verify_shopify_hmac(qp, client_secret):
        return JSONResponse({"error": "invalid_hmac", "shop": shop_norm}, status_code=400)

    try:
        resp = requests.post(
            f"https://{shop_norm}/admin/oauth/access_token",
            json={"client_id": cid, "client_secret": client_secret, "code": code},
            timeout=30,
        )
        resp.raise_for_status()
        data = resp.json() if resp.content else {}
    except (requests.RequestException, ValueError) as e:
        log_event("shopify_oauth", event="token_exchange_failed", shop=shop_norm, error=str(e))
        return JSONResponse({"error": "token_exchange_failed", "shop": shop_norm}, status_code=502)

    access_token = (data.get("access_token") or "").strip()
    if not access_token:
        return JSONResponse({"error": "token_exchange_failed", "shop": shop_norm, "missing": "access_token"}, status_code=502)

    await save_shop_session(db, shop_norm, access_token=access_token, scopes=data.get("scope") or "")
    log_event("shopify_oauth", event="installed", shop=shop_norm)

    return RedirectResponse(url=f"/?shop={urllib.parse.quote(shop_norm)}", status_code=302)
