import os
from typing import Any, Dict, Optional

import httpx
from fastapi import HTTPException

from .logs import log_event

SHOPIFY_API_VERSION = os.environ.get("SHOPIFY_API_VERSION", "2025-01").strip()
SHOPIFY_TIMEOUT_SECONDS = float(os.environ.get("SHOPIFY_TIMEOUT_SECONDS", "30").strip() or 30)


def shopify_graphql_url(shop: str, api_version: str = SHOPIFY_API_VERSION) -> str:
    return f"https://{shop}/admin/api/{api_version}/graphql.json"


class AdminGraphQL:
    """Admin API client bound to one shop and its access token.

    Every failure is raised as ``HTTPException``: 429 when Shopify is
    throttling, 502 for transport errors, non-2xx responses and GraphQL
    ``errors``. Callers that want partial results catch it themselves.
    """

    def __init__(
        self,
        shop: str,
        access_token: str,
        *,
        api_version: str = SHOPIFY_API_VERSION,
        timeout: float = SHOPIFY_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.shop = shop
        self.access_token = access_token
        self.api_version = api_version
        self.timeout = timeout
        self.transport = transport

    @property
    def url(self) -> str:
        return shopify_graphql_url(self.shop, self.api_version)

    async def graphql(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "X-Shopify-Access-Token": self.access_token,
        }
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                r = await client.post(self.url, headers=headers, json={"query": query, "variables": variables or {}})
            except httpx.HTTPError as e:
                log_event("shopify_client", event="transport_error", shop=self.shop, error=str(e))
                raise HTTPException(status_code=502, detail=f"Shopify request failed: {e}")

        if r.status_code in (429, 430, 503):
            raise HTTPException(status_code=429, detail="Shopify API is throttling requests. Please try again shortly.")
        if r.status_code >= 400:
            raise HTTPException(status_code=502, detail=f"Shopify request failed: HTTP {r.status_code}")
        try:
            data = r.json()
        except ValueError:
            raise HTTPException(status_code=502, detail="Shopify returned a non-JSON response")
        if not isinstance(data, dict):
            raise HTTPException(status_code=502, detail="Shopify returned an unexpected payload")

        errs = data.get("errors")
        if errs:
            is_throttled = isinstance(errs, list) and any(
                ((e.get("extensions") or {}).get("code") or "").upper() == "THROTTLED"
                for e in errs
                if isinstance(e, dict)
            )
            if is_throttled:
                raise HTTPException(status_code=429, detail="Shopify API is throttling requests. Please try again shortly.")
            raise HTTPException(status_code=502, detail=f"Shopify GraphQL errors: {errs}")
        return data.get("data") or {}
