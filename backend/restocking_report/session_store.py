from __future__ import annotations

from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import ShopSession


def split_scopes(raw: Optional[str]) -> List[str]:
    # Shopify returns granted scopes comma-separated
    return [s.strip() for s in (raw or "").split(",") if s.strip()]


async def get_shop_session(db: AsyncSession, shop: str) -> Optional[ShopSession]:
    return await db.scalar(select(ShopSession).where(ShopSession.shop == (shop or "").strip().lower()))


async def save_shop_session(
    db: AsyncSession,
    shop: str,
    *,
    access_token: str,
    scopes: str,
) -> ShopSession:
    shop_key = (shop or "").strip().lower()
    row = await get_shop_session(db, shop_key)
    if not row:
        row = ShopSession(shop=shop_key, access_token=access_token.strip(), scopes=split_scopes(scopes))
        db.add(row)
    else:
        row.access_token = access_token.strip()
        row.scopes = split_scopes(scopes)
    await db.commit()
    await db.refresh(row)
    return row
