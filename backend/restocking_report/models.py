from sqlalchemy import Column, DateTime, JSON, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB

from .db import Base


def _json_type():
    """JSON type compatible with Postgres and SQLite."""
    return JSON().with_variant(JSONB, "postgresql")


class ShopSession(Base):
    """
    Offline access token for one installed shop.

    Written by the OAuth callback, read by `authenticate_admin` whenever a
    session token names the shop.
    """

    __tablename__ = "shop_sessions"

    shop = Column(String(255), primary_key=True)
    access_token = Column(Text, nullable=False)
    scopes = Column(_json_type(), nullable=True)
    installed_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
