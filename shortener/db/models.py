"""
Database Models for URL Shortener Service

This module defines the SQLModel database schemas for:
- User: API-key holders and their tier (the access gate's records)
- ShortLink: Mapping between a short code and its original URL

Design Decisions:
- Soft delete: links are never removed, deleted_at marks them inactive
- Partial unique index on short_code among live rows, so a soft-deleted
  code can be issued again while live codes stay unique
- visit_count lives on the link row and is bumped by a conditional UPDATE
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Index, Integer, String, Text, text
from sqlmodel import Column, Field, SQLModel

from shortener.core.clock import as_utc, utcnow
from shortener.core.setting import Tier

LIVE_ROWS = text("deleted_at IS NULL")


class User(SQLModel, table=True):
    """
    Caller identity resolved from an API key.

    Fields:
    - api_key: Opaque secret presented in the X-API-Key header (unique)
    - tier: Service level gating bulk operations
    """
    __tablename__ = "users"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(sa_column=Column(String(100), nullable=False))
    api_key: str = Field(
        sa_column=Column(String(64), nullable=False, unique=True, index=True)
    )
    tier: str = Field(
        default=Tier.standard.value,
        sa_column=Column(String(20), nullable=False, default=Tier.standard.value)
    )
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False)
    )


class ShortLink(SQLModel, table=True):
    """
    Main table storing URL shortening mappings.

    Fields:
    - original_url: The long URL that was shortened (never updated in place)
    - short_code: Generated (6 chars) or custom code
    - owner_id: Optional reference to the creating user
    - visit_count: Successful redirects so far
    - expiry_date: Links past this instant resolve as expired
    - deleted_at: Soft-delete marker
    - created_at / last_accessed_at: Creation and last redirect time

    Indexes:
    - uq_short_links_live_code: short_code unique WHERE deleted_at IS NULL
    - short_code: plain index for lookups (covers deleted rows too)
    """
    __tablename__ = "short_links"
    __table_args__ = (
        Index(
            "uq_short_links_live_code",
            "short_code",
            unique=True,
            sqlite_where=LIVE_ROWS,
            postgresql_where=LIVE_ROWS,
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    original_url: str = Field(sa_column=Column(Text, nullable=False))
    short_code: str = Field(
        sa_column=Column(String(20), nullable=False, index=True),
        max_length=20
    )
    owner_id: Optional[int] = Field(default=None, foreign_key="users.id", index=True)
    visit_count: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    expiry_date: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    deleted_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True)
    )
    last_accessed_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True)
    )

    def is_expired(self, now: datetime) -> bool:
        expiry = as_utc(self.expiry_date)
        return expiry is not None and expiry < as_utc(now)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None
