"""
API Request and Response Schemas

This module defines all Pydantic models for API requests and responses.
Separated from endpoints to keep concerns separated and enable reuse.

Design Principles:
- Request models: Define input validation
- Response models: Define output structure
- Required-field checks for long_url / short_code are left to the registry
  so every missing-input case reports the same ValidationError
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from shortener.core.clock import as_utc
from shortener.core.validators import parse_expiry


class ExpiryField(BaseModel):
    """
    Shared expiry handling.

    The raw string is kept so responses can echo it exactly as sent;
    expiry_at is the parsed UTC instant handed to the registry.
    """
    expiry_date: Optional[str] = Field(
        None,
        description="ISO 8601 timestamp after which the link reports expired",
        examples=["2025-02-06T18:36:24.585Z"]
    )

    @field_validator("expiry_date")
    @classmethod
    def check_expiry_date(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            parse_expiry(value)
        return value

    @property
    def expiry_at(self) -> Optional[datetime]:
        if self.expiry_date is None:
            return None
        return parse_expiry(self.expiry_date)


class ShortenRequest(ExpiryField):
    """Request model for URL shortening endpoint."""
    long_url: Optional[str] = Field(None, description="The long URL to shorten")
    custom_code: Optional[str] = Field(None, description="Caller-chosen short code")


class ShortenResponse(BaseModel):
    """Response model for URL shortening endpoint."""
    short_code: str = Field(..., description="The short code")
    short_url: str = Field(..., description="The complete short URL")
    expiry_date: Optional[str] = Field(None, description="Expiry as sent by the caller")


class BulkShortenRequest(BaseModel):
    long_urls: Optional[list[str]] = Field(None, description="URLs to shorten")


class BulkEntry(BaseModel):
    original_url: str
    short_code: str


class BulkFailure(BaseModel):
    original_url: str
    error: str


class BulkShortenResponse(BaseModel):
    batch: list[BulkEntry] = Field(default_factory=list)
    errors: list[BulkFailure] = Field(default_factory=list)


class UpdateExpiryRequest(ExpiryField):
    pass


class UpdateExpiryResponse(BaseModel):
    short_code: str
    expiry_date: Optional[str] = None


class DeleteRequest(BaseModel):
    short_code: Optional[str] = None


class DeleteResponse(BaseModel):
    short_code: str
    message: str


class LinkRecord(BaseModel):
    """Full view of a stored link."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    original_url: str
    short_code: str
    owner_id: Optional[int] = None
    visit_count: int
    expiry_date: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    created_at: datetime
    last_accessed_at: Optional[datetime] = None

    @field_validator("expiry_date", "deleted_at", "created_at", "last_accessed_at")
    @classmethod
    def normalize_timezone(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value)


class StatsResponse(LinkRecord):
    """Response model for statistics endpoint."""
    expired: bool = False
