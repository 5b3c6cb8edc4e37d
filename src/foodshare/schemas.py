"""Pydantic schemas for requests and responses."""

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

from .database import CATEGORIES, DEFAULT_CATEGORY


def to_naive_utc(value: datetime) -> datetime:
    """Offset-aware timestamps are converted to UTC and stored naive."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class UserCreate(BaseModel):
    """Request body for registering a new user."""

    name: str = Field(min_length=1, max_length=120)
    email: EmailStr
    password: str = Field(min_length=6, max_length=256)
    role: str
    location: Optional[str] = Field(None, max_length=255)


class UserLogin(BaseModel):
    """Request body for user login."""

    email: EmailStr
    password: str


class UserOut(BaseModel):
    """Public view of a user; never includes the password hash."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
    role: str
    location: Optional[str] = None
    created_at: datetime


class TokenResponse(BaseModel):
    """Bearer token issued on register/login."""

    access_token: str
    token_type: str = "bearer"
    user: UserOut


class _ListingFields(BaseModel):
    @field_validator("category", check_fields=False)
    @classmethod
    def _known_category(cls, value):
        if value is not None and value not in CATEGORIES:
            raise ValueError(f"category must be one of: {', '.join(CATEGORIES)}")
        return value

    @field_validator("description", "quantity", "location", check_fields=False)
    @classmethod
    def _not_blank(cls, value):
        if value is not None:
            value = value.strip()
            if not value:
                raise ValueError("must not be blank")
        return value

    @field_validator("mfg_time", "expiry_time", check_fields=False)
    @classmethod
    def _naive_utc(cls, value):
        return to_naive_utc(value) if value is not None else value


class ListingCreate(_ListingFields):
    """Fields a donor supplies when posting a listing."""

    category: str = DEFAULT_CATEGORY
    description: str
    quantity: str = Field(max_length=120)
    location: str = Field(max_length=255)
    mfg_time: datetime
    expiry_time: datetime
    max_claims: int = Field(ge=1)

    @model_validator(mode="after")
    def _expiry_after_mfg(self):
        if self.expiry_time <= self.mfg_time:
            raise ValueError("expiry_time must be after mfg_time")
        return self


class ListingUpdate(_ListingFields):
    """Partial edit of a listing; ``None`` leaves a field unchanged."""

    category: Optional[str] = None
    description: Optional[str] = None
    quantity: Optional[str] = Field(None, max_length=120)
    location: Optional[str] = Field(None, max_length=255)
    mfg_time: Optional[datetime] = None
    expiry_time: Optional[datetime] = None
    max_claims: Optional[int] = Field(None, ge=1)


class ClaimOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    receiver_id: int
    receiver_name: str
    claimed_at: datetime


class ListingOut(BaseModel):
    """Serialized listing with an externally fetchable image URL."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    donor_id: int
    donor_name: str
    category: str
    description: str
    quantity: str
    location: str
    image_url: str
    mfg_time: datetime
    expiry_time: datetime
    max_claims: int
    claims: List[ClaimOut]
    created_at: datetime
    updated_at: datetime


class ClaimResponse(BaseModel):
    message: str
    listing: ListingOut


class MessageResponse(BaseModel):
    message: str


class UserCounts(BaseModel):
    total: int


class ListingCounts(BaseModel):
    total: int
    available: int


class DashboardResponse(BaseModel):
    """Aggregate counts for the admin dashboard."""

    users: UserCounts
    listings: ListingCounts
