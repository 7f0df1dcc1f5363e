# library_app/models/member.py
import math
import secrets
from typing import Optional, List
from beanie import Document, PydanticObjectId
from pydantic import BaseModel, Field, EmailStr, field_validator, model_validator
from pymongo import IndexModel, ASCENDING, DESCENDING
from datetime import datetime, timedelta

from library_app.core import config
from library_app.core.utils import utcnow, as_utc
from library_app.models.enum import MembershipType


def generate_member_code() -> str:
    return "LIB-U" + secrets.token_hex(3).upper()


class BorrowStats(BaseModel):
    """Cumulative counters; moved only by the lifecycle engine."""
    total_borrowed: int = Field(default=0, ge=0)
    total_returned: int = Field(default=0, ge=0)
    fines_paid: float = Field(default=0.0, ge=0)
    fines_outstanding: float = Field(default=0.0, ge=0)
    last_borrow_date: Optional[datetime] = None

    @field_validator("last_borrow_date")
    @classmethod
    def _naive_utc(cls, value):
        return as_utc(value)


class Member(Document):
    member_code: str = Field(default_factory=generate_member_code)
    name: str = Field(..., min_length=1, max_length=200)
    email: EmailStr
    phone: Optional[str] = None
    membership_type: MembershipType = Field(default=MembershipType.REGULAR)
    membership_start: datetime = Field(default_factory=utcnow)
    membership_expiry: Optional[datetime] = None
    is_active: bool = Field(default=True)
    open_loans: List[PydanticObjectId] = Field(default_factory=list)
    borrow_stats: BorrowStats = Field(default_factory=BorrowStats)
    notes: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "members"
        indexes = [
            IndexModel([("member_code", ASCENDING)], name="member_code_unique_index", unique=True),
            IndexModel([("email", ASCENDING)], name="member_email_unique_index", unique=True),
            IndexModel([("is_active", ASCENDING)], name="member_is_active_index"),
            IndexModel([("created_at", DESCENDING)], name="member_created_at_index"),
        ]

    @field_validator("email")
    @classmethod
    def _lower_email(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("membership_start", "membership_expiry", "created_at", "updated_at")
    @classmethod
    def _naive_utc(cls, value):
        return as_utc(value)

    @model_validator(mode="before")
    @classmethod
    def _default_expiry(cls, data):
        if isinstance(data, dict) and data.get("membership_expiry") is None:
            start = as_utc(data.get("membership_start")) or utcnow()
            data = {
                **data,
                "membership_start": start,
                "membership_expiry": start + timedelta(days=config.MEMBERSHIP_DAYS),
            }
        return data

    def is_membership_valid(self, now: Optional[datetime] = None) -> bool:
        now = as_utc(now) or utcnow()
        return self.is_active and now < self.membership_expiry

    def membership_days_remaining(self, now: Optional[datetime] = None) -> int:
        now = as_utc(now) or utcnow()
        if not self.is_membership_valid(now):
            return 0
        return math.ceil((self.membership_expiry - now) / timedelta(days=1))

    @property
    def current_borrow_count(self) -> int:
        return len(self.open_loans)

    # --- Pydantic Schemas ---
    class Create(BaseModel):
        name: str = Field(..., min_length=1, max_length=200)
        email: EmailStr
        phone: Optional[str] = Field(None, max_length=30)
        membership_type: MembershipType = MembershipType.REGULAR
        membership_expiry: Optional[datetime] = None
        notes: Optional[str] = Field(None, max_length=500)

    class Update(BaseModel):
        name: Optional[str] = Field(None, min_length=1, max_length=200)
        email: Optional[EmailStr] = None
        phone: Optional[str] = Field(None, max_length=30)
        membership_type: Optional[MembershipType] = None
        is_active: Optional[bool] = None
        notes: Optional[str] = Field(None, max_length=500)

    class RenewMembership(BaseModel):
        extension_days: int = Field(default=365, ge=1, le=3650)

    class Response(BaseModel):
        id: str
        member_code: str
        name: str
        email: EmailStr
        phone: Optional[str] = None
        membership_type: MembershipType
        membership_start: datetime
        membership_expiry: datetime
        is_active: bool
        is_membership_valid: bool
        membership_days_remaining: int
        current_borrow_count: int
        open_loans: List[str]
        borrow_stats: BorrowStats
        notes: Optional[str] = None
        created_at: datetime
        updated_at: datetime

        class Config:
            from_attributes = True
            use_enum_values = True


class MemberRef(BaseModel):
    id: str
    name: str
    email: EmailStr
