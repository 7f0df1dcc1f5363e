# library_app/models/loan.py
import math
from typing import Optional, List
from beanie import Document, PydanticObjectId
from pydantic import BaseModel, Field, field_validator
from pymongo import IndexModel, ASCENDING, DESCENDING
from datetime import datetime, timedelta

from library_app.core.utils import utcnow, as_utc
from library_app.models.book import BookRef
from library_app.models.member import MemberRef
from library_app.models.enum import (
    LoanStatus, BookCondition, FineReason, PaymentStatus, PaymentMethod,
    OPEN_STATUSES, TERMINAL_STATUSES, CHECKOUT_CONDITIONS,
)


class FineInfo(BaseModel):
    amount: float = Field(default=0.0, ge=0)
    reason: Optional[FineReason] = None
    payment_status: PaymentStatus = PaymentStatus.UNPAID
    assessed_date: Optional[datetime] = None
    paid_date: Optional[datetime] = None
    payment_method: Optional[PaymentMethod] = None

    class Config:
        use_enum_values = True

    @field_validator("assessed_date", "paid_date")
    @classmethod
    def _naive_utc(cls, value):
        return as_utc(value)

    @property
    def is_outstanding(self) -> bool:
        return self.amount > 0 and self.payment_status == PaymentStatus.UNPAID


class RenewalEntry(BaseModel):
    renewed_at: datetime
    previous_due_date: datetime
    new_due_date: datetime

    @field_validator("renewed_at", "previous_due_date", "new_due_date")
    @classmethod
    def _naive_utc(cls, value):
        return as_utc(value)


class ConditionInfo(BaseModel):
    checked_out_condition: BookCondition = BookCondition.GOOD
    returned_condition: Optional[BookCondition] = None

    class Config:
        use_enum_values = True


def effective_status(status: LoanStatus, due_date: datetime, now: datetime) -> LoanStatus:
    """Status the loan should have at `now`; only borrowed -> overdue is derived."""
    if status == LoanStatus.BORROWED and as_utc(now) > as_utc(due_date):
        return LoanStatus.OVERDUE
    return LoanStatus(status)


class Loan(Document):
    """One checkout, from borrow to resolution. Never deleted."""
    transaction_id: str
    member_id: PydanticObjectId
    book_id: PydanticObjectId
    borrow_date: datetime
    due_date: datetime
    return_date: Optional[datetime] = None
    status: LoanStatus = LoanStatus.BORROWED
    fine: FineInfo = Field(default_factory=FineInfo)
    renewal_count: int = Field(default=0, ge=0)
    renewal_history: List[RenewalEntry] = Field(default_factory=list)
    book_condition: ConditionInfo = Field(default_factory=ConditionInfo)
    notes: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "loans"
        indexes = [
            IndexModel([("transaction_id", ASCENDING)], name="loan_transaction_unique_index", unique=True),
            IndexModel([("member_id", ASCENDING), ("status", ASCENDING)], name="loan_member_status_index"),
            IndexModel([("book_id", ASCENDING), ("status", ASCENDING)], name="loan_book_status_index"),
            IndexModel([("due_date", ASCENDING), ("status", ASCENDING)], name="loan_due_status_index"),
            IndexModel([("borrow_date", DESCENDING)], name="loan_borrow_date_index"),
        ]

    @field_validator("borrow_date", "due_date", "return_date", "created_at", "updated_at")
    @classmethod
    def _naive_utc(cls, value):
        return as_utc(value)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    def is_overdue(self, now: Optional[datetime] = None) -> bool:
        now = as_utc(now) or utcnow()
        return self.status != LoanStatus.RETURNED and self.status != LoanStatus.LOST and now > self.due_date

    def days_remaining(self, now: Optional[datetime] = None) -> int:
        """Whole days until due (negative once overdue); 0 after resolution."""
        if self.is_terminal:
            return 0
        now = as_utc(now) or utcnow()
        return math.ceil((self.due_date - now) / timedelta(days=1))

    def borrow_duration(self, now: Optional[datetime] = None) -> int:
        end = self.return_date or as_utc(now) or utcnow()
        return max(0, (end - self.borrow_date).days)

    def current_status(self, now: Optional[datetime] = None) -> LoanStatus:
        return effective_status(self.status, self.due_date, as_utc(now) or utcnow())

    # --- Pydantic Schemas ---
    class Create(BaseModel):
        user_id: str = Field(..., description="Member ObjectId string")
        book_id: str = Field(..., description="Book ObjectId string")
        due_date: Optional[datetime] = None
        book_condition: BookCondition = BookCondition.GOOD
        notes: Optional[str] = Field(None, max_length=500)

        @field_validator("book_condition")
        @classmethod
        def _checkout_condition(cls, value):
            if value not in CHECKOUT_CONDITIONS:
                raise ValueError("checkout condition must be excellent, good, fair or poor")
            return value

    class Update(BaseModel):
        due_date: Optional[datetime] = None
        notes: Optional[str] = Field(None, max_length=500)

    class Return(BaseModel):
        book_condition: Optional[BookCondition] = None
        notes: Optional[str] = Field(None, max_length=500)

    class Renew(BaseModel):
        extension_days: Optional[int] = Field(None, ge=1)

    class PayFine(BaseModel):
        payment_method: PaymentMethod
        amount: Optional[float] = Field(None, gt=0)

    # --- Response Schema ---
    class Response(BaseModel):
        id: str
        transaction_id: str
        user_id: str
        book_id: str
        user: Optional[MemberRef] = None
        book: Optional[BookRef] = None
        borrow_date: datetime
        due_date: datetime
        return_date: Optional[datetime] = None
        status: LoanStatus
        fine: FineInfo
        renewal_count: int
        renewal_history: List[RenewalEntry]
        book_condition: ConditionInfo
        notes: Optional[str] = None
        days_remaining: int
        borrow_duration: int
        is_overdue: bool
        created_at: datetime
        updated_at: datetime

        class Config:
            from_attributes = True
            use_enum_values = True
