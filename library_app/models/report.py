# library_app/models/report.py
from pydantic import BaseModel, Field
from typing import List
from datetime import datetime

from library_app.models.enum import PaymentStatus


class HistorySummary(BaseModel):
    """Counts and fine totals over one member's loans."""
    total: int = 0
    active: int = 0        # borrowed or overdue
    returned: int = 0
    overdue: int = 0
    lost: int = 0
    total_fines: float = 0.0
    unpaid_fines: float = 0.0


class FineReportGroup(BaseModel):
    payment_status: PaymentStatus
    count: int
    total_amount: float

    class Config:
        use_enum_values = True


class FineReport(BaseModel):
    start_date: datetime
    end_date: datetime
    groups: List[FineReportGroup] = Field(default_factory=list)
    total_count: int = 0
    total_amount: float = 0.0
