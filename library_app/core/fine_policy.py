# library_app/core/fine_policy.py
"""
Fine calculation. Everything here is a pure function of the loan's dates and
status; callers supply ``end_date`` (the return date, or "now" for an open
loan) so nothing reads the clock.

Two daily-rate formulas exist and exactly one is active per deployment,
selected by ``FINE_POLICY``:

* ``flat``: ``days_overdue * rate``
* ``progressive``: days 1-7 at ``rate``, days 8-14 at ``1.5 * rate``, the
  remainder at ``2 * rate``

A lost copy is always charged the flat ``LOST_BOOK_FEE`` instead, however
late it is.
"""
import math
from datetime import datetime, timedelta
from typing import NamedTuple, Optional

from library_app.core import config
from library_app.core.utils import as_utc
from library_app.models.enum import LoanStatus, BookCondition, FineReason

FLAT = "flat"
PROGRESSIVE = "progressive"

# (days in tier, multiplier); the last tier is open-ended
PROGRESSIVE_TIERS = ((7, 1.0), (7, 1.5), (None, 2.0))


class FineAssessment(NamedTuple):
    amount: float
    reason: Optional[FineReason]


def days_overdue(due_date: datetime, end_date: datetime) -> int:
    """Started days past due; 0 when returned on or before the due date."""
    late_by = as_utc(end_date) - as_utc(due_date)
    if late_by <= timedelta(0):
        return 0
    return math.ceil(late_by / timedelta(days=1))


def flat_fine(days: int, rate: float) -> float:
    return round(max(0, days) * rate, 2)


def progressive_fine(days: int, rate: float) -> float:
    remaining = max(0, days)
    total = 0.0
    for tier_days, multiplier in PROGRESSIVE_TIERS:
        if remaining <= 0:
            break
        charged = remaining if tier_days is None else min(remaining, tier_days)
        total += charged * rate * multiplier
        remaining -= charged
    return round(total, 2)


def calculate_fine(
    status: LoanStatus,
    due_date: datetime,
    end_date: datetime,
    rate: Optional[float] = None,
    policy: Optional[str] = None,
    lost_fee: Optional[float] = None,
) -> float:
    """Fine owed for lateness (or loss) alone, rounded to cents, never negative."""
    if status == LoanStatus.LOST:
        fee = config.LOST_BOOK_FEE if lost_fee is None else lost_fee
        return round(max(0.0, fee), 2)

    days = days_overdue(due_date, end_date)
    if days == 0:
        return 0.0

    rate = config.FINE_RATE_PER_DAY if rate is None else rate
    policy = (policy or config.FINE_POLICY).lower()
    if policy == PROGRESSIVE:
        amount = progressive_fine(days, rate)
    elif policy == FLAT:
        amount = flat_fine(days, rate)
    else:
        raise ValueError(f"Unknown fine policy: {policy}")
    return max(0.0, amount)


def assess_return(
    status: LoanStatus,
    condition: Optional[BookCondition],
    due_date: datetime,
    returned_at: datetime,
    rate: Optional[float] = None,
    policy: Optional[str] = None,
    lost_fee: Optional[float] = None,
    damaged_fee: Optional[float] = None,
) -> FineAssessment:
    """Fine and reason attached to a loan at its return transition."""
    if status == LoanStatus.LOST:
        return FineAssessment(calculate_fine(status, due_date, returned_at, lost_fee=lost_fee), FineReason.LOST)

    amount = calculate_fine(status, due_date, returned_at, rate=rate, policy=policy)
    if condition == BookCondition.DAMAGED:
        surcharge = config.DAMAGED_BOOK_FEE if damaged_fee is None else damaged_fee
        return FineAssessment(round(amount + max(0.0, surcharge), 2), FineReason.DAMAGED)
    if amount > 0:
        return FineAssessment(amount, FineReason.LATE)
    return FineAssessment(0.0, None)
