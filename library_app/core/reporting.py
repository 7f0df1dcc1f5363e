# library_app/core/reporting.py
import logging
from datetime import datetime
from typing import List, Optional, Tuple

from pymongo import ASCENDING, DESCENDING

from library_app.core.exceptions import ValidationFailed
from library_app.core.lifecycle import flip_stale_loans, get_member_or_404
from library_app.core.utils import as_utc, utcnow, parse_object_id, pagination_meta, storage_guard
from library_app.models.enum import LoanStatus, PaymentStatus, OPEN_STATUSES
from library_app.models.loan import Loan
from library_app.models.member import Member
from library_app.models.report import (
    HistorySummary, FineReportGroup, FineReport,
)

logger = logging.getLogger(__name__)

SORTABLE_FIELDS = {"borrow_date", "due_date", "return_date", "status"}


async def list_overdue(page: int = 1, limit: int = 10, now: Optional[datetime] = None) -> Tuple[List[Loan], dict]:
    """Overdue loans, oldest due date first. Stale borrowed records are flipped first."""
    now = as_utc(now) or utcnow()
    await flip_stale_loans(now=now)
    query = {"status": LoanStatus.OVERDUE.value}
    with storage_guard("list overdue loans"):
        total = await Loan.get_motor_collection().count_documents(query)
        loans = await Loan.find(
            query, skip=(page - 1) * limit, limit=limit, sort=[("due_date", ASCENDING)]
        ).to_list()
    return loans, pagination_meta(total, page, limit)


async def list_loans(
    member_id: Optional[str] = None,
    book_id: Optional[str] = None,
    status: Optional[LoanStatus] = None,
    from_date: Optional[datetime] = None,
    to_date: Optional[datetime] = None,
    page: int = 1,
    limit: int = 10,
    sort_by: str = "borrow_date",
    sort_order: str = "desc",
    now: Optional[datetime] = None,
) -> Tuple[List[Loan], dict]:
    now = as_utc(now) or utcnow()
    if sort_by not in SORTABLE_FIELDS:
        raise ValidationFailed("Validation error", errors=[f"sort_by must be one of {sorted(SORTABLE_FIELDS)}"])
    from_date, to_date = as_utc(from_date), as_utc(to_date)
    if from_date and to_date and to_date <= from_date:
        raise ValidationFailed("Validation error", errors=["to_date must be after from_date"])

    scope = {}
    if member_id: scope["member_id"] = parse_object_id(member_id, "user ID")
    if book_id: scope["book_id"] = parse_object_id(book_id, "book ID")
    await flip_stale_loans(scope, now=now)

    query = dict(scope)
    if status: query["status"] = LoanStatus(status).value
    if from_date or to_date:
        query["borrow_date"] = {}
        if from_date: query["borrow_date"]["$gte"] = from_date
        if to_date: query["borrow_date"]["$lte"] = to_date

    direction = DESCENDING if sort_order == "desc" else ASCENDING
    with storage_guard("list loans"):
        total = await Loan.get_motor_collection().count_documents(query)
        loans = await Loan.find(
            query, skip=(page - 1) * limit, limit=limit, sort=[(sort_by, direction)]
        ).to_list()
    return loans, pagination_meta(total, page, limit)


def summarize(loans: List[Loan]) -> HistorySummary:
    summary = HistorySummary(total=len(loans))
    for loan in loans:
        status = LoanStatus(loan.status)
        if status in OPEN_STATUSES: summary.active += 1
        if status == LoanStatus.OVERDUE: summary.overdue += 1
        elif status == LoanStatus.RETURNED: summary.returned += 1
        elif status == LoanStatus.LOST: summary.lost += 1
        summary.total_fines += loan.fine.amount
        if loan.fine.is_outstanding:
            summary.unpaid_fines += loan.fine.amount
    summary.total_fines = round(summary.total_fines, 2)
    summary.unpaid_fines = round(summary.unpaid_fines, 2)
    return summary


async def user_history(member_id: str, now: Optional[datetime] = None) -> Tuple[Member, List[Loan], HistorySummary]:
    """Every loan of one member, newest first, with status counts and fine totals."""
    now = as_utc(now) or utcnow()
    member = await get_member_or_404(member_id)
    await flip_stale_loans({"member_id": member.id}, now=now)
    with storage_guard("load member history"):
        loans = await Loan.find(
            {"member_id": member.id}, sort=[("borrow_date", DESCENDING)]
        ).to_list()
    return member, loans, summarize(loans)


async def fine_report(start_date: datetime, end_date: datetime) -> FineReport:
    """Fines assessed inside [start_date, end_date], grouped by payment status."""
    start_date, end_date = as_utc(start_date), as_utc(end_date)
    if end_date <= start_date:
        raise ValidationFailed("Validation error", errors=["end_date must be after start_date"])
    pipeline = [
        {"$match": {
            "fine.amount": {"$gt": 0},
            "fine.assessed_date": {"$gte": start_date, "$lte": end_date},
        }},
        {"$group": {
            "_id": "$fine.payment_status",
            "count": {"$sum": 1},
            "total_amount": {"$sum": "$fine.amount"},
        }},
        {"$sort": {"_id": 1}},
    ]
    with storage_guard("fine report"):
        rows = await Loan.get_motor_collection().aggregate(pipeline).to_list(length=None)
    groups = [
        FineReportGroup(
            payment_status=PaymentStatus(row["_id"]),
            count=row["count"],
            total_amount=round(row["total_amount"], 2),
        )
        for row in rows
    ]
    logger.debug(f"Fine report {start_date:%Y-%m-%d}..{end_date:%Y-%m-%d}: {len(groups)} group(s).")
    return FineReport(
        start_date=start_date,
        end_date=end_date,
        groups=groups,
        total_count=sum(g.count for g in groups),
        total_amount=round(sum(g.total_amount for g in groups), 2),
    )
