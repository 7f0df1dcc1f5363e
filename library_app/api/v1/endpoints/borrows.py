# library_app/api/v1/endpoints/borrows.py
from typing import List, Optional
from datetime import datetime
from fastapi import APIRouter, Body, Path, Query, Request, status
import logging

from library_app.core import lifecycle, reporting
from library_app.core.rate_limiter import limiter
from library_app.core.responses import success_response
from library_app.core.utils import utcnow, storage_guard
from library_app.models.book import Book, BookRef
from library_app.models.member import Member, MemberRef
from library_app.models.loan import Loan
from library_app.models.enum import LoanStatus

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Borrows"])


# --- Helper: Loan document -> response schema ---
def validate_loan_response(
    loan: Loan,
    now: Optional[datetime] = None,
    member: Optional[Member] = None,
    book: Optional[Book] = None,
) -> Loan.Response:
    now = now or utcnow()
    data = loan.model_dump(exclude={"id", "member_id", "book_id", "revision_id"})
    data.update(
        id=str(loan.id),
        user_id=str(loan.member_id),
        book_id=str(loan.book_id),
        user=MemberRef(id=str(member.id), name=member.name, email=member.email) if member else None,
        book=BookRef(id=str(book.id), title=book.title, author=book.author, isbn=book.isbn) if book else None,
        days_remaining=loan.days_remaining(now),
        borrow_duration=loan.borrow_duration(now),
        is_overdue=loan.is_overdue(now),
    )
    return Loan.Response.model_validate(data)


async def populate_loans(loans: List[Loan], now: Optional[datetime] = None) -> List[Loan.Response]:
    """Attach member and book summaries, one query per collection."""
    member_ids = list({loan.member_id for loan in loans})
    book_ids = list({loan.book_id for loan in loans})
    with storage_guard("populate loans"):
        members = {m.id: m for m in await Member.find({"_id": {"$in": member_ids}}).to_list()} if member_ids else {}
        books = {b.id: b for b in await Book.find({"_id": {"$in": book_ids}}).to_list()} if book_ids else {}
    return [
        validate_loan_response(loan, now, members.get(loan.member_id), books.get(loan.book_id))
        for loan in loans
    ]


async def populate_loan(loan: Loan, now: Optional[datetime] = None) -> Loan.Response:
    return (await populate_loans([loan], now))[0]


# --- GET / ---
@router.get("/", summary="List borrow records")
@limiter.limit("120/minute")
async def read_borrow_records(
    request: Request,
    user_id: Optional[str] = Query(None),
    book_id: Optional[str] = Query(None),
    status_filter: Optional[LoanStatus] = Query(None, alias="status"),
    from_date: Optional[datetime] = Query(None),
    to_date: Optional[datetime] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    sort_by: str = Query("borrow_date"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
):
    now = utcnow()
    loans, pagination = await reporting.list_loans(
        member_id=user_id, book_id=book_id, status=status_filter,
        from_date=from_date, to_date=to_date, page=page, limit=limit,
        sort_by=sort_by, sort_order=sort_order, now=now,
    )
    data = await populate_loans(loans, now)
    return success_response(200, "Borrow records retrieved successfully", data, {"pagination": pagination})


# --- GET /overdue ---
@router.get("/overdue", summary="List overdue borrow records")
@limiter.limit("120/minute")
async def read_overdue_records(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
):
    now = utcnow()
    loans, pagination = await reporting.list_overdue(page, limit, now)
    data = await populate_loans(loans, now)
    return success_response(200, "Overdue books retrieved successfully", data, {"pagination": pagination})


# --- GET /reports/fines ---
@router.get("/reports/fines", summary="Fines assessed in a period, grouped by payment status")
@limiter.limit("30/minute")
async def read_fine_report(
    request: Request,
    start_date: datetime = Query(...),
    end_date: datetime = Query(...),
):
    report = await reporting.fine_report(start_date, end_date)
    return success_response(200, "Fine report generated successfully", report)


# --- GET /user/{user_id} ---
@router.get("/user/{user_id}", summary="Borrowing history of one member")
@limiter.limit("120/minute")
async def read_user_history(request: Request, user_id: str = Path(...)):
    now = utcnow()
    member, loans, summary = await reporting.user_history(user_id, now)
    data = {
        "user": MemberRef(id=str(member.id), name=member.name, email=member.email),
        "borrow_stats": member.borrow_stats,
        "current_borrow_count": member.current_borrow_count,
        "summary": summary,
        "records": await populate_loans(loans, now),
    }
    return success_response(200, "User borrow history retrieved successfully", data)


# --- POST / (checkout) ---
@router.post("/", status_code=status.HTTP_201_CREATED, summary="Check out a book")
@limiter.limit("30/minute")
async def create_borrow_record(request: Request, borrow_in: Loan.Create = Body(...)):
    logger.info(f"Checkout requested: user '{borrow_in.user_id}' book '{borrow_in.book_id}'.")
    now = utcnow()
    loan = await lifecycle.checkout(
        borrow_in.user_id, borrow_in.book_id,
        due_date=borrow_in.due_date, condition=borrow_in.book_condition,
        notes=borrow_in.notes, now=now,
    )
    return success_response(201, "Book borrowed successfully", await populate_loan(loan, now))


# --- GET /{borrow_id} ---
@router.get("/{borrow_id}", summary="Get one borrow record")
@limiter.limit("120/minute")
async def read_borrow_record(request: Request, borrow_id: str = Path(...)):
    now = utcnow()
    loan = await lifecycle.fetch_loan(borrow_id, now)
    return success_response(200, "Borrow record retrieved successfully", await populate_loan(loan, now))


# --- PUT /{borrow_id} ---
@router.put("/{borrow_id}", summary="Update due date or notes")
@limiter.limit("60/minute")
async def update_borrow_record(request: Request, borrow_id: str = Path(...), update_in: Loan.Update = Body(...)):
    now = utcnow()
    loan = await lifecycle.update_loan(borrow_id, due_date=update_in.due_date, notes=update_in.notes, now=now)
    return success_response(200, "Borrow record updated successfully", await populate_loan(loan, now))


# --- POST /{borrow_id}/return ---
@router.post("/{borrow_id}/return", summary="Return a book (or report it lost)")
@limiter.limit("60/minute")
async def return_book(request: Request, borrow_id: str = Path(...), return_in: Optional[Loan.Return] = Body(None)):
    now = utcnow()
    return_in = return_in or Loan.Return()
    loan = await lifecycle.return_loan(borrow_id, condition=return_in.book_condition, notes=return_in.notes, now=now)
    message = "Book reported lost" if loan.status == LoanStatus.LOST else "Book returned successfully"
    return success_response(200, message, await populate_loan(loan, now))


# --- POST /{borrow_id}/renew ---
@router.post("/{borrow_id}/renew", summary="Extend the due date")
@limiter.limit("60/minute")
async def renew_book(request: Request, borrow_id: str = Path(...), renew_in: Optional[Loan.Renew] = Body(None)):
    now = utcnow()
    extension = renew_in.extension_days if renew_in else None
    loan = await lifecycle.renew(borrow_id, extension_days=extension, now=now)
    return success_response(200, "Book renewed successfully", await populate_loan(loan, now))


# --- POST /{borrow_id}/pay-fine ---
@router.post("/{borrow_id}/pay-fine", summary="Pay or waive the fine on a returned loan")
@limiter.limit("60/minute")
async def pay_fine(request: Request, borrow_id: str = Path(...), payment_in: Loan.PayFine = Body(...)):
    now = utcnow()
    loan = await lifecycle.pay_fine(borrow_id, payment_in.payment_method, amount=payment_in.amount, now=now)
    return success_response(200, "Fine paid successfully", await populate_loan(loan, now))
