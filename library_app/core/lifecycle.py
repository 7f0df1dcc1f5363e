# library_app/core/lifecycle.py
"""
Borrowing lifecycle engine.

Every operation touches up to three documents: the Loan, its Book and its
Member. MongoDB transactions are not assumed, so writes go out in a fixed
order and each write is a single conditional update:

* checkout: claim a copy on the Book (the availability check and the
  decrement in one update), insert the Loan, then update the Member. If the
  Loan insert fails the claimed copy is released again.
* renew / return / pay fine: the Loan first (guarded on its current state),
  then the Book, then the Member.

A crash between two of these writes leaves the later counters behind the
Loan record; the Loan is always the source of truth.

Overdue status is applied lazily: each read or mutation first flips a
``borrowed`` loan whose due date has passed to ``overdue`` and persists it.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from bson import ObjectId
from pymongo import ReturnDocument

from library_app.core import config, ledgers, fine_policy
from library_app.core.exceptions import (
    LibraryError, NotFound, ValidationFailed, InvalidTransition, MembershipInvalid,
    NoCopiesAvailable, AlreadyReturned, NoFineDue, AlreadyPaid, InsufficientPayment,
)
from library_app.core.utils import (
    as_utc, utcnow, parse_object_id, storage_guard, generate_transaction_id,
)
from library_app.models.book import Book
from library_app.models.member import Member
from library_app.models.loan import Loan, FineInfo, ConditionInfo, RenewalEntry, effective_status
from library_app.models.enum import (
    LoanStatus, BookCondition, PaymentStatus, PaymentMethod, OPEN_STATUSES, CHECKOUT_CONDITIONS,
)

logger = logging.getLogger(__name__)

OPEN_STATUS_VALUES = [s.value for s in OPEN_STATUSES]


# --- Lookups ---

async def get_book_or_404(book_id) -> Book:
    book_oid = book_id if isinstance(book_id, ObjectId) else parse_object_id(book_id, "book ID")
    with storage_guard("load book"):
        book = await Book.get(book_oid)
    if not book:
        logger.info(f"Book lookup failed for ID '{book_id}'.")
        raise NotFound("Book not found")
    return book


async def get_member_or_404(member_id) -> Member:
    member_oid = member_id if isinstance(member_id, ObjectId) else parse_object_id(member_id, "user ID")
    with storage_guard("load member"):
        member = await Member.get(member_oid)
    if not member:
        logger.info(f"Member lookup failed for ID '{member_id}'.")
        raise NotFound("User not found")
    return member


async def get_loan_or_404(loan_id) -> Loan:
    loan_oid = loan_id if isinstance(loan_id, ObjectId) else parse_object_id(loan_id, "borrow record ID")
    with storage_guard("load loan"):
        loan = await Loan.get(loan_oid)
    if not loan:
        logger.info(f"Loan lookup failed for ID '{loan_id}'.")
        raise NotFound("Borrow record not found")
    return loan


# --- Lazy overdue transition ---

async def apply_overdue_flip(loan: Loan, now: Optional[datetime] = None) -> Loan:
    """Persist borrowed -> overdue if the due date has passed; returns the current record."""
    now = as_utc(now) or utcnow()
    if effective_status(loan.status, loan.due_date, now) == loan.status:
        return loan
    with storage_guard("overdue flip"):
        raw = await Loan.get_motor_collection().find_one_and_update(
            {"_id": loan.id, "status": LoanStatus.BORROWED.value, "due_date": {"$lt": now}},
            {"$set": {"status": LoanStatus.OVERDUE.value, "updated_at": now}},
            return_document=ReturnDocument.AFTER,
        )
    if raw is None:
        # Someone else moved it first
        return await get_loan_or_404(loan.id)
    logger.info(f"Loan {loan.transaction_id} is overdue (due {loan.due_date:%Y-%m-%d}).")
    return Loan.model_validate(raw)


async def flip_stale_loans(extra_filter: Optional[dict] = None, now: Optional[datetime] = None) -> int:
    """Bulk form of the overdue flip for read paths that touch many records."""
    now = as_utc(now) or utcnow()
    query = {"status": LoanStatus.BORROWED.value, "due_date": {"$lt": now}}
    if extra_filter:
        query.update({k: v for k, v in extra_filter.items() if k not in ("status", "due_date")})
    with storage_guard("bulk overdue flip"):
        result = await Loan.get_motor_collection().update_many(
            query, {"$set": {"status": LoanStatus.OVERDUE.value, "updated_at": now}}
        )
    if result.modified_count:
        logger.info(f"Marked {result.modified_count} loan(s) overdue.")
    return result.modified_count


async def fetch_loan(loan_id, now: Optional[datetime] = None) -> Loan:
    loan = await get_loan_or_404(loan_id)
    return await apply_overdue_flip(loan, now)


# --- Transitions ---

async def checkout(
    member_id: str,
    book_id: str,
    due_date: Optional[datetime] = None,
    condition: BookCondition = BookCondition.GOOD,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Loan:
    now = as_utc(now) or utcnow()
    member = await get_member_or_404(member_id)
    book = await get_book_or_404(book_id)

    if not member.is_membership_valid(now):
        logger.warning(f"Checkout refused: membership of {member.member_code} is inactive or expired.")
        raise MembershipInvalid()

    if due_date is None:
        due = now + timedelta(days=config.DEFAULT_LOAN_DAYS)
    else:
        due = as_utc(due_date)
        if due <= now:
            raise ValidationFailed("Validation error", errors=["Due date must be in the future"])

    if condition not in CHECKOUT_CONDITIONS:
        raise ValidationFailed("Validation error", errors=["Checkout condition must be excellent, good, fair or poor"])

    claimed = await ledgers.claim_copy(book.id, now)
    if claimed is None:
        logger.warning(f"Checkout refused: no copies of '{book.title}' available.")
        raise NoCopiesAvailable()

    try:
        transaction_id = await generate_transaction_id(now)
        loan = Loan(
            transaction_id=transaction_id,
            member_id=member.id,
            book_id=book.id,
            borrow_date=now,
            due_date=due,
            status=LoanStatus.BORROWED,
            book_condition=ConditionInfo(checked_out_condition=condition),
            notes=notes,
            created_at=now,
            updated_at=now,
        )
        with storage_guard("insert loan"):
            await loan.insert()
    except LibraryError:
        logger.error(f"Loan insert failed; releasing claimed copy of book {book.id}.")
        try:
            await ledgers.release_copy(book.id, now)
        except LibraryError:
            logger.critical(f"Could not release claimed copy of book {book.id}; available count is one short.")
        raise

    if not await ledgers.attach_loan(member.id, loan.id, now):
        logger.error(f"Member {member.id} vanished before loan {transaction_id} could be attached.")

    logger.info(
        f"Loan {transaction_id}: '{book.title}' checked out by {member.member_code}, "
        f"due {due:%Y-%m-%d}, {claimed.available_quantity}/{claimed.quantity} left."
    )
    return loan


async def renew(loan_id, extension_days: Optional[int] = None, now: Optional[datetime] = None) -> Loan:
    now = as_utc(now) or utcnow()
    loan = await fetch_loan(loan_id, now)

    if loan.status != LoanStatus.BORROWED:
        logger.warning(f"Renewal refused for {loan.transaction_id}: status is {LoanStatus(loan.status).value}.")
        raise InvalidTransition(f"Only borrowed loans can be renewed; this loan is {LoanStatus(loan.status).value}.")

    days = config.DEFAULT_RENEWAL_DAYS if extension_days is None else extension_days
    if days < 1 or days > config.MAX_RENEWAL_DAYS:
        raise ValidationFailed(
            "Validation error", errors=[f"extension_days must be between 1 and {config.MAX_RENEWAL_DAYS}"]
        )

    new_due = loan.due_date + timedelta(days=days)
    entry = RenewalEntry(renewed_at=now, previous_due_date=loan.due_date, new_due_date=new_due)
    with storage_guard("renew loan"):
        raw = await Loan.get_motor_collection().find_one_and_update(
            {"_id": loan.id, "status": LoanStatus.BORROWED.value, "due_date": loan.due_date},
            {
                "$set": {"due_date": new_due, "updated_at": now},
                "$inc": {"renewal_count": 1},
                "$push": {"renewal_history": entry.model_dump()},
            },
            return_document=ReturnDocument.AFTER,
        )
    if raw is None:
        raise InvalidTransition("Loan changed while renewing; try again.")

    logger.info(f"Loan {loan.transaction_id} renewed by {days} day(s) to {new_due:%Y-%m-%d}.")
    return Loan.model_validate(raw)


async def return_loan(
    loan_id,
    condition: Optional[BookCondition] = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Loan:
    now = as_utc(now) or utcnow()
    loan = await fetch_loan(loan_id, now)

    if loan.is_terminal:
        logger.warning(f"Return refused for {loan.transaction_id}: already {LoanStatus(loan.status).value}.")
        raise AlreadyReturned()

    new_status = LoanStatus.LOST if condition == BookCondition.LOST else LoanStatus.RETURNED
    assessment = fine_policy.assess_return(new_status, condition, loan.due_date, now)
    fine = FineInfo(
        amount=assessment.amount,
        reason=assessment.reason,
        payment_status=PaymentStatus.UNPAID,
        assessed_date=now if assessment.amount > 0 else None,
    )

    update = {
        "status": new_status.value,
        "return_date": now,
        "fine": fine.model_dump(),
        "book_condition.returned_condition": condition.value if condition else None,
        "updated_at": now,
    }
    if notes is not None:
        update["notes"] = notes

    # 1. Loan
    with storage_guard("return loan"):
        raw = await Loan.get_motor_collection().find_one_and_update(
            {"_id": loan.id, "status": {"$in": OPEN_STATUS_VALUES}, "due_date": loan.due_date},
            {"$set": update},
            return_document=ReturnDocument.AFTER,
        )
    if raw is None:
        # Returned or re-dated since the fine was assessed
        current = await get_loan_or_404(loan.id)
        if current.is_terminal:
            raise AlreadyReturned()
        raise InvalidTransition("Loan changed while returning; try again.")
    returned = Loan.model_validate(raw)

    # 2. Book
    if new_status == LoanStatus.LOST:
        await ledgers.write_off_copy(loan.book_id, now)
    else:
        await ledgers.release_copy(loan.book_id, now)

    # 3. Member
    await ledgers.detach_loan(loan.member_id, loan.id, now)
    if fine.amount > 0:
        await ledgers.adjust_fines(loan.member_id, outstanding_delta=fine.amount, now=now)

    logger.info(
        f"Loan {loan.transaction_id} {new_status.value}; fine {fine.amount:.2f}"
        f"{f' ({assessment.reason.value})' if assessment.reason else ''}."
    )
    return returned


async def pay_fine(
    loan_id,
    method: PaymentMethod,
    amount: Optional[float] = None,
    now: Optional[datetime] = None,
) -> Loan:
    now = as_utc(now) or utcnow()
    loan = await fetch_loan(loan_id, now)
    due = loan.fine.amount

    if due <= 0:
        raise NoFineDue()
    if loan.fine.payment_status != PaymentStatus.UNPAID:
        raise AlreadyPaid()

    method = PaymentMethod(method)
    if method == PaymentMethod.WAIVED:
        new_status = PaymentStatus.WAIVED
        paid_delta = 0.0
    else:
        tendered = due if amount is None else round(amount, 2)
        if tendered < due:
            logger.warning(f"Payment of {tendered:.2f} refused for {loan.transaction_id}; {due:.2f} due.")
            raise InsufficientPayment(f"Payment amount {tendered:.2f} is less than the fine due {due:.2f}.")
        new_status = PaymentStatus.PAID
        paid_delta = due

    # 1. Loan
    with storage_guard("pay fine"):
        raw = await Loan.get_motor_collection().find_one_and_update(
            {"_id": loan.id, "fine.payment_status": PaymentStatus.UNPAID.value},
            {"$set": {
                "fine.payment_status": new_status.value,
                "fine.payment_method": method.value,
                "fine.paid_date": now,
                "updated_at": now,
            }},
            return_document=ReturnDocument.AFTER,
        )
    if raw is None:
        raise AlreadyPaid()

    # 2. Member
    await ledgers.adjust_fines(loan.member_id, outstanding_delta=-due, paid_delta=paid_delta, now=now)

    logger.info(f"Fine of {due:.2f} on loan {loan.transaction_id} {new_status.value} via {method.value}.")
    return Loan.model_validate(raw)


async def update_loan(
    loan_id,
    due_date: Optional[datetime] = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Loan:
    """Generic field update. Status only moves through the transitions above."""
    now = as_utc(now) or utcnow()
    loan = await fetch_loan(loan_id, now)

    update = {}
    if notes is not None:
        update["notes"] = notes
    if due_date is not None:
        if loan.is_terminal:
            raise InvalidTransition(f"Cannot change the due date of a {LoanStatus(loan.status).value} loan.")
        due = as_utc(due_date)
        if due <= loan.borrow_date:
            raise ValidationFailed("Validation error", errors=["Due date must be after the borrow date"])
        update["due_date"] = due
    if not update:
        raise ValidationFailed("No update data provided.")

    update["updated_at"] = now
    query = {"_id": loan.id}
    if "due_date" in update:
        query["status"] = {"$in": OPEN_STATUS_VALUES}
    with storage_guard("update loan"):
        raw = await Loan.get_motor_collection().find_one_and_update(
            query, {"$set": update}, return_document=ReturnDocument.AFTER
        )
    if raw is None:
        current = await get_loan_or_404(loan.id)
        raise InvalidTransition(f"Cannot change the due date of a {LoanStatus(current.status).value} loan.")
    logger.info(f"Loan {loan.transaction_id} updated: {sorted(k for k in update if k != 'updated_at')}.")
    return await apply_overdue_flip(Loan.model_validate(raw), now)
