# library_app/core/ledgers.py
"""
Counter bookkeeping for books (inventory) and members (membership).

Each helper is a single conditional document update so the guard and the
mutation cannot be separated by a concurrent request. Business rules live in
the lifecycle engine; these helpers only keep counters inside their bounds.
"""
import logging
from datetime import datetime
from typing import Optional

from bson import ObjectId
from pymongo import ReturnDocument

from library_app.core.exceptions import StorageUnavailable
from library_app.core.utils import storage_guard, utcnow
from library_app.models.book import Book
from library_app.models.member import Member

logger = logging.getLogger(__name__)

CAS_RETRIES = 5


# --- Inventory ledger ---

async def claim_copy(book_id: ObjectId, now: Optional[datetime] = None) -> Optional[Book]:
    """Take one available copy. Returns the updated book, or None when none is left."""
    now = now or utcnow()
    with storage_guard("claim copy"):
        raw = await Book.get_motor_collection().find_one_and_update(
            {"_id": book_id, "available_quantity": {"$gt": 0}},
            {"$inc": {"available_quantity": -1}, "$set": {"updated_at": now}},
            return_document=ReturnDocument.AFTER,
        )
    if raw is None:
        logger.info(f"No copy of book {book_id} could be claimed.")
        return None
    logger.debug(f"Book {book_id} available_quantity now {raw['available_quantity']}.")
    return Book.model_validate(raw)


async def _shift_on_loan_copy(book_id: ObjectId, field: str, operation: str, now: datetime) -> bool:
    """
    Apply a counter change that needs at least one copy on loan
    (``available_quantity < quantity``), pinned to the quantity just read.
    """
    collection = Book.get_motor_collection()
    delta = 1 if field == "available_quantity" else -1
    for _ in range(CAS_RETRIES):
        with storage_guard(operation):
            raw = await collection.find_one({"_id": book_id}, projection={"quantity": 1, "available_quantity": 1})
        if raw is None:
            logger.warning(f"Book {book_id} not found during {operation}.")
            return False
        quantity = raw.get("quantity", 0)
        if raw.get("available_quantity", 0) >= quantity:
            logger.warning(f"Book {book_id} has no copies on loan; {operation} skipped.")
            return False
        with storage_guard(operation):
            result = await collection.update_one(
                {"_id": book_id, "quantity": quantity, "available_quantity": {"$lt": quantity}},
                {"$inc": {field: delta}, "$set": {"updated_at": now}},
            )
        if result.matched_count == 1:
            return True
        logger.debug(f"Book {book_id} counters changed concurrently during {operation}; retrying.")
    logger.error(f"Gave up on {operation} for book {book_id} after {CAS_RETRIES} attempts.")
    raise StorageUnavailable(f"Could not {operation} for book {book_id}.")


async def release_copy(book_id: ObjectId, now: Optional[datetime] = None) -> bool:
    """Put one copy back into circulation, never above the total quantity."""
    return await _shift_on_loan_copy(book_id, "available_quantity", "release copy", now or utcnow())


async def write_off_copy(book_id: ObjectId, now: Optional[datetime] = None) -> bool:
    """
    Remove a lost copy from the catalogue. The copy is already out of the
    available count, so only the total shrinks.

    available_quantity is deliberately left alone: it dropped by one at
    checkout, and a second decrement here would undercount the copies still
    on the shelf and could break 0 <= available_quantity <= quantity.
    """
    return await _shift_on_loan_copy(book_id, "quantity", "write off copy", now or utcnow())


# --- Membership ledger ---

async def attach_loan(member_id: ObjectId, loan_id: ObjectId, now: Optional[datetime] = None) -> bool:
    now = now or utcnow()
    with storage_guard("attach loan"):
        result = await Member.get_motor_collection().update_one(
            {"_id": member_id},
            {
                "$addToSet": {"open_loans": loan_id},
                "$inc": {"borrow_stats.total_borrowed": 1},
                "$set": {"borrow_stats.last_borrow_date": now, "updated_at": now},
            },
        )
    return result.matched_count == 1


async def detach_loan(member_id: ObjectId, loan_id: ObjectId, now: Optional[datetime] = None) -> bool:
    now = now or utcnow()
    with storage_guard("detach loan"):
        result = await Member.get_motor_collection().update_one(
            {"_id": member_id},
            {
                "$pull": {"open_loans": loan_id},
                "$inc": {"borrow_stats.total_returned": 1},
                "$set": {"updated_at": now},
            },
        )
    return result.matched_count == 1


async def adjust_fines(
    member_id: ObjectId,
    outstanding_delta: float = 0.0,
    paid_delta: float = 0.0,
    now: Optional[datetime] = None,
) -> bool:
    """
    Move the member's fine counters by the given deltas, rounded to cents and
    floored at zero. Compare-and-set on the current values.
    """
    now = now or utcnow()
    collection = Member.get_motor_collection()
    for _ in range(CAS_RETRIES):
        with storage_guard("read fine counters"):
            raw = await collection.find_one({"_id": member_id}, projection={"borrow_stats": 1})
        if raw is None:
            logger.warning(f"Member {member_id} not found; fine counters unchanged.")
            return False
        stats = raw.get("borrow_stats") or {}
        outstanding = stats.get("fines_outstanding", 0.0)
        paid = stats.get("fines_paid", 0.0)
        new_outstanding = max(0.0, round(outstanding + outstanding_delta, 2))
        new_paid = max(0.0, round(paid + paid_delta, 2))
        with storage_guard("update fine counters"):
            result = await collection.update_one(
                {
                    "_id": member_id,
                    "borrow_stats.fines_outstanding": outstanding,
                    "borrow_stats.fines_paid": paid,
                },
                {"$set": {
                    "borrow_stats.fines_outstanding": new_outstanding,
                    "borrow_stats.fines_paid": new_paid,
                    "updated_at": now,
                }},
            )
        if result.matched_count == 1:
            return True
        logger.debug(f"Fine counters for member {member_id} changed concurrently; retrying.")
    logger.error(f"Gave up updating fine counters for member {member_id} after {CAS_RETRIES} attempts.")
    raise StorageUnavailable("Could not update member fine counters.")
