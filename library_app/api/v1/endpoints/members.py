# library_app/api/v1/endpoints/members.py
import re
import logging
from datetime import datetime, timedelta
from typing import Optional
from fastapi import APIRouter, Body, Path, Query, Request, status
from pymongo import DESCENDING, ReturnDocument

from library_app.core.exceptions import Conflict, ValidationFailed, ActiveLoansExist, NotFound
from library_app.core.lifecycle import get_member_or_404
from library_app.core.rate_limiter import limiter
from library_app.core.responses import success_response
from library_app.core.utils import utcnow, storage_guard, pagination_meta
from library_app.models.member import Member

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Users"])


def validate_member_response(member: Member, now: Optional[datetime] = None) -> Member.Response:
    now = now or utcnow()
    member_data = member.model_dump(exclude={"id", "revision_id", "open_loans"})
    member_data.update(
        id=str(member.id),
        open_loans=[str(loan_id) for loan_id in member.open_loans],
        is_membership_valid=member.is_membership_valid(now),
        membership_days_remaining=member.membership_days_remaining(now),
        current_borrow_count=member.current_borrow_count,
    )
    return Member.Response.model_validate(member_data)


async def ensure_email_free(email: str, exclude_id=None):
    query = {"email": email.lower()}
    if exclude_id is not None:
        query["_id"] = {"$ne": exclude_id}
    with storage_guard("check email"):
        taken = await Member.find_one(query)
    if taken:
        logger.warning(f"Email '{email}' already registered.")
        raise Conflict(f"Email '{email}' is already registered.")


# --- POST /users/ ---
@router.post("/", status_code=status.HTTP_201_CREATED, summary="Register a member")
@limiter.limit("30/minute")
async def create_member(request: Request, member_in: Member.Create = Body(...)):
    await ensure_email_free(member_in.email)
    now = utcnow()
    member = Member(
        **member_in.model_dump(),
        membership_start=now,
        created_at=now,
        updated_at=now,
    )
    with storage_guard("insert member"):
        await member.insert()
    logger.info(f"Member {member.member_code} ('{member.email}') registered.")
    return success_response(201, "User created successfully", validate_member_response(member, now))


# --- GET /users/ ---
@router.get("/", summary="List members")
@limiter.limit("120/minute")
async def read_members(
    request: Request,
    search: Optional[str] = Query(None, description="Name or email substring"),
    is_active: Optional[bool] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
):
    query = {}
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [{"name": pattern}, {"email": pattern}]
    if is_active is not None:
        query["is_active"] = is_active

    with storage_guard("list members"):
        total = await Member.get_motor_collection().count_documents(query)
        members = await Member.find(
            query, skip=(page - 1) * limit, limit=limit, sort=[("created_at", DESCENDING)]
        ).to_list()
    now = utcnow()
    return success_response(
        200, "Users retrieved successfully",
        [validate_member_response(m, now) for m in members],
        {"pagination": pagination_meta(total, page, limit)},
    )


# --- GET /users/{user_id} ---
@router.get("/{user_id}", summary="Get one member")
@limiter.limit("120/minute")
async def read_member(request: Request, user_id: str = Path(...)):
    member = await get_member_or_404(user_id)
    return success_response(200, "User retrieved successfully", validate_member_response(member))


# --- PUT /users/{user_id} ---
@router.put("/{user_id}", summary="Update member details")
@limiter.limit("60/minute")
async def update_member(request: Request, user_id: str = Path(...), member_in: Member.Update = Body(...)):
    member = await get_member_or_404(user_id)
    update_data = {k: v for k, v in member_in.model_dump(exclude_unset=True).items() if v is not None}
    if not update_data:
        raise ValidationFailed("No update data provided.")
    if "email" in update_data:
        update_data["email"] = update_data["email"].strip().lower()
        if update_data["email"] != member.email:
            await ensure_email_free(update_data["email"], exclude_id=member.id)
    if "membership_type" in update_data:
        update_data["membership_type"] = update_data["membership_type"].value

    now = utcnow()
    update_data["updated_at"] = now
    with storage_guard("update member"):
        raw = await Member.get_motor_collection().find_one_and_update(
            {"_id": member.id}, {"$set": update_data}, return_document=ReturnDocument.AFTER
        )
    if raw is None:
        raise NotFound("User not found")
    logger.info(f"Member {member.member_code} updated: {sorted(k for k in update_data if k != 'updated_at')}.")
    return success_response(200, "User updated successfully", validate_member_response(Member.model_validate(raw), now))


# --- DELETE /users/{user_id} ---
@router.delete("/{user_id}", summary="Remove a member with no open loans")
@limiter.limit("30/minute")
async def delete_member(request: Request, user_id: str = Path(...)):
    member = await get_member_or_404(user_id)
    if member.open_loans:
        raise ActiveLoansExist(f"Cannot delete user: {member.current_borrow_count} loan(s) still open.")
    with storage_guard("delete member"):
        result = await Member.get_motor_collection().delete_one({"_id": member.id, "open_loans": {"$size": 0}})
    if result.deleted_count != 1:
        raise ActiveLoansExist("Cannot delete user: a loan was opened meanwhile.")
    logger.info(f"Member {member.member_code} deleted.")
    return success_response(200, "User deleted successfully", {"id": str(member.id)})


# --- POST /users/{user_id}/renew-membership ---
@router.post("/{user_id}/renew-membership", summary="Extend and reactivate a membership")
@limiter.limit("30/minute")
async def renew_membership(
    request: Request,
    user_id: str = Path(...),
    renew_in: Optional[Member.RenewMembership] = Body(None),
):
    member = await get_member_or_404(user_id)
    renew_in = renew_in or Member.RenewMembership()
    now = utcnow()
    new_expiry = max(member.membership_expiry, now) + timedelta(days=renew_in.extension_days)
    with storage_guard("renew membership"):
        raw = await Member.get_motor_collection().find_one_and_update(
            {"_id": member.id},
            {"$set": {"membership_expiry": new_expiry, "is_active": True, "updated_at": now}},
            return_document=ReturnDocument.AFTER,
        )
    if raw is None:
        raise NotFound("User not found")
    logger.info(f"Membership {member.member_code} extended to {new_expiry:%Y-%m-%d}.")
    return success_response(200, "Membership renewed successfully", validate_member_response(Member.model_validate(raw), now))
