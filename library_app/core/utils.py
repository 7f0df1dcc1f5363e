# library_app/core/utils.py
import logging
import math
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from library_app.core.exceptions import Conflict, StorageUnavailable, ValidationFailed
from library_app.models.counter import SequenceCounter

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Current time as naive UTC, the form MongoDB hands back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalise any datetime to naive UTC."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def parse_object_id(value: str, label: str = "ID") -> ObjectId:
    if not ObjectId.is_valid(value):
        logger.warning(f"Invalid ObjectId format for {label}: {value}")
        raise ValidationFailed(f"Invalid {label} format.", errors=[f"{label} must be a 24-character hex string"])
    return ObjectId(value)


def pagination_meta(total: int, page: int, limit: int) -> dict:
    return {
        "total": total,
        "page": page,
        "limit": limit,
        "pages": math.ceil(total / limit) if limit else 0,
    }


@contextmanager
def storage_guard(operation: str):
    """Translate driver failures into domain errors."""
    try:
        yield
    except DuplicateKeyError as e:
        key = next(iter((e.details or {}).get("keyValue", {}) or {}), None)
        detail = f"Duplicate field value: {key}. This value is already taken." if key else "Duplicate key."
        logger.warning(f"Duplicate key during {operation}: {e}")
        raise Conflict(detail) from e
    except PyMongoError as e:
        logger.error(f"Storage error during {operation}: {e}", exc_info=True)
        raise StorageUnavailable(f"Storage error during {operation}.") from e


async def get_next_sequence_value(sequence_name: str) -> int:
    """
    Gets the next value for a named sequence, incrementing it atomically.
    The sequence name is the _id of its SequenceCounter document.
    """
    collection = SequenceCounter.get_motor_collection()
    with storage_guard(f"sequence '{sequence_name}'"):
        updated_doc = await collection.find_one_and_update(
            {"_id": sequence_name},
            {"$inc": {"value": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER
        )
    if not updated_doc or 'value' not in updated_doc:
        logger.error(f"CRITICAL: Failed to get or create sequence counter '{sequence_name}'.")
        raise StorageUnavailable(f"Failed to get or create sequence counter: {sequence_name}")
    logger.debug(f"Next sequence value for '{sequence_name}': {updated_doc['value']}")
    return updated_doc['value']


async def generate_transaction_id(now: datetime) -> str:
    seq = await get_next_sequence_value("loan_transaction")
    return f"TXN-{now:%Y%m%d}-{seq:06d}"
