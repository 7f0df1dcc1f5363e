# library_app/api/v1/endpoints/books.py
import re
import logging
from typing import Optional
from fastapi import APIRouter, Body, Path, Query, Request, status
from pymongo import ASCENDING, ReturnDocument

from library_app.core.exceptions import Conflict, ValidationFailed, ActiveLoansExist
from library_app.core.lifecycle import get_book_or_404
from library_app.core.rate_limiter import limiter
from library_app.core.responses import success_response
from library_app.core.utils import utcnow, storage_guard, pagination_meta
from library_app.models.book import Book, ShelfLocation

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Books"])


def validate_book_response(book: Book) -> Book.Response:
    book_data = book.model_dump(exclude={"id", "revision_id"})
    book_data["id"] = str(book.id)
    book_data["is_available"] = book.is_available
    return Book.Response.model_validate(book_data)


# --- POST /books/ ---
@router.post("/", status_code=status.HTTP_201_CREATED, summary="Add a book to the catalogue")
@limiter.limit("30/minute")
async def create_book(request: Request, book_in: Book.Create = Body(...)):
    with storage_guard("check isbn"):
        existing = await Book.find_one({"isbn": book_in.isbn})
    if existing:
        logger.warning(f"Book creation failed: ISBN '{book_in.isbn}' already exists.")
        raise Conflict(f"A book with ISBN '{book_in.isbn}' already exists.")

    now = utcnow()
    book = Book(
        **book_in.model_dump(exclude={"location"}),
        location=book_in.location or ShelfLocation(),
        available_quantity=book_in.quantity,
        created_at=now,
        updated_at=now,
    )
    with storage_guard("insert book"):
        await book.insert()
    logger.info(f"Book '{book.title}' (ISBN {book.isbn}) added with {book.quantity} copies.")
    return success_response(201, "Book created successfully", validate_book_response(book))


# --- GET /books/ ---
@router.get("/", summary="List books")
@limiter.limit("120/minute")
async def read_books(
    request: Request,
    title: Optional[str] = Query(None, description="Case-insensitive substring"),
    author: Optional[str] = Query(None, description="Case-insensitive substring"),
    genre: Optional[str] = Query(None, description="Case-insensitive exact match"),
    isbn: Optional[str] = Query(None, description="Exact match"),
    available_only: bool = Query(False),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
):
    query = {}
    if title: query["title"] = {"$regex": re.escape(title), "$options": "i"}
    if author: query["author"] = {"$regex": re.escape(author), "$options": "i"}
    if genre: query["genre"] = {"$regex": f"^{re.escape(genre)}$", "$options": "i"}
    if isbn: query["isbn"] = isbn
    if available_only: query["available_quantity"] = {"$gt": 0}

    with storage_guard("list books"):
        total = await Book.get_motor_collection().count_documents(query)
        books = await Book.find(query, skip=(page - 1) * limit, limit=limit, sort=[("title", ASCENDING)]).to_list()
    return success_response(
        200, "Books retrieved successfully",
        [validate_book_response(b) for b in books],
        {"pagination": pagination_meta(total, page, limit)},
    )


# --- GET /books/{book_id} ---
@router.get("/{book_id}", summary="Get one book")
@limiter.limit("120/minute")
async def read_book(request: Request, book_id: str = Path(...)):
    book = await get_book_or_404(book_id)
    return success_response(200, "Book retrieved successfully", validate_book_response(book))


# --- PUT /books/{book_id} ---
@router.put("/{book_id}", summary="Update book details or total copies")
@limiter.limit("60/minute")
async def update_book(request: Request, book_id: str = Path(...), book_in: Book.Update = Body(...)):
    """
    Changing ``quantity`` moves ``available_quantity`` by the same delta, so
    copies on loan stay on loan. The write is pinned to the counts just read.
    """
    book = await get_book_or_404(book_id)
    update_data = book_in.model_dump(exclude_unset=True)
    if not update_data:
        raise ValidationFailed("No update data provided.")

    query = {"_id": book.id}
    if update_data.get("quantity") is not None:
        delta = update_data["quantity"] - book.quantity
        new_available = book.available_quantity + delta
        if new_available < 0:
            raise ActiveLoansExist(
                f"Cannot reduce quantity to {update_data['quantity']}: {book.copies_on_loan} copies are on loan."
            )
        update_data["available_quantity"] = new_available
        query.update(quantity=book.quantity, available_quantity=book.available_quantity)
    else:
        update_data.pop("quantity", None)
    if "location" in update_data:
        update_data["location"] = (book_in.location or ShelfLocation()).model_dump()
    update_data["updated_at"] = utcnow()

    with storage_guard("update book"):
        raw = await Book.get_motor_collection().find_one_and_update(
            query, {"$set": update_data}, return_document=ReturnDocument.AFTER
        )
    if raw is None:
        raise Conflict("Book copies changed while updating; try again.")
    updated = Book.model_validate(raw)
    logger.info(f"Book {book_id} updated: {sorted(k for k in update_data if k != 'updated_at')}.")
    return success_response(200, "Book updated successfully", validate_book_response(updated))


# --- DELETE /books/{book_id} ---
@router.delete("/{book_id}", summary="Remove a book with no copies on loan")
@limiter.limit("30/minute")
async def delete_book(request: Request, book_id: str = Path(...)):
    book = await get_book_or_404(book_id)
    if book.copies_on_loan:
        raise ActiveLoansExist(f"Cannot delete book: {book.copies_on_loan} copies are on loan.")
    with storage_guard("delete book"):
        result = await Book.get_motor_collection().delete_one(
            {"_id": book.id, "quantity": book.quantity, "available_quantity": book.quantity}
        )
    if result.deleted_count != 1:
        raise ActiveLoansExist("Cannot delete book: a copy was checked out meanwhile.")
    logger.info(f"Book '{book.title}' (ISBN {book.isbn}) deleted.")
    return success_response(200, "Book deleted successfully", {"id": str(book.id)})
