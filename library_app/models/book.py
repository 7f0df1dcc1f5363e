# library_app/models/book.py
from typing import Optional
from beanie import Document
from pydantic import BaseModel, Field, field_validator, model_validator
from pymongo import IndexModel, ASCENDING
from datetime import datetime

from library_app.core.utils import utcnow, as_utc


class ShelfLocation(BaseModel):
    shelf: Optional[str] = Field(None, max_length=50)
    section: Optional[str] = Field(None, max_length=50)


class Book(Document):
    """Inventory unit: one title with its total and available copy counts."""
    isbn: str = Field(..., min_length=1, max_length=20)
    title: str = Field(..., min_length=1, max_length=300)
    author: str = Field(..., min_length=1, max_length=200)
    genre: Optional[str] = None
    published_year: Optional[int] = None
    description: Optional[str] = None
    location: ShelfLocation = Field(default_factory=ShelfLocation)
    quantity: int = Field(default=1, ge=0)
    # Defaults to quantity; counters are only moved by the lifecycle engine
    available_quantity: int = Field(default=1, ge=0)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    class Settings:
        name = "books"
        indexes = [
            IndexModel([("isbn", ASCENDING)], name="book_isbn_unique_index", unique=True),
            IndexModel([("title", ASCENDING)], name="book_title_index"),
            IndexModel([("author", ASCENDING)], name="book_author_index"),
            IndexModel([("available_quantity", ASCENDING)], name="book_available_index"),
        ]

    @field_validator("created_at", "updated_at")
    @classmethod
    def _naive_utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    @model_validator(mode="before")
    @classmethod
    def _default_available(cls, data):
        if isinstance(data, dict) and data.get("available_quantity") is None:
            data = {**data, "available_quantity": data.get("quantity", 1)}
        return data

    @model_validator(mode="after")
    def _check_counts(self):
        if self.available_quantity > self.quantity:
            raise ValueError("available_quantity cannot exceed quantity")
        return self

    @property
    def is_available(self) -> bool:
        return self.available_quantity > 0

    @property
    def copies_on_loan(self) -> int:
        return self.quantity - self.available_quantity

    # --- Pydantic Schemas for API ---
    class Create(BaseModel):
        isbn: str = Field(..., min_length=1, max_length=20)
        title: str = Field(..., min_length=1, max_length=300)
        author: str = Field(..., min_length=1, max_length=200)
        genre: Optional[str] = None
        published_year: Optional[int] = Field(None, ge=0, le=9999)
        description: Optional[str] = None
        location: Optional[ShelfLocation] = None
        quantity: int = Field(default=1, ge=0)

        @field_validator("isbn", "title", "author")
        @classmethod
        def _strip(cls, value: str) -> str:
            value = value.strip()
            if not value:
                raise ValueError("must not be blank")
            return value

    class Update(BaseModel):
        # ISBN is immutable once catalogued
        title: Optional[str] = Field(None, min_length=1, max_length=300)
        author: Optional[str] = Field(None, min_length=1, max_length=200)
        genre: Optional[str] = None
        published_year: Optional[int] = Field(None, ge=0, le=9999)
        description: Optional[str] = None
        location: Optional[ShelfLocation] = None
        quantity: Optional[int] = Field(None, ge=0)

    class Response(BaseModel):
        id: str
        isbn: str
        title: str
        author: str
        genre: Optional[str] = None
        published_year: Optional[int] = None
        description: Optional[str] = None
        location: ShelfLocation
        quantity: int
        available_quantity: int
        is_available: bool
        created_at: datetime
        updated_at: datetime

        class Config:
            from_attributes = True


class BookRef(BaseModel):
    """Short reference embedded in loan responses."""
    id: str
    title: str
    author: str
    isbn: str
