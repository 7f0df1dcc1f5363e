import os

# Must be set before library_app.core.config is imported
os.environ.setdefault("MONGODB_URL", "mongodb://localhost:27017/library_test")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("ENVIRONMENT", "test")

from datetime import datetime, timedelta

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from mongomock_motor import AsyncMongoMockClient

from library_app.db.database import init_db
from library_app.models.book import Book
from library_app.models.member import Member

NOW = datetime(2024, 3, 1, 10, 0, 0)


@pytest.fixture
def now():
    return NOW


@pytest_asyncio.fixture
async def db():
    """Fresh in-memory database per test."""
    client = AsyncMongoMockClient()
    await init_db(client)
    yield client


@pytest_asyncio.fixture
async def make_book(db):
    counter = {"n": 0}

    async def _make(quantity: int = 1, available_quantity=None, **fields) -> Book:
        counter["n"] += 1
        book = Book(
            isbn=fields.pop("isbn", f"978-0-00-{counter['n']:06d}"),
            title=fields.pop("title", f"Test Book {counter['n']}"),
            author=fields.pop("author", "Jane Author"),
            quantity=quantity,
            available_quantity=quantity if available_quantity is None else available_quantity,
            created_at=NOW,
            updated_at=NOW,
            **fields,
        )
        await book.insert()
        return book

    return _make


@pytest_asyncio.fixture
async def make_member(db):
    counter = {"n": 0}

    async def _make(**fields) -> Member:
        counter["n"] += 1
        member = Member(
            name=fields.pop("name", f"Member {counter['n']}"),
            email=fields.pop("email", f"member{counter['n']}@example.com"),
            membership_start=fields.pop("membership_start", NOW - timedelta(days=30)),
            created_at=NOW,
            updated_at=NOW,
            **fields,
        )
        await member.insert()
        return member

    return _make


@pytest_asyncio.fixture
async def client(db):
    from library_app.main import app

    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
