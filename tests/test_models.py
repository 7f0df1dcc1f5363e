"""Tests for the Book, Member and Loan documents and their schemas."""
from datetime import datetime, timedelta, timezone

import pytest
from bson import ObjectId
from pydantic import ValidationError

from library_app.models.book import Book
from library_app.models.enum import CHECKOUT_CONDITIONS, BookCondition, LoanStatus, PaymentStatus
from library_app.models.loan import FineInfo, Loan, effective_status
from library_app.models.member import Member

NOW = datetime(2024, 3, 1, 10, 0, 0)


def build_loan(**overrides) -> Loan:
    data = dict(
        transaction_id="TXN-20240301-000001",
        member_id=ObjectId(),
        book_id=ObjectId(),
        borrow_date=NOW,
        due_date=NOW + timedelta(days=14),
    )
    data.update(overrides)
    return Loan.model_validate(data)


class TestBook:

    async def test_available_defaults_to_quantity(self, db):
        book = Book.model_validate({"isbn": "1", "title": "T", "author": "A", "quantity": 4})
        assert book.available_quantity == 4
        assert book.is_available
        assert book.copies_on_loan == 0

    async def test_available_cannot_exceed_quantity(self, db):
        with pytest.raises(ValidationError):
            Book(isbn="1", title="T", author="A", quantity=1, available_quantity=2)

    async def test_negative_counts_rejected(self, db):
        with pytest.raises(ValidationError):
            Book(isbn="1", title="T", author="A", quantity=1, available_quantity=-1)

    async def test_create_schema_strips_and_rejects_blank(self, db):
        assert Book.Create(isbn=" 123 ", title="T", author="A").isbn == "123"
        with pytest.raises(ValidationError):
            Book.Create(isbn="   ", title="T", author="A")


class TestMember:

    async def test_expiry_defaults_from_start(self, db):
        member = Member(name="Ann", email="Ann@Example.com", membership_start=NOW)
        assert member.membership_expiry == NOW + timedelta(days=365)
        assert member.email == "ann@example.com"
        assert member.member_code.startswith("LIB-U")

    async def test_membership_validity(self, db):
        member = Member(name="Ann", email="ann@example.com", membership_start=NOW,
                        membership_expiry=NOW + timedelta(days=10))
        assert member.is_membership_valid(NOW)
        assert member.membership_days_remaining(NOW) == 10
        assert not member.is_membership_valid(NOW + timedelta(days=10))
        assert member.membership_days_remaining(NOW + timedelta(days=11)) == 0

    async def test_inactive_member_is_invalid(self, db):
        member = Member(name="Ann", email="ann@example.com", membership_start=NOW, is_active=False)
        assert not member.is_membership_valid(NOW)

    async def test_aware_datetimes_are_normalised(self, db):
        aware = datetime(2024, 3, 1, 12, 0, tzinfo=timezone(timedelta(hours=2)))
        member = Member(name="Ann", email="ann@example.com", membership_start=aware)
        assert member.membership_start == datetime(2024, 3, 1, 10, 0)
        assert member.membership_start.tzinfo is None


class TestLoan:

    async def test_effective_status_flips_only_borrowed(self, db):
        due = NOW
        later = NOW + timedelta(seconds=1)
        assert effective_status(LoanStatus.BORROWED, due, NOW) == LoanStatus.BORROWED
        assert effective_status(LoanStatus.BORROWED, due, later) == LoanStatus.OVERDUE
        assert effective_status(LoanStatus.RETURNED, due, later) == LoanStatus.RETURNED
        assert effective_status(LoanStatus.LOST, due, later) == LoanStatus.LOST

    async def test_days_remaining_and_duration(self, db):
        loan = build_loan()
        assert loan.days_remaining(NOW) == 14
        assert loan.days_remaining(NOW + timedelta(days=13, hours=1)) == 1
        assert loan.days_remaining(NOW + timedelta(days=16)) == -2
        assert loan.borrow_duration(NOW + timedelta(days=3, hours=5)) == 3

    async def test_terminal_loan_metrics(self, db):
        loan = build_loan(status=LoanStatus.RETURNED, return_date=NOW + timedelta(days=20))
        assert loan.is_terminal
        assert not loan.is_open
        assert loan.days_remaining(NOW + timedelta(days=30)) == 0
        assert loan.borrow_duration(NOW + timedelta(days=30)) == 20
        assert not loan.is_overdue(NOW + timedelta(days=30))

    async def test_is_overdue(self, db):
        loan = build_loan()
        assert not loan.is_overdue(NOW + timedelta(days=14))
        assert loan.is_overdue(NOW + timedelta(days=14, seconds=1))
        assert loan.current_status(NOW + timedelta(days=15)) == LoanStatus.OVERDUE

    async def test_fine_outstanding(self, db):
        assert not FineInfo().is_outstanding
        assert FineInfo(amount=3).is_outstanding
        assert not FineInfo(amount=3, payment_status=PaymentStatus.PAID).is_outstanding
        assert not FineInfo(amount=3, payment_status=PaymentStatus.WAIVED).is_outstanding

    async def test_checkout_condition_restricted(self, db):
        for condition in CHECKOUT_CONDITIONS:
            assert Loan.Create(user_id="u", book_id="b", book_condition=condition).book_condition == condition
        for condition in (BookCondition.DAMAGED, BookCondition.LOST):
            with pytest.raises(ValidationError):
                Loan.Create(user_id="u", book_id="b", book_condition=condition)

    async def test_pay_fine_amount_must_be_positive(self, db):
        with pytest.raises(ValidationError):
            Loan.PayFine(payment_method="cash", amount=0)
