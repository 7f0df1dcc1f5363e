"""Tests for the overdue listing, member history and fine report."""
from datetime import timedelta

import pytest

from library_app.core import config, lifecycle, reporting
from library_app.core.exceptions import NotFound, ValidationFailed
from library_app.models.enum import BookCondition, LoanStatus, PaymentMethod, PaymentStatus
from library_app.models.loan import Loan


@pytest.fixture(autouse=True)
def fixed_policy(monkeypatch):
    monkeypatch.setattr(config, "FINE_POLICY", "flat")
    monkeypatch.setattr(config, "FINE_RATE_PER_DAY", 1.0)
    monkeypatch.setattr(config, "LOST_BOOK_FEE", 50.0)


class TestListOverdue:

    async def test_flips_then_lists_by_due_date(self, make_book, make_member, now):
        book = await make_book(quantity=4)
        member = await make_member()
        later_due = await lifecycle.checkout(member.id, book.id, due_date=now + timedelta(days=3), now=now)
        earlier_due = await lifecycle.checkout(member.id, book.id, due_date=now + timedelta(days=1), now=now)
        await lifecycle.checkout(member.id, book.id, due_date=now + timedelta(days=30), now=now)
        returned = await lifecycle.checkout(member.id, book.id, due_date=now + timedelta(days=1), now=now)
        await lifecycle.return_loan(returned.id, now=now + timedelta(days=4))

        loans, meta = await reporting.list_overdue(page=1, limit=10, now=now + timedelta(days=5))
        assert [loan.id for loan in loans] == [earlier_due.id, later_due.id]
        assert all(loan.status == LoanStatus.OVERDUE for loan in loans)
        assert meta == {"total": 2, "page": 1, "limit": 10, "pages": 1}
        assert (await Loan.get(later_due.id)).status == LoanStatus.OVERDUE

    async def test_pagination(self, make_book, make_member, now):
        book = await make_book(quantity=3)
        member = await make_member()
        for days in (1, 2, 3):
            await lifecycle.checkout(member.id, book.id, due_date=now + timedelta(days=days), now=now)

        loans, meta = await reporting.list_overdue(page=2, limit=2, now=now + timedelta(days=10))
        assert len(loans) == 1
        assert meta == {"total": 3, "page": 2, "limit": 2, "pages": 2}

    async def test_empty(self, db, now):
        loans, meta = await reporting.list_overdue(now=now)
        assert loans == []
        assert meta["total"] == 0
        assert meta["pages"] == 0


class TestListLoans:

    async def test_filters(self, make_book, make_member, now):
        book_a = await make_book(quantity=2)
        book_b = await make_book(quantity=2)
        alice = await make_member()
        bob = await make_member()
        await lifecycle.checkout(alice.id, book_a.id, now=now)
        await lifecycle.checkout(alice.id, book_b.id, now=now + timedelta(days=1))
        bobs = await lifecycle.checkout(bob.id, book_a.id, now=now + timedelta(days=2))
        await lifecycle.return_loan(bobs.id, now=now + timedelta(days=3))

        loans, meta = await reporting.list_loans(member_id=str(alice.id), now=now + timedelta(days=3))
        assert meta["total"] == 2
        assert loans[0].borrow_date > loans[1].borrow_date

        loans, _ = await reporting.list_loans(book_id=str(book_a.id), sort_order="asc", now=now + timedelta(days=3))
        assert [loan.member_id for loan in loans] == [alice.id, bob.id]

        loans, _ = await reporting.list_loans(status=LoanStatus.RETURNED, now=now + timedelta(days=3))
        assert [loan.id for loan in loans] == [bobs.id]

        loans, _ = await reporting.list_loans(
            from_date=now + timedelta(hours=12), to_date=now + timedelta(days=1, hours=12),
            now=now + timedelta(days=3),
        )
        assert [loan.book_id for loan in loans] == [book_b.id]

    async def test_status_filter_sees_fresh_overdue(self, make_book, make_member, now):
        book = await make_book()
        member = await make_member()
        loan = await lifecycle.checkout(member.id, book.id, now=now)
        loans, _ = await reporting.list_loans(status=LoanStatus.OVERDUE, now=loan.due_date + timedelta(days=1))
        assert [item.id for item in loans] == [loan.id]

    async def test_rejects_unknown_sort_field(self, db, now):
        with pytest.raises(ValidationFailed):
            await reporting.list_loans(sort_by="fine", now=now)

    async def test_rejects_inverted_range(self, db, now):
        with pytest.raises(ValidationFailed):
            await reporting.list_loans(from_date=now, to_date=now - timedelta(days=1), now=now)


class TestUserHistory:

    async def test_summary(self, make_book, make_member, now):
        book = await make_book(quantity=4)
        member = await make_member()
        on_time = await lifecycle.checkout(member.id, book.id, now=now)
        late = await lifecycle.checkout(member.id, book.id, now=now)
        lost = await lifecycle.checkout(member.id, book.id, now=now)
        await lifecycle.checkout(member.id, book.id, due_date=now + timedelta(days=2), now=now)

        await lifecycle.return_loan(on_time.id, now=now + timedelta(days=1))
        await lifecycle.return_loan(late.id, now=late.due_date + timedelta(days=4))
        await lifecycle.pay_fine(late.id, PaymentMethod.CASH, now=late.due_date + timedelta(days=4))
        await lifecycle.return_loan(lost.id, BookCondition.LOST, now=now + timedelta(days=5))

        stored, loans, summary = await reporting.user_history(str(member.id), now=now + timedelta(days=6))
        assert stored.id == member.id
        assert len(loans) == 4
        assert summary.total == 4
        assert summary.active == 1
        assert summary.overdue == 1
        assert summary.returned == 2
        assert summary.lost == 1
        assert summary.total_fines == 54.0
        assert summary.unpaid_fines == 50.0

    async def test_unknown_member(self, db, now):
        with pytest.raises(NotFound):
            await reporting.user_history("0123456789abcdef01234567", now=now)


class TestFineReport:

    async def test_groups_by_payment_status(self, make_book, make_member, now):
        book = await make_book(quantity=3)
        member = await make_member()
        loans = [await lifecycle.checkout(member.id, book.id, now=now) for _ in range(3)]
        returned_at = loans[0].due_date + timedelta(days=2)
        for loan in loans:
            await lifecycle.return_loan(loan.id, now=returned_at)
        await lifecycle.pay_fine(loans[0].id, PaymentMethod.CASH, now=returned_at)
        await lifecycle.pay_fine(loans[1].id, PaymentMethod.WAIVED, now=returned_at)

        report = await reporting.fine_report(now, returned_at + timedelta(days=1))
        groups = {PaymentStatus(group.payment_status): group for group in report.groups}
        assert set(groups) == {PaymentStatus.PAID, PaymentStatus.UNPAID, PaymentStatus.WAIVED}
        assert groups[PaymentStatus.PAID].total_amount == 2.0
        assert groups[PaymentStatus.UNPAID].count == 1
        assert report.total_count == 3
        assert report.total_amount == 6.0

    async def test_window_excludes_other_periods(self, make_book, make_member, now):
        book = await make_book()
        member = await make_member()
        loan = await lifecycle.checkout(member.id, book.id, now=now)
        await lifecycle.return_loan(loan.id, now=loan.due_date + timedelta(days=1))
        report = await reporting.fine_report(now - timedelta(days=30), now)
        assert report.groups == []
        assert report.total_amount == 0.0

    async def test_rejects_inverted_window(self, db, now):
        with pytest.raises(ValidationFailed):
            await reporting.fine_report(now, now)
