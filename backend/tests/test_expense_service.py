"""Expense service tests."""

from datetime import datetime

import pytest

from salonerp.errors import Conflict, NotFound, ValidationError
from salonerp.services import expense_service


def _expense(ctx, **overrides):
    values = dict(title="Electricity", category="utilities", amount_cents=2500, payment_method="upi")
    values.update(overrides)
    return expense_service.create_expense(ctx, **values)


class TestCreateExpense:

    def test_defaults(self, ctx_a):
        expense = _expense(ctx_a)
        assert expense.status == "approved"
        assert expense.approved_by_staff_id == ctx_a.staff_id
        assert expense.reported_by_staff_id == ctx_a.staff_id
        assert expense.expense_number.startswith("EXP-")
        assert expense.expense_date is not None

    def test_draft_has_no_approver(self, ctx_a):
        assert _expense(ctx_a, status="draft").approved_by_staff_id is None

    @pytest.mark.parametrize(
        "overrides",
        [
            {"category": "yacht"},
            {"payment_method": "barter"},
            {"status": "cancelled"},
            {"status": "archived"},
            {"amount_cents": 0},
            {"amount_cents": -10},
            {"title": "   "},
        ],
    )
    def test_invalid_input(self, ctx_a, overrides):
        with pytest.raises(ValidationError):
            _expense(ctx_a, **overrides)


class TestCancelExpense:

    def test_cancel_once(self, ctx_a):
        expense = _expense(ctx_a)
        cancelled = expense_service.cancel_expense(ctx_a, expense_id=expense.id, reason="Duplicate entry")
        assert cancelled.status == "cancelled"
        assert cancelled.cancel_reason == "Duplicate entry"
        assert cancelled.cancelled_at is not None

        with pytest.raises(Conflict):
            expense_service.cancel_expense(ctx_a, expense_id=expense.id, reason="Again")

    def test_other_salon_not_found(self, ctx_a, ctx_b):
        expense = _expense(ctx_a)
        with pytest.raises(NotFound):
            expense_service.cancel_expense(ctx_b, expense_id=expense.id)


class TestListExpenses:

    def test_filters(self, ctx_a):
        _expense(ctx_a, expense_date=datetime(2026, 3, 1))
        _expense(ctx_a, category="rent", amount_cents=9000, expense_date=datetime(2026, 3, 2))
        cancelled = _expense(ctx_a, expense_date=datetime(2026, 4, 1))
        expense_service.cancel_expense(ctx_a, expense_id=cancelled.id)

        assert expense_service.list_expenses(ctx_a)["total"] == 3
        assert expense_service.list_expenses(ctx_a, category="rent")["total"] == 1
        assert expense_service.list_expenses(ctx_a, status="cancelled")["total"] == 1
        march = expense_service.list_expenses(ctx_a, start=datetime(2026, 3, 1), end=datetime(2026, 4, 1))
        assert march["total"] == 2
        assert march["items"][0]["expense_date"] == "2026-03-02T00:00:00Z"
