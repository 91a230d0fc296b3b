# Overview: Salon expense records feeding the financial rollup.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import update

from ..errors import Conflict, NotFound, ValidationError
from ..extensions import db
from ..models import Expense
from ..models.expenses import (
    EXPENSE_CATEGORIES,
    EXPENSE_PAYMENT_METHODS,
    EXPENSE_STATUS_APPROVED,
    EXPENSE_STATUS_CANCELLED,
    EXPENSE_STATUSES,
)
from salonerp.time_utils import utcnow
from .concurrency import run_with_retry
from .context import SalonContext
from .document_service import DOC_EXPENSE, next_document_number
from .pagination import clamp_page, page_to_dict


def create_expense(
    ctx: SalonContext,
    *,
    title: str,
    category: str,
    amount_cents: int,
    payment_method: str,
    expense_date: datetime | None = None,
    status: str = EXPENSE_STATUS_APPROVED,
    notes: str | None = None,
) -> Expense:
    if not title or not title.strip():
        raise ValidationError("title is required")
    if category not in EXPENSE_CATEGORIES:
        raise ValidationError(f"Invalid expense category: {category}")
    if payment_method not in EXPENSE_PAYMENT_METHODS:
        raise ValidationError(f"Invalid payment method: {payment_method}")
    if status not in EXPENSE_STATUSES or status == EXPENSE_STATUS_CANCELLED:
        raise ValidationError(f"Invalid expense status: {status}")
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int):
        raise ValidationError("amount_cents must be an integer")
    if amount_cents <= 0:
        raise ValidationError("Expense amount must be positive")

    def _op():
        expense = Expense(
            salon_id=ctx.salon_id,
            expense_number=next_document_number(salon_id=ctx.salon_id, document_type=DOC_EXPENSE),
            title=title.strip(),
            category=category,
            amount_cents=amount_cents,
            payment_method=payment_method,
            expense_date=expense_date or utcnow(),
            status=status,
            reported_by_staff_id=ctx.staff_id,
            approved_by_staff_id=ctx.staff_id if status == EXPENSE_STATUS_APPROVED else None,
            notes=notes,
        )
        db.session.add(expense)
        db.session.commit()
        return expense

    return run_with_retry(_op)


def cancel_expense(ctx: SalonContext, *, expense_id: int, reason: str | None = None) -> Expense:
    """Cancel an expense. Cancelled expenses drop out of every rollup."""
    def _op():
        expense = db.session.query(Expense).filter_by(id=expense_id, salon_id=ctx.salon_id).first()
        if expense is None:
            raise NotFound(f"Expense {expense_id} not found")

        result = db.session.execute(
            update(Expense)
            .where(Expense.id == expense.id, Expense.status != EXPENSE_STATUS_CANCELLED)
            .values(
                status=EXPENSE_STATUS_CANCELLED,
                cancelled_at=utcnow(),
                cancel_reason=reason.strip() if reason else None,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise Conflict(f"Expense {expense_id} is already cancelled")
        db.session.commit()
        db.session.expire(expense)
        return expense

    return run_with_retry(_op)


def list_expenses(
    ctx: SalonContext,
    *,
    category: str | None = None,
    status: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    page: int | None = 1,
    per_page: int | None = 50,
) -> dict:
    if category and category not in EXPENSE_CATEGORIES:
        raise ValidationError(f"Invalid expense category: {category}")
    if status and status not in EXPENSE_STATUSES:
        raise ValidationError(f"Invalid expense status: {status}")
    page, per_page = clamp_page(page, per_page)

    query = db.session.query(Expense).filter(Expense.salon_id == ctx.salon_id)
    if category:
        query = query.filter(Expense.category == category)
    if status:
        query = query.filter(Expense.status == status)
    if start:
        query = query.filter(Expense.expense_date >= start)
    if end:
        query = query.filter(Expense.expense_date < end)

    query = query.order_by(Expense.expense_date.desc(), Expense.id.desc())
    return page_to_dict(query.paginate(page=page, per_page=per_page, error_out=False))
