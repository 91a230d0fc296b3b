# Overview: Financial rollup; period-bucketed revenue, expense and profit figures.

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone

from sqlalchemy import func

from ..errors import NotFound, ValidationError
from ..extensions import db
from ..models import Bill, Expense, Payment, Salon
from ..models.billing import BILL_STATUS_PAID, BILL_STATUS_PARTIAL, PAYMENT_STATUS_VERIFIED
from ..models.expenses import EXPENSE_STATUS_CANCELLED
from salonerp.time_utils import salon_zone, to_utc_naive, to_utc_z, utcnow
from .context import SalonContext

PERIOD_DAILY = "daily"
PERIOD_WEEKLY = "weekly"
PERIOD_MONTHLY = "monthly"
PERIOD_YEARLY = "yearly"

VALID_PERIODS = (PERIOD_DAILY, PERIOD_WEEKLY, PERIOD_MONTHLY, PERIOD_YEARLY)

# Bills that count as revenue
REVENUE_STATUSES = (BILL_STATUS_PAID, BILL_STATUS_PARTIAL)


def period_range(period: str, now: datetime | None = None, tz=None) -> tuple[datetime, datetime]:
    """
    Half-open [start, end) for the period containing `now`.

    Boundaries are local midnights in `tz` (a ZoneInfo; UTC when None) and
    are returned as UTC-naive datetimes. Weeks start on Sunday.
    `now` is UTC; naive values are taken as UTC.
    """
    if period not in VALID_PERIODS:
        raise ValidationError(f"Invalid period: {period}. Must be one of {list(VALID_PERIODS)}")

    tz = tz or timezone.utc
    now = now or utcnow()
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    today = now.astimezone(tz).date()

    if period == PERIOD_DAILY:
        start_day = today
        end_day = today + timedelta(days=1)
    elif period == PERIOD_WEEKLY:
        # date.weekday(): Monday == 0 ... Sunday == 6
        start_day = today - timedelta(days=(today.weekday() + 1) % 7)
        end_day = start_day + timedelta(days=7)
    elif period == PERIOD_MONTHLY:
        start_day = today.replace(day=1)
        if start_day.month == 12:
            end_day = date(start_day.year + 1, 1, 1)
        else:
            end_day = date(start_day.year, start_day.month + 1, 1)
    else:
        start_day = date(today.year, 1, 1)
        end_day = date(today.year + 1, 1, 1)

    def _local_midnight(day: date) -> datetime:
        return to_utc_naive(datetime.combine(day, time.min, tzinfo=tz))

    return _local_midnight(start_day), _local_midnight(end_day)


def _salon_range(ctx: SalonContext, period: str, now: datetime | None) -> tuple[datetime, datetime]:
    salon = db.session.get(Salon, ctx.salon_id)
    if salon is None:
        raise NotFound(f"Salon {ctx.salon_id} not found")
    try:
        zone = salon_zone(salon.timezone)
    except ValueError as exc:
        raise ValidationError(str(exc))
    return period_range(period, now, zone)


def _expense_filters(ctx: SalonContext, start: datetime, end: datetime) -> list:
    return [
        Expense.salon_id == ctx.salon_id,
        Expense.status != EXPENSE_STATUS_CANCELLED,
        Expense.expense_date >= start,
        Expense.expense_date < end,
    ]


def profit_margin(net_cents: int, revenue_cents: int) -> float:
    """net / revenue * 100, rounded to 2 dp; 0 when there is no revenue."""
    if not revenue_cents:
        return 0.0
    return round(net_cents * 100.0 / revenue_cents, 2)


def dashboard(ctx: SalonContext, period: str = PERIOD_MONTHLY, now: datetime | None = None) -> dict:
    """
    Financial dashboard for the salon's current period.

    Revenue: bills in paid/partial status with bill_date in range.
    Expenses: non-cancelled expenses with expense_date in range.
    Payment breakdown: verified payments by paid_at, grouped by method.
    Read-only.
    """
    start, end = _salon_range(ctx, period, now)

    revenue_row = db.session.query(
        func.coalesce(func.sum(Bill.total_amount_cents), 0).label("total"),
        func.coalesce(func.sum(Bill.service_subtotal_cents), 0).label("service"),
        func.coalesce(func.sum(Bill.product_subtotal_cents), 0).label("product"),
        func.count(Bill.id).label("bills"),
    ).filter(
        Bill.salon_id == ctx.salon_id,
        Bill.payment_status.in_(REVENUE_STATUSES),
        Bill.bill_date >= start,
        Bill.bill_date < end,
    ).one()

    total_revenue = int(revenue_row.total or 0)
    total_bills = int(revenue_row.bills or 0)

    expense_row = db.session.query(
        func.coalesce(func.sum(Expense.amount_cents), 0).label("total"),
        func.count(Expense.id).label("count"),
    ).filter(*_expense_filters(ctx, start, end)).one()

    total_expenses = int(expense_row.total or 0)
    net_profit = total_revenue - total_expenses

    method_rows = db.session.query(
        Payment.method,
        func.coalesce(func.sum(Payment.amount_cents), 0).label("amount"),
        func.count(Payment.id).label("count"),
    ).filter(
        Payment.salon_id == ctx.salon_id,
        Payment.status == PAYMENT_STATUS_VERIFIED,
        Payment.paid_at >= start,
        Payment.paid_at < end,
    ).group_by(Payment.method).all()

    breakdown = sorted(
        (
            {"method": row.method, "amount_cents": int(row.amount or 0), "count": int(row.count or 0)}
            for row in method_rows
        ),
        key=lambda item: (-item["amount_cents"], item["method"]),
    )

    return {
        "period": period,
        "start": to_utc_z(start),
        "end": to_utc_z(end),
        "revenue": {
            "total_revenue_cents": total_revenue,
            "service_revenue_cents": int(revenue_row.service or 0),
            "product_revenue_cents": int(revenue_row.product or 0),
            "total_bills": total_bills,
            "average_order_value_cents": round(total_revenue / total_bills) if total_bills else 0,
        },
        "expenses": {
            "total_expenses_cents": total_expenses,
            "total_expense_count": int(expense_row.count or 0),
        },
        "net_profit_cents": net_profit,
        "profit_margin": profit_margin(net_profit, total_revenue),
        "payment_method_breakdown": breakdown,
    }


def expense_stats(ctx: SalonContext, period: str = PERIOD_MONTHLY, now: datetime | None = None) -> dict:
    """Per-category expense totals for the period, largest first."""
    start, end = _salon_range(ctx, period, now)

    rows = db.session.query(
        Expense.category,
        func.coalesce(func.sum(Expense.amount_cents), 0).label("total"),
        func.count(Expense.id).label("count"),
    ).filter(*_expense_filters(ctx, start, end)).group_by(Expense.category).all()

    categories = []
    for row in rows:
        total = int(row.total or 0)
        count = int(row.count or 0)
        categories.append({
            "category": row.category,
            "total_cents": total,
            "count": count,
            "average_cents": round(total / count) if count else 0,
        })
    categories.sort(key=lambda item: (-item["total_cents"], item["category"]))

    return {
        "period": period,
        "start": to_utc_z(start),
        "end": to_utc_z(end),
        "categories": categories,
        "total_expenses_cents": sum(c["total_cents"] for c in categories),
        "total_expense_count": sum(c["count"] for c in categories),
    }
