"""
Financial Rollup tests.

Verifies:
- Period boundaries (half-open, salon timezone, weeks start Sunday)
- Dashboard revenue / expense / profit figures
- Cancelled expenses and unpaid bills stay out of the figures
"""

from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from salonerp.errors import ValidationError
from salonerp.models import Service
from salonerp.services import billing_service, expense_service, payment_service
from salonerp.services.rollup_service import dashboard, expense_stats, period_range, profit_margin


NOW = datetime(2026, 3, 18, 15, 30)  # Wednesday, UTC


class TestPeriodRange:

    def test_daily(self):
        assert period_range("daily", NOW) == (datetime(2026, 3, 18), datetime(2026, 3, 19))

    def test_weekly_starts_on_sunday_midnight(self):
        assert period_range("weekly", NOW) == (datetime(2026, 3, 15), datetime(2026, 3, 22))

    def test_weekly_on_a_sunday(self):
        assert period_range("weekly", datetime(2026, 3, 15, 9, 0)) == (datetime(2026, 3, 15), datetime(2026, 3, 22))

    def test_monthly(self):
        assert period_range("monthly", NOW) == (datetime(2026, 3, 1), datetime(2026, 4, 1))

    def test_monthly_december_rolls_year(self):
        assert period_range("monthly", datetime(2026, 12, 10)) == (datetime(2026, 12, 1), datetime(2027, 1, 1))

    def test_yearly(self):
        assert period_range("yearly", NOW) == (datetime(2026, 1, 1), datetime(2027, 1, 1))

    def test_salon_timezone(self):
        # 20:00 UTC is already 01:30 the next day in Kolkata (UTC+05:30)
        start, end = period_range("daily", datetime(2026, 3, 18, 20, 0), ZoneInfo("Asia/Kolkata"))
        assert start == datetime(2026, 3, 18, 18, 30)
        assert end == datetime(2026, 3, 19, 18, 30)

    def test_unknown_period(self):
        with pytest.raises(ValidationError):
            period_range("fortnightly", NOW)


class TestProfitMargin:

    def test_zero_revenue(self):
        assert profit_margin(-500, 0) == 0.0

    def test_rounding(self):
        assert profit_margin(1, 3) == 33.33


@pytest.fixture(scope='function')
def service_1000(db_session, ctx_a):
    service = Service(salon_id=ctx_a.salon_id, name="Hair Spa", price_cents=1000)
    db_session.add(service)
    db_session.commit()
    return service


def _paid_bill(ctx, customer, service, *, amount, when, method="cash"):
    bill = billing_service.create_bill(
        ctx, customer_id=customer.id, service_lines=[{"service_id": service.id}], bill_date=when
    )
    payment_service.record_payment(ctx, bill_id=bill.id, amount_cents=amount, method=method, paid_at=when)
    return bill


class TestDashboard:

    def test_empty_dashboard_is_zeros(self, ctx_a, salon_a):
        result = dashboard(ctx_a, period="monthly", now=NOW)

        assert result["revenue"] == {
            "total_revenue_cents": 0,
            "service_revenue_cents": 0,
            "product_revenue_cents": 0,
            "total_bills": 0,
            "average_order_value_cents": 0,
        }
        assert result["expenses"] == {"total_expenses_cents": 0, "total_expense_count": 0}
        assert result["net_profit_cents"] == 0
        assert result["profit_margin"] == 0
        assert result["payment_method_breakdown"] == []
        assert result["start"] == "2026-03-01T00:00:00Z"
        assert result["end"] == "2026-04-01T00:00:00Z"

    def test_cancelled_expense_excluded(self, ctx_a, customer_a, service_1000):
        _paid_bill(ctx_a, customer_a, service_1000, amount=1000, when=datetime(2026, 3, 10, 11, 0))
        expense = expense_service.create_expense(
            ctx_a, title="Shelf", category="equipment", amount_cents=500,
            payment_method="cash", expense_date=datetime(2026, 3, 11),
        )
        expense_service.cancel_expense(ctx_a, expense_id=expense.id, reason="Returned")

        result = dashboard(ctx_a, period="monthly", now=NOW)
        assert result["revenue"]["total_revenue_cents"] == 1000
        assert result["expenses"]["total_expenses_cents"] == 0
        assert result["net_profit_cents"] == 1000
        assert result["profit_margin"] == 100.0

    def test_revenue_expenses_and_breakdown(self, ctx_a, customer_a, service_1000):
        _paid_bill(ctx_a, customer_a, service_1000, amount=1000, when=datetime(2026, 3, 2), method="upi")
        _paid_bill(ctx_a, customer_a, service_1000, amount=400, when=datetime(2026, 3, 3), method="cash")
        # Unpaid bill: not revenue
        billing_service.create_bill(
            ctx_a, customer_id=customer_a.id, service_lines=[{"service_id": service_1000.id}],
            bill_date=datetime(2026, 3, 4),
        )
        # Previous month: out of range
        _paid_bill(ctx_a, customer_a, service_1000, amount=1000, when=datetime(2026, 2, 27), method="card")

        expense_service.create_expense(
            ctx_a, title="Rent", category="rent", amount_cents=1500,
            payment_method="bank_transfer", expense_date=datetime(2026, 3, 1),
        )

        result = dashboard(ctx_a, period="monthly", now=NOW)
        revenue = result["revenue"]
        assert revenue["total_revenue_cents"] == 2000
        assert revenue["service_revenue_cents"] == 2000
        assert revenue["total_bills"] == 2
        assert revenue["average_order_value_cents"] == 1000
        assert result["expenses"]["total_expenses_cents"] == 1500
        assert result["net_profit_cents"] == 500
        assert result["profit_margin"] == 25.0
        assert result["payment_method_breakdown"] == [
            {"method": "upi", "amount_cents": 1000, "count": 1},
            {"method": "cash", "amount_cents": 400, "count": 1},
        ]

    def test_negative_margin(self, ctx_a, customer_a, service_1000):
        _paid_bill(ctx_a, customer_a, service_1000, amount=1000, when=datetime(2026, 3, 18, 9, 0))
        expense_service.create_expense(
            ctx_a, title="Dryer", category="equipment", amount_cents=3000,
            payment_method="card", expense_date=datetime(2026, 3, 18, 10, 0),
        )
        result = dashboard(ctx_a, period="daily", now=NOW)
        assert result["net_profit_cents"] == -2000
        assert result["profit_margin"] == -200.0

    def test_other_salon_not_counted(self, ctx_a, ctx_b, customer_a, service_1000):
        _paid_bill(ctx_a, customer_a, service_1000, amount=1000, when=datetime(2026, 3, 5))
        assert dashboard(ctx_b, period="monthly", now=NOW)["revenue"]["total_revenue_cents"] == 0


class TestExpenseStats:

    def test_category_breakdown_sorted_by_total(self, ctx_a, salon_a):
        for title, category, amount in [
            ("Rent", "rent", 5000),
            ("Shampoo stock", "supplies", 700),
            ("Towels", "supplies", 500),
            ("Flyers", "marketing", 300),
        ]:
            expense_service.create_expense(
                ctx_a, title=title, category=category, amount_cents=amount,
                payment_method="cash", expense_date=datetime(2026, 3, 5),
            )

        stats = expense_stats(ctx_a, period="monthly", now=NOW)
        assert [c["category"] for c in stats["categories"]] == ["rent", "supplies", "marketing"]
        supplies = stats["categories"][1]
        assert supplies == {"category": "supplies", "total_cents": 1200, "count": 2, "average_cents": 600}
        assert stats["total_expenses_cents"] == 6500
        assert stats["total_expense_count"] == 4
