"""
Stock Ledger tests.

Verifies:
- current_stock always equals the sum of movement deltas
- Consuming movements never drive available stock negative
- movement_key replays apply once
- A movement can be reversed once; reversals cannot be reversed
- Reservations, low-stock and expiring-soon views
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta

import pytest

from salonerp.errors import Conflict, InsufficientStock, NotFound, ValidationError
from salonerp.extensions import db
from salonerp.models import Product, Salon, Staff, StockMovement
from salonerp.permissions import permissions_for_role
from salonerp.services import stock_service
from salonerp.services.context import SalonContext


def _reload(product_id: int) -> Product:
    db.session.expire_all()
    return db.session.get(Product, product_id)


def _ledger_sum(product_id: int) -> int:
    return sum(m.quantity_delta for m in db.session.query(StockMovement).filter_by(product_id=product_id))


class TestApplyMovement:

    def test_opening_stock_is_booked_as_movement(self, product_a):
        movements = db.session.query(StockMovement).filter_by(product_id=product_a.id).all()
        assert len(movements) == 1
        assert movements[0].movement_type == "opening_balance"
        assert movements[0].quantity_delta == 10
        assert _reload(product_a.id).current_stock == 10

    def test_sequence_conserves_stock(self, ctx_a, product_a):
        steps = [
            (5, "purchase_receipt"),
            (-3, "consumption"),
            (-1, "damaged"),
            (2, "adjustment_positive"),
            (-4, "sale"),
        ]
        for delta, movement_type in steps:
            stock_service.apply_movement(
                ctx_a, product_id=product_a.id, quantity_delta=delta, movement_type=movement_type
            )

        product = _reload(product_a.id)
        assert product.current_stock == 10 + sum(d for d, _ in steps)
        assert product.current_stock == _ledger_sum(product_a.id)
        assert stock_service.verify_stock_consistency(ctx_a) == []

    def test_movement_records_before_and_after(self, ctx_a, product_a):
        movement = stock_service.apply_movement(
            ctx_a, product_id=product_a.id, quantity_delta=-2, movement_type="consumption", reason="Colour service"
        )
        assert movement.stock_before == 10
        assert movement.stock_after == 8
        assert movement.actor_staff_id == ctx_a.staff_id
        assert movement.salon_id == ctx_a.salon_id

    def test_negative_stock_rejected_and_state_unchanged(self, ctx_a, product_a):
        with pytest.raises(InsufficientStock) as exc_info:
            stock_service.apply_movement(
                ctx_a, product_id=product_a.id, quantity_delta=-11, movement_type="consumption"
            )

        assert exc_info.value.available == 10
        assert exc_info.value.requested == 11
        assert _reload(product_a.id).current_stock == 10
        assert db.session.query(StockMovement).filter_by(product_id=product_a.id).count() == 1

    def test_consuming_exactly_available_reaches_zero(self, ctx_a, product_a):
        stock_service.apply_movement(ctx_a, product_id=product_a.id, quantity_delta=-10, movement_type="sale")
        product = _reload(product_a.id)
        assert product.current_stock == 0
        assert product.stock_status == "out-of-stock"

    @pytest.mark.parametrize(
        "delta,movement_type",
        [
            (0, "consumption"),
            (5, "consumption"),
            (-5, "purchase_receipt"),
            (1, "teleport"),
            (1.5, "purchase_receipt"),
            (True, "purchase_receipt"),
        ],
    )
    def test_invalid_movements_rejected(self, ctx_a, product_a, delta, movement_type):
        with pytest.raises(ValidationError):
            stock_service.apply_movement(
                ctx_a, product_id=product_a.id, quantity_delta=delta, movement_type=movement_type
            )
        assert _reload(product_a.id).current_stock == 10

    def test_unknown_product_not_found(self, ctx_a):
        with pytest.raises(NotFound):
            stock_service.apply_movement(ctx_a, product_id=99999, quantity_delta=1, movement_type="purchase_receipt")

    def test_foreign_salon_product_not_found(self, ctx_a, product_b):
        with pytest.raises(NotFound):
            stock_service.apply_movement(ctx_a, product_id=product_b.id, quantity_delta=1, movement_type="purchase_receipt")
        assert _reload(product_b.id).current_stock == 4

    def test_inactive_product_not_found(self, ctx_a, product_a):
        product_a.is_active = False
        db.session.commit()
        with pytest.raises(NotFound):
            stock_service.apply_movement(ctx_a, product_id=product_a.id, quantity_delta=1, movement_type="purchase_receipt")


class TestMovementKey:

    def test_replay_applies_once(self, ctx_a, product_a):
        first = stock_service.apply_movement(
            ctx_a, product_id=product_a.id, quantity_delta=-2, movement_type="consumption", movement_key="mv-1"
        )
        second = stock_service.apply_movement(
            ctx_a, product_id=product_a.id, quantity_delta=-2, movement_type="consumption", movement_key="mv-1"
        )

        assert first.id == second.id
        assert _reload(product_a.id).current_stock == 8
        assert db.session.query(StockMovement).filter_by(movement_key="mv-1").count() == 1

    def test_reused_key_with_different_delta_rejected(self, ctx_a, product_a):
        stock_service.apply_movement(
            ctx_a, product_id=product_a.id, quantity_delta=-2, movement_type="consumption", movement_key="mv-2"
        )
        with pytest.raises(ValidationError):
            stock_service.apply_movement(
                ctx_a, product_id=product_a.id, quantity_delta=-3, movement_type="consumption", movement_key="mv-2"
            )
        assert _reload(product_a.id).current_stock == 8

    def test_same_key_in_another_salon_is_independent(self, ctx_a, ctx_b, product_a, product_b):
        stock_service.apply_movement(
            ctx_a, product_id=product_a.id, quantity_delta=1, movement_type="purchase_receipt", movement_key="po-7"
        )
        stock_service.apply_movement(
            ctx_b, product_id=product_b.id, quantity_delta=1, movement_type="purchase_receipt", movement_key="po-7"
        )
        assert _reload(product_a.id).current_stock == 11
        assert _reload(product_b.id).current_stock == 5


class TestReversal:

    def test_reverse_once(self, ctx_a, product_a):
        movement = stock_service.apply_movement(
            ctx_a, product_id=product_a.id, quantity_delta=-4, movement_type="damaged"
        )
        reversal = stock_service.reverse_movement(ctx_a, movement_id=movement.id, reason="Miscounted")

        assert reversal.movement_type == "reversal"
        assert reversal.quantity_delta == 4
        assert reversal.reversal_of_id == movement.id
        assert _reload(product_a.id).current_stock == 10

        with pytest.raises(Conflict):
            stock_service.reverse_movement(ctx_a, movement_id=movement.id, reason="Again")
        assert _reload(product_a.id).current_stock == 10

    def test_reversal_cannot_be_reversed(self, ctx_a, product_a):
        movement = stock_service.apply_movement(
            ctx_a, product_id=product_a.id, quantity_delta=3, movement_type="purchase_receipt"
        )
        reversal = stock_service.reverse_movement(ctx_a, movement_id=movement.id, reason="Wrong PO")
        with pytest.raises(ValidationError):
            stock_service.reverse_movement(ctx_a, movement_id=reversal.id, reason="Undo undo")

    def test_reversing_inbound_respects_stock_guard(self, ctx_a, product_a):
        receipt = stock_service.apply_movement(
            ctx_a, product_id=product_a.id, quantity_delta=5, movement_type="purchase_receipt"
        )
        stock_service.apply_movement(ctx_a, product_id=product_a.id, quantity_delta=-12, movement_type="sale")

        with pytest.raises(InsufficientStock):
            stock_service.reverse_movement(ctx_a, movement_id=receipt.id, reason="Returned to supplier")
        assert _reload(product_a.id).current_stock == 3

    def test_reason_required(self, ctx_a, product_a):
        movement = db.session.query(StockMovement).filter_by(product_id=product_a.id).first()
        with pytest.raises(ValidationError):
            stock_service.reverse_movement(ctx_a, movement_id=movement.id, reason="  ")


class TestReservations:

    def test_reserve_reduces_available(self, ctx_a, product_a):
        product = stock_service.reserve_stock(ctx_a, product_id=product_a.id, quantity=4)
        assert product.reserved_stock == 4
        assert stock_service.compute_available(product) == 6

        with pytest.raises(InsufficientStock):
            stock_service.apply_movement(ctx_a, product_id=product_a.id, quantity_delta=-7, movement_type="sale")

    def test_reserve_beyond_available_rejected(self, ctx_a, product_a):
        stock_service.reserve_stock(ctx_a, product_id=product_a.id, quantity=8)
        with pytest.raises(InsufficientStock):
            stock_service.reserve_stock(ctx_a, product_id=product_a.id, quantity=3)
        assert _reload(product_a.id).reserved_stock == 8

    def test_consume_from_reservation(self, ctx_a, product_a):
        stock_service.reserve_stock(ctx_a, product_id=product_a.id, quantity=4)
        movement = stock_service.apply_movement(
            ctx_a, product_id=product_a.id, quantity_delta=-3, movement_type="consumption", from_reservation=True
        )
        product = _reload(product_a.id)
        assert movement.reserved_delta == -3
        assert product.current_stock == 7
        assert product.reserved_stock == 1
        assert product.current_stock == _ledger_sum(product_a.id)

    def test_consume_more_than_reserved_rejected(self, ctx_a, product_a):
        stock_service.reserve_stock(ctx_a, product_id=product_a.id, quantity=2)
        with pytest.raises(InsufficientStock):
            stock_service.apply_movement(
                ctx_a, product_id=product_a.id, quantity_delta=-3, movement_type="consumption", from_reservation=True
            )

    def test_release_is_clamped_at_zero(self, ctx_a, product_a):
        stock_service.reserve_stock(ctx_a, product_id=product_a.id, quantity=2)
        product = stock_service.release_reservation(ctx_a, product_id=product_a.id, quantity=5)
        assert product.reserved_stock == 0
        assert product.available_stock == 10


class TestDerivedViews:

    def test_low_stock_ordering(self, ctx_a, product_a):
        second = stock_service.create_product(
            ctx_a, max_stock=50, sku="SERUM-001", name="Hair Serum", opening_stock=1, reorder_level=2
        )
        stock_service.create_product(
            ctx_a, max_stock=50, sku="WAX-001", name="Styling Wax", opening_stock=20, reorder_level=2
        )
        stock_service.apply_movement(ctx_a, product_id=product_a.id, quantity_delta=-8, movement_type="sale")

        low = stock_service.low_stock(ctx_a)
        assert [p.id for p in low] == [second.id, product_a.id]

    def test_low_stock_counts_reservations(self, ctx_a, product_a):
        assert stock_service.low_stock(ctx_a) == []
        stock_service.reserve_stock(ctx_a, product_id=product_a.id, quantity=7)
        assert [p.id for p in stock_service.low_stock(ctx_a)] == [product_a.id]

    def test_expiring_soon_window(self, ctx_a):
        now = datetime(2026, 5, 1, 12, 0)
        soon = stock_service.create_product(ctx_a, max_stock=50, sku="DYE-1", name="Dye", expiry_date=now + timedelta(days=10))
        stock_service.create_product(ctx_a, max_stock=50, sku="DYE-2", name="Dye 2", expiry_date=now + timedelta(days=45))
        stock_service.create_product(ctx_a, max_stock=50, sku="DYE-3", name="Dye 3", expiry_date=now - timedelta(days=1))
        sooner = stock_service.create_product(ctx_a, max_stock=50, sku="DYE-4", name="Dye 4", expiry_date=now + timedelta(days=2))
        stock_service.create_product(ctx_a, max_stock=50, sku="DYE-5", name="No expiry")

        result = stock_service.expiring_soon(ctx_a, window_days=30, now=now)
        assert [p.id for p in result] == [sooner.id, soon.id]

    def test_inventory_stats(self, ctx_a, product_a):
        stock_service.create_product(ctx_a, max_stock=50, sku="EMPTY-1", name="Empty")
        stats = stock_service.inventory_stats(ctx_a)
        assert stats["total_products"] == 2
        assert stats["by_status"]["out-of-stock"] == 1
        assert stats["by_status"]["in-stock"] == 1
        assert stats["total_stock_value_cents"] == 10 * 250

    def test_duplicate_sku_conflict(self, ctx_a, product_a):
        with pytest.raises(Conflict):
            stock_service.create_product(ctx_a, max_stock=50, sku="SHAMPOO-001", name="Dup")

    def test_list_movements_newest_first(self, ctx_a, product_a):
        stock_service.apply_movement(ctx_a, product_id=product_a.id, quantity_delta=-1, movement_type="sale")
        stock_service.apply_movement(ctx_a, product_id=product_a.id, quantity_delta=2, movement_type="purchase_receipt")

        page = stock_service.list_movements(ctx_a, product_id=product_a.id)
        assert page["total"] == 3
        assert [m["quantity_delta"] for m in page["items"]] == [2, -1, 10]

        sales = stock_service.list_movements(ctx_a, movement_type="sale")
        assert sales["total"] == 1

    def test_consistency_check_detects_drift(self, ctx_a, product_a):
        # Bypass the ledger to simulate drift
        db.session.execute(
            Product.__table__.update().where(Product.id == product_a.id).values(current_stock=12)
        )
        db.session.commit()

        mismatches = stock_service.verify_stock_consistency(ctx_a)
        assert mismatches == [{
            "product_id": product_a.id,
            "sku": "SHAMPOO-001",
            "cached_stock": 12,
            "ledger_stock": 10,
            "difference": 2,
        }]

    def test_stock_at_max_is_excess(self, ctx_a, product_a):
        stock_service.apply_movement(
            ctx_a, product_id=product_a.id, quantity_delta=40, movement_type="purchase_receipt"
        )
        assert _reload(product_a.id).stock_status == "excess-stock"

    def test_zero_max_stock_means_any_stock_is_excess(self, ctx_a):
        product = stock_service.create_product(ctx_a, max_stock=0, sku="TRIAL-1", name="Trial Size", opening_stock=1)
        assert product.stock_status == "excess-stock"

    def test_max_stock_is_required(self, ctx_a):
        with pytest.raises(TypeError):
            stock_service.create_product(ctx_a, sku="NOMAX-1", name="No Max")


class TestMovementApproval:

    def _adjust_down(self, ctx, product, qty=2):
        return stock_service.apply_movement(
            ctx, product_id=product.id, quantity_delta=-qty, movement_type="adjustment_negative", reason="Count"
        )

    def test_routine_movement_needs_no_approval(self, ctx_a, product_a):
        movement = stock_service.apply_movement(
            ctx_a, product_id=product_a.id, quantity_delta=-1, movement_type="consumption"
        )
        assert movement.approval_required is False
        assert movement.approval_status == "not_required"
        with pytest.raises(ValidationError):
            stock_service.approve_movement(ctx_a, movement_id=movement.id)

    def test_negative_adjustment_is_pending_but_applied(self, ctx_a, product_a):
        movement = self._adjust_down(ctx_a, product_a)
        assert movement.approval_required is True
        assert movement.approval_status == "pending"
        assert _reload(product_a.id).current_stock == 8

    def test_quantity_threshold(self, ctx_a, product_a):
        at_threshold = stock_service.apply_movement(
            ctx_a, product_id=product_a.id, quantity_delta=50, movement_type="purchase_receipt"
        )
        above = stock_service.apply_movement(
            ctx_a, product_id=product_a.id, quantity_delta=51, movement_type="purchase_receipt"
        )
        assert at_threshold.approval_status == "not_required"
        assert above.approval_status == "pending"

    def test_approve_keeps_stock(self, ctx_a, product_a):
        movement = self._adjust_down(ctx_a, product_a)
        approved = stock_service.approve_movement(ctx_a, movement_id=movement.id, notes="Recount confirmed")

        assert approved.approval_status == "approved"
        assert approved.approved_by_staff_id == ctx_a.staff_id
        assert approved.approved_at is not None
        assert approved.approval_notes == "Recount confirmed"
        assert _reload(product_a.id).current_stock == 8

        with pytest.raises(Conflict):
            stock_service.approve_movement(ctx_a, movement_id=movement.id)
        with pytest.raises(Conflict):
            stock_service.reject_movement(ctx_a, movement_id=movement.id, reason="Changed mind")

    def test_reject_reverses_stock_effect(self, ctx_a, product_a):
        movement = self._adjust_down(ctx_a, product_a)
        rejected = stock_service.reject_movement(ctx_a, movement_id=movement.id, reason="Bottles were found")

        assert rejected.approval_status == "rejected"
        assert rejected.rejected_by_staff_id == ctx_a.staff_id
        assert rejected.rejection_reason == "Bottles were found"
        assert _reload(product_a.id).current_stock == 10
        assert _ledger_sum(product_a.id) == 10

        reversal = db.session.query(StockMovement).filter_by(reversal_of_id=movement.id).one()
        assert reversal.quantity_delta == 2
        assert reversal.movement_type == "reversal"

        with pytest.raises(Conflict):
            stock_service.reject_movement(ctx_a, movement_id=movement.id, reason="Again")

    def test_reject_requires_reason(self, ctx_a, product_a):
        movement = self._adjust_down(ctx_a, product_a)
        with pytest.raises(ValidationError):
            stock_service.reject_movement(ctx_a, movement_id=movement.id, reason="  ")

    def test_reject_after_manual_reversal_does_not_double_reverse(self, ctx_a, product_a):
        movement = self._adjust_down(ctx_a, product_a)
        stock_service.reverse_movement(ctx_a, movement_id=movement.id, reason="Miscounted")

        rejected = stock_service.reject_movement(ctx_a, movement_id=movement.id, reason="Miscounted")

        assert rejected.approval_status == "rejected"
        assert _reload(product_a.id).current_stock == 10
        assert db.session.query(StockMovement).filter_by(reversal_of_id=movement.id).count() == 1

    def test_reject_fails_when_stock_already_used(self, ctx_a, product_a):
        receipt = stock_service.apply_movement(
            ctx_a, product_id=product_a.id, quantity_delta=60, movement_type="purchase_receipt"
        )
        stock_service.apply_movement(ctx_a, product_id=product_a.id, quantity_delta=-45, movement_type="sale")

        with pytest.raises(InsufficientStock):
            stock_service.reject_movement(ctx_a, movement_id=receipt.id, reason="Wrong delivery")

        db.session.expire_all()
        assert db.session.get(StockMovement, receipt.id).approval_status == "pending"
        assert _reload(product_a.id).current_stock == 25

    def test_pending_filter_and_tenant_scope(self, ctx_a, ctx_b, product_a):
        movement = self._adjust_down(ctx_a, product_a)
        assert stock_service.list_movements(ctx_a, approval_status="pending")["total"] == 1
        assert stock_service.list_movements(ctx_a, approval_status="not_required")["total"] == 1
        with pytest.raises(ValidationError):
            stock_service.list_movements(ctx_a, approval_status="maybe")
        with pytest.raises(NotFound):
            stock_service.approve_movement(ctx_b, movement_id=movement.id)


class TestMovementAnalytics:

    def test_breakdown(self, ctx_a, product_a):
        stock_service.apply_movement(ctx_a, product_id=product_a.id, quantity_delta=-3, movement_type="sale")
        stock_service.apply_movement(
            ctx_a, product_id=product_a.id, quantity_delta=5, movement_type="purchase_receipt", unit_cost_cents=200
        )
        stock_service.apply_movement(
            ctx_a, product_id=product_a.id, quantity_delta=-1, movement_type="adjustment_negative"
        )

        result = stock_service.movement_analytics(ctx_a)

        assert [row["movement_type"] for row in result["by_type"]] == [
            "opening_balance", "purchase_receipt", "sale", "adjustment_negative",
        ]
        assert result["by_type"][0] == {
            "movement_type": "opening_balance",
            "count": 1,
            "total_quantity": 10,
            "total_value_cents": 10 * 250,
        }
        assert result["by_type"][1]["total_value_cents"] == 5 * 200

        assert sum(day["movements"] for day in result["daily_trend"]) == 4
        assert sum(day["incoming_quantity"] for day in result["daily_trend"]) == 15
        assert sum(day["outgoing_quantity"] for day in result["daily_trend"]) == 4

        assert result["top_products"] == [{
            "product_id": product_a.id,
            "sku": "SHAMPOO-001",
            "name": "Argan Shampoo",
            "movements": 4,
            "total_quantity": 19,
        }]
        assert result["pending_approval_count"] == 1

    def test_window_excludes_older_movements(self, ctx_a, product_a):
        result = stock_service.movement_analytics(ctx_a, end=datetime(2020, 1, 1))
        assert result["by_type"] == []
        assert result["daily_trend"] == []
        assert result["top_products"] == []
        assert result["pending_approval_count"] == 0

    def test_inverted_window_rejected(self, ctx_a):
        with pytest.raises(ValidationError):
            stock_service.movement_analytics(ctx_a, start=datetime(2026, 2, 1), end=datetime(2026, 1, 1))


class TestConcurrentMovements:

    OPENING = 30
    ATTEMPTS = 50

    def test_stock_never_oversold(self, file_app):
        with file_app.app_context():
            salon = Salon(name="Concurrency Salon", code="CONC", timezone="UTC")
            db.session.add(salon)
            db.session.commit()
            staff = Staff(salon_id=salon.id, name="Stylist", email="stylist@conc.example", role="salon_admin")
            db.session.add(staff)
            db.session.commit()

            ctx = SalonContext(
                salon_id=salon.id,
                staff_id=staff.id,
                role=staff.role,
                permissions=permissions_for_role(staff.role),
            )
            product = stock_service.create_product(
                ctx, sku="FOIL-1", name="Foil Sheets", max_stock=100, opening_stock=self.OPENING
            )
            product_id = product.id

        def consume(_: int) -> bool:
            with file_app.app_context():
                try:
                    stock_service.apply_movement(
                        ctx, product_id=product_id, quantity_delta=-1, movement_type="consumption"
                    )
                    return True
                except InsufficientStock:
                    return False
                finally:
                    db.session.remove()

        with ThreadPoolExecutor(max_workers=10) as pool:
            results = list(pool.map(consume, range(self.ATTEMPTS)))

        assert results.count(True) == self.OPENING

        with file_app.app_context():
            product = db.session.get(Product, product_id)
            assert product.current_stock >= 0
            assert product.current_stock == _ledger_sum(product_id) == 0
            assert stock_service.verify_stock_consistency(ctx) == []
