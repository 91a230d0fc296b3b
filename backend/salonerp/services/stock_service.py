# Overview: Stock ledger; applies signed stock movements and derives stock views.

"""
Salon ERP Stock Ledger Invariants (authoritative)

Stock model:
- Product.current_stock is a cache of SUM(StockMovement.quantity_delta).
  Every change to current_stock appends exactly one StockMovement in the
  same DB transaction; nothing else writes the column.
- Product.reserved_stock is earmarked stock. available = current - reserved.
- current_stock >= 0, 0 <= reserved_stock <= current_stock, so available is
  never negative.

Concurrency:
- Stock is moved with a single conditional UPDATE whose WHERE clause carries
  the stock guard. Two requests racing on one product are serialized by the
  database; the loser's guard is evaluated against the winner's result.
  There is no read-modify-write of stock columns in Python.

Idempotency:
- movement_key (optional, unique per salon) makes a movement replay-safe.
- reversal_of_id is unique, so a movement is reversed at most once.

Approval:
- Manual movements of more than APPROVAL_QUANTITY_THRESHOLD units, and
  every adjustment_negative, are applied at once and flagged pending.
- Approving only records the decision. Rejecting also reverses the stock
  effect in the same transaction, unless the movement is already reversed.

Time:
- occurred_at is UTC-naive, set by the server.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import case, func, update
from sqlalchemy.exc import IntegrityError

from ..errors import Conflict, InsufficientStock, NotFound, ValidationError
from ..extensions import db
from ..models import Product, StockMovement
from ..models.catalog import (
    STOCK_STATUS_EXCESS,
    STOCK_STATUS_IN,
    STOCK_STATUS_LOW,
    STOCK_STATUS_OUT,
    STOCK_STATUS_REORDER,
)
from ..models.inventory import (
    APPROVAL_APPROVED,
    APPROVAL_MOVEMENT_TYPES,
    APPROVAL_NOT_REQUIRED,
    APPROVAL_PENDING,
    APPROVAL_QUANTITY_THRESHOLD,
    APPROVAL_REJECTED,
    APPROVAL_STATUSES,
    INBOUND_MOVEMENT_TYPES,
    MOVEMENT_TYPE_REVERSAL,
    OUTBOUND_MOVEMENT_TYPES,
    VALID_MOVEMENT_TYPES,
)
from salonerp.time_utils import to_utc_z, utcnow
from .concurrency import run_with_retry
from .context import SalonContext
from .pagination import clamp_page, page_to_dict


# =============================================================================
# LOOKUPS
# =============================================================================

def get_product(ctx: SalonContext, product_id: int, *, require_active: bool = False) -> Product:
    """Load a product owned by the calling salon, or raise NotFound."""
    product = db.session.query(Product).filter_by(id=product_id, salon_id=ctx.salon_id).first()
    if product is None:
        raise NotFound(f"Product {product_id} not found")
    if require_active and not product.is_active:
        raise NotFound(f"Product {product_id} is inactive")
    return product


def compute_available(product: Product) -> int:
    """available = current - reserved, floored at zero."""
    return max(0, (product.current_stock or 0) - (product.reserved_stock or 0))


def _require_int(value, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer")
    return value


def _validate_movement(quantity_delta, movement_type: str, from_reservation: bool) -> int:
    delta = _require_int(quantity_delta, "quantity_delta")
    if delta == 0:
        raise ValidationError("quantity_delta must be non-zero")
    if movement_type not in VALID_MOVEMENT_TYPES:
        raise ValidationError(f"Invalid movement type: {movement_type}")
    if movement_type in INBOUND_MOVEMENT_TYPES and delta < 0:
        raise ValidationError(f"{movement_type} requires a positive quantity_delta")
    if movement_type in OUTBOUND_MOVEMENT_TYPES and delta > 0:
        raise ValidationError(f"{movement_type} requires a negative quantity_delta")
    if from_reservation and delta > 0:
        raise ValidationError("only consuming movements can draw from a reservation")
    return delta


def requires_approval(quantity_delta: int, movement_type: str) -> bool:
    return abs(quantity_delta) > APPROVAL_QUANTITY_THRESHOLD or movement_type in APPROVAL_MOVEMENT_TYPES


# =============================================================================
# MOVEMENTS
# =============================================================================

def _apply_movement_inner(
    ctx: SalonContext,
    *,
    product_id: int,
    quantity_delta: int,
    movement_type: str,
    reason: str | None = None,
    note: str | None = None,
    movement_key: str | None = None,
    from_reservation: bool = False,
    reference_type: str | None = None,
    reference_id: int | None = None,
    reversal_of_id: int | None = None,
    unit_cost_cents: int | None = None,
    batch_number: str | None = None,
    approval_required: bool = False,
    require_active: bool = True,
) -> StockMovement:
    """Core movement logic without retry or commit.

    Called by apply_movement(), reverse_movement() and billing, which own the
    surrounding transaction. require_active=False lets stock come back to a
    product that was deactivated after it left (bill voids).
    """
    if movement_key:
        existing = db.session.query(StockMovement).filter_by(
            salon_id=ctx.salon_id, movement_key=movement_key
        ).first()
        if existing is not None:
            if existing.product_id != product_id or existing.quantity_delta != quantity_delta:
                raise ValidationError("movement_key already used for a different movement")
            return existing

    product = get_product(ctx, product_id, require_active=require_active)

    consumed = -quantity_delta if quantity_delta < 0 else 0
    reserved_delta = -consumed if from_reservation else 0

    guards = [Product.id == product.id, Product.salon_id == ctx.salon_id]
    if consumed:
        if from_reservation:
            guards.append(Product.reserved_stock >= consumed)
            guards.append(Product.current_stock >= consumed)
        else:
            guards.append(Product.current_stock - Product.reserved_stock >= consumed)

    stmt = (
        update(Product)
        .where(*guards)
        .values(
            current_stock=Product.current_stock + quantity_delta,
            reserved_stock=Product.reserved_stock + reserved_delta,
            version_id=Product.version_id + 1,
            updated_at=func.now(),
        )
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)

    if result.rowcount != 1:
        db.session.refresh(product)
        if from_reservation:
            message = f"Insufficient reserved stock for product {product.id}"
            available = product.reserved_stock
        else:
            message = f"Insufficient stock for product {product.id}"
            available = compute_available(product)
        raise InsufficientStock(message, product_id=product.id, available=available, requested=consumed)

    stock_after = db.session.query(Product.current_stock).filter_by(id=product.id).scalar()
    db.session.expire(product)

    movement = StockMovement(
        salon_id=ctx.salon_id,
        product_id=product_id,
        movement_type=movement_type,
        quantity_delta=quantity_delta,
        stock_before=stock_after - quantity_delta,
        stock_after=stock_after,
        reserved_delta=reserved_delta,
        unit_cost_cents=unit_cost_cents,
        batch_number=batch_number,
        reason=reason,
        note=note,
        reference_type=reference_type,
        reference_id=reference_id,
        movement_key=movement_key,
        reversal_of_id=reversal_of_id,
        actor_staff_id=ctx.staff_id,
        approval_required=approval_required,
        approval_status=APPROVAL_PENDING if approval_required else APPROVAL_NOT_REQUIRED,
        occurred_at=utcnow(),
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def apply_movement(
    ctx: SalonContext,
    *,
    product_id: int,
    quantity_delta: int,
    movement_type: str,
    reason: str | None = None,
    note: str | None = None,
    movement_key: str | None = None,
    from_reservation: bool = False,
    reference_type: str | None = None,
    reference_id: int | None = None,
    unit_cost_cents: int | None = None,
    batch_number: str | None = None,
) -> StockMovement:
    """
    Apply a signed stock movement to one product and record it.

    Large movements and negative adjustments are applied but left with
    approval_status='pending' for an admin to approve or reject.

    Raises:
        ValidationError: zero/non-int delta, unknown type, sign/type mismatch,
            or a reused movement_key with different content
        NotFound: product absent, inactive, or owned by another salon
        InsufficientStock: consuming delta exceeds available stock (or the
            reservation when from_reservation=True); stock is left unchanged
        Conflict: concurrent-update retries exhausted
    """
    delta = _validate_movement(quantity_delta, movement_type, from_reservation)

    def _op():
        try:
            movement = _apply_movement_inner(
                ctx,
                product_id=product_id,
                quantity_delta=delta,
                movement_type=movement_type,
                reason=reason,
                note=note,
                movement_key=movement_key,
                from_reservation=from_reservation,
                reference_type=reference_type,
                reference_id=reference_id,
                unit_cost_cents=unit_cost_cents,
                batch_number=batch_number,
                approval_required=requires_approval(delta, movement_type),
            )
            db.session.commit()
            return movement
        except IntegrityError:
            db.session.rollback()
            if not movement_key:
                raise
            # Lost a race on the same movement_key; the winner's row is the result
            existing = db.session.query(StockMovement).filter_by(
                salon_id=ctx.salon_id, movement_key=movement_key
            ).first()
            if existing is None:
                raise
            if existing.product_id != product_id or existing.quantity_delta != delta:
                raise ValidationError("movement_key already used for a different movement")
            return existing

    return run_with_retry(_op)


def reverse_movement(ctx: SalonContext, *, movement_id: int, reason: str) -> StockMovement:
    """
    Append a reversal for a movement (opposite delta, same product).

    A movement can be reversed once. Reversals cannot themselves be reversed.
    Reversing an inbound movement is a consuming movement and is subject to
    the same stock guard.
    """
    if not reason or not reason.strip():
        raise ValidationError("reason is required to reverse a movement")

    def _op():
        original = _load_movement(ctx, movement_id)
        if original.movement_type == MOVEMENT_TYPE_REVERSAL:
            raise ValidationError("reversal movements cannot be reversed")
        if _is_reversed(original):
            raise Conflict(f"Stock movement {movement_id} is already reversed")

        try:
            reversal = _reverse_inner(ctx, original, reason.strip())
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise Conflict(f"Stock movement {movement_id} is already reversed")
        return reversal

    return run_with_retry(_op)


def _load_movement(ctx: SalonContext, movement_id: int) -> StockMovement:
    movement = db.session.query(StockMovement).filter_by(id=movement_id, salon_id=ctx.salon_id).first()
    if movement is None:
        raise NotFound(f"Stock movement {movement_id} not found")
    return movement


def _is_reversed(movement: StockMovement) -> bool:
    return db.session.query(StockMovement.id).filter_by(reversal_of_id=movement.id).first() is not None


def _reverse_inner(ctx: SalonContext, original: StockMovement, reason: str) -> StockMovement:
    return _apply_movement_inner(
        ctx,
        product_id=original.product_id,
        quantity_delta=-original.quantity_delta,
        movement_type=MOVEMENT_TYPE_REVERSAL,
        reason=reason,
        note=f"Reversal of movement {original.id}",
        reference_type="stock_movement",
        reference_id=original.id,
        reversal_of_id=original.id,
        unit_cost_cents=original.unit_cost_cents,
        batch_number=original.batch_number,
    )


# =============================================================================
# APPROVALS
# =============================================================================

def _check_pending(movement: StockMovement) -> None:
    if movement.approval_status == APPROVAL_NOT_REQUIRED:
        raise ValidationError(f"Stock movement {movement.id} does not require approval")
    if movement.approval_status != APPROVAL_PENDING:
        raise Conflict(f"Stock movement {movement.id} is already {movement.approval_status}")


def _transition_approval(movement: StockMovement, **values) -> None:
    result = db.session.execute(
        update(StockMovement)
        .where(StockMovement.id == movement.id, StockMovement.approval_status == APPROVAL_PENDING)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.refresh(movement)
        raise Conflict(f"Stock movement {movement.id} is already {movement.approval_status}")


def approve_movement(ctx: SalonContext, *, movement_id: int, notes: str | None = None) -> StockMovement:
    """Approve a pending movement. Stock is not touched; it was applied on creation."""
    def _op():
        movement = _load_movement(ctx, movement_id)
        _check_pending(movement)
        _transition_approval(
            movement,
            approval_status=APPROVAL_APPROVED,
            approved_by_staff_id=ctx.staff_id,
            approved_at=utcnow(),
            approval_notes=notes.strip() if notes else None,
        )
        db.session.commit()
        db.session.refresh(movement)
        return movement

    return run_with_retry(_op)


def reject_movement(ctx: SalonContext, *, movement_id: int, reason: str) -> StockMovement:
    """
    Reject a pending movement and undo its stock effect.

    The status flip and the reversal commit together. If the stock has since
    been consumed the reversal raises InsufficientStock and the movement
    stays pending. A movement that was already reversed is only marked.
    """
    if not reason or not reason.strip():
        raise ValidationError("reason is required to reject a movement")

    def _op():
        movement = _load_movement(ctx, movement_id)
        _check_pending(movement)
        _transition_approval(
            movement,
            approval_status=APPROVAL_REJECTED,
            rejected_by_staff_id=ctx.staff_id,
            rejected_at=utcnow(),
            rejection_reason=reason.strip(),
        )
        if not _is_reversed(movement):
            try:
                _reverse_inner(ctx, movement, f"Rejected: {reason.strip()}")
                db.session.flush()
            except IntegrityError:
                db.session.rollback()
                raise Conflict(f"Stock movement {movement_id} was reversed concurrently; retry")
        db.session.commit()
        db.session.refresh(movement)
        return movement

    return run_with_retry(_op)


# =============================================================================
# RESERVATIONS
# =============================================================================

def reserve_stock(ctx: SalonContext, *, product_id: int, quantity: int) -> Product:
    """Earmark stock; fails with InsufficientStock beyond available stock."""
    qty = _require_int(quantity, "quantity")
    if qty <= 0:
        raise ValidationError("quantity must be positive")

    def _op():
        product = get_product(ctx, product_id, require_active=True)
        result = db.session.execute(
            update(Product)
            .where(
                Product.id == product.id,
                Product.current_stock - Product.reserved_stock >= qty,
            )
            .values(reserved_stock=Product.reserved_stock + qty, version_id=Product.version_id + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.session.refresh(product)
            raise InsufficientStock(
                f"Insufficient stock to reserve for product {product.id}",
                product_id=product.id,
                available=compute_available(product),
                requested=qty,
            )
        db.session.commit()
        db.session.refresh(product)
        return product

    return run_with_retry(_op)


def release_reservation(ctx: SalonContext, *, product_id: int, quantity: int) -> Product:
    """Give reserved stock back to available stock, clamped at zero reserved."""
    qty = _require_int(quantity, "quantity")
    if qty <= 0:
        raise ValidationError("quantity must be positive")

    def _op():
        product = get_product(ctx, product_id)
        db.session.execute(
            update(Product)
            .where(Product.id == product.id)
            .values(
                reserved_stock=case(
                    (Product.reserved_stock >= qty, Product.reserved_stock - qty),
                    else_=0,
                ),
                version_id=Product.version_id + 1,
            )
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
        db.session.refresh(product)
        return product

    return run_with_retry(_op)


# =============================================================================
# PRODUCTS
# =============================================================================

def create_product(
    ctx: SalonContext,
    *,
    sku: str,
    name: str,
    max_stock: int,
    category: str | None = None,
    unit: str = "pieces",
    opening_stock: int = 0,
    min_stock: int = 0,
    reorder_level: int = 0,
    reorder_quantity: int = 1,
    cost_price_cents: int = 0,
    unit_price_cents: int = 0,
    selling_price_cents: int | None = None,
    expiry_date: datetime | None = None,
    batch_number: str | None = None,
) -> Product:
    """
    Register a product. A positive opening_stock is booked as an
    opening_balance movement so the ledger sum matches from the start.
    """
    if not sku or not name:
        raise ValidationError("sku and name are required")
    for field, value in (
        ("opening_stock", opening_stock),
        ("min_stock", min_stock),
        ("max_stock", max_stock),
        ("reorder_level", reorder_level),
        ("cost_price_cents", cost_price_cents),
        ("unit_price_cents", unit_price_cents),
    ):
        if _require_int(value, field) < 0:
            raise ValidationError(f"{field} cannot be negative")
    if _require_int(reorder_quantity, "reorder_quantity") < 1:
        raise ValidationError("reorder_quantity must be at least 1")
    if selling_price_cents is None:
        selling_price_cents = unit_price_cents
    elif _require_int(selling_price_cents, "selling_price_cents") < 0:
        raise ValidationError("selling_price_cents cannot be negative")

    def _op():
        product = Product(
            salon_id=ctx.salon_id,
            sku=sku.strip(),
            name=name.strip(),
            category=category,
            unit=unit,
            current_stock=0,
            reserved_stock=0,
            min_stock=min_stock,
            max_stock=max_stock,
            reorder_level=reorder_level,
            reorder_quantity=reorder_quantity,
            cost_price_cents=cost_price_cents,
            unit_price_cents=unit_price_cents,
            selling_price_cents=selling_price_cents,
            expiry_date=expiry_date,
            batch_number=batch_number,
        )
        db.session.add(product)
        try:
            db.session.flush()
        except IntegrityError:
            db.session.rollback()
            raise Conflict(f"SKU {sku!r} already exists in this salon")

        if opening_stock:
            _apply_movement_inner(
                ctx,
                product_id=product.id,
                quantity_delta=opening_stock,
                movement_type="opening_balance",
                reason="Opening balance",
                unit_cost_cents=cost_price_cents,
                batch_number=batch_number,
            )
        db.session.commit()
        db.session.refresh(product)
        return product

    return run_with_retry(_op)


# =============================================================================
# DERIVED VIEWS
# =============================================================================

def low_stock(ctx: SalonContext) -> list[Product]:
    """Active products at or below their reorder level, most urgent first."""
    available = Product.current_stock - Product.reserved_stock
    return (
        db.session.query(Product)
        .filter(
            Product.salon_id == ctx.salon_id,
            Product.is_active.is_(True),
            available <= Product.reorder_level,
        )
        .order_by(available.asc(), Product.name.asc(), Product.id.asc())
        .all()
    )


def expiring_soon(
    ctx: SalonContext,
    *,
    window_days: int | None = None,
    now: datetime | None = None,
) -> list[Product]:
    """
    Active products whose expiry_date falls within [now, now + window_days],
    soonest first. Products without an expiry date are never included, and
    already-expired products are not "expiring soon".
    """
    if window_days is None:
        window_days = current_app.config.get("EXPIRY_WINDOW_DAYS", 30)
    if _require_int(window_days, "window_days") < 0:
        raise ValidationError("window_days cannot be negative")

    now = now or utcnow()
    horizon = now + timedelta(days=window_days)
    return (
        db.session.query(Product)
        .filter(
            Product.salon_id == ctx.salon_id,
            Product.is_active.is_(True),
            Product.expiry_date.isnot(None),
            Product.expiry_date >= now,
            Product.expiry_date <= horizon,
        )
        .order_by(Product.expiry_date.asc(), Product.id.asc())
        .all()
    )


def inventory_stats(ctx: SalonContext) -> dict:
    products = db.session.query(Product).filter(
        Product.salon_id == ctx.salon_id,
        Product.is_active.is_(True),
    ).all()

    by_status = {
        STOCK_STATUS_IN: 0,
        STOCK_STATUS_LOW: 0,
        STOCK_STATUS_REORDER: 0,
        STOCK_STATUS_OUT: 0,
        STOCK_STATUS_EXCESS: 0,
    }
    total_value_cents = 0
    for product in products:
        by_status[product.stock_status] += 1
        total_value_cents += product.current_stock * product.cost_price_cents

    return {
        "salon_id": ctx.salon_id,
        "total_products": len(products),
        "by_status": by_status,
        "total_stock_value_cents": total_value_cents,
    }


def list_movements(
    ctx: SalonContext,
    *,
    product_id: int | None = None,
    movement_type: str | None = None,
    approval_status: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    page: int | None = 1,
    per_page: int | None = 50,
) -> dict:
    if approval_status and approval_status not in APPROVAL_STATUSES:
        raise ValidationError(f"Invalid approval status: {approval_status}")
    page, per_page = clamp_page(page, per_page)
    query = db.session.query(StockMovement).filter(StockMovement.salon_id == ctx.salon_id)
    if product_id is not None:
        query = query.filter(StockMovement.product_id == product_id)
    if movement_type:
        query = query.filter(StockMovement.movement_type == movement_type)
    if approval_status:
        query = query.filter(StockMovement.approval_status == approval_status)
    if start:
        query = query.filter(StockMovement.occurred_at >= start)
    if end:
        query = query.filter(StockMovement.occurred_at < end)

    query = query.order_by(StockMovement.occurred_at.desc(), StockMovement.id.desc())
    return page_to_dict(query.paginate(page=page, per_page=per_page, error_out=False))


def movement_analytics(
    ctx: SalonContext,
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    product_id: int | None = None,
    now: datetime | None = None,
    top: int = 10,
) -> dict:
    """
    Movement breakdown over [start, end), by default the last 30 days.

    Quantities are absolute units moved. Value is units times the recorded
    unit cost (movements without a cost count as zero).

    Returns:
        Dict with by_type, daily_trend, top_products and the number of
        movements still pending approval in the window
    """
    end = end or now or utcnow()
    start = start or end - timedelta(days=30)
    if start >= end:
        raise ValidationError("start must be before end")

    filters = [
        StockMovement.salon_id == ctx.salon_id,
        StockMovement.occurred_at >= start,
        StockMovement.occurred_at < end,
    ]
    if product_id is not None:
        filters.append(StockMovement.product_id == product_id)

    units = func.abs(StockMovement.quantity_delta)
    value = units * func.coalesce(StockMovement.unit_cost_cents, 0)

    type_rows = db.session.query(
        StockMovement.movement_type,
        func.count(StockMovement.id),
        func.coalesce(func.sum(units), 0),
        func.coalesce(func.sum(value), 0),
    ).filter(*filters).group_by(StockMovement.movement_type).all()
    by_type = sorted(
        (
            {
                "movement_type": movement_type,
                "count": int(count),
                "total_quantity": int(quantity),
                "total_value_cents": int(total_value),
            }
            for movement_type, count, quantity, total_value in type_rows
        ),
        key=lambda row: (-row["total_value_cents"], -row["total_quantity"], row["movement_type"]),
    )

    day = func.strftime("%Y-%m-%d", StockMovement.occurred_at)
    incoming = case((StockMovement.quantity_delta > 0, StockMovement.quantity_delta), else_=0)
    outgoing = case((StockMovement.quantity_delta < 0, -StockMovement.quantity_delta), else_=0)
    daily_rows = db.session.query(
        day.label("day"),
        func.count(StockMovement.id),
        func.coalesce(func.sum(incoming), 0),
        func.coalesce(func.sum(outgoing), 0),
    ).filter(*filters).group_by("day").order_by("day").all()

    top_rows = (
        db.session.query(
            Product.id,
            Product.sku,
            Product.name,
            func.count(StockMovement.id),
            func.coalesce(func.sum(units), 0),
        )
        .select_from(StockMovement)
        .join(Product, Product.id == StockMovement.product_id)
        .filter(*filters)
        .group_by(Product.id, Product.sku, Product.name)
        .order_by(func.sum(units).desc(), Product.id.asc())
        .limit(top)
        .all()
    )

    pending = db.session.query(func.count(StockMovement.id)).filter(
        *filters, StockMovement.approval_status == APPROVAL_PENDING
    ).scalar()

    return {
        "start": to_utc_z(start),
        "end": to_utc_z(end),
        "by_type": by_type,
        "daily_trend": [
            {
                "date": row_day,
                "movements": int(count),
                "incoming_quantity": int(inbound),
                "outgoing_quantity": int(outbound),
            }
            for row_day, count, inbound, outbound in daily_rows
        ],
        "top_products": [
            {
                "product_id": pid,
                "sku": sku,
                "name": name,
                "movements": int(count),
                "total_quantity": int(quantity),
            }
            for pid, sku, name, count, quantity in top_rows
        ],
        "pending_approval_count": int(pending or 0),
    }


def verify_stock_consistency(ctx: SalonContext, *, product_id: int | None = None) -> list[dict]:
    """
    Compare each product's cached current_stock with its movement-ledger sum.

    Returns one row per mismatching product; an empty list means the cache
    and the ledger agree.
    """
    sums_query = db.session.query(
        StockMovement.product_id,
        func.coalesce(func.sum(StockMovement.quantity_delta), 0),
    ).filter(StockMovement.salon_id == ctx.salon_id)
    products_query = db.session.query(Product).filter(Product.salon_id == ctx.salon_id)
    if product_id is not None:
        sums_query = sums_query.filter(StockMovement.product_id == product_id)
        products_query = products_query.filter(Product.id == product_id)

    ledger = {pid: int(total) for pid, total in sums_query.group_by(StockMovement.product_id).all()}

    mismatches = []
    for product in products_query.order_by(Product.id).all():
        ledger_stock = ledger.get(product.id, 0)
        if ledger_stock != product.current_stock:
            mismatches.append({
                "product_id": product.id,
                "sku": product.sku,
                "cached_stock": product.current_stock,
                "ledger_stock": ledger_stock,
                "difference": product.current_stock - ledger_stock,
            })
    return mismatches
