# Overview: Billing engine; builds bills from service/product lines and tracks payment state.

"""
Billing Engine

DESIGN PRINCIPLES:
- A bill is priced once, at creation. Lines snapshot the catalog name and
  price so later catalog edits never change an issued bill.
- total = service_subtotal + product_subtotal - discount + tax, never negative.
- Product lines take stock out through the Stock Ledger ('sale' movements)
  inside the bill's own transaction: either the bill and all its stock
  movements commit, or nothing does.
- payment_status is a pure function of (paid, total) on the reconciliation
  path; see derive_payment_status().
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import case, update

from ..errors import Conflict, NotFound, ValidationError
from ..extensions import db
from ..models import Bill, BillLine, Customer, Product, Service
from ..models.billing import (
    BILL_STATUS_PAID,
    BILL_STATUS_PARTIAL,
    BILL_STATUS_UNPAID,
    BILL_STATUS_VOID,
    LINE_TYPE_PRODUCT,
    LINE_TYPE_SERVICE,
    PAYMENT_METHODS,
    VALID_BILL_STATUSES,
)
from salonerp.time_utils import to_utc_naive, utcnow
from .concurrency import run_with_retry
from .context import SalonContext
from .document_service import DOC_BILL, next_document_number
from .pagination import clamp_page, page_to_dict
from .stock_service import _apply_movement_inner


STRICTNESS_LENIENT = "lenient"
STRICTNESS_STRICT = "strict"


def payment_strictness() -> str:
    mode = current_app.config.get("PAYMENT_STRICTNESS", STRICTNESS_LENIENT)
    return STRICTNESS_STRICT if mode == STRICTNESS_STRICT else STRICTNESS_LENIENT


# =============================================================================
# PAYMENT STATUS
# =============================================================================

def derive_payment_status(paid_cents: int, total_cents: int) -> str:
    """
    unpaid  if paid == 0
    partial if 0 < paid < total
    paid    if paid >= total
    """
    if paid_cents <= 0:
        return BILL_STATUS_UNPAID
    if paid_cents < total_cents:
        return BILL_STATUS_PARTIAL
    return BILL_STATUS_PAID


def payment_status_expression(paid_expr, total_expr):
    """SQL counterpart of derive_payment_status() for conditional UPDATEs."""
    return case(
        (paid_expr <= 0, BILL_STATUS_UNPAID),
        (paid_expr < total_expr, BILL_STATUS_PARTIAL),
        else_=BILL_STATUS_PAID,
    )


# =============================================================================
# LINE VALIDATION
# =============================================================================

def _int_field(line: dict, field: str, *, default=None, minimum: int = 0) -> int | None:
    value = line.get(field, default)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer")
    if value < minimum:
        raise ValidationError(f"{field} must be >= {minimum}")
    return value


def _normalize_lines(service_lines, product_lines) -> tuple[list[dict], list[dict]]:
    service_lines = list(service_lines or [])
    product_lines = list(product_lines or [])
    if not service_lines and not product_lines:
        raise ValidationError("A bill needs at least one service or product line")

    services = []
    for line in service_lines:
        if not isinstance(line, dict) or line.get("service_id") is None:
            raise ValidationError("Each service line needs a service_id")
        services.append({
            "service_id": _int_field(line, "service_id", minimum=1),
            "quantity": _int_field(line, "quantity", default=1, minimum=1),
            "unit_price_cents": _int_field(line, "unit_price_cents"),
            "stylist_staff_id": _int_field(line, "stylist_staff_id", minimum=1),
        })

    products = []
    for line in product_lines:
        if not isinstance(line, dict) or line.get("product_id") is None:
            raise ValidationError("Each product line needs a product_id")
        products.append({
            "product_id": _int_field(line, "product_id", minimum=1),
            "quantity": _int_field(line, "quantity", default=1, minimum=1),
            "unit_price_cents": _int_field(line, "unit_price_cents"),
        })
    return services, products


# =============================================================================
# BILL CREATION
# =============================================================================

def create_bill(
    ctx: SalonContext,
    *,
    customer_id: int,
    service_lines: list[dict] | None = None,
    product_lines: list[dict] | None = None,
    discount_cents: int = 0,
    tax_cents: int = 0,
    appointment_id: int | None = None,
    bill_date: datetime | None = None,
    notes: str | None = None,
) -> Bill:
    """
    Create a bill from service and product lines.

    Args:
        service_lines: [{"service_id", "quantity"=1, "unit_price_cents"?, "stylist_staff_id"?}]
        product_lines: [{"product_id", "quantity"=1, "unit_price_cents"?}]

    Raises:
        NotFound: customer absent or owned by another salon
        ValidationError: no lines, unknown/inactive catalog item, bad quantity
            or amount, negative total
        InsufficientStock: a product line exceeds available stock (the whole
            bill is rolled back)
    """
    services, products = _normalize_lines(service_lines, product_lines)
    discount = _int_field({"discount_cents": discount_cents}, "discount_cents", default=0)
    tax = _int_field({"tax_cents": tax_cents}, "tax_cents", default=0)

    def _op():
        customer = db.session.query(Customer).filter_by(id=customer_id, salon_id=ctx.salon_id).first()
        if customer is None:
            raise NotFound(f"Customer {customer_id} not found")

        priced_services = []
        for line in services:
            service = db.session.query(Service).filter_by(
                id=line["service_id"], salon_id=ctx.salon_id
            ).first()
            if service is None or not service.is_active:
                raise ValidationError(f"Service {line['service_id']} not found or inactive")
            unit_price = line["unit_price_cents"]
            if unit_price is None:
                unit_price = service.price_cents
            priced_services.append((line, service.name, unit_price))

        priced_products = []
        for line in products:
            product = db.session.query(Product).filter_by(
                id=line["product_id"], salon_id=ctx.salon_id
            ).first()
            if product is None or not product.is_active:
                raise ValidationError(f"Product {line['product_id']} not found or inactive")
            unit_price = line["unit_price_cents"]
            if unit_price is None:
                unit_price = product.selling_price_cents
            priced_products.append((line, product.name, unit_price))

        service_subtotal = sum(line["quantity"] * price for line, _, price in priced_services)
        product_subtotal = sum(line["quantity"] * price for line, _, price in priced_products)
        total = service_subtotal + product_subtotal - discount + tax
        if total < 0:
            raise ValidationError("Bill total cannot be negative (discount exceeds subtotal plus tax)")

        bill = Bill(
            salon_id=ctx.salon_id,
            bill_number=next_document_number(salon_id=ctx.salon_id, document_type=DOC_BILL),
            bill_date=to_utc_naive(bill_date) if bill_date else utcnow(),
            customer_id=customer.id,
            appointment_id=appointment_id,
            service_subtotal_cents=service_subtotal,
            product_subtotal_cents=product_subtotal,
            discount_cents=discount,
            tax_cents=tax,
            total_amount_cents=total,
            paid_amount_cents=0,
            payment_status=BILL_STATUS_UNPAID,
            notes=notes,
            created_by_staff_id=ctx.staff_id,
        )
        db.session.add(bill)
        db.session.flush()

        position = 1
        for line, name, unit_price in priced_services:
            db.session.add(BillLine(
                bill_id=bill.id,
                position=position,
                line_type=LINE_TYPE_SERVICE,
                service_id=line["service_id"],
                stylist_staff_id=line["stylist_staff_id"],
                description=name,
                quantity=line["quantity"],
                unit_price_cents=unit_price,
                line_total_cents=line["quantity"] * unit_price,
            ))
            position += 1

        for line, name, unit_price in priced_products:
            movement = _apply_movement_inner(
                ctx,
                product_id=line["product_id"],
                quantity_delta=-line["quantity"],
                movement_type="sale",
                reason=f"Sold on {bill.bill_number}",
                reference_type="bill",
                reference_id=bill.id,
            )
            db.session.add(BillLine(
                bill_id=bill.id,
                position=position,
                line_type=LINE_TYPE_PRODUCT,
                product_id=line["product_id"],
                description=name,
                quantity=line["quantity"],
                unit_price_cents=unit_price,
                line_total_cents=line["quantity"] * unit_price,
                stock_movement_id=movement.id,
            ))
            position += 1

        db.session.commit()
        return bill

    return run_with_retry(_op)


# =============================================================================
# LOOKUPS
# =============================================================================

def _load_bill(ctx: SalonContext, bill_id: int) -> Bill:
    bill = db.session.query(Bill).filter_by(id=bill_id, salon_id=ctx.salon_id).first()
    if bill is None:
        raise NotFound(f"Bill {bill_id} not found")
    return bill


def serialize_bill(bill: Bill) -> dict:
    """Bill with its lines, customer and payments resolved."""
    data = bill.to_dict()
    data["lines"] = [line.to_dict() for line in bill.lines]
    data["customer"] = bill.customer.to_dict() if bill.customer else None
    data["payments"] = [payment.to_dict() for payment in bill.payments]
    return data


def get_bill(ctx: SalonContext, bill_id: int) -> dict:
    return serialize_bill(_load_bill(ctx, bill_id))


def list_bills(
    ctx: SalonContext,
    *,
    payment_status: str | None = None,
    customer_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    page: int | None = 1,
    per_page: int | None = 50,
) -> dict:
    if payment_status and payment_status not in VALID_BILL_STATUSES:
        raise ValidationError(f"Invalid payment status: {payment_status}")
    page, per_page = clamp_page(page, per_page)

    query = db.session.query(Bill).filter(Bill.salon_id == ctx.salon_id)
    if payment_status:
        query = query.filter(Bill.payment_status == payment_status)
    if customer_id is not None:
        query = query.filter(Bill.customer_id == customer_id)
    if start:
        query = query.filter(Bill.bill_date >= start)
    if end:
        query = query.filter(Bill.bill_date < end)

    query = query.order_by(Bill.bill_date.desc(), Bill.id.desc())
    return page_to_dict(query.paginate(page=page, per_page=per_page, error_out=False))


# =============================================================================
# ADMINISTRATIVE CHANGES
# =============================================================================

def update_payment_fields(
    ctx: SalonContext,
    *,
    bill_id: int,
    payment_method: str | None = None,
    paid_amount_cents: int | None = None,
    payment_status: str | None = None,
) -> Bill:
    """
    Administrative override of a bill's payment fields.

    Lenient mode writes the given values as-is once they pass enum and sign
    checks. Strict mode additionally refuses to lower paid_amount_cents and
    refuses a payment_status that differs from derive_payment_status().
    When only paid_amount_cents is given, the status is derived from it.

    Concurrent overrides are detected through Bill.version_id and retried.
    """
    if payment_method is not None and payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"Invalid payment method: {payment_method}")
    if paid_amount_cents is not None:
        _int_field({"paid_amount_cents": paid_amount_cents}, "paid_amount_cents")
    if payment_status is not None:
        if payment_status not in VALID_BILL_STATUSES:
            raise ValidationError(f"Invalid payment status: {payment_status}")
        if payment_status == BILL_STATUS_VOID:
            raise ValidationError("Use the void operation to void a bill")
    if payment_method is None and paid_amount_cents is None and payment_status is None:
        raise ValidationError("Nothing to update")

    strict = payment_strictness() == STRICTNESS_STRICT

    def _op():
        bill = _load_bill(ctx, bill_id)
        if bill.payment_status == BILL_STATUS_VOID:
            raise ValidationError("A void bill cannot be modified")

        new_paid = bill.paid_amount_cents if paid_amount_cents is None else paid_amount_cents
        new_status = payment_status
        if new_status is None and paid_amount_cents is not None:
            new_status = derive_payment_status(new_paid, bill.total_amount_cents)

        if strict:
            if new_paid < bill.paid_amount_cents:
                raise ValidationError("paid_amount_cents cannot decrease")
            if new_paid > bill.total_amount_cents:
                raise ValidationError("paid_amount_cents cannot exceed the bill total")
            expected = derive_payment_status(new_paid, bill.total_amount_cents)
            if new_status is not None and new_status != expected:
                raise ValidationError(
                    f"payment_status {new_status!r} is inconsistent with the paid amount (expected {expected!r})"
                )

        if payment_method is not None:
            bill.payment_method = payment_method
        bill.paid_amount_cents = new_paid
        if new_status is not None:
            bill.payment_status = new_status
        bill.modified_by_staff_id = ctx.staff_id

        db.session.commit()
        return bill

    return run_with_retry(_op)


def void_bill(ctx: SalonContext, *, bill_id: int, reason: str) -> Bill:
    """
    Void a bill that has nothing paid against it.

    Product lines are put back into stock with return_from_customer
    movements. The void itself is a conditional UPDATE (paid == 0 and not
    already void), so it cannot interleave with a payment being applied.
    """
    if not reason or not reason.strip():
        raise ValidationError("reason is required to void a bill")

    def _op():
        bill = _load_bill(ctx, bill_id)
        if bill.payment_status == BILL_STATUS_VOID:
            raise Conflict(f"Bill {bill_id} is already void")
        if bill.paid_amount_cents > 0:
            raise ValidationError("A bill with payments cannot be voided")

        result = db.session.execute(
            update(Bill)
            .where(
                Bill.id == bill.id,
                Bill.paid_amount_cents == 0,
                Bill.payment_status != BILL_STATUS_VOID,
            )
            .values(
                payment_status=BILL_STATUS_VOID,
                voided_at=utcnow(),
                void_reason=reason.strip(),
                modified_by_staff_id=ctx.staff_id,
                version_id=Bill.version_id + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise Conflict(f"Bill {bill_id} changed while voiding; reload and retry")

        for line in bill.lines:
            if line.line_type != LINE_TYPE_PRODUCT:
                continue
            _apply_movement_inner(
                ctx,
                product_id=line.product_id,
                quantity_delta=line.quantity,
                movement_type="return_from_customer",
                reason=f"Void of {bill.bill_number}",
                reference_type="bill",
                reference_id=bill.id,
                require_active=False,
            )

        db.session.commit()
        db.session.expire(bill)
        return bill

    return run_with_retry(_op)
