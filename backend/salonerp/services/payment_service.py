# Overview: Payment reconciliation; applies payments to bills atomically and exactly once.

"""
Payment Reconciliation Service

DESIGN PRINCIPLES:
- Payments are separate from bills (many-to-one). Split and partial payments
  are just several payments against one bill.
- A payment changes Bill.paid_amount_cents exactly once, either when it is
  recorded as verified or on its pending -> verified transition.
- Applying a payment is one conditional UPDATE:
      paid_amount_cents = paid_amount_cents + :amount,
      payment_status    = CASE ... END
  evaluated by the database against the current row, so concurrent payments
  on the same bill never lose an update.
- idempotency_key (unique per salon) makes a POST safe to retry.
- The Payment insert and the Bill update share one transaction.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError

from ..errors import Conflict, NotFound, ValidationError
from ..extensions import db
from ..models import Bill, Payment, Staff
from ..models.billing import (
    BILL_STATUS_REFUNDED,
    BILL_STATUS_VOID,
    PAYMENT_METHODS,
    PAYMENT_STATUS_FAILED,
    PAYMENT_STATUS_PENDING,
    PAYMENT_STATUS_VERIFIED,
)
from salonerp.time_utils import to_utc_naive, utcnow
from .billing_service import (
    STRICTNESS_STRICT,
    _load_bill,
    payment_status_expression,
    payment_strictness,
)
from .concurrency import run_with_retry
from .context import SalonContext
from .document_service import DOC_PAYMENT, next_document_number
from .pagination import clamp_page, page_to_dict

CLOSED_BILL_STATUSES = (BILL_STATUS_VOID, BILL_STATUS_REFUNDED)
VALID_PAYMENT_STATUSES = (PAYMENT_STATUS_PENDING, PAYMENT_STATUS_VERIFIED, PAYMENT_STATUS_FAILED)


# =============================================================================
# APPLICATION TO BILLS
# =============================================================================

def _apply_to_bill(ctx: SalonContext, *, bill_id: int, amount_cents: int, method: str) -> None:
    """
    Add amount_cents to a bill's paid amount and re-derive its status.

    Must run inside the caller's transaction. Raises ValidationError (and
    changes nothing) when the bill is closed or, in strict mode, when the
    payment would exceed the bill total.
    """
    strict = payment_strictness() == STRICTNESS_STRICT
    new_paid = Bill.paid_amount_cents + amount_cents

    guards = [
        Bill.id == bill_id,
        Bill.salon_id == ctx.salon_id,
        Bill.payment_status.notin_(CLOSED_BILL_STATUSES),
    ]
    if strict:
        guards.append(new_paid <= Bill.total_amount_cents)

    result = db.session.execute(
        update(Bill)
        .where(*guards)
        .values(
            paid_amount_cents=new_paid,
            payment_status=payment_status_expression(new_paid, Bill.total_amount_cents),
            payment_method=method,
            modified_by_staff_id=ctx.staff_id,
            version_id=Bill.version_id + 1,
            updated_at=func.now(),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        return

    bill = _load_bill(ctx, bill_id)
    db.session.refresh(bill)
    if bill.payment_status in CLOSED_BILL_STATUSES:
        raise ValidationError(f"Cannot apply a payment to a {bill.payment_status} bill")
    raise ValidationError(
        f"Payment of {amount_cents} exceeds the balance due of {bill.balance_due_cents}"
    )


def _validate_payment_input(amount_cents, method: str) -> None:
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int):
        raise ValidationError("amount_cents must be an integer")
    if amount_cents <= 0:
        raise ValidationError("Payment amount must be positive")
    if method not in PAYMENT_METHODS:
        raise ValidationError(f"Invalid payment method: {method}. Must be one of {list(PAYMENT_METHODS)}")


def _existing_for_key(ctx: SalonContext, idempotency_key: str, bill_id: int, amount_cents: int) -> Payment | None:
    existing = db.session.query(Payment).filter_by(
        salon_id=ctx.salon_id, idempotency_key=idempotency_key
    ).first()
    if existing is not None and (existing.bill_id != bill_id or existing.amount_cents != amount_cents):
        raise ValidationError("idempotency_key already used for a different payment")
    return existing


# =============================================================================
# PAYMENT OPERATIONS
# =============================================================================

def record_payment(
    ctx: SalonContext,
    *,
    bill_id: int,
    amount_cents: int,
    method: str,
    received_by: int | None = None,
    idempotency_key: str | None = None,
    reference_number: str | None = None,
    verify: bool = True,
    notes: str | None = None,
    paid_at: datetime | None = None,
) -> Payment:
    """
    Record a payment against a bill.

    With verify=True (default) the payment is applied to the bill in the
    same transaction. With verify=False it is stored as pending and applied
    later by verify_payment().

    Raises:
        NotFound: bill absent or owned by another salon
        ValidationError: non-positive amount, unknown method, void bill, a
            reused idempotency key with different content, a received_by that
            is not an active staff member of the salon, or (strict mode) an
            overpayment
        Conflict: concurrent-update retries exhausted
    """
    _validate_payment_input(amount_cents, method)

    def _op():
        if idempotency_key:
            existing = _existing_for_key(ctx, idempotency_key, bill_id, amount_cents)
            if existing is not None:
                return existing

        if received_by is not None and received_by != ctx.staff_id:
            receiver = db.session.query(Staff).filter_by(
                id=received_by, salon_id=ctx.salon_id, is_active=True
            ).first()
            if receiver is None:
                raise ValidationError(f"received_by {received_by} is not an active staff member of this salon")

        bill = _load_bill(ctx, bill_id)
        if bill.payment_status in CLOSED_BILL_STATUSES:
            raise ValidationError(f"Cannot record a payment on a {bill.payment_status} bill")
        if (
            not verify
            and payment_strictness() == STRICTNESS_STRICT
            and amount_cents > bill.balance_due_cents
        ):
            raise ValidationError(
                f"Payment of {amount_cents} exceeds the balance due of {bill.balance_due_cents}"
            )

        now = utcnow()
        payment = Payment(
            salon_id=ctx.salon_id,
            payment_number=next_document_number(salon_id=ctx.salon_id, document_type=DOC_PAYMENT),
            bill_id=bill.id,
            customer_id=bill.customer_id,
            amount_cents=amount_cents,
            method=method,
            status=PAYMENT_STATUS_VERIFIED if verify else PAYMENT_STATUS_PENDING,
            reference_number=reference_number,
            idempotency_key=idempotency_key,
            received_by_staff_id=received_by if received_by is not None else ctx.staff_id,
            paid_at=to_utc_naive(paid_at) if paid_at else now,
            verified_at=now if verify else None,
            notes=notes,
        )
        db.session.add(payment)
        db.session.flush()

        if verify:
            _apply_to_bill(ctx, bill_id=bill.id, amount_cents=amount_cents, method=method)

        db.session.commit()
        db.session.expire(bill)
        return payment

    def _op_idempotent():
        try:
            return _op()
        except IntegrityError:
            db.session.rollback()
            if not idempotency_key:
                raise
            # A concurrent request with the same key won the insert
            existing = _existing_for_key(ctx, idempotency_key, bill_id, amount_cents)
            if existing is None:
                raise
            return existing

    return run_with_retry(_op_idempotent)


def _load_payment(ctx: SalonContext, payment_id: int) -> Payment:
    payment = db.session.query(Payment).filter_by(id=payment_id, salon_id=ctx.salon_id).first()
    if payment is None:
        raise NotFound(f"Payment {payment_id} not found")
    return payment


def verify_payment(ctx: SalonContext, *, payment_id: int) -> Payment:
    """
    Apply a pending payment to its bill (pending -> verified).

    The status flip is a conditional UPDATE on status='pending', so two
    concurrent verifications apply the amount once. Verifying an already
    verified payment returns it unchanged; a failed payment is a Conflict.
    """
    def _op():
        payment = _load_payment(ctx, payment_id)
        if payment.status == PAYMENT_STATUS_VERIFIED:
            return payment
        if payment.status == PAYMENT_STATUS_FAILED:
            raise Conflict(f"Payment {payment_id} has failed and cannot be verified")

        result = db.session.execute(
            update(Payment)
            .where(Payment.id == payment.id, Payment.status == PAYMENT_STATUS_PENDING)
            .values(status=PAYMENT_STATUS_VERIFIED, verified_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.session.refresh(payment)
            if payment.status == PAYMENT_STATUS_VERIFIED:
                return payment
            raise Conflict(f"Payment {payment_id} is {payment.status}")

        _apply_to_bill(ctx, bill_id=payment.bill_id, amount_cents=payment.amount_cents, method=payment.method)

        db.session.commit()
        db.session.expire(payment)
        return payment

    return run_with_retry(_op)


def fail_payment(ctx: SalonContext, *, payment_id: int, reason: str) -> Payment:
    """Mark a pending payment as failed. It is never applied to the bill."""
    if not reason or not reason.strip():
        raise ValidationError("reason is required to fail a payment")

    def _op():
        payment = _load_payment(ctx, payment_id)
        result = db.session.execute(
            update(Payment)
            .where(Payment.id == payment.id, Payment.status == PAYMENT_STATUS_PENDING)
            .values(status=PAYMENT_STATUS_FAILED, failure_reason=reason.strip())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.session.refresh(payment)
            raise Conflict(f"Payment {payment_id} is {payment.status}, not pending")
        db.session.commit()
        db.session.expire(payment)
        return payment

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_payment_summary(ctx: SalonContext, bill_id: int) -> dict:
    """
    Payment summary for a bill.

    Returns:
        Dict with bill totals, verified/pending sums and the payment list
    """
    bill = _load_bill(ctx, bill_id)
    payments = db.session.query(Payment).filter_by(bill_id=bill.id).order_by(Payment.id).all()

    verified_total = sum(p.amount_cents for p in payments if p.status == PAYMENT_STATUS_VERIFIED)
    pending_total = sum(p.amount_cents for p in payments if p.status == PAYMENT_STATUS_PENDING)

    return {
        "bill_id": bill.id,
        "bill_number": bill.bill_number,
        "total_amount_cents": bill.total_amount_cents,
        "paid_amount_cents": bill.paid_amount_cents,
        "balance_due_cents": bill.balance_due_cents,
        "overpaid_cents": max(0, bill.paid_amount_cents - bill.total_amount_cents),
        "payment_status": bill.payment_status,
        "verified_total_cents": verified_total,
        "pending_total_cents": pending_total,
        "payment_count": len(payments),
        "payments": [p.to_dict() for p in payments],
    }


def list_payments(
    ctx: SalonContext,
    *,
    bill_id: int | None = None,
    method: str | None = None,
    status: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    page: int | None = 1,
    per_page: int | None = 50,
) -> dict:
    if method and method not in PAYMENT_METHODS:
        raise ValidationError(f"Invalid payment method: {method}")
    if status and status not in VALID_PAYMENT_STATUSES:
        raise ValidationError(f"Invalid payment status: {status}")
    page, per_page = clamp_page(page, per_page)

    query = db.session.query(Payment).filter(Payment.salon_id == ctx.salon_id)
    if bill_id is not None:
        query = query.filter(Payment.bill_id == bill_id)
    if method:
        query = query.filter(Payment.method == method)
    if status:
        query = query.filter(Payment.status == status)
    if start:
        query = query.filter(Payment.paid_at >= start)
    if end:
        query = query.filter(Payment.paid_at < end)

    query = query.order_by(Payment.paid_at.desc(), Payment.id.desc())
    return page_to_dict(query.paginate(page=page, per_page=per_page, error_out=False))
