from __future__ import annotations

from ..extensions import db
from salonerp.time_utils import to_utc_z


# Bill payment status. unpaid/partial/paid are derived from paid vs total;
# void is terminal; refunded is reserved for a future refund workflow.
BILL_STATUS_UNPAID = "unpaid"
BILL_STATUS_PARTIAL = "partial"
BILL_STATUS_PAID = "paid"
BILL_STATUS_REFUNDED = "refunded"
BILL_STATUS_VOID = "void"

VALID_BILL_STATUSES = (
    BILL_STATUS_UNPAID,
    BILL_STATUS_PARTIAL,
    BILL_STATUS_PAID,
    BILL_STATUS_REFUNDED,
    BILL_STATUS_VOID,
)

LINE_TYPE_SERVICE = "service"
LINE_TYPE_PRODUCT = "product"

PAYMENT_METHODS = ("cash", "card", "upi", "netbanking", "wallet", "cheque", "dd")

PAYMENT_STATUS_PENDING = "pending"
PAYMENT_STATUS_VERIFIED = "verified"
PAYMENT_STATUS_FAILED = "failed"


class Bill(db.Model):
    """
    Customer bill for services rendered and products sold.

    Totals are computed once from the lines at creation time; lines carry
    snapshotted prices so later catalog changes never alter a bill.

    PAYMENT TRACKING:
    - paid_amount_cents only grows on the reconciliation path, and it is
      written together with payment_status in one conditional UPDATE.
    - payment_status on that path is always:
        unpaid  if paid == 0
        partial if 0 < paid < total
        paid    if paid >= total
    """
    __tablename__ = "bills"
    __table_args__ = (
        db.UniqueConstraint("salon_id", "bill_number", name="uq_bills_salon_number"),
        db.Index("ix_bills_salon_status_date", "salon_id", "payment_status", "bill_date"),
        db.CheckConstraint("paid_amount_cents >= 0", name="ck_bills_paid_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    salon_id = db.Column(db.Integer, db.ForeignKey("salons.id"), nullable=False, index=True)
    bill_number = db.Column(db.String(64), nullable=False)
    bill_date = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    # Appointments live outside the financial core; keep the opaque reference
    appointment_id = db.Column(db.Integer, nullable=True, index=True)

    service_subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    product_subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_amount_cents = db.Column(db.Integer, nullable=False)

    paid_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    payment_status = db.Column(db.String(16), nullable=False, default=BILL_STATUS_UNPAID, index=True)
    payment_method = db.Column(db.String(32), nullable=True)

    notes = db.Column(db.Text, nullable=True)

    created_by_staff_id = db.Column(db.Integer, db.ForeignKey("staff.id"), nullable=True)
    modified_by_staff_id = db.Column(db.Integer, db.ForeignKey("staff.id"), nullable=True)

    voided_at = db.Column(db.DateTime(timezone=True), nullable=True)
    void_reason = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    customer = db.relationship("Customer")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def balance_due_cents(self) -> int:
        return max(0, self.total_amount_cents - self.paid_amount_cents)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "salon_id": self.salon_id,
            "bill_number": self.bill_number,
            "bill_date": to_utc_z(self.bill_date),
            "customer_id": self.customer_id,
            "appointment_id": self.appointment_id,
            "service_subtotal_cents": self.service_subtotal_cents,
            "product_subtotal_cents": self.product_subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_amount_cents": self.total_amount_cents,
            "paid_amount_cents": self.paid_amount_cents,
            "balance_due_cents": self.balance_due_cents,
            "payment_status": self.payment_status,
            "payment_method": self.payment_method,
            "notes": self.notes,
            "created_by_staff_id": self.created_by_staff_id,
            "modified_by_staff_id": self.modified_by_staff_id,
            "voided_at": to_utc_z(self.voided_at) if self.voided_at else None,
            "void_reason": self.void_reason,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class BillLine(db.Model):
    """Service or product line on a bill, with its price snapshot."""
    __tablename__ = "bill_lines"
    __table_args__ = (
        db.UniqueConstraint("bill_id", "position", name="uq_bill_lines_bill_position"),
        db.CheckConstraint("quantity > 0", name="ck_bill_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    bill_id = db.Column(db.Integer, db.ForeignKey("bills.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)
    line_type = db.Column(db.String(16), nullable=False)

    service_id = db.Column(db.Integer, db.ForeignKey("services.id"), nullable=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True)
    stylist_staff_id = db.Column(db.Integer, db.ForeignKey("staff.id"), nullable=True)

    description = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    # Sale movement that took this line's product out of stock
    stock_movement_id = db.Column(db.Integer, db.ForeignKey("stock_movements.id"), nullable=True)

    bill = db.relationship(
        "Bill",
        backref=db.backref("lines", lazy=True, order_by="BillLine.position"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "bill_id": self.bill_id,
            "position": self.position,
            "line_type": self.line_type,
            "service_id": self.service_id,
            "product_id": self.product_id,
            "stylist_staff_id": self.stylist_staff_id,
            "description": self.description,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "stock_movement_id": self.stock_movement_id,
        }


class Payment(db.Model):
    """
    Payment received against a bill.

    A payment is applied to Bill.paid_amount_cents exactly once: either at
    creation (status verified) or on the pending -> verified transition.
    idempotency_key lets clients retry a POST without paying twice.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.UniqueConstraint("salon_id", "payment_number", name="uq_payments_salon_number"),
        db.UniqueConstraint("salon_id", "idempotency_key", name="uq_payments_salon_idem_key"),
        db.Index("ix_payments_salon_paid_at", "salon_id", "paid_at"),
        db.Index("ix_payments_method_paid_at", "method", "paid_at"),
        db.CheckConstraint("amount_cents > 0", name="ck_payments_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    salon_id = db.Column(db.Integer, db.ForeignKey("salons.id"), nullable=False, index=True)
    payment_number = db.Column(db.String(64), nullable=False)

    bill_id = db.Column(db.Integer, db.ForeignKey("bills.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    method = db.Column(db.String(32), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default=PAYMENT_STATUS_PENDING, index=True)

    # Card auth code, UPI transaction id, cheque number...
    reference_number = db.Column(db.String(128), nullable=True)
    idempotency_key = db.Column(db.String(128), nullable=True)

    received_by_staff_id = db.Column(db.Integer, db.ForeignKey("staff.id"), nullable=True, index=True)

    paid_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    verified_at = db.Column(db.DateTime(timezone=True), nullable=True)
    failure_reason = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    bill = db.relationship("Bill", backref=db.backref("payments", lazy=True, order_by="Payment.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "salon_id": self.salon_id,
            "payment_number": self.payment_number,
            "bill_id": self.bill_id,
            "customer_id": self.customer_id,
            "amount_cents": self.amount_cents,
            "method": self.method,
            "status": self.status,
            "reference_number": self.reference_number,
            "idempotency_key": self.idempotency_key,
            "received_by_staff_id": self.received_by_staff_id,
            "paid_at": to_utc_z(self.paid_at),
            "verified_at": to_utc_z(self.verified_at) if self.verified_at else None,
            "failure_reason": self.failure_reason,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
