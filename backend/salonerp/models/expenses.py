from __future__ import annotations

from ..extensions import db
from salonerp.time_utils import to_utc_z


EXPENSE_CATEGORIES = (
    "rent",
    "utilities",
    "supplies",
    "equipment",
    "marketing",
    "staff_salary",
    "staff_incentive",
    "maintenance",
    "insurance",
    "license_fees",
    "training",
    "travel",
    "food",
    "miscellaneous",
)

EXPENSE_PAYMENT_METHODS = ("cash", "card", "upi", "netbanking", "cheque", "bank_transfer")

EXPENSE_STATUS_DRAFT = "draft"
EXPENSE_STATUS_PENDING_APPROVAL = "pending_approval"
EXPENSE_STATUS_APPROVED = "approved"
EXPENSE_STATUS_REJECTED = "rejected"
EXPENSE_STATUS_CANCELLED = "cancelled"

EXPENSE_STATUSES = (
    EXPENSE_STATUS_DRAFT,
    EXPENSE_STATUS_PENDING_APPROVAL,
    EXPENSE_STATUS_APPROVED,
    EXPENSE_STATUS_REJECTED,
    EXPENSE_STATUS_CANCELLED,
)


class Expense(db.Model):
    """
    Operating expense of a salon.

    Cancelled expenses stay in the table for history but are excluded from
    every financial rollup.
    """
    __tablename__ = "expenses"
    __table_args__ = (
        db.UniqueConstraint("salon_id", "expense_number", name="uq_expenses_salon_number"),
        db.Index("ix_expenses_salon_date", "salon_id", "expense_date"),
        db.Index("ix_expenses_category_date", "category", "expense_date"),
        db.CheckConstraint("amount_cents > 0", name="ck_expenses_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    salon_id = db.Column(db.Integer, db.ForeignKey("salons.id"), nullable=False, index=True)
    expense_number = db.Column(db.String(64), nullable=False)

    title = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(32), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    payment_method = db.Column(db.String(32), nullable=False)
    expense_date = db.Column(db.DateTime(timezone=True), nullable=False)

    status = db.Column(db.String(32), nullable=False, default=EXPENSE_STATUS_APPROVED, index=True)

    reported_by_staff_id = db.Column(db.Integer, db.ForeignKey("staff.id"), nullable=True)
    approved_by_staff_id = db.Column(db.Integer, db.ForeignKey("staff.id"), nullable=True)

    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "salon_id": self.salon_id,
            "expense_number": self.expense_number,
            "title": self.title,
            "category": self.category,
            "amount_cents": self.amount_cents,
            "payment_method": self.payment_method,
            "expense_date": to_utc_z(self.expense_date),
            "status": self.status,
            "reported_by_staff_id": self.reported_by_staff_id,
            "approved_by_staff_id": self.approved_by_staff_id,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancel_reason": self.cancel_reason,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
