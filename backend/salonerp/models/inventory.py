from __future__ import annotations

from ..extensions import db
from salonerp.time_utils import to_utc_z


# Movement types that add stock (quantity_delta > 0)
INBOUND_MOVEMENT_TYPES = (
    "opening_balance",
    "purchase_receipt",
    "adjustment_positive",
    "transfer_in",
    "return_from_customer",
)

# Movement types that remove stock (quantity_delta < 0)
OUTBOUND_MOVEMENT_TYPES = (
    "consumption",
    "sale",
    "adjustment_negative",
    "transfer_out",
    "return_to_supplier",
    "expired",
    "damaged",
    "wastage",
)

MOVEMENT_TYPE_REVERSAL = "reversal"

# Approval workflow. Movements are applied immediately; flagged ones are
# reviewed afterwards and a rejection reverses the stock effect.
APPROVAL_NOT_REQUIRED = "not_required"
APPROVAL_PENDING = "pending"
APPROVAL_APPROVED = "approved"
APPROVAL_REJECTED = "rejected"

APPROVAL_STATUSES = (APPROVAL_NOT_REQUIRED, APPROVAL_PENDING, APPROVAL_APPROVED, APPROVAL_REJECTED)

# Manual movements above this many units need approval
APPROVAL_QUANTITY_THRESHOLD = 50
APPROVAL_MOVEMENT_TYPES = ("adjustment_negative",)

VALID_MOVEMENT_TYPES = INBOUND_MOVEMENT_TYPES + OUTBOUND_MOVEMENT_TYPES + (MOVEMENT_TYPE_REVERSAL,)


class StockMovement(db.Model):
    """
    Append-only ledger of stock changes.

    IMMUTABLE: ledger columns are never updated and rows are never deleted.
    Only the approval columns change after insert. A correction is a new
    movement (type='reversal') pointing at the original via reversal_of_id;
    the unique constraint on reversal_of_id allows at most one reversal.

    movement_key is an optional caller-supplied idempotency key. Replaying a
    key returns the original movement instead of applying it again.
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.UniqueConstraint("salon_id", "movement_key", name="uq_stock_movements_salon_key"),
        db.UniqueConstraint("reversal_of_id", name="uq_stock_movements_reversal_of"),
        db.Index("ix_stock_movements_salon_occurred", "salon_id", "occurred_at"),
        db.Index("ix_stock_movements_product_occurred", "product_id", "occurred_at"),
        db.Index("ix_stock_movements_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    salon_id = db.Column(db.Integer, db.ForeignKey("salons.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    movement_type = db.Column(db.String(32), nullable=False, index=True)

    # Signed: positive adds stock, negative removes it
    quantity_delta = db.Column(db.Integer, nullable=False)

    # Stock levels around this movement, as observed by the conditional update
    stock_before = db.Column(db.Integer, nullable=False)
    stock_after = db.Column(db.Integer, nullable=False)

    # How much of the delta came out of reserved stock
    reserved_delta = db.Column(db.Integer, nullable=False, default=0)

    unit_cost_cents = db.Column(db.Integer, nullable=True)
    batch_number = db.Column(db.String(64), nullable=True)

    reason = db.Column(db.String(255), nullable=True)
    note = db.Column(db.String(255), nullable=True)

    reference_type = db.Column(db.String(32), nullable=True)
    reference_id = db.Column(db.Integer, nullable=True)

    movement_key = db.Column(db.String(128), nullable=True)
    reversal_of_id = db.Column(db.Integer, db.ForeignKey("stock_movements.id"), nullable=True)

    actor_staff_id = db.Column(db.Integer, db.ForeignKey("staff.id"), nullable=True, index=True)

    approval_required = db.Column(db.Boolean, nullable=False, default=False)
    approval_status = db.Column(db.String(16), nullable=False, default=APPROVAL_NOT_REQUIRED, index=True)
    approved_by_staff_id = db.Column(db.Integer, db.ForeignKey("staff.id"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approval_notes = db.Column(db.String(255), nullable=True)
    rejected_by_staff_id = db.Column(db.Integer, db.ForeignKey("staff.id"), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.String(255), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("movements", lazy=True))
    reversal_of = db.relationship("StockMovement", remote_side=[id])

    def __repr__(self) -> str:
        return (
            f"<StockMovement id={self.id} product_id={self.product_id} "
            f"type={self.movement_type} delta={self.quantity_delta}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "salon_id": self.salon_id,
            "product_id": self.product_id,
            "movement_type": self.movement_type,
            "quantity_delta": self.quantity_delta,
            "stock_before": self.stock_before,
            "stock_after": self.stock_after,
            "reserved_delta": self.reserved_delta,
            "unit_cost_cents": self.unit_cost_cents,
            "batch_number": self.batch_number,
            "reason": self.reason,
            "note": self.note,
            "reference_type": self.reference_type,
            "reference_id": self.reference_id,
            "movement_key": self.movement_key,
            "reversal_of_id": self.reversal_of_id,
            "actor_staff_id": self.actor_staff_id,
            "approval_required": self.approval_required,
            "approval_status": self.approval_status,
            "approved_by_staff_id": self.approved_by_staff_id,
            "approved_at": to_utc_z(self.approved_at),
            "approval_notes": self.approval_notes,
            "rejected_by_staff_id": self.rejected_by_staff_id,
            "rejected_at": to_utc_z(self.rejected_at),
            "rejection_reason": self.rejection_reason,
            "occurred_at": to_utc_z(self.occurred_at),
            "created_at": to_utc_z(self.created_at),
        }
