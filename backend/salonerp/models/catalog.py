from __future__ import annotations

from ..extensions import db
from salonerp.time_utils import to_utc_z


STOCK_STATUS_OUT = "out-of-stock"
STOCK_STATUS_REORDER = "reorder-needed"
STOCK_STATUS_LOW = "low-stock"
STOCK_STATUS_EXCESS = "excess-stock"
STOCK_STATUS_IN = "in-stock"


class Customer(db.Model):
    """Salon customer. Only referenced by the financial core (bills, payments)."""
    __tablename__ = "customers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    salon_id = db.Column(db.Integer, db.ForeignKey("salons.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=True)
    email = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "salon_id": self.salon_id,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "created_at": to_utc_z(self.created_at),
        }


class Service(db.Model):
    """Service catalog entry. Bills snapshot price_cents at creation time."""
    __tablename__ = "services"
    __table_args__ = (
        db.Index("ix_services_salon_active", "salon_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    salon_id = db.Column(db.Integer, db.ForeignKey("salons.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(64), nullable=True)
    price_cents = db.Column(db.Integer, nullable=False)
    duration_minutes = db.Column(db.Integer, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "salon_id": self.salon_id,
            "name": self.name,
            "category": self.category,
            "price_cents": self.price_cents,
            "duration_minutes": self.duration_minutes,
            "is_active": self.is_active,
        }


class Product(db.Model):
    """
    Physical product held in salon stock.

    STOCK MODEL:
    - current_stock is a cached value; the authoritative history is the
      append-only stock_movements table. current_stock must always equal
      SUM(stock_movements.quantity_delta) for the product.
    - reserved_stock is earmarked for pending work and is not consumable by
      other requests.
    - available stock = current_stock - reserved_stock, never negative.

    current_stock and reserved_stock are only ever written through
    conditional UPDATE statements in stock_service, never by assigning
    attributes on a loaded instance.
    """
    __tablename__ = "products"
    __table_args__ = (
        # SKUs are unique within a salon
        db.UniqueConstraint("salon_id", "sku", name="uq_products_salon_sku"),
        db.Index("ix_products_salon_active", "salon_id", "is_active"),
        db.CheckConstraint("current_stock >= 0", name="ck_products_current_stock_nonneg"),
        db.CheckConstraint("reserved_stock >= 0", name="ck_products_reserved_stock_nonneg"),
        db.CheckConstraint("reserved_stock <= current_stock", name="ck_products_reserved_le_current"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    salon_id = db.Column(db.Integer, db.ForeignKey("salons.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(64), nullable=True)
    unit = db.Column(db.String(16), nullable=False, default="pieces")

    current_stock = db.Column(db.Integer, nullable=False, default=0)
    reserved_stock = db.Column(db.Integer, nullable=False, default=0)

    min_stock = db.Column(db.Integer, nullable=False, default=0)
    max_stock = db.Column(db.Integer, nullable=False, default=0)
    reorder_level = db.Column(db.Integer, nullable=False, default=0)
    reorder_quantity = db.Column(db.Integer, nullable=False, default=1)

    # Authoritative storage in cents
    cost_price_cents = db.Column(db.Integer, nullable=False, default=0)
    unit_price_cents = db.Column(db.Integer, nullable=False, default=0)
    selling_price_cents = db.Column(db.Integer, nullable=False, default=0)

    expiry_date = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    batch_number = db.Column(db.String(64), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} salon_id={self.salon_id} stock={self.current_stock}>"

    @property
    def available_stock(self) -> int:
        return max(0, (self.current_stock or 0) - (self.reserved_stock or 0))

    @property
    def stock_status(self) -> str:
        current = self.current_stock or 0
        if current <= 0:
            return STOCK_STATUS_OUT
        if current <= self.reorder_level:
            return STOCK_STATUS_REORDER
        if current <= self.min_stock:
            return STOCK_STATUS_LOW
        if current >= self.max_stock:
            return STOCK_STATUS_EXCESS
        return STOCK_STATUS_IN

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "salon_id": self.salon_id,
            "sku": self.sku,
            "name": self.name,
            "category": self.category,
            "unit": self.unit,
            "current_stock": self.current_stock,
            "reserved_stock": self.reserved_stock,
            "available_stock": self.available_stock,
            "stock_status": self.stock_status,
            "min_stock": self.min_stock,
            "max_stock": self.max_stock,
            "reorder_level": self.reorder_level,
            "reorder_quantity": self.reorder_quantity,
            "cost_price_cents": self.cost_price_cents,
            "unit_price_cents": self.unit_price_cents,
            "selling_price_cents": self.selling_price_cents,
            "expiry_date": to_utc_z(self.expiry_date) if self.expiry_date else None,
            "batch_number": self.batch_number,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
