from __future__ import annotations

from ..extensions import db
from stockledger.time_utils import utcnow, to_utc_z, to_iso_date

# Movement type codes (sign conventions live in services.inventory_service.MOVEMENT_KINDS)
MOVEMENT_SALE = "sale"
MOVEMENT_ADJUSTMENT = "adjustment"
MOVEMENT_REPLENISHMENT = "replenishment"
MOVEMENT_RETURN_IN = "return-in"
MOVEMENT_TYPES = (MOVEMENT_SALE, MOVEMENT_ADJUSTMENT, MOVEMENT_REPLENISHMENT, MOVEMENT_RETURN_IN)

INVENTORY_STATUS_OK = "OK"
INVENTORY_STATUS_ADJUSTED = "ADJUSTED"


class Supplier(db.Model):
    __tablename__ = "suppliers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, unique=True)
    phone = db.Column(db.String(64), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """
    Product master data plus its StockAccount.

    STOCK IS A CACHE:
    `stock` always equals `initial_stock` + SUM(inventory_movements.quantity_delta).
    It is only ever written by services.inventory_service, in the same
    transaction as the movement that explains it.

    CONCURRENCY:
    Writers lock the row (SELECT ... FOR UPDATE). `version_id` is an
    optimistic-lock column so a writer that slips past the lock (SQLite ignores
    FOR UPDATE) fails with StaleDataError and the whole operation is retried.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
        db.Index("ix_products_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    sku = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)

    stock = db.Column(db.Integer, nullable=False, default=0)
    initial_stock = db.Column(db.Integer, nullable=False, default=0)
    min_stock = db.Column(db.Integer, nullable=False, default=0)

    # Authoritative storage in minor currency units
    cost_price_cents = db.Column(db.Integer, nullable=False, default=0)
    price_cents = db.Column(db.Integer, nullable=False, default=0)

    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    last_inventory_date = db.Column(db.DateTime, nullable=True)
    last_inventory_status = db.Column(db.String(16), nullable=True)  # OK, ADJUSTED

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    supplier = db.relationship("Supplier", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} stock={self.stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "stock": self.stock,
            "initial_stock": self.initial_stock,
            "min_stock": self.min_stock,
            "cost_price_cents": self.cost_price_cents,
            "price_cents": self.price_cents,
            "supplier_id": self.supplier_id,
            "is_active": self.is_active,
            "last_inventory_date": to_utc_z(self.last_inventory_date),
            "last_inventory_status": self.last_inventory_status,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryMovement(db.Model):
    """
    Append-only MovementLedger entry.

    IMMUTABLE: rows are never updated or deleted. Corrections are new
    compensating rows (adjustment or return-in).
    """
    __tablename__ = "inventory_movements"
    __table_args__ = (
        db.CheckConstraint("new_stock = previous_stock + quantity_delta", name="ck_movements_arithmetic"),
        db.CheckConstraint("new_stock >= 0", name="ck_movements_new_stock_non_negative"),
        db.Index("ix_movements_product_created", "product_id", "created_at"),
        db.Index("ix_movements_type_created", "type", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    type = db.Column(db.String(32), nullable=False)

    quantity_delta = db.Column(db.Integer, nullable=False)
    previous_stock = db.Column(db.Integer, nullable=False)
    new_stock = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.String(255), nullable=False)
    reference = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    # Negative for money spent (replenishments); NULL when not tracked
    financial_impact_cents = db.Column(db.Integer, nullable=True)
    user_name = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    product = db.relationship("Product", backref=db.backref("movements", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "type": self.type,
            "quantity_delta": self.quantity_delta,
            "previous_stock": self.previous_stock,
            "new_stock": self.new_stock,
            "reason": self.reason,
            "reference": self.reference,
            "notes": self.notes,
            "financial_impact_cents": self.financial_impact_cents,
            "user_name": self.user_name,
            "created_at": to_utc_z(self.created_at),
        }


class Replenishment(db.Model):
    """Goods received from a supplier. Owns at most one ExpirationBatch."""
    __tablename__ = "replenishments"
    __table_args__ = (
        db.Index("ix_replenishments_product_created", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False, default=0)
    delivery_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    total_price_cents = db.Column(db.Integer, nullable=False, default=0)

    receipt_number = db.Column(db.String(64), nullable=True, index=True)
    expiration_date = db.Column(db.Date, nullable=True)
    notes = db.Column(db.Text, nullable=True)
    user_name = db.Column(db.String(128), nullable=True)

    movement_id = db.Column(db.Integer, db.ForeignKey("inventory_movements.id"), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    product = db.relationship("Product")
    supplier = db.relationship("Supplier")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "supplier_id": self.supplier_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "delivery_cost_cents": self.delivery_cost_cents,
            "total_price_cents": self.total_price_cents,
            "receipt_number": self.receipt_number,
            "expiration_date": to_iso_date(self.expiration_date),
            "notes": self.notes,
            "user_name": self.user_name,
            "movement_id": self.movement_id,
            "created_at": to_utc_z(self.created_at),
        }
