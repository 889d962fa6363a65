from __future__ import annotations

from ..extensions import db
from ..ids import new_id
from ..money import to_display
from ..time_utils import to_utc_z


# Movement types recorded in the inventory audit log
MOVEMENT_RESTOCK = "RESTOCK"
MOVEMENT_SALE = "SALE"
MOVEMENT_INITIAL_STOCK = "INITIAL_STOCK"
MOVEMENT_ADJUSTMENT_UP = "ADJUSTMENT_UP"
MOVEMENT_ADJUSTMENT_DOWN = "ADJUSTMENT_DOWN"

VALID_MOVEMENT_TYPES = [
    MOVEMENT_RESTOCK,
    MOVEMENT_SALE,
    MOVEMENT_INITIAL_STOCK,
    MOVEMENT_ADJUSTMENT_UP,
    MOVEMENT_ADJUSTMENT_DOWN,
]


class Product(db.Model):
    """
    Product master data plus its running stock position.

    quantity_on_hand and stock_batches are always written together by the
    settlement services; nothing else touches either. quantity_on_hand may go
    negative when a sale oversells the available batches.

    version_id is the optimistic-concurrency guard for both: every change to
    the batch list also rewrites quantity_on_hand, so a concurrent settlement
    against the same product fails at flush with StaleDataError.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        db.Index("ix_products_name", "name"),
    )

    id = db.Column(db.String(32), primary_key=True, default=new_id)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    selling_price = db.Column(db.Numeric(18, 6), nullable=False, default=0)

    quantity_on_hand = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    stock_batches = db.relationship(
        "StockBatch",
        back_populates="product",
        order_by=lambda: (StockBatch.purchase_date, StockBatch.batch_id),
        cascade="all, delete-orphan",
        lazy="select",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r} qoh={self.quantity_on_hand}>"

    def to_dict(self, include_batches: bool = False) -> dict:
        data = {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "selling_price": to_display(self.selling_price),
            "quantity_on_hand": self.quantity_on_hand,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_batches:
            data["stock_batches"] = [batch.to_dict() for batch in self.stock_batches]
        return data


class StockBatch(db.Model):
    """
    One purchase lot of a product.

    original_qty and unit_cost never change after creation. remaining_qty only
    decreases (FIFO consumption); the row is deleted when it reaches 0.
    """
    __tablename__ = "stock_batches"
    __table_args__ = (
        db.CheckConstraint("original_qty > 0", name="ck_stock_batches_original_qty"),
        db.CheckConstraint(
            "remaining_qty >= 0 AND remaining_qty <= original_qty",
            name="ck_stock_batches_remaining_qty",
        ),
        db.CheckConstraint("unit_cost >= 0", name="ck_stock_batches_unit_cost"),
        db.Index("ix_stock_batches_product_purchase", "product_id", "purchase_date"),
        db.Index("ix_stock_batches_supplier", "supplier_name"),
    )

    batch_id = db.Column(db.String(32), primary_key=True, default=new_id)
    product_id = db.Column(db.String(32), db.ForeignKey("products.id"), nullable=False, index=True)

    purchase_date = db.Column(db.DateTime(timezone=True), nullable=False)
    original_qty = db.Column(db.Integer, nullable=False)
    remaining_qty = db.Column(db.Integer, nullable=False)
    unit_cost = db.Column(db.Numeric(18, 6), nullable=False)
    supplier_name = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", back_populates="stock_batches")

    def __repr__(self) -> str:
        return (
            f"<StockBatch id={self.batch_id} product_id={self.product_id} "
            f"remaining={self.remaining_qty}/{self.original_qty} unit_cost={self.unit_cost}>"
        )

    def to_dict(self) -> dict:
        return {
            "batch_id": self.batch_id,
            "product_id": self.product_id,
            "purchase_date": to_utc_z(self.purchase_date),
            "original_qty": self.original_qty,
            "remaining_qty": self.remaining_qty,
            "unit_cost": to_display(self.unit_cost),
            "supplier_name": self.supplier_name,
        }


class InventoryMovement(db.Model):
    """Append-only audit row, one per stock-affecting event."""
    __tablename__ = "inventory_movements"
    __table_args__ = (
        db.Index("ix_inventory_movements_product_timestamp", "product_id", "timestamp"),
    )

    id = db.Column(db.String(32), primary_key=True, default=new_id)
    product_id = db.Column(db.String(32), db.ForeignKey("products.id"), nullable=False, index=True)

    # Signed: positive = stock added, negative = stock removed
    quantity_change = db.Column(db.Integer, nullable=False)
    movement_type = db.Column(db.String(32), nullable=False, index=True)

    timestamp = db.Column(db.DateTime(timezone=True), nullable=False)
    reason = db.Column(db.String(255), nullable=True)

    # Units sold beyond available batches (oversell); 0 otherwise
    shortfall = db.Column(db.Integer, nullable=False, default=0)
    order_id = db.Column(db.String(32), db.ForeignKey("orders.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "quantity_change": self.quantity_change,
            "movement_type": self.movement_type,
            "timestamp": to_utc_z(self.timestamp),
            "reason": self.reason,
            "shortfall": self.shortfall,
            "order_id": self.order_id,
        }
