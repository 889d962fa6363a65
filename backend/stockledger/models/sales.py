from __future__ import annotations

from ..extensions import db
from ..ids import new_id
from ..money import to_display
from ..time_utils import to_utc_z


# =============================================================================
# PAYMENT TYPES / ORDER STATUS (CONSTANTS)
# =============================================================================

PAYMENT_TYPE_FULL = "FULL_PAYMENT"
PAYMENT_TYPE_LAY_AWAY = "LAY_AWAY"
PAYMENT_TYPE_INSTALLMENT = "INSTALLMENT"

VALID_PAYMENT_TYPES = [
    PAYMENT_TYPE_FULL,
    PAYMENT_TYPE_LAY_AWAY,
    PAYMENT_TYPE_INSTALLMENT,
]

ORDER_STATUS_PENDING_PAYMENT = "PENDING_PAYMENT"
ORDER_STATUS_PROCESSING = "PROCESSING"
ORDER_STATUS_SHIPPED = "SHIPPED"
ORDER_STATUS_COMPLETED = "COMPLETED"
ORDER_STATUS_CANCELLED = "CANCELLED"
ORDER_STATUS_RETURNED = "RETURNED"

VALID_ORDER_STATUSES = [
    ORDER_STATUS_PENDING_PAYMENT,
    ORDER_STATUS_PROCESSING,
    ORDER_STATUS_SHIPPED,
    ORDER_STATUS_COMPLETED,
    ORDER_STATUS_CANCELLED,
    ORDER_STATUS_RETURNED,
]

# Orders in these states are excluded from sales, COGS and receivables
INACTIVE_ORDER_STATUSES = (ORDER_STATUS_CANCELLED, ORDER_STATUS_RETURNED)


class Order(db.Model):
    """
    Sales order header.

    total_amount = subtotal - total_discount and is the authoritative sale
    total. amount_paid, balance_due and order_status are rewritten together
    (one write intent) whenever a payment is posted.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.CheckConstraint("amount_paid >= 0", name="ck_orders_amount_paid"),
        db.Index("ix_orders_order_date", "order_date"),
        db.Index("ix_orders_status_payment_type", "order_status", "payment_type"),
    )

    id = db.Column(db.String(32), primary_key=True, default=new_id)
    customer_id = db.Column(db.String(32), db.ForeignKey("customers.id"), nullable=False, index=True)
    order_date = db.Column(db.DateTime(timezone=True), nullable=False)

    subtotal = db.Column(db.Numeric(18, 6), nullable=False)
    total_discount = db.Column(db.Numeric(18, 6), nullable=False, default=0)
    total_amount = db.Column(db.Numeric(18, 6), nullable=False)
    amount_paid = db.Column(db.Numeric(18, 6), nullable=False, default=0)
    balance_due = db.Column(db.Numeric(18, 6), nullable=False)

    payment_type = db.Column(db.String(16), nullable=False, index=True)
    installment_months = db.Column(db.Integer, nullable=True)
    order_status = db.Column(db.String(16), nullable=False, index=True)

    sales_person_id = db.Column(db.String(64), nullable=True)
    shipping_details = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    customer = db.relationship("Customer", backref=db.backref("orders", lazy=True))
    items = db.relationship("OrderItem", back_populates="order", lazy=True, order_by="OrderItem.created_at")
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Order id={self.id} status={self.order_status} total={self.total_amount} due={self.balance_due}>"

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "customer_id": self.customer_id,
            "order_date": to_utc_z(self.order_date),
            "subtotal": to_display(self.subtotal),
            "total_discount": to_display(self.total_discount),
            "total_amount": to_display(self.total_amount),
            "amount_paid": to_display(self.amount_paid),
            "balance_due": to_display(self.balance_due),
            "payment_type": self.payment_type,
            "installment_months": self.installment_months,
            "order_status": self.order_status,
            "sales_person_id": self.sales_person_id,
            "shipping_details": self.shipping_details,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
        }
        if include_items:
            data["order_items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """Order line. Written once with its order and never changed."""
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_items_quantity"),
        db.CheckConstraint("discount >= 0", name="ck_order_items_discount"),
    )

    id = db.Column(db.String(32), primary_key=True, default=new_id)
    order_id = db.Column(db.String(32), db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.String(32), db.ForeignKey("products.id"), nullable=False, index=True)

    # Snapshot so history survives product renames
    product_name = db.Column(db.String(255), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    # FIFO weighted-average unit cost at the moment of sale
    cost_price_at_sale = db.Column(db.Numeric(18, 6), nullable=False)
    selling_price_at_sale = db.Column(db.Numeric(18, 6), nullable=False)
    discount = db.Column(db.Numeric(18, 6), nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", back_populates="items")

    @property
    def line_subtotal(self):
        return self.selling_price_at_sale * self.quantity

    @property
    def line_cost(self):
        return self.cost_price_at_sale * self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "cost_price_at_sale": to_display(self.cost_price_at_sale),
            "selling_price_at_sale": to_display(self.selling_price_at_sale),
            "discount": to_display(self.discount),
        }


class Payment(db.Model):
    """
    Payment against an order.

    Append-only; created only by payment_service.post_payment together with
    the order's recomputed balance.
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.CheckConstraint("amount > 0", name="ck_payments_amount"),
        db.Index("ix_payments_payment_date", "payment_date"),
    )

    id = db.Column(db.String(32), primary_key=True, default=new_id)
    order_id = db.Column(db.String(32), db.ForeignKey("orders.id"), nullable=False, index=True)

    payment_date = db.Column(db.DateTime(timezone=True), nullable=False)
    amount = db.Column(db.Numeric(18, 6), nullable=False)
    payment_method = db.Column(db.String(64), nullable=False)
    proof_of_payment_reference = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", backref=db.backref("payments", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "payment_date": to_utc_z(self.payment_date),
            "amount": to_display(self.amount),
            "payment_method": self.payment_method,
            "proof_of_payment_reference": self.proof_of_payment_reference,
        }
