# Overview: Order lookups and manual status changes.

from __future__ import annotations

from flask import current_app

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Order
from ..models.sales import ORDER_STATUS_CANCELLED, VALID_ORDER_STATUSES
from ..validation import parse_choice
from .write_intent import WriteIntent, apply_intent


def get_order(order_id: str) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def list_orders(
    *,
    status: str | None = None,
    payment_type: str | None = None,
    customer_id: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[Order], int]:
    query = db.session.query(Order)
    if status:
        query = query.filter(Order.order_status == status)
    if payment_type:
        query = query.filter(Order.payment_type == payment_type)
    if customer_id:
        query = query.filter(Order.customer_id == customer_id)

    total = query.count()
    orders = query.order_by(Order.order_date.desc(), Order.id).offset(offset).limit(limit).all()
    return orders, total


def update_order_status(order_id: str, new_status: str) -> Order:
    """
    Move an order to another status by hand (e.g. PROCESSING -> SHIPPED).

    CANCELLED orders are frozen. Status changes never touch stock; a returned
    or cancelled order keeps its batches consumed and is reported as a loss.
    """
    parse_choice(new_status, "order_status", VALID_ORDER_STATUSES)
    order = get_order(order_id)

    if order.order_status == ORDER_STATUS_CANCELLED:
        raise ValidationError("Cancelled orders cannot change status")
    if order.order_status == new_status:
        return order

    previous = order.order_status
    intent = WriteIntent()
    intent.update(Order, order.id, expected_version=order.version_id, order_status=new_status)
    apply_intent(intent)

    current_app.logger.info("Order %s status %s -> %s", order_id, previous, new_status)
    return get_order(order_id)
