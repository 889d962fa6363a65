# Overview: Customer records and per-customer order, payment and balance summaries.

"""
Customer Service

Customers are referenced by orders; settle_order refuses an order whose
customer does not exist. Emails are stored lower-cased and are unique.

The summary mirrors what a customer page needs: every order newest first,
every payment newest first, and the outstanding balance over orders that
still owe money and are not CANCELLED or RETURNED.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from decimal import Decimal

from flask import current_app

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..ids import new_id
from ..models import Customer, Order, Payment
from ..models.sales import INACTIVE_ORDER_STATUSES
from ..money import ZERO, money_sum, to_display
from ..validation import parse_text
from .write_intent import WriteIntent, apply_intent


EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def get_customer(customer_id: str) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError(f"Customer {customer_id} not found")
    return customer


def list_customers(search: str | None = None, limit: int = 100, offset: int = 0) -> tuple[list[Customer], int]:
    query = db.session.query(Customer)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(
            Customer.first_name.ilike(pattern)
            | Customer.last_name.ilike(pattern)
            | Customer.email.ilike(pattern)
        )
    total = query.count()
    customers = (
        query.order_by(Customer.last_name, Customer.first_name, Customer.id)
        .offset(offset)
        .limit(limit)
        .all()
    )
    return customers, total


def create_customer(first_name: str, last_name: str, email: str, phone: str | None = None) -> Customer:
    """
    Create a customer.

    Raises:
        ValidationError: missing names, malformed email
        ConflictError: email already in use
    """
    first_name = parse_text(first_name, "first_name", max_length=128)
    last_name = parse_text(last_name, "last_name", max_length=128)
    email = parse_text(email, "email").lower()
    if not EMAIL_PATTERN.match(email):
        raise ValidationError("email must be a valid email address")
    phone = parse_text(phone, "phone", max_length=32, required=False)

    existing = db.session.query(Customer.id).filter(Customer.email == email).first()
    if existing is not None:
        raise ConflictError(f"Customer with email {email} already exists", details={"customer_id": existing[0]})

    customer_id = new_id()
    intent = WriteIntent()
    intent.insert(
        Customer,
        id=customer_id,
        first_name=first_name,
        last_name=last_name,
        email=email,
        phone=phone,
    )
    apply_intent(intent)
    current_app.logger.info("Created customer %s", customer_id)
    return get_customer(customer_id)


@dataclass
class CustomerSummary:
    customer: Customer
    orders: list = field(default_factory=list)
    payments: list = field(default_factory=list)

    @property
    def outstanding_orders(self) -> list:
        return [
            o for o in self.orders
            if Decimal(o.balance_due) > ZERO and o.order_status not in INACTIVE_ORDER_STATUSES
        ]

    @property
    def total_balance_owed(self) -> Decimal:
        return money_sum(o.balance_due for o in self.outstanding_orders)

    def to_dict(self) -> dict:
        return {
            "customer": self.customer.to_dict(),
            "total_balance_owed": to_display(self.total_balance_owed),
            "outstanding_orders": [o.to_dict() for o in self.outstanding_orders],
            "orders": [o.to_dict() for o in self.orders],
            "payments": [p.to_dict() for p in self.payments],
        }


def customer_summary(customer_id: str) -> CustomerSummary:
    customer = get_customer(customer_id)
    orders = (
        db.session.query(Order)
        .filter(Order.customer_id == customer_id)
        .order_by(Order.order_date.desc(), Order.id)
        .all()
    )
    order_ids = [o.id for o in orders]
    payments = []
    if order_ids:
        payments = (
            db.session.query(Payment)
            .filter(Payment.order_id.in_(order_ids))
            .order_by(Payment.payment_date.desc(), Payment.id)
            .all()
        )
    return CustomerSummary(customer=customer, orders=orders, payments=payments)
