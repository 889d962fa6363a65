# Overview: Payments against orders, plus refund and bad-debt records.

"""
Balance Tracker

WHY: amount_paid, balance_due and order_status must always agree. A payment
is never written without the order fields it changes; both go through one
WriteIntent whose order update carries the version it was computed from.

DESIGN PRINCIPLES:
- Payments are append-only; a payment cannot exceed the balance due less
  any amount already written off as bad debt
- Status auto-promotes to COMPLETED when balance_due reaches 0, never demotes
- Refunds and bad-debt write-offs are separate append-only records; they feed
  the P&L and cash-flow reports and leave the order's balance alone.
  Refunds are capped at the order total, write-offs at the balance due,
  both cumulatively
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from flask import current_app
from sqlalchemy import func

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..ids import new_id
from ..models import BadDebt, Order, Payment, Refund
from ..models.sales import ORDER_STATUS_COMPLETED, INACTIVE_ORDER_STATUSES
from ..money import ZERO, to_money
from ..time_utils import utcnow
from ..validation import parse_datetime, parse_money, parse_text, require_payload
from .write_intent import WriteIntent, apply_intent


@dataclass(frozen=True)
class BalanceState:
    amount_paid: Decimal
    balance_due: Decimal
    order_status: str


def recompute_balance(total_amount: Decimal, amount_paid: Decimal, current_status: str) -> BalanceState:
    """balance_due = total - paid; COMPLETED when nothing is left, otherwise unchanged."""
    balance_due = total_amount - amount_paid
    status = ORDER_STATUS_COMPLETED if balance_due <= ZERO else current_status
    return BalanceState(amount_paid=amount_paid, balance_due=balance_due, order_status=status)


def _get_order(order_id: str) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFoundError(f"Order {order_id} not found")
    return order


# =============================================================================
# PAYMENTS
# =============================================================================

@dataclass
class PaymentRequest:
    order_id: str
    amount: Decimal
    payment_method: str
    proof_of_payment_reference: str | None = None
    payment_date: datetime | None = None

    @classmethod
    def from_payload(cls, payload) -> "PaymentRequest":
        data = require_payload(payload)
        return cls(
            order_id=parse_text(data.get("order_id"), "order_id", max_length=32),
            amount=parse_money(data.get("amount"), "amount", positive=True),
            payment_method=parse_text(data.get("payment_method"), "payment_method", max_length=64),
            proof_of_payment_reference=parse_text(
                data.get("proof_of_payment_reference"), "proof_of_payment_reference", required=False
            ),
            payment_date=parse_datetime(data.get("payment_date"), "payment_date", default=utcnow()),
        )


@dataclass
class StagedPayment:
    payment_id: str
    intent: WriteIntent
    state: BalanceState


def refunded_total(order_id: str) -> Decimal:
    """Sum of every refund already recorded against an order."""
    return _sum_for_order(Refund, order_id)


def written_off_total(order_id: str) -> Decimal:
    """Sum of every bad-debt write-off already recorded against an order."""
    return _sum_for_order(BadDebt, order_id)


def _sum_for_order(model, order_id: str) -> Decimal:
    total = (
        db.session.query(func.coalesce(func.sum(model.amount), 0))
        .filter(model.order_id == order_id)
        .scalar()
    )
    return to_money(total)


def stage_payment(
    order_id: str,
    amount,
    payment_method: str,
    proof_of_payment_reference: str | None = None,
    payment_date: datetime | None = None,
) -> StagedPayment:
    """
    Read the order and build the payment plus its versioned order update.

    Nothing is written. Written-off amounts are no longer collectible, so
    the payable amount is balance_due less prior write-offs.
    """
    amount = to_money(amount, "amount")
    if amount <= ZERO:
        raise ValidationError("Payment amount must be positive")
    if not payment_method or not str(payment_method).strip():
        raise ValidationError("payment_method is required")

    order = _get_order(order_id)
    if order.order_status in INACTIVE_ORDER_STATUSES:
        raise ValidationError(f"Cannot add payment to a {order.order_status} order")

    balance_due = Decimal(order.balance_due)
    written_off = written_off_total(order.id)
    payable = balance_due - written_off
    details = {
        "amount": str(amount),
        "balance_due": str(balance_due),
        "written_off": str(written_off),
        "payable": str(payable),
    }
    if payable <= ZERO and written_off > ZERO:
        raise ValidationError("Order balance has been written off", details=details)
    if amount > payable:
        raise ValidationError("Payment exceeds balance due", details=details)

    state = recompute_balance(Decimal(order.total_amount), Decimal(order.amount_paid) + amount, order.order_status)

    payment_id = new_id()
    intent = WriteIntent()
    intent.insert(
        Payment,
        id=payment_id,
        order_id=order.id,
        payment_date=payment_date or utcnow(),
        amount=amount,
        payment_method=str(payment_method).strip(),
        proof_of_payment_reference=proof_of_payment_reference,
    )
    intent.update(
        Order,
        order.id,
        expected_version=order.version_id,
        amount_paid=state.amount_paid,
        balance_due=state.balance_due,
        order_status=state.order_status,
    )
    return StagedPayment(payment_id=payment_id, intent=intent, state=state)


def post_payment(
    order_id: str,
    amount,
    payment_method: str,
    proof_of_payment_reference: str | None = None,
    payment_date: datetime | None = None,
) -> str:
    """
    Record a payment and recompute the order's balance atomically.

    Returns:
        The new payment id

    Raises:
        ValidationError: amount <= 0, amount above the payable balance, missing
            method, or the order is CANCELLED/RETURNED
        NotFoundError: order missing
        ConflictError: the order changed between read and commit
    """
    staged = stage_payment(
        order_id,
        amount,
        payment_method,
        proof_of_payment_reference=proof_of_payment_reference,
        payment_date=payment_date,
    )
    apply_intent(staged.intent)

    current_app.logger.info(
        "Posted payment %s to order %s: balance_due=%s status=%s",
        staged.payment_id, order_id, staged.state.balance_due, staged.state.order_status,
    )
    return staged.payment_id


def list_payments(order_id: str) -> list[Payment]:
    _get_order(order_id)
    return (
        db.session.query(Payment)
        .filter(Payment.order_id == order_id)
        .order_by(Payment.payment_date, Payment.id)
        .all()
    )


# =============================================================================
# REFUNDS / BAD DEBTS
# =============================================================================
# Both records leave amount_paid and balance_due alone, but each one bumps the
# order's version so limit checks against prior records serialize per order.

def _touch_order(intent: WriteIntent, order: Order) -> None:
    intent.update(Order, order.id, expected_version=order.version_id, order_status=order.order_status)


def record_refund(order_id: str, amount, reason: str | None = None, refund_date: datetime | None = None) -> Refund:
    """
    Record cash returned to the customer of an order.

    Raises:
        ValidationError: refunds for the order would exceed its total
        ConflictError: the order changed between read and commit
    """
    amount = parse_money(amount, "amount", positive=True)
    order = _get_order(order_id)
    already_refunded = refunded_total(order.id)
    if already_refunded + amount > Decimal(order.total_amount):
        raise ValidationError(
            "Refunds cannot exceed the order total",
            details={
                "amount": str(amount),
                "already_refunded": str(already_refunded),
                "total_amount": str(order.total_amount),
            },
        )

    refund_id = new_id()
    intent = WriteIntent()
    intent.insert(
        Refund,
        id=refund_id,
        order_id=order.id,
        refund_date=refund_date or utcnow(),
        amount=amount,
        reason=reason,
    )
    _touch_order(intent, order)
    apply_intent(intent)
    current_app.logger.info("Recorded refund %s of %s for order %s", refund_id, amount, order_id)
    return db.session.get(Refund, refund_id)


def write_off_bad_debt(
    order_id: str, amount, reason: str | None = None, write_off_date: datetime | None = None
) -> BadDebt:
    """
    Write off part or all of an order's outstanding balance as uncollectible.

    Raises:
        ValidationError: write-offs for the order would exceed its balance due
        ConflictError: the order changed between read and commit
    """
    amount = parse_money(amount, "amount", positive=True)
    order = _get_order(order_id)
    already_written_off = written_off_total(order.id)
    if already_written_off + amount > Decimal(order.balance_due):
        raise ValidationError(
            "Write-offs cannot exceed the balance due",
            details={
                "amount": str(amount),
                "already_written_off": str(already_written_off),
                "balance_due": str(order.balance_due),
            },
        )

    bad_debt_id = new_id()
    intent = WriteIntent()
    intent.insert(
        BadDebt,
        id=bad_debt_id,
        order_id=order.id,
        write_off_date=write_off_date or utcnow(),
        amount=amount,
        reason=reason,
    )
    _touch_order(intent, order)
    apply_intent(intent)
    current_app.logger.info("Wrote off %s on order %s as bad debt", amount, order_id)
    return db.session.get(BadDebt, bad_debt_id)
