# Overview: Order and restock settlement; stages every write and commits them as one unit.

"""
Settlement Coordinator

settle_order and settle_restock follow the same three phases:

1. validate the request shape (ValidationError, nothing read or written)
2. stage: read products/customer, run FIFO against a working copy of each
   product's batches, and collect every row change in a WriteIntent
3. apply the intent in one transaction (write_intent.apply_intent)

Product rows carry version_id; the staged product update remembers the
version it was computed from, so a concurrent settlement on the same product
turns into ConflictError and nothing is committed. The coordinator does not
retry; callers wrap it in concurrency.run_with_retry.

Oversold lines are settled anyway: the shortfall units cost nothing, the
SALE movement records the shortfall, and a warning is logged.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from flask import current_app

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..ids import new_id
from ..models import Customer, Expense, InventoryMovement, Order, OrderItem, Payment
from ..models.accounting import COGS_CATEGORY
from ..models.inventory import MOVEMENT_RESTOCK, MOVEMENT_SALE
from ..models.sales import (
    ORDER_STATUS_CANCELLED,
    ORDER_STATUS_COMPLETED,
    ORDER_STATUS_PROCESSING,
    ORDER_STATUS_RETURNED,
    PAYMENT_TYPE_FULL,
    PAYMENT_TYPE_INSTALLMENT,
    VALID_ORDER_STATUSES,
    VALID_PAYMENT_TYPES,
)
from ..money import ZERO, money_sum
from ..time_utils import utcnow
from ..validation import (
    parse_choice,
    parse_datetime,
    parse_int,
    parse_money,
    parse_quantity,
    parse_text,
    require_payload,
)
from .fifo import Allocation
from .stock_batch_store import StagedStock, load_many
from .write_intent import WriteIntent, apply_intent


# Statuses an order may be created in; the terminal ones come only from update_order_status
INITIAL_ORDER_STATUSES = [
    s for s in VALID_ORDER_STATUSES if s not in (ORDER_STATUS_CANCELLED, ORDER_STATUS_RETURNED)
]

DEFAULT_PAYMENT_METHOD = "UNSPECIFIED"


# =============================================================================
# REQUESTS
# =============================================================================

@dataclass
class OrderLineRequest:
    product_id: str
    quantity: int
    discount: Decimal = ZERO
    # None means "use the product's current selling price"
    selling_price: Decimal | None = None


@dataclass
class OrderRequest:
    customer_id: str
    items: list[OrderLineRequest]
    payment_type: str = PAYMENT_TYPE_FULL
    order_date: datetime | None = None
    amount_paid: Decimal | None = None
    installment_months: int | None = None
    order_status: str | None = None
    payment_method: str | None = None
    sales_person_id: str | None = None
    shipping_details: str | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> "OrderRequest":
        data = require_payload(payload)
        raw_items = data.get("items", data.get("order_items"))
        if not isinstance(raw_items, list):
            raise ValidationError("items must be a list")

        items = []
        for idx, raw in enumerate(raw_items):
            if not isinstance(raw, dict):
                raise ValidationError(f"items[{idx}] must be an object")
            items.append(
                OrderLineRequest(
                    product_id=parse_text(raw.get("product_id"), f"items[{idx}].product_id", max_length=32),
                    quantity=parse_quantity(raw.get("quantity"), f"items[{idx}].quantity"),
                    discount=parse_money(raw.get("discount", 0), f"items[{idx}].discount"),
                    selling_price=(
                        None
                        if raw.get("selling_price") in (None, "")
                        else parse_money(raw.get("selling_price"), f"items[{idx}].selling_price")
                    ),
                )
            )

        installment_months = data.get("installment_months")
        return cls(
            customer_id=parse_text(data.get("customer_id"), "customer_id", max_length=32),
            items=items,
            payment_type=data.get("payment_type") or PAYMENT_TYPE_FULL,
            order_date=parse_datetime(data.get("order_date"), "order_date", default=utcnow()),
            amount_paid=(
                None if data.get("amount_paid") in (None, "") else parse_money(data.get("amount_paid"), "amount_paid")
            ),
            installment_months=(
                None if installment_months in (None, "") else parse_int(installment_months, "installment_months")
            ),
            order_status=data.get("order_status") or None,
            payment_method=parse_text(data.get("payment_method"), "payment_method", max_length=64, required=False),
            sales_person_id=parse_text(data.get("sales_person_id"), "sales_person_id", max_length=64, required=False),
            shipping_details=parse_text(data.get("shipping_details"), "shipping_details", max_length=2000, required=False),
        )


@dataclass
class RestockLineRequest:
    product_id: str
    quantity: int
    unit_cost: Decimal


@dataclass
class RestockRequest:
    supplier_name: str
    items: list[RestockLineRequest]
    purchase_date: datetime | None = None

    @classmethod
    def from_payload(cls, payload: Any) -> "RestockRequest":
        data = require_payload(payload)
        raw_items = data.get("items")
        if raw_items is None and data.get("product_id") is not None:
            # Single-product form: {"product_id", "quantity", "unit_cost", "supplier_name"}
            raw_items = [data]
        if not isinstance(raw_items, list):
            raise ValidationError("items must be a list")

        items = []
        for idx, raw in enumerate(raw_items):
            if not isinstance(raw, dict):
                raise ValidationError(f"items[{idx}] must be an object")
            items.append(
                RestockLineRequest(
                    product_id=parse_text(raw.get("product_id"), f"items[{idx}].product_id", max_length=32),
                    quantity=parse_quantity(raw.get("quantity"), f"items[{idx}].quantity"),
                    unit_cost=parse_money(raw.get("unit_cost"), f"items[{idx}].unit_cost"),
                )
            )

        return cls(
            supplier_name=parse_text(data.get("supplier_name"), "supplier_name"),
            items=items,
            purchase_date=parse_datetime(data.get("purchase_date"), "purchase_date", default=utcnow()),
        )


# =============================================================================
# STAGED RESULTS
# =============================================================================

@dataclass
class StagedOrder:
    order_id: str
    intent: WriteIntent
    total_amount: Decimal
    balance_due: Decimal
    order_status: str
    allocations: list[Allocation] = field(default_factory=list)

    @property
    def shortfall(self) -> int:
        return sum(a.shortfall for a in self.allocations)


@dataclass
class StagedRestock:
    intent: WriteIntent
    batch_ids: list[str]
    total_cost: Decimal
    expense_id: str | None = None


# =============================================================================
# ORDER SETTLEMENT
# =============================================================================

def validate_order_request(request: OrderRequest) -> None:
    """Shape checks that need no database. Raises ValidationError."""
    if not request.customer_id:
        raise ValidationError("customer_id is required")
    if not request.items:
        raise ValidationError("An order needs at least one item")

    parse_choice(request.payment_type, "payment_type", VALID_PAYMENT_TYPES)
    if request.order_status is not None:
        parse_choice(request.order_status, "order_status", INITIAL_ORDER_STATUSES)

    if request.payment_type == PAYMENT_TYPE_INSTALLMENT:
        if request.installment_months is None or request.installment_months <= 0:
            raise ValidationError("installment_months must be > 0 for INSTALLMENT orders")
    elif request.installment_months is not None:
        raise ValidationError("installment_months is only valid for INSTALLMENT orders")

    if request.amount_paid is not None and request.amount_paid < ZERO:
        raise ValidationError("amount_paid must be >= 0")

    for idx, line in enumerate(request.items):
        if not line.product_id:
            raise ValidationError(f"items[{idx}].product_id is required")
        if isinstance(line.quantity, bool) or not isinstance(line.quantity, int) or line.quantity <= 0:
            raise ValidationError(f"items[{idx}].quantity must be a positive integer")
        if line.discount < ZERO:
            raise ValidationError(f"items[{idx}].discount must be >= 0")
        if line.selling_price is not None and line.selling_price < ZERO:
            raise ValidationError(f"items[{idx}].selling_price must be >= 0")


def stage_order(request: OrderRequest) -> StagedOrder:
    """
    Read current state and build the complete write set for an order.

    Nothing is written. Lines for the same product are allocated one after
    another against the same working copy of its batches.
    """
    validate_order_request(request)

    if db.session.get(Customer, request.customer_id) is None:
        raise NotFoundError(f"Customer {request.customer_id} not found")

    staged: dict[str, StagedStock] = load_many(line.product_id for line in request.items)

    order_id = new_id()
    order_date = request.order_date or utcnow()
    intent = WriteIntent()
    # Order row goes first so items and movements can reference it
    order_write = intent.insert(Order, id=order_id)

    allocations: list[Allocation] = []
    subtotals: list[Decimal] = []
    discounts: list[Decimal] = []

    for idx, line in enumerate(request.items):
        stock = staged[line.product_id]
        unit_price = line.selling_price if line.selling_price is not None else stock.selling_price
        line_subtotal = unit_price * line.quantity
        if line.discount > line_subtotal:
            raise ValidationError(
                f"items[{idx}].discount cannot exceed the line subtotal",
                details={"discount": str(line.discount), "line_subtotal": str(line_subtotal)},
            )

        allocation = stock.consume(line.quantity)
        allocations.append(allocation)
        subtotals.append(line_subtotal)
        discounts.append(line.discount)

        if allocation.shortfall:
            current_app.logger.warning(
                "Order %s oversells product %s by %s unit(s)",
                order_id, stock.product_id, allocation.shortfall,
            )

        intent.insert(
            OrderItem,
            id=new_id(),
            order_id=order_id,
            product_id=stock.product_id,
            product_name=stock.product_name,
            quantity=line.quantity,
            cost_price_at_sale=allocation.unit_cost,
            selling_price_at_sale=unit_price,
            discount=line.discount,
        )
        intent.insert(
            InventoryMovement,
            id=new_id(),
            product_id=stock.product_id,
            quantity_change=-line.quantity,
            movement_type=MOVEMENT_SALE,
            timestamp=order_date,
            reason=f"Order {order_id}",
            shortfall=allocation.shortfall,
            order_id=order_id,
        )

    for stock in staged.values():
        stock.stage_into(intent)

    subtotal = money_sum(subtotals)
    total_discount = money_sum(discounts)
    total_amount = subtotal - total_discount

    if request.amount_paid is None:
        amount_paid = total_amount if request.payment_type == PAYMENT_TYPE_FULL else ZERO
    else:
        amount_paid = request.amount_paid
    if amount_paid > total_amount:
        raise ValidationError(
            "amount_paid cannot exceed the order total",
            details={"amount_paid": str(amount_paid), "total_amount": str(total_amount)},
        )

    balance_due = total_amount - amount_paid
    order_status = request.order_status or ORDER_STATUS_PROCESSING
    if balance_due <= ZERO:
        order_status = ORDER_STATUS_COMPLETED

    order_write.values.update(
        customer_id=request.customer_id,
        order_date=order_date,
        subtotal=subtotal,
        total_discount=total_discount,
        total_amount=total_amount,
        amount_paid=amount_paid,
        balance_due=balance_due,
        payment_type=request.payment_type,
        installment_months=request.installment_months,
        order_status=order_status,
        sales_person_id=request.sales_person_id,
        shipping_details=request.shipping_details,
    )

    if amount_paid > ZERO:
        # Up-front money is a real payment, so cash flow sees it
        intent.insert(
            Payment,
            id=new_id(),
            order_id=order_id,
            payment_date=order_date,
            amount=amount_paid,
            payment_method=request.payment_method or DEFAULT_PAYMENT_METHOD,
        )

    return StagedOrder(
        order_id=order_id,
        intent=intent,
        total_amount=total_amount,
        balance_due=balance_due,
        order_status=order_status,
        allocations=allocations,
    )


def settle_order(request: OrderRequest) -> str:
    """
    Create an order, consume stock FIFO, and write items and SALE movements atomically.

    Returns:
        The new order id

    Raises:
        ValidationError: malformed request (nothing staged)
        NotFoundError: customer or product missing
        ConflictError: a product changed between read and commit
    """
    staged = stage_order(request)
    apply_intent(staged.intent)
    current_app.logger.info(
        "Settled order %s: %s line(s), total=%s, balance_due=%s, status=%s",
        staged.order_id, len(request.items), staged.total_amount, staged.balance_due, staged.order_status,
    )
    return staged.order_id


# =============================================================================
# RESTOCK SETTLEMENT
# =============================================================================

def validate_restock_request(request: RestockRequest) -> None:
    if not request.supplier_name or not str(request.supplier_name).strip():
        raise ValidationError("supplier_name is required")
    if not request.items:
        raise ValidationError("A restock needs at least one item")
    for idx, line in enumerate(request.items):
        if not line.product_id:
            raise ValidationError(f"items[{idx}].product_id is required")
        if isinstance(line.quantity, bool) or not isinstance(line.quantity, int) or line.quantity <= 0:
            raise ValidationError(f"items[{idx}].quantity must be a positive integer")
        if line.unit_cost < ZERO:
            raise ValidationError(f"items[{idx}].unit_cost must be >= 0")


def stage_restock(request: RestockRequest) -> StagedRestock:
    validate_restock_request(request)

    staged = load_many(line.product_id for line in request.items)
    purchase_date = request.purchase_date or utcnow()
    intent = WriteIntent()
    batch_ids: list[str] = []
    costs: list[Decimal] = []

    for line in request.items:
        stock = staged[line.product_id]
        batch_ids.append(stock.receive(line.quantity, line.unit_cost, purchase_date, request.supplier_name))
        costs.append(line.unit_cost * line.quantity)

    for stock in staged.values():
        stock.stage_into(intent)

    for line in request.items:
        intent.insert(
            InventoryMovement,
            id=new_id(),
            product_id=line.product_id,
            quantity_change=line.quantity,
            movement_type=MOVEMENT_RESTOCK,
            timestamp=purchase_date,
            reason=f"Restock from {request.supplier_name}",
        )

    total_cost = money_sum(costs)
    expense_id = None
    if total_cost > ZERO:
        expense_id = new_id()
        intent.insert(
            Expense,
            id=expense_id,
            expense_date=purchase_date,
            amount=total_cost,
            category=COGS_CATEGORY,
            description=f"Shipment received from {request.supplier_name}",
        )

    return StagedRestock(intent=intent, batch_ids=batch_ids, total_cost=total_cost, expense_id=expense_id)


def settle_restock(request: RestockRequest) -> list[str]:
    """
    Append one batch per line, bump on-hand quantities, log RESTOCK movements,
    and book the shipment's cost as a single COGS expense (when non-zero).

    Returns:
        The new batch ids, in request line order
    """
    staged = stage_restock(request)
    apply_intent(staged.intent)
    current_app.logger.info(
        "Settled restock from %s: %s batch(es), total_cost=%s",
        request.supplier_name, len(staged.batch_ids), staged.total_cost,
    )
    return staged.batch_ids
