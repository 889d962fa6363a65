# Overview: Ledger reports as pure reductions over caller-supplied records.

"""
Ledger Reporting

Each report function takes plain record sequences (ORM rows or anything with
the same attributes) and an inclusive [start, end] range where relevant, and
returns a result dataclass. They read nothing from the database, so results
depend only on the inputs and not on their order.

run_report(kind, start, end) is the loader: it queries the rows a report needs
and calls the matching reducer.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Sequence

from ..errors import ValidationError
from ..extensions import db
from ..models import (
    BadDebt,
    Customer,
    Expense,
    Order,
    OrderItem,
    Payment,
    Product,
    Refund,
    StockBatch,
)
from ..models.accounting import COGS_CATEGORY
from ..models.sales import (
    INACTIVE_ORDER_STATUSES,
    ORDER_STATUS_COMPLETED,
    ORDER_STATUS_PENDING_PAYMENT,
    ORDER_STATUS_PROCESSING,
    PAYMENT_TYPE_LAY_AWAY,
)
from ..money import ZERO, money_sum, to_display
from ..time_utils import end_of_day, start_of_day, to_utc_z


REPORT_KINDS = ("pnl", "cashflow", "ar", "layaway")
SUPPLEMENTARY_REPORT_KINDS = (
    "sales-by-product",
    "sales-by-person",
    "processed-orders",
    "to-order",
    "batches",
    "dashboard",
)

LAYAWAY_OPEN_STATUSES = (ORDER_STATUS_PENDING_PAYMENT, ORDER_STATUS_PROCESSING)


def _in_range(value: datetime | None, start: datetime | None, end: datetime | None) -> bool:
    if value is None:
        return False
    if start is not None and value < start:
        return False
    if end is not None and value > end:
        return False
    return True


def _is_valid_order(order) -> bool:
    return order.order_status not in INACTIVE_ORDER_STATUSES


def _money_dict(values: dict) -> dict:
    return {k: to_display(v) for k, v in values.items()}


# =============================================================================
# PROFIT & LOSS
# =============================================================================

@dataclass
class ProfitAndLoss:
    start: datetime | None
    end: datetime | None
    gross_sales: Decimal
    sales_discounts: Decimal
    net_sales: Decimal
    cogs: Decimal
    gross_profit: Decimal
    operating_expenses: Decimal
    expenses_by_category: dict[str, Decimal]
    bad_debt_write_offs: Decimal
    refunds: Decimal
    returned_order_totals: Decimal
    other_losses: Decimal
    net_profit: Decimal

    def to_dict(self) -> dict:
        return {
            "start": to_utc_z(self.start),
            "end": to_utc_z(self.end),
            "gross_sales": to_display(self.gross_sales),
            "sales_discounts": to_display(self.sales_discounts),
            "net_sales": to_display(self.net_sales),
            "cogs": to_display(self.cogs),
            "gross_profit": to_display(self.gross_profit),
            "operating_expenses": to_display(self.operating_expenses),
            "expenses_by_category": _money_dict(self.expenses_by_category),
            "bad_debt_write_offs": to_display(self.bad_debt_write_offs),
            "refunds": to_display(self.refunds),
            "returned_order_totals": to_display(self.returned_order_totals),
            "other_losses": to_display(self.other_losses),
            "net_profit": to_display(self.net_profit),
        }


def is_cogs_category(category: str | None) -> bool:
    return (category or "").strip().lower() == COGS_CATEGORY.lower()


def profit_and_loss(
    orders: Iterable,
    order_items: Iterable,
    expenses: Iterable,
    refunds: Iterable = (),
    bad_debts: Iterable = (),
    start: datetime | None = None,
    end: datetime | None = None,
) -> ProfitAndLoss:
    """
    Accrual P&L for orders dated within [start, end].

    Cancelled and returned orders drop out of sales and COGS; their totals
    count as other losses instead. COGS comes from cost_price_at_sale on the
    items, so restock expenses (category "Cost of Goods Sold") are excluded
    from operating expenses to avoid counting stock twice.
    """
    in_range = [o for o in orders if _in_range(o.order_date, start, end)]
    valid = [o for o in in_range if _is_valid_order(o)]
    inactive = [o for o in in_range if not _is_valid_order(o)]
    valid_ids = {o.id for o in valid}

    gross_sales = money_sum(o.subtotal for o in valid)
    sales_discounts = money_sum(o.total_discount for o in valid)
    net_sales = gross_sales - sales_discounts

    cogs = money_sum(
        Decimal(item.cost_price_at_sale) * item.quantity
        for item in order_items
        if item.order_id in valid_ids
    )
    gross_profit = net_sales - cogs

    by_category: dict[str, Decimal] = defaultdict(lambda: ZERO)
    for expense in expenses:
        if not _in_range(expense.expense_date, start, end) or is_cogs_category(expense.category):
            continue
        by_category[expense.category] += expense.amount
    operating_expenses = money_sum(by_category.values())

    bad_debt_total = money_sum(b.amount for b in bad_debts if _in_range(b.write_off_date, start, end))
    refund_total = money_sum(r.amount for r in refunds if _in_range(r.refund_date, start, end))
    returned_totals = money_sum(o.total_amount for o in inactive)
    other_losses = bad_debt_total + refund_total + returned_totals

    return ProfitAndLoss(
        start=start,
        end=end,
        gross_sales=gross_sales,
        sales_discounts=sales_discounts,
        net_sales=net_sales,
        cogs=cogs,
        gross_profit=gross_profit,
        operating_expenses=operating_expenses,
        expenses_by_category=dict(sorted(by_category.items())),
        bad_debt_write_offs=bad_debt_total,
        refunds=refund_total,
        returned_order_totals=returned_totals,
        other_losses=other_losses,
        net_profit=gross_profit - operating_expenses - other_losses,
    )


# =============================================================================
# CASH FLOW
# =============================================================================

@dataclass
class CashFlow:
    start: datetime | None
    end: datetime | None
    cash_in: Decimal
    expenses_out: Decimal
    refunds_out: Decimal

    @property
    def cash_out(self) -> Decimal:
        return self.expenses_out + self.refunds_out

    @property
    def net_cash(self) -> Decimal:
        return self.cash_in - self.cash_out

    def to_dict(self) -> dict:
        return {
            "start": to_utc_z(self.start),
            "end": to_utc_z(self.end),
            "cash_in": to_display(self.cash_in),
            "cash_out": to_display(self.cash_out),
            "expenses_out": to_display(self.expenses_out),
            "refunds_out": to_display(self.refunds_out),
            "net_cash": to_display(self.net_cash),
        }


def cash_flow(
    payments: Iterable,
    expenses: Iterable,
    refunds: Iterable = (),
    start: datetime | None = None,
    end: datetime | None = None,
) -> CashFlow:
    """Cash basis: payments in, expenses and refunds out. Independent of the P&L."""
    return CashFlow(
        start=start,
        end=end,
        cash_in=money_sum(p.amount for p in payments if _in_range(p.payment_date, start, end)),
        expenses_out=money_sum(e.amount for e in expenses if _in_range(e.expense_date, start, end)),
        refunds_out=money_sum(r.amount for r in refunds if _in_range(r.refund_date, start, end)),
    )


# =============================================================================
# RECEIVABLES / LAY-AWAY
# =============================================================================

@dataclass
class ReceivableRow:
    order_id: str
    customer_id: str
    customer_name: str | None
    order_date: datetime
    total_amount: Decimal
    amount_paid: Decimal
    balance_due: Decimal
    order_status: str
    payment_type: str

    def to_dict(self) -> dict:
        return {
            "order_id": self.order_id,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "order_date": to_utc_z(self.order_date),
            "total_amount": to_display(self.total_amount),
            "amount_paid": to_display(self.amount_paid),
            "balance_due": to_display(self.balance_due),
            "order_status": self.order_status,
            "payment_type": self.payment_type,
        }


def _receivable_row(order, names: dict) -> ReceivableRow:
    return ReceivableRow(
        order_id=order.id,
        customer_id=order.customer_id,
        customer_name=names.get(order.customer_id),
        order_date=order.order_date,
        total_amount=order.total_amount,
        amount_paid=order.amount_paid,
        balance_due=order.balance_due,
        order_status=order.order_status,
        payment_type=order.payment_type,
    )


def _sorted_rows(rows: list[ReceivableRow]) -> list[ReceivableRow]:
    return sorted(rows, key=lambda r: (r.order_date, r.order_id))


@dataclass
class AccountsReceivable:
    total_outstanding: Decimal
    orders: list[ReceivableRow] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "total_outstanding": to_display(self.total_outstanding),
            "order_count": len(self.orders),
            "orders": [row.to_dict() for row in self.orders],
        }


def accounts_receivable(orders: Iterable, customers: Iterable = ()) -> AccountsReceivable:
    """Every order still owing money, except cancelled and returned ones."""
    names = {c.id: c.full_name for c in customers}
    owing = [o for o in orders if o.balance_due > ZERO and _is_valid_order(o)]
    return AccountsReceivable(
        total_outstanding=money_sum(o.balance_due for o in owing),
        orders=_sorted_rows([_receivable_row(o, names) for o in owing]),
    )


@dataclass
class LayAway:
    total_paid: Decimal
    total_pending: Decimal
    orders: list[ReceivableRow] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "total_paid": to_display(self.total_paid),
            "total_pending": to_display(self.total_pending),
            "order_count": len(self.orders),
            "orders": [row.to_dict() for row in self.orders],
        }


def layaway(orders: Iterable, customers: Iterable = ()) -> LayAway:
    """Open lay-away orders (pending payment or processing)."""
    names = {c.id: c.full_name for c in customers}
    open_orders = [
        o for o in orders
        if o.payment_type == PAYMENT_TYPE_LAY_AWAY and o.order_status in LAYAWAY_OPEN_STATUSES
    ]
    return LayAway(
        total_paid=money_sum(o.amount_paid for o in open_orders),
        total_pending=money_sum(o.balance_due for o in open_orders),
        orders=_sorted_rows([_receivable_row(o, names) for o in open_orders]),
    )


# =============================================================================
# SUPPLEMENTARY REPORTS
# =============================================================================

@dataclass
class ProductSales:
    product_id: str
    product_name: str | None
    quantity: int
    revenue: Decimal

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "revenue": to_display(self.revenue),
        }


def sales_by_product(
    orders: Iterable,
    order_items: Iterable,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[ProductSales]:
    """Units and net revenue per product over valid orders, best sellers first."""
    valid_ids = {o.id for o in orders if _is_valid_order(o) and _in_range(o.order_date, start, end)}

    quantities: dict[str, int] = defaultdict(int)
    revenue: dict[str, Decimal] = defaultdict(lambda: ZERO)
    names: dict[str, str | None] = {}
    for item in order_items:
        if item.order_id not in valid_ids:
            continue
        quantities[item.product_id] += item.quantity
        revenue[item.product_id] += Decimal(item.selling_price_at_sale) * item.quantity - Decimal(item.discount)
        names.setdefault(item.product_id, item.product_name)

    rows = [ProductSales(pid, names.get(pid), qty, revenue[pid]) for pid, qty in quantities.items()]
    return sorted(rows, key=lambda r: (-r.quantity, r.product_name or "", r.product_id))


@dataclass
class ToOrderRow:
    product_id: str
    sku: str
    name: str
    quantity_on_hand: int

    @property
    def shortfall(self) -> int:
        return -self.quantity_on_hand

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "sku": self.sku,
            "name": self.name,
            "quantity_on_hand": self.quantity_on_hand,
            "shortfall": self.shortfall,
        }


def to_order(products: Iterable) -> list[ToOrderRow]:
    """Oversold products (negative on-hand), most oversold first."""
    rows = [
        ToOrderRow(p.id, p.sku, p.name, p.quantity_on_hand)
        for p in products
        if p.quantity_on_hand < 0
    ]
    return sorted(rows, key=lambda r: (r.quantity_on_hand, r.name, r.product_id))


@dataclass
class BatchValuation:
    total_value: Decimal
    total_units: int
    batches: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "total_value": to_display(self.total_value),
            "total_units": self.total_units,
            "batches": self.batches,
        }


def batch_valuation(batches: Iterable, products: Iterable = ()) -> BatchValuation:
    """Remaining lots across all products, oldest purchase first, valued at unit cost."""
    names = {p.id: p.name for p in products}
    live = sorted(
        (b for b in batches if b.remaining_qty > 0),
        key=lambda b: (b.purchase_date, b.batch_id),
    )
    rows = []
    for batch in live:
        value = Decimal(batch.unit_cost) * batch.remaining_qty
        row = batch.to_dict() if hasattr(batch, "to_dict") else {"batch_id": batch.batch_id}
        row["product_name"] = names.get(batch.product_id)
        row["value"] = to_display(value)
        rows.append(row)
    return BatchValuation(
        total_value=money_sum(Decimal(b.unit_cost) * b.remaining_qty for b in live),
        total_units=sum(b.remaining_qty for b in live),
        batches=rows,
    )


@dataclass
class DashboardSummary:
    total_revenue: Decimal
    net_profit: Decimal
    sales_count: int
    accounts_receivable: Decimal
    ar_count: int

    def to_dict(self) -> dict:
        return {
            "total_revenue": to_display(self.total_revenue),
            "net_profit": to_display(self.net_profit),
            "sales_count": self.sales_count,
            "accounts_receivable": to_display(self.accounts_receivable),
            "ar_count": self.ar_count,
        }


def dashboard_summary(orders: Sequence, order_items: Iterable, expenses: Iterable) -> DashboardSummary:
    """All-time headline numbers: revenue less COGS and operating expenses."""
    valid = [o for o in orders if _is_valid_order(o)]
    valid_ids = {o.id for o in valid}
    revenue = money_sum(o.total_amount for o in valid)
    cogs = money_sum(
        Decimal(i.cost_price_at_sale) * i.quantity for i in order_items if i.order_id in valid_ids
    )
    operating = money_sum(e.amount for e in expenses if not is_cogs_category(e.category))
    receivables = accounts_receivable(orders)
    return DashboardSummary(
        total_revenue=revenue,
        net_profit=revenue - cogs - operating,
        sales_count=len(valid),
        accounts_receivable=receivables.total_outstanding,
        ar_count=len(receivables.orders),
    )


@dataclass
class SalesPersonRow:
    sales_person_id: str
    sales_count: int
    total_amount: Decimal

    def to_dict(self) -> dict:
        return {
            "sales_person_id": self.sales_person_id,
            "sales_count": self.sales_count,
            "total_amount": to_display(self.total_amount),
        }


@dataclass
class SalesByPerson:
    grand_total: Decimal
    rows: list[SalesPersonRow] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "grand_total": to_display(self.grand_total),
            "rows": [row.to_dict() for row in self.rows],
        }


def sales_by_person(
    orders: Iterable,
    start: datetime | None = None,
    end: datetime | None = None,
) -> SalesByPerson:
    """Completed orders in range per sales person, biggest seller first. Unattributed orders are left out."""
    counts: dict[str, int] = defaultdict(int)
    totals: dict[str, Decimal] = defaultdict(lambda: ZERO)
    for order in orders:
        if order.order_status != ORDER_STATUS_COMPLETED or not order.sales_person_id:
            continue
        if not _in_range(order.order_date, start, end):
            continue
        counts[order.sales_person_id] += 1
        totals[order.sales_person_id] += Decimal(order.total_amount)

    rows = sorted(
        (SalesPersonRow(person, counts[person], totals[person]) for person in counts),
        key=lambda r: (-r.total_amount, r.sales_person_id),
    )
    return SalesByPerson(grand_total=money_sum(r.total_amount for r in rows), rows=rows)


def _item_dict(item) -> dict:
    return {
        "product_id": item.product_id,
        "product_name": item.product_name,
        "quantity": item.quantity,
        "selling_price_at_sale": to_display(item.selling_price_at_sale),
        "discount": to_display(item.discount),
    }


@dataclass
class ProcessedOrders:
    total_amount: Decimal
    orders: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "total_amount": to_display(self.total_amount),
            "order_count": len(self.orders),
            "orders": self.orders,
        }


def processed_orders(
    orders: Iterable,
    order_items: Iterable,
    customers: Iterable = (),
    start: datetime | None = None,
    end: datetime | None = None,
) -> ProcessedOrders:
    """Orders still PROCESSING with an order date in range, oldest first, with their lines."""
    names = {c.id: c.full_name for c in customers}
    selected = sorted(
        (
            o for o in orders
            if o.order_status == ORDER_STATUS_PROCESSING and _in_range(o.order_date, start, end)
        ),
        key=lambda o: (o.order_date, o.id),
    )
    selected_ids = {o.id for o in selected}

    lines: dict[str, list] = defaultdict(list)
    for item in order_items:
        if item.order_id in selected_ids:
            lines[item.order_id].append(item)

    rows = []
    for order in selected:
        rows.append({
            "order_id": order.id,
            "customer_id": order.customer_id,
            "customer_name": names.get(order.customer_id),
            "order_date": to_utc_z(order.order_date),
            "payment_type": order.payment_type,
            "total_amount": to_display(order.total_amount),
            "items": [
                _item_dict(i)
                for i in sorted(lines[order.id], key=lambda i: (i.product_name or "", i.product_id))
            ],
        })
    return ProcessedOrders(total_amount=money_sum(o.total_amount for o in selected), orders=rows)


# =============================================================================
# LOADER
# =============================================================================

def _all(model, order_by=None):
    query = db.session.query(model)
    if order_by is not None:
        query = query.order_by(order_by)
    return query.all()


def _ranged(model, column, start: datetime | None, end: datetime | None):
    query = db.session.query(model)
    if start is not None:
        query = query.filter(column >= start)
    if end is not None:
        query = query.filter(column <= end)
    return query.all()


def normalize_range(start: datetime | None, end: datetime | None) -> tuple[datetime | None, datetime | None]:
    """Widen bare dates to whole days: start at 00:00, end at 23:59:59.999999."""
    start_dt = start_of_day(start) if start is not None and _is_midnight(start) else start
    end_dt = end_of_day(end) if end is not None and _is_midnight(end) else end
    if start_dt is not None and end_dt is not None and start_dt > end_dt:
        raise ValidationError("start must not be after end")
    return start_dt, end_dt


def _is_midnight(value) -> bool:
    if not isinstance(value, datetime):
        return True
    return value.hour == 0 and value.minute == 0 and value.second == 0 and value.microsecond == 0


def run_report(kind: str, start: datetime | None = None, end: datetime | None = None):
    """
    Load the ledger rows a report needs and reduce them.

    Raises:
        ValidationError: unknown kind or start after end
    """
    start, end = normalize_range(start, end)

    if kind == "pnl":
        orders = _ranged(Order, Order.order_date, start, end)
        order_ids = [o.id for o in orders]
        items = (
            db.session.query(OrderItem).filter(OrderItem.order_id.in_(order_ids)).all() if order_ids else []
        )
        return profit_and_loss(
            orders,
            items,
            _ranged(Expense, Expense.expense_date, start, end),
            _ranged(Refund, Refund.refund_date, start, end),
            _ranged(BadDebt, BadDebt.write_off_date, start, end),
            start,
            end,
        )
    if kind == "cashflow":
        return cash_flow(
            _ranged(Payment, Payment.payment_date, start, end),
            _ranged(Expense, Expense.expense_date, start, end),
            _ranged(Refund, Refund.refund_date, start, end),
            start,
            end,
        )
    if kind == "ar":
        return accounts_receivable(_all(Order), _all(Customer))
    if kind == "layaway":
        return layaway(_all(Order), _all(Customer))
    if kind == "sales-by-product":
        orders = _ranged(Order, Order.order_date, start, end)
        return sales_by_product(orders, _all(OrderItem), start, end)
    if kind == "sales-by-person":
        return sales_by_person(_ranged(Order, Order.order_date, start, end), start, end)
    if kind == "processed-orders":
        orders = _ranged(Order, Order.order_date, start, end)
        order_ids = [o.id for o in orders]
        items = (
            db.session.query(OrderItem).filter(OrderItem.order_id.in_(order_ids)).all() if order_ids else []
        )
        return processed_orders(orders, items, _all(Customer), start, end)
    if kind == "to-order":
        return to_order(_all(Product))
    if kind == "batches":
        return batch_valuation(_all(StockBatch), _all(Product))
    if kind == "dashboard":
        return dashboard_summary(_all(Order), _all(OrderItem), _all(Expense))

    raise ValidationError(
        f"Unknown report kind: {kind}",
        details={"valid_kinds": list(REPORT_KINDS + SUPPLEMENTARY_REPORT_KINDS)},
    )


def report_to_dict(result) -> dict:
    """JSON shape for any run_report result."""
    if isinstance(result, list):
        return {"rows": [row.to_dict() for row in result]}
    return result.to_dict()
