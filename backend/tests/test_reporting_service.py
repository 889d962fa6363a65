from datetime import date, datetime
from decimal import Decimal
from types import SimpleNamespace

import pytest

from stockledger.errors import ValidationError
from stockledger.services import expense_service, payment_service, reporting_service
from stockledger.services.reporting_service import (
    accounts_receivable,
    batch_valuation,
    cash_flow,
    dashboard_summary,
    layaway,
    processed_orders,
    profit_and_loss,
    sales_by_product,
    sales_by_person,
    to_order,
)

from conftest import JAN_1


D = Decimal
START = datetime(2024, 1, 1)
END = datetime(2024, 1, 31, 23, 59, 59)


def order(oid, status="COMPLETED", subtotal="0", discount="0", total=None, paid=None,
          payment_type="FULL_PAYMENT", when=datetime(2024, 1, 10), customer_id="c1", sales_person_id=None):
    total = D(total) if total is not None else D(subtotal) - D(discount)
    paid = D(paid) if paid is not None else total
    return SimpleNamespace(
        id=oid,
        customer_id=customer_id,
        order_date=when,
        order_status=status,
        payment_type=payment_type,
        subtotal=D(subtotal),
        total_discount=D(discount),
        total_amount=total,
        amount_paid=paid,
        balance_due=total - paid,
        sales_person_id=sales_person_id,
    )


def item(order_id, cost, qty, price="0", discount="0", product_id="p1", name="Widget"):
    return SimpleNamespace(
        order_id=order_id,
        product_id=product_id,
        product_name=name,
        quantity=qty,
        cost_price_at_sale=D(cost),
        selling_price_at_sale=D(price),
        discount=D(discount),
    )


def expense(amount, category, when=datetime(2024, 1, 5)):
    return SimpleNamespace(amount=D(amount), category=category, expense_date=when)


def refund(amount, when=datetime(2024, 1, 20)):
    return SimpleNamespace(amount=D(amount), refund_date=when)


def payment(amount, when=datetime(2024, 1, 12)):
    return SimpleNamespace(amount=D(amount), payment_date=when)


class TestProfitAndLoss:
    @pytest.fixture
    def ledger(self):
        orders = [
            order("o1", subtotal="600", discount="60"),
            order("o2", subtotal="400", discount="40"),
            order("o3", status="CANCELLED", total="50"),
            # Out of range; ignored everywhere
            order("o4", subtotal="999", when=datetime(2024, 2, 1)),
        ]
        items = [
            item("o1", "100", 4),
            item("o2", "200", 1),
            item("o3", "25", 2),
            item("o4", "1", 1),
        ]
        expenses = [
            expense("200", "Rent"),
            # Stock purchases reach the P&L through item costs instead
            expense("500", "cost of goods sold"),
            expense("80", "Rent", when=datetime(2023, 12, 31)),
        ]
        return orders, items, expenses, [refund("20")]

    def test_reference_scenario(self, ledger):
        orders, items, expenses, refunds = ledger
        pnl = profit_and_loss(orders, items, expenses, refunds, [], START, END)

        assert pnl.gross_sales == D("1000")
        assert pnl.sales_discounts == D("100")
        assert pnl.net_sales == D("900")
        assert pnl.cogs == D("600")
        assert pnl.gross_profit == D("300")
        assert pnl.operating_expenses == D("200")
        assert pnl.expenses_by_category == {"Rent": D("200")}
        assert pnl.returned_order_totals == D("50")
        assert pnl.other_losses == D("70")
        # 300 - 200 - 70
        assert pnl.net_profit == D("30")

    def test_bad_debts_are_other_losses(self, ledger):
        orders, items, expenses, refunds = ledger
        bad_debts = [SimpleNamespace(amount=D("15"), write_off_date=datetime(2024, 1, 25))]
        pnl = profit_and_loss(orders, items, expenses, refunds, bad_debts, START, END)
        assert pnl.bad_debt_write_offs == D("15")
        assert pnl.other_losses == D("85")
        assert pnl.net_profit == D("15")

    def test_input_order_does_not_matter(self, ledger):
        orders, items, expenses, refunds = ledger
        forward = profit_and_loss(orders, items, expenses, refunds, [], START, END)
        backward = profit_and_loss(orders[::-1], items[::-1], expenses[::-1], refunds, [], START, END)
        assert forward == backward

    def test_display_strings(self, ledger):
        orders, items, expenses, refunds = ledger
        data = profit_and_loss(orders, items, expenses, refunds, [], START, END).to_dict()
        assert data["net_profit"] == "30.00"
        assert data["expenses_by_category"] == {"Rent": "200.00"}
        assert data["start"] == "2024-01-01T00:00:00Z"


class TestCashFlow:
    def test_payments_in_expenses_and_refunds_out(self):
        result = cash_flow(
            [payment("500"), payment("250"), payment("999", when=datetime(2024, 3, 1))],
            [expense("200", "Rent"), expense("300", "Cost of Goods Sold")],
            [refund("20")],
            START,
            END,
        )
        assert result.cash_in == D("750")
        assert result.cash_out == D("520")
        assert result.net_cash == D("230")

    def test_range_is_inclusive(self):
        result = cash_flow([payment("1", when=START), payment("2", when=END)], [], [], START, END)
        assert result.cash_in == D("3")


class TestReceivables:
    def test_open_balances_only(self):
        orders = [
            order("o1", subtotal="100", paid="40"),
            order("o2", subtotal="100"),
            order("o3", status="CANCELLED", subtotal="100", paid="0"),
            order("o4", status="RETURNED", subtotal="100", paid="10"),
            order("o5", status="SHIPPED", subtotal="80", paid="0", when=datetime(2023, 5, 1)),
        ]
        customers = [SimpleNamespace(id="c1", full_name="Maria Santos")]

        ar = accounts_receivable(orders, customers)

        assert ar.total_outstanding == D("140")
        assert [r.order_id for r in ar.orders] == ["o5", "o1"]
        assert ar.orders[0].customer_name == "Maria Santos"

    def test_layaway_subset(self):
        orders = [
            order("o1", subtotal="100", paid="30", payment_type="LAY_AWAY", status="PROCESSING"),
            order("o2", subtotal="50", paid="0", payment_type="LAY_AWAY", status="PENDING_PAYMENT"),
            order("o3", subtotal="70", paid="70", payment_type="LAY_AWAY", status="COMPLETED"),
            order("o4", subtotal="90", paid="0", payment_type="INSTALLMENT", status="PROCESSING"),
        ]
        result = layaway(orders)
        assert result.total_paid == D("30")
        assert result.total_pending == D("120")
        assert {r.order_id for r in result.orders} == {"o1", "o2"}


class TestSupplementaryReports:
    def test_sales_by_product_sorted_by_quantity(self):
        orders = [order("o1"), order("o2", status="RETURNED")]
        items = [
            item("o1", "1", 2, price="10", product_id="a", name="Alpha"),
            item("o1", "1", 5, price="4", discount="2", product_id="b", name="Beta"),
            item("o2", "1", 50, price="4", product_id="a", name="Alpha"),
        ]
        rows = sales_by_product(orders, items)
        assert [(r.product_id, r.quantity, r.revenue) for r in rows] == [
            ("b", 5, D("18")),
            ("a", 2, D("20")),
        ]

    def test_to_order_lists_oversold_products(self):
        products = [
            SimpleNamespace(id="p1", sku="A", name="A", quantity_on_hand=-2),
            SimpleNamespace(id="p2", sku="B", name="B", quantity_on_hand=3),
            SimpleNamespace(id="p3", sku="C", name="C", quantity_on_hand=-7),
        ]
        rows = to_order(products)
        assert [(r.product_id, r.shortfall) for r in rows] == [("p3", 7), ("p1", 2)]

    def test_batch_valuation_oldest_first(self):
        batches = [
            SimpleNamespace(batch_id="x2", product_id="p", purchase_date=datetime(2024, 2, 1),
                            remaining_qty=2, unit_cost=D("20")),
            SimpleNamespace(batch_id="x1", product_id="p", purchase_date=datetime(2024, 1, 1),
                            remaining_qty=3, unit_cost=D("10")),
            SimpleNamespace(batch_id="x0", product_id="p", purchase_date=datetime(2023, 1, 1),
                            remaining_qty=0, unit_cost=D("99")),
        ]
        result = batch_valuation(batches, [SimpleNamespace(id="p", name="Widget")])
        assert result.total_value == D("70")
        assert result.total_units == 5
        assert [b["batch_id"] for b in result.batches] == ["x1", "x2"]
        assert result.batches[0]["product_name"] == "Widget"

    def test_dashboard_summary(self):
        orders = [
            order("o1", subtotal="500", paid="300"),
            order("o2", status="CANCELLED", subtotal="100", paid="0"),
        ]
        items = [item("o1", "50", 4), item("o2", "10", 1)]
        expenses = [expense("100", "Rent"), expense("400", "Cost of Goods Sold")]

        summary = dashboard_summary(orders, items, expenses)

        assert summary.total_revenue == D("500")
        assert summary.net_profit == D("200")
        assert summary.sales_count == 1
        assert summary.accounts_receivable == D("200")
        assert summary.ar_count == 1


class TestSalesByPerson:
    def test_completed_orders_grouped_biggest_first(self):
        orders = [
            order("o1", subtotal="100", sales_person_id="ana"),
            order("o2", subtotal="300", sales_person_id="ben"),
            order("o3", subtotal="250", sales_person_id="ana"),
            order("o4", status="PROCESSING", subtotal="999", paid="0", sales_person_id="ben"),
            order("o5", subtotal="50"),
            order("o6", subtotal="70", sales_person_id="ben", when=datetime(2024, 2, 2)),
        ]

        result = sales_by_person(orders, START, END)

        assert [(r.sales_person_id, r.sales_count, r.total_amount) for r in result.rows] == [
            ("ana", 2, D("350")),
            ("ben", 1, D("300")),
        ]
        assert result.grand_total == D("650")
        assert result.to_dict()["grand_total"] == "650.00"

    def test_no_attributed_sales(self):
        result = sales_by_person([order("o1", subtotal="10")], START, END)
        assert result.rows == []
        assert result.grand_total == D("0")


class TestProcessedOrders:
    def test_processing_orders_in_range_with_items(self):
        orders = [
            order("o2", status="PROCESSING", subtotal="75.50", paid="0", when=datetime(2024, 1, 20)),
            order("o1", status="PROCESSING", subtotal="150", when=datetime(2024, 1, 5)),
            order("o3", status="COMPLETED", subtotal="200"),
            order("o4", status="PROCESSING", subtotal="40", when=datetime(2024, 3, 1)),
        ]
        items = [
            item("o1", "10", 3, price="50", name="Widget"),
            item("o2", "10", 1, price="75.50", product_id="p2", name="Gadget"),
            item("o3", "10", 1, price="200"),
        ]
        customers = [SimpleNamespace(id="c1", full_name="Maria Santos")]

        result = processed_orders(orders, items, customers, START, END)

        assert result.total_amount == D("225.50")
        assert [o["order_id"] for o in result.orders] == ["o1", "o2"]
        assert result.orders[0]["customer_name"] == "Maria Santos"
        assert result.orders[0]["items"] == [{
            "product_id": "p1",
            "product_name": "Widget",
            "quantity": 3,
            "selling_price_at_sale": "50.00",
            "discount": "0.00",
        }]
        assert result.to_dict()["order_count"] == 2


class TestRunReport:
    def test_pnl_from_database(self, customer, make_product, make_order):
        product = make_product(batches=[(10, "30", JAN_1)], selling_price="100.00")
        make_order(customer, [(product, 3, "10.00")], order_date=datetime(2024, 1, 15))
        expense_service.record_expense("40", "Rent", datetime(2024, 1, 20))

        pnl = reporting_service.run_report("pnl", date(2024, 1, 1), date(2024, 1, 31))

        assert pnl.net_sales == D("290")
        assert pnl.cogs == D("90")
        assert pnl.operating_expenses == D("40")
        assert pnl.net_profit == D("160")

    def test_end_date_covers_whole_day(self, customer, make_product, make_order):
        product = make_product(batches=[(1, "1", JAN_1)], selling_price="10.00")
        order_id = make_order(customer, [(product, 1)], payment_type="LAY_AWAY", order_date=datetime(2024, 1, 31, 18))
        payment_service.post_payment(order_id, "10", "CASH", payment_date=datetime(2024, 1, 31, 18))

        flow = reporting_service.run_report("cashflow", date(2024, 1, 1), date(2024, 1, 31))
        assert flow.cash_in == D("10")

    def test_receivables_from_database(self, customer, make_product, make_order):
        product = make_product(batches=[(1, "1", JAN_1)], selling_price="10.00")
        make_order(customer, [(product, 1)], payment_type="LAY_AWAY")

        ar = reporting_service.run_report("ar")
        data = reporting_service.report_to_dict(ar)
        assert data["total_outstanding"] == "10.00"
        assert data["orders"][0]["customer_name"] == "Maria Santos"

    def test_unknown_kind(self, db_session):
        with pytest.raises(ValidationError):
            reporting_service.run_report("horoscope")

    def test_start_after_end(self, db_session):
        with pytest.raises(ValidationError):
            reporting_service.run_report("pnl", date(2024, 2, 1), date(2024, 1, 1))

    def test_sales_by_person_from_database(self, customer, make_product, make_order):
        product = make_product(batches=[(10, "1", JAN_1)], selling_price="20.00")
        make_order(customer, [(product, 2)], sales_person_id="ana")
        make_order(customer, [(product, 1)], sales_person_id="ben")
        make_order(customer, [(product, 5)], sales_person_id="ben", payment_type="LAY_AWAY")

        result = reporting_service.run_report("sales-by-person", date(2024, 1, 1), date(2024, 1, 31))
        data = reporting_service.report_to_dict(result)

        assert data["rows"] == [
            {"sales_person_id": "ana", "sales_count": 1, "total_amount": "40.00"},
            {"sales_person_id": "ben", "sales_count": 1, "total_amount": "20.00"},
        ]
        assert data["grand_total"] == "60.00"

    def test_processed_orders_from_database(self, customer, make_product, make_order):
        product = make_product(batches=[(10, "1", JAN_1)], selling_price="20.00", name="Widget")
        open_id = make_order(customer, [(product, 3)], payment_type="LAY_AWAY")
        make_order(customer, [(product, 1)])

        result = reporting_service.run_report("processed-orders", date(2024, 1, 1), date(2024, 1, 31))

        assert [o["order_id"] for o in result.orders] == [open_id]
        assert result.orders[0]["items"][0]["quantity"] == 3
        assert result.total_amount == D("60")
