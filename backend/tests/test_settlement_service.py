from datetime import datetime
from decimal import Decimal

import pytest

from stockledger.errors import ConflictError, NotFoundError, ValidationError
from stockledger.extensions import db
from stockledger.models import (
    Expense,
    InventoryMovement,
    Order,
    OrderItem,
    Payment,
    Product,
    StockBatch,
)
from stockledger.services import settlement_service, write_intent
from stockledger.services.settlement_service import (
    OrderLineRequest,
    OrderRequest,
    RestockLineRequest,
    RestockRequest,
)

from conftest import JAN_1, JAN_2, JAN_15


def _snapshot(product_id):
    db.session.expire_all()
    product = db.session.get(Product, product_id)
    batches = sorted(
        (b.batch_id, b.remaining_qty)
        for b in db.session.query(StockBatch).filter_by(product_id=product_id)
    )
    return product.quantity_on_hand, product.version_id, batches


def _counts():
    return (
        db.session.query(Order).count(),
        db.session.query(OrderItem).count(),
        db.session.query(InventoryMovement).filter_by(movement_type="SALE").count(),
        db.session.query(Payment).count(),
    )


@pytest.fixture
def two_lot_product(make_product):
    """B1: 5 @ 10 (older), B2: 5 @ 20 (newer)."""
    return make_product(batches=[(5, "10", JAN_1), (5, "20", JAN_2)], selling_price="50.00")


class TestSettleOrder:
    def test_cost_within_first_batch(self, customer, two_lot_product, make_order):
        order_id = make_order(customer, [(two_lot_product, 3)])

        item = db.session.query(OrderItem).filter_by(order_id=order_id).one()
        assert item.cost_price_at_sale == Decimal("10")
        assert item.selling_price_at_sale == Decimal("50")

    def test_weighted_fifo_cost_across_batches(self, customer, two_lot_product, make_order):
        order_id = make_order(customer, [(two_lot_product, 8)])

        item = db.session.query(OrderItem).filter_by(order_id=order_id).one()
        assert item.cost_price_at_sale == Decimal("13.75")

        qoh, _, batches = _snapshot(two_lot_product.id)
        assert qoh == 2
        # Older batch exhausted and deleted, newer one has 2 left
        assert [remaining for _, remaining in batches] == [2]

    def test_sale_movement_written(self, customer, two_lot_product, make_order):
        order_id = make_order(customer, [(two_lot_product, 4)])

        movement = db.session.query(InventoryMovement).filter_by(movement_type="SALE").one()
        assert movement.quantity_change == -4
        assert movement.reason == f"Order {order_id}"
        assert movement.order_id == order_id
        assert movement.shortfall == 0

    def test_totals_and_full_payment_defaults(self, customer, two_lot_product, make_order):
        order_id = make_order(customer, [(two_lot_product, 2, "10.00")])

        order = db.session.get(Order, order_id)
        assert order.subtotal == Decimal("100")
        assert order.total_discount == Decimal("10")
        assert order.total_amount == Decimal("90")
        assert order.amount_paid == Decimal("90")
        assert order.balance_due == Decimal("0")
        assert order.order_status == "COMPLETED"

        payment = db.session.query(Payment).filter_by(order_id=order_id).one()
        assert payment.amount == Decimal("90")

    def test_lay_away_order_starts_unpaid(self, customer, two_lot_product, make_order):
        order_id = make_order(customer, [(two_lot_product, 2)], payment_type="LAY_AWAY")

        order = db.session.get(Order, order_id)
        assert order.amount_paid == Decimal("0")
        assert order.balance_due == Decimal("100")
        assert order.order_status == "PROCESSING"
        assert db.session.query(Payment).count() == 0

    def test_partial_up_front_payment(self, customer, two_lot_product, make_order):
        order_id = make_order(
            customer,
            [(two_lot_product, 2)],
            payment_type="INSTALLMENT",
            installment_months=3,
            amount_paid=Decimal("40"),
        )

        order = db.session.get(Order, order_id)
        assert order.balance_due == Decimal("60")
        assert order.installment_months == 3
        assert order.order_status == "PROCESSING"

    def test_two_lines_same_product_allocate_sequentially(self, customer, two_lot_product, make_order):
        order_id = make_order(customer, [(two_lot_product, 3), (two_lot_product, 4)])

        costs = sorted(i.cost_price_at_sale for i in db.session.query(OrderItem).filter_by(order_id=order_id))
        # First line: 3 @ 10. Second: 2 @ 10 + 2 @ 20 = 15
        assert costs == [Decimal("10"), Decimal("15")]
        qoh, _, _ = _snapshot(two_lot_product.id)
        assert qoh == 3

    def test_oversell_goes_negative_and_records_shortfall(self, customer, make_product, make_order):
        product = make_product(batches=[(2, "10", JAN_1)])

        order_id = make_order(customer, [(product, 5)])

        qoh, _, batches = _snapshot(product.id)
        assert qoh == -3
        assert batches == []
        movement = db.session.query(InventoryMovement).filter_by(order_id=order_id).one()
        assert movement.shortfall == 3
        item = db.session.query(OrderItem).filter_by(order_id=order_id).one()
        # 2 units @ 10 over 5 requested; shortfall units carry no cost
        assert item.cost_price_at_sale == Decimal("4")

    def test_bumps_product_version(self, customer, two_lot_product, make_order):
        _, version_before, _ = _snapshot(two_lot_product.id)
        make_order(customer, [(two_lot_product, 1)])
        _, version_after, _ = _snapshot(two_lot_product.id)
        assert version_after == version_before + 1


class TestSettleOrderRejections:
    def test_empty_items(self, customer):
        with pytest.raises(ValidationError):
            settlement_service.settle_order(OrderRequest(customer_id=customer.id, items=[]))
        assert _counts() == (0, 0, 0, 0)

    def test_installment_requires_months(self, customer, two_lot_product):
        request = OrderRequest(
            customer_id=customer.id,
            items=[OrderLineRequest(two_lot_product.id, 1)],
            payment_type="INSTALLMENT",
        )
        with pytest.raises(ValidationError):
            settlement_service.settle_order(request)

    def test_unknown_payment_type(self, customer, two_lot_product):
        request = OrderRequest(
            customer_id=customer.id,
            items=[OrderLineRequest(two_lot_product.id, 1)],
            payment_type="BARTER",
        )
        with pytest.raises(ValidationError):
            settlement_service.settle_order(request)

    def test_discount_above_line_subtotal(self, customer, two_lot_product):
        request = OrderRequest(
            customer_id=customer.id,
            items=[OrderLineRequest(two_lot_product.id, 1, discount=Decimal("60"))],
        )
        with pytest.raises(ValidationError):
            settlement_service.settle_order(request)
        assert _counts() == (0, 0, 0, 0)

    def test_amount_paid_above_total(self, customer, two_lot_product):
        request = OrderRequest(
            customer_id=customer.id,
            items=[OrderLineRequest(two_lot_product.id, 1)],
            payment_type="LAY_AWAY",
            amount_paid=Decimal("51"),
        )
        with pytest.raises(ValidationError):
            settlement_service.settle_order(request)

    def test_missing_product(self, customer, two_lot_product):
        before = _snapshot(two_lot_product.id)
        request = OrderRequest(
            customer_id=customer.id,
            items=[OrderLineRequest(two_lot_product.id, 1), OrderLineRequest("nope", 1)],
        )
        with pytest.raises(NotFoundError):
            settlement_service.settle_order(request)
        assert _snapshot(two_lot_product.id) == before
        assert _counts() == (0, 0, 0, 0)

    def test_missing_customer(self, two_lot_product):
        request = OrderRequest(customer_id="ghost", items=[OrderLineRequest(two_lot_product.id, 1)])
        with pytest.raises(NotFoundError):
            settlement_service.settle_order(request)


class TestSettlementAtomicity:
    def test_failure_mid_apply_leaves_no_trace(self, customer, two_lot_product, monkeypatch):
        before = _snapshot(two_lot_product.id)
        real_apply = write_intent._apply_write

        def failing_apply(write):
            real_apply(write)
            # Product decrement already flushed when the batches are touched
            if write.model is StockBatch:
                raise RuntimeError("storage went away")

        monkeypatch.setattr(write_intent, "_apply_write", failing_apply)

        request = OrderRequest(customer_id=customer.id, items=[OrderLineRequest(two_lot_product.id, 8)])
        with pytest.raises(RuntimeError):
            settlement_service.settle_order(request)

        assert _snapshot(two_lot_product.id) == before
        assert _counts() == (0, 0, 0, 0)

    def test_concurrent_restock_makes_staged_order_conflict(self, customer, two_lot_product):
        request = OrderRequest(customer_id=customer.id, items=[OrderLineRequest(two_lot_product.id, 8)])
        staged = settlement_service.stage_order(request)

        # Another writer settles against the same product first
        settlement_service.settle_restock(
            RestockRequest(
                supplier_name="Acme",
                items=[RestockLineRequest(two_lot_product.id, 10, Decimal("5"))],
                purchase_date=JAN_15,
            )
        )
        after_restock = _snapshot(two_lot_product.id)

        with pytest.raises(ConflictError):
            write_intent.apply_intent(staged.intent)

        assert _snapshot(two_lot_product.id) == after_restock
        assert after_restock[0] == 20
        assert _counts() == (0, 0, 0, 0)

    def test_retry_after_conflict_uses_fresh_state(self, app, customer, two_lot_product):
        from stockledger.services.concurrency import run_with_retry

        calls = {"n": 0}

        def _op():
            calls["n"] += 1
            if calls["n"] == 1:
                staged = settlement_service.stage_order(
                    OrderRequest(customer_id=customer.id, items=[OrderLineRequest(two_lot_product.id, 1)])
                )
                settlement_service.settle_restock(
                    RestockRequest("Acme", [RestockLineRequest(two_lot_product.id, 1, Decimal("1"))], JAN_15)
                )
                write_intent.apply_intent(staged.intent)
                return staged.order_id
            return settlement_service.settle_order(
                OrderRequest(customer_id=customer.id, items=[OrderLineRequest(two_lot_product.id, 1)])
            )

        order_id = run_with_retry(_op, attempts=2, backoff_base=0)
        assert calls["n"] == 2
        assert db.session.get(Order, order_id) is not None
        assert _snapshot(two_lot_product.id)[0] == 10


class TestConservation:
    def test_on_hand_matches_restocks_minus_sales(self, customer, make_product, make_order):
        product = make_product(batches=[(10, "3", JAN_1)])
        restocked = 10
        sold = 0
        for qty, cost in [(4, "5"), (6, "7")]:
            settlement_service.settle_restock(
                RestockRequest("Acme", [RestockLineRequest(product.id, qty, Decimal(cost))], JAN_2)
            )
            restocked += qty
        for qty in (3, 7, 5):
            make_order(customer, [(product, qty)])
            sold += qty

        qoh, _, batches = _snapshot(product.id)
        assert qoh == restocked - sold
        assert sum(remaining for _, remaining in batches) == qoh


class TestSettleRestock:
    def test_appends_batches_and_books_cogs_expense(self, make_product):
        p1 = make_product()
        p2 = make_product()

        batch_ids = settlement_service.settle_restock(
            RestockRequest(
                supplier_name="Acme",
                items=[
                    RestockLineRequest(p1.id, 10, Decimal("2.50")),
                    RestockLineRequest(p2.id, 4, Decimal("10")),
                ],
                purchase_date=datetime(2024, 3, 1),
            )
        )

        assert len(batch_ids) == 2
        batch = db.session.get(StockBatch, batch_ids[0])
        assert batch.original_qty == batch.remaining_qty == 10
        assert batch.unit_cost == Decimal("2.5")
        assert batch.supplier_name == "Acme"
        assert _snapshot(p1.id)[0] == 10
        assert _snapshot(p2.id)[0] == 4

        movements = db.session.query(InventoryMovement).filter_by(movement_type="RESTOCK").all()
        assert {m.reason for m in movements} == {"Restock from Acme"}

        expense = db.session.query(Expense).one()
        assert expense.amount == Decimal("65")
        assert expense.category == "Cost of Goods Sold"
        assert expense.description == "Shipment received from Acme"

    def test_free_stock_books_no_expense(self, make_product):
        product = make_product()
        settlement_service.settle_restock(
            RestockRequest("Donor", [RestockLineRequest(product.id, 3, Decimal("0"))], JAN_2)
        )
        assert db.session.query(Expense).count() == 0
        assert _snapshot(product.id)[0] == 3

    def test_restocked_batch_is_consumed_after_older_ones(self, customer, make_product, make_order):
        product = make_product(batches=[(2, "10", JAN_1)])
        settlement_service.settle_restock(
            RestockRequest("Acme", [RestockLineRequest(product.id, 2, Decimal("30"))], JAN_2)
        )
        order_id = make_order(customer, [(product, 3)])
        item = db.session.query(OrderItem).filter_by(order_id=order_id).one()
        # (2 x 10 + 1 x 30) / 3
        assert item.cost_price_at_sale.quantize(Decimal("0.01")) == Decimal("16.67")

    def test_requires_supplier(self, make_product):
        product = make_product()
        with pytest.raises(ValidationError):
            settlement_service.settle_restock(
                RestockRequest("", [RestockLineRequest(product.id, 1, Decimal("1"))])
            )

    def test_missing_product_writes_nothing(self, make_product):
        product = make_product()
        with pytest.raises(NotFoundError):
            settlement_service.settle_restock(
                RestockRequest(
                    "Acme",
                    [RestockLineRequest(product.id, 1, Decimal("1")), RestockLineRequest("nope", 1, Decimal("1"))],
                )
            )
        assert _snapshot(product.id)[0] == 0
        assert db.session.query(StockBatch).count() == 0


class TestRequestParsing:
    def test_order_payload(self):
        request = OrderRequest.from_payload({
            "customer_id": "c1",
            "items": [{"product_id": "p1", "quantity": "2", "discount": 1.5}],
            "payment_type": "LAY_AWAY",
            "order_date": "2024-01-15T10:00:00Z",
        })
        assert request.items[0].quantity == 2
        assert request.items[0].discount == Decimal("1.5")
        assert request.order_date == datetime(2024, 1, 15, 10, 0)

    def test_order_payload_rejects_fractional_quantity(self):
        with pytest.raises(ValidationError):
            OrderRequest.from_payload({"customer_id": "c1", "items": [{"product_id": "p1", "quantity": 1.5}]})

    def test_single_line_restock_payload(self):
        request = RestockRequest.from_payload({
            "product_id": "p1", "quantity": 3, "unit_cost": "4.25", "supplier_name": "Acme",
        })
        assert request.items == [RestockLineRequest("p1", 3, Decimal("4.25"))]
