from decimal import Decimal

import pytest

from stockledger.errors import ConflictError, NotFoundError, ValidationError
from stockledger.services import customer_service, order_service, payment_service

from conftest import JAN_1


class TestCreateCustomer:
    def test_email_is_normalised(self, db_session):
        customer = customer_service.create_customer("Juan", "Cruz", "  Juan@Example.COM ", phone="0917")

        assert customer.email == "juan@example.com"
        assert customer.full_name == "Juan Cruz"
        assert customer_service.get_customer(customer.id).phone == "0917"

    def test_duplicate_email(self, customer):
        with pytest.raises(ConflictError):
            customer_service.create_customer("Other", "Person", "MARIA@example.com")

    @pytest.mark.parametrize("email", ["", "maria", "maria@", "maria@example", "a b@example.com"])
    def test_malformed_email(self, db_session, email):
        with pytest.raises(ValidationError):
            customer_service.create_customer("Juan", "Cruz", email)

    def test_names_required(self, db_session):
        with pytest.raises(ValidationError):
            customer_service.create_customer("  ", "Cruz", "juan@example.com")

    def test_missing_customer(self, db_session):
        with pytest.raises(NotFoundError):
            customer_service.get_customer("nobody")


class TestListCustomers:
    def test_search_and_order(self, customer):
        customer_service.create_customer("Ana", "Bautista", "ana@example.com")
        customer_service.create_customer("Ben", "Zamora", "ben@example.com")

        everyone, total = customer_service.list_customers()
        assert total == 3
        assert [c.last_name for c in everyone] == ["Bautista", "Santos", "Zamora"]

        found, total = customer_service.list_customers("zam")
        assert total == 1
        assert found[0].first_name == "Ben"


class TestCustomerSummary:
    def test_outstanding_balance_skips_settled_and_cancelled(self, customer, make_product, make_order):
        product = make_product(batches=[(10, "10", JAN_1)], selling_price="100.00")
        make_order(customer, [(product, 1)])
        open_id = make_order(customer, [(product, 2)], payment_type="LAY_AWAY")
        cancelled_id = make_order(customer, [(product, 1)], payment_type="LAY_AWAY")
        order_service.update_order_status(cancelled_id, "CANCELLED")
        payment_service.post_payment(open_id, "50", "CASH")

        summary = customer_service.customer_summary(customer.id)

        assert len(summary.orders) == 3
        assert [o.id for o in summary.outstanding_orders] == [open_id]
        assert summary.total_balance_owed == Decimal("150")
        # One up-front payment on the full-payment order, one posted later
        assert len(summary.payments) == 2
        assert summary.to_dict()["total_balance_owed"] == "150.00"

    def test_customer_without_orders(self, customer):
        summary = customer_service.customer_summary(customer.id)
        assert summary.orders == []
        assert summary.payments == []
        assert summary.total_balance_owed == Decimal("0")
