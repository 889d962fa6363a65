import json

from stockledger.extensions import db
from stockledger.models import Expense
from stockledger.services import expense_service


class TestLedgerCommands:
    def test_post_recurring_twice(self, app, db_session):
        expense_service.create_recurring_expense("Rent", "200", "Rent", 5)
        runner = app.test_cli_runner()

        first = runner.invoke(args=["ledger", "post-recurring", "--as-of", "2024-03-15"])
        second = runner.invoke(args=["ledger", "post-recurring", "--as-of", "2024-03-20"])

        assert first.exit_code == 0, first.output
        assert "posted 1, skipped 0" in first.output
        assert "posted 0, skipped 1" in second.output
        assert db.session.query(Expense).count() == 1

    def test_post_recurring_bad_date(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["ledger", "post-recurring", "--as-of", "soon"])
        assert result.exit_code != 0

    def test_report_prints_json(self, app, db_session):
        expense_service.record_expense("75", "Rent")
        result = app.test_cli_runner().invoke(args=["ledger", "report", "cashflow"])

        assert result.exit_code == 0, result.output
        assert json.loads(result.output)["cash_out"] == "75.00"

    def test_unknown_report(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["ledger", "report", "weather"])
        assert result.exit_code != 0

    def test_sales_by_person_and_processed_orders(self, app, customer, make_product, make_order):
        product = make_product(batches=[(4, "5")], selling_price="30.00")
        make_order(customer, [(product, 2)], payment_type="FULL_PAYMENT", sales_person_id="ben")
        make_order(customer, [(product, 1)], payment_type="LAY_AWAY", sales_person_id="ben")
        runner = app.test_cli_runner()

        by_person = runner.invoke(args=["ledger", "report", "sales-by-person", "--start", "2024-01-01", "--end", "2024-01-31"])
        processed = runner.invoke(args=["ledger", "report", "processed-orders", "--start", "2024-01-01", "--end", "2024-01-31"])

        assert by_person.exit_code == 0, by_person.output
        assert json.loads(by_person.output)["rows"][0]["total_amount"] == "60.00"
        assert processed.exit_code == 0, processed.output
        assert json.loads(processed.output)["order_count"] == 1


class TestSystemCommands:
    def test_init_db_is_idempotent(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["system", "init-db"])
        assert result.exit_code == 0
        assert "created" in result.output
