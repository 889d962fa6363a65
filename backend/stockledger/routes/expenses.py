# Overview: Flask API routes for expenses and recurring expense posting.

from flask import Blueprint, request, jsonify

from ..decorators import handles_ledger_errors
from ..services import expense_service
from ..services.concurrency import retry_settings, run_with_retry
from ..time_utils import utcnow
from ..validation import (
    parse_datetime,
    parse_optional_datetime,
    require_fields,
    require_payload,
)


expenses_bp = Blueprint("expenses", __name__, url_prefix="/api/expenses")


@expenses_bp.post("/")
@handles_ledger_errors("record expense")
def record_expense_route():
    """
    Request body: {"amount": "200.00", "category": "Rent", "expense_date": "...", "description": "..."}
    """
    data = require_payload(request.get_json(silent=True))
    require_fields(data, ("amount", "category"))
    expense = expense_service.record_expense(
        data["amount"],
        data["category"],
        expense_date=parse_datetime(data.get("expense_date"), "expense_date", default=utcnow()),
        description=data.get("description"),
    )
    return jsonify({"expense": expense.to_dict()}), 201


@expenses_bp.get("/")
@handles_ledger_errors("list expenses")
def list_expenses_route():
    expenses = expense_service.list_expenses(
        parse_optional_datetime(request.args.get("start"), "start"),
        parse_optional_datetime(request.args.get("end"), "end"),
    )
    return jsonify({"expenses": [e.to_dict() for e in expenses]}), 200


@expenses_bp.post("/recurring")
@handles_ledger_errors("create recurring expense")
def create_recurring_route():
    """
    Request body: {"name": "Rent", "amount": "200.00", "category": "Rent", "day_of_month": 1}
    """
    data = require_payload(request.get_json(silent=True))
    require_fields(data, ("name", "amount", "category", "day_of_month"))
    definition = expense_service.create_recurring_expense(
        data["name"], data["amount"], data["category"], data["day_of_month"]
    )
    return jsonify({"recurring_expense": definition.to_dict()}), 201


@expenses_bp.get("/recurring")
@handles_ledger_errors("list recurring expenses")
def list_recurring_route():
    definitions = expense_service.list_recurring_expenses()
    return jsonify({"recurring_expenses": [d.to_dict() for d in definitions]}), 200


@expenses_bp.post("/recurring/post")
@handles_ledger_errors("post recurring expenses")
def post_recurring_route():
    """
    Post this month's recurring expenses (idempotent per month).

    Request body (optional): {"as_of": "2024-02-15"}
    """
    data = require_payload(request.get_json(silent=True))
    as_of = parse_datetime(data.get("as_of"), "as_of", default=utcnow())

    def _op():
        return expense_service.post_due_recurring_expenses(as_of)

    summary = run_with_retry(_op, **retry_settings())
    return jsonify(summary.to_dict()), 200
