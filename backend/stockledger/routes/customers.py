# Overview: Flask API routes for customers and their account summaries.

from flask import Blueprint, request, jsonify

from ..decorators import handles_ledger_errors
from ..services import customer_service
from ..validation import require_fields, require_payload


customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.post("/")
@handles_ledger_errors("create customer")
def create_customer_route():
    """
    Request body:
    {"first_name": "Maria", "last_name": "Santos", "email": "maria@example.com", "phone": "0917..."}

    Returns:
        201: Created customer
        400: Missing name or malformed email
        409: Email already in use
    """
    data = require_payload(request.get_json(silent=True))
    require_fields(data, ("first_name", "last_name", "email"))
    customer = customer_service.create_customer(
        data["first_name"],
        data["last_name"],
        data["email"],
        phone=data.get("phone"),
    )
    return jsonify({"customer": customer.to_dict()}), 201


@customers_bp.get("/")
@handles_ledger_errors("list customers")
def list_customers_route():
    limit = min(request.args.get("limit", 100, type=int), 500)
    offset = request.args.get("offset", 0, type=int)
    customers, total = customer_service.list_customers(request.args.get("q"), limit=limit, offset=offset)
    return jsonify({
        "customers": [c.to_dict() for c in customers],
        "total": total,
        "limit": limit,
        "offset": offset,
    }), 200


@customers_bp.get("/<customer_id>")
@handles_ledger_errors("get customer")
def get_customer_route(customer_id):
    """Customer with orders, payments and the balance still owed."""
    summary = customer_service.customer_summary(customer_id)
    return jsonify(summary.to_dict()), 200
