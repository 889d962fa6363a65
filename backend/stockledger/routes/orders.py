# Overview: Flask API routes for orders; parses input and returns JSON responses.

# backend/stockledger/routes/orders.py
"""
Order API Routes

DESIGN:
- Creating an order settles it: stock is consumed FIFO, items, SALE movements
  and any up-front payment are written in one transaction
- Conflicting concurrent settlements are retried from scratch (fresh reads)
  up to LEDGER_CONFLICT_RETRY_ATTEMPTS times, then answered with 409
- Status changes, refunds and bad-debt write-offs are separate endpoints
"""

from flask import Blueprint, request, jsonify

from ..decorators import handles_ledger_errors
from ..models.sales import ORDER_STATUS_CANCELLED
from ..services import order_service, payment_service, settlement_service
from ..services.concurrency import retry_settings, run_with_retry
from ..time_utils import utcnow
from ..validation import parse_datetime, parse_text, require_fields, require_payload


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


def _order_response(order_id: str) -> dict:
    order = order_service.get_order(order_id)
    data = order.to_dict(include_items=True)
    data["payments"] = [p.to_dict() for p in payment_service.list_payments(order_id)]
    return data


# =============================================================================
# SETTLEMENT
# =============================================================================

@orders_bp.post("/")
@handles_ledger_errors("create order")
def create_order_route():
    """
    Create and settle an order.

    Request body:
    {
        "customer_id": "...",
        "items": [{"product_id": "...", "quantity": 2, "discount": "5.00"}],
        "payment_type": "FULL_PAYMENT" | "LAY_AWAY" | "INSTALLMENT",
        "amount_paid": "100.00",         (optional; FULL_PAYMENT defaults to total)
        "installment_months": 6,         (INSTALLMENT only)
        "order_date": "2024-01-31T10:00:00Z",  (optional)
        "payment_method": "CASH"         (optional)
    }

    Returns:
        201: Settled order with items and payments
        400: Invalid input
        404: Customer or product not found
        409: Concurrent modification, retries exhausted
    """
    order_request = settlement_service.OrderRequest.from_payload(request.get_json(silent=True))

    def _op():
        return settlement_service.settle_order(order_request)

    order_id = run_with_retry(_op, **retry_settings())
    return jsonify({"order": _order_response(order_id)}), 201


# =============================================================================
# LOOKUPS
# =============================================================================

@orders_bp.get("/")
@handles_ledger_errors("list orders")
def list_orders_route():
    limit = min(request.args.get("limit", 100, type=int), 500)
    offset = request.args.get("offset", 0, type=int)
    orders, total = order_service.list_orders(
        status=request.args.get("status"),
        payment_type=request.args.get("payment_type"),
        customer_id=request.args.get("customer_id"),
        limit=limit,
        offset=offset,
    )
    return jsonify({
        "orders": [o.to_dict() for o in orders],
        "total": total,
        "limit": limit,
        "offset": offset,
    }), 200


@orders_bp.get("/<order_id>")
@handles_ledger_errors("get order")
def get_order_route(order_id):
    return jsonify({"order": _order_response(order_id)}), 200


# =============================================================================
# STATUS / ADJUSTMENTS
# =============================================================================

@orders_bp.patch("/<order_id>/status")
@handles_ledger_errors("update order status")
def update_order_status_route(order_id):
    """
    Request body: {"order_status": "SHIPPED"}
    """
    data = require_payload(request.get_json(silent=True))
    require_fields(data, ("order_status",))

    def _op():
        return order_service.update_order_status(order_id, data["order_status"])

    order = run_with_retry(_op, **retry_settings())
    return jsonify({"order": order.to_dict()}), 200


@orders_bp.post("/<order_id>/cancel")
@handles_ledger_errors("cancel order")
def cancel_order_route(order_id):
    def _op():
        return order_service.update_order_status(order_id, ORDER_STATUS_CANCELLED)

    order = run_with_retry(_op, **retry_settings())
    return jsonify({"order": order.to_dict()}), 200


@orders_bp.post("/<order_id>/refunds")
@handles_ledger_errors("record refund")
def record_refund_route(order_id):
    """
    Request body: {"amount": "20.00", "reason": "Damaged", "refund_date": "..."}
    """
    data = require_payload(request.get_json(silent=True))
    require_fields(data, ("amount",))
    refund = payment_service.record_refund(
        order_id,
        data["amount"],
        reason=parse_text(data.get("reason"), "reason", required=False),
        refund_date=parse_datetime(data.get("refund_date"), "refund_date", default=utcnow()),
    )
    return jsonify({"refund": refund.to_dict()}), 201


@orders_bp.post("/<order_id>/bad-debts")
@handles_ledger_errors("write off bad debt")
def write_off_bad_debt_route(order_id):
    """
    Request body: {"amount": "150.00", "reason": "Customer unreachable", "write_off_date": "..."}
    """
    data = require_payload(request.get_json(silent=True))
    require_fields(data, ("amount",))
    bad_debt = payment_service.write_off_bad_debt(
        order_id,
        data["amount"],
        reason=parse_text(data.get("reason"), "reason", required=False),
        write_off_date=parse_datetime(data.get("write_off_date"), "write_off_date", default=utcnow()),
    )
    return jsonify({"bad_debt": bad_debt.to_dict()}), 201
