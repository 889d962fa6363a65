# Overview: Flask API routes for order payments; parses input and returns JSON responses.

"""
Payment API Routes

A payment and the order's recomputed balance/status are written together.
Conflicts with a concurrent payment on the same order are retried.
"""

from flask import Blueprint, request, jsonify

from ..decorators import handles_ledger_errors
from ..services import order_service, payment_service
from ..services.concurrency import retry_settings, run_with_retry


payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


@payments_bp.post("/")
@handles_ledger_errors("post payment")
def post_payment_route():
    """
    Post a payment against an order.

    Request body:
    {
        "order_id": "...",
        "amount": "400.00",
        "payment_method": "GCASH",
        "proof_of_payment_reference": "REF-123",  (optional)
        "payment_date": "2024-02-01T00:00:00Z"     (optional)
    }

    Returns:
        201: Payment plus the updated order
        400: Invalid amount, overpayment, or closed order
        404: Order not found
        409: Concurrent modification, retries exhausted
    """
    payment_request = payment_service.PaymentRequest.from_payload(request.get_json(silent=True))

    def _op():
        return payment_service.post_payment(
            payment_request.order_id,
            payment_request.amount,
            payment_request.payment_method,
            proof_of_payment_reference=payment_request.proof_of_payment_reference,
            payment_date=payment_request.payment_date,
        )

    payment_id = run_with_retry(_op, **retry_settings())
    order = order_service.get_order(payment_request.order_id)
    payment = next(p for p in payment_service.list_payments(order.id) if p.id == payment_id)
    return jsonify({"payment": payment.to_dict(), "order": order.to_dict()}), 201


@payments_bp.get("/order/<order_id>")
@handles_ledger_errors("list payments")
def list_order_payments_route(order_id):
    order = order_service.get_order(order_id)
    payments = payment_service.list_payments(order_id)
    return jsonify({
        "order_id": order_id,
        "payments": [p.to_dict() for p in payments],
        "amount_paid": order.to_dict()["amount_paid"],
        "balance_due": order.to_dict()["balance_due"],
    }), 200
