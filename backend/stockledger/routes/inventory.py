# Overview: Flask API routes for products, restocks and stock adjustments.

from flask import Blueprint, request, jsonify

from ..decorators import handles_ledger_errors
from ..services import inventory_service, settlement_service
from ..services.concurrency import retry_settings, run_with_retry
from ..validation import (
    parse_datetime,
    parse_text,
    require_fields,
    require_payload,
)
from ..time_utils import utcnow


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")
products_bp = Blueprint("products", __name__, url_prefix="/api/products")


# =============================================================================
# PRODUCTS
# =============================================================================

@products_bp.post("/")
@handles_ledger_errors("create product")
def create_product_route():
    """
    Request body:
    {
        "name": "Widget", "sku": "W-1", "selling_price": "25.00",
        "initial_batches": [{"quantity": 10, "unit_cost": "12.50", "supplier_name": "Acme"}]
    }
    """
    data = require_payload(request.get_json(silent=True))
    require_fields(data, ("name", "sku", "selling_price"))

    raw_batches = data.get("initial_batches") or []
    if not isinstance(raw_batches, list):
        return jsonify({"error": "initial_batches must be a list"}), 400
    batches = [inventory_service.InitialBatch.from_payload(raw, idx) for idx, raw in enumerate(raw_batches)]

    product = inventory_service.create_product(
        data["name"],
        data["sku"],
        data["selling_price"],
        initial_batches=batches,
        description=data.get("description"),
    )
    return jsonify({"product": product.to_dict(include_batches=True)}), 201


@products_bp.get("/")
@handles_ledger_errors("list products")
def list_products_route():
    limit = min(request.args.get("limit", 100, type=int), 500)
    offset = request.args.get("offset", 0, type=int)
    products, total = inventory_service.list_products(request.args.get("q"), limit=limit, offset=offset)
    return jsonify({
        "products": [p.to_dict() for p in products],
        "total": total,
        "limit": limit,
        "offset": offset,
    }), 200


@products_bp.get("/<product_id>")
@handles_ledger_errors("get product")
def get_product_route(product_id):
    product = inventory_service.get_product(product_id)
    return jsonify({"product": product.to_dict(include_batches=True)}), 200


@products_bp.get("/<product_id>/history")
@handles_ledger_errors("get product history")
def product_history_route(product_id):
    movements = inventory_service.product_history(product_id, limit=request.args.get("limit", type=int))
    return jsonify({"product_id": product_id, "movements": [m.to_dict() for m in movements]}), 200


@products_bp.post("/<product_id>/adjust")
@handles_ledger_errors("adjust stock")
def adjust_stock_route(product_id):
    """
    Request body: {"quantity_delta": -3, "reason": "Damaged", "unit_cost": "0"}
    """
    data = require_payload(request.get_json(silent=True))
    require_fields(data, ("quantity_delta",))

    def _op():
        return inventory_service.adjust_stock(
            product_id,
            data["quantity_delta"],
            reason=parse_text(data.get("reason"), "reason", required=False),
            unit_cost=data.get("unit_cost", 0),
            occurred_at=parse_datetime(data.get("occurred_at"), "occurred_at", default=utcnow()),
        )

    product = run_with_retry(_op, **retry_settings())
    return jsonify({"product": product.to_dict(include_batches=True)}), 200


# =============================================================================
# RESTOCK / SUPPLIERS
# =============================================================================

@inventory_bp.post("/restock")
@handles_ledger_errors("restock")
def restock_route():
    """
    Receive a shipment.

    Request body:
    {
        "supplier_name": "Acme",
        "purchase_date": "2024-01-10T00:00:00Z",   (optional)
        "items": [{"product_id": "...", "quantity": 10, "unit_cost": "12.50"}]
    }

    Returns:
        201: New batch ids and the shipment cost
    """
    restock_request = settlement_service.RestockRequest.from_payload(request.get_json(silent=True))

    def _op():
        return settlement_service.settle_restock(restock_request)

    batch_ids = run_with_retry(_op, **retry_settings())
    return jsonify({"batch_ids": batch_ids}), 201


@inventory_bp.get("/suppliers/<supplier_name>/batches")
@handles_ledger_errors("get supplier history")
def supplier_history_route(supplier_name):
    batches = inventory_service.supplier_history(supplier_name)
    return jsonify({"supplier_name": supplier_name, "batches": [b.to_dict() for b in batches]}), 200
