# Overview: Product creation, stock adjustments, and inventory history lookups.

# backend/stockledger/services/inventory_service.py

"""
Inventory Invariants

- quantity_on_hand and the batch list are changed together, always through a
  StagedStock, so they never drift apart.
- Batches are consumed oldest purchase_date first; exhausted batches are
  deleted.
- Every stock change appends an InventoryMovement in the same transaction.
- Only sales may push quantity_on_hand below zero (oversell). A downward
  adjustment is limited to the stock the batches actually hold.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from flask import current_app
from sqlalchemy import func

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..ids import new_id
from ..models import InventoryMovement, Product, StockBatch
from ..models.inventory import (
    MOVEMENT_ADJUSTMENT_DOWN,
    MOVEMENT_ADJUSTMENT_UP,
    MOVEMENT_INITIAL_STOCK,
)
from ..money import ZERO
from ..time_utils import utcnow
from ..validation import parse_datetime, parse_int, parse_money, parse_quantity, parse_text
from .stock_batch_store import load_staged_stock
from .write_intent import WriteIntent, apply_intent


ADJUSTMENT_SUPPLIER = "Adjustment"


@dataclass
class InitialBatch:
    quantity: int
    unit_cost: Decimal
    purchase_date: datetime | None = None
    supplier_name: str | None = None

    @classmethod
    def from_payload(cls, raw, idx: int = 0) -> "InitialBatch":
        if not isinstance(raw, dict):
            raise ValidationError(f"initial_batches[{idx}] must be an object")
        return cls(
            quantity=parse_quantity(raw.get("quantity"), f"initial_batches[{idx}].quantity"),
            unit_cost=parse_money(raw.get("unit_cost"), f"initial_batches[{idx}].unit_cost"),
            purchase_date=parse_datetime(raw.get("purchase_date"), "purchase_date", default=utcnow()),
            supplier_name=parse_text(raw.get("supplier_name"), "supplier_name", required=False),
        )


def get_product(product_id: str) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    return product


def list_products(search: str | None = None, limit: int = 100, offset: int = 0) -> tuple[list[Product], int]:
    query = db.session.query(Product)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter((Product.name.ilike(pattern)) | (Product.sku.ilike(pattern)))
    total = query.count()
    products = query.order_by(Product.name, Product.id).offset(offset).limit(limit).all()
    return products, total


def create_product(
    name: str,
    sku: str,
    selling_price,
    initial_batches: list[InitialBatch] | None = None,
    description: str | None = None,
) -> Product:
    """
    Create a product, optionally with opening stock.

    Each initial batch becomes a StockBatch plus an INITIAL_STOCK movement.

    Raises:
        ValidationError: bad name/sku/price
        ConflictError: SKU already in use
    """
    name = parse_text(name, "name")
    sku = parse_text(sku, "sku", max_length=64)
    selling_price = parse_money(selling_price, "selling_price")
    initial_batches = list(initial_batches or [])

    existing = db.session.query(Product.id).filter(Product.sku == sku).first()
    if existing is not None:
        raise ConflictError(f"SKU {sku} already exists", details={"product_id": existing[0]})

    product_id = new_id()
    now = utcnow()
    intent = WriteIntent()
    intent.insert(
        Product,
        id=product_id,
        name=name,
        sku=sku,
        description=description,
        selling_price=selling_price,
        quantity_on_hand=sum(b.quantity for b in initial_batches),
    )
    for batch in initial_batches:
        intent.insert(
            StockBatch,
            batch_id=new_id(),
            product_id=product_id,
            purchase_date=batch.purchase_date or now,
            original_qty=batch.quantity,
            remaining_qty=batch.quantity,
            unit_cost=batch.unit_cost,
            supplier_name=batch.supplier_name,
        )
        intent.insert(
            InventoryMovement,
            id=new_id(),
            product_id=product_id,
            quantity_change=batch.quantity,
            movement_type=MOVEMENT_INITIAL_STOCK,
            timestamp=batch.purchase_date or now,
            reason="Initial stock for new product",
        )
    apply_intent(intent)

    current_app.logger.info("Created product %s (%s) with %s initial batch(es)", product_id, sku, len(initial_batches))
    return get_product(product_id)


def adjust_stock(
    product_id: str,
    quantity_delta,
    reason: str | None = None,
    unit_cost=ZERO,
    occurred_at: datetime | None = None,
) -> Product:
    """
    Correct a product's stock by hand.

    Positive delta appends an "Adjustment" batch at unit_cost and writes
    ADJUSTMENT_UP. Negative delta consumes FIFO and writes ADJUSTMENT_DOWN; it
    cannot take more than the batches hold.
    """
    delta = parse_int(quantity_delta, "quantity_delta")
    if delta == 0:
        raise ValidationError("quantity_delta must be non-zero")
    unit_cost = parse_money(unit_cost, "unit_cost")
    occurred_at = occurred_at or utcnow()

    stock = load_staged_stock(product_id)
    intent = WriteIntent()

    if delta > 0:
        stock.receive(delta, unit_cost, occurred_at, ADJUSTMENT_SUPPLIER)
        movement_type = MOVEMENT_ADJUSTMENT_UP
    else:
        if -delta > stock.available_qty:
            raise ValidationError(
                "Adjustment exceeds available stock",
                details={"requested": -delta, "available": stock.available_qty},
            )
        stock.consume(-delta)
        movement_type = MOVEMENT_ADJUSTMENT_DOWN

    stock.stage_into(intent)
    intent.insert(
        InventoryMovement,
        id=new_id(),
        product_id=product_id,
        quantity_change=delta,
        movement_type=movement_type,
        timestamp=occurred_at,
        reason=reason or "Manual adjustment",
    )
    apply_intent(intent)

    current_app.logger.info("Adjusted product %s by %s (%s)", product_id, delta, movement_type)
    return get_product(product_id)


def product_history(product_id: str, limit: int | None = None) -> list[InventoryMovement]:
    """Movements for one product, newest first."""
    get_product(product_id)
    query = (
        db.session.query(InventoryMovement)
        .filter(InventoryMovement.product_id == product_id)
        .order_by(InventoryMovement.timestamp.desc(), InventoryMovement.created_at.desc())
    )
    if limit:
        query = query.limit(limit)
    return query.all()


def supplier_history(supplier_name: str) -> list[StockBatch]:
    """Batches still on hand that were bought from a supplier, newest purchase first."""
    supplier_name = parse_text(supplier_name, "supplier_name")
    return (
        db.session.query(StockBatch)
        .filter(func.lower(StockBatch.supplier_name) == supplier_name.lower())
        .order_by(StockBatch.purchase_date.desc(), StockBatch.batch_id)
        .all()
    )
