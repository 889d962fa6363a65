# Overview: In-memory staging of one product's batch list and on-hand quantity.

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from ..errors import NotFoundError
from ..extensions import db
from ..ids import new_id
from ..models import Product, StockBatch
from . import fifo
from .write_intent import WriteIntent


@dataclass
class StagedStock:
    """
    Working copy of a product's stock position.

    consume/receive change only this object. stage_into turns the difference
    between the loaded state and the working state into writes, with the
    product update carrying the version everything was computed from.
    """
    product_id: str
    product_name: str
    selling_price: Decimal
    version_id: int
    loaded_qoh: int
    quantity_on_hand: int
    loaded_batches: list[fifo.BatchSnapshot]
    batches: list[fifo.BatchSnapshot]
    new_batch_ids: set[str] = field(default_factory=set)

    def consume(self, qty: int) -> fifo.Allocation:
        allocation = fifo.allocate(self.batches, qty)
        self.batches = list(allocation.updated_batches)
        self.quantity_on_hand -= qty
        return allocation

    def receive(
        self,
        qty: int,
        unit_cost: Decimal,
        purchase_date: datetime,
        supplier_name: str | None,
    ) -> str:
        batch = fifo.BatchSnapshot(
            batch_id=new_id(),
            purchase_date=purchase_date,
            original_qty=qty,
            remaining_qty=qty,
            unit_cost=unit_cost,
            supplier_name=supplier_name,
        )
        self.batches = fifo.sort_batches([*self.batches, batch])
        self.new_batch_ids.add(batch.batch_id)
        self.quantity_on_hand += qty
        return batch.batch_id

    @property
    def available_qty(self) -> int:
        return fifo.available_qty(self.batches)

    def stage_into(self, intent: WriteIntent) -> None:
        intent.update(
            Product,
            self.product_id,
            expected_version=self.version_id,
            quantity_on_hand=self.quantity_on_hand,
        )

        current = {b.batch_id: b for b in self.batches}
        for before in self.loaded_batches:
            after = current.get(before.batch_id)
            if after is None:
                intent.delete(StockBatch, before.batch_id)
            elif after.remaining_qty != before.remaining_qty:
                intent.update(StockBatch, before.batch_id, remaining_qty=after.remaining_qty)

        for batch in self.batches:
            if batch.batch_id in self.new_batch_ids:
                intent.insert(
                    StockBatch,
                    batch_id=batch.batch_id,
                    product_id=self.product_id,
                    purchase_date=batch.purchase_date,
                    original_qty=batch.original_qty,
                    remaining_qty=batch.remaining_qty,
                    unit_cost=batch.unit_cost,
                    supplier_name=batch.supplier_name,
                )


def load_staged_stock(product_id: str) -> StagedStock:
    """Read a product and its batches into a StagedStock. Raises NotFoundError."""
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")

    rows = (
        db.session.query(StockBatch)
        .filter(StockBatch.product_id == product_id)
        .order_by(StockBatch.purchase_date, StockBatch.batch_id)
        .all()
    )
    batches = [fifo.snapshot(row) for row in rows]

    return StagedStock(
        product_id=product.id,
        product_name=product.name,
        selling_price=Decimal(product.selling_price),
        version_id=product.version_id,
        loaded_qoh=product.quantity_on_hand,
        quantity_on_hand=product.quantity_on_hand,
        loaded_batches=list(batches),
        batches=list(batches),
    )


def load_many(product_ids) -> dict[str, StagedStock]:
    """One StagedStock per distinct product id, in first-seen order."""
    staged: dict[str, StagedStock] = {}
    for product_id in product_ids:
        if product_id not in staged:
            staged[product_id] = load_staged_stock(product_id)
    return staged
