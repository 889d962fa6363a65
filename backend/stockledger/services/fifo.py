# Overview: Pure FIFO cost allocation over a product's stock batches; no database access.

"""
FIFO Allocation

Given a product's batches and a requested quantity, consume from the oldest
batch first (purchase_date ascending, batch_id as tie-break) and report:

- cost_of_goods: sum of consumed_qty * unit_cost over consumed batches
- unit_cost: cost_of_goods / requested_qty (0 when requested_qty is 0)
- updated_batches: the surviving batches, exhausted ones pruned
- shortfall: units requested beyond what the batches could supply

Oversell is not an error: the sale still happens, the shortfall units carry
no cost, and the caller surfaces the shortfall. The input list is never
mutated, so a failed settlement leaves the caller's snapshot untouched.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import Iterable

from ..errors import ValidationError
from ..money import ZERO


@dataclass(frozen=True)
class BatchSnapshot:
    """Immutable view of one stock batch used for allocation."""
    batch_id: str
    purchase_date: datetime
    original_qty: int
    remaining_qty: int
    unit_cost: Decimal
    supplier_name: str | None = None

    @property
    def sort_key(self):
        return (self.purchase_date, self.batch_id)


@dataclass(frozen=True)
class ConsumedBatch:
    batch_id: str
    consumed_qty: int
    unit_cost: Decimal

    @property
    def cost(self) -> Decimal:
        return self.unit_cost * self.consumed_qty


@dataclass(frozen=True)
class Allocation:
    requested_qty: int
    cost_of_goods: Decimal
    updated_batches: list[BatchSnapshot] = field(default_factory=list)
    consumed: list[ConsumedBatch] = field(default_factory=list)
    shortfall: int = 0

    @property
    def allocated_qty(self) -> int:
        return self.requested_qty - self.shortfall

    @property
    def unit_cost(self) -> Decimal:
        """Weighted-average cost per requested unit, unrounded."""
        if self.requested_qty == 0:
            return ZERO
        return self.cost_of_goods / Decimal(self.requested_qty)

    @property
    def removed_batch_ids(self) -> list[str]:
        survivors = {b.batch_id for b in self.updated_batches}
        return [c.batch_id for c in self.consumed if c.batch_id not in survivors]


def snapshot(batch) -> BatchSnapshot:
    """Build a BatchSnapshot from a StockBatch row (or anything shaped like one)."""
    return BatchSnapshot(
        batch_id=batch.batch_id,
        purchase_date=batch.purchase_date,
        original_qty=int(batch.original_qty),
        remaining_qty=int(batch.remaining_qty),
        unit_cost=Decimal(batch.unit_cost),
        supplier_name=getattr(batch, "supplier_name", None),
    )


def sort_batches(batches: Iterable[BatchSnapshot]) -> list[BatchSnapshot]:
    return sorted(batches, key=lambda b: b.sort_key)


def allocate(batches: Iterable[BatchSnapshot], requested_qty: int) -> Allocation:
    """
    Consume ``requested_qty`` units from ``batches`` in FIFO order.

    Raises:
        ValidationError: requested_qty is negative or not an integer
    """
    if isinstance(requested_qty, bool) or not isinstance(requested_qty, int):
        raise ValidationError("requested quantity must be an integer")
    if requested_qty < 0:
        raise ValidationError("requested quantity must be >= 0")

    ordered = [b for b in sort_batches(batches) if b.remaining_qty > 0]

    outstanding = requested_qty
    cost = ZERO
    consumed: list[ConsumedBatch] = []
    updated: list[BatchSnapshot] = []

    for batch in ordered:
        if outstanding == 0:
            updated.append(batch)
            continue

        take = min(outstanding, batch.remaining_qty)
        outstanding -= take
        cost += batch.unit_cost * take
        consumed.append(ConsumedBatch(batch.batch_id, take, batch.unit_cost))

        left = batch.remaining_qty - take
        if left > 0:
            updated.append(replace(batch, remaining_qty=left))

    return Allocation(
        requested_qty=requested_qty,
        cost_of_goods=cost,
        updated_batches=updated,
        consumed=consumed,
        shortfall=outstanding,
    )


def available_qty(batches: Iterable[BatchSnapshot]) -> int:
    return sum(b.remaining_qty for b in batches if b.remaining_qty > 0)
