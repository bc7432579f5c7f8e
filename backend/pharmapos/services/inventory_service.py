# Overview: Service-layer operations for inventory; encapsulates the stock adjuster.

# backend/pharmapos/services/inventory_service.py

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from sqlalchemy import func

from ..extensions import db
from ..models import ProductBatch
from ..validation import NotFoundError
from .batch_service import create_or_increment_batch
from .concurrency import atomic
from .products_service import apply_stock_delta, find_product
"""
Inventory Invariants (authoritative)

Stock model:
- Product.stock_level is the aggregate on-hand quantity; ProductBatch.quantity
  is the per-lot quantity. Both are written by adjust_stock() in the same
  transaction (dual write). stock_level is NOT recomputed from batches, so
  the two may drift; check_stock_reconciliation() reports the drift.

Adjustments:
- delta is signed: positive adds stock, negative removes, zero only applies
  the unit/location/expiry/cost overwrites.
- Quantities are incremented in SQL (col = col + delta), never read-then-set.
- No floor at zero: stock_level and batch quantity may go negative.
- Either both writes commit or neither does.
- Storage errors propagate unmodified; nothing here retries.
- No event is emitted here; callers (scanner, HTTP) record their own logs.
"""


class ProductNotFoundError(NotFoundError):
    """Target product id/GTIN/SKU does not resolve."""

    def __init__(self, message: str = "product not found", *, product_id=None):
        super().__init__(message)
        self.product_id = product_id


@dataclass(frozen=True)
class StockAdjustment:
    product_id: int
    delta: int
    stock_before: int
    stock_after: int
    batch_number: str | None = None
    batch_quantity: int | None = None
    batch_created: bool = False

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "delta": self.delta,
            "stock_before": self.stock_before,
            "stock_after": self.stock_after,
            "batch_number": self.batch_number,
            "batch_quantity": self.batch_quantity,
            "batch_created": self.batch_created,
        }


@dataclass(frozen=True)
class ReconciliationReport:
    product_id: int
    stock_level: int
    batch_total: int
    batch_count: int

    @property
    def drift(self) -> int:
        return self.stock_level - self.batch_total

    @property
    def is_reconciled(self) -> bool:
        return self.drift == 0

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "stock_level": self.stock_level,
            "batch_total": self.batch_total,
            "batch_count": self.batch_count,
            "drift": self.drift,
            "is_reconciled": self.is_reconciled,
        }


def adjust_stock(
    product_id: int,
    delta: int,
    *,
    batch_number: str | None = None,
    unit: str | None = None,
    location: str | None = None,
    expiry_date: date | None = None,
    cost_price_cents: int | None = None,
    today: date | None = None,
) -> StockAdjustment:
    """
    Apply a signed stock delta to a product and, optionally, one of its batches.

    - product.stock_level += delta (always); unit/location overwrite when given
    - if batch_number: batch.quantity += delta, or create the batch with
      quantity=delta, cost 0 and a one-year expiry unless supplied

    Raises ProductNotFoundError before any write when product_id is unknown.
    `today` pins the creation date used for the default expiry.
    """
    with atomic():
        product = find_product(product_id, lock=True)
        if product is None:
            raise ProductNotFoundError(product_id=product_id)

        stock_before = product.stock_level
        apply_stock_delta(product, delta, unit=unit, location=location)

        batch_quantity = None
        batch_created = False
        if batch_number:
            batch, batch_created = create_or_increment_batch(
                product_id=product.id,
                batch_number=batch_number,
                delta=delta,
                expiry_date=expiry_date,
                cost_price_cents=cost_price_cents,
                today=today,
            )
            batch_quantity = batch.quantity

        stock_after = product.stock_level

    return StockAdjustment(
        product_id=product_id,
        delta=delta,
        stock_before=stock_before,
        stock_after=stock_after,
        batch_number=batch_number or None,
        batch_quantity=batch_quantity,
        batch_created=batch_created,
    )


def remove_batch_stock(product_id: int, batch_number: str, quantity: int) -> StockAdjustment:
    """Take `quantity` units out of a batch (and the aggregate)."""
    return adjust_stock(product_id, -quantity, batch_number=batch_number)


def check_stock_reconciliation(product_id: int) -> ReconciliationReport:
    """
    Compare the aggregate stock level with the sum of batch quantities.

    A product with no batches is reported against a batch total of 0.
    """
    product = find_product(product_id)
    if product is None:
        raise ProductNotFoundError(product_id=product_id)

    total, count = db.session.query(
        func.coalesce(func.sum(ProductBatch.quantity), 0),
        func.count(ProductBatch.id),
    ).filter(ProductBatch.product_id == product_id).one()

    return ReconciliationReport(
        product_id=product.id,
        stock_level=product.stock_level,
        batch_total=int(total or 0),
        batch_count=int(count or 0),
    )
