# Overview: Service-layer operations for product batches (batch repository).

from __future__ import annotations

from datetime import date, timedelta

from ..extensions import db
from ..models import Product, ProductBatch
from pharmapos.time_utils import today as current_date, add_years
from .concurrency import lock_for_update
"""
Batch Invariants

- A batch is keyed by (product_id, batch_number); at most one row per key.
- Stock adjustments increment quantity (never replace it). Expiry and cost
  are replaced only when the caller supplies them.
- A batch first seen through a stock adjustment gets quantity=delta,
  cost 0 unless supplied, and expires one calendar year after creation
  unless an expiry date is supplied.
- Quantities may go negative; no floor is enforced here.
"""

DEFAULT_SHELF_LIFE_YEARS = 1


def default_expiry_date(created_on: date | None = None) -> date:
    """Same month/day, one year after `created_on` (today when omitted)."""
    return add_years(created_on or current_date(), DEFAULT_SHELF_LIFE_YEARS)


def find_batch(product_id: int, batch_number: str, *, lock: bool = False) -> ProductBatch | None:
    query = db.session.query(ProductBatch).filter_by(
        product_id=product_id,
        batch_number=batch_number,
    )
    if lock:
        query = lock_for_update(query)
    return query.first()


def list_batches(product_id: int) -> list[ProductBatch]:
    return (
        db.session.query(ProductBatch)
        .filter_by(product_id=product_id)
        .order_by(ProductBatch.expiry_date.asc(), ProductBatch.id.asc())
        .all()
    )


def create_or_increment_batch(
    *,
    product_id: int,
    batch_number: str,
    delta: int,
    expiry_date: date | None = None,
    cost_price_cents: int | None = None,
    today: date | None = None,
) -> tuple[ProductBatch, bool]:
    """
    Upsert-increment a batch. Returns (batch, created).

    Flushes but does not commit; the caller owns the transaction. A
    concurrent first insert of the same key fails on the unique constraint
    and surfaces as IntegrityError.
    """
    batch = find_batch(product_id, batch_number, lock=True)

    if batch is not None:
        batch.quantity = ProductBatch.quantity + delta
        if expiry_date is not None:
            batch.expiry_date = expiry_date
        if cost_price_cents is not None:
            batch.cost_price_cents = cost_price_cents
        db.session.flush()
        return batch, False

    batch = ProductBatch(
        product_id=product_id,
        batch_number=batch_number,
        quantity=delta,
        expiry_date=expiry_date if expiry_date is not None else default_expiry_date(today),
        cost_price_cents=cost_price_cents if cost_price_cents is not None else 0,
    )
    db.session.add(batch)
    db.session.flush()
    return batch, True


def upsert_batch(
    *,
    product_id: int,
    batch_number: str,
    expiry_date: date,
    cost_price_cents: int,
    quantity: int | None = None,
) -> ProductBatch:
    """
    Explicit batch maintenance: create the batch or replace its values.

    Unlike create_or_increment_batch this *sets* quantity, and it does not
    touch the product's aggregate stock level. Commits.
    """
    batch = find_batch(product_id, batch_number, lock=True)
    if batch is None:
        batch = ProductBatch(product_id=product_id, batch_number=batch_number)
        db.session.add(batch)

    batch.expiry_date = expiry_date
    batch.cost_price_cents = cost_price_cents
    if quantity is not None:
        batch.quantity = quantity
    elif batch.quantity is None:
        batch.quantity = 0

    db.session.commit()
    return batch


def find_expiring_batches(
    branch_id: int | None = None,
    *,
    within_days: int = 90,
    as_of: date | None = None,
    include_empty: bool = False,
) -> list[ProductBatch]:
    """
    Batches already expired or expiring within `within_days` of `as_of`.

    Soonest expiry first. Batches with no stock on hand are skipped unless
    include_empty is set.
    """
    as_of = as_of or current_date()
    horizon = as_of + timedelta(days=within_days)

    query = db.session.query(ProductBatch).join(Product).filter(ProductBatch.expiry_date <= horizon)
    if branch_id is not None:
        query = query.filter(Product.branch_id == branch_id)
    if not include_empty:
        query = query.filter(ProductBatch.quantity > 0)

    return query.order_by(ProductBatch.expiry_date.asc(), ProductBatch.id.asc()).all()
