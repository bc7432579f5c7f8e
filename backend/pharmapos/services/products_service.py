# backend/pharmapos/services/products_service.py
"""
Products Service (product repository)

MULTI-BRANCH: Listing is branch-scoped when a branch_id is given.
- find_product / list_products are the read side used by the stock adjuster
  and the scanner's GTIN / SKU resolution.
- apply_stock_delta is the only writer of Product.stock_level.
"""
from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import Branch, Product
from ..validation import ConflictError, NotFoundError
from .concurrency import lock_for_update

PRODUCT_MUTABLE_FIELDS = {
    "sku",
    "gtin",
    "name_en",
    "name_mm",
    "generic_name",
    "category",
    "description",
    "price_cents",
    "unit",
    "min_stock_level",
    "requires_prescription",
    "image_url",
    "location",
}


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def find_product(product_id: int, *, lock: bool = False) -> Product | None:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    return query.first()


def list_products(branch_id: int | None = None) -> list[Product]:
    """All products (optionally for one branch), ordered by English name."""
    query = db.session.query(Product)
    if branch_id is not None:
        query = query.filter(Product.branch_id == branch_id)
    return query.order_by(Product.name_en.asc(), Product.id.asc()).all()


def apply_stock_delta(
    product: Product,
    delta: int,
    *,
    unit: str | None = None,
    location: str | None = None,
) -> Product:
    """
    Add `delta` to the aggregate stock level.

    The increment is issued as `stock_level = stock_level + :delta` so
    concurrent adjustments do not overwrite each other. unit/location
    overwrite the stored values only when supplied.

    Flushes but does not commit; the caller owns the transaction.
    """
    product.stock_level = Product.stock_level + delta
    if unit is not None:
        product.unit = unit
    if location is not None:
        product.location = location
    db.session.flush()
    return product


def create_product(*, patch: dict) -> dict:
    """
    Create a product in the given branch.

    Raises:
        NotFoundError: branch_id does not exist
        ConflictError: SKU already used in the branch
    """
    branch_id = patch.get("branch_id")
    if db.session.get(Branch, branch_id) is None:
        raise NotFoundError("branch not found")

    sku = patch.get("sku")
    if db.session.query(Product).filter_by(branch_id=branch_id, sku=sku).first():
        raise ConflictError("SKU already exists in this branch")

    p = Product(branch_id=branch_id)
    apply_product_patch(p, patch)
    if "stock_level" in patch and patch["stock_level"] is not None:
        p.stock_level = patch["stock_level"]

    db.session.add(p)
    db.session.commit()
    return p.to_dict(include_batches=True)


def find_low_stock_products(branch_id: int | None = None, *, default_threshold: int = 10) -> list[Product]:
    """
    Products at or below their reorder threshold.

    A product with no threshold (0) uses `default_threshold`.
    """
    threshold = func.coalesce(func.nullif(Product.min_stock_level, 0), default_threshold)
    query = db.session.query(Product).filter(Product.stock_level <= threshold)
    if branch_id is not None:
        query = query.filter(Product.branch_id == branch_id)
    return query.order_by(Product.stock_level.asc(), Product.id.asc()).all()
