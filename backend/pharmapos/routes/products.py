# Overview: Flask API routes for products, batches and stock adjustment; parses input and returns JSON responses.

# backend/pharmapos/routes/products.py
"""
Product and stock routes.

MULTI-BRANCH: Listing endpoints accept an optional branch_id filter.

Stock adjustment is the HTTP caller of inventory_service.adjust_stock():
- 404 when the product does not exist (nothing is written)
- 400 on malformed input
- negative deltas and negative results are accepted
"""
from flask import Blueprint, request, current_app

from ..models import Product, ProductBatch
from ..services import batch_service, inventory_service, products_service
from ..services.inventory_service import ProductNotFoundError
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
    enforce_rules_stock_adjust,
    enforce_rules_batch_upsert,
    ValidationError,
    ConflictError,
    NotFoundError,
)

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields=products_service.PRODUCT_MUTABLE_FIELDS | {"branch_id", "stock_level"},
    required_on_create={"branch_id", "sku", "name_en", "unit", "price_cents"},
)

STOCK_ADJUST_POLICY = ModelValidationPolicy(
    writable_fields={"quantity", "batch_number", "expiry_date", "cost_price_cents", "location", "unit"},
    required_on_create={"quantity"},
)

BATCH_POLICY = ModelValidationPolicy(
    writable_fields={"batch_number", "expiry_date", "quantity", "cost_price_cents"},
    required_on_create={"batch_number", "expiry_date", "quantity", "cost_price_cents"},
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
def list_products():
    """
    List products with their batches.

    Query params:
    - branch_id: int (optional) - filter by branch
    """
    branch_id = request.args.get("branch_id", type=int)
    products = products_service.list_products(branch_id)
    return {
        "items": [p.to_dict(include_batches=True) for p in products],
        "count": len(products),
    }


@products_bp.post("")
def create_product_route():
    """Create a new product in a branch."""
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        created = products_service.create_product(patch=patch)
    except ConflictError as e:
        return {"error": str(e)}, 409
    except NotFoundError as e:
        return {"error": str(e)}, 404

    return created, 201


@products_bp.get("/<int:product_id>")
def get_product_route(product_id: int):
    product = products_service.find_product(product_id)
    if product is None:
        return {"error": "product not found"}, 404
    return product.to_dict(include_batches=True)


@products_bp.get("/low-stock")
def low_stock_route():
    """Products at or below their reorder threshold."""
    branch_id = request.args.get("branch_id", type=int)
    products = products_service.find_low_stock_products(
        branch_id,
        default_threshold=current_app.config["LOW_STOCK_DEFAULT_THRESHOLD"],
    )
    return {"items": [p.to_dict() for p in products], "count": len(products)}


@products_bp.get("/expiring-batches")
def expiring_batches_route():
    """
    Batches expired or expiring soon, soonest first.

    Query params:
    - branch_id: int (optional)
    - within_days: int (optional, default EXPIRY_WARNING_DAYS)
    """
    branch_id = request.args.get("branch_id", type=int)
    within_days = request.args.get("within_days", type=int)
    if within_days is None:
        within_days = current_app.config["EXPIRY_WARNING_DAYS"]
    if within_days < 0:
        return {"error": "within_days must be >= 0"}, 400

    batches = batch_service.find_expiring_batches(branch_id, within_days=within_days)
    return {"items": [b.to_dict() for b in batches], "count": len(batches)}


@products_bp.get("/<int:product_id>/batches")
def list_batches_route(product_id: int):
    if products_service.find_product(product_id) is None:
        return {"error": "product not found"}, 404
    batches = batch_service.list_batches(product_id)
    return {"items": [b.to_dict() for b in batches], "count": len(batches)}


@products_bp.post("/<int:product_id>/batches")
def upsert_batch_route(product_id: int):
    """
    Create a batch or replace its values (quantity, expiry, cost).

    Does not change the product's aggregate stock level; use stock-adjust
    for movements.
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=ProductBatch, payload=payload, policy=BATCH_POLICY, partial=False)
        enforce_rules_batch_upsert(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    if products_service.find_product(product_id) is None:
        return {"error": "product not found"}, 404

    batch = batch_service.upsert_batch(
        product_id=product_id,
        batch_number=patch["batch_number"],
        expiry_date=patch["expiry_date"],
        cost_price_cents=patch["cost_price_cents"],
        quantity=patch["quantity"],
    )
    return {"batch": batch.to_dict()}, 201


@products_bp.post("/<int:product_id>/stock-adjust")
def stock_adjust_route(product_id: int):
    """
    Apply a signed quantity to a product and (optionally) one batch.

    Body: quantity (required, signed int), batch_number, expiry_date,
    cost_price_cents, location, unit.
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(
            model=(ProductBatch, Product),
            payload=payload,
            policy=STOCK_ADJUST_POLICY,
            partial=False,
        )
        enforce_rules_stock_adjust(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        adjustment = inventory_service.adjust_stock(
            product_id,
            patch["quantity"],
            batch_number=patch.get("batch_number"),
            unit=patch.get("unit"),
            location=patch.get("location"),
            expiry_date=patch.get("expiry_date"),
            cost_price_cents=patch.get("cost_price_cents"),
        )
    except ProductNotFoundError as e:
        return {"error": str(e)}, 404
    except Exception:
        current_app.logger.exception("Failed to adjust stock for product %s", product_id)
        return {"error": "Internal server error"}, 500

    current_app.logger.info(
        "Stock adjusted product=%s delta=%s batch=%s %s->%s",
        product_id,
        adjustment.delta,
        adjustment.batch_number,
        adjustment.stock_before,
        adjustment.stock_after,
    )
    return {"message": "Stock updated", "adjustment": adjustment.to_dict()}


@products_bp.get("/<int:product_id>/reconciliation")
def reconciliation_route(product_id: int):
    """Aggregate stock level vs. sum of batch quantities."""
    try:
        report = inventory_service.check_stock_reconciliation(product_id)
    except ProductNotFoundError as e:
        return {"error": str(e)}, 404
    return report.to_dict()
