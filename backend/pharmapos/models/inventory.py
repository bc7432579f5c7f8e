from __future__ import annotations

from datetime import date

from ..extensions import db
from pharmapos.time_utils import to_utc_z, to_iso_date, today


class Product(db.Model):
    """
    Product master data.

    MULTI-BRANCH: Products are scoped to branches via branch_id.
    SKUs are unique within a branch: UniqueConstraint("branch_id", "sku").

    STOCK DESIGN DECISION:
    stock_level is the aggregate on-hand quantity and is written directly
    (dual write alongside ProductBatch.quantity), not summed from batches.
    Drift between the two is tolerated and reported by
    inventory_service.check_stock_reconciliation().

    LOOKUP PATTERN:
    - SKU lookup: Product.query.filter_by(branch_id=X, sku=Y)
    - Barcode lookup: exact match on gtin (scanner)
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("branch_id", "sku", name="uq_products_branch_sku"),
        db.Index("ix_products_branch_name", "branch_id", "name_en"),
        db.Index("ix_products_gtin", "gtin"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    branch_id = db.Column(db.Integer, db.ForeignKey("branches.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False)
    gtin = db.Column(db.String(64), nullable=True)

    name_en = db.Column(db.String(255), nullable=False)
    name_mm = db.Column(db.String(255), nullable=True)
    generic_name = db.Column(db.String(255), nullable=True)
    category = db.Column(db.String(120), nullable=True)
    description = db.Column(db.Text, nullable=True)

    # Authoritative storage in minor units (frontend may only format for display)
    price_cents = db.Column(db.Integer, nullable=False, default=0)

    unit = db.Column(db.String(32), nullable=False, default="STRIP")
    stock_level = db.Column(db.Integer, nullable=False, default=0)
    min_stock_level = db.Column(db.Integer, nullable=False, default=0)

    requires_prescription = db.Column(db.Boolean, nullable=False, default=False)
    image_url = db.Column(db.String(512), nullable=True)
    location = db.Column(db.String(120), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    branch = db.relationship("Branch", backref=db.backref("products", lazy=True))
    batches = db.relationship(
        "ProductBatch",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="ProductBatch.expiry_date",
        lazy=True,
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name_en!r} branch_id={self.branch_id}>"

    def to_dict(self, *, include_batches: bool = False) -> dict:
        data = {
            "id": self.id,
            "branch_id": self.branch_id,
            "sku": self.sku,
            "gtin": self.gtin,
            "name_en": self.name_en,
            "name_mm": self.name_mm,
            "generic_name": self.generic_name,
            "category": self.category,
            "description": self.description,
            "price_cents": self.price_cents,
            "unit": self.unit,
            "stock_level": self.stock_level,
            "min_stock_level": self.min_stock_level,
            "requires_prescription": self.requires_prescription,
            "image_url": self.image_url,
            "location": self.location,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_batches:
            data["batches"] = [b.to_dict() for b in self.batches]
        return data


class ProductBatch(db.Model):
    """
    A receipt lot of a product with its own expiry date and cost.

    Keyed by (product_id, batch_number). Quantity is only ever incremented by
    stock adjustments and may go negative; nothing clamps it.
    """
    __tablename__ = "product_batches"
    __table_args__ = (
        db.UniqueConstraint("product_id", "batch_number", name="uq_batches_product_batch_number"),
        db.Index("ix_batches_expiry", "expiry_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    batch_number = db.Column(db.String(64), nullable=False)
    quantity = db.Column(db.Integer, nullable=False, default=0)
    expiry_date = db.Column(db.Date, nullable=False)
    cost_price_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    product = db.relationship("Product", back_populates="batches")

    def __repr__(self) -> str:
        return f"<ProductBatch id={self.id} product_id={self.product_id} batch_number={self.batch_number!r}>"

    def is_expired(self, as_of: date) -> bool:
        return self.expiry_date < as_of

    def to_dict(self, *, as_of: date | None = None) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "batch_number": self.batch_number,
            "quantity": self.quantity,
            "expiry_date": to_iso_date(self.expiry_date),
            "is_expired": self.is_expired(as_of or today()),
            "cost_price_cents": self.cost_price_cents,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
