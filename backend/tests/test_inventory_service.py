# Overview: Pytest coverage for the stock adjuster and batch bookkeeping.

"""
Stock Adjuster Tests

Covers:
- Aggregate stock moves by exactly the delta
- Batch create-then-increment (never duplicated, never overwritten)
- Default one-year expiry for new batches
- Partial update of unit/location/expiry/cost
- All-or-nothing writes
- Reconciliation drift between stock_level and batch totals
"""

from datetime import date

import pytest
from sqlalchemy.exc import IntegrityError

from pharmapos.extensions import db
from pharmapos.models import Product, ProductBatch
from pharmapos.services import inventory_service
from pharmapos.services.batch_service import default_expiry_date, upsert_batch
from pharmapos.services.inventory_service import (
    ProductNotFoundError,
    adjust_stock,
    check_stock_reconciliation,
    remove_batch_stock,
)
from pharmapos.time_utils import today

from conftest import reload, batches_of


class TestAggregateStock:

    @pytest.mark.parametrize("delta", [25, -40, 0])
    def test_delta_without_batch_leaves_batches_alone(self, db_session, paracetamol, delta):
        before = {k: (b.quantity, b.expiry_date) for k, b in batches_of(paracetamol.id).items()}

        result = adjust_stock(paracetamol.id, delta)

        assert reload(Product, paracetamol.id).stock_level == 150 + delta
        after = {k: (b.quantity, b.expiry_date) for k, b in batches_of(paracetamol.id).items()}
        assert after == before
        assert result.stock_before == 150
        assert result.stock_after == 150 + delta
        assert result.batch_number is None

    def test_negative_result_is_not_clamped(self, db_session, amoxicillin):
        adjust_stock(amoxicillin.id, -35)
        assert reload(Product, amoxicillin.id).stock_level == -15

    def test_unknown_product_raises_and_writes_nothing(self, db_session, paracetamol):
        with pytest.raises(ProductNotFoundError) as exc:
            adjust_stock(99999, 10, batch_number="X1")

        assert exc.value.product_id == 99999
        assert db_session.query(ProductBatch).filter_by(batch_number="X1").count() == 0
        assert reload(Product, paracetamol.id).stock_level == 150


class TestBatchQuantities:

    def test_new_batch_then_increment(self, db_session, paracetamol):
        first = adjust_stock(paracetamol.id, 12, batch_number="B100")
        second = adjust_stock(paracetamol.id, 8, batch_number="B100")

        rows = db_session.query(ProductBatch).filter_by(product_id=paracetamol.id, batch_number="B100").all()
        assert len(rows) == 1
        assert reload(ProductBatch, rows[0].id).quantity == 20
        assert first.batch_created is True
        assert first.batch_quantity == 12
        assert second.batch_created is False
        assert second.batch_quantity == 20

    def test_new_batch_defaults(self, db_session, paracetamol):
        adjust_stock(paracetamol.id, 5, batch_number="B200", today=date(2026, 10, 19))

        batch = batches_of(paracetamol.id)["B200"]
        assert batch.quantity == 5
        assert batch.cost_price_cents == 0
        assert batch.expiry_date == date(2027, 10, 19)

    def test_default_expiry_is_one_year_from_today(self, db_session, paracetamol):
        adjust_stock(paracetamol.id, 5, batch_number="B201")

        expiry = batches_of(paracetamol.id)["B201"].expiry_date
        created = today()
        assert (expiry.year, expiry.month, expiry.day) == (created.year + 1, created.month, created.day)

    def test_default_expiry_from_leap_day(self):
        assert default_expiry_date(date(2028, 2, 29)) == date(2029, 2, 28)

    def test_supplied_expiry_and_cost_on_create(self, db_session, paracetamol):
        adjust_stock(
            paracetamol.id,
            30,
            batch_number="B300",
            expiry_date=date(2027, 3, 1),
            cost_price_cents=275,
        )

        batch = batches_of(paracetamol.id)["B300"]
        assert batch.expiry_date == date(2027, 3, 1)
        assert batch.cost_price_cents == 275

    def test_existing_batch_keeps_expiry_and_cost_unless_supplied(self, db_session, paracetamol):
        adjust_stock(paracetamol.id, 10, batch_number="B001")
        batch = batches_of(paracetamol.id)["B001"]
        assert batch.quantity == 110
        assert batch.expiry_date == date(2025, 12, 31)
        assert batch.cost_price_cents == 300

        adjust_stock(paracetamol.id, 0, batch_number="B001", expiry_date=date(2026, 6, 30), cost_price_cents=310)
        batch = batches_of(paracetamol.id)["B001"]
        assert batch.quantity == 110
        assert batch.expiry_date == date(2026, 6, 30)
        assert batch.cost_price_cents == 310

    def test_remove_batch_stock(self, db_session, paracetamol):
        remove_batch_stock(paracetamol.id, "B001", 40)

        assert batches_of(paracetamol.id)["B001"].quantity == 60
        assert reload(Product, paracetamol.id).stock_level == 110


class TestPartialUpdate:

    def test_absent_unit_and_location_are_kept(self, db_session, paracetamol):
        paracetamol.location = "Shelf A3"
        db_session.commit()

        adjust_stock(paracetamol.id, 0, batch_number="B001", unit=None)

        product = reload(Product, paracetamol.id)
        assert product.unit == "STRIP"
        assert product.location == "Shelf A3"

    def test_supplied_unit_and_location_overwrite(self, db_session, paracetamol):
        adjust_stock(paracetamol.id, 0, batch_number="B001", unit="BOX", location="Fridge 1")

        product = reload(Product, paracetamol.id)
        assert product.unit == "BOX"
        assert product.location == "Fridge 1"
        assert product.stock_level == 150


class TestAtomicity:

    def test_batch_failure_rolls_back_stock_level(self, db_session, paracetamol, monkeypatch):
        boom = RuntimeError("disk full")

        def failing_batch_write(**kwargs):
            raise boom

        monkeypatch.setattr(inventory_service, "create_or_increment_batch", failing_batch_write)

        with pytest.raises(RuntimeError) as exc:
            adjust_stock(paracetamol.id, 50, batch_number="B001")

        assert exc.value is boom
        assert reload(Product, paracetamol.id).stock_level == 150
        assert batches_of(paracetamol.id)["B001"].quantity == 100

    def test_storage_error_propagates_unmodified(self, db_session, paracetamol, monkeypatch):
        def duplicate_insert(**kwargs):
            raise IntegrityError("INSERT INTO product_batches", {}, Exception("UNIQUE constraint failed"))

        monkeypatch.setattr(inventory_service, "create_or_increment_batch", duplicate_insert)

        with pytest.raises(IntegrityError):
            adjust_stock(paracetamol.id, 5, batch_number="B999")

        assert reload(Product, paracetamol.id).stock_level == 150


class TestParacetamolScenario:

    def test_receive_then_remove_into_new_batch(self, db_session, paracetamol):
        adjust_stock(paracetamol.id, 50, batch_number="B001")

        assert reload(Product, paracetamol.id).stock_level == 200
        assert batches_of(paracetamol.id)["B001"].quantity == 150

        result = adjust_stock(paracetamol.id, -30, batch_number="B002")

        assert reload(Product, paracetamol.id).stock_level == 170
        batches = batches_of(paracetamol.id)
        assert batches["B002"].quantity == -30
        assert result.batch_created is True


class TestReconciliation:

    def test_drift_is_reported(self, db_session, paracetamol):
        report = check_stock_reconciliation(paracetamol.id)

        assert report.stock_level == 150
        assert report.batch_total == 100
        assert report.batch_count == 1
        assert report.drift == 50
        assert report.is_reconciled is False

    def test_batch_adjustments_preserve_drift(self, db_session, paracetamol):
        adjust_stock(paracetamol.id, 20, batch_number="B001")
        adjust_stock(paracetamol.id, -5, batch_number="B777")

        assert check_stock_reconciliation(paracetamol.id).drift == 50

    def test_reconciled_after_batch_upsert(self, db_session, paracetamol):
        upsert_batch(
            product_id=paracetamol.id,
            batch_number="B002",
            quantity=50,
            expiry_date=date(2024, 6, 30),
            cost_price_cents=320,
        )

        report = check_stock_reconciliation(paracetamol.id)
        assert report.batch_total == 150
        assert report.is_reconciled is True

    def test_product_without_batches(self, db_session, amoxicillin):
        report = check_stock_reconciliation(amoxicillin.id)
        assert report.batch_total == 0
        assert report.drift == 20

    def test_unknown_product(self, db_session):
        with pytest.raises(ProductNotFoundError):
            check_stock_reconciliation(12345)


class TestBatchExpiry:

    def test_expired_strictly_before_as_of(self, db_session, paracetamol):
        batch = batches_of(paracetamol.id)["B001"]

        assert batch.is_expired(date(2025, 12, 31)) is False
        assert batch.is_expired(date(2026, 1, 1)) is True

    def test_flag_in_serialized_batch(self, db_session, paracetamol):
        batch = batches_of(paracetamol.id)["B001"]

        assert batch.to_dict(as_of=date(2025, 6, 1))["is_expired"] is False
        assert batch.to_dict(as_of=date(2026, 6, 1))["is_expired"] is True
