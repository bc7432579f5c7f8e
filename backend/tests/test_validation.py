# Overview: Pytest coverage for payload validation policies.

from datetime import date

import pytest

from pharmapos.models import Product, ProductBatch
from pharmapos.routes.products import PRODUCT_POLICY, STOCK_ADJUST_POLICY
from pharmapos.validation import (
    ValidationError,
    enforce_rules_product,
    enforce_rules_stock_adjust,
    validate_payload,
)


def adjust_patch(payload):
    patch = validate_payload(
        model=(ProductBatch, Product),
        payload=payload,
        policy=STOCK_ADJUST_POLICY,
        partial=False,
    )
    enforce_rules_stock_adjust(patch)
    return patch


class TestStockAdjustPayload:

    def test_coerces_fields(self, app):
        patch = adjust_patch({
            "quantity": "-30",
            "batch_number": " B002 ",
            "expiry_date": "2027-01-15",
            "cost_price_cents": 150,
            "unit": "BOX",
        })

        assert patch == {
            "quantity": -30,
            "batch_number": "B002",
            "expiry_date": date(2027, 1, 15),
            "cost_price_cents": 150,
            "unit": "BOX",
        }

    def test_blank_location_means_absent(self, app):
        assert adjust_patch({"quantity": 1, "location": ""})["location"] is None

    @pytest.mark.parametrize("payload", [
        {},
        {"quantity": None},
        {"quantity": "1e3"},
        {"quantity": "12.5"},
        {"quantity": 2, "unit": ""},
        {"quantity": 2, "batch_number": "x" * 65},
        {"quantity": 2, "stock_level": 10},
    ])
    def test_rejects(self, app, payload):
        with pytest.raises(ValidationError):
            adjust_patch(payload)


class TestProductPayload:

    def test_short_sku(self, app):
        patch = validate_payload(
            model=Product,
            payload={"branch_id": 1, "sku": "AB", "name_en": "X", "unit": "BOX", "price_cents": 1},
            policy=PRODUCT_POLICY,
            partial=False,
        )
        with pytest.raises(ValidationError):
            enforce_rules_product(patch)

    def test_negative_threshold(self):
        with pytest.raises(ValidationError):
            enforce_rules_product({"min_stock_level": -1})
