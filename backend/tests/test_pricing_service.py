# Overview: Pytest coverage for pricing and discount resolution.

from datetime import timedelta

import pytest

from pos_core.errors import (
    DiscountNotApplicableError,
    NoActiveTaxConfigError,
    ValidationError,
)
from pos_core.models import Discount, TaxConfig
from pos_core.extensions import db
from pos_core.services import catalog_service, pricing_service
from pos_core.services.catalog_service import DISCOUNT_FIXED_AMOUNT, DISCOUNT_PERCENTAGE
from pos_core.time_utils import utcnow


def _lines(*pairs):
    return [
        {"product_id": index + 1, "quantity": quantity, "unit_price_cents": price}
        for index, (price, quantity) in enumerate(pairs)
    ]


class TestTotals:
    """subtotal, tax and total arithmetic."""

    def test_subtotal_tax_total(self, db_session, tax_config):
        result = pricing_service.resolve_pricing(_lines((1000, 2), (2500, 1)))

        assert result.subtotal_cents == 4500
        assert result.discount_cents == 0
        assert result.tax_cents == 450
        assert result.total_cents == 4950
        assert result.tax_rate_bps == 1000
        assert result.discount_id is None

    def test_tax_rounds_half_up(self, db_session):
        catalog_service.set_tax_config("Odd", 825)
        # 1050 * 8.25% = 86.625 -> 87
        result = pricing_service.resolve_pricing(_lines((1050, 1)))
        assert result.tax_cents == 87
        assert result.total_cents == 1137

    def test_no_active_tax_config(self, db_session):
        with pytest.raises(NoActiveTaxConfigError):
            pricing_service.resolve_pricing(_lines((1000, 1)))

    def test_activating_tax_config_deactivates_others(self, db_session, tax_config):
        catalog_service.set_tax_config("New Rate", 500)

        active = db.session.query(TaxConfig).filter_by(is_active=True).all()
        assert [c.name for c in active] == ["New Rate"]
        assert pricing_service.resolve_pricing(_lines((1000, 1))).tax_cents == 50

    def test_rejects_float_prices(self, db_session, tax_config):
        with pytest.raises(ValidationError):
            pricing_service.resolve_pricing([{"product_id": 1, "quantity": 1, "unit_price_cents": 9.99}])


class TestDiscounts:
    """Percentage and fixed discounts, eligibility order."""

    def test_percentage_discount_is_capped(self, db_session, zero_tax, percent_discount):
        # 20% of 100.00 = 20.00, capped at 5.00
        result = pricing_service.resolve_pricing(_lines((10000, 1)), "SAVE20")
        assert result.discount_cents == 500
        assert result.total_cents == 9500
        assert result.discount_id == percent_discount.id

    def test_percentage_discount_below_cap(self, db_session, zero_tax, percent_discount):
        result = pricing_service.resolve_pricing(_lines((1000, 1)), percent_discount.id)
        assert result.discount_cents == 200
        assert result.total_cents == 800

    def test_tax_applies_after_discount(self, db_session, tax_config, percent_discount):
        result = pricing_service.resolve_pricing(_lines((1000, 1)), "save20")
        assert result.discount_cents == 200
        assert result.tax_cents == 80
        assert result.total_cents == 880

    def test_fixed_discount_never_exceeds_subtotal(self, db_session, zero_tax):
        catalog_service.create_discount(
            code="BIG", name="Big", discount_type=DISCOUNT_FIXED_AMOUNT, value=5000
        )
        result = pricing_service.resolve_pricing(_lines((1200, 1)), "BIG")
        assert result.discount_cents == 1200
        assert result.total_cents == 0

    def test_unknown_code(self, db_session, tax_config):
        with pytest.raises(DiscountNotApplicableError):
            pricing_service.resolve_pricing(_lines((1000, 1)), "NOPE")

    def test_inactive_discount(self, db_session, tax_config):
        catalog_service.create_discount(
            code="OFF", name="Off", discount_type=DISCOUNT_FIXED_AMOUNT, value=100, is_active=False
        )
        with pytest.raises(DiscountNotApplicableError):
            pricing_service.resolve_pricing(_lines((1000, 1)), "OFF")

    def test_discount_window(self, db_session, tax_config):
        now = utcnow()
        catalog_service.create_discount(
            code="LATER", name="Later", discount_type=DISCOUNT_FIXED_AMOUNT, value=100,
            start_date=now + timedelta(days=1),
        )
        catalog_service.create_discount(
            code="OVER", name="Over", discount_type=DISCOUNT_FIXED_AMOUNT, value=100,
            end_date=now - timedelta(days=1),
        )

        with pytest.raises(DiscountNotApplicableError, match="not active yet"):
            pricing_service.resolve_pricing(_lines((1000, 1)), "LATER", now=now)
        with pytest.raises(DiscountNotApplicableError, match="expired"):
            pricing_service.resolve_pricing(_lines((1000, 1)), "OVER", now=now)

        result = pricing_service.resolve_pricing(_lines((1000, 1)), "LATER", now=now + timedelta(days=2))
        assert result.discount_cents == 100

    def test_minimum_purchase(self, db_session, tax_config, fixed_discount):
        with pytest.raises(DiscountNotApplicableError) as exc_info:
            pricing_service.resolve_pricing(_lines((1999, 1)), "FIVEOFF")
        assert exc_info.value.details["min_purchase_cents"] == 2000

        result = pricing_service.resolve_pricing(_lines((2000, 1)), "FIVEOFF")
        assert result.discount_cents == 500

    def test_duplicate_discount_code_rejected(self, db_session, percent_discount):
        with pytest.raises(ValidationError):
            catalog_service.create_discount(
                code="Save20", name="Dup", discount_type=DISCOUNT_PERCENTAGE, value=100
            )

    def test_percentage_over_100_rejected(self, db_session):
        with pytest.raises(ValidationError):
            catalog_service.create_discount(
                code="TOOMUCH", name="Too much", discount_type=DISCOUNT_PERCENTAGE, value=10001
            )

    @pytest.mark.parametrize("field", ["start_date", "end_date"])
    def test_unparseable_window_rejected(self, db_session, field):
        with pytest.raises(ValidationError) as exc_info:
            catalog_service.create_discount(
                code="BAD", name="Bad", discount_type=DISCOUNT_FIXED_AMOUNT, value=100,
                **{field: "garbage"},
            )
        assert exc_info.value.details["field"] == field
        assert db.session.query(Discount).count() == 0


class TestPreviews:
    """validate_discount and calculate_tax."""

    def test_validate_discount_previews_amount(self, db_session, percent_discount):
        result = pricing_service.validate_discount("save20", 1500)
        assert result["valid"] is True
        assert result["code"] == "SAVE20"
        assert result["discount_cents"] == 300

    def test_validate_discount_propagates_rejection(self, db_session, fixed_discount):
        with pytest.raises(DiscountNotApplicableError):
            pricing_service.validate_discount("FIVEOFF", 100)

    def test_calculate_tax(self, db_session, tax_config):
        assert pricing_service.calculate_tax(1234) == {"tax_cents": 123, "rate_bps": 1000, "name": "Sales Tax"}

    def test_calculate_tax_without_config(self, db_session):
        assert pricing_service.calculate_tax(1234)["tax_cents"] == 0
