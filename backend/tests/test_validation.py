# Overview: Pytest coverage for integer money helpers and date arithmetic.

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from pos_core.errors import ValidationError
from pos_core.time_utils import add_months, normalize_datetime, to_utc_z
from pos_core.validation import MAX_AMOUNT_CENTS, percent_of, require_cents, require_datetime, require_positive_int


class TestIntegerMoney:

    @pytest.mark.parametrize("value", [1.0, Decimal("1"), "1", None, True])
    def test_non_integers_rejected(self, value):
        with pytest.raises(ValidationError):
            require_positive_int(value, "quantity")

    def test_cents_bounds(self):
        assert require_cents(0, "price_cents") == 0
        with pytest.raises(ValidationError):
            require_cents(-1, "price_cents")
        with pytest.raises(ValidationError):
            require_cents(MAX_AMOUNT_CENTS + 1, "price_cents")

    @pytest.mark.parametrize("amount,bps,expected", [
        (1000, 1000, 100),
        (1050, 825, 87),    # 86.625
        (10, 500, 1),       # 0.5 rounds up
        (9, 500, 0),        # 0.45
        (1234, 0, 0),
    ])
    def test_percent_of_rounds_half_up(self, amount, bps, expected):
        assert percent_of(amount, bps) == expected


class TestTimeUtils:

    def test_add_months_clamps_day(self):
        assert add_months(datetime(2026, 1, 31, 9, 30), 1) == datetime(2026, 2, 28, 9, 30)
        assert add_months(datetime(2024, 1, 31), 1) == datetime(2024, 2, 29)

    def test_add_months_crosses_year(self):
        assert add_months(datetime(2026, 11, 15), 14) == datetime(2028, 1, 15)

    def test_aware_datetimes_become_utc_naive(self):
        aware = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)
        assert normalize_datetime(aware) == datetime(2026, 10, 18, 12, 0)
        assert normalize_datetime("2026-10-18T12:00:00Z") == datetime(2026, 10, 18, 12, 0)
        assert to_utc_z(datetime(2026, 10, 18, 12, 0, 5, 999)) == "2026-10-18T12:00:05Z"

    def test_require_datetime_reports_bad_input(self):
        assert require_datetime("2026-10-18T12:00:00Z", "start_date") == datetime(2026, 10, 18, 12, 0)
        assert require_datetime(None, "start_date") is None
        for bad in ("garbage", "2026-13-40", 20261018):
            with pytest.raises(ValidationError) as exc_info:
                require_datetime(bad, "end_date")
            assert exc_info.value.details["field"] == "end_date"
