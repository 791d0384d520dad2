"""Tests for the branch/agency commission split."""

import pytest
from decimal import Decimal

from app.core.exceptions import SettlementError, ErrorCode
from app.services.commission_service import (
    split_commission,
    ensure_rate_cap,
    validate_rate,
    to_money,
)


class TestSplitCommission:

    def test_branch_and_agency_split(self):
        """Agency 25%, branch 15%, price 1000 -> 150 / 100 / 250."""
        split = split_commission(Decimal("1000"), branch_rate=Decimal("15"), agency_rate=Decimal("25"))

        assert split.branch_commission == Decimal("150.00")
        assert split.agency_commission == Decimal("100.00")
        assert split.total == Decimal("250.00")

    @pytest.mark.parametrize("price,rb,ra", [
        ("1000", "0", "0"),
        ("1000", "0", "100"),
        ("1000", "100", "100"),
        ("999.99", "12.5", "17.25"),
        ("0.01", "3", "7"),
        ("12345.67", "19.99", "20"),
    ])
    def test_shares_add_up_to_agency_rate(self, price, rb, ra):
        split = split_commission(Decimal(price), branch_rate=Decimal(rb), agency_rate=Decimal(ra))
        expected = Decimal(price) * Decimal(ra) / 100

        assert split.branch_commission + split.agency_commission == split.total
        assert abs(split.total - expected) <= Decimal("0.01")

    def test_agency_only(self):
        split = split_commission(Decimal("800"), agency_rate=Decimal("25"))

        assert split.branch_commission is None
        assert split.agency_commission == Decimal("200.00")
        assert split.total == Decimal("200.00")

    def test_direct_sale_uses_default_rate(self):
        split = split_commission(Decimal("500"))

        assert split.branch_commission is None
        assert split.agency_commission == Decimal("100.00")
        assert split.total == Decimal("100.00")

    def test_explicit_default_rate(self):
        split = split_commission(Decimal("500"), default_rate=Decimal("10"))
        assert split.agency_commission == Decimal("50.00")

    def test_branch_above_agency_rejected(self):
        with pytest.raises(SettlementError) as exc:
            split_commission(Decimal("1000"), branch_rate=Decimal("30"), agency_rate=Decimal("25"))
        assert exc.value.code == ErrorCode.RATE_CAP_VIOLATION

    def test_branch_without_agency_rate_rejected(self):
        with pytest.raises(SettlementError):
            split_commission(Decimal("1000"), branch_rate=Decimal("10"))

    @pytest.mark.parametrize("price", ["0", "-5"])
    def test_non_positive_price_rejected(self, price):
        with pytest.raises(SettlementError):
            split_commission(Decimal(price), agency_rate=Decimal("25"))


class TestRates:

    @pytest.mark.parametrize("rate", ["-0.01", "100.01"])
    def test_out_of_range(self, rate):
        with pytest.raises(SettlementError) as exc:
            validate_rate(Decimal(rate))
        assert exc.value.code == ErrorCode.VALIDATION

    def test_missing_rate(self):
        with pytest.raises(SettlementError):
            validate_rate(None)

    def test_equal_rates_allowed(self):
        ensure_rate_cap(Decimal("25"), Decimal("25"))

    def test_to_money_rounds_half_up(self):
        assert to_money("10.005") == Decimal("10.01")
        assert to_money(3) == Decimal("3.00")
