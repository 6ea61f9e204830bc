"""
Tests for the commission split.

Pure arithmetic, no database access.
"""

from decimal import Decimal

import pytest

from settlement.commission import (
    CommissionRates,
    split,
    validate_charge_amount,
)
from settlement.exceptions import InvalidAmountError

DEFAULT_RATES = CommissionRates(
    processor_percent_rate=Decimal("0.029"),
    processor_fixed_fee_cents=30,
    platform_percent_rate=Decimal("0.20"),
)


class TestSplit:
    def test_default_split_of_100_dollars(self):
        result = split(10000, DEFAULT_RATES)

        assert result.gross_cents == 10000
        assert result.processor_fee_cents == 320
        assert result.platform_fee_cents == 1936
        assert result.payee_amount_cents == 7744
        assert result.application_fee_cents == 2256

    def test_uses_settings_when_no_rates_given(self, settings):
        settings.SETTLEMENT_PROCESSOR_PERCENT_RATE = Decimal("0.029")
        settings.SETTLEMENT_PROCESSOR_FIXED_FEE_CENTS = 30
        settings.SETTLEMENT_PLATFORM_PERCENT_RATE = Decimal("0.20")

        assert split(10000) == split(10000, DEFAULT_RATES)

    def test_rounds_half_even(self):
        # 50 * 0.029 + 30 = 31.45 -> 31; net 19 * 0.20 = 3.8 -> 4
        result = split(50, DEFAULT_RATES)

        assert result.processor_fee_cents == 31
        assert result.platform_fee_cents == 4
        assert result.payee_amount_cents == 15

    def test_half_cent_rounds_to_even(self):
        rates = CommissionRates(
            processor_percent_rate=Decimal("0"),
            processor_fixed_fee_cents=0,
            platform_percent_rate=Decimal("0.25"),
        )
        # 250 * 0.25 = 62.5 -> 62, 750 * 0.25 = 187.5 -> 188
        assert split(250, rates).platform_fee_cents == 62
        assert split(750, rates).platform_fee_cents == 188

    @pytest.mark.parametrize("gross", [51, 99, 1234, 99999, 999999])
    def test_parts_always_sum_to_gross(self, gross):
        result = split(gross, DEFAULT_RATES)

        assert (
            result.processor_fee_cents
            + result.platform_fee_cents
            + result.payee_amount_cents
        ) == gross
        assert result.payee_amount_cents >= 0

    def test_zero_platform_rate_gives_payee_the_net(self):
        rates = CommissionRates(
            processor_percent_rate=Decimal("0.029"),
            processor_fixed_fee_cents=30,
            platform_percent_rate=Decimal("0"),
        )
        result = split(10000, rates)

        assert result.platform_fee_cents == 0
        assert result.payee_amount_cents == 9680

    @pytest.mark.parametrize("gross", [0, -1, -10000])
    def test_rejects_non_positive_amounts(self, gross):
        with pytest.raises(InvalidAmountError) as exc_info:
            split(gross, DEFAULT_RATES)

        assert exc_info.value.error_code == "INVALID_AMOUNT"

    @pytest.mark.parametrize("gross", [10.5, "10000", None, True, Decimal("100")])
    def test_rejects_non_integer_amounts(self, gross):
        with pytest.raises(InvalidAmountError):
            split(gross, DEFAULT_RATES)

    def test_rejects_amount_not_covering_processor_fee(self):
        with pytest.raises(InvalidAmountError) as exc_info:
            split(30, DEFAULT_RATES)

        assert exc_info.value.details["processor_fee_cents"] == 31


class TestCommissionRates:
    def test_rejects_float_rates(self):
        with pytest.raises(TypeError):
            CommissionRates(
                processor_percent_rate=0.029,
                processor_fixed_fee_cents=30,
                platform_percent_rate=Decimal("0.20"),
            )

    @pytest.mark.parametrize("rate", [Decimal("-0.01"), Decimal("1"), Decimal("1.5")])
    def test_rejects_rates_outside_unit_interval(self, rate):
        with pytest.raises(ValueError):
            CommissionRates(
                processor_percent_rate=Decimal("0.029"),
                processor_fixed_fee_cents=30,
                platform_percent_rate=rate,
            )

    def test_rejects_negative_fixed_fee(self):
        with pytest.raises(ValueError):
            CommissionRates(
                processor_percent_rate=Decimal("0.029"),
                processor_fixed_fee_cents=-1,
                platform_percent_rate=Decimal("0.20"),
            )


class TestValidateChargeAmount:
    @pytest.fixture(autouse=True)
    def limits(self, settings):
        settings.SETTLEMENT_MINIMUM_CHARGE_CENTS = 50
        settings.SETTLEMENT_MAXIMUM_CHARGE_CENTS = 999999

    @pytest.mark.parametrize("gross", [50, 10000, 999999])
    def test_accepts_amounts_within_limits(self, gross):
        validate_charge_amount(gross)

    @pytest.mark.parametrize("gross", [0, 49, 1000000])
    def test_rejects_amounts_outside_limits(self, gross):
        with pytest.raises(InvalidAmountError) as exc_info:
            validate_charge_amount(gross)

        assert exc_info.value.details["minimum_cents"] == 50
        assert exc_info.value.details["maximum_cents"] == 999999

    def test_rejects_bool(self):
        with pytest.raises(InvalidAmountError):
            validate_charge_amount(True)
