"""
Commission split calculation.

Maps a gross charge amount (in cents) to the processor fee, the platform
commission and the payee amount. Pure functions with no I/O; safe to share
across threads and Celery workers.

Rounding:
    All arithmetic is done with Decimal on integer minor units and rounded
    with ROUND_HALF_EVEN. The payee amount is the remainder of the gross after
    both fees, so the three parts always sum exactly to the gross.

Configuration (via settings):
    - SETTLEMENT_PROCESSOR_PERCENT_RATE: Stripe percentage fee (e.g. "0.029")
    - SETTLEMENT_PROCESSOR_FIXED_FEE_CENTS: Stripe fixed fee (e.g. 30)
    - SETTLEMENT_PLATFORM_PERCENT_RATE: Platform commission on net (e.g. "0.20")
    - SETTLEMENT_MINIMUM_CHARGE_CENTS / SETTLEMENT_MAXIMUM_CHARGE_CENTS

Usage:
    from settlement.commission import split

    result = split(10000)
    # CommissionSplit(gross_cents=10000, processor_fee_cents=320,
    #                 platform_fee_cents=1936, payee_amount_cents=7744)
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_EVEN, Decimal

from django.conf import settings

from settlement.exceptions import InvalidAmountError

_WHOLE_CENT = Decimal("1")


@dataclass(frozen=True)
class CommissionRates:
    """
    Rates used to split a gross charge.

    Attributes:
        processor_percent_rate: Percentage fee charged by Stripe
        processor_fixed_fee_cents: Fixed per-charge fee charged by Stripe
        platform_percent_rate: Platform commission applied to the net amount
    """

    processor_percent_rate: Decimal
    processor_fixed_fee_cents: int
    platform_percent_rate: Decimal

    def __post_init__(self) -> None:
        """Validate rates after initialization."""
        for name in ("processor_percent_rate", "platform_percent_rate"):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                raise TypeError(f"{name} must be a Decimal, got {type(value).__name__}")
            if value < 0 or value >= 1:
                raise ValueError(f"{name} must be in [0, 1)")
        if self.processor_fixed_fee_cents < 0:
            raise ValueError("processor_fixed_fee_cents must not be negative")

    @classmethod
    def from_settings(cls) -> CommissionRates:
        """Build rates from Django settings."""
        return cls(
            processor_percent_rate=Decimal(str(settings.SETTLEMENT_PROCESSOR_PERCENT_RATE)),
            processor_fixed_fee_cents=int(settings.SETTLEMENT_PROCESSOR_FIXED_FEE_CENTS),
            platform_percent_rate=Decimal(str(settings.SETTLEMENT_PLATFORM_PERCENT_RATE)),
        )


@dataclass(frozen=True)
class CommissionSplit:
    """
    Result of splitting a gross charge.

    Invariant: processor_fee_cents + platform_fee_cents + payee_amount_cents
    == gross_cents.
    """

    gross_cents: int
    processor_fee_cents: int
    platform_fee_cents: int
    payee_amount_cents: int

    @property
    def application_fee_cents(self) -> int:
        """Amount retained by the platform account on a destination charge."""
        return self.processor_fee_cents + self.platform_fee_cents


def _round_cents(value: Decimal) -> int:
    return int(value.quantize(_WHOLE_CENT, rounding=ROUND_HALF_EVEN))


def split(gross_cents: int, rates: CommissionRates | None = None) -> CommissionSplit:
    """
    Split a gross charge into processor fee, platform fee and payee amount.

    Args:
        gross_cents: Gross charge in cents (positive integer)
        rates: Rates to apply (defaults to CommissionRates.from_settings())

    Returns:
        CommissionSplit whose parts sum exactly to gross_cents

    Raises:
        InvalidAmountError: If gross_cents is not a positive integer or is too
            small to cover the processor fee
    """
    # bool is an int subclass
    if isinstance(gross_cents, bool) or not isinstance(gross_cents, int):
        raise InvalidAmountError(
            "Gross amount must be an integer number of cents",
            details={"gross_cents": repr(gross_cents)},
        )
    if gross_cents <= 0:
        raise InvalidAmountError(
            "Gross amount must be positive",
            details={"gross_cents": gross_cents},
        )

    rates = rates or CommissionRates.from_settings()
    gross = Decimal(gross_cents)

    processor_fee = _round_cents(
        gross * rates.processor_percent_rate + rates.processor_fixed_fee_cents
    )
    if processor_fee >= gross_cents:
        raise InvalidAmountError(
            "Gross amount does not cover the processor fee",
            details={"gross_cents": gross_cents, "processor_fee_cents": processor_fee},
        )

    net = gross_cents - processor_fee
    platform_fee = _round_cents(Decimal(net) * rates.platform_percent_rate)
    payee_amount = net - platform_fee

    return CommissionSplit(
        gross_cents=gross_cents,
        processor_fee_cents=processor_fee,
        platform_fee_cents=platform_fee,
        payee_amount_cents=payee_amount,
    )


def validate_charge_amount(gross_cents: int) -> None:
    """
    Check a gross amount against the configured charge limits.

    Raises:
        InvalidAmountError: If the amount is outside
            [SETTLEMENT_MINIMUM_CHARGE_CENTS, SETTLEMENT_MAXIMUM_CHARGE_CENTS]
    """
    minimum = settings.SETTLEMENT_MINIMUM_CHARGE_CENTS
    maximum = settings.SETTLEMENT_MAXIMUM_CHARGE_CENTS

    if isinstance(gross_cents, bool) or not isinstance(gross_cents, int):
        raise InvalidAmountError(
            "Gross amount must be an integer number of cents",
            details={"gross_cents": repr(gross_cents)},
        )
    if gross_cents < minimum or gross_cents > maximum:
        raise InvalidAmountError(
            f"Amount must be between {minimum} and {maximum} cents",
            details={
                "gross_cents": gross_cents,
                "minimum_cents": minimum,
                "maximum_cents": maximum,
            },
        )


__all__ = [
    "CommissionRates",
    "CommissionSplit",
    "split",
    "validate_charge_amount",
]
