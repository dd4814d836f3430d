from decimal import Decimal

import pytest

from domain.common.exceptions import DomainValidationException
from domain.payment.fees import compute_platform_fee, from_minor_units, to_minor_units


@pytest.mark.parametrize(
    "gross, expected",
    [
        (Decimal("100.00"), 320),
        (Decimal("0"), 30),
        (Decimal("25.50"), 104),   # 0.7395 + 0.30 = 1.0395
        (Decimal("10.00"), 59),    # 0.29 + 0.30
    ],
)
def test_default_fee_schedule(gross, expected):
    assert compute_platform_fee(gross, Decimal("2.9"), Decimal("0.30")) == expected


def test_half_up_rounding():
    # 0.125 -> 13 pence
    assert compute_platform_fee(Decimal("1.00"), Decimal("12.5"), Decimal("0")) == 13


def test_accepts_float_and_str_inputs():
    assert compute_platform_fee(100.0, "2.9", 0.3) == 320


@pytest.mark.parametrize("field", ["gross_amount", "percentage", "fixed"])
def test_negative_inputs_rejected(field):
    args = {"gross_amount": Decimal("10"), "percentage": Decimal("2.9"), "fixed": Decimal("0.30")}
    args[field] = Decimal("-1")
    with pytest.raises(DomainValidationException) as ei:
        compute_platform_fee(**args)
    assert ei.value.field == field


@pytest.mark.parametrize(
    "amount, currency, minor",
    [
        (Decimal("25.50"), "gbp", 2550),
        (Decimal("0.005"), "usd", 1),
        (Decimal("1500"), "JPY", 1500),
    ],
)
def test_minor_unit_conversion(amount, currency, minor):
    assert to_minor_units(amount, currency) == minor


def test_from_minor_units():
    assert from_minor_units(2550, "gbp") == Decimal("25.50")
    assert from_minor_units(1500, "jpy") == Decimal("1500")
