"""平台手续费计算（纯函数）"""
from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from typing import Union

from domain.common.exceptions import DomainValidationException
from shared.codes.payment_codes import ZERO_DECIMAL_CURRENCIES

Number = Union[Decimal, int, float, str]


def _to_decimal(value: Number, field: str) -> Decimal:
    # float 先转 str，避免二进制误差进入金额计算
    d = value if isinstance(value, Decimal) else Decimal(str(value))
    if d < 0:
        raise DomainValidationException(f"{field} must be non-negative: {value}", field=field)
    return d


def compute_platform_fee(gross_amount: Number, percentage: Number, fixed: Number) -> int:
    """按“百分比 + 固定费用”计算平台手续费，返回最小货币单位（便士/分）。

    round((gross * percentage / 100 + fixed) * 100)，四舍五入（half up）。

    >>> compute_platform_fee(Decimal("100.00"), Decimal("2.9"), Decimal("0.30"))
    320
    """
    gross = _to_decimal(gross_amount, "gross_amount")
    rate = _to_decimal(percentage, "percentage")
    fixed_fee = _to_decimal(fixed, "fixed")
    major = gross * rate / Decimal(100) + fixed_fee
    return int((major * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _minor_exponent(currency: str) -> int:
    return 0 if currency.lower() in ZERO_DECIMAL_CURRENCIES else 2


def to_minor_units(amount: Number, currency: str) -> int:
    """主货币单位 -> 最小货币单位（half up）"""
    value = Decimal(str(amount)) * (Decimal(10) ** _minor_exponent(currency))
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int, currency: str) -> Decimal:
    return Decimal(int(amount)) / (Decimal(10) ** _minor_exponent(currency))
