# FILE: dentlink/services/commission.py
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from dentlink.core.errors import InvalidConfig, ValidationError
from dentlink.models.platform_settings import CommissionType
from dentlink.services.money import D, money

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class CommissionConfig:
    type: str
    rate: Decimal

    @classmethod
    def of(cls, type_, rate) -> "CommissionConfig":
        t = type_.value if hasattr(type_, "value") else str(type_ or "").strip().lower()
        try:
            r = D(rate)
        except (ValueError, TypeError):
            raise InvalidConfig(f"Commission rate is not a number: {rate!r}")
        return cls(type=t, rate=r)


@dataclass(frozen=True)
class Settlement:
    cost: Decimal
    commission_amount: Decimal
    net_income: Decimal


def validate_config(config: CommissionConfig) -> None:
    if config.type not in (CommissionType.FIXED.value,
                           CommissionType.PERCENTAGE.value):
        raise InvalidConfig(f"Unknown commission type '{config.type}'")
    if config.rate < 0:
        raise InvalidConfig("Commission rate cannot be negative")
    if config.type == CommissionType.PERCENTAGE.value and config.rate > HUNDRED:
        raise InvalidConfig("Percentage commission cannot exceed 100")


def compute_settlement(cost, config: CommissionConfig) -> Settlement:
    """
    Split a proposal cost into platform commission and doctor net income.

      percentage: commission = cost * rate / 100
      fixed:      commission = rate (cost does not matter)

    Amounts are rounded half-up to 2 places; no floats involved.
    """
    validate_config(config)

    c = money(cost)
    if c <= 0:
        raise ValidationError("Cost must be > 0")

    if config.type == CommissionType.PERCENTAGE.value:
        commission = money(c * config.rate / HUNDRED)
    else:
        commission = money(config.rate)

    if commission > c:
        raise InvalidConfig(
            f"Fixed commission {commission} exceeds the treatment cost {c}")

    return Settlement(cost=c,
                      commission_amount=commission,
                      net_income=money(c - commission))
