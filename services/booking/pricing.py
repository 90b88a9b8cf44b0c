"""
services/booking/pricing.py
Composes a booking's pricing breakdown from independently priced components.

    total = base + guide + porter + permits + equipment + taxes − Σ discounts   (never below 0)

All amounts are Decimal, quantized to cents. Currency is carried through untouched.
"""

import math
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Mapping, Optional, Sequence, Union

from shared.exceptions import ValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

Number = Union[Decimal, int, float, str]


def to_money(value: Optional[Number]) -> Decimal:
    if value is None:
        return ZERO
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def _non_negative(name: str, value: Decimal) -> Decimal:
    if value < 0:
        raise ValidationError(f"{name} must not be negative", field=name, value=value)
    return value


@dataclass(frozen=True)
class Discounts:
    early_bird: Decimal = ZERO
    group: Decimal = ZERO
    loyalty: Decimal = ZERO
    promotional: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        return self.early_bird + self.group + self.loyalty + self.promotional


@dataclass(frozen=True)
class PricingInput:
    base_price: Number
    group_size: int
    duration_days: int
    guide_daily_rate: Optional[Number] = None
    porter_daily_rate: Optional[Number] = None
    permit_costs: Number = 0
    equipment_rental: Number = 0
    taxes: Number = 0
    discounts: Mapping[str, Number] = field(default_factory=dict)
    currency: str = "USD"


@dataclass(frozen=True)
class PricingBreakdown:
    base_price: Decimal
    guide_price: Decimal
    porter_price: Decimal
    permit_costs: Decimal
    equipment_rental: Decimal
    taxes: Decimal
    discounts: Discounts
    total_amount: Decimal
    currency: str

    @property
    def subtotal(self) -> Decimal:
        return (
            self.base_price + self.guide_price + self.porter_price
            + self.permit_costs + self.equipment_rental + self.taxes
        )


def compose_pricing(data: PricingInput) -> PricingBreakdown:
    if data.group_size < 1:
        raise ValidationError("Group size must be at least 1", group_size=data.group_size)
    if data.duration_days < 0:
        raise ValidationError("Duration must not be negative", duration_days=data.duration_days)

    unknown = set(data.discounts) - {"early_bird", "group", "loyalty", "promotional"}
    if unknown:
        raise ValidationError(f"Unknown discount kinds: {sorted(unknown)}")

    base = _non_negative("base_price", to_money(data.base_price)) * data.group_size
    guide = ZERO
    if data.guide_daily_rate is not None:
        guide = _non_negative("guide_daily_rate", to_money(data.guide_daily_rate)) * data.duration_days
    porter = ZERO
    if data.porter_daily_rate is not None:
        porter = _non_negative("porter_daily_rate", to_money(data.porter_daily_rate)) * data.duration_days

    permits = _non_negative("permit_costs", to_money(data.permit_costs))
    equipment = _non_negative("equipment_rental", to_money(data.equipment_rental))
    taxes = _non_negative("taxes", to_money(data.taxes))
    discounts = Discounts(**{
        kind: _non_negative(f"discounts.{kind}", to_money(amount))
        for kind, amount in data.discounts.items()
    })

    total = base + guide + porter + permits + equipment + taxes - discounts.total
    return PricingBreakdown(
        base_price=to_money(base),
        guide_price=to_money(guide),
        porter_price=to_money(porter),
        permit_costs=permits,
        equipment_rental=equipment,
        taxes=taxes,
        discounts=discounts,
        total_amount=max(to_money(total), ZERO),
        currency=data.currency,
    )


# ── Component derivations ─────────────────────────────────────

def trip_duration_days(start: Union[date, datetime], end: Union[date, datetime]) -> int:
    """Whole days between start and end, rounded up."""
    delta = end - start
    return math.ceil(abs(delta.total_seconds()) / 86400)


def permit_costs(permits: Iterable[Mapping], group_size: int) -> Decimal:
    """Required permits that are not already in the base price, charged per participant."""
    per_person = sum(
        (to_money(p.get("cost", 0)) for p in permits
         if p.get("required", True) and not p.get("included_in_price", False)),
        ZERO,
    )
    return to_money(per_person * group_size)


def equipment_line_total(quantity: int, daily_rate: Number, duration_days: int) -> Decimal:
    return to_money(to_money(daily_rate) * quantity * max(duration_days, 1))


def equipment_total(lines: Iterable[Mapping]) -> Decimal:
    return to_money(sum((to_money(line["total_cost"]) for line in lines), ZERO))


def group_discount(base_amount: Decimal, tiers: Sequence[Mapping], group_size: int) -> Decimal:
    """Percentage of the base component from the best tier the group qualifies for."""
    eligible = [Decimal(str(t["percent"])) for t in tiers if group_size >= int(t["min_size"])]
    if not eligible:
        return ZERO
    return to_money(base_amount * max(eligible) / 100)


def early_bird_discount(
    base_amount: Decimal, rule: Optional[Mapping], start: date, booked_on: date
) -> Decimal:
    if not rule:
        return ZERO
    if (start - booked_on).days < int(rule["days_in_advance"]):
        return ZERO
    return to_money(base_amount * Decimal(str(rule["percent"])) / 100)


def tax_amount(taxable: Decimal, percent: Number) -> Decimal:
    return to_money(taxable * Decimal(str(percent)) / 100)
