"""
tests/test_pricing.py
Pricing composition and the component derivations used when creating a booking.
"""

from datetime import date, datetime
from decimal import Decimal

import pytest

from shared.exceptions import ValidationError
from services.booking.pricing import (
    PricingInput,
    compose_pricing,
    early_bird_discount,
    equipment_line_total,
    equipment_total,
    group_discount,
    permit_costs,
    tax_amount,
    trip_duration_days,
)


def test_total_is_sum_of_components_minus_discounts():
    pricing = compose_pricing(PricingInput(
        base_price=1000,
        group_size=2,
        duration_days=10,
        guide_daily_rate=50,
        porter_daily_rate=25,
        permit_costs=80,
        equipment_rental=40,
        taxes=60,
        discounts={"early_bird": 100, "group": 50},
    ))
    assert pricing.base_price == Decimal("2000.00")
    assert pricing.guide_price == Decimal("500.00")
    assert pricing.porter_price == Decimal("250.00")
    assert pricing.discounts.total == Decimal("150.00")
    assert pricing.subtotal == Decimal("2930.00")
    assert pricing.total_amount == Decimal("2780.00")
    assert pricing.currency == "USD"


def test_unassigned_guide_and_porter_cost_nothing():
    pricing = compose_pricing(PricingInput(base_price="99.99", group_size=3, duration_days=4))
    assert pricing.guide_price == Decimal("0.00")
    assert pricing.porter_price == Decimal("0.00")
    assert pricing.total_amount == Decimal("299.97")


def test_total_never_goes_negative():
    pricing = compose_pricing(PricingInput(
        base_price=100, group_size=1, duration_days=1, discounts={"promotional": 500}
    ))
    assert pricing.total_amount == Decimal("0.00")


def test_currency_passes_through():
    pricing = compose_pricing(PricingInput(base_price=10, group_size=1, duration_days=1, currency="NPR"))
    assert pricing.currency == "NPR"


@pytest.mark.parametrize("field", ["permit_costs", "equipment_rental", "taxes", "guide_daily_rate"])
def test_negative_amounts_rejected(field):
    with pytest.raises(ValidationError):
        compose_pricing(PricingInput(base_price=100, group_size=1, duration_days=2, **{field: -1}))


def test_negative_discount_rejected():
    with pytest.raises(ValidationError):
        compose_pricing(PricingInput(base_price=100, group_size=1, duration_days=2, discounts={"loyalty": -5}))


def test_unknown_discount_kind_rejected():
    with pytest.raises(ValidationError):
        compose_pricing(PricingInput(base_price=100, group_size=1, duration_days=2, discounts={"vip": 5}))


def test_empty_group_rejected():
    with pytest.raises(ValidationError) as exc_info:
        compose_pricing(PricingInput(base_price=100, group_size=0, duration_days=2))
    assert exc_info.value.code == "validation_error"


# ── Derivations ───────────────────────────────────────────────

def test_trip_duration_rounds_partial_days_up():
    assert trip_duration_days(date(2025, 3, 1), date(2025, 3, 11)) == 10
    assert trip_duration_days(datetime(2025, 3, 1, 8), datetime(2025, 3, 2, 9)) == 2


def test_permit_costs_skip_included_and_optional_permits():
    permits = [
        {"name": "ACAP", "cost": 30, "required": True, "included_in_price": False},
        {"name": "TIMS", "cost": 10},
        {"name": "Park", "cost": 15, "included_in_price": True},
        {"name": "Optional climb", "cost": 200, "required": False},
    ]
    assert permit_costs(permits, 2) == Decimal("80.00")


def test_equipment_lines_are_charged_per_day():
    line = equipment_line_total(quantity=2, daily_rate="4.50", duration_days=5)
    assert line == Decimal("45.00")
    assert equipment_line_total(quantity=1, daily_rate=10, duration_days=0) == Decimal("10.00")
    assert equipment_total([{"total_cost": "45.00"}, {"total_cost": 5}]) == Decimal("50.00")


def test_group_discount_uses_best_matching_tier():
    tiers = [{"min_size": 4, "percent": 5}, {"min_size": 8, "percent": 10}]
    assert group_discount(Decimal("1000"), tiers, 3) == Decimal("0.00")
    assert group_discount(Decimal("1000"), tiers, 5) == Decimal("50.00")
    assert group_discount(Decimal("1000"), tiers, 8) == Decimal("100.00")


def test_early_bird_needs_enough_notice():
    rule = {"days_in_advance": 60, "percent": 10}
    booked_on = date(2025, 1, 1)
    assert early_bird_discount(Decimal("2000"), rule, date(2025, 3, 2), booked_on) == Decimal("200.00")
    assert early_bird_discount(Decimal("2000"), rule, date(2025, 2, 1), booked_on) == Decimal("0.00")
    assert early_bird_discount(Decimal("2000"), None, date(2025, 6, 1), booked_on) == Decimal("0.00")


def test_tax_amount():
    assert tax_amount(Decimal("2780.00"), 13) == Decimal("361.40")
    assert tax_amount(Decimal("2780.00"), 0) == Decimal("0.00")
