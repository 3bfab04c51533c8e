"""Tests for core calculation functions."""

from datetime import date
from decimal import Decimal

import pytest

from leasebill.core.calculations import (
    Slab,
    calculate_consumption,
    calculate_flat_rate,
    calculate_tax,
    calculate_tiered_cost,
    format_amount,
    round_money,
)
from leasebill.core.errors import InvalidReadingError, ValidationError
from leasebill.core.models import ProrationMethod
from leasebill.core.proration import overlapping_days, prorate

SLABS = [
    Slab(Decimal("0"), Decimal("100"), Decimal("3")),
    Slab(Decimal("100"), Decimal("200"), Decimal("4")),
    Slab(Decimal("200"), None, Decimal("5")),
]

SLABS_WITH_FIXED = [
    Slab(Decimal("0"), Decimal("100"), Decimal("3"), fixed_charge=Decimal("50")),
    Slab(Decimal("100"), None, Decimal("4"), fixed_charge=Decimal("75")),
]


@pytest.mark.parametrize(
    "value, expected",
    [
        (Decimal("8225.806"), Decimal("8225.81")),
        (Decimal("0.005"), Decimal("0.01")),
        (Decimal("0.015"), Decimal("0.02")),
        (Decimal("2.675"), Decimal("2.68")),
        (Decimal("-1.005"), Decimal("-1.01")),
        (Decimal("10"), Decimal("10.00")),
    ],
)
def test_round_money_rounds_half_away_from_zero(value, expected):
    assert round_money(value) == expected


@pytest.mark.parametrize(
    "amount, rate, expected",
    [
        (Decimal("1000"), Decimal("18"), Decimal("180.00")),
        (Decimal("4838.71"), Decimal("18"), Decimal("870.97")),
        (Decimal("1000"), Decimal("0"), Decimal("0.00")),
    ],
)
def test_calculate_tax(amount, rate, expected):
    assert calculate_tax(amount, rate) == expected


@pytest.mark.parametrize(
    "current, previous, expected",
    [
        (Decimal("100"), Decimal("50"), Decimal("50")),
        (Decimal("100"), Decimal("100"), Decimal("0")),
        (Decimal("150.55"), Decimal("120.25"), Decimal("30.30")),
    ],
)
def test_calculate_consumption(current, previous, expected):
    """Tests the calculate_consumption function with various scenarios."""
    assert calculate_consumption(current, previous) == expected


def test_calculate_consumption_rejects_meter_going_backwards():
    with pytest.raises(InvalidReadingError) as exc_info:
        calculate_consumption(Decimal("50"), Decimal("100"))
    assert exc_info.value.code == "InvalidReading"


@pytest.mark.parametrize(
    "units, expected",
    [
        (Decimal("250"), Decimal("950.00")),
        (Decimal("0"), Decimal("0.00")),
        (Decimal("100"), Decimal("300.00")),
        (Decimal("150"), Decimal("500.00")),
        (Decimal("200"), Decimal("700.00")),
        (Decimal("12.5"), Decimal("37.50")),
    ],
)
def test_calculate_tiered_cost(units, expected):
    total, _ = calculate_tiered_cost(units, SLABS)
    assert total == expected


def test_tiered_cost_breakdown_per_slab():
    _, breakdown = calculate_tiered_cost(Decimal("250"), reversed(SLABS))

    assert [(c.units, c.amount) for c in breakdown] == [
        (Decimal("100"), Decimal("300.00")),
        (Decimal("100"), Decimal("400.00")),
        (Decimal("50"), Decimal("250.00")),
    ]


def test_tiered_cost_requires_slabs():
    with pytest.raises(ValidationError, match="no slabs"):
        calculate_tiered_cost(Decimal("10"), [])


def test_tiered_cost_fails_past_highest_bounded_slab():
    with pytest.raises(ValidationError, match="exceeds"):
        calculate_tiered_cost(Decimal("250"), SLABS[:2])


@pytest.mark.parametrize(
    "units, expected",
    [
        (Decimal("0"), Decimal("0.00")),
        (Decimal("80"), Decimal("290.00")),
        (Decimal("100"), Decimal("350.00")),
        (Decimal("150"), Decimal("625.00")),
    ],
)
def test_slab_fixed_charge_applies_once_slab_is_reached(units, expected):
    total, _ = calculate_tiered_cost(units, SLABS_WITH_FIXED)
    assert total == expected


def test_slab_fixed_charge_in_breakdown():
    _, breakdown = calculate_tiered_cost(Decimal("150"), SLABS_WITH_FIXED)

    assert [(c.units, c.amount, c.fixed_charge) for c in breakdown] == [
        (Decimal("100"), Decimal("300.00"), Decimal("50")),
        (Decimal("50"), Decimal("200.00"), Decimal("75")),
    ]


@pytest.mark.parametrize(
    "units, rate, fixed_charge, expected",
    [
        (Decimal("120"), Decimal("6.5"), Decimal("0"), Decimal("780.00")),
        (Decimal("120"), Decimal("6.5"), Decimal("99"), Decimal("879.00")),
        (Decimal("0"), Decimal("6.5"), Decimal("99"), Decimal("99.00")),
        (Decimal("33.333"), Decimal("1.5"), Decimal("0"), Decimal("50.00")),
    ],
)
def test_calculate_flat_rate(units, rate, fixed_charge, expected):
    total, breakdown = calculate_flat_rate(units, rate, fixed_charge)
    assert total == expected
    assert breakdown[0].units == units


@pytest.mark.parametrize(
    "units, rate, fixed_charge",
    [
        (Decimal("-1"), Decimal("1"), Decimal("0")),
        (Decimal("1"), Decimal("-1"), Decimal("0")),
        (Decimal("1"), Decimal("1"), Decimal("-1")),
    ],
)
def test_calculate_flat_rate_rejects_negative_inputs(units, rate, fixed_charge):
    with pytest.raises(ValidationError):
        calculate_flat_rate(units, rate, fixed_charge)


@pytest.mark.parametrize(
    "value, expected",
    [
        (Decimal("10000"), "10,000"),
        (Decimal("12500.50"), "12,500.50"),
        (Decimal("999.999"), "1,000"),
    ],
)
def test_format_amount(value, expected):
    assert format_amount(value) == expected


# --- Proration ---


@pytest.mark.parametrize("full_amount", [Decimal("15000"), Decimal("0.01"), Decimal("9999.99")])
def test_full_coverage_returns_full_amount(full_amount):
    result = prorate(
        full_amount,
        date(2025, 2, 1),
        date(2025, 2, 28),
        date(2024, 6, 1),
        date(2030, 1, 1),
    )
    assert result == full_amount


@pytest.mark.parametrize(
    "method, expected",
    [
        (ProrationMethod.ACTUAL_DAYS_IN_MONTH, Decimal("8225.81")),
        (ProrationMethod.THIRTY_DAY_MONTH, Decimal("8500.00")),
    ],
)
def test_partial_month_proration(method, expected):
    # 17 of 31 days in January
    result = prorate(
        Decimal("15000"),
        date(2025, 1, 1),
        date(2025, 1, 31),
        date(2025, 1, 15),
        date(2025, 1, 31),
        method,
    )
    assert result == expected


def test_mid_period_rate_change_splits_sum():
    first = prorate(
        Decimal("10000"), date(2025, 1, 1), date(2025, 1, 31), date(2025, 1, 1), date(2025, 1, 15)
    )
    second = prorate(
        Decimal("12000"), date(2025, 1, 1), date(2025, 1, 31), date(2025, 1, 16), date(2025, 1, 31)
    )
    assert (first, second) == (Decimal("4838.71"), Decimal("6193.55"))
    assert first + second == Decimal("11032.26")


def test_disjoint_ranges_prorate_to_zero():
    result = prorate(
        Decimal("10000"), date(2025, 1, 1), date(2025, 1, 31), date(2025, 3, 1), date(2025, 3, 31)
    )
    assert result == Decimal("0")


def test_overlapping_days_rejects_inverted_range():
    with pytest.raises(ValueError):
        overlapping_days(date(2025, 1, 31), date(2025, 1, 1), date(2025, 1, 1), date(2025, 1, 2))


def test_overlapping_days_is_inclusive():
    assert overlapping_days(
        date(2025, 1, 1), date(2025, 1, 31), date(2025, 1, 31), date(2025, 2, 5)
    ) == 1
