"""Proration of periodic amounts over partial billing periods."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from leasebill.core.calculations import ZERO, round_money
from leasebill.core.dates import days_in_month
from leasebill.core.models import ProrationMethod

THIRTY_DAYS = 30


def proration_denominator(
    period_start: date, period_end: date, method: ProrationMethod
) -> int:
    """Days a full monthly amount is spread over under ``method``."""
    if ProrationMethod(method) == ProrationMethod.THIRTY_DAY_MONTH:
        return THIRTY_DAYS
    return days_in_month(period_start.year, period_end.month)


def overlapping_days(
    period_start: date, period_end: date, charge_start: date, charge_end: date
) -> int:
    """Days shared by two inclusive ranges; 0 when they are disjoint."""
    if period_end < period_start:
        raise ValueError(f"Period end {period_end} is before start {period_start}")
    if charge_end < charge_start:
        raise ValueError(f"Charge end {charge_end} is before start {charge_start}")
    start = max(period_start, charge_start)
    end = min(period_end, charge_end)
    if end < start:
        return 0
    return (end - start).days + 1


def prorate(
    full_amount: Decimal,
    period_start: date,
    period_end: date,
    charge_start: date,
    charge_end: date,
    method: ProrationMethod = ProrationMethod.ACTUAL_DAYS_IN_MONTH,
) -> Decimal:
    """
    Scales ``full_amount`` by the share of the period the charge covers.

    All dates are inclusive. A charge covering the whole period returns
    ``full_amount`` untouched; anything else is rounded to cents half away
    from zero.

    Raises:
        ValueError: if either range ends before it starts.
    """
    days = overlapping_days(period_start, period_end, charge_start, charge_end)
    if charge_start <= period_start and charge_end >= period_end:
        return full_amount
    if days == 0:
        return ZERO
    denominator = proration_denominator(period_start, period_end, method)
    return round_money(full_amount * Decimal(days) / Decimal(denominator))
