"""Date helpers for billing periods and line descriptions."""

from __future__ import annotations

import calendar
from datetime import date

from dateutil.relativedelta import relativedelta

from leasebill.core.errors import InvalidPeriodError, ValidationError
from leasebill.core.models import LeaseBillingSetting, RentTiming

# Month abbreviations, independent of the process locale.
MONTHS_ABBR = {
    1: "Jan",
    2: "Feb",
    3: "Mar",
    4: "Apr",
    5: "May",
    6: "Jun",
    7: "Jul",
    8: "Aug",
    9: "Sep",
    10: "Oct",
    11: "Nov",
    12: "Dec",
}


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def month_bounds(any_day: date) -> tuple[date, date]:
    """Returns the first and last day of the calendar month containing ``any_day``."""
    first = any_day.replace(day=1)
    last = any_day.replace(day=days_in_month(any_day.year, any_day.month))
    return first, last


def is_full_calendar_month(start: date, end: date) -> bool:
    return (start, end) == month_bounds(start)


def ensure_period(period_start: date, period_end: date) -> None:
    if period_end < period_start:
        raise InvalidPeriodError(
            f"Billing period end {period_end} cannot be before start {period_start}"
        )


def format_period_for_display(period_date: date) -> str:
    """Formats a date period into 'Mon YYYY'."""
    return f"{MONTHS_ABBR[period_date.month]} {period_date.year}"


def format_date_range(start: date, end: date) -> str:
    """Formats a sub-range compactly, e.g. 'Jan 1–15' or 'Jan 28–Feb 3'."""
    if start.year != end.year:
        return (
            f"{MONTHS_ABBR[start.month]} {start.day}, {start.year}–"
            f"{MONTHS_ABBR[end.month]} {end.day}, {end.year}"
        )
    if start.month != end.month:
        return (
            f"{MONTHS_ABBR[start.month]} {start.day}–"
            f"{MONTHS_ABBR[end.month]} {end.day}"
        )
    if start.day == end.day:
        return f"{MONTHS_ABBR[start.month]} {start.day}"
    return f"{MONTHS_ABBR[start.month]} {start.day}–{end.day}"


def resolve_billing_period(run_date: date, timing: RentTiming) -> tuple[date, date]:
    """
    Resolves which calendar month a run on ``run_date`` bills.

    Advance billing invoices the month after ``run_date``; arrears billing
    invoices the month before it.
    """
    offset = 1 if RentTiming(timing) == RentTiming.ADVANCE else -1
    return month_bounds(run_date + relativedelta(months=offset, day=1))


def validate_billing_setting(setting: LeaseBillingSetting) -> None:
    if not 1 <= setting.billing_day <= 28:
        raise ValidationError(
            f"Billing day must be between 1 and 28, got {setting.billing_day}"
        )
    if setting.payment_term_days < 0:
        raise ValidationError("Payment term days cannot be negative")


def resolve_invoice_date(
    period_start: date, period_end: date, setting: LeaseBillingSetting
) -> date:
    """
    Dates the invoice on the lease's billing day.

    Advance: the billing day of the month preceding the period.
    Arrears: the billing day of the month following the period.
    """
    validate_billing_setting(setting)
    if RentTiming(setting.rent_timing) == RentTiming.ADVANCE:
        anchor = period_start - relativedelta(months=1)
    else:
        anchor = period_end + relativedelta(months=1)
    return anchor.replace(day=setting.billing_day)
