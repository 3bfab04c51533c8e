"""Core business logic for money and consumption calculations."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from leasebill.core.errors import InvalidReadingError, ValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0")


def round_money(value: Decimal) -> Decimal:
    """Rounds to 2 places, half away from zero (never banker's rounding)."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_tax(amount: Decimal, tax_rate: Decimal) -> Decimal:
    """Tax on ``amount`` at ``tax_rate`` percent, rounded to cents."""
    return round_money(amount * tax_rate / Decimal("100"))


def calculate_consumption(
    current_reading: Decimal,
    previous_reading: Decimal,
) -> Decimal:
    """
    Calculates the consumption between two meter readings.

    Raises:
        InvalidReadingError: if the current reading is lower than the
            previous one.
    """
    if current_reading < previous_reading:
        raise InvalidReadingError(previous=previous_reading, current=current_reading)
    return current_reading - previous_reading


@dataclass(frozen=True)
class Slab:
    """A consumption band ``[lower_bound, upper_bound)`` at one rate."""

    lower_bound: Decimal
    upper_bound: Decimal | None
    rate_per_unit: Decimal
    fixed_charge: Decimal = ZERO

    @property
    def width(self) -> Decimal | None:
        if self.upper_bound is None:
            return None
        return self.upper_bound - self.lower_bound


@dataclass(frozen=True)
class SlabCharge:
    """The part of a consumption billed inside one slab."""

    slab: Slab
    units: Decimal
    amount: Decimal
    fixed_charge: Decimal = ZERO


def calculate_tiered_cost(
    units: Decimal, slabs: Iterable[Slab]
) -> tuple[Decimal, list[SlabCharge]]:
    """
    Walks the slabs in ascending order, billing each its share of the units.

    Each slab absorbs at most its width; an unbounded slab absorbs the rest.
    A slab that absorbs any units also adds its fixed charge.

    Returns:
        The total rounded to cents and the per-slab breakdown.
    """
    if units < ZERO:
        raise ValidationError("Units consumed cannot be negative")

    ordered: Sequence[Slab] = sorted(slabs, key=lambda s: s.lower_bound)
    if not ordered:
        raise ValidationError("Rate plan has no slabs defined")
    for slab in ordered[:-1]:
        if slab.upper_bound is None:
            raise ValidationError("Only the last slab may be unbounded")

    remaining = units
    total = ZERO
    breakdown: list[SlabCharge] = []
    for slab in ordered:
        if remaining == ZERO:
            break
        width = slab.width
        billed = remaining if width is None else min(remaining, width)
        if billed <= ZERO:
            continue
        amount = billed * slab.rate_per_unit
        breakdown.append(
            SlabCharge(
                slab=slab,
                units=billed,
                amount=round_money(amount),
                fixed_charge=slab.fixed_charge,
            )
        )
        total += amount + slab.fixed_charge
        remaining -= billed

    if remaining > ZERO:
        raise ValidationError(
            f"Consumption of {units} units exceeds the highest slab of the rate plan"
        )
    return round_money(total), breakdown


def calculate_flat_rate(
    units: Decimal, rate_per_unit: Decimal, fixed_charge: Decimal = ZERO
) -> tuple[Decimal, list[SlabCharge]]:
    """Bills every unit at one rate, plus a fixed charge."""
    if units < ZERO:
        raise ValidationError("Units consumed cannot be negative")
    if rate_per_unit < ZERO:
        raise ValidationError("Rate per unit cannot be negative")
    if fixed_charge < ZERO:
        raise ValidationError("Fixed charge cannot be negative")

    slab = Slab(
        lower_bound=ZERO,
        upper_bound=None,
        rate_per_unit=rate_per_unit,
        fixed_charge=fixed_charge,
    )
    amount = units * rate_per_unit
    breakdown = [
        SlabCharge(
            slab=slab, units=units, amount=round_money(amount), fixed_charge=fixed_charge
        )
    ]
    return round_money(amount + fixed_charge), breakdown


def format_amount(value: Decimal) -> str:
    """Formats money with thousands separators, dropping a zero fraction."""
    text = f"{round_money(value):,.2f}"
    return text[:-3] if text.endswith(".00") else text
