"""Turns a lease's recurring charges and utility statements into invoice lines."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass, replace
from datetime import date, timedelta
from decimal import Decimal
from uuid import UUID

from dateutil.relativedelta import relativedelta

from leasebill.config import settings
from leasebill.core import calculations
from leasebill.core.calculations import ZERO
from leasebill.core.dates import (
    ensure_period,
    format_date_range,
    format_period_for_display,
    is_full_calendar_month,
    month_bounds,
)
from leasebill.core.errors import ValidationError
from leasebill.core.models import (
    ChargeFrequency,
    ChargeType,
    ChargeTypeCode,
    LineSource,
    ProrationMethod,
    RecurringCharge,
    UtilityStatement,
    UtilityType,
)
from leasebill.core.proration import prorate
from leasebill.core.repositories.charge import (
    ChargeTypeRepository,
    RecurringChargeRepository,
)
from leasebill.core.repositories.lease import LeaseRepository
from leasebill.core.repositories.utility import UtilityStatementRepository

logger = logging.getLogger(__name__)

UTILITY_CHARGE_CODES = {
    UtilityType.ELECTRICITY: ChargeTypeCode.ELECTRICITY,
    UtilityType.WATER: ChargeTypeCode.WATER,
    UtilityType.GAS: ChargeTypeCode.GAS,
}

_ANNIVERSARY_MONTHS = {
    ChargeFrequency.QUARTERLY: 3,
    ChargeFrequency.YEARLY: 12,
}

_UNIT_PRICE = Decimal("0.0001")


@dataclass(frozen=True)
class LineItem:
    """An invoice line as computed, before it is persisted."""

    line_number: int
    charge_type_id: UUID
    description: str
    quantity: Decimal
    unit_price: Decimal
    amount: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    source: LineSource
    source_ref_id: UUID | None = None
    period_start: date | None = None
    period_end: date | None = None


@dataclass(frozen=True)
class _Segment:
    charge: RecurringCharge
    start: date
    end: date


def _winner_key(charge: RecurringCharge) -> tuple:
    return (charge.start_date, charge.created_at, str(charge.id))


def _covers(charge: RecurringCharge, day: date) -> bool:
    return charge.start_date <= day and (charge.end_date is None or day < charge.end_date)


def monthly_segments(
    charges: list[RecurringCharge], period_start: date, period_end: date
) -> list[_Segment]:
    """
    Splits the period between monthly charges of one charge type.

    Each day goes to the covering charge that started last, so a rent
    revision supersedes the old amount from its start date onward.
    Consecutive days won by the same charge form one segment; a segment
    never crosses a calendar month boundary.
    """
    segments: list[_Segment] = []
    day = period_start
    while day <= period_end:
        covering = [c for c in charges if _covers(c, day)]
        winner = max(covering, key=_winner_key) if covering else None
        if winner is not None:
            last = segments[-1] if segments else None
            if (
                last is not None
                and last.charge.id == winner.id
                and last.end == day - timedelta(days=1)
                and day.day != 1
            ):
                segments[-1] = replace(last, end=day)
            else:
                segments.append(_Segment(charge=winner, start=day, end=day))
        day += timedelta(days=1)
    return segments


def anniversaries(
    charge: RecurringCharge, period_start: date, period_end: date
) -> list[date]:
    """Due dates of a quarterly or yearly charge that fall inside the period."""
    step = _ANNIVERSARY_MONTHS[ChargeFrequency(charge.frequency)]
    due_dates = []
    k = 0
    while True:
        due = charge.start_date + relativedelta(months=step * k)
        if due > period_end:
            break
        if due >= period_start and _covers(charge, due):
            due_dates.append(due)
        k += 1
    return due_dates


class ChargeAggregator:
    """Builds the ordered line items of one lease for one billing period."""

    def __init__(
        self,
        lease_repo: LeaseRepository,
        charge_repo: RecurringChargeRepository,
        charge_type_repo: ChargeTypeRepository,
        statement_repo: UtilityStatementRepository,
    ):
        self._lease_repo = lease_repo
        self._charge_repo = charge_repo
        self._charge_type_repo = charge_type_repo
        self._statement_repo = statement_repo

    async def build_line_items(
        self,
        lease_id: UUID,
        period_start: date,
        period_end: date,
        proration_method: ProrationMethod = ProrationMethod.ACTUAL_DAYS_IN_MONTH,
    ) -> list[LineItem]:
        """
        Computes rent, other recurring charges and pending utility lines.

        Recurring lines come first (rent, then other charge types by code),
        followed by utility lines ordered by period, utility and version.
        The same inputs always produce the same lines in the same order.
        """
        ensure_period(period_start, period_end)
        lease = await self._lease_repo.get_required(lease_id)

        charges = await self._charge_repo.active_for_period(
            lease_id, period_start, period_end
        )
        charge_types = await self._charge_type_repo.get_many(
            {c.charge_type_id for c in charges}
        )
        recurring = self._recurring_items(
            charges, charge_types, period_start, period_end, proration_method
        )
        utilities = await self._utility_items(lease.organization_id, lease_id, period_end)

        items = [
            replace(item, line_number=number)
            for number, item in enumerate(recurring + utilities, start=1)
        ]
        logger.debug(
            f"Built {len(items)} line items for lease {lease.lease_number} "
            f"({period_start} to {period_end})"
        )
        return items

    def _recurring_items(
        self,
        charges: list[RecurringCharge],
        charge_types: dict[UUID, ChargeType],
        period_start: date,
        period_end: date,
        method: ProrationMethod,
    ) -> list[LineItem]:
        keyed: list[tuple[tuple, LineItem]] = []
        monthly: dict[UUID, list[RecurringCharge]] = defaultdict(list)

        for charge in charges:
            frequency = ChargeFrequency(charge.frequency)
            charge_type = charge_types[charge.charge_type_id]
            if frequency == ChargeFrequency.MONTHLY:
                monthly[charge.charge_type_id].append(charge)
            elif frequency == ChargeFrequency.ONE_TIME:
                if period_start <= charge.start_date <= period_end:
                    item = self._item(
                        charge_type,
                        charge,
                        self._label(charge, charge_type),
                        charge.amount,
                    )
                    keyed.append((self._sort_key(charge_type, charge.start_date, charge), item))
            else:
                for due in anniversaries(charge, period_start, period_end):
                    description = (
                        f"{self._label(charge, charge_type)} "
                        f"({frequency.value}, due {format_date_range(due, due)})"
                    )
                    item = self._item(charge_type, charge, description, charge.amount)
                    keyed.append((self._sort_key(charge_type, due, charge), item))

        for charge_type_id, group in monthly.items():
            charge_type = charge_types[charge_type_id]
            for segment in monthly_segments(group, period_start, period_end):
                month_start, month_end = month_bounds(segment.start)
                slice_start = max(period_start, month_start)
                slice_end = min(period_end, month_end)
                amount = prorate(
                    segment.charge.amount,
                    slice_start,
                    slice_end,
                    segment.start,
                    segment.end,
                    method,
                )
                if amount == ZERO:
                    continue
                description = self._monthly_description(
                    segment, charge_type, slice_start, slice_end
                )
                item = self._item(
                    charge_type,
                    segment.charge,
                    description,
                    amount,
                    period=(segment.start, segment.end),
                )
                keyed.append((self._sort_key(charge_type, segment.start, segment.charge), item))

        keyed.sort(key=lambda pair: pair[0])
        return [item for _, item in keyed]

    @staticmethod
    def _sort_key(charge_type: ChargeType, on: date, charge: RecurringCharge) -> tuple:
        rank = 0 if charge_type.code == ChargeTypeCode.RENT.value else 1
        return (rank, charge_type.code, on, str(charge.id))

    @staticmethod
    def _label(charge: RecurringCharge, charge_type: ChargeType) -> str:
        return charge.description or charge_type.name

    def _monthly_description(
        self,
        segment: _Segment,
        charge_type: ChargeType,
        period_start: date,
        period_end: date,
    ) -> str:
        label = self._label(segment.charge, charge_type)
        if (segment.start, segment.end) == (period_start, period_end):
            if is_full_calendar_month(period_start, period_end):
                return f"{label} for {format_period_for_display(period_start)}"
            return f"{label} for {format_date_range(period_start, period_end)}"
        rate = calculations.format_amount(segment.charge.amount)
        return (
            f"{label} for {format_date_range(segment.start, segment.end)} "
            f"@ {settings.CURRENCY_SYMBOL}{rate}/mo"
        )

    @staticmethod
    def _item(
        charge_type: ChargeType,
        charge: RecurringCharge,
        description: str,
        amount: Decimal,
        period: tuple[date, date] | None = None,
    ) -> LineItem:
        tax_rate = charge_type.default_tax_rate if charge_type.is_taxable else ZERO
        tax_amount = calculations.calculate_tax(amount, tax_rate) if tax_rate else ZERO
        source = (
            LineSource.RENT
            if charge_type.code == ChargeTypeCode.RENT.value
            else LineSource.MAINTENANCE
        )
        return LineItem(
            line_number=0,
            charge_type_id=charge_type.id,
            description=description,
            quantity=Decimal("1"),
            unit_price=amount,
            amount=amount,
            tax_rate=tax_rate,
            tax_amount=tax_amount,
            total_amount=amount + tax_amount,
            source=source,
            source_ref_id=charge.id,
            period_start=period[0] if period else None,
            period_end=period[1] if period else None,
        )

    async def _utility_items(
        self, org_id: UUID, lease_id: UUID, period_end: date
    ) -> list[LineItem]:
        pending = await self._statement_repo.pending_for_lease(lease_id, period_end)
        latest: dict[tuple, UtilityStatement] = {}
        for statement in pending:
            key = (
                statement.billing_period_start,
                statement.billing_period_end,
                UtilityType(statement.utility_type),
            )
            if key not in latest or statement.version > latest[key].version:
                latest[key] = statement

        items: list[LineItem] = []
        charge_types: dict[UtilityType, ChargeType] = {}
        for (start, end, utility_type), statement in sorted(
            latest.items(), key=lambda pair: (pair[0][0], pair[0][1], pair[0][2].value)
        ):
            versions = await self._statement_repo.versions_for_period(
                lease_id, utility_type, start, end
            )
            billed = [v for v in versions if v.is_final and v.invoice_line_id]
            previous = max(billed, key=lambda v: v.version) if billed else None
            if previous is not None and previous.version > statement.version:
                # A newer version has already been billed; this one is stale.
                continue

            amount = statement.total_amount
            if previous is not None:
                amount = statement.total_amount - previous.total_amount
                if amount == ZERO:
                    continue

            if utility_type not in charge_types:
                code = UTILITY_CHARGE_CODES[utility_type]
                charge_type = await self._charge_type_repo.get_by_code(code, org_id)
                if charge_type is None:
                    raise ValidationError(f"No active charge type for code {code.value}")
                charge_types[utility_type] = charge_type
            items.append(
                self._utility_item(charge_types[utility_type], statement, amount, previous)
            )
        return items

    @staticmethod
    def _utility_item(
        charge_type: ChargeType,
        statement: UtilityStatement,
        amount: Decimal,
        previous: UtilityStatement | None,
    ) -> LineItem:
        period = format_date_range(
            statement.billing_period_start, statement.billing_period_end
        )
        description = f"{charge_type.name} for {period}"
        if statement.is_meter_based and statement.units_consumed:
            quantity = Decimal(statement.units_consumed)
            description += f" ({quantity.normalize():f} units)"
            unit_price = (amount / quantity).quantize(_UNIT_PRICE)
        else:
            quantity = Decimal("1")
            unit_price = amount
        if previous is not None:
            description += f" (revision v{statement.version}, adjusts v{previous.version})"

        tax_rate = charge_type.default_tax_rate if charge_type.is_taxable else ZERO
        tax_amount = calculations.calculate_tax(amount, tax_rate) if tax_rate else ZERO
        return LineItem(
            line_number=0,
            charge_type_id=charge_type.id,
            description=description,
            quantity=quantity,
            unit_price=unit_price,
            amount=amount,
            tax_rate=tax_rate,
            tax_amount=tax_amount,
            total_amount=amount + tax_amount,
            source=LineSource.UTILITY,
            source_ref_id=statement.id,
            period_start=statement.billing_period_start,
            period_end=statement.billing_period_end,
        )
