"""Consumption-based utility billing and the statement correction chain."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from tortoise import timezone
from tortoise.transactions import in_transaction

from leasebill.core import calculations
from leasebill.core.calculations import Slab, SlabCharge
from leasebill.core.dates import ensure_period
from leasebill.core.errors import ImmutableError, ValidationError
from leasebill.core.models import UtilityRatePlan, UtilityStatement, UtilityType
from leasebill.core.repositories.utility import (
    UtilityRatePlanRepository,
    UtilityStatementRepository,
)

logger = logging.getLogger(__name__)

_INPUT_FIELDS = (
    "previous_reading",
    "current_reading",
    "rate_plan_id",
    "direct_bill_amount",
)


@dataclass(frozen=True)
class UtilityCalculation:
    """Result of pricing one utility statement."""

    amount: Decimal
    units_consumed: Decimal | None = None
    breakdown: tuple[SlabCharge, ...] = ()


class UtilityRateEngine:
    """Prices utility consumption and manages statement versions."""

    def __init__(
        self,
        rate_plan_repo: UtilityRatePlanRepository,
        statement_repo: UtilityStatementRepository,
    ):
        self._rate_plan_repo = rate_plan_repo
        self._statement_repo = statement_repo

    async def calculate(
        self,
        previous_reading: Decimal,
        current_reading: Decimal,
        rate_plan: UtilityRatePlan | UUID,
    ) -> UtilityCalculation:
        """
        Prices a meter-based consumption against a tiered rate plan.

        Raises:
            InvalidReadingError: if the current reading is below the previous.
            ValidationError: if the plan is inactive or has no slabs.
        """
        units = calculations.calculate_consumption(
            current_reading=current_reading, previous_reading=previous_reading
        )
        plan = await self._load_plan(rate_plan)
        slabs = [
            Slab(
                lower_bound=slab.lower_bound,
                upper_bound=slab.upper_bound,
                rate_per_unit=slab.rate_per_unit,
                fixed_charge=slab.fixed_charge,
            )
            for slab in plan.slabs
        ]
        amount, breakdown = calculations.calculate_tiered_cost(units, slabs)
        return UtilityCalculation(
            amount=amount, units_consumed=units, breakdown=tuple(breakdown)
        )

    @staticmethod
    def flat_rate(
        previous_reading: Decimal,
        current_reading: Decimal,
        rate_per_unit: Decimal,
        fixed_charge: Decimal = Decimal("0"),
    ) -> UtilityCalculation:
        """Prices a meter-based consumption at a single rate per unit."""
        units = calculations.calculate_consumption(
            current_reading=current_reading, previous_reading=previous_reading
        )
        amount, breakdown = calculations.calculate_flat_rate(
            units, rate_per_unit, fixed_charge
        )
        return UtilityCalculation(
            amount=amount, units_consumed=units, breakdown=tuple(breakdown)
        )

    @staticmethod
    def pass_through(direct_amount: Decimal) -> Decimal:
        """Bills a provider amount as-is."""
        if direct_amount < 0:
            raise ValidationError("Direct bill amount cannot be negative")
        return calculations.round_money(direct_amount)

    async def record_statement(
        self,
        lease_id: UUID,
        utility_type: UtilityType,
        period_start: date,
        period_end: date,
        *,
        previous_reading: Decimal | None = None,
        current_reading: Decimal | None = None,
        rate_plan_id: UUID | None = None,
        direct_bill_amount: Decimal | None = None,
        notes: str | None = None,
    ) -> UtilityStatement:
        """
        Records a draft statement for a period.

        The first statement of a period is version 1. A period whose latest
        version is sealed gets the next version; a period that still has an
        unsealed draft must be edited through ``update_statement``.
        """
        ensure_period(period_start, period_end)
        versions = await self._statement_repo.versions_for_period(
            lease_id, utility_type, period_start, period_end
        )
        if versions and not versions[-1].is_final:
            raise ValidationError(
                f"A draft {utility_type.value} statement already exists for "
                f"{period_start} to {period_end}; update it instead"
            )
        next_version = versions[-1].version + 1 if versions else 1

        inputs = {
            "previous_reading": previous_reading,
            "current_reading": current_reading,
            "rate_plan_id": rate_plan_id,
            "direct_bill_amount": direct_bill_amount,
        }
        computed = await self._compute(inputs)
        statement = await self._statement_repo.create(
            lease_id=lease_id,
            utility_type=utility_type,
            billing_period_start=period_start,
            billing_period_end=period_end,
            version=next_version,
            notes=notes,
            **inputs,
            **computed,
        )
        logger.info(
            f"Recorded {utility_type.value} statement v{next_version} for lease "
            f"{lease_id} ({period_start} to {period_end}): {statement.total_amount}"
        )
        return statement

    async def update_statement(
        self, statement_id: UUID, expected_row_version: int, **inputs: Any
    ) -> UtilityStatement:
        """Edits the inputs of an unsealed statement and recomputes its amounts."""
        statement = await self._statement_repo.get_required(statement_id)
        if statement.is_final:
            raise ImmutableError(
                f"Utility statement {statement_id} is final; use revise() instead"
            )
        merged = self._merge_inputs(statement, inputs)
        computed = await self._compute(merged)
        return await self._statement_repo.update_versioned(
            statement, expected_row_version, **merged, **computed
        )

    async def finalize(
        self, statement_id: UUID, expected_row_version: int | None = None
    ) -> UtilityStatement:
        """Seals a statement so it becomes billable and can no longer change."""
        async with in_transaction():
            statement = await self._statement_repo.get_required(statement_id)
            if statement.is_final:
                raise ImmutableError(f"Utility statement {statement_id} is already final")
            version = expected_row_version or statement.row_version
            computed = await self._compute(self._merge_inputs(statement, {}))
            statement = await self._statement_repo.update_versioned(
                statement,
                version,
                is_final=True,
                finalized_at=timezone.now(),
                **computed,
            )
        logger.info(f"Finalized utility statement {statement_id} v{statement.version}")
        return statement

    async def revise(self, statement_id: UUID, **inputs: Any) -> UtilityStatement:
        """Creates the next version of a sealed statement with corrected inputs."""
        original = await self._statement_repo.get_required(statement_id)
        if not original.is_final:
            raise ValidationError(
                f"Utility statement {statement_id} is not final; update it in place"
            )
        merged = self._merge_inputs(original, inputs)
        return await self.record_statement(
            original.lease_id,
            original.utility_type,
            original.billing_period_start,
            original.billing_period_end,
            notes=inputs.get("notes", original.notes),
            **merged,
        )

    @staticmethod
    def _merge_inputs(statement: UtilityStatement, changes: dict) -> dict:
        unknown = set(changes) - set(_INPUT_FIELDS) - {"notes"}
        if unknown:
            raise ValidationError(f"Unknown statement fields: {', '.join(sorted(unknown))}")
        return {
            name: changes.get(name, getattr(statement, name)) for name in _INPUT_FIELDS
        }

    async def _compute(self, inputs: dict) -> dict:
        current = inputs.get("current_reading")
        direct = inputs.get("direct_bill_amount")
        if current is not None and direct is not None:
            raise ValidationError(
                "A statement is either meter-based or a direct bill, not both"
            )
        if current is not None:
            previous = inputs.get("previous_reading")
            plan_id = inputs.get("rate_plan_id")
            if previous is None or plan_id is None:
                raise ValidationError(
                    "Meter-based statements need previous reading and rate plan"
                )
            result = await self.calculate(Decimal(previous), Decimal(current), plan_id)
            return {
                "is_meter_based": True,
                "units_consumed": result.units_consumed,
                "calculated_amount": result.amount,
                "total_amount": result.amount,
            }
        if direct is None:
            raise ValidationError(
                "Provide either meter readings or a direct bill amount"
            )
        amount = self.pass_through(Decimal(direct))
        return {
            "is_meter_based": False,
            "units_consumed": None,
            "calculated_amount": amount,
            "total_amount": amount,
        }

    async def _load_plan(self, rate_plan: UtilityRatePlan | UUID) -> UtilityRatePlan:
        if isinstance(rate_plan, UtilityRatePlan):
            plan = rate_plan
            await plan.fetch_related("slabs")
        else:
            plan = await self._rate_plan_repo.get_with_slabs(rate_plan)
            if plan is None:
                raise ValidationError(f"Utility rate plan {rate_plan} not found")
        if not plan.is_active:
            raise ValidationError(f"Utility rate plan {plan.name} is not active")
        return plan
