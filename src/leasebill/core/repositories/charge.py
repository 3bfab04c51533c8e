"""Repositories for charge types and recurring charges."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from tortoise.expressions import Q

from leasebill.core.models import ChargeType, ChargeTypeCode, RecurringCharge
from leasebill.core.repositories.base import BaseRepository

SYSTEM_CHARGE_TYPES = {
    ChargeTypeCode.RENT: ("Rent", False, "0"),
    ChargeTypeCode.MAINTENANCE: ("Maintenance", True, "18"),
    ChargeTypeCode.ELECTRICITY: ("Electricity", False, "0"),
    ChargeTypeCode.WATER: ("Water", False, "0"),
    ChargeTypeCode.GAS: ("Gas", False, "0"),
    ChargeTypeCode.LATE_FEE: ("Late fee", False, "0"),
    ChargeTypeCode.ADJUSTMENT: ("Adjustment", False, "0"),
}


class ChargeTypeRepository(BaseRepository[ChargeType]):
    """Charge-type lookups; organization-specific types win over system ones."""

    def __init__(self) -> None:
        super().__init__(ChargeType)

    async def get_by_code(
        self, code: str | ChargeTypeCode, org_id: UUID | None
    ) -> ChargeType | None:
        if isinstance(code, ChargeTypeCode):
            code = code.value
        if org_id is not None:
            own = await self.model.get_or_none(
                organization_id=org_id, code=code, is_active=True
            )
            if own:
                return own
        return await self.model.filter(
            organization_id__isnull=True, code=code, is_active=True
        ).first()

    async def get_many(self, ids: set[UUID]) -> dict[UUID, ChargeType]:
        """Fetches charge types by id in one query."""
        if not ids:
            return {}
        return {ct.id: ct for ct in await self.model.filter(id__in=list(ids))}

    async def seed_system_types(self) -> int:
        """Creates the system charge types that do not exist yet."""
        created_count = 0
        for code, (name, taxable, rate) in SYSTEM_CHARGE_TYPES.items():
            exists = await self.model.filter(
                organization_id__isnull=True, code=code.value
            ).exists()
            if exists:
                continue
            await self.model.create(
                code=code.value,
                name=name,
                is_taxable=taxable,
                default_tax_rate=Decimal(rate),
                is_system=True,
            )
            created_count += 1
        return created_count


class RecurringChargeRepository(BaseRepository[RecurringCharge]):
    """Recurring-charge lookups."""

    def __init__(self) -> None:
        super().__init__(RecurringCharge)

    async def active_for_period(
        self, lease_id: UUID, period_start: date, period_end: date
    ) -> list[RecurringCharge]:
        """Charges whose ``[start_date, end_date)`` intersects the period."""
        return await self.model.filter(
            Q(lease_id=lease_id),
            Q(is_active=True),
            Q(is_deleted=False),
            Q(start_date__lte=period_end),
            Q(Q(end_date__gt=period_start) | Q(end_date__isnull=True)),
        ).order_by("start_date", "created_at", "id")


async def seed_charge_types() -> int:
    """Idempotently creates the organization-less system charge types."""
    return await ChargeTypeRepository().seed_system_types()
