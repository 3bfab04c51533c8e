"""Repositories for utility rate plans and statements."""

from __future__ import annotations

from datetime import date
from uuid import UUID

from leasebill.core.models import UtilityRatePlan, UtilityStatement, UtilityType
from leasebill.core.repositories.base import BaseRepository


class UtilityRatePlanRepository(BaseRepository[UtilityRatePlan]):
    """Rate-plan lookups."""

    def __init__(self) -> None:
        super().__init__(UtilityRatePlan)

    async def get_with_slabs(self, pk: UUID) -> UtilityRatePlan | None:
        plan = await self.get(pk=pk)
        if plan:
            await plan.fetch_related("slabs")
        return plan


class UtilityStatementRepository(BaseRepository[UtilityStatement]):
    """Utility-statement queries."""

    def __init__(self) -> None:
        super().__init__(UtilityStatement)

    async def pending_for_lease(
        self, lease_id: UUID, period_end: date
    ) -> list[UtilityStatement]:
        """Final statements not yet billed whose period ends by ``period_end``."""
        return await self.model.filter(
            lease_id=lease_id,
            is_final=True,
            invoice_line_id__isnull=True,
            billing_period_end__lte=period_end,
        ).order_by("billing_period_start", "utility_type", "version", "id")

    async def versions_for_period(
        self,
        lease_id: UUID,
        utility_type: UtilityType,
        period_start: date,
        period_end: date,
    ) -> list[UtilityStatement]:
        """All versions of one utility's statement for a period, oldest first."""
        return await self.model.filter(
            lease_id=lease_id,
            utility_type=utility_type,
            billing_period_start=period_start,
            billing_period_end=period_end,
        ).order_by("version")

    async def release_lines(self, line_ids: list[UUID]) -> int:
        """Marks statements billed by ``line_ids`` as unbilled again."""
        if not line_ids:
            return 0
        return await self.model.filter(invoice_line_id__in=line_ids).update(
            invoice_line_id=None
        )

    async def link_line(self, statement_id: UUID, line_id: UUID) -> None:
        await self.model.filter(id=statement_id).update(invoice_line_id=line_id)
