"""Repositories for leases and their billing settings."""

from __future__ import annotations

from datetime import date
from uuid import UUID

from tortoise.expressions import Q

from leasebill.core.models import Lease, LeaseBillingSetting, LeaseStatus, Organization
from leasebill.core.repositories.base import BaseRepository


class OrganizationRepository(BaseRepository[Organization]):
    """Organization-specific repository operations."""

    def __init__(self) -> None:
        super().__init__(Organization)


class LeaseRepository(BaseRepository[Lease]):
    """Lease-specific repository operations."""

    def __init__(self) -> None:
        super().__init__(Lease)

    async def active_for_period(
        self, org_id: UUID, period_start: date, period_end: date
    ) -> list[Lease]:
        """Active leases of an organization whose term touches the period."""
        return await self.model.filter(
            Q(organization_id=org_id),
            Q(status=LeaseStatus.ACTIVE),
            Q(start_date__lte=period_end),
            Q(Q(end_date__gte=period_start) | Q(end_date__isnull=True)),
        ).order_by("lease_number", "id")

    async def lock(self, lease_id: UUID) -> Lease | None:
        """Row-locks a lease for the surrounding transaction."""
        return await self.model.filter(id=lease_id).select_for_update().first()


class BillingSettingRepository(BaseRepository[LeaseBillingSetting]):
    """Billing-settings lookups."""

    def __init__(self) -> None:
        super().__init__(LeaseBillingSetting)

    async def get_for_lease(self, lease_id: UUID) -> LeaseBillingSetting | None:
        return await self.model.get_or_none(lease_id=lease_id)
