"""Repository for Invoice model."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from leasebill.core.models import (
    CreditNote,
    Invoice,
    InvoiceLine,
    InvoiceStatus,
    LineSource,
)
from leasebill.core.repositories.base import BaseRepository


class InvoiceRepository(BaseRepository[Invoice]):
    """Invoice-specific repository operations."""

    def __init__(self) -> None:
        super().__init__(Invoice)

    async def get_draft_for_period(
        self, lease_id: UUID, period_start: date, period_end: date
    ) -> Invoice | None:
        return await self.model.get_or_none(
            lease_id=lease_id,
            status=InvoiceStatus.DRAFT,
            billing_period_start=period_start,
            billing_period_end=period_end,
        )

    async def get_issued_for_period(
        self, lease_id: UUID, period_start: date, period_end: date
    ) -> Invoice | None:
        """An invoice past Draft that blocks regeneration. Cancelled ones do not."""
        return (
            await self.model.filter(
                lease_id=lease_id,
                billing_period_start=period_start,
                billing_period_end=period_end,
            )
            .exclude(status__in=[InvoiceStatus.DRAFT, InvoiceStatus.CANCELLED])
            .first()
        )

    async def list_for_org(
        self, org_id: UUID, statuses: list[InvoiceStatus] | None = None
    ) -> list[Invoice]:
        query = self.model.filter(organization_id=org_id)
        if statuses:
            query = query.filter(status__in=statuses)
        return await query.order_by("-invoice_date", "invoice_number")

    async def lines(self, invoice_id: UUID) -> list[InvoiceLine]:
        return await InvoiceLine.filter(invoice_id=invoice_id).order_by("line_number")

    async def manual_lines(self, invoice_id: UUID) -> list[InvoiceLine]:
        return await InvoiceLine.filter(
            invoice_id=invoice_id, source=LineSource.MANUAL
        ).order_by("line_number")

    async def delete_generated_lines(self, invoice_id: UUID) -> list[UUID]:
        """Removes non-manual lines of a draft and returns their ids."""
        query = InvoiceLine.filter(invoice_id=invoice_id).exclude(
            source=LineSource.MANUAL
        )
        line_ids = list(await query.values_list("id", flat=True))
        if line_ids:
            await InvoiceLine.filter(id__in=line_ids).delete()
        return line_ids

    async def applied_credit_total(self, invoice_id: UUID) -> Decimal:
        amounts = await CreditNote.filter(
            invoice_id=invoice_id, applied_at__isnull=False
        ).values_list("total_amount", flat=True)
        return sum((Decimal(a) for a in amounts), Decimal("0"))
