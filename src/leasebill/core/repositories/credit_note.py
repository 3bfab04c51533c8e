"""Repository for CreditNote model."""

from __future__ import annotations

from collections import defaultdict
from decimal import Decimal
from uuid import UUID

from leasebill.core.models import CreditNote, CreditNoteLine
from leasebill.core.repositories.base import BaseRepository


class CreditNoteRepository(BaseRepository[CreditNote]):
    """Credit-note-specific repository operations."""

    def __init__(self) -> None:
        super().__init__(CreditNote)

    async def credited_by_line(self, invoice_id: UUID) -> dict[UUID, Decimal]:
        """
        Totals already credited per invoice line of an invoice.

        Unapplied credit notes count too: they hold their share of the line
        until they are applied.
        """
        rows = await CreditNoteLine.filter(
            credit_note__invoice_id=invoice_id
        ).values_list("invoice_line_id", "total_amount")
        credited: dict[UUID, Decimal] = defaultdict(lambda: Decimal("0"))
        for line_id, amount in rows:
            credited[line_id] += Decimal(amount)
        return dict(credited)
