"""Atomic per-organization, per-month number sequences."""

from __future__ import annotations

import logging
from datetime import date
from uuid import UUID

from tortoise.expressions import F
from tortoise.transactions import in_transaction

from leasebill.core.models import NumberSequence, SequenceKind
from leasebill.core.repositories.base import BaseRepository

logger = logging.getLogger(__name__)


def format_document_number(prefix: str, on: date, sequence: int) -> str:
    """Renders `{prefix}-{yyyyMM}-{sequence:06d}`, e.g. `INV-202501-000001`."""
    return f"{prefix}-{on:%Y%m}-{sequence:06d}"


class NumberSequenceRepository(BaseRepository[NumberSequence]):
    """
    Hands out sequence values from a locked counter row.

    The increment is a single ``UPDATE ... SET current_value = current_value + 1``
    so concurrent callers serialize on the row; values are never derived by
    counting existing invoices.
    """

    def __init__(self) -> None:
        super().__init__(NumberSequence)

    async def next_value(self, org_id: UUID, kind: SequenceKind, year_month: str) -> int:
        async with in_transaction():
            await self.model.get_or_create(
                organization_id=org_id, kind=kind, year_month=year_month
            )
            scope = self.model.filter(
                organization_id=org_id, kind=kind, year_month=year_month
            )
            await scope.update(current_value=F("current_value") + 1)
            counter = await scope.select_for_update().get()
        logger.debug(
            f"Allocated {kind.value} sequence {counter.current_value} "
            f"for org {org_id} in {year_month}"
        )
        return counter.current_value
