"""Repository for InvoiceRun model."""

from __future__ import annotations

from uuid import UUID

from leasebill.core.models import InvoiceRun, InvoiceRunItem
from leasebill.core.repositories.base import BaseRepository


class InvoiceRunRepository(BaseRepository[InvoiceRun]):
    """Invoice-run-specific repository operations."""

    def __init__(self) -> None:
        super().__init__(InvoiceRun)

    async def get_with_items(self, pk: UUID) -> InvoiceRun | None:
        run = await self.get(pk=pk)
        if run:
            await run.fetch_related("items")
        return run

    async def add_item(self, **kwargs) -> InvoiceRunItem:
        return await InvoiceRunItem.create(**kwargs)
