"""Batch invoice generation across an organization's leases."""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import date
from uuid import UUID

from tortoise import timezone

from leasebill.config import settings
from leasebill.core.dates import ensure_period
from leasebill.core.errors import BillingError, NotFoundError
from leasebill.core.models import (
    InvoiceRun,
    InvoiceRunItem,
    InvoiceRunStatus,
    Lease,
    LeaseBillingSetting,
)
from leasebill.core.repositories.invoice_run import InvoiceRunRepository
from leasebill.core.repositories.lease import LeaseRepository, OrganizationRepository
from leasebill.services.billing import InvoiceGenerator

logger = logging.getLogger(__name__)

# Per-lease errors copied into the run summary.
MAX_REPORTED_ERRORS = 10


def make_run_number(period_start: date) -> str:
    return f"RUN-{period_start:%Y%m}-{uuid.uuid4().hex[:8].upper()}"


class InvoiceRunOrchestrator:
    """
    Generates invoices for every active lease of an organization.

    Leases are processed concurrently up to a configured limit. A lease that
    fails is recorded and skipped; it never stops the rest of the run.
    """

    def __init__(
        self,
        org_repo: OrganizationRepository,
        lease_repo: LeaseRepository,
        run_repo: InvoiceRunRepository,
        generator: InvoiceGenerator,
        max_concurrency: int | None = None,
    ):
        self._org_repo = org_repo
        self._lease_repo = lease_repo
        self._run_repo = run_repo
        self._generator = generator
        self._max_concurrency = max_concurrency or settings.INVOICE_RUN_CONCURRENCY
        self._cancel_events: dict[UUID, asyncio.Event] = {}

    async def execute(
        self,
        org_id: UUID,
        period_start: date,
        period_end: date,
        cancel_event: asyncio.Event | None = None,
        automatic: bool = False,
    ) -> InvoiceRun:
        """
        Runs invoice generation for one organization and period.

        ``automatic`` runs skip leases whose billing settings opt out of
        automatic generation. Setting ``cancel_event`` (or calling ``cancel``)
        stops the run before the next lease starts; leases already processed
        keep their results.
        """
        ensure_period(period_start, period_end)
        await self._org_repo.get_required(org_id)

        run = await self._run_repo.create(
            organization_id=org_id,
            run_number=make_run_number(period_start),
            billing_period_start=period_start,
            billing_period_end=period_end,
            status=InvoiceRunStatus.PENDING,
        )
        event = cancel_event or asyncio.Event()
        self._cancel_events[run.id] = event

        try:
            leases = await self._lease_repo.active_for_period(
                org_id, period_start, period_end
            )
            if automatic:
                leases = await self._opted_in(leases)
            await self._run_repo.model.filter(id=run.id).update(
                status=InvoiceRunStatus.IN_PROGRESS,
                started_at=timezone.now(),
                total_leases=len(leases),
            )
            logger.info(
                f"Invoice run {run.run_number} started: {len(leases)} leases "
                f"({period_start} to {period_end})"
            )

            semaphore = asyncio.Semaphore(self._max_concurrency)
            outcomes = await asyncio.gather(
                *(
                    self._process_lease(run, lease, period_start, period_end, semaphore, event)
                    for lease in leases
                )
            )
        except Exception as e:
            logger.error(f"Invoice run {run.run_number} failed: {e}", exc_info=True)
            await self._run_repo.model.filter(id=run.id).update(
                status=InvoiceRunStatus.FAILED,
                completed_at=timezone.now(),
                error_message=str(e),
            )
            raise
        finally:
            self._cancel_events.pop(run.id, None)

        items = [item for item in outcomes if item is not None]
        success_count = sum(1 for item in items if item.is_success)
        failure_count = len(items) - success_count
        cancelled = event.is_set() and len(items) < len(leases)
        status = self._final_status(success_count, failure_count, cancelled)
        errors = [item.error_message for item in items if not item.is_success]

        await self._run_repo.model.filter(id=run.id).update(
            status=status,
            completed_at=timezone.now(),
            success_count=success_count,
            failure_count=failure_count,
            error_message="; ".join(errors[:MAX_REPORTED_ERRORS]) or None,
        )
        run = await self._run_repo.get_required(run.id)
        logger.info(
            f"Invoice run {run.run_number} finished with status {status.value}: "
            f"{success_count} succeeded, {failure_count} failed"
        )
        return run

    async def get_run(self, run_id: UUID) -> InvoiceRun:
        run = await self._run_repo.get_with_items(run_id)
        if run is None:
            raise NotFoundError("InvoiceRun", run_id)
        return run

    def cancel(self, run_id: UUID) -> bool:
        """Requests cancellation of a run in progress. False if it is not running."""
        event = self._cancel_events.get(run_id)
        if event is None:
            return False
        event.set()
        logger.info(f"Cancellation requested for invoice run {run_id}")
        return True

    @staticmethod
    def _final_status(
        success_count: int, failure_count: int, cancelled: bool
    ) -> InvoiceRunStatus:
        if cancelled:
            return InvoiceRunStatus.CANCELLED
        if failure_count == 0:
            return InvoiceRunStatus.COMPLETED
        if success_count == 0:
            return InvoiceRunStatus.FAILED
        return InvoiceRunStatus.COMPLETED_WITH_ERRORS

    async def _opted_in(self, leases: list[Lease]) -> list[Lease]:
        opted_out = set(
            await LeaseBillingSetting.filter(
                lease_id__in=[lease.id for lease in leases],
                generate_automatically=False,
            ).values_list("lease_id", flat=True)
        )
        return [lease for lease in leases if lease.id not in opted_out]

    async def _process_lease(
        self,
        run: InvoiceRun,
        lease: Lease,
        period_start: date,
        period_end: date,
        semaphore: asyncio.Semaphore,
        cancel_event: asyncio.Event,
    ) -> InvoiceRunItem | None:
        async with semaphore:
            if cancel_event.is_set():
                return None
            try:
                invoice = await self._generator.generate(lease.id, period_start, period_end)
            except BillingError as e:
                logger.warning(
                    f"Run {run.run_number}: lease {lease.lease_number} skipped: {e.message}"
                )
                return await self._run_repo.add_item(
                    invoice_run_id=run.id,
                    lease_id=lease.id,
                    is_success=False,
                    error_message=f"{lease.lease_number}: {e.message}",
                    processed_at=timezone.now(),
                )
            except Exception as e:
                logger.error(
                    f"Run {run.run_number}: lease {lease.lease_number} failed: {e}",
                    exc_info=True,
                )
                return await self._run_repo.add_item(
                    invoice_run_id=run.id,
                    lease_id=lease.id,
                    is_success=False,
                    error_message=f"{lease.lease_number}: unexpected error: {e}",
                    processed_at=timezone.now(),
                )
            return await self._run_repo.add_item(
                invoice_run_id=run.id,
                lease_id=lease.id,
                invoice_id=invoice.id,
                is_success=True,
                processed_at=timezone.now(),
            )
