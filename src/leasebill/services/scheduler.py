"""Service for scheduling background jobs."""

from __future__ import annotations

import logging
from datetime import date

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from leasebill.config import settings
from leasebill.core.dates import resolve_billing_period
from leasebill.core.models import RentTiming
from leasebill.core.repositories.lease import OrganizationRepository
from leasebill.services.invoice_runs import InvoiceRunOrchestrator
from leasebill.services.lifecycle import InvoiceLifecycle

logger = logging.getLogger(__name__)


class SchedulerService:
    """Manages scheduled tasks for the application."""

    def __init__(
        self,
        orchestrator: InvoiceRunOrchestrator,
        lifecycle: InvoiceLifecycle,
        org_repo: OrganizationRepository,
        scheduler: AsyncIOScheduler,
    ):
        self._orchestrator = orchestrator
        self._lifecycle = lifecycle
        self._org_repo = org_repo
        self._scheduler = scheduler

    def start(self):
        """Starts the scheduler and adds jobs."""
        logger.info("Starting scheduler...")
        self._scheduler.add_job(
            self.run_monthly_invoices,
            trigger=CronTrigger(
                day=settings.INVOICE_RUN_DAY, hour=settings.INVOICE_RUN_HOUR, minute=0
            ),
            id="monthly_invoice_run",
            replace_existing=True,
        )
        self._scheduler.add_job(
            self.report_overdue,
            trigger=CronTrigger(hour=settings.OVERDUE_SCAN_HOUR, minute=0),
            id="overdue_report",
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info("Scheduler started.")

    def shutdown(self):
        self._scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped.")

    async def run_monthly_invoices(self, run_date: date | None = None):
        """
        Runs automatic invoice generation for every organization.

        The billed month follows ``AUTOMATIC_RUN_TIMING``: the next month for
        advance billing, the previous one for arrears.
        """
        run_date = run_date or date.today()
        period_start, period_end = resolve_billing_period(
            run_date, RentTiming(settings.AUTOMATIC_RUN_TIMING)
        )
        logger.info(f"Starting monthly invoice run for {period_start} to {period_end}.")

        for org in await self._org_repo.all():
            try:
                run = await self._orchestrator.execute(
                    org.id, period_start, period_end, automatic=True
                )
                logger.info(
                    f"Organization {org.name}: run {run.run_number} "
                    f"{run.status.value} ({run.success_count}/{run.total_leases})"
                )
            except Exception as e:
                logger.error(
                    f"Failed invoice run for organization {org.id}: {e}",
                    exc_info=True,
                )
        logger.info("Monthly invoice run finished.")

    async def report_overdue(self, today: date | None = None):
        """Logs the overdue invoices of every organization."""
        today = today or date.today()
        for org in await self._org_repo.all():
            try:
                overdue = await self._lifecycle.list_overdue(org.id, today)
            except Exception as e:
                logger.error(
                    f"Failed overdue scan for organization {org.id}: {e}",
                    exc_info=True,
                )
                continue
            for snapshot in overdue:
                logger.warning(
                    f"Organization {org.name}: invoice {snapshot.invoice_number} "
                    f"overdue since {snapshot.due_date}, balance {snapshot.balance_amount}"
                )
            logger.info(f"Organization {org.name}: {len(overdue)} overdue invoices.")
