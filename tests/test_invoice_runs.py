"""Tests for the InvoiceRunOrchestrator."""

from datetime import date
from decimal import Decimal

import pytest

from factories import make_lease
from leasebill.core.errors import NotFoundError
from leasebill.core.models import (
    Invoice,
    InvoiceRun,
    InvoiceRunItem,
    InvoiceRunStatus,
    InvoiceStatus,
    LeaseStatus,
)
from leasebill.core.repositories.invoice_run import InvoiceRunRepository
from leasebill.core.repositories.lease import LeaseRepository, OrganizationRepository
from leasebill.services.api import BillingServices
from leasebill.services.invoice_runs import InvoiceRunOrchestrator

JAN_START = date(2025, 1, 1)
JAN_END = date(2025, 1, 31)


class CancelAfterFirstGenerator:
    """Generates normally, then asks the orchestrator to stop the run."""

    def __init__(self, inner, orchestrator_ref: list):
        self._inner = inner
        self._orchestrator_ref = orchestrator_ref

    async def generate(self, lease_id, period_start, period_end):
        invoice = await self._inner.generate(lease_id, period_start, period_end)
        run = await InvoiceRun.get(status=InvoiceRunStatus.IN_PROGRESS)
        assert self._orchestrator_ref[0].cancel(run.id)
        return invoice


@pytest.mark.asyncio
async def test_run_isolates_failing_leases(services: BillingServices, org):
    """Five leases, two without billing settings."""
    # --- Arrange ---
    for number in range(1, 6):
        await make_lease(org, f"L-00{number}", with_settings=number not in (2, 4))

    # --- Act ---
    run = await services.runs.execute(org.id, JAN_START, JAN_END)

    # --- Assert ---
    assert run.status == InvoiceRunStatus.COMPLETED_WITH_ERRORS
    assert (run.total_leases, run.success_count, run.failure_count) == (5, 3, 2)
    assert run.started_at is not None
    assert run.completed_at is not None
    assert "L-002" in run.error_message and "L-004" in run.error_message

    invoices = await Invoice.filter(organization_id=org.id)
    assert len(invoices) == 3
    assert all(i.status == InvoiceStatus.DRAFT for i in invoices)
    assert all(i.total_amount == Decimal("10000.00") for i in invoices)

    items = await InvoiceRunItem.filter(invoice_run_id=run.id)
    assert len(items) == 5
    assert sum(1 for item in items if item.is_success and item.invoice_id) == 3


@pytest.mark.asyncio
async def test_run_with_no_leases_completes(services: BillingServices, org):
    run = await services.runs.execute(org.id, JAN_START, JAN_END)

    assert run.status == InvoiceRunStatus.COMPLETED
    assert (run.total_leases, run.success_count, run.failure_count) == (0, 0, 0)
    assert run.run_number.startswith("RUN-202501-")
    assert len(run.run_number) == len("RUN-202501-") + 8


@pytest.mark.asyncio
async def test_run_where_every_lease_fails(services: BillingServices, org):
    await make_lease(org, "L-001", with_settings=False)
    await make_lease(org, "L-002", rent=None)

    run = await services.runs.execute(org.id, JAN_START, JAN_END)

    assert run.status == InvoiceRunStatus.FAILED
    assert run.failure_count == 2


@pytest.mark.asyncio
async def test_run_only_includes_active_leases_in_period(services: BillingServices, org):
    await make_lease(org, "L-001")
    await make_lease(org, "L-002", status=LeaseStatus.DRAFT)
    await make_lease(org, "L-003", start_date=date(2024, 1, 1), end_date=date(2024, 12, 31))
    await make_lease(org, "L-004", start_date=date(2025, 2, 1))

    run = await services.runs.execute(org.id, JAN_START, JAN_END)

    assert run.total_leases == 1
    assert run.status == InvoiceRunStatus.COMPLETED


@pytest.mark.asyncio
async def test_automatic_run_skips_opted_out_leases(services: BillingServices, org):
    await make_lease(org, "L-001")
    await make_lease(org, "L-002", generate_automatically=False)

    run = await services.runs.execute(org.id, JAN_START, JAN_END, automatic=True)

    assert run.total_leases == 1
    assert run.success_count == 1


@pytest.mark.asyncio
async def test_rerun_after_issue_reports_already_issued(services: BillingServices, org):
    lease = await make_lease(org)
    draft = await services.generator.generate(lease.id, JAN_START, JAN_END)
    await services.lifecycle.issue(draft.id)

    run = await services.runs.execute(org.id, JAN_START, JAN_END)

    assert run.status == InvoiceRunStatus.FAILED
    assert "Cannot regenerate issued invoice" in run.error_message


@pytest.mark.asyncio
async def test_cancelled_run_keeps_processed_results(services: BillingServices, org):
    # --- Arrange ---
    for number in range(1, 4):
        await make_lease(org, f"L-00{number}")
    orchestrator_ref: list = []
    orchestrator = InvoiceRunOrchestrator(
        org_repo=OrganizationRepository(),
        lease_repo=LeaseRepository(),
        run_repo=InvoiceRunRepository(),
        generator=CancelAfterFirstGenerator(services.generator, orchestrator_ref),
        max_concurrency=1,
    )
    orchestrator_ref.append(orchestrator)

    # --- Act ---
    run = await orchestrator.execute(org.id, JAN_START, JAN_END)

    # --- Assert ---
    assert run.status == InvoiceRunStatus.CANCELLED
    assert run.total_leases == 3
    assert run.success_count == 1
    assert await Invoice.filter(organization_id=org.id).count() == 1
    assert orchestrator.cancel(run.id) is False


@pytest.mark.asyncio
async def test_get_run_returns_items(services: BillingServices, org):
    await make_lease(org)
    run = await services.runs.execute(org.id, JAN_START, JAN_END)

    loaded = await services.runs.get_run(run.id)

    assert loaded.id == run.id
    assert len(list(loaded.items)) == 1


@pytest.mark.asyncio
async def test_run_for_unknown_organization(services: BillingServices, org):
    await org.delete()

    with pytest.raises(NotFoundError):
        await services.runs.execute(org.id, JAN_START, JAN_END)
