from datetime import date
from decimal import Decimal

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from factories import make_lease
from leasebill.core.errors import ConcurrencyConflictError, NotFoundError
from leasebill.core.models import ChargeType, Invoice, SequenceKind
from leasebill.core.repositories.charge import ChargeTypeRepository, seed_charge_types
from leasebill.core.repositories.invoice import InvoiceRepository
from leasebill.core.repositories.lease import LeaseRepository
from leasebill.core.repositories.sequence import (
    NumberSequenceRepository,
    format_document_number,
)
from leasebill.services.api import BillingServices
from leasebill.services.scheduler import SchedulerService


@pytest.mark.asyncio
async def test_sequence_values_are_scoped(org):
    repo = NumberSequenceRepository()

    values = [
        await repo.next_value(org.id, SequenceKind.INVOICE, "202501"),
        await repo.next_value(org.id, SequenceKind.INVOICE, "202501"),
        await repo.next_value(org.id, SequenceKind.CREDIT_NOTE, "202501"),
        await repo.next_value(org.id, SequenceKind.INVOICE, "202502"),
        await repo.next_value(org.id, SequenceKind.INVOICE, "202501"),
    ]

    assert values == [1, 2, 1, 1, 3]


def test_format_document_number():
    assert format_document_number("INV", date(2025, 1, 9), 42) == "INV-202501-000042"


@pytest.mark.asyncio
async def test_update_versioned_detects_stale_writes(services: BillingServices, org):
    lease = await make_lease(org)
    invoice = await services.generator.generate(lease.id, date(2025, 1, 1), date(2025, 1, 31))
    repo = InvoiceRepository()
    first_reader = await repo.get(invoice.id)
    second_reader = await repo.get(invoice.id)

    await repo.update_versioned(first_reader, first_reader.row_version, notes="first")
    with pytest.raises(ConcurrencyConflictError, match="modified by another process"):
        await repo.update_versioned(second_reader, second_reader.row_version, notes="second")

    stored = await Invoice.get(id=invoice.id)
    assert stored.notes == "first"
    assert stored.row_version == 2


@pytest.mark.asyncio
async def test_get_required_raises_not_found(org):
    with pytest.raises(NotFoundError):
        await LeaseRepository().get_required(org.id)


@pytest.mark.asyncio
async def test_seed_charge_types_is_idempotent():
    # The autouse fixture already seeded once
    assert await seed_charge_types() == 0
    assert await ChargeType.filter(organization_id=None, is_system=True).count() == 7


@pytest.mark.asyncio
async def test_organization_charge_type_wins_over_system(org):
    repo = ChargeTypeRepository()
    own = await ChargeType.create(
        organization=org,
        code="MAINT",
        name="Society maintenance",
        is_taxable=True,
        default_tax_rate=Decimal("12"),
    )

    assert (await repo.get_by_code("MAINT", org.id)).id == own.id
    system = await repo.get_by_code("MAINT", None)
    assert system.id != own.id
    assert system.is_system


@pytest.mark.asyncio
async def test_active_leases_for_period(org):
    await make_lease(org, "L-002")
    await make_lease(org, "L-001", start_date=date(2025, 1, 20))
    await make_lease(org, "L-003", start_date=date(2025, 2, 1))

    leases = await LeaseRepository().active_for_period(
        org.id, date(2025, 1, 1), date(2025, 1, 31)
    )

    assert [lease.lease_number for lease in leases] == ["L-001", "L-002"]


@pytest.mark.asyncio
async def test_scheduler_runs_monthly_job(caplog, services: BillingServices, org):
    """Smoke test: the scheduler drives an invoice run without errors."""
    await make_lease(org)
    service = SchedulerService(
        services.runs, services.lifecycle, services.org_repo, AsyncIOScheduler()
    )

    caplog.set_level("INFO")
    await service.run_monthly_invoices(run_date=date(2024, 12, 25))

    assert "Monthly invoice run finished." in caplog.text
    assert "completed (1/1)" in caplog.text
    invoice = await Invoice.get(organization_id=org.id)
    assert (invoice.billing_period_start, invoice.billing_period_end) == (
        date(2025, 1, 1),
        date(2025, 1, 31),
    )


@pytest.mark.asyncio
async def test_scheduler_reports_overdue(caplog, services: BillingServices, org):
    lease = await make_lease(org)
    draft = await services.generator.generate(lease.id, date(2025, 1, 1), date(2025, 1, 31))
    issued = await services.lifecycle.issue(draft.id)
    service = SchedulerService(
        services.runs, services.lifecycle, services.org_repo, AsyncIOScheduler()
    )

    caplog.set_level("INFO")
    await service.report_overdue(today=date(2025, 2, 1))

    assert f"invoice {issued.invoice_number} overdue" in caplog.text
    assert "1 overdue invoices." in caplog.text
