"""Tests for the result-returning BillingApi surface."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from factories import make_lease, make_rate_plan
from leasebill.core.models import (
    CreditNoteReason,
    InvoiceLine,
    InvoiceRunStatus,
    InvoiceStatus,
    UtilityType,
)
from leasebill.services.api import BillingApi, BillingServices
from leasebill.services.credit_notes import CreditLineRequest

JAN_START = date(2025, 1, 1)
JAN_END = date(2025, 1, 31)


@pytest.fixture
def api(services: BillingServices) -> BillingApi:
    return BillingApi(services)


@pytest.mark.asyncio
async def test_invoice_flow_through_api(api: BillingApi, org):
    lease = await make_lease(org)

    generated = await api.generate_invoice(lease.id, JAN_START, JAN_END)
    assert generated.is_success
    issued = await api.issue_invoice(generated.value.id)
    assert issued.is_success
    paid = await api.apply_payment(issued.value.id, Decimal("10000"))

    assert paid.is_success
    assert paid.value.status == InvoiceStatus.PAID
    loaded = await api.get_invoice(paid.value.id, today=date(2025, 3, 1))
    assert loaded.value.displayed_status == InvoiceStatus.PAID
    assert loaded.value.balance_amount == Decimal("0")


@pytest.mark.asyncio
async def test_regenerating_issued_invoice_returns_error_code(api: BillingApi, org):
    lease = await make_lease(org)
    draft = await api.generate_invoice(lease.id, JAN_START, JAN_END)
    await api.issue_invoice(draft.value.id)

    result = await api.generate_invoice(lease.id, JAN_START, JAN_END)

    assert not result.is_success
    assert result.value is None
    assert result.error_code == "AlreadyIssued"
    assert "Cannot regenerate issued invoice" in result.error_message


@pytest.mark.asyncio
async def test_unknown_invoice_is_not_found(api: BillingApi):
    result = await api.get_invoice(uuid4())

    assert result.error_code == "NotFound"


@pytest.mark.asyncio
async def test_void_after_payment_is_refused(api: BillingApi, org):
    lease = await make_lease(org)
    draft = await api.generate_invoice(lease.id, JAN_START, JAN_END)
    await api.issue_invoice(draft.value.id)
    await api.apply_payment(draft.value.id, Decimal("500"))

    result = await api.void_invoice(draft.value.id, "Duplicate")

    assert result.error_code == "CannotVoidPaid"


@pytest.mark.asyncio
async def test_credit_beyond_balance_is_refused(api: BillingApi, org):
    lease = await make_lease(org)
    draft = await api.generate_invoice(lease.id, JAN_START, JAN_END)
    await api.issue_invoice(draft.value.id)
    await api.apply_payment(draft.value.id, Decimal("9000"))
    line = await InvoiceLine.get(invoice_id=draft.value.id)

    result = await api.create_credit_note(
        draft.value.id,
        CreditNoteReason.DISCOUNT,
        [CreditLineRequest(line.id, Decimal("1500"))],
    )

    assert result.error_code == "CreditExceedsBalance"

    allowed = await api.create_credit_note(
        draft.value.id,
        CreditNoteReason.DISCOUNT,
        [CreditLineRequest(line.id, Decimal("1000"))],
    )
    applied = await api.apply_credit_note(allowed.value.id)
    assert applied.is_success
    assert applied.value.applied_at is not None


@pytest.mark.asyncio
async def test_utility_statement_through_api(api: BillingApi, org):
    lease = await make_lease(org)
    plan = await make_rate_plan(org, UtilityType.ELECTRICITY)

    recorded = await api.record_utility_statement(
        lease.id,
        UtilityType.ELECTRICITY,
        date(2024, 12, 1),
        date(2024, 12, 31),
        previous_reading=Decimal("1000"),
        current_reading=Decimal("1250"),
        rate_plan_id=plan.id,
    )
    assert recorded.is_success
    assert recorded.value.total_amount == Decimal("950.00")

    finalized = await api.finalize_utility_statement(recorded.value.id)
    assert finalized.value.is_final

    backwards = await api.revise_utility_statement(
        recorded.value.id, current_reading=Decimal("900")
    )
    assert backwards.error_code == "InvalidReading"


@pytest.mark.asyncio
async def test_run_through_api(api: BillingApi, org):
    await make_lease(org, "L-001")
    await make_lease(org, "L-002", with_settings=False)

    result = await api.run_invoices(org.id, JAN_START, JAN_END)

    assert result.is_success
    assert result.value.status == InvoiceRunStatus.COMPLETED_WITH_ERRORS
    loaded = await api.get_run(result.value.id)
    assert loaded.value.failure_count == 1
    assert api.cancel_run(result.value.id) is False


@pytest.mark.asyncio
async def test_draft_edits_through_api(api: BillingApi, org):
    lease = await make_lease(org)
    draft = await api.generate_invoice(lease.id, JAN_START, JAN_END)
    version = draft.value.row_version

    updated = await api.update_draft(draft.value.id, version, notes="Deliver by hand")
    stale = await api.update_draft(draft.value.id, version, notes="Email it")

    assert updated.is_success
    assert updated.value.notes == "Deliver by hand"
    assert updated.value.row_version == version + 1
    assert stale.error_code == "ConcurrencyConflict"

    deleted = await api.delete_draft(draft.value.id)
    assert deleted.is_success
    assert (await api.get_invoice(draft.value.id)).error_code == "NotFound"


@pytest.mark.asyncio
async def test_issued_invoice_cannot_be_deleted_through_api(api: BillingApi, org):
    lease = await make_lease(org)
    draft = await api.generate_invoice(lease.id, JAN_START, JAN_END)
    await api.issue_invoice(draft.value.id)

    result = await api.delete_draft(draft.value.id)

    assert result.error_code == "Immutable"


@pytest.mark.asyncio
async def test_statement_update_through_api(api: BillingApi, org):
    lease = await make_lease(org)
    recorded = await api.record_utility_statement(
        lease.id,
        UtilityType.WATER,
        date(2024, 12, 1),
        date(2024, 12, 31),
        direct_bill_amount=Decimal("400"),
    )

    updated = await api.update_utility_statement(
        recorded.value.id,
        recorded.value.row_version,
        direct_bill_amount=Decimal("425"),
    )
    assert updated.is_success
    assert updated.value.total_amount == Decimal("425.00")

    await api.finalize_utility_statement(recorded.value.id)
    sealed = await api.update_utility_statement(
        recorded.value.id, updated.value.row_version, direct_bill_amount=Decimal("450")
    )
    assert sealed.error_code == "Immutable"
