"""The exposed billing surface: every operation returns an ``OperationResult``."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Generic, TypeVar
from uuid import UUID

from leasebill.core.errors import BillingError
from leasebill.core.models import (
    CreditNote,
    CreditNoteReason,
    Invoice,
    InvoiceLine,
    InvoiceRun,
    UtilityStatement,
    UtilityType,
)
from leasebill.core.repositories.charge import (
    ChargeTypeRepository,
    RecurringChargeRepository,
)
from leasebill.core.repositories.credit_note import CreditNoteRepository
from leasebill.core.repositories.invoice import InvoiceRepository
from leasebill.core.repositories.invoice_run import InvoiceRunRepository
from leasebill.core.repositories.lease import (
    BillingSettingRepository,
    LeaseRepository,
    OrganizationRepository,
)
from leasebill.core.repositories.sequence import NumberSequenceRepository
from leasebill.core.repositories.utility import (
    UtilityRatePlanRepository,
    UtilityStatementRepository,
)
from leasebill.services.billing import InvoiceGenerator
from leasebill.services.charges import ChargeAggregator
from leasebill.services.credit_notes import CreditLineRequest, CreditNoteService
from leasebill.services.invoice_runs import InvoiceRunOrchestrator
from leasebill.services.lifecycle import InvoiceLifecycle, InvoiceSnapshot
from leasebill.services.utility import UtilityRateEngine

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    """Outcome of an API call: a value, or an error code and message."""

    is_success: bool
    value: T | None = None
    error_code: str | None = None
    error_message: str | None = None

    @classmethod
    def ok(cls, value: T) -> OperationResult[T]:
        return cls(is_success=True, value=value)

    @classmethod
    def fail(cls, error: BillingError) -> OperationResult[T]:
        return cls(is_success=False, error_code=error.code, error_message=error.message)


async def _call(operation: str, awaitable: Awaitable[T]) -> OperationResult[T]:
    try:
        return OperationResult.ok(await awaitable)
    except BillingError as e:
        logger.info(f"{operation} rejected ({e.code}): {e.message}")
        return OperationResult.fail(e)


@dataclass
class BillingServices:
    """The wired service graph behind ``BillingApi``."""

    utility: UtilityRateEngine
    aggregator: ChargeAggregator
    generator: InvoiceGenerator
    lifecycle: InvoiceLifecycle
    credit_notes: CreditNoteService
    runs: InvoiceRunOrchestrator
    org_repo: OrganizationRepository
    invoice_repo: InvoiceRepository

    @classmethod
    def build(cls, max_concurrency: int | None = None) -> BillingServices:
        org_repo = OrganizationRepository()
        lease_repo = LeaseRepository()
        setting_repo = BillingSettingRepository()
        charge_type_repo = ChargeTypeRepository()
        statement_repo = UtilityStatementRepository()
        invoice_repo = InvoiceRepository()
        sequence_repo = NumberSequenceRepository()

        aggregator = ChargeAggregator(
            lease_repo=lease_repo,
            charge_repo=RecurringChargeRepository(),
            charge_type_repo=charge_type_repo,
            statement_repo=statement_repo,
        )
        generator = InvoiceGenerator(
            lease_repo=lease_repo,
            setting_repo=setting_repo,
            invoice_repo=invoice_repo,
            statement_repo=statement_repo,
            charge_type_repo=charge_type_repo,
            aggregator=aggregator,
        )
        lifecycle = InvoiceLifecycle(
            invoice_repo=invoice_repo,
            sequence_repo=sequence_repo,
            setting_repo=setting_repo,
            statement_repo=statement_repo,
        )
        return cls(
            utility=UtilityRateEngine(UtilityRatePlanRepository(), statement_repo),
            aggregator=aggregator,
            generator=generator,
            lifecycle=lifecycle,
            credit_notes=CreditNoteService(
                credit_note_repo=CreditNoteRepository(),
                invoice_repo=invoice_repo,
                sequence_repo=sequence_repo,
                lifecycle=lifecycle,
            ),
            runs=InvoiceRunOrchestrator(
                org_repo=org_repo,
                lease_repo=lease_repo,
                run_repo=InvoiceRunRepository(),
                generator=generator,
                max_concurrency=max_concurrency,
            ),
            org_repo=org_repo,
            invoice_repo=invoice_repo,
        )


class BillingApi:
    """
    Entry point for callers outside the engine.

    Business-rule and validation failures come back as failed results with
    the error's code; infrastructure exceptions propagate.
    """

    def __init__(self, services: BillingServices | None = None):
        self.services = services or BillingServices.build()

    async def generate_invoice(
        self,
        lease_id: UUID,
        period_start: date,
        period_end: date,
        invoice_date: date | None = None,
    ) -> OperationResult[Invoice]:
        return await _call(
            "Generate",
            self.services.generator.generate(
                lease_id, period_start, period_end, invoice_date
            ),
        )

    async def add_manual_line(
        self,
        invoice_id: UUID,
        charge_type_id: UUID,
        description: str,
        unit_price: Decimal,
        quantity: Decimal = Decimal("1"),
    ) -> OperationResult[InvoiceLine]:
        return await _call(
            "AddManualLine",
            self.services.generator.add_manual_line(
                invoice_id, charge_type_id, description, unit_price, quantity
            ),
        )

    async def update_draft(
        self,
        invoice_id: UUID,
        expected_row_version: int,
        *,
        invoice_date: date | None = None,
        due_date: date | None = None,
        notes: str | None = None,
    ) -> OperationResult[Invoice]:
        return await _call(
            "UpdateDraft",
            self.services.lifecycle.update_draft(
                invoice_id,
                expected_row_version,
                invoice_date=invoice_date,
                due_date=due_date,
                notes=notes,
            ),
        )

    async def delete_draft(self, invoice_id: UUID) -> OperationResult[None]:
        return await _call("DeleteDraft", self.services.lifecycle.delete_draft(invoice_id))

    async def issue_invoice(
        self, invoice_id: UUID, expected_row_version: int | None = None
    ) -> OperationResult[Invoice]:
        return await _call(
            "Issue", self.services.lifecycle.issue(invoice_id, expected_row_version)
        )

    async def apply_payment(
        self,
        invoice_id: UUID,
        amount: Decimal,
        expected_row_version: int | None = None,
    ) -> OperationResult[Invoice]:
        return await _call(
            "ApplyPayment",
            self.services.lifecycle.apply_payment(invoice_id, amount, expected_row_version),
        )

    async def void_invoice(
        self, invoice_id: UUID, reason: str, expected_row_version: int | None = None
    ) -> OperationResult[Invoice]:
        return await _call(
            "Void", self.services.lifecycle.void(invoice_id, reason, expected_row_version)
        )

    async def write_off_invoice(
        self, invoice_id: UUID, reason: str, expected_row_version: int | None = None
    ) -> OperationResult[Invoice]:
        return await _call(
            "WriteOff",
            self.services.lifecycle.write_off(invoice_id, reason, expected_row_version),
        )

    async def get_invoice(
        self, invoice_id: UUID, today: date | None = None
    ) -> OperationResult[InvoiceSnapshot]:
        async def load() -> InvoiceSnapshot:
            invoice = await self.services.invoice_repo.get_required(invoice_id)
            return await self.services.lifecycle.snapshot(invoice, today)

        return await _call("GetInvoice", load())

    async def list_overdue(
        self, org_id: UUID, today: date | None = None
    ) -> OperationResult[list[InvoiceSnapshot]]:
        return await _call("ListOverdue", self.services.lifecycle.list_overdue(org_id, today))

    async def create_credit_note(
        self,
        invoice_id: UUID,
        reason: CreditNoteReason,
        lines: Sequence[CreditLineRequest],
        notes: str | None = None,
    ) -> OperationResult[CreditNote]:
        return await _call(
            "CreateCreditNote",
            self.services.credit_notes.create(invoice_id, reason, lines, notes),
        )

    async def apply_credit_note(self, credit_note_id: UUID) -> OperationResult[CreditNote]:
        return await _call(
            "ApplyCreditNote", self.services.credit_notes.apply(credit_note_id)
        )

    async def run_invoices(
        self, org_id: UUID, period_start: date, period_end: date
    ) -> OperationResult[InvoiceRun]:
        return await _call(
            "InvoiceRun", self.services.runs.execute(org_id, period_start, period_end)
        )

    async def get_run(self, run_id: UUID) -> OperationResult[InvoiceRun]:
        return await _call("GetRun", self.services.runs.get_run(run_id))

    def cancel_run(self, run_id: UUID) -> bool:
        return self.services.runs.cancel(run_id)

    async def record_utility_statement(
        self,
        lease_id: UUID,
        utility_type: UtilityType,
        period_start: date,
        period_end: date,
        **inputs,
    ) -> OperationResult[UtilityStatement]:
        return await _call(
            "RecordStatement",
            self.services.utility.record_statement(
                lease_id, utility_type, period_start, period_end, **inputs
            ),
        )

    async def update_utility_statement(
        self, statement_id: UUID, expected_row_version: int, **inputs
    ) -> OperationResult[UtilityStatement]:
        return await _call(
            "UpdateStatement",
            self.services.utility.update_statement(
                statement_id, expected_row_version, **inputs
            ),
        )

    async def finalize_utility_statement(
        self, statement_id: UUID
    ) -> OperationResult[UtilityStatement]:
        return await _call("FinalizeStatement", self.services.utility.finalize(statement_id))

    async def revise_utility_statement(
        self, statement_id: UUID, **inputs
    ) -> OperationResult[UtilityStatement]:
        return await _call(
            "ReviseStatement", self.services.utility.revise(statement_id, **inputs)
        )
