"""Invoice state machine: issue, pay, void, write off."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from tortoise import timezone
from tortoise.transactions import in_transaction

from leasebill.config import settings
from leasebill.core.calculations import ZERO
from leasebill.core.errors import (
    BusinessRuleError,
    CannotVoidPaidError,
    ImmutableError,
    InvalidTransitionError,
    PaymentExceedsBalanceError,
    ValidationError,
)
from leasebill.core.models import Invoice, InvoiceStatus, SequenceKind
from leasebill.core.repositories.invoice import InvoiceRepository
from leasebill.core.repositories.lease import BillingSettingRepository
from leasebill.core.repositories.sequence import (
    NumberSequenceRepository,
    format_document_number,
)
from leasebill.core.repositories.utility import UtilityStatementRepository

logger = logging.getLogger(__name__)

_PAYABLE = (InvoiceStatus.ISSUED, InvoiceStatus.PARTIALLY_PAID)
_OPEN = (InvoiceStatus.ISSUED, InvoiceStatus.PARTIALLY_PAID, InvoiceStatus.PAID)


@dataclass(frozen=True)
class InvoiceSnapshot:
    """An invoice as a reader sees it, with derived balance and status."""

    invoice_id: UUID
    invoice_number: str | None
    stored_status: InvoiceStatus
    displayed_status: InvoiceStatus
    due_date: date
    total_amount: Decimal
    paid_amount: Decimal
    applied_credit_total: Decimal
    balance_amount: Decimal
    is_overdue: bool
    is_credit_settled: bool


class InvoiceLifecycle:
    """Moves invoices through their states; never touches billed content."""

    def __init__(
        self,
        invoice_repo: InvoiceRepository,
        sequence_repo: NumberSequenceRepository,
        setting_repo: BillingSettingRepository,
        statement_repo: UtilityStatementRepository,
    ):
        self._invoice_repo = invoice_repo
        self._sequence_repo = sequence_repo
        self._setting_repo = setting_repo
        self._statement_repo = statement_repo

    @staticmethod
    def ensure_mutable(invoice: Invoice) -> None:
        """Raises ``ImmutableError`` unless the invoice is still a draft."""
        if InvoiceStatus(invoice.status) != InvoiceStatus.DRAFT:
            raise ImmutableError(
                f"Invoice {invoice.invoice_number} is {invoice.status.value} "
                "and cannot be changed"
            )

    async def balance(self, invoice: Invoice) -> Decimal:
        """Total minus payments minus applied credit notes."""
        credited = await self._invoice_repo.applied_credit_total(invoice.id)
        return invoice.total_amount - invoice.paid_amount - credited

    async def issue(
        self, invoice_id: UUID, expected_row_version: int | None = None
    ) -> Invoice:
        """
        Issues a draft: assigns its number and freezes its content.

        The number is ``{prefix}-{yyyyMM}-{seq}`` where the month is taken
        from the invoice date and the sequence is allocated atomically per
        organization and month.
        """
        async with in_transaction():
            invoice = await self._invoice_repo.get_required(invoice_id)
            version = expected_row_version or invoice.row_version
            if InvoiceStatus(invoice.status) != InvoiceStatus.DRAFT:
                raise InvalidTransitionError(
                    f"Invoice cannot be issued. Current status: {invoice.status.value}. "
                    "Only draft invoices can be issued."
                )
            lines = await self._invoice_repo.lines(invoice.id)
            if not lines:
                raise BusinessRuleError("Invoice cannot be issued without line items")
            if invoice.total_amount <= ZERO:
                raise BusinessRuleError(
                    "Invoice cannot be issued with zero or negative total amount"
                )

            setting = await self._setting_repo.get_for_lease(invoice.lease_id)
            prefix = (setting and setting.invoice_prefix) or settings.DEFAULT_INVOICE_PREFIX
            sequence = await self._sequence_repo.next_value(
                invoice.organization_id,
                SequenceKind.INVOICE,
                f"{invoice.invoice_date:%Y%m}",
            )
            invoice = await self._invoice_repo.update_versioned(
                invoice,
                version,
                status=InvoiceStatus.ISSUED,
                invoice_number=format_document_number(
                    prefix, invoice.invoice_date, sequence
                ),
                issued_at=timezone.now(),
            )
        logger.info(f"Issued invoice {invoice.invoice_number} ({invoice.total_amount})")
        return invoice

    async def apply_payment(
        self,
        invoice_id: UUID,
        amount: Decimal,
        expected_row_version: int | None = None,
    ) -> Invoice:
        """Records a payment against an issued invoice."""
        if amount <= ZERO:
            raise ValidationError("Payment amount must be positive")

        async with in_transaction():
            invoice = await self._invoice_repo.get_required(invoice_id)
            version = expected_row_version or invoice.row_version
            status = InvoiceStatus(invoice.status)
            if status not in _PAYABLE:
                raise InvalidTransitionError(
                    f"Cannot record a payment on a {status.value} invoice"
                )
            balance = await self.balance(invoice)
            if amount > balance:
                raise PaymentExceedsBalanceError(amount, balance)

            paid_amount = invoice.paid_amount + amount
            changes: dict = {"paid_amount": paid_amount}
            if paid_amount >= invoice.total_amount:
                changes["status"] = InvoiceStatus.PAID
                changes["paid_at"] = timezone.now()
            else:
                changes["status"] = InvoiceStatus.PARTIALLY_PAID
            invoice = await self._invoice_repo.update_versioned(invoice, version, **changes)
        logger.info(
            f"Recorded payment of {amount} on invoice {invoice.invoice_number}; "
            f"status {invoice.status.value}"
        )
        return invoice

    async def void(
        self,
        invoice_id: UUID,
        reason: str,
        expected_row_version: int | None = None,
    ) -> Invoice:
        """Cancels an issued invoice that has no payments and frees its utility statements."""
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to void an invoice")

        async with in_transaction():
            invoice = await self._invoice_repo.get_required(invoice_id)
            version = expected_row_version or invoice.row_version
            status = InvoiceStatus(invoice.status)
            if status == InvoiceStatus.CANCELLED:
                raise InvalidTransitionError("Invoice is already cancelled")
            if invoice.paid_amount > ZERO:
                raise CannotVoidPaidError(invoice.id)
            if status == InvoiceStatus.DRAFT:
                raise InvalidTransitionError(
                    "Draft invoices cannot be voided; delete the draft instead"
                )
            if status != InvoiceStatus.ISSUED:
                raise InvalidTransitionError(
                    f"Cannot void a {status.value} invoice"
                )
            invoice = await self._invoice_repo.update_versioned(
                invoice,
                version,
                status=InvoiceStatus.CANCELLED,
                voided_at=timezone.now(),
                void_reason=reason.strip(),
            )
            # Statements billed here are pending again for the replacement invoice
            lines = await self._invoice_repo.lines(invoice.id)
            released = await self._statement_repo.release_lines([line.id for line in lines])
        logger.info(
            f"Voided invoice {invoice.invoice_number}: {invoice.void_reason}; "
            f"released {released} utility statement(s)"
        )
        return invoice

    async def write_off(
        self,
        invoice_id: UUID,
        reason: str,
        expected_row_version: int | None = None,
    ) -> Invoice:
        """Closes an unpaid balance as uncollectable."""
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to write off an invoice")

        async with in_transaction():
            invoice = await self._invoice_repo.get_required(invoice_id)
            version = expected_row_version or invoice.row_version
            status = InvoiceStatus(invoice.status)
            if status not in _PAYABLE:
                raise InvalidTransitionError(f"Cannot write off a {status.value} invoice")
            if await self.balance(invoice) <= ZERO:
                raise InvalidTransitionError("Invoice has no outstanding balance")
            invoice = await self._invoice_repo.update_versioned(
                invoice,
                version,
                status=InvoiceStatus.WRITTEN_OFF,
                written_off_at=timezone.now(),
                write_off_reason=reason.strip(),
            )
        logger.warning(f"Wrote off invoice {invoice.invoice_number}: {invoice.write_off_reason}")
        return invoice

    async def update_draft(
        self,
        invoice_id: UUID,
        expected_row_version: int,
        *,
        invoice_date: date | None = None,
        due_date: date | None = None,
        notes: str | None = None,
    ) -> Invoice:
        """Edits the header of a draft invoice."""
        invoice = await self._invoice_repo.get_required(invoice_id)
        self.ensure_mutable(invoice)
        changes: dict = {}
        if invoice_date is not None:
            changes["invoice_date"] = invoice_date
        if due_date is not None:
            changes["due_date"] = due_date
        if notes is not None:
            changes["notes"] = notes
        if changes.get("due_date", invoice.due_date) < changes.get(
            "invoice_date", invoice.invoice_date
        ):
            raise ValidationError("Due date cannot be before the invoice date")
        return await self._invoice_repo.update_versioned(
            invoice, expected_row_version, **changes
        )

    async def delete_draft(self, invoice_id: UUID) -> None:
        """Deletes a draft and makes the statements it billed pending again."""
        async with in_transaction():
            invoice = await self._invoice_repo.get_required(invoice_id)
            self.ensure_mutable(invoice)
            lines = await self._invoice_repo.lines(invoice.id)
            await self._statement_repo.release_lines([line.id for line in lines])
            for line in lines:
                await line.delete()
            await invoice.delete()
        logger.info(f"Deleted draft invoice {invoice_id}")

    async def snapshot(self, invoice: Invoice, today: date | None = None) -> InvoiceSnapshot:
        """
        Reads an invoice with its derived fields.

        Overdue is never stored: an issued or partially paid invoice past its
        due date with a positive balance is shown as overdue. An invoice whose
        balance was closed by credit notes is shown as paid even though its
        paid amount is below the total.
        """
        today = today or date.today()
        credited = await self._invoice_repo.applied_credit_total(invoice.id)
        balance = invoice.total_amount - invoice.paid_amount - credited
        stored = InvoiceStatus(invoice.status)

        is_credit_settled = (
            stored in _OPEN
            and balance <= ZERO
            and invoice.paid_amount < invoice.total_amount
        )
        is_overdue = stored in _PAYABLE and balance > ZERO and invoice.due_date < today

        displayed = stored
        if is_credit_settled:
            displayed = InvoiceStatus.PAID
        elif is_overdue:
            displayed = InvoiceStatus.OVERDUE

        return InvoiceSnapshot(
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
            stored_status=stored,
            displayed_status=displayed,
            due_date=invoice.due_date,
            total_amount=invoice.total_amount,
            paid_amount=invoice.paid_amount,
            applied_credit_total=credited,
            balance_amount=balance,
            is_overdue=is_overdue,
            is_credit_settled=is_credit_settled,
        )

    async def list_overdue(
        self, org_id: UUID, today: date | None = None
    ) -> list[InvoiceSnapshot]:
        """Snapshots of an organization's overdue invoices, oldest due first."""
        today = today or date.today()
        candidates = await self._invoice_repo.list_for_org(org_id, list(_PAYABLE))
        snapshots = [
            await self.snapshot(invoice, today)
            for invoice in candidates
            if invoice.due_date < today
        ]
        overdue = [s for s in snapshots if s.is_overdue]
        return sorted(overdue, key=lambda s: (s.due_date, s.invoice_number or ""))
