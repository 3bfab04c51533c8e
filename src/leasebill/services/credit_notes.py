"""Credit notes: the only way to correct an issued invoice."""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from tortoise import timezone
from tortoise.transactions import in_transaction

from leasebill.config import settings
from leasebill.core.calculations import ZERO, round_money
from leasebill.core.errors import (
    CreditExceedsBalanceError,
    ImmutableError,
    InvalidTransitionError,
    ValidationError,
)
from leasebill.core.models import (
    CreditNote,
    CreditNoteLine,
    CreditNoteReason,
    Invoice,
    InvoiceStatus,
    SequenceKind,
)
from leasebill.core.repositories.credit_note import CreditNoteRepository
from leasebill.core.repositories.invoice import InvoiceRepository
from leasebill.core.repositories.sequence import (
    NumberSequenceRepository,
    format_document_number,
)
from leasebill.services.lifecycle import InvoiceLifecycle

logger = logging.getLogger(__name__)

# Invoice statuses that accept credit notes.
_CREDITABLE = (
    InvoiceStatus.ISSUED,
    InvoiceStatus.PARTIALLY_PAID,
    InvoiceStatus.PAID,
)


@dataclass(frozen=True)
class CreditLineRequest:
    invoice_line_id: UUID
    amount: Decimal
    notes: str | None = None


class CreditNoteService:
    """Creates and applies credit notes against issued invoices."""

    def __init__(
        self,
        credit_note_repo: CreditNoteRepository,
        invoice_repo: InvoiceRepository,
        sequence_repo: NumberSequenceRepository,
        lifecycle: InvoiceLifecycle,
    ):
        self._credit_note_repo = credit_note_repo
        self._invoice_repo = invoice_repo
        self._sequence_repo = sequence_repo
        self._lifecycle = lifecycle

    async def create(
        self,
        invoice_id: UUID,
        reason: CreditNoteReason,
        lines: Sequence[CreditLineRequest],
        notes: str | None = None,
        credit_note_date: date | None = None,
    ) -> CreditNote:
        """
        Creates an unapplied credit note referencing lines of an invoice.

        Each credited amount must be positive and no larger than what is left
        of its invoice line; the credit note's total must fit in the
        invoice's current balance. The tax share of each credited amount
        follows the tax share of the invoice line.

        Raises:
            CreditExceedsBalanceError: if the total exceeds the balance.
            InvalidTransitionError: if the invoice is a draft or closed.
        """
        if not lines:
            raise ValidationError("A credit note needs at least one line")
        for request in lines:
            if request.amount <= ZERO:
                raise ValidationError("Credit line amounts must be positive")
        credit_note_date = credit_note_date or date.today()

        async with in_transaction():
            invoice = await self._invoice_repo.get_required(invoice_id)
            self._ensure_creditable(invoice)
            invoice_lines = {
                line.id: line for line in await self._invoice_repo.lines(invoice.id)
            }

            already_credited = await self._credit_note_repo.credited_by_line(invoice.id)
            requested: dict[UUID, Decimal] = defaultdict(lambda: ZERO)
            for request in lines:
                line = invoice_lines.get(request.invoice_line_id)
                if line is None:
                    raise ValidationError(
                        f"Invoice line {request.invoice_line_id} does not belong "
                        f"to invoice {invoice.invoice_number}"
                    )
                requested[line.id] += request.amount
                remaining = line.total_amount - already_credited.get(line.id, ZERO)
                if requested[line.id] > remaining:
                    raise ValidationError(
                        f"Credit for line {line.line_number} exceeds its total "
                        f"({requested[line.id]} > {remaining} remaining of "
                        f"{line.total_amount})"
                    )

            total = sum((r.amount for r in lines), ZERO)
            balance = await self._lifecycle.balance(invoice)
            if total > balance:
                raise CreditExceedsBalanceError(total, balance)

            sequence = await self._sequence_repo.next_value(
                invoice.organization_id,
                SequenceKind.CREDIT_NOTE,
                f"{credit_note_date:%Y%m}",
            )
            credit_note = await self._credit_note_repo.create(
                credit_note_number=format_document_number(
                    settings.CREDIT_NOTE_PREFIX, credit_note_date, sequence
                ),
                credit_note_date=credit_note_date,
                reason=reason,
                notes=notes,
                total_amount=total,
                organization_id=invoice.organization_id,
                invoice_id=invoice.id,
            )
            for line_number, request in enumerate(lines, start=1):
                line = invoice_lines[request.invoice_line_id]
                tax_amount = ZERO
                if line.total_amount > ZERO and line.tax_amount:
                    tax_amount = round_money(
                        request.amount * line.tax_amount / line.total_amount
                    )
                await CreditNoteLine.create(
                    credit_note_id=credit_note.id,
                    invoice_line_id=line.id,
                    line_number=line_number,
                    description=f"Credit for: {line.description}"[:255],
                    amount=request.amount - tax_amount,
                    tax_amount=tax_amount,
                    total_amount=request.amount,
                    notes=request.notes,
                )
        logger.info(
            f"Created credit note {credit_note.credit_note_number} for invoice "
            f"{invoice.invoice_number}: {total}"
        )
        return credit_note

    async def apply(
        self, credit_note_id: UUID, expected_row_version: int | None = None
    ) -> CreditNote:
        """
        Applies a credit note, reducing its invoice's balance.

        The balance is checked again at this point since payments or other
        credit notes may have landed since creation. Applied credit notes
        are immutable and cannot be reversed.
        """
        async with in_transaction():
            credit_note = await self._credit_note_repo.get_required(credit_note_id)
            version = expected_row_version or credit_note.row_version
            if credit_note.applied_at is not None:
                raise ImmutableError(
                    f"Credit note {credit_note.credit_note_number} is already applied"
                )
            invoice = await self._invoice_repo.get_required(credit_note.invoice_id)
            self._ensure_creditable(invoice)
            balance = await self._lifecycle.balance(invoice)
            if credit_note.total_amount > balance:
                raise CreditExceedsBalanceError(credit_note.total_amount, balance)
            credit_note = await self._credit_note_repo.update_versioned(
                credit_note, version, applied_at=timezone.now()
            )
        logger.info(
            f"Applied credit note {credit_note.credit_note_number} to invoice "
            f"{invoice.invoice_number}; balance now {balance - credit_note.total_amount}"
        )
        return credit_note

    @staticmethod
    def _ensure_creditable(invoice: Invoice) -> None:
        status = InvoiceStatus(invoice.status)
        if status not in _CREDITABLE:
            raise InvalidTransitionError(
                f"Credit notes cannot be issued against a {status.value} invoice"
            )
