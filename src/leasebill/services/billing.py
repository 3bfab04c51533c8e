"""Service responsible for generating draft invoices."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from uuid import UUID

from tortoise.transactions import in_transaction

from leasebill.core import calculations
from leasebill.core.calculations import ZERO
from leasebill.core.dates import ensure_period, resolve_invoice_date, validate_billing_setting
from leasebill.core.errors import (
    AlreadyIssuedError,
    BillingSettingsMissingError,
    ImmutableError,
    NoBillableItemsError,
    ValidationError,
)
from leasebill.core.models import (
    Invoice,
    InvoiceLine,
    InvoiceStatus,
    LeaseStatus,
    LineSource,
)
from leasebill.core.repositories.charge import ChargeTypeRepository
from leasebill.core.repositories.invoice import InvoiceRepository
from leasebill.core.repositories.lease import BillingSettingRepository, LeaseRepository
from leasebill.core.repositories.utility import UtilityStatementRepository
from leasebill.services.charges import ChargeAggregator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InvoiceTotals:
    sub_total: Decimal
    tax_amount: Decimal
    total_amount: Decimal

    @classmethod
    def of(cls, lines: Iterable) -> InvoiceTotals:
        sub_total = ZERO
        tax_amount = ZERO
        for line in lines:
            sub_total += line.amount
            tax_amount += line.tax_amount
        return cls(
            sub_total=sub_total,
            tax_amount=tax_amount,
            total_amount=sub_total + tax_amount,
        )


class InvoiceGenerator:
    """Creates or refreshes the draft invoice of a lease for a period."""

    def __init__(
        self,
        lease_repo: LeaseRepository,
        setting_repo: BillingSettingRepository,
        invoice_repo: InvoiceRepository,
        statement_repo: UtilityStatementRepository,
        charge_type_repo: ChargeTypeRepository,
        aggregator: ChargeAggregator,
    ):
        self._lease_repo = lease_repo
        self._setting_repo = setting_repo
        self._invoice_repo = invoice_repo
        self._statement_repo = statement_repo
        self._charge_type_repo = charge_type_repo
        self._aggregator = aggregator

    async def generate(
        self,
        lease_id: UUID,
        period_start: date,
        period_end: date,
        invoice_date: date | None = None,
    ) -> Invoice:
        """
        Generates or updates the draft invoice for a lease and period.

        Running it again for the same lease and period rewrites the same
        draft: generated lines are replaced, manual lines are kept and
        renumbered after them. Everything happens in one transaction, so a
        failure leaves the previous draft untouched.

        Raises:
            AlreadyIssuedError: if the period already has an invoice past draft.
            NoBillableItemsError: if nothing would be billed.
            BillingSettingsMissingError: if the lease has no billing settings.
        """
        ensure_period(period_start, period_end)
        lease = await self._lease_repo.get_required(lease_id)
        if LeaseStatus(lease.status) != LeaseStatus.ACTIVE:
            raise ValidationError(
                f"Lease {lease.lease_number} is not active (status: {lease.status.value})"
            )
        setting = await self._setting_repo.get_for_lease(lease_id)
        if setting is None:
            raise BillingSettingsMissingError(lease_id)
        validate_billing_setting(setting)

        invoice_date = invoice_date or resolve_invoice_date(
            period_start, period_end, setting
        )
        due_date = invoice_date + timedelta(days=setting.payment_term_days)

        async with in_transaction():
            await self._lease_repo.lock(lease_id)
            issued = await self._invoice_repo.get_issued_for_period(
                lease_id, period_start, period_end
            )
            if issued is not None:
                raise AlreadyIssuedError(issued.id)

            draft = await self._invoice_repo.get_draft_for_period(
                lease_id, period_start, period_end
            )
            manual_lines: list[InvoiceLine] = []
            if draft is not None:
                released = await self._invoice_repo.delete_generated_lines(draft.id)
                await self._statement_repo.release_lines(released)
                manual_lines = await self._invoice_repo.manual_lines(draft.id)

            items = await self._aggregator.build_line_items(
                lease_id, period_start, period_end, setting.proration_method
            )
            if not items and not manual_lines:
                raise NoBillableItemsError(lease_id)

            totals = InvoiceTotals.of([*items, *manual_lines])
            header = {
                "invoice_date": invoice_date,
                "due_date": due_date,
                "sub_total": totals.sub_total,
                "tax_amount": totals.tax_amount,
                "total_amount": totals.total_amount,
                "payment_instructions": setting.payment_instructions,
            }
            if draft is None:
                invoice = await self._invoice_repo.create(
                    organization_id=lease.organization_id,
                    lease_id=lease_id,
                    status=InvoiceStatus.DRAFT,
                    billing_period_start=period_start,
                    billing_period_end=period_end,
                    **header,
                )
            else:
                invoice = await self._invoice_repo.update_versioned(
                    draft, draft.row_version, **header
                )

            for item in items:
                line = await InvoiceLine.create(
                    invoice_id=invoice.id,
                    line_number=item.line_number,
                    charge_type_id=item.charge_type_id,
                    description=item.description,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    amount=item.amount,
                    tax_rate=item.tax_rate,
                    tax_amount=item.tax_amount,
                    total_amount=item.total_amount,
                    source=item.source,
                    source_ref_id=item.source_ref_id,
                    period_start=item.period_start,
                    period_end=item.period_end,
                )
                if item.source == LineSource.UTILITY:
                    await self._statement_repo.link_line(item.source_ref_id, line.id)

            for line_number, line in enumerate(manual_lines, start=len(items) + 1):
                if line.line_number != line_number:
                    line.line_number = line_number
                    await line.save(update_fields=["line_number"])

        action = "Updated" if draft is not None else "Created"
        logger.info(
            f"{action} draft invoice {invoice.id} for lease {lease.lease_number} "
            f"({period_start} to {period_end}): {len(items) + len(manual_lines)} lines, "
            f"total {invoice.total_amount}"
        )
        return invoice

    async def add_manual_line(
        self,
        invoice_id: UUID,
        charge_type_id: UUID,
        description: str,
        unit_price: Decimal,
        quantity: Decimal = Decimal("1"),
        tax_rate: Decimal | None = None,
    ) -> InvoiceLine:
        """
        Adds a hand-entered line to a draft invoice and refreshes its totals.

        The tax rate defaults to the charge type's rate when it is taxable.
        Manual lines survive regeneration of the draft.
        """
        if not description or not description.strip():
            raise ValidationError("Line description is required")
        if quantity <= ZERO:
            raise ValidationError("Line quantity must be positive")

        async with in_transaction():
            invoice = await self._invoice_repo.get_required(invoice_id)
            if InvoiceStatus(invoice.status) != InvoiceStatus.DRAFT:
                raise ImmutableError(
                    f"Invoice {invoice.invoice_number} is {invoice.status.value} "
                    "and cannot be changed"
                )
            charge_type = await self._charge_type_repo.get_required(charge_type_id)
            if tax_rate is None:
                tax_rate = charge_type.default_tax_rate if charge_type.is_taxable else ZERO

            amount = calculations.round_money(unit_price * quantity)
            tax_amount = calculations.calculate_tax(amount, tax_rate)
            existing = await self._invoice_repo.lines(invoice_id)
            line = await InvoiceLine.create(
                invoice_id=invoice_id,
                line_number=max((ln.line_number for ln in existing), default=0) + 1,
                charge_type_id=charge_type.id,
                description=description.strip(),
                quantity=quantity,
                unit_price=unit_price,
                amount=amount,
                tax_rate=tax_rate,
                tax_amount=tax_amount,
                total_amount=amount + tax_amount,
                source=LineSource.MANUAL,
            )
            totals = InvoiceTotals.of([*existing, line])
            await self._invoice_repo.update_versioned(
                invoice,
                invoice.row_version,
                sub_total=totals.sub_total,
                tax_amount=totals.tax_amount,
                total_amount=totals.total_amount,
            )
        logger.info(f"Added manual line '{line.description}' to invoice {invoice_id}")
        return line
