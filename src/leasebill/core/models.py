"""Domain models for the lease billing engine."""

from __future__ import annotations

import enum
import uuid
from decimal import Decimal

from tortoise import fields, models
from tortoise.signals import pre_delete, pre_save
from tortoise.validators import MaxValueValidator, MinValueValidator

from leasebill.core.errors import ImmutableError


class LeaseStatus(str, enum.Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    ENDED = "ended"
    TERMINATED = "terminated"


class ProrationMethod(str, enum.Enum):
    """How a partial period is scaled against a monthly amount."""

    ACTUAL_DAYS_IN_MONTH = "actual_days_in_month"
    THIRTY_DAY_MONTH = "thirty_day_month"


class RentTiming(str, enum.Enum):
    ADVANCE = "advance"
    ARREARS = "arrears"


class ChargeTypeCode(str, enum.Enum):
    """Codes of the system charge types seeded for every installation."""

    RENT = "RENT"
    MAINTENANCE = "MAINT"
    ELECTRICITY = "ELEC"
    WATER = "WATER"
    GAS = "GAS"
    LATE_FEE = "LATE_FEE"
    ADJUSTMENT = "ADJUSTMENT"


class ChargeFrequency(str, enum.Enum):
    ONE_TIME = "one_time"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class UtilityType(str, enum.Enum):
    """Enum for metered resources like electricity, water, etc."""

    ELECTRICITY = "electricity"
    WATER = "water"
    GAS = "gas"


class LineSource(str, enum.Enum):
    RENT = "rent"
    MAINTENANCE = "maintenance"
    UTILITY = "utility"
    MANUAL = "manual"


class InvoiceStatus(str, enum.Enum):
    """Invoice states. OVERDUE is only ever derived at read time."""

    DRAFT = "draft"
    ISSUED = "issued"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"
    WRITTEN_OFF = "written_off"


class CreditNoteReason(str, enum.Enum):
    INVOICE_ERROR = "invoice_error"
    DISCOUNT = "discount"
    REFUND = "refund"
    GOODWILL = "goodwill"
    ADJUSTMENT = "adjustment"
    OTHER = "other"


class InvoiceRunStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"
    CANCELLED = "cancelled"


class SequenceKind(str, enum.Enum):
    INVOICE = "invoice"
    CREDIT_NOTE = "credit_note"


class BaseModel(models.Model):
    """Abstract base model with common fields."""

    id = fields.UUIDField(pk=True, default=uuid.uuid4)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        abstract = True


class Organization(BaseModel):
    """A landlord or property manager that owns leases."""

    name = fields.CharField(max_length=255, unique=True)

    leases: fields.ReverseRelation[Lease]
    invoice_runs: fields.ReverseRelation[InvoiceRun]

    def __str__(self) -> str:
        return self.name


class Lease(BaseModel):
    """A tenancy agreement. Managed elsewhere; billed here."""

    lease_number = fields.CharField(max_length=50)
    status = fields.CharEnumField(LeaseStatus, default=LeaseStatus.DRAFT)
    start_date = fields.DateField()
    end_date = fields.DateField(null=True)
    organization: fields.ForeignKeyRelation[Organization] = fields.ForeignKeyField(
        "models.Organization", related_name="leases"
    )

    billing_setting: fields.BackwardOneToOneRelation[LeaseBillingSetting]
    recurring_charges: fields.ReverseRelation[RecurringCharge]
    utility_statements: fields.ReverseRelation[UtilityStatement]
    invoices: fields.ReverseRelation[Invoice]

    def __str__(self) -> str:
        return self.lease_number


class LeaseBillingSetting(BaseModel):
    """Per-lease billing configuration."""

    lease: fields.OneToOneRelation[Lease] = fields.OneToOneField(
        "models.Lease", related_name="billing_setting"
    )
    # 1-28, a day that exists in every month.
    billing_day = fields.SmallIntField(
        default=1, validators=[MinValueValidator(1), MaxValueValidator(28)]
    )
    payment_term_days = fields.SmallIntField(
        default=0, validators=[MinValueValidator(0)]
    )
    proration_method = fields.CharEnumField(
        ProrationMethod, default=ProrationMethod.ACTUAL_DAYS_IN_MONTH
    )
    rent_timing = fields.CharEnumField(RentTiming, default=RentTiming.ADVANCE)
    invoice_prefix = fields.CharField(max_length=20, null=True)
    generate_automatically = fields.BooleanField(default=True)
    payment_instructions = fields.TextField(null=True)

    def __str__(self) -> str:
        return f"Billing settings for lease {self.lease_id}"


class ChargeType(BaseModel):
    """Reference data describing what a line bills for and how it is taxed."""

    code = fields.CharField(max_length=30)
    name = fields.CharField(max_length=100)
    is_taxable = fields.BooleanField(default=False)
    default_tax_rate = fields.DecimalField(
        max_digits=5, decimal_places=2, default=Decimal("0")
    )
    is_system = fields.BooleanField(default=False)
    is_active = fields.BooleanField(default=True)
    organization: fields.ForeignKeyNullableRelation[Organization] = (
        fields.ForeignKeyField(
            "models.Organization", related_name="charge_types", null=True
        )
    )

    class Meta:
        unique_together = ("organization", "code")

    def __str__(self) -> str:
        return f"{self.code} ({self.name})"


class RecurringCharge(BaseModel):
    """A charge billed on a lease over ``[start_date, end_date)``."""

    amount = fields.DecimalField(max_digits=14, decimal_places=2)
    frequency = fields.CharEnumField(ChargeFrequency, default=ChargeFrequency.MONTHLY)
    start_date = fields.DateField()
    end_date = fields.DateField(null=True, description="Exclusive; null is open-ended")
    description = fields.CharField(max_length=255, null=True)
    is_active = fields.BooleanField(default=True)
    is_deleted = fields.BooleanField(default=False)
    lease: fields.ForeignKeyRelation[Lease] = fields.ForeignKeyField(
        "models.Lease", related_name="recurring_charges"
    )
    charge_type: fields.ForeignKeyRelation[ChargeType] = fields.ForeignKeyField(
        "models.ChargeType", related_name="recurring_charges"
    )

    def __str__(self) -> str:
        end = self.end_date or "open"
        return f"Charge {self.amount} ({self.frequency.value}) {self.start_date} to {end}"


class UtilityRatePlan(BaseModel):
    """A set of consumption slabs for one utility."""

    name = fields.CharField(max_length=100)
    utility_type = fields.CharEnumField(UtilityType, default=UtilityType.ELECTRICITY)
    is_active = fields.BooleanField(default=True)
    organization: fields.ForeignKeyRelation[Organization] = fields.ForeignKeyField(
        "models.Organization", related_name="rate_plans"
    )

    slabs: fields.ReverseRelation[UtilityRateSlab]

    def __str__(self) -> str:
        return f"{self.name} ({self.utility_type.value})"


class UtilityRateSlab(BaseModel):
    """Consumption range ``[lower_bound, upper_bound)`` billed at one rate."""

    lower_bound = fields.DecimalField(max_digits=14, decimal_places=3)
    upper_bound = fields.DecimalField(
        max_digits=14, decimal_places=3, null=True, description="Null absorbs the rest"
    )
    rate_per_unit = fields.DecimalField(max_digits=12, decimal_places=4)
    fixed_charge = fields.DecimalField(
        max_digits=14,
        decimal_places=2,
        default=Decimal("0"),
        description="Flat amount added when consumption reaches the slab",
    )
    rate_plan: fields.ForeignKeyRelation[UtilityRatePlan] = fields.ForeignKeyField(
        "models.UtilityRatePlan", related_name="slabs"
    )

    class Meta:
        ordering = ["lower_bound"]

    def __str__(self) -> str:
        upper = self.upper_bound if self.upper_bound is not None else "∞"
        return f"{self.lower_bound}-{upper} @ {self.rate_per_unit}"


class UtilityStatement(BaseModel):
    """A utility bill for one lease and period.

    Statements form an append-only chain per period: once ``is_final`` is set
    the row is sealed and a correction is a new row with ``version + 1``.
    """

    utility_type = fields.CharEnumField(UtilityType)
    billing_period_start = fields.DateField()
    billing_period_end = fields.DateField()
    is_meter_based = fields.BooleanField(default=True)
    previous_reading = fields.DecimalField(max_digits=14, decimal_places=3, null=True)
    current_reading = fields.DecimalField(max_digits=14, decimal_places=3, null=True)
    direct_bill_amount = fields.DecimalField(
        max_digits=14, decimal_places=2, null=True
    )
    units_consumed = fields.DecimalField(max_digits=14, decimal_places=3, null=True)
    calculated_amount = fields.DecimalField(
        max_digits=14, decimal_places=2, default=Decimal("0")
    )
    total_amount = fields.DecimalField(
        max_digits=14, decimal_places=2, default=Decimal("0")
    )
    version = fields.IntField(default=1)
    is_final = fields.BooleanField(default=False)
    finalized_at = fields.DatetimeField(null=True)
    invoice_line_id = fields.UUIDField(
        null=True, description="Lookup key of the line that billed this statement"
    )
    notes = fields.TextField(null=True)
    row_version = fields.IntField(default=1)
    lease: fields.ForeignKeyRelation[Lease] = fields.ForeignKeyField(
        "models.Lease", related_name="utility_statements"
    )
    rate_plan: fields.ForeignKeyNullableRelation[UtilityRatePlan] = (
        fields.ForeignKeyField(
            "models.UtilityRatePlan", related_name="statements", null=True
        )
    )

    class Meta:
        unique_together = (
            "lease",
            "utility_type",
            "billing_period_start",
            "billing_period_end",
            "version",
        )

    def __str__(self) -> str:
        return (
            f"{self.utility_type.value} statement v{self.version} "
            f"{self.billing_period_start} to {self.billing_period_end}: "
            f"{self.total_amount}"
        )


class Invoice(BaseModel):
    """A bill for a lease and billing period.

    ``balance_amount`` is never stored: it is derived from ``total_amount``,
    ``paid_amount`` and the applied credit notes.
    """

    status = fields.CharEnumField(InvoiceStatus, default=InvoiceStatus.DRAFT)
    invoice_number = fields.CharField(max_length=40, null=True)
    invoice_date = fields.DateField()
    due_date = fields.DateField()
    billing_period_start = fields.DateField()
    billing_period_end = fields.DateField()
    sub_total = fields.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0"))
    tax_amount = fields.DecimalField(
        max_digits=14, decimal_places=2, default=Decimal("0")
    )
    total_amount = fields.DecimalField(
        max_digits=14, decimal_places=2, default=Decimal("0")
    )
    paid_amount = fields.DecimalField(
        max_digits=14, decimal_places=2, default=Decimal("0")
    )
    issued_at = fields.DatetimeField(null=True)
    paid_at = fields.DatetimeField(null=True)
    voided_at = fields.DatetimeField(null=True)
    void_reason = fields.CharField(max_length=500, null=True)
    written_off_at = fields.DatetimeField(null=True)
    write_off_reason = fields.CharField(max_length=500, null=True)
    payment_instructions = fields.TextField(null=True)
    notes = fields.TextField(null=True)
    row_version = fields.IntField(default=1)
    organization: fields.ForeignKeyRelation[Organization] = fields.ForeignKeyField(
        "models.Organization", related_name="invoices"
    )
    lease: fields.ForeignKeyRelation[Lease] = fields.ForeignKeyField(
        "models.Lease", related_name="invoices"
    )

    lines: fields.ReverseRelation[InvoiceLine]
    credit_notes: fields.ReverseRelation[CreditNote]

    class Meta:
        unique_together = ("organization", "invoice_number")

    def __str__(self) -> str:
        number = self.invoice_number or "draft"
        return (
            f"Invoice {number} for {self.billing_period_start} to "
            f"{self.billing_period_end}: {self.total_amount}"
        )


class InvoiceLine(BaseModel):
    """One billed item of an invoice."""

    line_number = fields.IntField()
    description = fields.CharField(max_length=255)
    quantity = fields.DecimalField(max_digits=14, decimal_places=3, default=Decimal("1"))
    unit_price = fields.DecimalField(max_digits=14, decimal_places=4)
    amount = fields.DecimalField(max_digits=14, decimal_places=2)
    tax_rate = fields.DecimalField(max_digits=5, decimal_places=2, default=Decimal("0"))
    tax_amount = fields.DecimalField(
        max_digits=14, decimal_places=2, default=Decimal("0")
    )
    total_amount = fields.DecimalField(max_digits=14, decimal_places=2)
    source = fields.CharEnumField(LineSource)
    source_ref_id = fields.UUIDField(
        null=True, description="RecurringCharge or UtilityStatement that produced it"
    )
    period_start = fields.DateField(null=True)
    period_end = fields.DateField(null=True)
    invoice: fields.ForeignKeyRelation[Invoice] = fields.ForeignKeyField(
        "models.Invoice", related_name="lines"
    )
    charge_type: fields.ForeignKeyRelation[ChargeType] = fields.ForeignKeyField(
        "models.ChargeType", related_name="invoice_lines"
    )

    class Meta:
        ordering = ["line_number"]

    def __str__(self) -> str:
        return f"#{self.line_number} {self.description}: {self.total_amount}"


class CreditNote(BaseModel):
    """A ledger entry reducing an invoice's balance without touching it."""

    credit_note_number = fields.CharField(max_length=40)
    credit_note_date = fields.DateField()
    reason = fields.CharEnumField(CreditNoteReason)
    notes = fields.TextField(null=True)
    total_amount = fields.DecimalField(max_digits=14, decimal_places=2)
    applied_at = fields.DatetimeField(null=True, description="Null while unapplied")
    row_version = fields.IntField(default=1)
    organization: fields.ForeignKeyRelation[Organization] = fields.ForeignKeyField(
        "models.Organization", related_name="credit_notes"
    )
    invoice: fields.ForeignKeyRelation[Invoice] = fields.ForeignKeyField(
        "models.Invoice", related_name="credit_notes"
    )

    lines: fields.ReverseRelation[CreditNoteLine]

    class Meta:
        unique_together = ("organization", "credit_note_number")

    def __str__(self) -> str:
        return f"Credit note {self.credit_note_number}: {self.total_amount}"


class CreditNoteLine(BaseModel):
    """Credited portion of one invoice line."""

    line_number = fields.IntField()
    description = fields.CharField(max_length=255)
    amount = fields.DecimalField(max_digits=14, decimal_places=2)
    tax_amount = fields.DecimalField(
        max_digits=14, decimal_places=2, default=Decimal("0")
    )
    total_amount = fields.DecimalField(max_digits=14, decimal_places=2)
    notes = fields.CharField(max_length=255, null=True)
    credit_note: fields.ForeignKeyRelation[CreditNote] = fields.ForeignKeyField(
        "models.CreditNote", related_name="lines"
    )
    invoice_line: fields.ForeignKeyRelation[InvoiceLine] = fields.ForeignKeyField(
        "models.InvoiceLine", related_name="credit_note_lines"
    )

    class Meta:
        ordering = ["line_number"]


class InvoiceRun(BaseModel):
    """A batch generation of invoices for one organization and period."""

    run_number = fields.CharField(max_length=40, unique=True)
    billing_period_start = fields.DateField()
    billing_period_end = fields.DateField()
    status = fields.CharEnumField(InvoiceRunStatus, default=InvoiceRunStatus.PENDING)
    started_at = fields.DatetimeField(null=True)
    completed_at = fields.DatetimeField(null=True)
    total_leases = fields.IntField(default=0)
    success_count = fields.IntField(default=0)
    failure_count = fields.IntField(default=0)
    error_message = fields.TextField(null=True)
    organization: fields.ForeignKeyRelation[Organization] = fields.ForeignKeyField(
        "models.Organization", related_name="invoice_runs"
    )

    items: fields.ReverseRelation[InvoiceRunItem]

    def __str__(self) -> str:
        return f"Run {self.run_number} ({self.status.value})"


class InvoiceRunItem(BaseModel):
    """Outcome of one lease inside an invoice run."""

    is_success = fields.BooleanField()
    error_message = fields.TextField(null=True)
    processed_at = fields.DatetimeField()
    invoice_run: fields.ForeignKeyRelation[InvoiceRun] = fields.ForeignKeyField(
        "models.InvoiceRun", related_name="items"
    )
    lease: fields.ForeignKeyRelation[Lease] = fields.ForeignKeyField(
        "models.Lease", related_name="run_items"
    )
    invoice: fields.ForeignKeyNullableRelation[Invoice] = fields.ForeignKeyField(
        "models.Invoice",
        related_name="run_items",
        null=True,
        on_delete=fields.SET_NULL,
    )


class NumberSequence(BaseModel):
    """Counter row backing invoice and credit note numbers."""

    kind = fields.CharEnumField(SequenceKind)
    year_month = fields.CharField(max_length=6)
    current_value = fields.IntField(default=0)
    organization: fields.ForeignKeyRelation[Organization] = fields.ForeignKeyField(
        "models.Organization", related_name="sequences"
    )

    class Meta:
        unique_together = ("organization", "kind", "year_month")


# --- Immutability guards ---
# Bulk ``QuerySet.update`` calls used by the services for versioned
# transitions bypass these; they stop ad-hoc edits of sealed rows.


async def _ensure_invoice_is_draft(invoice_id, using_db) -> None:
    status = (
        await Invoice.filter(id=invoice_id)
        .using_db(using_db)
        .first()
        .values_list("status", flat=True)
    )
    if status is not None and InvoiceStatus(status) != InvoiceStatus.DRAFT:
        raise ImmutableError(f"Invoice {invoice_id} is issued and cannot be changed")


async def _ensure_credit_note_unapplied(credit_note_id, using_db) -> None:
    applied_at = (
        await CreditNote.filter(id=credit_note_id)
        .using_db(using_db)
        .first()
        .values_list("applied_at", flat=True)
    )
    if applied_at is not None:
        raise ImmutableError(f"Credit note {credit_note_id} is applied and immutable")


@pre_save(InvoiceLine)
async def guard_invoice_line_save(sender, instance, using_db, update_fields) -> None:
    await _ensure_invoice_is_draft(instance.invoice_id, using_db)


@pre_delete(InvoiceLine)
async def guard_invoice_line_delete(sender, instance, using_db) -> None:
    await _ensure_invoice_is_draft(instance.invoice_id, using_db)


@pre_delete(Invoice)
async def guard_invoice_delete(sender, instance, using_db) -> None:
    await _ensure_invoice_is_draft(instance.id, using_db)


@pre_save(CreditNote)
async def guard_credit_note_save(sender, instance, using_db, update_fields) -> None:
    if instance._saved_in_db:
        await _ensure_credit_note_unapplied(instance.id, using_db)


@pre_delete(CreditNote)
async def guard_credit_note_delete(sender, instance, using_db) -> None:
    await _ensure_credit_note_unapplied(instance.id, using_db)


@pre_save(CreditNoteLine)
async def guard_credit_note_line_save(
    sender, instance, using_db, update_fields
) -> None:
    await _ensure_credit_note_unapplied(instance.credit_note_id, using_db)


@pre_save(UtilityStatement)
async def guard_statement_save(sender, instance, using_db, update_fields) -> None:
    if not instance._saved_in_db:
        return
    sealed = (
        await UtilityStatement.filter(id=instance.id, is_final=True)
        .using_db(using_db)
        .exists()
    )
    if sealed:
        raise ImmutableError(
            f"Utility statement {instance.id} is final; record a new version instead"
        )


@pre_delete(UtilityStatement)
async def guard_statement_delete(sender, instance, using_db) -> None:
    if instance.is_final:
        raise ImmutableError(f"Utility statement {instance.id} is final")


async def _ensure_rate_plan_unreferenced(rate_plan_id, using_db) -> None:
    referenced = (
        await UtilityStatement.filter(rate_plan_id=rate_plan_id, is_final=True)
        .using_db(using_db)
        .exists()
    )
    if referenced:
        raise ImmutableError(
            f"Rate plan {rate_plan_id} is referenced by a final statement"
        )


@pre_save(UtilityRateSlab)
async def guard_slab_save(sender, instance, using_db, update_fields) -> None:
    await _ensure_rate_plan_unreferenced(instance.rate_plan_id, using_db)


@pre_delete(UtilityRateSlab)
async def guard_slab_delete(sender, instance, using_db) -> None:
    await _ensure_rate_plan_unreferenced(instance.rate_plan_id, using_db)
