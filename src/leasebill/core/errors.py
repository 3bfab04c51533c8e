"""Typed exceptions raised by the billing engine.

Every error carries a machine-readable ``code`` alongside a message that a
person can act on without looking at internals. Services raise these; the
``BillingApi`` facade turns them into failed results.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID


class BillingError(Exception):
    """Base class for all expected billing failures."""

    code = "BillingError"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(BillingError):
    """Malformed input, rejected before any side effect."""

    code = "Validation"


class InvalidPeriodError(ValidationError):
    code = "InvalidPeriod"


class InvalidReadingError(ValidationError):
    code = "InvalidReading"

    def __init__(self, previous: Decimal, current: Decimal):
        super().__init__(
            f"Current reading {current} is lower than previous reading {previous}"
        )
        self.previous = previous
        self.current = current


class BillingSettingsMissingError(ValidationError):
    code = "BillingSettingsMissing"

    def __init__(self, lease_id: UUID):
        super().__init__(f"Lease {lease_id} has no billing settings")
        self.lease_id = lease_id


class NotFoundError(BillingError):
    code = "NotFound"

    def __init__(self, entity: str, entity_id: UUID):
        super().__init__(f"{entity} with id {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class BusinessRuleError(BillingError):
    """A well-formed request that the current state does not allow."""

    code = "BusinessRule"


class AlreadyIssuedError(BusinessRuleError):
    code = "AlreadyIssued"

    def __init__(self, invoice_id: UUID):
        super().__init__(
            "Cannot regenerate issued invoice; use a credit note to correct it"
        )
        self.invoice_id = invoice_id


class NoBillableItemsError(BusinessRuleError):
    code = "NoBillableItems"

    def __init__(self, lease_id: UUID):
        super().__init__(f"Lease {lease_id} has no billable items for the period")
        self.lease_id = lease_id


class CannotVoidPaidError(BusinessRuleError):
    code = "CannotVoidPaid"

    def __init__(self, invoice_id: UUID):
        super().__init__(
            "Cannot void an invoice with payments; issue a credit note instead"
        )
        self.invoice_id = invoice_id


class CreditExceedsBalanceError(BusinessRuleError):
    code = "CreditExceedsBalance"

    def __init__(self, requested: Decimal, balance: Decimal):
        super().__init__(
            f"Credit amount exceeds invoice balance ({requested} > {balance})"
        )
        self.requested = requested
        self.balance = balance


class PaymentExceedsBalanceError(BusinessRuleError):
    code = "PaymentExceedsBalance"

    def __init__(self, amount: Decimal, balance: Decimal):
        super().__init__(
            f"Payment amount exceeds invoice balance ({amount} > {balance})"
        )
        self.amount = amount
        self.balance = balance


class ImmutableError(BusinessRuleError):
    code = "Immutable"


class InvalidTransitionError(BusinessRuleError):
    code = "InvalidTransition"


class ConcurrencyConflictError(BillingError):
    """The row changed since the caller read it; re-read and retry."""

    code = "ConcurrencyConflict"

    def __init__(self, entity: str, entity_id: UUID):
        super().__init__(
            f"{entity} {entity_id} was modified by another process. Please retry."
        )
        self.entity = entity
        self.entity_id = entity_id
