"""Tests for the UtilityRateEngine and statement versioning."""

from datetime import date
from decimal import Decimal

import pytest

from factories import make_lease, make_rate_plan
from leasebill.core.errors import (
    ConcurrencyConflictError,
    ImmutableError,
    InvalidReadingError,
    ValidationError,
)
from leasebill.core.models import UtilityRatePlan, UtilityRateSlab, UtilityStatement, UtilityType
from leasebill.services.api import BillingServices

DEC_START = date(2024, 12, 1)
DEC_END = date(2024, 12, 31)


@pytest.mark.asyncio
async def test_calculate_against_tiered_plan(services: BillingServices, org):
    plan = await make_rate_plan(org)

    result = await services.utility.calculate(Decimal("1000"), Decimal("1250"), plan.id)

    assert result.units_consumed == Decimal("250")
    assert result.amount == Decimal("950.00")
    assert [c.amount for c in result.breakdown] == [
        Decimal("300.00"),
        Decimal("400.00"),
        Decimal("250.00"),
    ]


@pytest.mark.asyncio
async def test_calculate_rejects_backwards_readings(services: BillingServices, org):
    plan = await make_rate_plan(org)

    with pytest.raises(InvalidReadingError):
        await services.utility.calculate(Decimal("1250"), Decimal("1000"), plan)


@pytest.mark.asyncio
async def test_inactive_plan_is_rejected(services: BillingServices, org):
    plan = await make_rate_plan(org)
    await UtilityRatePlan.filter(id=plan.id).update(is_active=False)

    with pytest.raises(ValidationError, match="not active"):
        await services.utility.calculate(Decimal("0"), Decimal("10"), plan.id)


@pytest.mark.asyncio
async def test_plan_without_slabs_is_rejected(services: BillingServices, org):
    plan = await UtilityRatePlan.create(organization=org, name="Empty")

    with pytest.raises(ValidationError, match="no slabs"):
        await services.utility.calculate(Decimal("0"), Decimal("10"), plan.id)


def test_pass_through_rounds_and_rejects_negative(services: BillingServices):
    assert services.utility.pass_through(Decimal("420.555")) == Decimal("420.56")
    with pytest.raises(ValidationError):
        services.utility.pass_through(Decimal("-1"))


@pytest.mark.asyncio
async def test_slab_fixed_charges_are_included(services: BillingServices, org):
    plan = await UtilityRatePlan.create(organization=org, name="Commercial")
    await UtilityRateSlab.create(
        rate_plan=plan,
        lower_bound=Decimal("0"),
        upper_bound=Decimal("100"),
        rate_per_unit=Decimal("3"),
        fixed_charge=Decimal("50"),
    )
    await UtilityRateSlab.create(
        rate_plan=plan,
        lower_bound=Decimal("100"),
        rate_per_unit=Decimal("4"),
        fixed_charge=Decimal("75"),
    )

    low = await services.utility.calculate(Decimal("0"), Decimal("80"), plan.id)
    high = await services.utility.calculate(Decimal("0"), Decimal("150"), plan.id)

    assert low.amount == Decimal("290.00")
    assert high.amount == Decimal("625.00")
    assert [c.fixed_charge for c in high.breakdown] == [Decimal("50"), Decimal("75")]


def test_flat_rate_prices_every_unit_alike(services: BillingServices):
    result = services.utility.flat_rate(
        Decimal("1000"), Decimal("1250"), Decimal("4.5"), fixed_charge=Decimal("100")
    )

    assert result.units_consumed == Decimal("250")
    assert result.amount == Decimal("1225.00")
    with pytest.raises(InvalidReadingError):
        services.utility.flat_rate(Decimal("10"), Decimal("5"), Decimal("4.5"))

@pytest.mark.asyncio
async def test_record_and_finalize_statement(services: BillingServices, org):
    lease = await make_lease(org)
    plan = await make_rate_plan(org)

    statement = await services.utility.record_statement(
        lease.id,
        UtilityType.ELECTRICITY,
        DEC_START,
        DEC_END,
        previous_reading=Decimal("1000"),
        current_reading=Decimal("1100"),
        rate_plan_id=plan.id,
    )
    assert statement.version == 1
    assert statement.is_meter_based
    assert statement.total_amount == Decimal("300.00")

    sealed = await services.utility.finalize(statement.id)
    assert sealed.is_final
    assert sealed.finalized_at is not None


@pytest.mark.asyncio
async def test_draft_statement_can_be_updated_until_finalized(
    services: BillingServices, org
):
    lease = await make_lease(org)
    statement = await services.utility.record_statement(
        lease.id, UtilityType.WATER, DEC_START, DEC_END, direct_bill_amount=Decimal("300")
    )

    updated = await services.utility.update_statement(
        statement.id, statement.row_version, direct_bill_amount=Decimal("320")
    )
    assert updated.total_amount == Decimal("320.00")

    with pytest.raises(ConcurrencyConflictError):
        await services.utility.update_statement(
            statement.id, 1, direct_bill_amount=Decimal("330")
        )

    await services.utility.finalize(statement.id)
    with pytest.raises(ImmutableError):
        await services.utility.update_statement(
            statement.id, updated.row_version + 1, direct_bill_amount=Decimal("340")
        )


@pytest.mark.asyncio
async def test_second_draft_for_same_period_is_rejected(services: BillingServices, org):
    lease = await make_lease(org)
    await services.utility.record_statement(
        lease.id, UtilityType.WATER, DEC_START, DEC_END, direct_bill_amount=Decimal("300")
    )

    with pytest.raises(ValidationError, match="already exists"):
        await services.utility.record_statement(
            lease.id, UtilityType.WATER, DEC_START, DEC_END, direct_bill_amount=Decimal("310")
        )


@pytest.mark.asyncio
async def test_revise_creates_next_version_and_keeps_original(
    services: BillingServices, org
):
    lease = await make_lease(org)
    original = await services.utility.record_statement(
        lease.id, UtilityType.WATER, DEC_START, DEC_END, direct_bill_amount=Decimal("300")
    )
    await services.utility.finalize(original.id)

    revised = await services.utility.revise(original.id, direct_bill_amount=Decimal("280"))

    assert revised.version == 2
    assert revised.total_amount == Decimal("280.00")
    assert not revised.is_final
    stored = await UtilityStatement.get(id=original.id)
    assert stored.total_amount == Decimal("300.00")


@pytest.mark.asyncio
async def test_final_statement_cannot_be_saved_or_deleted(services: BillingServices, org):
    lease = await make_lease(org)
    statement = await services.utility.record_statement(
        lease.id, UtilityType.GAS, DEC_START, DEC_END, direct_bill_amount=Decimal("50")
    )
    sealed = await services.utility.finalize(statement.id)

    sealed.notes = "edited"
    with pytest.raises(ImmutableError):
        await sealed.save()
    with pytest.raises(ImmutableError):
        await sealed.delete()


@pytest.mark.asyncio
async def test_slabs_of_a_referenced_plan_are_frozen(services: BillingServices, org):
    lease = await make_lease(org)
    plan = await make_rate_plan(org)
    statement = await services.utility.record_statement(
        lease.id,
        UtilityType.ELECTRICITY,
        DEC_START,
        DEC_END,
        previous_reading=Decimal("0"),
        current_reading=Decimal("10"),
        rate_plan_id=plan.id,
    )
    await services.utility.finalize(statement.id)

    slab = await UtilityRateSlab.filter(rate_plan_id=plan.id).first()
    slab.rate_per_unit = Decimal("99")
    with pytest.raises(ImmutableError):
        await slab.save()


@pytest.mark.asyncio
async def test_statement_needs_exactly_one_input_mode(services: BillingServices, org):
    lease = await make_lease(org)
    plan = await make_rate_plan(org)

    with pytest.raises(ValidationError):
        await services.utility.record_statement(
            lease.id, UtilityType.WATER, DEC_START, DEC_END
        )
    with pytest.raises(ValidationError):
        await services.utility.record_statement(
            lease.id,
            UtilityType.WATER,
            DEC_START,
            DEC_END,
            previous_reading=Decimal("0"),
            current_reading=Decimal("5"),
            rate_plan_id=plan.id,
            direct_bill_amount=Decimal("10"),
        )
