"""Builders for billing test data."""

from datetime import date
from decimal import Decimal

from leasebill.core.models import (
    ChargeFrequency,
    ChargeType,
    Lease,
    LeaseBillingSetting,
    LeaseStatus,
    Organization,
    ProrationMethod,
    RecurringCharge,
    RentTiming,
    UtilityRatePlan,
    UtilityRateSlab,
    UtilityType,
)


async def charge_type(code: str) -> ChargeType:
    return await ChargeType.get(code=code, organization_id=None)


async def make_lease(
    org: Organization,
    lease_number: str = "L-001",
    *,
    start_date: date = date(2024, 1, 1),
    end_date: date | None = None,
    status: LeaseStatus = LeaseStatus.ACTIVE,
    with_settings: bool = True,
    rent: Decimal | None = Decimal("10000"),
    **setting_overrides,
) -> Lease:
    """Creates a lease with billing settings and, by default, a monthly rent."""
    lease = await Lease.create(
        organization=org,
        lease_number=lease_number,
        status=status,
        start_date=start_date,
        end_date=end_date,
    )
    if with_settings:
        await LeaseBillingSetting.create(
            lease=lease,
            billing_day=setting_overrides.pop("billing_day", 1),
            payment_term_days=setting_overrides.pop("payment_term_days", 10),
            proration_method=setting_overrides.pop(
                "proration_method", ProrationMethod.ACTUAL_DAYS_IN_MONTH
            ),
            rent_timing=setting_overrides.pop("rent_timing", RentTiming.ADVANCE),
            **setting_overrides,
        )
    if rent is not None:
        await add_charge(lease, "RENT", rent, start_date)
    return lease


async def add_charge(
    lease: Lease,
    code: str,
    amount: Decimal,
    start_date: date,
    end_date: date | None = None,
    frequency: ChargeFrequency = ChargeFrequency.MONTHLY,
    description: str | None = None,
) -> RecurringCharge:
    return await RecurringCharge.create(
        lease=lease,
        charge_type=await charge_type(code),
        amount=amount,
        frequency=frequency,
        start_date=start_date,
        end_date=end_date,
        description=description,
    )


async def make_rate_plan(
    org: Organization, utility_type: UtilityType = UtilityType.ELECTRICITY
) -> UtilityRatePlan:
    """Slabs 0-100 @ 3, 100-200 @ 4, 200+ @ 5."""
    plan = await UtilityRatePlan.create(
        organization=org, name="Residential", utility_type=utility_type
    )
    for lower, upper, rate in (
        ("0", "100", "3"),
        ("100", "200", "4"),
        ("200", None, "5"),
    ):
        await UtilityRateSlab.create(
            rate_plan=plan,
            lower_bound=Decimal(lower),
            upper_bound=Decimal(upper) if upper else None,
            rate_per_unit=Decimal(rate),
        )
    return plan
