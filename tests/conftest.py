"""Pytest configuration and fixtures."""

import pytest
import pytest_asyncio
from tortoise import Tortoise

from leasebill.core.models import Organization
from leasebill.core.repositories.charge import seed_charge_types
from leasebill.services.api import BillingServices


@pytest_asyncio.fixture(scope="function", autouse=True)
async def db_session():
    """
    Provides a clean in-memory SQLite database for each test function.
    """
    await Tortoise.init(
        db_url="sqlite://:memory:",
        modules={"models": ["leasebill.core.models"]},
    )
    await Tortoise.generate_schemas()
    await seed_charge_types()

    yield

    await Tortoise.close_connections()


@pytest.fixture
def services() -> BillingServices:
    """The full service graph wired with real repositories."""
    return BillingServices.build(max_concurrency=2)


@pytest_asyncio.fixture
async def org() -> Organization:
    return await Organization.create(name="Acme Properties")
