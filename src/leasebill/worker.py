"""Main entry point for the billing worker process."""

import asyncio
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from tortoise import Tortoise

from leasebill.config import settings
from leasebill.core.db import TORTOISE_ORM
from leasebill.core.repositories.charge import seed_charge_types
from leasebill.services.api import BillingServices
from leasebill.services.scheduler import SchedulerService

logger = logging.getLogger(__name__)


async def on_startup() -> SchedulerService:
    """Initializes the database and starts the scheduled jobs."""
    logger.info("Initializing database...")
    await Tortoise.init(config=TORTOISE_ORM)
    logger.info("Database initialized.")

    created = await seed_charge_types()
    logger.info(f"System charge types ready ({created} created).")

    services = BillingServices.build()
    scheduler_service = SchedulerService(
        orchestrator=services.runs,
        lifecycle=services.lifecycle,
        org_repo=services.org_repo,
        scheduler=AsyncIOScheduler(),
    )
    scheduler_service.start()
    return scheduler_service


async def on_shutdown(scheduler_service: SchedulerService | None):
    """Stops the jobs and closes connections."""
    logger.info("Closing connections...")
    if scheduler_service is not None:
        scheduler_service.shutdown()
    await Tortoise.close_connections()
    logger.info("Connections closed.")


async def main():
    """Runs the worker until it is stopped."""
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
    )
    logger.info("Starting billing worker...")

    scheduler_service = None
    try:
        scheduler_service = await on_startup()
        await asyncio.Event().wait()
    finally:
        await on_shutdown(scheduler_service)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except (KeyboardInterrupt, SystemExit):
        logger.info("Worker stopped manually.")
