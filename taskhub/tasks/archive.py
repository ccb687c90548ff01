"""Celery tasks for task archival sweeps."""
import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool

from taskhub.config import settings
from taskhub.services.archival_service import SweepType, archival_service
from taskhub.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)

# Create async engine for Celery tasks
engine = create_async_engine(settings.DATABASE_URL, echo=False, poolclass=NullPool)
AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@celery_app.task
def archive_tasks(sweep_type: str = SweepType.ALL.value, force: bool = False):
    """Archive completed and overdue tasks (called by Celery Beat)."""
    async def _archive():
        async with AsyncSessionLocal() as db:
            return await archival_service.run(db, SweepType(sweep_type), force=force)

    result = asyncio.run(_archive())
    logger.info("Archive sweep finished: %s", result)
    return result


@celery_app.task
def archive_overdue_after_shift(dry_run: bool = False):
    """Archive overdue tasks of shifts that closed long enough ago (called by Celery Beat)."""
    async def _archive():
        async with AsyncSessionLocal() as db:
            return await archival_service.archive_after_shifts(db, dry_run=dry_run)

    result = asyncio.run(_archive())
    logger.info("Post-shift archive sweep finished: %s", result)
    return result
