"""Celery tasks for proof storage."""
import asyncio
import logging
from typing import List, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool

from taskhub.config import settings
from taskhub.services.proof_service import ProofStorageError, proof_service
from taskhub.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)

# Create async engine for Celery tasks
engine = create_async_engine(settings.DATABASE_URL, echo=False, poolclass=NullPool)
AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def _uuid(value: Optional[str]) -> Optional[UUID]:
    return UUID(value) if value else None


def _retry_countdown(retries: int) -> int:
    return settings.PROOF_STORAGE_BACKOFF_SECONDS * (2 ** retries)


@celery_app.task(bind=True, max_retries=settings.PROOF_STORAGE_MAX_ATTEMPTS - 1)
def store_task_proofs(self, response_id: str, files: List[dict], dealership_id: Optional[str], task_id: str):
    """Move staged proof files of one response into storage."""
    async def _store():
        async with AsyncSessionLocal() as db:
            return await proof_service.store_proofs(
                db, UUID(response_id), files, _uuid(dealership_id), UUID(task_id)
            )

    try:
        proofs = asyncio.run(_store())
    except ProofStorageError as exc:
        if self.request.retries < self.max_retries:
            raise self.retry(exc=exc, countdown=_retry_countdown(self.request.retries))
        logger.error("Giving up on proofs for response %s after %d attempts: %s", response_id, self.request.retries + 1, exc)
        proof_service.discard_staged(files)
        return 0
    return len(proofs)


@celery_app.task(bind=True, max_retries=settings.PROOF_STORAGE_MAX_ATTEMPTS - 1)
def store_task_shared_proofs(self, task_id: str, files: List[dict], dealership_id: Optional[str]):
    """Move staged shared proof files of a task into storage."""
    async def _store():
        async with AsyncSessionLocal() as db:
            return await proof_service.store_shared_proofs(db, UUID(task_id), files, _uuid(dealership_id))

    try:
        proofs = asyncio.run(_store())
    except Exception as exc:
        if self.request.retries < self.max_retries:
            raise self.retry(exc=exc, countdown=_retry_countdown(self.request.retries))
        logger.error("Giving up on shared proofs for task %s: %s", task_id, exc)
        proof_service.discard_staged(files)
        return 0
    return len(proofs)


@celery_app.task(bind=True, max_retries=settings.PROOF_STORAGE_MAX_ATTEMPTS - 1)
def delete_proof_files(self, keys: List[str]):
    """Delete stored proof objects whose rows were removed."""
    failed = proof_service.delete_files(keys)
    if not failed:
        return len(keys)
    if self.request.retries < self.max_retries:
        raise self.retry(args=[failed], countdown=_retry_countdown(self.request.retries))
    logger.error("Giving up on deleting %d proof objects: %s", len(failed), ", ".join(failed))
    return len(keys) - len(failed)


@celery_app.task
def cleanup_temp_proof_uploads(max_age_hours: Optional[int] = None):
    """Remove staged uploads that were never picked up (called by Celery Beat)."""
    return proof_service.cleanup_temp_uploads(max_age_hours=max_age_hours)
