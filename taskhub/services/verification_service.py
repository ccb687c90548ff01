"""Manager verification of submitted responses.

Every action appends a TaskVerificationHistory row in the same transaction
as the status change; events are published only after commit.
"""
from __future__ import annotations

import logging
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from taskhub.core.exceptions import ConflictError, NotFoundError
from taskhub.core.outbox import Outbox, transaction
from taskhub.core.time import now_utc
from taskhub.crud.task import task as task_crud
from taskhub.crud.task import task_response as task_response_crud
from taskhub.localization.helpers import get_translation
from taskhub.middleware.metrics import task_verifications_total
from taskhub.models.task import (
    IndividualProofs,
    ResponseStatus,
    Task,
    TaskResponse,
    TaskVerificationHistory,
    VerificationAction,
)
from taskhub.models.user import User
from taskhub.services.event_publisher import event_publisher
from taskhub.services.proof_service import proof_service
from taskhub.services.task_service import task_service

logger = logging.getLogger(__name__)


def record_history(
    db: AsyncSession,
    response: TaskResponse,
    action: VerificationAction,
    performer: Optional[User],
    previous_status: Optional[str],
    new_status: str,
    proof_count: int,
    reason: Optional[str] = None,
) -> TaskVerificationHistory:
    """Append a history row to the session. The caller commits."""
    entry = TaskVerificationHistory(
        task_response_id=response.id,
        action=action.value,
        performed_by=performer.id if performer else None,
        reason=reason,
        previous_status=previous_status,
        new_status=new_status,
        proof_count=proof_count,
        created_at=now_utc(),
    )
    db.add(entry)
    return entry


class VerificationService:
    """Approve and reject responses awaiting review."""

    async def load(self, db: AsyncSession, response_id: UUID, verifier: User) -> Tuple[Task, TaskResponse]:
        """Load a response and its task, checking the verifier's dealership access."""
        response = await task_response_crud.get(db, response_id)
        if response is None:
            raise NotFoundError(get_translation("tasks.response_not_found"))
        task = await task_crud.get(db, response.task_id)
        if task is None:
            raise NotFoundError(get_translation("tasks.not_found"))
        task_service.ensure_dealership_access(verifier, task.dealership_id)
        return task, response

    @staticmethod
    def _ensure_pending_review(response: TaskResponse) -> None:
        if response.status != ResponseStatus.PENDING_REVIEW.value:
            raise ConflictError(get_translation("tasks.not_pending_review", status=response.status))

    @staticmethod
    async def _locked(db: AsyncSession, task_id: UUID, response_id: UUID) -> Tuple[Task, TaskResponse]:
        task = await task_crud.get_for_update(db, task_id)
        if task is None:
            raise NotFoundError(get_translation("tasks.not_found"))
        response = await task_response_crud.get(db, response_id)
        if response is None:
            raise NotFoundError(get_translation("tasks.response_not_found"))
        return task, response

    async def approve(self, db: AsyncSession, response_id: UUID, verifier: User) -> TaskResponse:
        task, response = await self.load(db, response_id, verifier)

        async with transaction(db) as outbox:
            task, response = await self._locked(db, task.id, response.id)
            self._ensure_pending_review(response)

            previous = response.status
            proof_count = await proof_service.count_proofs(db, response.proof_source)

            response.status = ResponseStatus.COMPLETED.value
            response.verified_at = now_utc()
            response.verified_by = verifier.id
            response.rejection_reason = None
            record_history(
                db, response, VerificationAction.APPROVED, verifier, previous, response.status, proof_count
            )
            outbox.enqueue_event(event_publisher.publish_task_approved, task, response)

        task_verifications_total.labels(VerificationAction.APPROVED.value).inc()
        logger.info("Response %s approved by %s", response.id, verifier.id)
        return await task_response_crud.get(db, response.id)

    async def _reject_one(
        self,
        db: AsyncSession,
        response: TaskResponse,
        verifier: User,
        reason: str,
        outbox: Outbox,
        include_shared: bool,
    ) -> None:
        """Reject a single response, removing the proofs it was judged on.

        With ``include_shared`` off the task's shared proofs are left alone
        and a shared response records a proof count of zero.
        """
        previous = response.status
        source = response.proof_source
        if isinstance(source, IndividualProofs):
            proof_count = await proof_service.delete_response_proofs(db, [source.response_id], outbox)
        elif include_shared:
            proof_count = await proof_service.delete_shared_proofs(db, source.task_id, outbox)
        else:
            proof_count = 0

        response.status = ResponseStatus.REJECTED.value
        response.clear_verification()
        response.rejection_reason = reason
        response.rejection_count = (response.rejection_count or 0) + 1
        response.proof_source = IndividualProofs(response_id=response.id)
        record_history(
            db, response, VerificationAction.REJECTED, verifier, previous, response.status, proof_count, reason
        )

    async def reject(self, db: AsyncSession, response_id: UUID, verifier: User, reason: str) -> TaskResponse:
        """Reject one response. Siblings sharing the same proofs keep their status."""
        task, response = await self.load(db, response_id, verifier)

        async with transaction(db) as outbox:
            task, response = await self._locked(db, task.id, response.id)
            self._ensure_pending_review(response)
            await self._reject_one(db, response, verifier, reason, outbox, include_shared=True)
            outbox.enqueue_event(event_publisher.publish_task_rejected, task, response, reason)

        task_verifications_total.labels(VerificationAction.REJECTED.value).inc()
        logger.info("Response %s rejected by %s", response.id, verifier.id)
        return await task_response_crud.get(db, response.id)

    async def reject_all_for_task(self, db: AsyncSession, task_id: UUID, verifier: User, reason: str) -> List[UUID]:
        """Reject every response awaiting review; returns the affected user ids."""
        task = await task_crud.get(db, task_id)
        if task is None:
            raise NotFoundError(get_translation("tasks.not_found"))
        task_service.ensure_dealership_access(verifier, task.dealership_id)

        rejected: List[UUID] = []
        async with transaction(db) as outbox:
            task = await task_crud.get_for_update(db, task_id)
            for response in list(task.responses):
                if response.status != ResponseStatus.PENDING_REVIEW.value:
                    continue
                await self._reject_one(db, response, verifier, reason, outbox, include_shared=False)
                rejected.append(response.user_id)

            await proof_service.delete_shared_proofs(db, task.id, outbox)
            if rejected:
                outbox.enqueue_event(event_publisher.publish_task_rejected_bulk, task, rejected, reason)

        if rejected:
            task_verifications_total.labels(VerificationAction.REJECTED.value).inc(len(rejected))
            logger.info("Rejected %d responses of task %s", len(rejected), task_id)
        return rejected

    async def history(self, db: AsyncSession, response_id: UUID, viewer: User) -> List[TaskVerificationHistory]:
        await self.load(db, response_id, viewer)
        return await task_response_crud.get_history(db, response_id=response_id)


verification_service = VerificationService()
