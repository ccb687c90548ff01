"""Assignee status updates.

``update_status`` is the single entrypoint for moving responses through the
state machine. Checks run in a fixed order (authorization, input
validation, transition, proof presence, shift gate) before anything is
written. The mutation runs with the task row locked, after the transition
and proof checks are repeated against the locked rows, and releases file
jobs and events only after commit.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import UploadFile
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub.core.exceptions import (
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    OpenShiftRequiredError,
    ProofRequiredError,
    ValidationError,
)
from taskhub.core.outbox import Outbox, transaction
from taskhub.core.time import now_utc
from taskhub.crud.task import task as task_crud
from taskhub.crud.task import task_response as task_response_crud
from taskhub.localization.helpers import get_translation
from taskhub.middleware.metrics import task_status_transitions_total
from taskhub.models.shift import Shift, ShiftStatus
from taskhub.models.task import (
    IndividualProofs,
    ResponseStatus,
    ResponseType,
    SharedProofs,
    SubmissionSource,
    Task,
    TaskResponse,
    TaskType,
    VerificationAction,
)
from taskhub.models.user import User
from taskhub.services.event_publisher import event_publisher
from taskhub.services.proof_service import proof_service
from taskhub.services.response_state_machine import Capability, capability_for, ensure_transition
from taskhub.services.settings_service import TASK_REQUIRES_OPEN_SHIFT, settings_service
from taskhub.services.task_service import task_service
from taskhub.services.verification_service import record_history
from taskhub.utils.permissions import is_elevated

logger = logging.getLogger(__name__)

UPDATABLE_STATUSES = frozenset({
    ResponseStatus.PENDING.value,
    ResponseStatus.ACKNOWLEDGED.value,
    ResponseStatus.PENDING_REVIEW.value,
    ResponseStatus.COMPLETED.value,
})

_SUBMIT_STATUSES = (ResponseStatus.PENDING_REVIEW.value, ResponseStatus.COMPLETED.value)


def _str(value: Optional[UUID]) -> Optional[str]:
    return str(value) if value is not None else None


class TaskResponseService:
    """Status updates of task responses."""

    @staticmethod
    async def find_open_shift(db: AsyncSession, user_id: UUID) -> Optional[Shift]:
        result = await db.execute(
            select(Shift)
            .where(
                Shift.user_id == user_id,
                Shift.shift_end.is_(None),
                Shift.status == ShiftStatus.OPEN.value,
            )
            .order_by(Shift.shift_start.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def update_status(
        self,
        db: AsyncSession,
        task_id: UUID,
        actor: User,
        status: str,
        complete_for_all: bool = False,
        preserve_proofs: bool = False,
        files: Optional[List[UploadFile]] = None,
    ) -> Task:
        """Move the actor's response (or every assignee's) to ``status``."""
        files = [upload for upload in (files or []) if upload.filename]

        task = await task_crud.get(db, task_id)
        if task is None:
            raise NotFoundError(get_translation("tasks.not_found"))

        # Authorization
        if task.dealership_id is not None:
            task_service.ensure_dealership_access(actor, task.dealership_id)
        elevated = is_elevated(actor)
        if complete_for_all and not elevated:
            raise ForbiddenError(get_translation("tasks.complete_for_all_forbidden"))

        # Input validation
        if status not in UPDATABLE_STATUSES:
            raise ValidationError(get_translation("tasks.invalid_status", status=status))
        if complete_for_all and task.task_type != TaskType.GROUP.value:
            raise ValidationError(get_translation("tasks.complete_for_all_group_only"))
        uploads = await proof_service.validate_uploads(db, files, task.dealership_id)

        # Transition
        target = self._effective_target(task, status, uploads)
        capability = capability_for(elevated)
        own = await task_response_crud.get_by_task_and_user(db, task_id=task.id, user_id=actor.id)
        ensure_transition(own.status if own else None, target, capability)

        # Proof presence
        await self._ensure_proofs(db, task, own, elevated, target, uploads)

        # Shift gate
        shift_id = None
        if target != ResponseStatus.PENDING.value:
            shift = await self.find_open_shift(db, actor.id)
            if target in _SUBMIT_STATUSES and shift is None and not elevated:
                if await settings_service.get_bool(db, TASK_REQUIRES_OPEN_SHIFT, task.dealership_id):
                    raise OpenShiftRequiredError()
            if shift is not None:
                shift_id = shift.id

        staged = proof_service.stage(uploads) if uploads and target in _SUBMIT_STATUSES else []
        now = now_utc()

        async with transaction(db) as outbox:
            if staged:
                outbox.on_rollback(proof_service.discard_staged, staged)

            task = await task_crud.get_for_update(db, task_id)
            if task is None:
                raise NotFoundError(get_translation("tasks.not_found"))

            # The response may have moved while the checks above ran
            own = next((item for item in task.responses if item.user_id == actor.id), None)
            ensure_transition(own.status if own else None, target, capability)
            await self._ensure_proofs(db, task, own, elevated, target, uploads)

            if target == ResponseStatus.PENDING.value:
                await self._reset(db, task, preserve_proofs, outbox)
            elif target == ResponseStatus.ACKNOWLEDGED.value:
                await self._upsert(
                    db,
                    task,
                    actor.id,
                    status=target,
                    responded_at=now,
                    shift_id=shift_id,
                    completed_during_shift=shift_id is not None,
                )
            elif complete_for_all:
                await self._complete_for_all(db, task, target, now, staged, outbox)
            else:
                await self._submit(db, task, actor, elevated, target, now, shift_id, staged, outbox)

        scope = "all" if complete_for_all else "own"
        task_status_transitions_total.labels(target, scope).inc()
        logger.info("Task %s: %s set %s (%s)", task_id, actor.id, target, scope)
        return await task_crud.get(db, task_id)

    @staticmethod
    def _effective_target(task: Task, status: str, uploads: List) -> str:
        """Uploaded proof always goes through review."""
        if (
            uploads
            and status == ResponseStatus.COMPLETED.value
            and task.response_type == ResponseType.COMPLETION_WITH_PROOF.value
        ):
            return ResponseStatus.PENDING_REVIEW.value
        return status

    @staticmethod
    async def _ensure_proofs(
        db: AsyncSession,
        task: Task,
        own: Optional[TaskResponse],
        elevated: bool,
        target: str,
        uploads: List,
    ) -> None:
        if task.response_type != ResponseType.COMPLETION_WITH_PROOF.value or target not in _SUBMIT_STATUSES:
            return
        if uploads:
            return
        if elevated:
            has_proofs = await proof_service.task_has_any_proofs(db, task.id)
        else:
            has_proofs = own is not None and await proof_service.count_response_proofs(db, own.id) > 0
        if not has_proofs:
            raise ProofRequiredError()

    @staticmethod
    async def _upsert(db: AsyncSession, task: Task, user_id: UUID, **fields) -> TaskResponse:
        response = next((item for item in task.responses if item.user_id == user_id), None)
        if response is None:
            response = TaskResponse(task_id=task.id, user_id=user_id)
            db.add(response)
        for field, value in fields.items():
            setattr(response, field, value)
        await db.flush()
        return response

    @staticmethod
    async def _reset(db: AsyncSession, task: Task, preserve_proofs: bool, outbox: Outbox) -> None:
        """Elevated reset of every response back to pending."""
        if preserve_proofs:
            for response in task.responses:
                response.status = ResponseStatus.PENDING.value
                response.clear_verification()
        else:
            response_ids = [response.id for response in task.responses]
            await proof_service.delete_response_proofs(db, response_ids, outbox)
            await proof_service.delete_shared_proofs(db, task.id, outbox)
            if response_ids:
                await db.execute(delete(TaskResponse).where(TaskResponse.id.in_(response_ids)))

        assigned = task.assigned_user_ids
        if assigned:
            outbox.enqueue_event(task_service.notify_assigned, db, task.id, assigned)

    async def _complete_for_all(
        self,
        db: AsyncSession,
        task: Task,
        target: str,
        now: datetime,
        staged: List[dict],
        outbox: Outbox,
    ) -> None:
        """Submit on behalf of every assignee.

        Responses switch to the task's shared proofs when new files arrive or
        shared proofs already exist; their own proofs are then removed.
        Assignees whose response cannot move to ``target`` (an approved
        completion, a response already in review) are left untouched. When
        nobody can move the request fails with the first refused edge.
        """
        uses_shared = bool(staged) or await proof_service.count_shared_proofs(db, task.id) > 0

        responses = []
        refused = []
        for user_id in task.assigned_user_ids:
            existing = next((item for item in task.responses if item.user_id == user_id), None)
            try:
                ensure_transition(existing.status if existing else None, target, Capability.ELEVATED)
            except InvalidTransitionError as exc:
                logger.info("Task %s: keeping %s of %s (%s)", task.id, existing.status, user_id, exc.edge)
                refused.append(exc)
                continue

            response = await self._upsert(
                db,
                task,
                user_id,
                status=target,
                responded_at=now,
                shift_id=None,
                completed_during_shift=False,
                submission_source=SubmissionSource.SHARED.value,
            )
            response.clear_verification()
            response.proof_source = (
                SharedProofs(task_id=task.id) if uses_shared else IndividualProofs(response_id=response.id)
            )
            responses.append(response)

        if refused and not responses:
            raise refused[0]

        if uses_shared:
            await proof_service.delete_response_proofs(db, [response.id for response in responses], outbox)

        if staged:
            from taskhub.tasks.proofs import store_task_shared_proofs

            outbox.enqueue_job(store_task_shared_proofs, str(task.id), staged, _str(task.dealership_id))

    async def _submit(
        self,
        db: AsyncSession,
        task: Task,
        actor: User,
        elevated: bool,
        target: str,
        now: datetime,
        shift_id: Optional[UUID],
        staged: List[dict],
        outbox: Outbox,
    ) -> None:
        """Submit (or complete) the actor's own response."""
        existing = next((item for item in task.responses if item.user_id == actor.id), None)
        previous = existing.status if existing else None

        if elevated and previous == ResponseStatus.PENDING_REVIEW.value and target == ResponseStatus.COMPLETED.value:
            await self._approve_own(db, existing, actor, now)
            return

        resubmission = previous == ResponseStatus.REJECTED.value
        response = await self._upsert(
            db,
            task,
            actor.id,
            status=target,
            responded_at=now,
            shift_id=shift_id,
            completed_during_shift=shift_id is not None,
            submission_source=(SubmissionSource.RESUBMITTED if resubmission else SubmissionSource.INDIVIDUAL).value,
        )
        response.clear_verification()
        response.proof_source = IndividualProofs(response_id=response.id)

        if staged:
            from taskhub.tasks.proofs import store_task_proofs

            outbox.enqueue_job(
                store_task_proofs, str(response.id), staged, _str(task.dealership_id), str(task.id)
            )

        if target == ResponseStatus.PENDING_REVIEW.value:
            proof_count = await proof_service.count_response_proofs(db, response.id) + len(staged)
            record_history(
                db,
                response,
                VerificationAction.RESUBMITTED if resubmission else VerificationAction.SUBMITTED,
                actor,
                previous or ResponseStatus.PENDING.value,
                target,
                proof_count,
            )
            outbox.enqueue_event(event_publisher.publish_task_pending_review, db, task, response)

    @staticmethod
    async def _approve_own(db: AsyncSession, response: TaskResponse, actor: User, now: datetime) -> None:
        """Elevated shortcut from pending_review straight to completed."""
        proof_count = await proof_service.count_proofs(db, response.proof_source)

        response.status = ResponseStatus.COMPLETED.value
        response.verified_at = now
        response.verified_by = actor.id
        response.rejection_reason = None
        record_history(
            db,
            response,
            VerificationAction.APPROVED,
            actor,
            ResponseStatus.PENDING_REVIEW.value,
            response.status,
            proof_count,
        )


task_response_service = TaskResponseService()
