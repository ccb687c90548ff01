"""Tests for status updates of task responses."""
import uuid
from datetime import timedelta

import pytest
from sqlalchemy import select

from taskhub.core.exceptions import InvalidTransitionError, OpenShiftRequiredError, ProofRequiredError
from taskhub.core.time import now_utc
from taskhub.models.shift import Shift, ShiftStatus
from taskhub.models.task import (
    ResponseStatus,
    ResponseType,
    SubmissionSource,
    Task,
    TaskAssignment,
    TaskProof,
    TaskResponse,
    TaskType,
)
from taskhub.services.settings_service import TASK_REQUIRES_OPEN_SHIFT, settings_service
from taskhub.services.task_response_service import task_response_service


async def _task(db, dealership, creator, assignees, *, task_type=TaskType.INDIVIDUAL, response_type=None):
    task = Task(
        id=uuid.uuid4(),
        title="Refill the coffee machine",
        dealership_id=dealership.id,
        creator_id=creator.id,
        task_type=task_type.value,
        response_type=(response_type or ResponseType.COMPLETION).value,
    )
    db.add(task)
    for user in assignees:
        db.add(TaskAssignment(task_id=task.id, user_id=user.id))
    await db.commit()
    return task


async def _respond(db, task, user, status, **fields):
    response = TaskResponse(id=uuid.uuid4(), task_id=task.id, user_id=user.id, status=status.value, **fields)
    db.add(response)
    await db.commit()
    return response


async def _stored(db, task_id, user_id):
    result = await db.execute(
        select(TaskResponse)
        .where(TaskResponse.task_id == task_id, TaskResponse.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


def _response_of(task, user):
    return next(item for item in task.responses if item.user_id == user.id)


@pytest.mark.asyncio
async def test_transition_is_checked_again_under_the_task_lock(
    db_session, dealership, manager, employee, monkeypatch
):
    """A status committed after the first check is seen once the task is locked."""
    task = await _task(db_session, dealership, manager, [employee])
    task_id, employee_id = task.id, employee.id

    async def complete_meanwhile(db, user_id):
        db.add(TaskResponse(
            task_id=task_id,
            user_id=employee_id,
            status=ResponseStatus.COMPLETED.value,
            responded_at=now_utc(),
            verified_by=manager.id,
        ))
        await db.commit()
        return None

    monkeypatch.setattr(task_response_service, "find_open_shift", complete_meanwhile)

    with pytest.raises(InvalidTransitionError) as exc_info:
        await task_response_service.update_status(db_session, task_id, employee, ResponseStatus.ACKNOWLEDGED.value)

    assert exc_info.value.status_code == 409
    assert exc_info.value.edge == "completed -> acknowledged"
    stored = await _stored(db_session, task_id, employee_id)
    assert stored.status == ResponseStatus.COMPLETED.value


@pytest.mark.asyncio
async def test_proof_presence_is_checked_again_under_the_task_lock(
    db_session, dealership, manager, employee, monkeypatch
):
    task = await _task(
        db_session, dealership, manager, [employee], response_type=ResponseType.COMPLETION_WITH_PROOF
    )
    response = await _respond(db_session, task, employee, ResponseStatus.REJECTED, rejection_count=1)
    proof = TaskProof(
        task_response_id=response.id,
        file_path=f"task_proofs/{dealership.id}/{task.id}/{response.id}/old.jpg",
        original_filename="old.jpg",
        mime_type="image/jpeg",
        file_size=10,
    )
    db_session.add(proof)
    await db_session.commit()
    task_id, employee_id = task.id, employee.id

    async def drop_proof_meanwhile(db, user_id):
        await db.delete(proof)
        await db.commit()
        return None

    monkeypatch.setattr(task_response_service, "find_open_shift", drop_proof_meanwhile)

    with pytest.raises(ProofRequiredError):
        await task_response_service.update_status(db_session, task_id, employee, ResponseStatus.COMPLETED.value)

    stored = await _stored(db_session, task_id, employee_id)
    assert stored.status == ResponseStatus.REJECTED.value


@pytest.mark.asyncio
async def test_complete_for_all_keeps_approved_assignees(db_session, dealership, manager, employees, fake_redis):
    task = await _task(db_session, dealership, manager, employees, task_type=TaskType.GROUP)
    approved_at = now_utc() - timedelta(hours=1)
    await _respond(
        db_session,
        task,
        employees[0],
        ResponseStatus.COMPLETED,
        responded_at=approved_at,
        verified_at=approved_at,
        verified_by=manager.id,
        submission_source=SubmissionSource.INDIVIDUAL.value,
    )

    updated = await task_response_service.update_status(
        db_session, task.id, manager, ResponseStatus.COMPLETED.value, complete_for_all=True
    )

    kept = _response_of(updated, employees[0])
    assert kept.status == ResponseStatus.COMPLETED.value
    assert kept.verified_by == manager.id
    assert kept.submission_source == SubmissionSource.INDIVIDUAL.value
    for user in employees[1:]:
        response = _response_of(updated, user)
        assert response.status == ResponseStatus.COMPLETED.value
        assert response.submission_source == SubmissionSource.SHARED.value
        assert response.uses_shared_proofs is False


@pytest.mark.asyncio
async def test_complete_for_all_refused_when_nobody_can_move(db_session, dealership, manager, employees):
    task = await _task(db_session, dealership, manager, employees, task_type=TaskType.GROUP)
    for user in employees:
        await _respond(db_session, task, user, ResponseStatus.COMPLETED, responded_at=now_utc())
    task_id = task.id

    with pytest.raises(InvalidTransitionError) as exc_info:
        await task_response_service.update_status(
            db_session, task_id, manager, ResponseStatus.COMPLETED.value, complete_for_all=True
        )

    assert exc_info.value.edge == "completed -> completed"


@pytest.mark.asyncio
async def test_open_shift_required_for_regular_submit(db_session, dealership, manager, employee):
    task = await _task(db_session, dealership, manager, [employee])
    await settings_service.set(db_session, TASK_REQUIRES_OPEN_SHIFT, True, dealership.id)
    task_id = task.id

    # Acknowledging is not a submission and passes the gate
    acknowledged = await task_response_service.update_status(
        db_session, task_id, employee, ResponseStatus.ACKNOWLEDGED.value
    )
    assert _response_of(acknowledged, employee).status == ResponseStatus.ACKNOWLEDGED.value

    with pytest.raises(OpenShiftRequiredError) as exc_info:
        await task_response_service.update_status(db_session, task_id, employee, ResponseStatus.COMPLETED.value)
    assert exc_info.value.status_code == 409


@pytest.mark.asyncio
async def test_managers_are_exempt_from_open_shift_gate(db_session, dealership, manager):
    task = await _task(db_session, dealership, manager, [manager])
    await settings_service.set(db_session, TASK_REQUIRES_OPEN_SHIFT, True, dealership.id)

    updated = await task_response_service.update_status(
        db_session, task.id, manager, ResponseStatus.COMPLETED.value
    )

    response = _response_of(updated, manager)
    assert response.status == ResponseStatus.COMPLETED.value
    assert response.shift_id is None
    assert response.completed_during_shift is False


@pytest.mark.asyncio
async def test_open_shift_is_recorded_on_the_response(db_session, dealership, manager, employee):
    task = await _task(db_session, dealership, manager, [employee])
    await settings_service.set(db_session, TASK_REQUIRES_OPEN_SHIFT, True, dealership.id)
    shift = Shift(
        id=uuid.uuid4(),
        user_id=employee.id,
        dealership_id=dealership.id,
        shift_start=now_utc() - timedelta(hours=2),
        status=ShiftStatus.OPEN.value,
    )
    db_session.add(shift)
    await db_session.commit()

    updated = await task_response_service.update_status(
        db_session, task.id, employee, ResponseStatus.COMPLETED.value
    )

    response = _response_of(updated, employee)
    assert response.status == ResponseStatus.COMPLETED.value
    assert response.shift_id == shift.id
    assert response.completed_during_shift is True
