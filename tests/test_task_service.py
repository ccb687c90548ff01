"""Tests for task creation, the duplicate guard and assignment sync."""
import json
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from taskhub.core.exceptions import DuplicateTaskError, ForbiddenError, TaskFinalizedError
from taskhub.models.task import (
    ArchiveReason,
    ResponseStatus,
    Task,
    TaskAssignment,
    TaskResponse,
    TaskType,
)
from taskhub.schemas.task import TaskCreate, TaskUpdate
from taskhub.services.task_service import task_service

DEADLINE = datetime(2030, 5, 1, 18, 30, 15, tzinfo=timezone.utc)


def _create(dealership, **overrides):
    data = {
        "title": "Wash demo cars",
        "description": "Both showroom cars",
        "dealership_id": dealership.id if dealership else None,
        "deadline": DEADLINE,
        "task_type": TaskType.INDIVIDUAL,
    }
    data.update(overrides)
    return TaskCreate(**data)


@pytest.mark.asyncio
async def test_create_task_assigns_and_notifies(db_session, manager, employees, dealership, fake_redis):
    """Creating a task stores assignments and publishes task.assigned after commit."""
    task = await task_service.create_task(
        db_session,
        _create(dealership, assigned_user_ids=[user.id for user in employees]),
        manager,
    )

    assert task.creator_id == manager.id
    assert set(task.assigned_user_ids) == {user.id for user in employees}

    assert len(fake_redis.messages) == 1
    channel, raw = fake_redis.messages[0]
    payload = json.loads(raw)
    assert payload["event"] == "task.assigned"
    assert payload["task"]["id"] == str(task.id)
    assert sorted(payload["user_ids"]) == sorted(str(user.id) for user in employees)
    assert payload["timestamp"].endswith("Z")


@pytest.mark.asyncio
async def test_duplicate_in_same_minute_is_refused(db_session, manager, dealership):
    await task_service.create_task(db_session, _create(dealership), manager)

    with pytest.raises(DuplicateTaskError) as exc_info:
        await task_service.create_task(
            db_session,
            _create(dealership, deadline=DEADLINE.replace(second=59)),
            manager,
        )
    assert exc_info.value.status_code == 409


@pytest.mark.asyncio
async def test_duplicate_guard_distinguishes_identity(db_session, manager, dealership, other_dealership, make_user):
    """A different minute, description, type or dealership is not a duplicate."""
    await task_service.create_task(db_session, _create(dealership), manager)
    owner = await make_user("owner")

    await task_service.create_task(db_session, _create(dealership, deadline=DEADLINE + timedelta(minutes=1)), manager)
    await task_service.create_task(db_session, _create(dealership, description="Only the red one"), manager)
    await task_service.create_task(db_session, _create(dealership, task_type=TaskType.GROUP), manager)
    await task_service.create_task(db_session, _create(other_dealership), owner)

    result = await db_session.execute(select(Task))
    assert len(result.scalars().all()) == 5


@pytest.mark.asyncio
async def test_duplicate_guard_matches_missing_description_and_deadline(db_session, manager):
    """Empty description and missing deadline match tasks stored without them."""
    await task_service.create_task(db_session, _create(None, description=None, deadline=None), manager)

    assert await task_service.is_duplicate(
        db_session,
        title="Wash demo cars",
        task_type=TaskType.INDIVIDUAL.value,
        dealership_id=None,
        deadline=None,
        description="",
    )


@pytest.mark.asyncio
async def test_archived_task_is_not_a_duplicate(db_session, manager, dealership):
    task = await task_service.create_task(db_session, _create(dealership), manager)
    await task_service.archive_task(db_session, task, manager)

    again = await task_service.create_task(db_session, _create(dealership), manager)
    assert again.id != task.id


@pytest.mark.asyncio
async def test_create_in_foreign_dealership_is_forbidden(db_session, manager, other_dealership):
    with pytest.raises(ForbiddenError):
        await task_service.create_task(db_session, _create(other_dealership), manager)


@pytest.mark.asyncio
async def test_sync_assignments_tombstones_and_restores(db_session, manager, employees, dealership):
    """Removed assignees are tombstoned; re-adding restores the same row."""
    first, second, third = employees
    task = await task_service.create_task(
        db_session, _create(dealership, assigned_user_ids=[first.id, second.id]), manager
    )
    original = await db_session.execute(
        select(TaskAssignment).where(TaskAssignment.task_id == task.id, TaskAssignment.user_id == second.id)
    )
    original_id = original.scalar_one().id

    activated = await task_service.sync_assignments(db_session, task.id, [first.id, third.id])
    await db_session.commit()
    assert activated == [third.id]

    rows = await db_session.execute(select(TaskAssignment).where(TaskAssignment.task_id == task.id))
    by_user = {row.user_id: row for row in rows.scalars().all()}
    assert by_user[second.id].deleted_at is not None
    assert by_user[first.id].deleted_at is None
    assert by_user[third.id].deleted_at is None

    activated = await task_service.sync_assignments(db_session, task.id, [first.id, second.id, third.id])
    await db_session.commit()
    assert activated == [second.id]

    rows = await db_session.execute(
        select(TaskAssignment).where(TaskAssignment.task_id == task.id, TaskAssignment.user_id == second.id)
    )
    restored = rows.scalars().all()
    assert len(restored) == 1
    assert restored[0].id == original_id
    assert restored[0].deleted_at is None


@pytest.mark.asyncio
async def test_sync_assignments_is_idempotent(db_session, manager, employees, dealership):
    ids = [user.id for user in employees]
    task = await task_service.create_task(db_session, _create(dealership, assigned_user_ids=ids), manager)

    assert await task_service.sync_assignments(db_session, task.id, ids) == []
    await db_session.commit()


@pytest.mark.asyncio
async def test_update_refused_for_completed_task(db_session, manager, employee, dealership):
    task = await task_service.create_task(
        db_session, _create(dealership, assigned_user_ids=[employee.id]), manager
    )
    db_session.add(
        TaskResponse(
            task_id=task.id,
            user_id=employee.id,
            status=ResponseStatus.COMPLETED.value,
            responded_at=datetime.now(timezone.utc),
        )
    )
    await db_session.commit()
    task = await task_service.get_visible(db_session, task.id, manager)

    with pytest.raises(TaskFinalizedError):
        await task_service.update_task(db_session, task, TaskUpdate(title="Renamed"), manager)


@pytest.mark.asyncio
async def test_update_changes_fields_and_assignees(db_session, manager, employees, dealership, fake_redis):
    first, second, _ = employees
    task = await task_service.create_task(
        db_session, _create(dealership, assigned_user_ids=[first.id]), manager
    )
    fake_redis.messages.clear()

    updated = await task_service.update_task(
        db_session,
        task,
        TaskUpdate(title="Wash every car", description=None, assigned_user_ids=[second.id]),
        manager,
    )

    assert updated.title == "Wash every car"
    assert updated.description is None
    assert updated.assigned_user_ids == [second.id]
    assert json.loads(fake_redis.messages[0][1])["user_ids"] == [str(second.id)]


@pytest.mark.asyncio
async def test_soft_delete_hides_task(db_session, manager, dealership):
    task = await task_service.create_task(db_session, _create(dealership), manager)

    await task_service.delete_task(db_session, task, manager)

    row = await db_session.get(Task, task.id)
    assert row.deleted_at is not None
    from taskhub.crud.task import task as task_crud

    assert await task_crud.get(db_session, task.id) is None


@pytest.mark.asyncio
async def test_archive_and_restore_keep_flags_in_step(db_session, manager, dealership):
    task = await task_service.create_task(db_session, _create(dealership), manager)

    archived = await task_service.archive_task(db_session, task, manager)
    assert archived.is_active is False
    assert archived.archived_at is not None
    assert archived.archive_reason == ArchiveReason.MANUAL.value

    restored = await task_service.restore_task(db_session, archived, manager)
    assert restored.is_active is True
    assert restored.archived_at is None
    assert restored.archive_reason is None
