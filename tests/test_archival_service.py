"""Tests for the archive sweeps."""
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from taskhub.config import settings
from taskhub.core.time import is_time_match
from taskhub.models.shift import Shift, ShiftStatus
from taskhub.models.task import ArchiveReason, ResponseStatus, Task, TaskAssignment, TaskResponse
from taskhub.services.archival_service import ArchivePolicy, SweepType, archival_service
from taskhub.services.settings_service import ARCHIVE_OVERDUE_DAY_OF_WEEK, settings_service

# A Wednesday, 03:02 UTC
NOW = datetime(2030, 5, 1, 3, 2, tzinfo=timezone.utc)


async def _task(db, dealership, *, deadline=None, completed_at=None, assignee=None):
    task = Task(id=uuid.uuid4(), title="Check tyre pressure", dealership_id=dealership.id, deadline=deadline)
    db.add(task)
    if assignee is not None:
        db.add(TaskAssignment(task_id=task.id, user_id=assignee.id))
        if completed_at is not None:
            db.add(TaskResponse(
                task_id=task.id,
                user_id=assignee.id,
                status=ResponseStatus.COMPLETED.value,
                responded_at=completed_at,
            ))
    await db.commit()
    return task


async def _reload(db, task):
    await db.refresh(task)
    return task


@pytest.mark.parametrize(
    "current, configured, expected",
    [
        ("03:00", "03:00", True),
        ("03:05", "03:00", True),
        ("03:06", "03:00", False),
        ("00:02", "23:58", True),
        ("23:58", "00:02", True),
        ("00:10", "23:58", False),
    ],
)
def test_time_match_wraps_midnight(current, configured, expected):
    assert is_time_match(current, configured, 5) is expected


def test_policy_overdue_disabled_by_zero_day():
    policy = ArchivePolicy(completed_time="03:00", overdue_day_of_week=0, overdue_time="03:00")
    assert policy.completed_due(NOW, 5)
    assert not policy.overdue_due(NOW, 5)

    weekly = ArchivePolicy(completed_time="03:00", overdue_day_of_week=3, overdue_time="03:00")
    assert weekly.overdue_due(NOW, 5)
    assert not weekly.overdue_due(NOW + timedelta(days=1), 5)


@pytest.mark.asyncio
async def test_archive_completed_after_a_day(db_session, dealership, employee):
    old = await _task(db_session, dealership, assignee=employee, completed_at=NOW - timedelta(hours=25))
    fresh = await _task(db_session, dealership, assignee=employee, completed_at=NOW - timedelta(hours=2))
    open_task = await _task(db_session, dealership, assignee=employee)

    archived = await archival_service.archive_completed(db_session, dealership.id, NOW)

    assert archived == 1
    old = await _reload(db_session, old)
    assert old.archive_reason == ArchiveReason.COMPLETED.value
    assert old.is_active is False
    assert (await _reload(db_session, fresh)).archived_at is None
    assert (await _reload(db_session, open_task)).archived_at is None


@pytest.mark.asyncio
async def test_archive_overdue_after_a_day(db_session, dealership, employee):
    overdue = await _task(db_session, dealership, deadline=NOW - timedelta(hours=25), assignee=employee)
    recent = await _task(db_session, dealership, deadline=NOW - timedelta(hours=23), assignee=employee)
    done = await _task(
        db_session,
        dealership,
        deadline=NOW - timedelta(hours=30),
        assignee=employee,
        completed_at=NOW - timedelta(hours=2),
    )

    archived = await archival_service.archive_overdue(db_session, dealership.id, NOW)

    assert archived == 1
    assert (await _reload(db_session, overdue)).archive_reason == ArchiveReason.EXPIRED.value
    assert (await _reload(db_session, recent)).archived_at is None
    assert (await _reload(db_session, done)).archived_at is None


@pytest.mark.asyncio
async def test_run_respects_trigger_time(db_session, dealership, employee):
    await _task(db_session, dealership, assignee=employee, completed_at=NOW - timedelta(hours=25))

    totals = await archival_service.run(db_session, SweepType.ALL, now=NOW.replace(hour=12))
    assert totals == {"completed": 0, "overdue": 0}

    totals = await archival_service.run(db_session, SweepType.ALL, now=NOW)
    assert totals["completed"] == 1


@pytest.mark.asyncio
async def test_run_forced_overdue_uses_dealership_override(db_session, dealership, employee):
    await _task(db_session, dealership, deadline=NOW - timedelta(days=3), assignee=employee)
    await settings_service.set(db_session, ARCHIVE_OVERDUE_DAY_OF_WEEK, 5, dealership.id)

    totals = await archival_service.run(db_session, SweepType.OVERDUE, force=True, now=NOW.replace(hour=15))

    assert totals == {"completed": 0, "overdue": 1}


@pytest.mark.asyncio
async def test_archive_after_shifts(db_session, dealership, employee):
    shift_end = NOW - timedelta(hours=3)
    shift = Shift(
        user_id=employee.id,
        dealership_id=dealership.id,
        shift_start=shift_end - timedelta(hours=8),
        shift_end=shift_end,
        status=ShiftStatus.CLOSED.value,
    )
    db_session.add(shift)
    missed = await _task(db_session, dealership, deadline=shift_end - timedelta(hours=1), assignee=employee)
    later = await _task(db_session, dealership, deadline=shift_end + timedelta(hours=1), assignee=employee)

    preview = await archival_service.archive_after_shifts(db_session, now=NOW, dry_run=True)
    assert preview == {"archived": 1, "shifts_processed": 1, "dry_run": 1}
    assert (await _reload(db_session, missed)).archived_at is None
    assert (await _reload(db_session, shift)).archived_tasks_processed is False

    result = await archival_service.archive_after_shifts(db_session, now=NOW)
    assert result == {"archived": 1, "shifts_processed": 1, "dry_run": 0}
    assert (await _reload(db_session, missed)).archive_reason == ArchiveReason.EXPIRED_AFTER_SHIFT.value
    assert (await _reload(db_session, later)).archived_at is None
    assert (await _reload(db_session, shift)).archived_tasks_processed is True

    # Processed shifts are not inspected again
    again = await archival_service.archive_after_shifts(db_session, now=NOW)
    assert again["shifts_processed"] == 0


@pytest.mark.asyncio
async def test_archive_after_shifts_waits_for_delay(db_session, dealership, employee):
    shift_end = NOW - timedelta(hours=1)
    db_session.add(Shift(
        user_id=employee.id,
        dealership_id=dealership.id,
        shift_start=shift_end - timedelta(hours=8),
        shift_end=shift_end,
        status=ShiftStatus.CLOSED.value,
    ))
    await _task(db_session, dealership, deadline=shift_end - timedelta(hours=1), assignee=employee)

    result = await archival_service.archive_after_shifts(db_session, now=NOW)
    assert result["shifts_processed"] == 0

    forced = await archival_service.archive_after_shifts(db_session, now=NOW, force=True)
    assert forced["archived"] == 1


@pytest.mark.asyncio
async def test_archive_after_shifts_walks_shifts_in_batches(db_session, dealership, employees, monkeypatch):
    """Shifts are paged one at a time; equal end times and skipped shifts are all visited once."""
    monkeypatch.setattr(settings, "ARCHIVE_BATCH_SIZE", 1)
    closed_end = NOW - timedelta(hours=5)
    ends = [closed_end, closed_end, NOW - timedelta(hours=1)]
    shifts = []
    for user, shift_end in zip(employees, ends):
        shift = Shift(
            id=uuid.uuid4(),
            user_id=user.id,
            dealership_id=dealership.id,
            shift_start=shift_end - timedelta(hours=8),
            shift_end=shift_end,
            status=ShiftStatus.CLOSED.value,
        )
        db_session.add(shift)
        shifts.append(shift)
    missed = await _task(db_session, dealership, deadline=closed_end - timedelta(hours=1), assignee=employees[0])

    preview = await archival_service.archive_after_shifts(db_session, now=NOW, dry_run=True)
    assert preview["shifts_processed"] == 2

    result = await archival_service.archive_after_shifts(db_session, now=NOW)
    assert result == {"archived": 1, "shifts_processed": 2, "dry_run": 0}
    assert (await _reload(db_session, missed)).archive_reason == ArchiveReason.EXPIRED_AFTER_SHIFT.value
    flags = [(await _reload(db_session, shift)).archived_tasks_processed for shift in shifts]
    assert flags == [True, True, False]

    again = await archival_service.archive_after_shifts(db_session, now=NOW)
    assert again["shifts_processed"] == 0
