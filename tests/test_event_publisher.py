"""Tests for task event publishing."""
import json
import uuid
from datetime import datetime, timezone

import pytest

from taskhub.models.task import ResponseStatus, Task, TaskResponse
from taskhub.services.event_publisher import DEFAULT_SUBMITTER_NAME, TaskEventPublisher, serialize_task
from taskhub.services.settings_service import NOTIFY_TASK_ASSIGNED, settings_service


async def _task(db, dealership=None, **fields):
    task = Task(
        id=uuid.uuid4(),
        title="Update price tags",
        dealership_id=dealership.id if dealership else None,
        deadline=datetime(2030, 5, 1, 18, 30, tzinfo=timezone.utc),
        **fields,
    )
    db.add(task)
    await db.commit()
    return task


async def _pending_review(db, task, user):
    response = TaskResponse(task_id=task.id, user_id=user.id, status=ResponseStatus.PENDING_REVIEW.value)
    db.add(response)
    await db.commit()
    return response


def test_serialize_task_uses_utc_zulu():
    task = Task(
        id=uuid.uuid4(),
        title="Update price tags",
        deadline=datetime(2030, 5, 1, 18, 30, tzinfo=timezone.utc),
        priority="high",
        response_type="completion",
    )

    payload = serialize_task(task)

    assert payload["deadline"] == "2030-05-01T18:30:00Z"
    assert payload["dealership_id"] is None
    assert payload["priority"] == "high"


@pytest.mark.asyncio
async def test_publish_failure_is_swallowed_and_reconnects(redis_factory):
    failing = redis_factory(fail=True)
    healthy = redis_factory()
    clients = iter([failing, healthy])
    publisher = TaskEventPublisher(client_factory=lambda: next(clients))

    assert await publisher.publish({"event": "task.assigned"}) is False
    assert publisher._client is None

    assert await publisher.publish({"event": "task.assigned"}) is True
    assert healthy.messages


@pytest.mark.asyncio
async def test_assigned_respects_dealership_setting(db_session, dealership, employee, redis_factory):
    redis_client = redis_factory()
    publisher = TaskEventPublisher(client_factory=lambda: redis_client)
    task = await _task(db_session, dealership)

    await settings_service.set(db_session, NOTIFY_TASK_ASSIGNED, False, dealership.id)
    assert await publisher.publish_task_assigned(db_session, task, [employee.id]) is False
    assert redis_client.messages == []

    await settings_service.set(db_session, NOTIFY_TASK_ASSIGNED, True, dealership.id)
    assert await publisher.publish_task_assigned(db_session, task, [employee.id]) is True
    assert await publisher.publish_task_assigned(db_session, task, []) is False
    assert len(redis_client.messages) == 1


@pytest.mark.asyncio
async def test_pending_review_notifies_reviewers_except_submitter(
    db_session, dealership, other_dealership, make_user, manager, owner, employee, redis_factory
):
    redis_client = redis_factory()
    publisher = TaskEventPublisher(client_factory=lambda: redis_client)
    await make_user("manager", other_dealership.id)
    reviewing_manager = await make_user("manager", dealership.id, "Second Manager")
    task = await _task(db_session, dealership)
    response = await _pending_review(db_session, task, reviewing_manager)

    assert await publisher.publish_task_pending_review(db_session, task, response) is True

    payload = json.loads(redis_client.messages[0][1])
    assert payload["event"] == "task.pending_review"
    assert set(payload["user_ids"]) == {str(manager.id), str(owner.id)}
    assert payload["submitted_by"] == "Second Manager"
    assert payload["response_id"] == str(response.id)


@pytest.mark.asyncio
async def test_pending_review_of_global_task_goes_to_owners(db_session, manager, owner, employee, redis_factory):
    redis_client = redis_factory()
    publisher = TaskEventPublisher(client_factory=lambda: redis_client)
    task = await _task(db_session)
    response = await _pending_review(db_session, task, employee)
    employee.full_name = None
    await db_session.commit()

    await publisher.publish_task_pending_review(db_session, task, response)

    payload = json.loads(redis_client.messages[0][1])
    assert payload["user_ids"] == [str(owner.id)]
    assert payload["submitted_by"] == DEFAULT_SUBMITTER_NAME
