"""Archival sweeps that keep the active task set bounded.

Three sweeps exist:

* completed: tasks whose derived status is completed/completed_late and
  whose latest completion is more than a day old (daily, at a configured
  time of day);
* overdue: tasks more than a day past their deadline without any completed
  response (weekly, at a configured day of week and time);
* post-shift: tasks whose deadline fell inside a shift that closed at least
  ``archive_overdue_hours_after_shift`` hours ago.

Trigger times are matched with a tolerance and midnight wraparound, never by
strict equality. Rows are walked in keyset batches.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import AsyncIterator, Dict, List, Optional
from uuid import UUID

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub.config import settings
from taskhub.core.time import ensure_utc, iso_day_of_week, is_time_match, now_utc
from taskhub.middleware.metrics import tasks_archived_total
from taskhub.models.setting import Setting
from taskhub.models.shift import Shift
from taskhub.models.task import ArchiveReason, ResponseStatus, Task, TaskResponse
from taskhub.services.settings_service import (
    ARCHIVE_COMPLETED_TIME,
    ARCHIVE_OVERDUE_DAY_OF_WEEK,
    ARCHIVE_OVERDUE_HOURS_AFTER_SHIFT,
    ARCHIVE_OVERDUE_TIME,
    settings_service,
)
from taskhub.services.task_status import is_completed, status_for

logger = logging.getLogger(__name__)

ARCHIVE_AFTER = timedelta(days=1)


class SweepType(str, Enum):
    """Which archive sweeps to run."""

    COMPLETED = "completed"
    OVERDUE = "overdue"
    ALL = "all"


@dataclass(frozen=True)
class ArchivePolicy:
    """When the completed and overdue sweeps fire for one dealership."""

    completed_time: str
    overdue_day_of_week: int  # 1-7 Mon-Sun, 0 disables
    overdue_time: str

    def completed_due(self, now: datetime, tolerance: int) -> bool:
        return is_time_match(now.strftime("%H:%M"), self.completed_time, tolerance)

    def overdue_due(self, now: datetime, tolerance: int) -> bool:
        if self.overdue_day_of_week <= 0:
            return False
        return (
            iso_day_of_week(now) == self.overdue_day_of_week
            and is_time_match(now.strftime("%H:%M"), self.overdue_time, tolerance)
        )


def _has_completed_response():
    return Task.responses.any(TaskResponse.status == ResponseStatus.COMPLETED.value)


def _latest_completion(task: Task) -> Optional[datetime]:
    stamps = [
        ensure_utc(response.responded_at or response.created_at)
        for response in task.responses
        if response.status == ResponseStatus.COMPLETED.value
    ]
    return max(stamps) if stamps else None


class ArchivalService:
    """Completed, overdue and post-shift archive sweeps."""

    @staticmethod
    async def global_policy(db: AsyncSession) -> ArchivePolicy:
        return ArchivePolicy(
            completed_time=str(await settings_service.get(db, ARCHIVE_COMPLETED_TIME)),
            overdue_day_of_week=await settings_service.get_int(db, ARCHIVE_OVERDUE_DAY_OF_WEEK),
            overdue_time=str(await settings_service.get(db, ARCHIVE_OVERDUE_TIME)),
        )

    @staticmethod
    async def dealership_policies(db: AsyncSession, fallback: ArchivePolicy) -> Dict[UUID, ArchivePolicy]:
        """Policies of dealerships that override at least one archive setting."""
        result = await db.execute(
            select(Setting).where(
                Setting.dealership_id.is_not(None),
                Setting.key.in_([ARCHIVE_COMPLETED_TIME, ARCHIVE_OVERDUE_DAY_OF_WEEK, ARCHIVE_OVERDUE_TIME]),
            )
        )
        overrides: Dict[UUID, Dict[str, object]] = {}
        for row in result.scalars().all():
            if row.value is not None:
                overrides.setdefault(row.dealership_id, {})[row.key] = row.value

        policies = {}
        for dealership_id, values in overrides.items():
            try:
                day = int(values.get(ARCHIVE_OVERDUE_DAY_OF_WEEK, fallback.overdue_day_of_week))
            except (TypeError, ValueError):
                day = fallback.overdue_day_of_week
            policies[dealership_id] = ArchivePolicy(
                completed_time=str(values.get(ARCHIVE_COMPLETED_TIME, fallback.completed_time)),
                overdue_day_of_week=day,
                overdue_time=str(values.get(ARCHIVE_OVERDUE_TIME, fallback.overdue_time)),
            )
        return policies

    @staticmethod
    async def _active_dealership_ids(db: AsyncSession) -> List[Optional[UUID]]:
        result = await db.execute(
            select(Task.dealership_id)
            .where(Task.is_active.is_(True), Task.archived_at.is_(None), Task.deleted_at.is_(None))
            .distinct()
        )
        return list(result.scalars().all())

    async def run(
        self,
        db: AsyncSession,
        sweep_type: SweepType = SweepType.ALL,
        force: bool = False,
        now: Optional[datetime] = None,
    ) -> Dict[str, int]:
        """Run the completed and/or overdue sweeps for every dealership whose trigger time matches."""
        now = ensure_utc(now) or now_utc()
        tolerance = settings.ARCHIVE_TIME_TOLERANCE_MINUTES
        fallback = await self.global_policy(db)
        policies = await self.dealership_policies(db, fallback)

        # Dealerships with overrides, then everything else (global tasks included) on global values
        scopes: Dict[Optional[UUID], ArchivePolicy] = dict(policies)
        for dealership_id in await self._active_dealership_ids(db):
            scopes.setdefault(dealership_id, fallback)

        totals = {"completed": 0, "overdue": 0}
        for dealership_id, policy in scopes.items():
            if sweep_type in (SweepType.COMPLETED, SweepType.ALL) and (force or policy.completed_due(now, tolerance)):
                count = await self.archive_completed(db, dealership_id, now)
                totals["completed"] += count
                if count:
                    logger.info("Dealership %s: archived %d completed tasks", dealership_id or "global", count)

            if sweep_type in (SweepType.OVERDUE, SweepType.ALL) and policy.overdue_day_of_week > 0:
                if force or policy.overdue_due(now, tolerance):
                    count = await self.archive_overdue(db, dealership_id, now)
                    totals["overdue"] += count
                    if count:
                        logger.info("Dealership %s: archived %d overdue tasks", dealership_id or "global", count)

        if totals["completed"] or totals["overdue"]:
            logger.info("Auto-archived tasks: %d completed, %d overdue", totals["completed"], totals["overdue"])
        return totals

    @staticmethod
    async def _batches(db: AsyncSession, *conditions) -> AsyncIterator[List[Task]]:
        """Yield matching tasks in id-ordered batches of ARCHIVE_BATCH_SIZE."""
        last_id = None
        while True:
            query = select(Task).where(*conditions)
            if last_id is not None:
                query = query.where(Task.id > last_id)
            result = await db.execute(query.order_by(Task.id).limit(settings.ARCHIVE_BATCH_SIZE))
            batch = list(result.scalars().all())
            if not batch:
                return
            yield batch
            last_id = batch[-1].id

    @staticmethod
    async def _shift_batches(db: AsyncSession) -> AsyncIterator[List[Shift]]:
        """Yield closed, unprocessed shifts ordered by (shift_end, id) in batches.

        Skipped shifts stay unprocessed, so paging resumes after the last key.
        """
        last = None
        while True:
            query = select(Shift).where(Shift.shift_end.is_not(None), Shift.archived_tasks_processed.is_(False))
            if last is not None:
                last_end, last_id = last
                query = query.where(
                    or_(
                        Shift.shift_end > last_end,
                        and_(Shift.shift_end == last_end, Shift.id > last_id),
                    )
                )
            result = await db.execute(
                query.order_by(Shift.shift_end.asc(), Shift.id.asc()).limit(settings.ARCHIVE_BATCH_SIZE)
            )
            batch = list(result.scalars().all())
            if not batch:
                return
            yield batch
            last = (batch[-1].shift_end, batch[-1].id)

    @staticmethod
    def _scope(dealership_id: Optional[UUID]):
        if dealership_id is None:
            return Task.dealership_id.is_(None)
        return Task.dealership_id == dealership_id

    async def archive_completed(
        self,
        db: AsyncSession,
        dealership_id: Optional[UUID],
        now: Optional[datetime] = None,
    ) -> int:
        """Archive completed tasks whose latest completion is older than a day."""
        now = ensure_utc(now) or now_utc()
        cutoff = now - ARCHIVE_AFTER
        archived = 0

        async for batch in self._batches(
            db,
            Task.is_active.is_(True),
            Task.archived_at.is_(None),
            Task.deleted_at.is_(None),
            self._scope(dealership_id),
            _has_completed_response(),
        ):
            for task in batch:
                if not is_completed(status_for(task, now)):
                    continue
                latest = _latest_completion(task)
                if latest is not None and latest < cutoff and task.archive(ArchiveReason.COMPLETED.value, now):
                    archived += 1
            await db.commit()

        if archived:
            tasks_archived_total.labels(ArchiveReason.COMPLETED.value).inc(archived)
        return archived

    async def archive_overdue(
        self,
        db: AsyncSession,
        dealership_id: Optional[UUID],
        now: Optional[datetime] = None,
    ) -> int:
        """Archive tasks more than a day past their deadline that nobody completed."""
        now = ensure_utc(now) or now_utc()
        cutoff = now - ARCHIVE_AFTER
        archived = 0

        async for batch in self._batches(
            db,
            Task.is_active.is_(True),
            Task.archived_at.is_(None),
            Task.deleted_at.is_(None),
            Task.deadline.is_not(None),
            Task.deadline < cutoff,
            self._scope(dealership_id),
            ~_has_completed_response(),
        ):
            for task in batch:
                if task.archive(ArchiveReason.EXPIRED.value, now):
                    archived += 1
            await db.commit()

        if archived:
            tasks_archived_total.labels(ArchiveReason.EXPIRED.value).inc(archived)
        return archived

    async def archive_after_shifts(
        self,
        db: AsyncSession,
        now: Optional[datetime] = None,
        force: bool = False,
        dry_run: bool = False,
    ) -> Dict[str, int]:
        """Archive overdue tasks of closed shifts once the configured delay has passed.

        Every inspected shift is marked processed, whether or not it had
        anything to archive. A dry run only counts.
        """
        now = ensure_utc(now) or now_utc()
        archived = 0
        processed = 0
        async for shifts in self._shift_batches(db):
            for shift in shifts:
                hours_after = await settings_service.get_int(
                    db, ARCHIVE_OVERDUE_HOURS_AFTER_SHIFT, shift.dealership_id
                )
                shift_end = ensure_utc(shift.shift_end)
                if not force and now < shift_end + timedelta(hours=hours_after):
                    continue

                async for batch in self._batches(
                    db,
                    Task.dealership_id == shift.dealership_id,
                    Task.is_active.is_(True),
                    Task.archived_at.is_(None),
                    Task.deleted_at.is_(None),
                    Task.deadline.is_not(None),
                    Task.deadline <= shift_end,
                    ~_has_completed_response(),
                ):
                    if dry_run:
                        archived += len(batch)
                        continue
                    for task in batch:
                        if task.archive(ArchiveReason.EXPIRED_AFTER_SHIFT.value, now):
                            archived += 1
                    await db.commit()

                if not dry_run:
                    shift.archived_tasks_processed = True
                    await db.commit()
                processed += 1

        if archived and not dry_run:
            tasks_archived_total.labels(ArchiveReason.EXPIRED_AFTER_SHIFT.value).inc(archived)
            logger.info("Archived %d overdue tasks after shift close", archived)
        return {"archived": archived, "shifts_processed": processed, "dry_run": int(dry_run)}


archival_service = ArchivalService()
