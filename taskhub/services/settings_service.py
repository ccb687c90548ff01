"""Dealership settings with global fallback."""
from typing import Any, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from taskhub.config import settings
from taskhub.crud.setting import setting as setting_crud
from taskhub.models.setting import Setting

TASK_REQUIRES_OPEN_SHIFT = "task_requires_open_shift"
NOTIFY_TASK_ASSIGNED = "notify_task_assigned"
MAX_FILES_PER_RESPONSE = "max_files_per_response"
MAX_TOTAL_UPLOAD_SIZE = "max_total_upload_size"
ARCHIVE_COMPLETED_TIME = "archive_completed_time"
ARCHIVE_OVERDUE_DAY_OF_WEEK = "archive_overdue_day_of_week"
ARCHIVE_OVERDUE_TIME = "archive_overdue_time"
ARCHIVE_OVERDUE_HOURS_AFTER_SHIFT = "archive_overdue_hours_after_shift"


def _defaults() -> dict:
    return {
        TASK_REQUIRES_OPEN_SHIFT: False,
        NOTIFY_TASK_ASSIGNED: True,
        MAX_FILES_PER_RESPONSE: settings.MAX_FILES_PER_RESPONSE,
        MAX_TOTAL_UPLOAD_SIZE: settings.MAX_TOTAL_UPLOAD_SIZE,
        ARCHIVE_COMPLETED_TIME: settings.ARCHIVE_COMPLETED_TIME,
        ARCHIVE_OVERDUE_DAY_OF_WEEK: settings.ARCHIVE_OVERDUE_DAY_OF_WEEK,
        ARCHIVE_OVERDUE_TIME: settings.ARCHIVE_OVERDUE_TIME,
        ARCHIVE_OVERDUE_HOURS_AFTER_SHIFT: settings.ARCHIVE_HOURS_AFTER_SHIFT,
    }


class SettingsService:
    """Resolve setting values: dealership row, then global row, then built-in default."""

    @staticmethod
    async def get(db: AsyncSession, key: str, dealership_id: Optional[UUID] = None, default: Any = None) -> Any:
        if dealership_id is not None:
            row = await setting_crud.get_by_key(db, key=key, dealership_id=dealership_id)
            if row is not None and row.value is not None:
                return row.value

        row = await setting_crud.get_by_key(db, key=key, dealership_id=None)
        if row is not None and row.value is not None:
            return row.value

        if default is not None:
            return default
        return _defaults().get(key)

    @staticmethod
    async def get_bool(db: AsyncSession, key: str, dealership_id: Optional[UUID] = None) -> bool:
        value = await SettingsService.get(db, key, dealership_id)
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "yes", "on"}
        return bool(value)

    @staticmethod
    async def get_int(db: AsyncSession, key: str, dealership_id: Optional[UUID] = None) -> int:
        value = await SettingsService.get(db, key, dealership_id)
        try:
            return int(value)
        except (TypeError, ValueError):
            return int(_defaults()[key])

    @staticmethod
    async def set(db: AsyncSession, key: str, value: Any, dealership_id: Optional[UUID] = None) -> Setting:
        """Create or replace a setting value and commit."""
        row = await setting_crud.get_by_key(db, key=key, dealership_id=dealership_id)
        if row is None:
            return await setting_crud.create(db, obj_in={"key": key, "value": value, "dealership_id": dealership_id})
        return await setting_crud.update(db, db_obj=row, obj_in={"value": value})


settings_service = SettingsService()
