"""Setting CRUD operations."""
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub.crud.base import CRUDBase
from taskhub.models.setting import Setting


class CRUDSetting(CRUDBase[Setting, dict, dict]):
    """CRUD operations for Setting."""

    async def get_by_key(self, db: AsyncSession, *, key: str, dealership_id: Optional[UUID]) -> Optional[Setting]:
        """Exact row for ``key`` at one scope; ``dealership_id`` None is the global scope."""
        query = select(Setting).where(Setting.key == key)
        if dealership_id is None:
            query = query.where(Setting.dealership_id.is_(None))
        else:
            query = query.where(Setting.dealership_id == dealership_id)
        result = await db.execute(query)
        return result.scalar_one_or_none()


setting = CRUDSetting(Setting)
