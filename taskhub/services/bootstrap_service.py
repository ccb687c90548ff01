"""Bootstrap utilities for ensuring core roles exist."""
from __future__ import annotations

from typing import Dict, Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskhub.core.security import ROLE_PERMISSIONS
from taskhub.models.user import Role

DEFAULT_ROLE_DESCRIPTIONS = {
    "owner": "Owner with access to every dealership",
    "manager": "Dealership manager, verifies submitted tasks",
    "observer": "Read-only access to dealership tasks",
    "employee": "Dealership staff completing assigned tasks",
}


async def ensure_roles(
    db: AsyncSession,
    *,
    role_names: Iterable[str],
) -> Dict[str, Role]:
    """Ensure that the given roles exist and return them in a mapping."""
    role_map: Dict[str, Role] = {}
    created = False

    for role_name in role_names:
        result = await db.execute(select(Role).where(Role.name == role_name))
        role_obj = result.scalar_one_or_none()
        if role_obj is None:
            permissions = [
                permission.value
                for permission in ROLE_PERMISSIONS.get(role_name, [])
            ]
            role_obj = Role(
                name=role_name,
                permissions=permissions,
                description=DEFAULT_ROLE_DESCRIPTIONS.get(role_name),
            )
            db.add(role_obj)
            await db.flush()
            created = True

        role_map[role_name] = role_obj

    if created:
        await db.commit()

    return role_map
