"""RBAC permission helpers."""
from typing import List, Optional
from uuid import UUID

from taskhub.models.user import User
from taskhub.core.security import Permission


def get_user_permissions(user: User) -> List[str]:
    """Get all permissions for a user."""
    permissions = set()
    for role in user.roles:
        if role.permissions:
            permissions.update(role.permissions)
    return list(permissions)


def has_permission(user: User, permission: Permission) -> bool:
    """Check if user has a specific permission."""
    if not user.is_active:
        return False
    return permission.value in get_user_permissions(user)


def is_elevated(user: User) -> bool:
    """Managers and owners: may verify, force transitions and act for all assignees."""
    return has_permission(user, Permission.TASK_VERIFY)


def has_dealership_access(user: User, dealership_id: Optional[UUID]) -> bool:
    """Whether the user may work with tasks of the given dealership.

    Global tasks (no dealership) are visible to everyone.
    """
    if dealership_id is None:
        return True
    if has_permission(user, Permission.DEALERSHIP_ALL):
        return True
    return dealership_id in user.accessible_dealership_ids
