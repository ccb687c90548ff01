"""Security constants and permissions."""
from enum import Enum


class Permission(str, Enum):
    """Permission constants for RBAC."""

    # Task permissions
    TASK_VIEW = "task.view"
    TASK_CREATE = "task.create"
    TASK_UPDATE = "task.update"
    TASK_DELETE = "task.delete"
    TASK_RESPOND = "task.respond"
    TASK_ARCHIVE = "task.archive"

    # Elevated capability: verify proofs, force transitions, act for all assignees
    TASK_VERIFY = "task.verify"

    # Access to every dealership regardless of membership
    DEALERSHIP_ALL = "dealership.all"


# Role definitions with permissions
ROLE_PERMISSIONS = {
    "owner": [
        Permission.TASK_VIEW,
        Permission.TASK_CREATE,
        Permission.TASK_UPDATE,
        Permission.TASK_DELETE,
        Permission.TASK_RESPOND,
        Permission.TASK_ARCHIVE,
        Permission.TASK_VERIFY,
        Permission.DEALERSHIP_ALL,
    ],
    "manager": [
        Permission.TASK_VIEW,
        Permission.TASK_CREATE,
        Permission.TASK_UPDATE,
        Permission.TASK_DELETE,
        Permission.TASK_RESPOND,
        Permission.TASK_ARCHIVE,
        Permission.TASK_VERIFY,
    ],
    "observer": [
        Permission.TASK_VIEW,
    ],
    "employee": [
        Permission.TASK_VIEW,
        Permission.TASK_RESPOND,
    ],
}
