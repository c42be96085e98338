"""权限检查 -- authorize(user, roles) 与任务可见性

纯函数，不依赖请求上下文；HTTP 依赖见 auth.py。
"""

from collections.abc import Iterable

from dgworkos.core.errors import AuthError
from dgworkos.core.models import DECIDER_ROLES, Task, User, UserRole


def authorize(user: User, allowed_roles: Iterable[UserRole]) -> None:
    """角色检查

    Raises:
        AuthError: 用户角色不在允许列表内（403，附带 required_roles）
    """
    roles = set(allowed_roles)
    if user.role not in roles:
        raise AuthError(
            "Insufficient permissions",
            required_roles=[r.value for r in roles],
        )


def can_view_task(user: User, task: Task) -> bool:
    """审批人可见全部任务，其他人只能看到自己负责或创建的任务"""
    return user.is_decider or user.user_id in (task.assignee_id, task.created_by)


def ensure_can_view(user: User, task: Task) -> None:
    if not can_view_task(user, task):
        raise AuthError(
            "You do not have access to this task",
            required_roles=[r.value for r in DECIDER_ROLES],
        )


def ensure_assignee_or_decider(user: User, task: Task, action: str) -> None:
    if not (user.is_decider or user.user_id == task.assignee_id):
        raise AuthError(
            f"Only the assignee or a director can {action}",
            required_roles=[r.value for r in DECIDER_ROLES],
        )
