"""DG Work OS Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .activity import ActivityRecord
from .enums import (
    DECIDER_ROLES,
    PRIORITY_RANK,
    SWEEP_EXCLUDED_STATES,
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    ActivityAction,
    ExtensionStatus,
    NotificationType,
    TaskPriority,
    TaskStatus,
    UserRole,
    validate_transition,
)
from .extension import ExtensionDecisionInput, ExtensionRequest, ExtensionRequestInput
from .notification import (
    Notification,
    SweepItemError,
    SweepResult,
    SweepRuleResult,
    make_dedup_key,
)
from .task import (
    BulkCreateResult,
    BulkItemResult,
    CreateTaskInput,
    Task,
    TaskChanges,
    TaskFilters,
    TaskStats,
)
from .user import NotificationPreferences, PushSubscription, User

__all__ = [
    # 枚举
    "TaskStatus",
    "TaskPriority",
    "ActivityAction",
    "ExtensionStatus",
    "NotificationType",
    "UserRole",
    "DECIDER_ROLES",
    "PRIORITY_RANK",
    # 状态机
    "VALID_TRANSITIONS",
    "TERMINAL_STATES",
    "SWEEP_EXCLUDED_STATES",
    "validate_transition",
    # Task
    "Task",
    "CreateTaskInput",
    "TaskChanges",
    "TaskFilters",
    "TaskStats",
    "BulkItemResult",
    "BulkCreateResult",
    # Extension
    "ExtensionRequest",
    "ExtensionRequestInput",
    "ExtensionDecisionInput",
    # Activity
    "ActivityRecord",
    # Notification
    "Notification",
    "make_dedup_key",
    "SweepItemError",
    "SweepRuleResult",
    "SweepResult",
    # User
    "User",
    "PushSubscription",
    "NotificationPreferences",
]
