"""枚举定义 -- 任务状态机、优先级、活动类型、通知类型、用户角色

包含 TaskStatus 状态机，以及 VALID_TRANSITIONS 合法流转映射和
TERMINAL_STATES 终态集合。
"""

from enum import StrEnum


class TaskStatus(StrEnum):
    """Task 状态机"""

    DRAFT = "draft"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"
    REJECTED = "rejected"

    # 终态
    VERIFIED = "verified"
    ARCHIVED = "archived"


TERMINAL_STATES: set[TaskStatus] = {
    TaskStatus.VERIFIED,
    TaskStatus.ARCHIVED,
}

# 合法状态流转；任意非终态均可归档（管理员覆盖）
VALID_TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.DRAFT: {TaskStatus.ASSIGNED, TaskStatus.ARCHIVED},
    TaskStatus.ASSIGNED: {TaskStatus.IN_PROGRESS, TaskStatus.ARCHIVED},
    TaskStatus.IN_PROGRESS: {TaskStatus.SUBMITTED, TaskStatus.ARCHIVED},
    TaskStatus.SUBMITTED: {
        TaskStatus.VERIFIED,
        TaskStatus.REJECTED,
        TaskStatus.ARCHIVED,
    },
    TaskStatus.REJECTED: {TaskStatus.IN_PROGRESS, TaskStatus.ARCHIVED},
    # 终态不可再流转
    TaskStatus.VERIFIED: set(),
    TaskStatus.ARCHIVED: set(),
}

# Sweep 不关注的状态：终态 + 尚未派发的草稿
SWEEP_EXCLUDED_STATES: set[TaskStatus] = TERMINAL_STATES | {TaskStatus.DRAFT}


class TaskPriority(StrEnum):
    """任务 / 通知优先级"""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


# 推送排序权重（数值越小越优先）
PRIORITY_RANK: dict[TaskPriority, int] = {
    TaskPriority.URGENT: 0,
    TaskPriority.HIGH: 1,
    TaskPriority.MEDIUM: 2,
    TaskPriority.LOW: 3,
}


class ActivityAction(StrEnum):
    """时间线活动类型"""

    CREATED = "created"
    STATUS_CHANGED = "status_changed"
    PRIORITY_CHANGED = "priority_changed"
    REASSIGNED = "reassigned"
    COMMENTED = "commented"
    DUE_DATE_CHANGED = "due_date_changed"
    EXTENSION_REQUESTED = "extension_requested"
    EXTENSION_APPROVED = "extension_approved"
    EXTENSION_REJECTED = "extension_rejected"
    EVIDENCE_ADDED = "evidence_added"
    NOTION_SYNCED = "notion_synced"


class ExtensionStatus(StrEnum):
    """延期申请决策状态"""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class NotificationType(StrEnum):
    """通知类型"""

    TASK_ASSIGNED = "task_assigned"
    TASK_OVERDUE = "task_overdue"
    TASK_REJECTED = "task_rejected"
    TASK_SUBMITTED = "task_submitted"
    TASK_VERIFIED = "task_verified"
    EXTENSION_REQUESTED = "extension_requested"
    EXTENSION_DECIDED = "extension_decided"
    COMMENT_ADDED = "comment_added"
    TASK_REMINDER = "task_reminder"


class UserRole(StrEnum):
    """用户角色"""

    DATA_ENTRY = "data_entry"
    SUPERVISOR = "supervisor"
    DIRECTOR = "director"
    ADMIN = "admin"
    CEO = "ceo"


# 可审批延期、验收任务、派发任务的角色
DECIDER_ROLES: set[UserRole] = {UserRole.DIRECTOR, UserRole.ADMIN}


def validate_transition(from_status: TaskStatus, to_status: TaskStatus) -> bool:
    """验证状态流转是否合法

    Args:
        from_status: 当前状态
        to_status: 目标状态

    Returns:
        True 如果流转合法，否则 False
    """
    allowed = VALID_TRANSITIONS.get(from_status, set())
    return to_status in allowed
