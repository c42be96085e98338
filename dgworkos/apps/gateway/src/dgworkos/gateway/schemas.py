"""请求体 / 响应体模型

请求体一律拒绝未知字段；状态变更按 status 字段做 tagged union，
每种目标状态只接受它自己需要的字段。
"""

from datetime import datetime, time
from typing import Annotated, Any, Literal

from dgworkos.core.models import ActivityRecord, CreateTaskInput
from pydantic import BaseModel, ConfigDict, Field


class _Body(BaseModel):
    model_config = ConfigDict(extra="forbid")


class BulkCreateRequest(_Body):
    """批量派发"""

    tasks: list[CreateTaskInput] = Field(min_length=1, max_length=100)


class SubmitRequest(_Body):
    """提交验收"""

    status: Literal["submitted"]
    completion_notes: str | None = Field(default=None, max_length=5000)
    evidence: list[str] = Field(default_factory=list, max_length=20)
    note: str | None = Field(default=None, max_length=2000)


class RejectRequest(_Body):
    """驳回，原因必填"""

    status: Literal["rejected"]
    reason: str = Field(min_length=1, max_length=2000)


class TransitionRequest(_Body):
    """其余流转：派发草稿、开始执行、验收通过、归档"""

    status: Literal["assigned", "in_progress", "verified", "archived"]
    note: str | None = Field(default=None, max_length=2000)


StatusChangeRequest = Annotated[
    SubmitRequest | RejectRequest | TransitionRequest,
    Field(discriminator="status"),
]


class CommentRequest(_Body):
    comment: str = Field(min_length=1, max_length=5000)


class PushKeys(_Body):
    p256dh: str = Field(min_length=1)
    auth: str = Field(min_length=1)


class PushSubscribeRequest(_Body):
    """浏览器 PushSubscription.toJSON() 的结构"""

    endpoint: str = Field(min_length=1, max_length=2000)
    keys: PushKeys
    # 浏览器附带的字段，不使用
    expiration_time: Any = Field(default=None, alias="expirationTime")


class PushUnsubscribeRequest(_Body):
    """endpoint 为空表示停用当前用户的全部订阅"""

    endpoint: str | None = None


class PreferencesUpdateRequest(_Body):
    """部分更新：只修改请求中出现的字段，quiet_hours 传 null 表示清除"""

    do_not_disturb: bool | None = None
    quiet_hours_start: time | None = None
    quiet_hours_end: time | None = None
    task_due_reminders: bool | None = None
    task_overdue_alerts: bool | None = None


class TimelineEntry(BaseModel):
    """折叠后的时间线条目：同一操作者连续同类操作合并为一条"""

    record: ActivityRecord = Field(description="组内最新一条记录")
    count: int = Field(default=1, ge=1)
    first_at: datetime
    activity_ids: list[str] = Field(default_factory=list)
