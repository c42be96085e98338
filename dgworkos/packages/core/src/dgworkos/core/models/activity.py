"""ActivityRecord Domain Model -- 任务时间线

活动表 append-only，不允许更新或删除。
activity_id 使用 ULID 格式；seq 为任务内插入序号，同一时间戳下用于决定先后。
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from .enums import ActivityAction


class ActivityRecord(BaseModel):
    """时间线活动记录

    actor_id 为 None 表示系统操作（如定时 sweep）。
    """

    activity_id: str = Field(description="唯一标识，ULID 格式，时间有序")
    task_id: str = Field(description="关联的 Task ID")
    seq: int = Field(default=0, description="任务内插入序号，写入时分配")
    action: ActivityAction = Field(description="活动类型")
    actor_id: str | None = Field(default=None, description="操作者用户 ID，None 为系统")
    from_value: str | None = Field(default=None, description="变更前的值")
    to_value: str | None = Field(default=None, description="变更后的值")
    comment: str | None = Field(default=None, description="备注")
    metadata: dict[str, Any] = Field(default_factory=dict, description="附加结构化信息")
    created_at: datetime = Field(description="创建时间")

    @property
    def is_system(self) -> bool:
        return self.actor_id is None
