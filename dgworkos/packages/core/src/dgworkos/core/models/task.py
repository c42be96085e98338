"""Task Domain Model -- 任务实体、创建/修改输入、查询过滤与统计

tasks 表由 TaskRepository 独占写入；每次变更都伴随一条时间线活动记录。
"""

from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from .enums import SWEEP_EXCLUDED_STATES, TaskPriority, TaskStatus


class Task(BaseModel):
    """Task 数据模型"""

    task_id: str = Field(description="唯一标识，ULID 格式")
    title: str = Field(description="任务标题")
    description: str = Field(default="", description="任务描述")
    assignee_id: str = Field(description="负责人用户 ID")
    created_by: str = Field(description="创建人用户 ID")
    agency: str | None = Field(default=None, description="所属机构标签")
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM, description="优先级")
    status: TaskStatus = Field(default=TaskStatus.ASSIGNED, description="当前状态")
    due_date: date = Field(description="截止日期")

    # 提交 / 验收信息
    completion_notes: str | None = Field(default=None, description="完成说明")
    evidence: list[str] = Field(default_factory=list, description="佐证材料链接")
    rejection_reason: str | None = Field(default=None, description="驳回原因")
    source_meeting_id: str | None = Field(default=None, description="来源会议纪要 ID")

    # 生命周期时间戳
    started_at: datetime | None = Field(default=None, description="开始执行时间")
    submitted_at: datetime | None = Field(default=None, description="提交时间")
    verified_at: datetime | None = Field(default=None, description="验收时间")
    rejected_at: datetime | None = Field(default=None, description="驳回时间")

    created_at: datetime = Field(description="创建时间")
    updated_at: datetime = Field(description="更新时间")

    def is_overdue(self, today: date) -> bool:
        """截止日期已过且任务仍在进行中"""
        return self.due_date < today and self.status not in SWEEP_EXCLUDED_STATES


class CreateTaskInput(BaseModel):
    """创建任务输入"""

    model_config = ConfigDict(extra="forbid")

    title: str = Field(min_length=1, max_length=300, description="任务标题")
    description: str = Field(default="", max_length=10_000, description="任务描述")
    assignee_id: str = Field(min_length=1, description="负责人用户 ID")
    agency: str | None = Field(default=None, description="所属机构标签")
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM, description="优先级")
    due_date: date = Field(description="截止日期")
    source_meeting_id: str | None = Field(default=None, description="来源会议纪要 ID")
    draft: bool = Field(default=False, description="以草稿状态创建，暂不派发")


class TaskChanges(BaseModel):
    """任务字段修改（仅提供的字段生效，每项变更对应一条时间线记录）"""

    model_config = ConfigDict(extra="forbid")

    priority: TaskPriority | None = None
    due_date: date | None = None
    assignee_id: str | None = Field(default=None, min_length=1)


SortField = Literal["created_at", "updated_at", "due_date", "priority", "title", "status"]


class TaskFilters(BaseModel):
    """任务列表 / 统计过滤条件"""

    model_config = ConfigDict(extra="forbid")

    agency: str | None = None
    assignee_id: str | None = None
    visible_to: str | None = Field(default=None, description="只保留该用户负责或创建的任务")
    status: list[TaskStatus] | None = None
    priority: TaskPriority | None = None
    search: str | None = Field(default=None, max_length=200)
    due_before: date | None = None
    due_after: date | None = None
    limit: int = Field(default=50, ge=1, le=200)
    offset: int = Field(default=0, ge=0)
    sort_by: SortField = "created_at"
    sort_dir: Literal["asc", "desc"] = "desc"


class TaskStats(BaseModel):
    """任务聚合统计"""

    total: int = 0
    by_status: dict[str, int] = Field(default_factory=dict)
    by_priority: dict[str, int] = Field(default_factory=dict)
    overdue: int = 0
    awaiting_review: int = 0
    pending_extensions: int = 0


class BulkItemResult(BaseModel):
    """批量创建的单条结果"""

    index: int = Field(description="输入列表中的下标")
    success: bool
    task_id: str | None = None
    error: str | None = None


class BulkCreateResult(BaseModel):
    """批量创建结果 -- 部分成功可接受"""

    items: list[BulkItemResult] = Field(default_factory=list)
    tasks: list[Task] = Field(default_factory=list, description="成功创建的任务")

    @property
    def success(self) -> bool:
        return all(item.success for item in self.items)
