"""ExtensionRequest Domain Model -- 延期申请

同一任务同一时刻最多只有一条 pending 申请；已决策的申请不可再修改。
"""

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field

from .enums import ExtensionStatus


class ExtensionRequest(BaseModel):
    """延期申请数据模型"""

    extension_id: str = Field(description="唯一标识，ULID 格式")
    task_id: str = Field(description="所属任务 ID")
    requested_by: str = Field(description="申请人用户 ID")
    original_due_date: date = Field(description="申请时任务的截止日期")
    requested_due_date: date = Field(description="申请的新截止日期")
    reason: str = Field(description="申请理由")
    status: ExtensionStatus = Field(default=ExtensionStatus.PENDING, description="决策状态")
    decided_by: str | None = Field(default=None, description="决策人用户 ID")
    decision_note: str | None = Field(default=None, description="决策备注")
    decided_at: datetime | None = Field(default=None, description="决策时间")
    created_at: datetime = Field(description="创建时间")

    @property
    def is_pending(self) -> bool:
        return self.status == ExtensionStatus.PENDING


class ExtensionRequestInput(BaseModel):
    """延期申请输入"""

    model_config = ConfigDict(extra="forbid")

    requested_due_date: date = Field(description="申请的新截止日期")
    reason: str = Field(min_length=1, max_length=2000, description="申请理由")


class ExtensionDecisionInput(BaseModel):
    """延期决策输入"""

    model_config = ConfigDict(extra="forbid")

    approved: bool = Field(description="是否批准")
    note: str | None = Field(default=None, max_length=2000, description="决策备注")
