"""Notification Domain Model -- 站内通知、去重键、Sweep 结果

通知记录创建后只允许翻转 read / delivered / dismissed 标志。
"""

from datetime import date, datetime

from pydantic import BaseModel, Field

from .enums import NotificationType, TaskPriority


def make_dedup_key(
    recipient_id: str,
    type: NotificationType,
    ref_id: str | None,
    day: date,
) -> str:
    """构造去重键 (recipient, type, related-ref, calendar-day)

    ref_id 通常是任务 ID；延期申请类通知用申请 ID，同一任务多次申请互不冲突。
    notifications.dedup_key 上有唯一索引，同一键最多一条。
    """
    return f"{recipient_id}:{type.value}:{ref_id or '-'}:{day.isoformat()}"


class Notification(BaseModel):
    """通知数据模型"""

    notification_id: str = Field(description="唯一标识，ULID 格式")
    recipient_id: str = Field(description="接收人用户 ID")
    type: NotificationType = Field(description="通知类型")
    task_id: str | None = Field(default=None, description="关联任务 ID")
    title: str = Field(description="标题")
    message: str = Field(description="正文")
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM, description="推送优先级")
    is_read: bool = Field(default=False)
    read_at: datetime | None = None
    is_delivered: bool = Field(default=False, description="是否已通过邮件或推送送达")
    delivery_attempts: int = Field(default=0, ge=0, description="失败的投递尝试次数")
    dismissed_at: datetime | None = Field(default=None, description="忽略时间，非空即已忽略")
    dedup_key: str | None = Field(default=None, description="去重键，为空则不去重")
    scheduled_for: datetime = Field(description="最早可投递时间")
    created_at: datetime = Field(description="创建时间")

    @property
    def is_dismissed(self) -> bool:
        return self.dismissed_at is not None

    def is_due(self, now: datetime) -> bool:
        """scheduled_for 已到，可立即投递"""
        return self.scheduled_for <= now


class SweepItemError(BaseModel):
    """Sweep 中单个条件的失败信息"""

    rule: str = Field(description="规则名")
    ref_id: str | None = Field(default=None, description="相关实体 ID")
    error: str = Field(description="错误描述")


class SweepRuleResult(BaseModel):
    """单条规则的执行统计"""

    created: int = 0
    skipped: int = Field(default=0, description="去重键已存在而跳过的数量")
    suppressed: int = Field(default=0, description="接收人关闭了该类提醒而未生成的数量")


class SweepResult(BaseModel):
    """一次 Sweep 的汇总结果 -- 部分失败时仍返回已完成的部分"""

    rules: dict[str, SweepRuleResult] = Field(default_factory=dict)
    errors: list[SweepItemError] = Field(default_factory=list)
    queued_for_delivery: int = 0

    @property
    def success(self) -> bool:
        return not self.errors

    @property
    def created(self) -> int:
        return sum(r.created for r in self.rules.values())

    def rule(self, name: str) -> SweepRuleResult:
        return self.rules.setdefault(name, SweepRuleResult())
