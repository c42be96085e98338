"""User / PushSubscription / NotificationPreferences Domain Model

用户管理不在本服务范围内，这里只保存派发、审批和投递所需的字段。
"""

from datetime import UTC, datetime, time

from pydantic import BaseModel, Field, field_validator, model_validator

from .enums import DECIDER_ROLES, UserRole


class User(BaseModel):
    """用户数据模型"""

    user_id: str = Field(description="唯一标识")
    full_name: str = Field(description="姓名")
    email: str | None = Field(default=None, description="邮件地址，为空则不发邮件")
    role: UserRole = Field(description="角色")
    agency: str | None = Field(default=None, description="所属机构")
    is_active: bool = Field(default=True, description="是否在职")
    created_at: datetime = Field(description="创建时间")

    @property
    def is_decider(self) -> bool:
        return self.role in DECIDER_ROLES


class PushSubscription(BaseModel):
    """Web Push 订阅"""

    endpoint: str = Field(description="推送服务 endpoint，唯一")
    user_id: str = Field(description="订阅所属用户")
    p256dh: str = Field(description="客户端公钥")
    auth: str = Field(description="客户端认证密钥")
    is_active: bool = Field(default=True, description="是否有效；404/410 后置为 False")
    created_at: datetime = Field(description="创建时间")

    def to_subscription_info(self) -> dict:
        """转换为 pywebpush 所需的 subscription_info 结构"""
        return {
            "endpoint": self.endpoint,
            "keys": {"p256dh": self.p256dh, "auth": self.auth},
        }


class NotificationPreferences(BaseModel):
    """用户通知偏好；没有保存过偏好的用户取默认值

    免打扰与安静时段只拦截推送，邮件与站内通知不受影响。
    安静时段按 UTC 计，起点晚于终点表示跨午夜（如 22:00 - 07:00）。
    """

    user_id: str
    do_not_disturb: bool = Field(default=False, description="免打扰：暂停全部推送")
    quiet_hours_start: time | None = Field(default=None, description="安静时段起点（UTC）")
    quiet_hours_end: time | None = Field(default=None, description="安静时段终点（UTC，不含）")
    task_due_reminders: bool = Field(default=True, description="生成临近到期提醒")
    task_overdue_alerts: bool = Field(default=True, description="生成逾期提醒")
    updated_at: datetime | None = None

    @field_validator("quiet_hours_start", "quiet_hours_end")
    @classmethod
    def _minutes_only(cls, value: time | None) -> time | None:
        # 只保留时分，一律按 UTC 解释
        if value is None:
            return None
        return value.replace(second=0, microsecond=0, tzinfo=None)

    @model_validator(mode="after")
    def _quiet_hours_paired(self) -> "NotificationPreferences":
        if (self.quiet_hours_start is None) != (self.quiet_hours_end is None):
            raise ValueError("quiet_hours_start and quiet_hours_end must be set together")
        return self

    def in_quiet_hours(self, now: datetime) -> bool:
        start, end = self.quiet_hours_start, self.quiet_hours_end
        if start is None or end is None or start == end:
            return False
        current = (now.astimezone(UTC) if now.tzinfo else now).time()
        if start < end:
            return start <= current < end
        return current >= start or current < end

    def push_allowed(self, now: datetime) -> bool:
        return not self.do_not_disturb and not self.in_quiet_hours(now)
