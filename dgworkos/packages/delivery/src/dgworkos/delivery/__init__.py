"""DG Work OS Delivery -- 邮件 / 推送投递通道

packages/delivery 的公开接口导出。
"""

# 配置
from .config import DeliveryConfig, load_delivery_config

# 异常
from .exceptions import (
    DeliveryError,
    EmailDeliveryError,
    PushDeliveryError,
    PushSubscriptionGoneError,
)
from .log_adapter import LoggingEmailSender, LoggingPushSender

# 数据模型
from .models import EmailContent, PushPayload, PushResult
from .protocols import EmailSender, PushSender
from .push_sender import WebPushSender, build_push_payload

# 通道
from .smtp_sender import SmtpEmailSender
from .templates import render_email, task_url


def create_senders(config: DeliveryConfig) -> tuple[EmailSender, PushSender]:
    """按配置选择真实通道或日志后备通道"""
    email: EmailSender = SmtpEmailSender(config) if config.email_enabled else LoggingEmailSender()
    push: PushSender = WebPushSender(config) if config.push_enabled else LoggingPushSender()
    return email, push


__all__ = [
    "DeliveryConfig",
    "load_delivery_config",
    "DeliveryError",
    "EmailDeliveryError",
    "PushDeliveryError",
    "PushSubscriptionGoneError",
    "EmailContent",
    "PushPayload",
    "PushResult",
    "EmailSender",
    "PushSender",
    "SmtpEmailSender",
    "WebPushSender",
    "LoggingEmailSender",
    "LoggingPushSender",
    "build_push_payload",
    "create_senders",
    "render_email",
    "task_url",
]
