"""投递通道接口

使用 Protocol 做结构化子类型：真实通道、日志后备通道与测试替身可互换。
"""

from typing import Protocol

from dgworkos.core.models import Notification, PushSubscription

from .models import PushResult


class EmailSender(Protocol):
    """邮件通道"""

    async def send(self, to: str, subject: str, html: str) -> bool:
        """发送邮件；失败返回 False，不抛异常"""
        ...


class PushSender(Protocol):
    """推送通道"""

    async def send(
        self,
        notification: Notification,
        subscriptions: list[PushSubscription],
    ) -> PushResult:
        """向订阅列表推送一条通知；失败计入结果，不抛异常"""
        ...
