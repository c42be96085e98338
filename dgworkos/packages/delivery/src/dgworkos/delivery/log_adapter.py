"""日志投递适配器 -- SMTP / VAPID 未配置时的后备通道

行为与真实通道接口一致，只把投递内容写入日志并保存在内存 outbox 中，
方便本地开发时查看，也可在测试中直接断言。
"""

from collections import deque

import structlog
from dgworkos.core.models import Notification, PushSubscription

from .models import PushResult

log = structlog.get_logger()

# outbox 最多保留的条目数
OUTBOX_SIZE = 200


class LoggingEmailSender:
    """只记录日志的邮件通道"""

    def __init__(self) -> None:
        self.outbox: deque[tuple[str, str, str]] = deque(maxlen=OUTBOX_SIZE)

    async def send(self, to: str, subject: str, html: str) -> bool:
        self.outbox.append((to, subject, html))
        log.info("delivery_email_logged", to=to, subject=subject, html_length=len(html))
        return True


class LoggingPushSender:
    """只记录日志的推送通道

    没有订阅的接收人视为未送达，与真实通道一致。
    """

    def __init__(self) -> None:
        self.outbox: deque[tuple[str, str]] = deque(maxlen=OUTBOX_SIZE)

    async def send(
        self,
        notification: Notification,
        subscriptions: list[PushSubscription],
    ) -> PushResult:
        for sub in subscriptions:
            self.outbox.append((sub.endpoint, notification.notification_id))
        log.info(
            "delivery_push_logged",
            notification_id=notification.notification_id,
            type=notification.type.value,
            subscriptions=len(subscriptions),
        )
        return PushResult(delivered=len(subscriptions))
