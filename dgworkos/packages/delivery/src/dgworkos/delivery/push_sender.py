"""WebPushSender -- Web Push 推送通道

通过 pywebpush 以 VAPID 签名推送；每个订阅单独发送，
404/410 视为订阅失效，返回给调用方停用。
"""

import asyncio

import structlog
from dgworkos.core.models import Notification, PushSubscription, TaskPriority
from pywebpush import WebPushException, webpush

from .config import DeliveryConfig
from .exceptions import PushDeliveryError, PushSubscriptionGoneError
from .models import PushPayload, PushResult
from .templates import notifications_url, task_url

log = structlog.get_logger()

# 推送服务保留未送达消息的时长（秒）
PUSH_TTL_S = 86400

_URGENCY: dict[TaskPriority, str] = {
    TaskPriority.URGENT: "high",
    TaskPriority.HIGH: "high",
    TaskPriority.MEDIUM: "normal",
    TaskPriority.LOW: "low",
}


def build_push_payload(notification: Notification, base_url: str) -> PushPayload:
    """通知 -> 推送消息体；tag 按类型 + 关联对象去重"""
    ref = notification.task_id or notification.notification_id
    if notification.task_id:
        url = task_url(base_url, notification.task_id)
    else:
        url = notifications_url(base_url)
    return PushPayload(
        title=notification.title,
        body=notification.message,
        tag=f"dg-{notification.type.value}-{ref}",
        url=url,
    )


class WebPushSender:
    """基于 VAPID 的 Web Push 发送器"""

    def __init__(self, config: DeliveryConfig) -> None:
        self._config = config

    async def send(
        self,
        notification: Notification,
        subscriptions: list[PushSubscription],
    ) -> PushResult:
        """向接收人的全部有效订阅推送一条通知

        Returns:
            PushResult，gone_endpoints 中的订阅应由调用方停用
        """
        result = PushResult()
        if not subscriptions:
            return result

        payload = build_push_payload(notification, self._config.base_url).to_json()
        urgency = _URGENCY.get(notification.priority, "normal")

        for sub in subscriptions:
            try:
                await asyncio.wait_for(
                    asyncio.to_thread(self._send_one, sub, payload, urgency),
                    timeout=self._config.timeout_s,
                )
            except PushSubscriptionGoneError as e:
                log.info("push_subscription_gone", endpoint=e.endpoint, status_code=e.status_code)
                result.gone_endpoints.append(sub.endpoint)
                result.failed += 1
            except (PushDeliveryError, TimeoutError) as e:
                log.warning(
                    "delivery_push_failed",
                    notification_id=notification.notification_id,
                    endpoint=sub.endpoint,
                    error=str(e) or type(e).__name__,
                )
                result.failed += 1
            else:
                result.delivered += 1
        return result

    def _send_one(self, sub: PushSubscription, payload: str, urgency: str) -> None:
        """同步发送到单个订阅（在工作线程中执行）

        Raises:
            PushSubscriptionGoneError: 推送服务返回 404/410
            PushDeliveryError: 其他失败
        """
        try:
            webpush(
                subscription_info=sub.to_subscription_info(),
                data=payload,
                vapid_private_key=self._config.vapid_private_key.get_secret_value(),
                # webpush 会往 claims 里写 aud/exp，每次传新 dict
                vapid_claims={"sub": self._config.vapid_subject},
                ttl=PUSH_TTL_S,
                timeout=self._config.timeout_s,
                headers={"Urgency": urgency},
            )
        except WebPushException as e:
            response = getattr(e, "response", None)
            if response is not None and response.status_code in (404, 410):
                raise PushSubscriptionGoneError(sub.endpoint, response.status_code) from e
            raise PushDeliveryError(str(e)) from e
        except Exception as e:
            raise PushDeliveryError(f"{type(e).__name__}: {e}") from e
