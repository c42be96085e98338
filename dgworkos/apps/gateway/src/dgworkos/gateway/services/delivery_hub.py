"""DeliveryDispatcher -- 通知投递的后台队列

请求路径只负责把通知 ID 放入有界 asyncio.Queue，由单个后台 worker
取出后渲染模板、发送邮件与推送，再回写 delivered / delivery_attempts。
队列满时丢弃并记录日志，未投递的通知会在下一次 sweep 中重新入队。
"""

import asyncio
from collections import deque
from datetime import UTC, datetime

import structlog
from dgworkos.core.config import DELIVERY_QUEUE_SIZE
from dgworkos.core.models import PRIORITY_RANK, Notification, Task, User
from dgworkos.core.store import StoreGroup
from dgworkos.delivery import EmailSender, PushSender, render_email
from pydantic import BaseModel, Field

log = structlog.get_logger()

# errors 通道保留的最近失败条数
ERROR_CHANNEL_SIZE = 100


class DeliveryFailure(BaseModel):
    """后台投递失败记录"""

    notification_id: str | None = Field(default=None, description="None 表示整批失败")
    error: str
    occurred_at: datetime


def due_in_priority_order(
    notifications: list[Notification],
    now: datetime,
) -> list[Notification]:
    """过滤掉未到投递时间、已送达、已忽略的通知，按优先级排序（urgent 在前）"""
    due = [
        n
        for n in notifications
        if n.is_due(now) and not n.is_delivered and not n.is_dismissed
    ]
    return sorted(due, key=lambda n: (PRIORITY_RANK[n.priority], n.created_at))


class DeliveryDispatcher:
    """通知投递调度器 -- 有界队列 + 单 worker"""

    def __init__(
        self,
        stores: StoreGroup,
        email_sender: EmailSender,
        push_sender: PushSender,
        base_url: str,
        queue_maxsize: int = DELIVERY_QUEUE_SIZE,
    ) -> None:
        self._stores = stores
        self._email = email_sender
        self._push = push_sender
        self._base_url = base_url
        self._queue: asyncio.Queue[list[str]] = asyncio.Queue(maxsize=queue_maxsize)
        self._worker: asyncio.Task | None = None
        self.errors: deque[DeliveryFailure] = deque(maxlen=ERROR_CHANNEL_SIZE)
        self.dropped = 0

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    @property
    def queue_size(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        """启动后台 worker（在 lifespan 中调用）"""
        if self.running:
            return
        self._worker = asyncio.create_task(self._run(), name="delivery-dispatcher")
        log.info("delivery_dispatcher_started", queue_maxsize=self._queue.maxsize)

    async def stop(self) -> None:
        """停止 worker；队列中尚未处理的任务留给下一次 sweep"""
        if self._worker is None:
            return
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        log.info("delivery_dispatcher_stopped", pending=self._queue.qsize())

    def submit(self, notifications: list[Notification]) -> bool:
        """提交一批通知，不阻塞调用方

        Returns:
            是否成功入队；队列已满时返回 False
        """
        ids = [n.notification_id for n in notifications]
        if not ids:
            return True
        try:
            self._queue.put_nowait(ids)
        except asyncio.QueueFull:
            self.dropped += 1
            log.warning("delivery_queue_full", dropped=len(ids), queue_size=self._queue.qsize())
            return False
        return True

    async def join(self) -> None:
        """等待已入队的任务全部处理完毕"""
        await self._queue.join()

    async def _run(self) -> None:
        while True:
            ids = await self._queue.get()
            try:
                notifications = await self._stores.notification_store.get_many(ids)
                await self.deliver(notifications)
            except Exception as e:
                # worker 不能因单批失败而退出
                log.error("delivery_batch_failed", count=len(ids), error=str(e))
                self._record_failure(None, e)
            finally:
                self._queue.task_done()

    async def deliver(
        self,
        notifications: list[Notification],
        now: datetime | None = None,
    ) -> int:
        """邮件 + 推送投递一批通知，回写结果

        任一通道成功即视为送达；全部失败则 delivery_attempts + 1。
        接收人处于免打扰或安静时段时不发推送；邮件也没有送达的通知
        保持未送达且不计失败，由下一次 sweep 重新入队。

        Returns:
            送达的通知数
        """
        now = now or datetime.now(UTC)
        due = due_in_priority_order(notifications, now)
        if not due:
            return 0

        recipient_ids = {n.recipient_id for n in due}
        users = await self._stores.user_store.get_users(recipient_ids)
        prefs = await self._stores.preference_store.get_many(recipient_ids)
        tasks = await self._load_tasks(due)

        delivered: list[str] = []
        failed: list[str] = []
        deferred = 0
        for n in due:
            try:
                ok = await self._deliver_one(
                    n,
                    users.get(n.recipient_id),
                    tasks.get(n.task_id) if n.task_id else None,
                    push_allowed=prefs[n.recipient_id].push_allowed(now),
                )
            except Exception as e:
                log.warning(
                    "delivery_notification_failed",
                    notification_id=n.notification_id,
                    error=str(e),
                )
                self._record_failure(n.notification_id, e)
                ok = False
            if ok is None:
                deferred += 1
                continue
            (delivered if ok else failed).append(n.notification_id)

        async with self._stores.transaction():
            await self._stores.notification_store.mark_delivered(delivered)
            await self._stores.notification_store.record_delivery_attempt(failed)

        log.info(
            "delivery_batch_completed",
            delivered=len(delivered),
            failed=len(failed),
            deferred=deferred,
        )
        return len(delivered)

    async def send_push(
        self,
        notifications: list[Notification],
        now: datetime | None = None,
    ) -> int:
        """只走推送通道投递一批通知；免打扰或安静时段内的接收人跳过

        Returns:
            至少送达一个订阅的通知数
        """
        now = now or datetime.now(UTC)
        due = due_in_priority_order(notifications, now)
        prefs = await self._stores.preference_store.get_many(n.recipient_id for n in due)
        delivered: list[str] = []
        for n in due:
            if not prefs[n.recipient_id].push_allowed(now):
                continue
            if await self._push_one(n):
                delivered.append(n.notification_id)
        if delivered:
            async with self._stores.transaction():
                await self._stores.notification_store.mark_delivered(delivered)
        return len(delivered)

    async def _deliver_one(
        self,
        notification: Notification,
        recipient: User | None,
        task: Task | None,
        push_allowed: bool = True,
    ) -> bool | None:
        """返回 None 表示推送被接收人偏好暂缓，且邮件没有送达"""
        if recipient is None or not recipient.is_active:
            log.info(
                "delivery_recipient_unavailable",
                notification_id=notification.notification_id,
                recipient_id=notification.recipient_id,
            )
            return False

        email_ok = False
        if recipient.email:
            content = render_email(notification, recipient, task, self._base_url)
            if content is not None:
                email_ok = await self._email.send(recipient.email, content.subject, content.html)

        if not push_allowed:
            if not email_ok:
                log.info(
                    "delivery_push_deferred",
                    notification_id=notification.notification_id,
                    recipient_id=notification.recipient_id,
                )
            return True if email_ok else None

        push_ok = await self._push_one(notification)
        return email_ok or push_ok

    async def _push_one(self, notification: Notification) -> bool:
        subscriptions = await self._stores.subscription_store.list_active(
            notification.recipient_id
        )
        if not subscriptions:
            return False
        result = await self._push.send(notification, subscriptions)
        if result.gone_endpoints:
            async with self._stores.transaction():
                await self._stores.subscription_store.deactivate(result.gone_endpoints)
            log.info(
                "push_subscriptions_deactivated",
                user_id=notification.recipient_id,
                count=len(result.gone_endpoints),
            )
        return result.ok

    async def _load_tasks(self, notifications: list[Notification]) -> dict[str, Task]:
        tasks: dict[str, Task] = {}
        for task_id in {n.task_id for n in notifications if n.task_id}:
            task = await self._stores.task_store.get_task(task_id)
            if task is not None:
                tasks[task_id] = task
        return tasks

    def _record_failure(self, notification_id: str | None, error: Exception) -> None:
        self.errors.append(
            DeliveryFailure(
                notification_id=notification_id,
                error=f"{type(error).__name__}: {error}",
                occurred_at=datetime.now(UTC),
            )
        )
