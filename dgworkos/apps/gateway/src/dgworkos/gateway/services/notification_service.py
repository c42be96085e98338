"""NotificationGenerator -- 通知生成与定时 Sweep

两类入口：
1. 事件驱动：编排层在任务变更提交后调用 create / create_many
2. Sweep：外部定时触发，扫描逾期任务、待审批延期、临近到期任务

去重依赖 notifications.dedup_key 唯一索引，重复插入视为"已存在"跳过。
"""

from datetime import UTC, date, datetime, time, timedelta

import structlog
from dgworkos.core.config import (
    MAX_DELIVERY_ATTEMPTS,
    REMINDER_HOUR_UTC,
    REMINDER_WINDOW_DAYS,
)
from dgworkos.core.models import (
    DECIDER_ROLES,
    ExtensionRequest,
    Notification,
    NotificationType,
    SweepItemError,
    SweepResult,
    Task,
    TaskPriority,
    User,
    make_dedup_key,
)
from dgworkos.core.store import StoreGroup
from pydantic import BaseModel, Field
from ulid import ULID

from .delivery_hub import DeliveryDispatcher

log = structlog.get_logger()

RULE_OVERDUE = "task_overdue"
RULE_EXTENSION_PENDING = "extension_pending"
RULE_DUE_SOON = "task_reminder"


class NotificationDraft(BaseModel):
    """待写入的通知"""

    recipient_id: str
    type: NotificationType
    title: str
    message: str
    task_id: str | None = None
    priority: TaskPriority = TaskPriority.MEDIUM
    dedup_day: date | None = Field(default=None, description="非空时按自然日去重")
    dedup_ref: str | None = Field(default=None, description="去重键的关联实体，默认取 task_id")
    scheduled_for: datetime | None = Field(default=None, description="为空表示立即投递")

    def to_notification(self, now: datetime) -> Notification:
        dedup_key = None
        if self.dedup_day is not None:
            dedup_key = make_dedup_key(
                self.recipient_id,
                self.type,
                self.dedup_ref or self.task_id,
                self.dedup_day,
            )
        return Notification(
            notification_id=str(ULID()),
            recipient_id=self.recipient_id,
            type=self.type,
            task_id=self.task_id,
            title=self.title,
            message=self.message,
            priority=self.priority,
            dedup_key=dedup_key,
            scheduled_for=self.scheduled_for or now,
            created_at=now,
        )


# ----------------------------------------------------------------------
# 通知内容
# ----------------------------------------------------------------------


def overdue_draft(task: Task, today: date) -> NotificationDraft:
    days = (today - task.due_date).days
    return NotificationDraft(
        recipient_id=task.assignee_id,
        type=NotificationType.TASK_OVERDUE,
        title=f"Overdue: {task.title}",
        message=(
            f'"{task.title}" was due on {task.due_date.isoformat()} '
            f"and is {days} day(s) overdue."
        ),
        task_id=task.task_id,
        priority=TaskPriority.URGENT if task.priority == TaskPriority.URGENT else TaskPriority.HIGH,
        dedup_day=today,
    )


def reminder_draft(task: Task, today: date) -> NotificationDraft:
    days = (task.due_date - today).days
    when = "today" if days == 0 else f"in {days} day(s)"
    return NotificationDraft(
        recipient_id=task.assignee_id,
        type=NotificationType.TASK_REMINDER,
        title=f"Due soon: {task.title}",
        message=f'"{task.title}" is due {when} ({task.due_date.isoformat()}).',
        task_id=task.task_id,
        priority=task.priority,
        dedup_day=today,
        scheduled_for=datetime.combine(today, time(REMINDER_HOUR_UTC), tzinfo=UTC),
    )


def extension_requested_drafts(
    ext: ExtensionRequest,
    task: Task,
    deciders: list[User],
) -> list[NotificationDraft]:
    """每位审批人一条；去重键取申请 ID + 创建日，多次 sweep 键不变"""
    return [
        NotificationDraft(
            recipient_id=decider.user_id,
            type=NotificationType.EXTENSION_REQUESTED,
            title=f"Extension requested: {task.title}",
            message=(
                f"Due date change requested from {ext.original_due_date.isoformat()} "
                f"to {ext.requested_due_date.isoformat()}: {ext.reason}"
            ),
            task_id=task.task_id,
            priority=TaskPriority.HIGH,
            dedup_day=ext.created_at.date(),
            dedup_ref=ext.extension_id,
        )
        for decider in deciders
        if decider.user_id != ext.requested_by
    ]


# ----------------------------------------------------------------------
# Generator
# ----------------------------------------------------------------------


class NotificationGenerator:
    """通知生成器 -- 写入 Notification 行并交给调度器投递"""

    def __init__(
        self,
        stores: StoreGroup,
        dispatcher: DeliveryDispatcher | None = None,
    ) -> None:
        self._stores = stores
        self._dispatcher = dispatcher

    async def create(self, draft: NotificationDraft) -> Notification | None:
        """写入一条通知

        Returns:
            新通知；去重键已存在时返回 None
        """
        created = await self.create_many([draft])
        return created[0] if created else None

    async def create_many(self, drafts: list[NotificationDraft]) -> list[Notification]:
        """在同一事务内写入多条通知，返回实际写入的部分"""
        now = datetime.now(UTC)
        created: list[Notification] = []
        async with self._stores.transaction():
            for draft in drafts:
                notification = draft.to_notification(now)
                if await self._stores.notification_store.create(notification):
                    created.append(notification)
        for n in created:
            log.info(
                "notification_created",
                notification_id=n.notification_id,
                type=n.type.value,
                recipient_id=n.recipient_id,
                task_id=n.task_id,
            )
        return created

    async def deciders(self) -> list[User]:
        return await self._stores.user_store.list_active_by_roles(DECIDER_ROLES)

    def dispatch(self, notifications: list[Notification]) -> int:
        """提交投递；返回入队的通知数"""
        if self._dispatcher is None or not notifications:
            return 0
        return len(notifications) if self._dispatcher.submit(notifications) else 0

    # ------------------------------------------------------------------
    # Sweep
    # ------------------------------------------------------------------

    async def sweep(self, now: datetime | None = None) -> SweepResult:
        """执行一次完整 sweep

        单个条件失败只记入 result.errors，不中断其余条件。

        Args:
            now: 基准时间，默认当前时间；可传入历史时间重放某一天

        Returns:
            SweepResult，含各规则计数、逐条错误、重新入队的投递数
        """
        now = now or datetime.now(UTC)
        today = now.date()
        result = SweepResult()

        await self._sweep_overdue(today, result)
        await self._sweep_pending_extensions(result)
        await self._sweep_due_soon(today, result)

        pending = await self._stores.notification_store.list_pending_delivery(
            now, MAX_DELIVERY_ATTEMPTS
        )
        result.queued_for_delivery = self.dispatch(pending)

        log.info(
            "notification_sweep_completed",
            created=result.created,
            errors=len(result.errors),
            queued_for_delivery=result.queued_for_delivery,
            rules={name: r.created for name, r in result.rules.items()},
        )
        return result

    async def _sweep_overdue(self, today: date, result: SweepResult) -> None:
        rule = result.rule(RULE_OVERDUE)
        try:
            rows = await self._stores.task_store.fetch_open_rows_due_between(
                None, today - timedelta(days=1)
            )
            prefs = await self._stores.preference_store.get_many(
                row["assignee_id"] for row in rows
            )
        except Exception as e:
            log.error("sweep_rule_failed", rule=RULE_OVERDUE, error=str(e))
            result.errors.append(SweepItemError(rule=RULE_OVERDUE, error=str(e)))
            return

        for row in rows:
            ref_id = row["task_id"]
            if not prefs[row["assignee_id"]].task_overdue_alerts:
                rule.suppressed += 1
                continue
            try:
                task = self._stores.task_store.row_to_task(row)
                created = await self.create(overdue_draft(task, today))
            except Exception as e:
                log.warning("sweep_item_failed", rule=RULE_OVERDUE, ref_id=ref_id, error=str(e))
                result.errors.append(SweepItemError(rule=RULE_OVERDUE, ref_id=ref_id, error=str(e)))
                continue
            if created is None:
                rule.skipped += 1
            else:
                rule.created += 1

    async def _sweep_pending_extensions(self, result: SweepResult) -> None:
        rule = result.rule(RULE_EXTENSION_PENDING)
        try:
            pending = await self._stores.extension_store.list_pending()
            deciders = await self.deciders()
        except Exception as e:
            log.error("sweep_rule_failed", rule=RULE_EXTENSION_PENDING, error=str(e))
            result.errors.append(SweepItemError(rule=RULE_EXTENSION_PENDING, error=str(e)))
            return

        for ext in pending:
            try:
                task = await self._stores.task_store.get_task(ext.task_id)
                if task is None:
                    raise LookupError(f"task {ext.task_id} not found")
                for draft in extension_requested_drafts(ext, task, deciders):
                    if await self.create(draft) is None:
                        rule.skipped += 1
                    else:
                        rule.created += 1
            except Exception as e:
                log.warning(
                    "sweep_item_failed",
                    rule=RULE_EXTENSION_PENDING,
                    ref_id=ext.extension_id,
                    error=str(e),
                )
                result.errors.append(
                    SweepItemError(
                        rule=RULE_EXTENSION_PENDING,
                        ref_id=ext.extension_id,
                        error=str(e),
                    )
                )

    async def _sweep_due_soon(self, today: date, result: SweepResult) -> None:
        rule = result.rule(RULE_DUE_SOON)
        try:
            rows = await self._stores.task_store.fetch_open_rows_due_between(
                today, today + timedelta(days=REMINDER_WINDOW_DAYS)
            )
            prefs = await self._stores.preference_store.get_many(
                row["assignee_id"] for row in rows
            )
        except Exception as e:
            log.error("sweep_rule_failed", rule=RULE_DUE_SOON, error=str(e))
            result.errors.append(SweepItemError(rule=RULE_DUE_SOON, error=str(e)))
            return

        for row in rows:
            ref_id = row["task_id"]
            if not prefs[row["assignee_id"]].task_due_reminders:
                rule.suppressed += 1
                continue
            try:
                task = self._stores.task_store.row_to_task(row)
                created = await self.create(reminder_draft(task, today))
            except Exception as e:
                log.warning("sweep_item_failed", rule=RULE_DUE_SOON, ref_id=ref_id, error=str(e))
                result.errors.append(SweepItemError(rule=RULE_DUE_SOON, ref_id=ref_id, error=str(e)))
                continue
            if created is None:
                rule.skipped += 1
            else:
                rule.created += 1
