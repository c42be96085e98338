"""TaskService -- 任务工作流编排

每个写操作按固定顺序执行：
1. 权限检查（相对任务的检查在这里，纯角色检查在路由依赖中）
2. TaskRepository 事务内完成变更 + 时间线
3. 事务提交后生成通知
4. 通知交给 DeliveryDispatcher 后台投递，请求不等待投递结果
"""

from collections import defaultdict
from datetime import timedelta

import aiosqlite
import structlog
from dgworkos.core.config import MESSAGE_PREVIEW_LENGTH, TIMELINE_COLLAPSE_WINDOW_S
from dgworkos.core.models import (
    DECIDER_ROLES,
    PRIORITY_RANK,
    ActivityAction,
    ActivityRecord,
    BulkCreateResult,
    CreateTaskInput,
    ExtensionDecisionInput,
    ExtensionRequest,
    ExtensionRequestInput,
    Notification,
    NotificationType,
    Task,
    TaskChanges,
    TaskFilters,
    TaskStats,
    TaskStatus,
    User,
)
from dgworkos.core.repository import TaskRepository
from dgworkos.core.store import StoreGroup

from ..permissions import authorize, ensure_assignee_or_decider, ensure_can_view
from ..schemas import RejectRequest, StatusChangeRequest, SubmitRequest, TimelineEntry
from .notification_service import (
    NotificationDraft,
    NotificationGenerator,
    extension_requested_drafts,
)

log = structlog.get_logger()

# 只有审批人可以执行的目标状态
DECIDER_ONLY_TARGETS: set[TaskStatus] = {
    TaskStatus.ASSIGNED,
    TaskStatus.VERIFIED,
    TaskStatus.REJECTED,
    TaskStatus.ARCHIVED,
}

# 批量派发汇总通知中最多列出的任务标题数
SUMMARY_TITLE_LIMIT = 5


def assigned_draft(task: Task) -> NotificationDraft:
    return NotificationDraft(
        recipient_id=task.assignee_id,
        type=NotificationType.TASK_ASSIGNED,
        title=f"New task: {task.title}",
        message=f'You have been assigned "{task.title}", due {task.due_date.isoformat()}.',
        task_id=task.task_id,
        priority=task.priority,
    )


def bulk_summary_draft(assignee_id: str, tasks: list[Task]) -> NotificationDraft:
    """同一负责人的批量派发合并为一条汇总通知"""
    count = len(tasks)
    titles = [t.title for t in tasks[:SUMMARY_TITLE_LIMIT]]
    listing = ", ".join(f'"{title}"' for title in titles)
    if count > SUMMARY_TITLE_LIMIT:
        listing += f" and {count - SUMMARY_TITLE_LIMIT} more"
    return NotificationDraft(
        recipient_id=assignee_id,
        type=NotificationType.TASK_ASSIGNED,
        title=f"{count} new task{'s' if count != 1 else ''} assigned",
        message=f"You have been assigned {listing}.",
        task_id=tasks[0].task_id if count == 1 else None,
        priority=min((t.priority for t in tasks), key=PRIORITY_RANK.__getitem__),
    )


def preview(text: str, limit: int = MESSAGE_PREVIEW_LENGTH) -> str:
    text = " ".join(text.split())
    if len(text) <= limit:
        return text
    return text[: limit - 3].rstrip() + "..."


def collapse_timeline(
    records: list[ActivityRecord],
    window_s: int = TIMELINE_COLLAPSE_WINDOW_S,
) -> list[TimelineEntry]:
    """合并同一操作者在窗口内连续的同类操作

    评论不合并，每条评论都有独立内容。
    """
    window = timedelta(seconds=window_s)
    entries: list[TimelineEntry] = []
    for record in records:
        last = entries[-1] if entries else None
        if (
            last is not None
            and record.action != ActivityAction.COMMENTED
            and record.action == last.record.action
            and record.actor_id == last.record.actor_id
            and record.created_at - last.record.created_at <= window
        ):
            last.record = record
            last.count += 1
            last.activity_ids.append(record.activity_id)
            continue
        entries.append(
            TimelineEntry(
                record=record,
                first_at=record.created_at,
                activity_ids=[record.activity_id],
            )
        )
    return entries


class TaskService:
    """任务工作流编排服务"""

    def __init__(self, store_group: StoreGroup, generator: NotificationGenerator) -> None:
        self._stores = store_group
        self._repo = TaskRepository(store_group)
        self._generator = generator

    # ------------------------------------------------------------------
    # 派发
    # ------------------------------------------------------------------

    async def create_task(self, data: CreateTaskInput, actor: User) -> Task:
        """创建任务；非草稿任务立即通知负责人"""
        task = await self._repo.create_task(data, actor.user_id)
        if task.status == TaskStatus.ASSIGNED:
            await self._notify([assigned_draft(task)])
        return task

    async def bulk_create_tasks(
        self,
        items: list[CreateTaskInput],
        actor: User,
    ) -> BulkCreateResult:
        """批量创建；每个负责人只收到一条汇总通知"""
        result = await self._repo.bulk_create_tasks(items, actor.user_id)

        by_assignee: dict[str, list[Task]] = defaultdict(list)
        for task in result.tasks:
            if task.status == TaskStatus.ASSIGNED:
                by_assignee[task.assignee_id].append(task)
        await self._notify(
            [bulk_summary_draft(assignee_id, tasks) for assignee_id, tasks in by_assignee.items()]
        )

        log.info(
            "tasks_bulk_created",
            requested=len(items),
            created=len(result.tasks),
            assignees=len(by_assignee),
        )
        return result

    # ------------------------------------------------------------------
    # 状态流转与修改
    # ------------------------------------------------------------------

    async def change_status(
        self,
        task_id: str,
        change: StatusChangeRequest,
        actor: User,
    ) -> Task:
        """执行状态流转并通知相关方

        Raises:
            NotFoundError: 任务不存在
            AuthError: 无权执行该流转
            InvalidTransitionError: 流转不在允许表内
        """
        task = await self._repo.get_task(task_id)
        ensure_can_view(actor, task)
        target = TaskStatus(change.status)
        if target in DECIDER_ONLY_TARGETS:
            authorize(actor, DECIDER_ROLES)
        else:
            ensure_assignee_or_decider(actor, task, "update this task")

        if isinstance(change, SubmitRequest):
            updated = await self._repo.update_task_status(
                task_id,
                target,
                actor.user_id,
                change.note,
                completion_notes=change.completion_notes,
                evidence=change.evidence,
            )
        elif isinstance(change, RejectRequest):
            updated = await self._repo.update_task_status(
                task_id,
                target,
                actor.user_id,
                rejection_reason=change.reason,
            )
        else:
            updated = await self._repo.update_task_status(
                task_id, target, actor.user_id, change.note
            )

        await self._notify(await self._status_drafts(task.status, updated, actor), actor)
        return updated

    async def update_task(self, task_id: str, changes: TaskChanges, actor: User) -> Task:
        """修改优先级 / 截止日期 / 负责人；改派时通知新负责人"""
        updated, records = await self._repo.update_task(task_id, changes, actor.user_id)
        reassigned = any(r.action == ActivityAction.REASSIGNED for r in records)
        if reassigned and updated.status != TaskStatus.DRAFT:
            await self._notify([assigned_draft(updated)])
        return updated

    async def add_comment(self, task_id: str, text: str, actor: User) -> ActivityRecord:
        """追加评论，通知另一方（负责人评论通知创建人，其他人评论通知负责人）"""
        task = await self._repo.get_task(task_id)
        ensure_can_view(actor, task)
        record = await self._repo.add_comment(task_id, actor.user_id, text)

        recipient_id = task.created_by if actor.user_id == task.assignee_id else task.assignee_id
        await self._notify(
            [
                NotificationDraft(
                    recipient_id=recipient_id,
                    type=NotificationType.COMMENT_ADDED,
                    title=f"New comment on {task.title}",
                    message=f"{actor.full_name}: {preview(record.comment or '')}",
                    task_id=task.task_id,
                    priority=task.priority,
                )
            ],
            actor,
        )
        return record

    # ------------------------------------------------------------------
    # 延期
    # ------------------------------------------------------------------

    async def request_extension(
        self,
        task_id: str,
        data: ExtensionRequestInput,
        actor: User,
    ) -> ExtensionRequest:
        """提交延期申请并通知全部在职审批人"""
        task = await self._repo.get_task(task_id)
        ensure_assignee_or_decider(actor, task, "request an extension")
        ext = await self._repo.request_extension(
            task_id, actor.user_id, data.requested_due_date, data.reason
        )
        deciders = await self._generator.deciders()
        await self._notify(extension_requested_drafts(ext, task, deciders))
        return ext

    async def decide_extension(
        self,
        extension_id: str,
        data: ExtensionDecisionInput,
        actor: User,
    ) -> ExtensionRequest:
        """决策延期申请，通知申请人（而非决策人）"""
        authorize(actor, DECIDER_ROLES)
        ext = await self._repo.decide_extension(
            extension_id, actor.user_id, data.approved, data.note
        )
        task = await self._repo.get_task(ext.task_id)
        if data.approved:
            title = "Extension approved"
            message = (
                f'The due date for "{task.title}" has been moved to '
                f"{ext.requested_due_date.isoformat()}."
            )
        else:
            title = "Extension rejected"
            message = (
                f'Your request to move "{task.title}" to '
                f"{ext.requested_due_date.isoformat()} was not approved."
            )
        if data.note:
            message += f" Note: {preview(data.note)}"

        await self._notify(
            [
                NotificationDraft(
                    recipient_id=ext.requested_by,
                    type=NotificationType.EXTENSION_DECIDED,
                    title=title,
                    message=message,
                    task_id=task.task_id,
                    priority=task.priority,
                )
            ],
            actor,
        )
        return ext

    # ------------------------------------------------------------------
    # 查询
    # ------------------------------------------------------------------

    async def get_task(self, task_id: str, viewer: User) -> Task:
        task = await self._repo.get_task(task_id)
        ensure_can_view(viewer, task)
        return task

    async def list_tasks(self, filters: TaskFilters, viewer: User) -> list[Task]:
        return await self._repo.list_tasks(self._scope(filters, viewer))

    async def get_task_stats(self, filters: TaskFilters, viewer: User) -> TaskStats:
        return await self._repo.get_task_stats(self._scope(filters, viewer))

    async def list_timeline(self, task_id: str, viewer: User) -> list[ActivityRecord]:
        await self.get_task(task_id, viewer)
        return await self._repo.list_timeline(task_id)

    async def list_extensions(self, task_id: str, viewer: User) -> list[ExtensionRequest]:
        await self.get_task(task_id, viewer)
        return await self._repo.list_extensions(task_id)

    # ------------------------------------------------------------------
    # 内部
    # ------------------------------------------------------------------

    @staticmethod
    def _scope(filters: TaskFilters, viewer: User) -> TaskFilters:
        """非审批人只能看到自己负责或创建的任务，与 can_view_task 一致"""
        if viewer.is_decider:
            return filters
        return filters.model_copy(update={"visible_to": viewer.user_id})

    async def _status_drafts(
        self,
        previous: TaskStatus,
        task: Task,
        actor: User,
    ) -> list[NotificationDraft]:
        if task.status == TaskStatus.SUBMITTED:
            return [
                NotificationDraft(
                    recipient_id=decider.user_id,
                    type=NotificationType.TASK_SUBMITTED,
                    title=f"Submitted for review: {task.title}",
                    message=f'{actor.full_name} submitted "{task.title}" for review.',
                    task_id=task.task_id,
                    priority=task.priority,
                )
                for decider in await self._generator.deciders()
            ]
        if task.status == TaskStatus.REJECTED:
            return [
                NotificationDraft(
                    recipient_id=task.assignee_id,
                    type=NotificationType.TASK_REJECTED,
                    title=f"Task returned: {task.title}",
                    message=f"Reason: {preview(task.rejection_reason or '')}",
                    task_id=task.task_id,
                    priority=task.priority,
                )
            ]
        if task.status == TaskStatus.VERIFIED:
            return [
                NotificationDraft(
                    recipient_id=task.assignee_id,
                    type=NotificationType.TASK_VERIFIED,
                    title=f"Task verified: {task.title}",
                    message=f'"{task.title}" has been verified as complete.',
                    task_id=task.task_id,
                    priority=task.priority,
                )
            ]
        if task.status == TaskStatus.ASSIGNED and previous == TaskStatus.DRAFT:
            return [assigned_draft(task)]
        return []

    async def _notify(
        self,
        drafts: list[NotificationDraft],
        actor: User | None = None,
    ) -> list[Notification]:
        """写入通知并提交后台投递

        任务变更此时已提交，通知写入失败只记录日志，不影响调用结果。
        actor 非空时不通知操作者本人。
        """
        if actor is not None:
            drafts = [d for d in drafts if d.recipient_id != actor.user_id]
        if not drafts:
            return []
        try:
            created = await self._generator.create_many(drafts)
        except aiosqlite.Error as e:
            log.error(
                "notification_create_failed",
                types=sorted({d.type.value for d in drafts}),
                error=str(e),
            )
            return []
        self._generator.dispatch(created)
        return created
