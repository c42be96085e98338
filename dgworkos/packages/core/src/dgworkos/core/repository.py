"""TaskRepository -- 任务、延期申请与时间线的事务性写入

所有变更在 StoreGroup.transaction() 内完成：
1. 事务内重新读取任务行并校验（状态流转、pending 唯一性等）
2. 写入任务 / 申请行
3. 追加时间线记录
任一步失败整体回滚，任务不会出现没有时间线记录的变更。
"""

from datetime import UTC, date, datetime
from typing import Any

import aiosqlite
import structlog
from ulid import ULID

from .errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
    WorkflowError,
)
from .models import (
    TERMINAL_STATES,
    ActivityAction,
    ActivityRecord,
    BulkCreateResult,
    BulkItemResult,
    CreateTaskInput,
    ExtensionRequest,
    ExtensionStatus,
    Task,
    TaskChanges,
    TaskFilters,
    TaskStats,
    TaskStatus,
    validate_transition,
)
from .store import StoreGroup
from .store.protocols import ActivityTimeline
from .store.task_store import build_task_where

log = structlog.get_logger()


def _is_pending_conflict(error: Exception) -> bool:
    if not isinstance(error, aiosqlite.IntegrityError):
        return False
    text = str(error)
    return "idx_extensions_one_pending" in text or "extension_requests.task_id" in text


class TaskRepository:
    """任务仓储 -- Task / ExtensionRequest / ActivityRecord 的唯一写入方"""

    def __init__(self, stores: StoreGroup) -> None:
        self._stores = stores
        self._timeline: ActivityTimeline = stores.activity_store

    # ------------------------------------------------------------------
    # 创建
    # ------------------------------------------------------------------

    async def create_task(self, data: CreateTaskInput, creator_id: str) -> Task:
        """创建任务并写入 created 活动

        Raises:
            ValidationError: 负责人不存在或已停用、创建人不存在、标题为空
        """
        title = data.title.strip()
        if not title:
            raise ValidationError("Task title must not be blank", field="title")

        now = datetime.now(UTC)
        status = TaskStatus.DRAFT if data.draft else TaskStatus.ASSIGNED
        task = Task(
            task_id=str(ULID()),
            title=title,
            description=data.description,
            assignee_id=data.assignee_id,
            created_by=creator_id,
            agency=data.agency,
            priority=data.priority,
            status=status,
            due_date=data.due_date,
            source_meeting_id=data.source_meeting_id,
            created_at=now,
            updated_at=now,
        )

        async with self._stores.transaction():
            await self._require_active_user(data.assignee_id, "assignee_id")
            await self._require_user(creator_id, "created_by")
            await self._stores.task_store.create_task(task)
            await self._timeline.append(
                _activity(
                    task.task_id,
                    ActivityAction.CREATED,
                    creator_id,
                    now,
                    to_value=status.value,
                    metadata={"assignee_id": task.assignee_id},
                )
            )

        log.info(
            "task_created",
            task_id=task.task_id,
            assignee_id=task.assignee_id,
            status=task.status.value,
        )
        return task

    async def bulk_create_tasks(
        self,
        items: list[CreateTaskInput],
        creator_id: str,
    ) -> BulkCreateResult:
        """逐条创建任务，每条独立事务；部分失败不影响其他条目"""
        result = BulkCreateResult()
        for index, item in enumerate(items):
            try:
                task = await self.create_task(item, creator_id)
            except (WorkflowError, aiosqlite.Error) as exc:
                message = exc.message if isinstance(exc, WorkflowError) else str(exc)
                log.warning("bulk_task_create_failed", index=index, error=message)
                result.items.append(BulkItemResult(index=index, success=False, error=message))
                continue
            result.tasks.append(task)
            result.items.append(BulkItemResult(index=index, success=True, task_id=task.task_id))
        return result

    # ------------------------------------------------------------------
    # 状态流转与字段修改
    # ------------------------------------------------------------------

    async def update_task_status(
        self,
        task_id: str,
        new_status: TaskStatus,
        actor_id: str | None,
        note: str | None = None,
        *,
        completion_notes: str | None = None,
        evidence: list[str] | None = None,
        rejection_reason: str | None = None,
    ) -> Task:
        """校验并执行状态流转，写入 status_changed 活动

        Args:
            task_id: 任务 ID
            new_status: 目标状态
            actor_id: 操作者，None 为系统
            note: 时间线备注
            completion_notes: 提交时的完成说明
            evidence: 提交时追加的佐证材料
            rejection_reason: 驳回原因（驳回时必填）

        Raises:
            NotFoundError: 任务不存在
            InvalidTransitionError: 流转不在允许表内
            ValidationError: 驳回缺少原因
        """
        if new_status == TaskStatus.REJECTED and not (rejection_reason or "").strip():
            raise ValidationError("A rejection reason is required", field="rejection_reason")

        async with self._stores.transaction():
            task = await self._get_task_or_raise(task_id)
            current = task.status
            if not validate_transition(current, new_status):
                raise InvalidTransitionError(current.value, new_status.value)

            now = datetime.now(UTC)
            updates: dict[str, Any] = {"status": new_status, "updated_at": now}
            if new_status == TaskStatus.IN_PROGRESS and task.started_at is None:
                updates["started_at"] = now
            elif new_status == TaskStatus.SUBMITTED:
                updates["submitted_at"] = now
                if completion_notes is not None:
                    updates["completion_notes"] = completion_notes
                if evidence:
                    updates["evidence"] = [*task.evidence, *evidence]
            elif new_status == TaskStatus.VERIFIED:
                updates["verified_at"] = now
            elif new_status == TaskStatus.REJECTED:
                updates["rejected_at"] = now
                updates["rejection_reason"] = rejection_reason

            updated = task.model_copy(update=updates)
            await self._stores.task_store.save_task(updated)
            await self._timeline.append(
                _activity(
                    task_id,
                    ActivityAction.STATUS_CHANGED,
                    actor_id,
                    now,
                    from_value=current.value,
                    to_value=new_status.value,
                    comment=note or rejection_reason,
                )
            )
            if new_status == TaskStatus.SUBMITTED and evidence:
                await self._timeline.append(
                    _activity(
                        task_id,
                        ActivityAction.EVIDENCE_ADDED,
                        actor_id,
                        now,
                        metadata={"evidence": evidence},
                    )
                )

        log.info(
            "task_status_changed",
            task_id=task_id,
            from_status=current.value,
            to_status=new_status.value,
            actor_id=actor_id,
        )
        return updated

    async def update_task(
        self,
        task_id: str,
        changes: TaskChanges,
        actor_id: str,
    ) -> tuple[Task, list[ActivityRecord]]:
        """修改优先级 / 截止日期 / 负责人，每项实际变更写一条活动

        Returns:
            (更新后的任务, 本次写入的活动记录)；无实际变更时活动列表为空

        Raises:
            NotFoundError: 任务不存在
            ValidationError: 任务已关闭，或新负责人不可用
        """
        async with self._stores.transaction():
            task = await self._get_task_or_raise(task_id)
            if task.status in TERMINAL_STATES:
                raise ValidationError(
                    f"Task is {task.status.value} and can no longer be edited",
                    status=task.status.value,
                )

            now = datetime.now(UTC)
            updates: dict[str, Any] = {}
            pending: list[ActivityRecord] = []

            if changes.priority is not None and changes.priority != task.priority:
                updates["priority"] = changes.priority
                pending.append(
                    _activity(
                        task_id,
                        ActivityAction.PRIORITY_CHANGED,
                        actor_id,
                        now,
                        from_value=task.priority.value,
                        to_value=changes.priority.value,
                    )
                )
            if changes.due_date is not None and changes.due_date != task.due_date:
                updates["due_date"] = changes.due_date
                pending.append(
                    _activity(
                        task_id,
                        ActivityAction.DUE_DATE_CHANGED,
                        actor_id,
                        now,
                        from_value=task.due_date.isoformat(),
                        to_value=changes.due_date.isoformat(),
                    )
                )
            if changes.assignee_id is not None and changes.assignee_id != task.assignee_id:
                await self._require_active_user(changes.assignee_id, "assignee_id")
                updates["assignee_id"] = changes.assignee_id
                pending.append(
                    _activity(
                        task_id,
                        ActivityAction.REASSIGNED,
                        actor_id,
                        now,
                        from_value=task.assignee_id,
                        to_value=changes.assignee_id,
                    )
                )

            if not updates:
                return task, []

            updated = task.model_copy(update={**updates, "updated_at": now})
            await self._stores.task_store.save_task(updated)
            written = [await self._timeline.append(record) for record in pending]

        log.info(
            "task_updated",
            task_id=task_id,
            fields=sorted(updates),
            actor_id=actor_id,
        )
        return updated, written

    async def add_comment(self, task_id: str, actor_id: str, text: str) -> ActivityRecord:
        """追加 commented 活动

        Raises:
            NotFoundError: 任务不存在
            ValidationError: 评论为空
        """
        body = text.strip()
        if not body:
            raise ValidationError("Comment must not be blank", field="comment")

        async with self._stores.transaction():
            task = await self._get_task_or_raise(task_id)
            now = datetime.now(UTC)
            record = await self._timeline.append(
                _activity(task.task_id, ActivityAction.COMMENTED, actor_id, now, comment=body)
            )
            # 评论也视为任务有更新
            await self._stores.task_store.save_task(task.model_copy(update={"updated_at": now}))
        return record

    # ------------------------------------------------------------------
    # 延期申请
    # ------------------------------------------------------------------

    async def request_extension(
        self,
        task_id: str,
        requester_id: str,
        new_due_date: date,
        reason: str,
    ) -> ExtensionRequest:
        """提交延期申请

        Raises:
            NotFoundError: 任务不存在
            ValidationError: 任务已关闭、日期不合法、理由为空
            ConflictError: 该任务已有 pending 申请
        """
        reason = reason.strip()
        if not reason:
            raise ValidationError("A justification is required", field="reason")

        async with self._stores.transaction():
            task = await self._get_task_or_raise(task_id)
            if task.status in TERMINAL_STATES:
                raise ValidationError(
                    f"Cannot extend a {task.status.value} task",
                    status=task.status.value,
                )
            now = datetime.now(UTC)
            if new_due_date < now.date():
                raise ValidationError(
                    "Requested due date is in the past",
                    field="requested_due_date",
                )
            if new_due_date == task.due_date:
                raise ValidationError(
                    "Requested due date equals the current due date",
                    field="requested_due_date",
                )

            existing = await self._stores.extension_store.get_pending_for_task(task_id)
            if existing is not None:
                raise ConflictError(
                    "A pending extension request already exists for this task",
                    extension_id=existing.extension_id,
                )

            ext = ExtensionRequest(
                extension_id=str(ULID()),
                task_id=task_id,
                requested_by=requester_id,
                original_due_date=task.due_date,
                requested_due_date=new_due_date,
                reason=reason,
                created_at=now,
            )
            try:
                await self._stores.extension_store.create_extension(ext)
            except aiosqlite.IntegrityError as exc:
                if _is_pending_conflict(exc):
                    raise ConflictError(
                        "A pending extension request already exists for this task"
                    ) from exc
                raise
            await self._timeline.append(
                _activity(
                    task_id,
                    ActivityAction.EXTENSION_REQUESTED,
                    requester_id,
                    now,
                    from_value=task.due_date.isoformat(),
                    to_value=new_due_date.isoformat(),
                    comment=reason,
                    metadata={"extension_id": ext.extension_id},
                )
            )

        log.info(
            "extension_requested",
            task_id=task_id,
            extension_id=ext.extension_id,
            requested_due_date=new_due_date.isoformat(),
        )
        return ext

    async def decide_extension(
        self,
        extension_id: str,
        decider_id: str,
        approved: bool,
        note: str | None = None,
    ) -> ExtensionRequest:
        """决策延期申请；批准时同步更新任务截止日期

        "仍为 pending" 的检查与状态翻转在同一事务内的条件更新中完成。

        Raises:
            NotFoundError: 申请不存在
            ConflictError: 申请已被决策
            ValidationError: 任务已结束时批准
        """
        async with self._stores.transaction():
            ext = await self._stores.extension_store.get_extension(extension_id)
            if ext is None:
                raise NotFoundError("ExtensionRequest", extension_id)
            if not ext.is_pending:
                raise ConflictError(
                    f"Extension request already {ext.status.value}",
                    extension_id=extension_id,
                    status=ext.status.value,
                )

            task = await self._get_task_or_raise(ext.task_id)
            if approved and task.status in TERMINAL_STATES:
                # 已结束的任务不再移动截止日期，只能驳回申请
                raise ValidationError(
                    f"Cannot approve an extension for a {task.status.value} task",
                    status=task.status.value,
                )

            now = datetime.now(UTC)
            status = ExtensionStatus.APPROVED if approved else ExtensionStatus.REJECTED
            decided = await self._stores.extension_store.decide_if_pending(
                extension_id, status, decider_id, note, now
            )
            if not decided:
                raise ConflictError(
                    "Extension request was decided concurrently",
                    extension_id=extension_id,
                )

            if approved:
                await self._stores.task_store.save_task(
                    task.model_copy(
                        update={"due_date": ext.requested_due_date, "updated_at": now}
                    )
                )
            await self._timeline.append(
                _activity(
                    ext.task_id,
                    ActivityAction.EXTENSION_APPROVED if approved else ActivityAction.EXTENSION_REJECTED,
                    decider_id,
                    now,
                    from_value=task.due_date.isoformat(),
                    to_value=ext.requested_due_date.isoformat(),
                    comment=note,
                    metadata={"extension_id": extension_id},
                )
            )

        log.info(
            "extension_decided",
            extension_id=extension_id,
            task_id=ext.task_id,
            status=status.value,
            decider_id=decider_id,
        )
        return ext.model_copy(
            update={
                "status": status,
                "decided_by": decider_id,
                "decision_note": note,
                "decided_at": now,
            }
        )

    # ------------------------------------------------------------------
    # 查询（只读连接，只看已提交的数据）
    # ------------------------------------------------------------------

    async def get_task(self, task_id: str) -> Task:
        task = await self._stores.reader.task_store.get_task(task_id)
        if task is None:
            raise NotFoundError("Task", task_id)
        return task

    async def list_tasks(self, filters: TaskFilters) -> list[Task]:
        return await self._stores.reader.task_store.list_tasks(filters)

    async def list_timeline(self, task_id: str) -> list[ActivityRecord]:
        await self.get_task(task_id)
        return await self._stores.reader.activity_store.list_for_task(task_id)

    async def list_extensions(self, task_id: str) -> list[ExtensionRequest]:
        await self.get_task(task_id)
        return await self._stores.reader.extension_store.list_for_task(task_id)

    async def get_extension(self, extension_id: str) -> ExtensionRequest:
        ext = await self._stores.reader.extension_store.get_extension(extension_id)
        if ext is None:
            raise NotFoundError("ExtensionRequest", extension_id)
        return ext

    async def get_task_stats(
        self,
        filters: TaskFilters | None = None,
        today: date | None = None,
    ) -> TaskStats:
        """按状态 / 优先级 / 逾期聚合计数，只读"""
        filters = filters or TaskFilters()
        today = today or datetime.now(UTC).date()
        task_store = self._stores.reader.task_store

        by_status = await task_store.count_by("status", filters)
        by_priority = await task_store.count_by("priority", filters)
        where_sql, params = build_task_where(filters)
        return TaskStats(
            total=sum(by_status.values()),
            by_status=by_status,
            by_priority=by_priority,
            overdue=await task_store.count_overdue(filters, today),
            awaiting_review=by_status.get(TaskStatus.SUBMITTED.value, 0),
            pending_extensions=await self._stores.reader.extension_store.count_pending(
                where_sql, params
            ),
        )

    # ------------------------------------------------------------------
    # 内部
    # ------------------------------------------------------------------

    async def _get_task_or_raise(self, task_id: str) -> Task:
        task = await self._stores.task_store.get_task(task_id)
        if task is None:
            raise NotFoundError("Task", task_id)
        return task

    async def _require_user(self, user_id: str, field: str) -> None:
        user = await self._stores.user_store.get_user(user_id)
        if user is None:
            raise ValidationError(f"Unknown user: {user_id}", field=field)

    async def _require_active_user(self, user_id: str, field: str) -> None:
        user = await self._stores.user_store.get_user(user_id)
        if user is None:
            raise ValidationError(f"Unknown user: {user_id}", field=field)
        if not user.is_active:
            raise ValidationError(f"User is not active: {user_id}", field=field)


def _activity(
    task_id: str,
    action: ActivityAction,
    actor_id: str | None,
    now: datetime,
    *,
    from_value: str | None = None,
    to_value: str | None = None,
    comment: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> ActivityRecord:
    return ActivityRecord(
        activity_id=str(ULID()),
        task_id=task_id,
        action=action,
        actor_id=actor_id,
        from_value=from_value,
        to_value=to_value,
        comment=comment,
        metadata=metadata or {},
        created_at=now,
    )
