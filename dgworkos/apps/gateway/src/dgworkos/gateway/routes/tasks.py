"""任务路由

POST  /api/tasks                      创建任务（审批人）
POST  /api/tasks/bulk                 批量派发（审批人）
GET   /api/tasks                      任务列表，按机构 / 负责人 / 状态等筛选
GET   /api/tasks/stats                聚合统计
GET   /api/tasks/{task_id}            任务详情，含时间线与延期申请
PATCH /api/tasks/{task_id}            修改优先级 / 截止日期 / 负责人（审批人）
POST  /api/tasks/{task_id}/status     状态流转
POST  /api/tasks/{task_id}/comments   评论
GET   /api/tasks/{task_id}/timeline   时间线，collapse=true 时折叠连续同类操作
"""

from datetime import UTC, date, datetime
from typing import Literal

from dgworkos.core.models import (
    CreateTaskInput,
    TaskChanges,
    TaskFilters,
    TaskPriority,
    TaskStatus,
    User,
)
from dgworkos.core.models.task import SortField
from fastapi import APIRouter, Body, Depends, Query

from ..auth import get_current_user, require_decider
from ..deps import get_task_service
from ..responses import ok
from ..schemas import BulkCreateRequest, CommentRequest, StatusChangeRequest
from ..services.task_service import TaskService, collapse_timeline

router = APIRouter()


def task_filters(
    agency: str | None = Query(default=None, description="机构标签"),
    assignee_id: str | None = Query(default=None, description="负责人"),
    status: list[TaskStatus] | None = Query(default=None, description="状态，可多选"),
    priority: TaskPriority | None = Query(default=None),
    search: str | None = Query(default=None, max_length=200, description="标题 / 描述关键字"),
    due_before: date | None = Query(default=None),
    due_after: date | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    sort_by: SortField = Query(default="created_at"),
    sort_dir: Literal["asc", "desc"] = Query(default="desc"),
) -> TaskFilters:
    return TaskFilters(
        agency=agency,
        assignee_id=assignee_id,
        status=status,
        priority=priority,
        search=search,
        due_before=due_before,
        due_after=due_after,
        limit=limit,
        offset=offset,
        sort_by=sort_by,
        sort_dir=sort_dir,
    )


@router.post("/api/tasks")
async def create_task(
    body: CreateTaskInput,
    actor: User = Depends(require_decider),
    service: TaskService = Depends(get_task_service),
):
    """创建任务，返回 201；负责人通知在后台投递"""
    task = await service.create_task(body, actor)
    return ok(task, status_code=201)


@router.post("/api/tasks/bulk")
async def bulk_create_tasks(
    body: BulkCreateRequest,
    actor: User = Depends(require_decider),
    service: TaskService = Depends(get_task_service),
):
    """批量派发：逐条结果 + 整体 success 标志，部分失败不回滚"""
    result = await service.bulk_create_tasks(body.tasks, actor)
    return ok(
        {
            "success": result.success,
            "created": len(result.tasks),
            "failed": len(result.items) - len(result.tasks),
            "items": result.items,
            "tasks": result.tasks,
        },
        status_code=201 if result.tasks else 200,
    )


@router.get("/api/tasks")
async def list_tasks(
    filters: TaskFilters = Depends(task_filters),
    viewer: User = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    tasks = await service.list_tasks(filters, viewer)
    return ok({"tasks": tasks, "limit": filters.limit, "offset": filters.offset})


@router.get("/api/tasks/stats")
async def task_stats(
    filters: TaskFilters = Depends(task_filters),
    viewer: User = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    stats = await service.get_task_stats(filters, viewer)
    return ok(stats)


@router.get("/api/tasks/{task_id}")
async def get_task_detail(
    task_id: str,
    viewer: User = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    """任务详情，包含逾期标记、时间线与延期申请"""
    task = await service.get_task(task_id, viewer)
    timeline = await service.list_timeline(task_id, viewer)
    extensions = await service.list_extensions(task_id, viewer)
    return ok(
        {
            "task": task,
            "is_overdue": task.is_overdue(datetime.now(UTC).date()),
            "timeline": timeline,
            "extensions": extensions,
        }
    )


@router.patch("/api/tasks/{task_id}")
async def update_task(
    task_id: str,
    body: TaskChanges,
    actor: User = Depends(require_decider),
    service: TaskService = Depends(get_task_service),
):
    task = await service.update_task(task_id, body, actor)
    return ok(task)


@router.post("/api/tasks/{task_id}/status")
async def change_status(
    task_id: str,
    body: StatusChangeRequest = Body(),
    actor: User = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    task = await service.change_status(task_id, body, actor)
    return ok(task)


@router.post("/api/tasks/{task_id}/comments")
async def add_comment(
    task_id: str,
    body: CommentRequest,
    actor: User = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    record = await service.add_comment(task_id, body.comment, actor)
    return ok(record, status_code=201)


@router.get("/api/tasks/{task_id}/timeline")
async def get_timeline(
    task_id: str,
    collapse: bool = Query(default=False, description="折叠同一操作者 5 分钟内的连续同类操作"),
    viewer: User = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    records = await service.list_timeline(task_id, viewer)
    if collapse:
        return ok({"entries": collapse_timeline(records)})
    return ok({"records": records})
