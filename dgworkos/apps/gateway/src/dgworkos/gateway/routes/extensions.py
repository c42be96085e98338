"""延期申请路由

POST /api/tasks/{task_id}/extensions        负责人（或审批人）提交延期申请
GET  /api/tasks/{task_id}/extensions        申请历史
POST /api/extensions/{extension_id}/decision 审批人批准 / 驳回
"""

from dgworkos.core.models import ExtensionDecisionInput, ExtensionRequestInput, User
from fastapi import APIRouter, Depends

from ..auth import get_current_user, require_decider
from ..deps import get_task_service
from ..responses import ok
from ..services.task_service import TaskService

router = APIRouter()


@router.post("/api/tasks/{task_id}/extensions")
async def request_extension(
    task_id: str,
    body: ExtensionRequestInput,
    actor: User = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    """已有 pending 申请时返回 409 CONFLICT"""
    ext = await service.request_extension(task_id, body, actor)
    return ok(ext, status_code=201)


@router.get("/api/tasks/{task_id}/extensions")
async def list_extensions(
    task_id: str,
    viewer: User = Depends(get_current_user),
    service: TaskService = Depends(get_task_service),
):
    extensions = await service.list_extensions(task_id, viewer)
    return ok({"extensions": extensions})


@router.post("/api/extensions/{extension_id}/decision")
async def decide_extension(
    extension_id: str,
    body: ExtensionDecisionInput,
    actor: User = Depends(require_decider),
    service: TaskService = Depends(get_task_service),
):
    """重复决策返回 409 CONFLICT，任务截止日期只反映第一次决策"""
    ext = await service.decide_extension(extension_id, body, actor)
    return ok(ext)
