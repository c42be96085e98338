"""通知路由

GET  /api/notifications                      当前用户的通知（仅已到投递时间、未忽略）
GET  /api/notifications/preferences          当前用户的通知偏好
PUT  /api/notifications/preferences          部分更新通知偏好
POST /api/notifications/{id}/read            标记已读
POST /api/notifications/read-all             全部已读
POST /api/notifications/{id}/dismiss         忽略
POST /api/notifications/dismiss-all          全部忽略
POST /api/notifications/generate             定时 sweep 入口（cron 密钥）
"""

from datetime import UTC, datetime

import structlog
from dgworkos.core.errors import NotFoundError, ValidationError
from dgworkos.core.models import NotificationPreferences, User
from dgworkos.core.store import StoreGroup
from fastapi import APIRouter, Depends, Query
from pydantic import ValidationError as PydanticValidationError

from ..auth import get_current_user, verify_cron_secret
from ..deps import get_generator, get_store_group
from ..responses import ok
from ..schemas import PreferencesUpdateRequest
from ..services.notification_service import NotificationGenerator

log = structlog.get_logger()

router = APIRouter()


@router.get("/api/notifications")
async def list_notifications(
    unread_only: bool = Query(default=False),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    user: User = Depends(get_current_user),
    store_group: StoreGroup = Depends(get_store_group),
):
    now = datetime.now(UTC)
    store = store_group.reader.notification_store
    notifications = await store.list_for_user(
        user.user_id, now, unread_only=unread_only, limit=limit, offset=offset
    )
    unread = await store.count_unread(user.user_id, now)
    return ok({"notifications": notifications, "unread_count": unread})


@router.get("/api/notifications/preferences")
async def get_preferences(
    user: User = Depends(get_current_user),
    store_group: StoreGroup = Depends(get_store_group),
):
    """未保存过偏好的用户返回默认值"""
    return ok(await store_group.reader.preference_store.get(user.user_id))


@router.put("/api/notifications/preferences")
async def update_preferences(
    body: PreferencesUpdateRequest,
    user: User = Depends(get_current_user),
    store_group: StoreGroup = Depends(get_store_group),
):
    changes = body.model_dump(exclude_unset=True)
    async with store_group.transaction():
        current = await store_group.preference_store.get(user.user_id)
        try:
            prefs = NotificationPreferences.model_validate(
                {**current.model_dump(), **changes, "updated_at": datetime.now(UTC)}
            )
        except PydanticValidationError as e:
            first = e.errors()[0]
            raise ValidationError(
                first["msg"],
                field=".".join(str(p) for p in first["loc"]) or None,
            ) from e
        await store_group.preference_store.save(prefs)
    log.info("notification_preferences_updated", user_id=user.user_id, fields=sorted(changes))
    return ok(prefs)


@router.post("/api/notifications/read-all")
async def mark_all_read(
    user: User = Depends(get_current_user),
    store_group: StoreGroup = Depends(get_store_group),
):
    async with store_group.transaction():
        count = await store_group.notification_store.mark_all_read(
            user.user_id, datetime.now(UTC)
        )
    return ok({"updated": count})


@router.post("/api/notifications/dismiss-all")
async def dismiss_all(
    user: User = Depends(get_current_user),
    store_group: StoreGroup = Depends(get_store_group),
):
    async with store_group.transaction():
        count = await store_group.notification_store.dismiss_all(
            user.user_id, datetime.now(UTC)
        )
    return ok({"updated": count})


@router.post("/api/notifications/generate", dependencies=[Depends(verify_cron_secret)])
async def generate_notifications(
    now: datetime | None = Query(default=None, description="基准时间，默认当前时间"),
    generator: NotificationGenerator = Depends(get_generator),
):
    """执行一次 sweep；部分条件失败时 success=false，但已完成的部分照常返回"""
    if now is not None:
        # 存储层按 UTC ISO 字符串比较
        now = now.replace(tzinfo=UTC) if now.tzinfo is None else now.astimezone(UTC)
    result = await generator.sweep(now)
    return ok(
        {
            "success": result.success,
            "created": result.created,
            "rules": result.rules,
            "errors": result.errors,
            "queued_for_delivery": result.queued_for_delivery,
        }
    )


@router.post("/api/notifications/{notification_id}/read")
async def mark_read(
    notification_id: str,
    user: User = Depends(get_current_user),
    store_group: StoreGroup = Depends(get_store_group),
):
    async with store_group.transaction():
        updated = await store_group.notification_store.mark_read(
            notification_id, user.user_id, datetime.now(UTC)
        )
    if not updated:
        raise NotFoundError("Notification", notification_id)
    return ok({"notification_id": notification_id, "is_read": True})


@router.post("/api/notifications/{notification_id}/dismiss")
async def dismiss(
    notification_id: str,
    user: User = Depends(get_current_user),
    store_group: StoreGroup = Depends(get_store_group),
):
    async with store_group.transaction():
        updated = await store_group.notification_store.dismiss(
            notification_id, user.user_id, datetime.now(UTC)
        )
    if not updated:
        raise NotFoundError("Notification", notification_id)
    log.info("notification_dismissed", notification_id=notification_id)
    return ok({"notification_id": notification_id, "dismissed": True})
