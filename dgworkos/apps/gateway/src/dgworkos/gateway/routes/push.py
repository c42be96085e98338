"""Web Push 订阅路由

POST   /api/push/subscriptions   保存（或更新）当前浏览器的订阅
DELETE /api/push/subscriptions   停用指定 endpoint，未指定时停用全部
GET    /api/push/vapid-key       浏览器订阅所需的 VAPID 公钥
"""

from datetime import UTC, datetime

import structlog
from dgworkos.core.models import PushSubscription, User
from dgworkos.core.store import StoreGroup
from fastapi import APIRouter, Depends, Request

from ..auth import get_current_user
from ..deps import get_store_group
from ..responses import ok
from ..schemas import PushSubscribeRequest, PushUnsubscribeRequest

log = structlog.get_logger()

router = APIRouter()


@router.get("/api/push/vapid-key")
async def vapid_key(request: Request):
    config = request.app.state.delivery_config
    return ok({"public_key": config.vapid_public_key or None})


@router.post("/api/push/subscriptions")
async def subscribe(
    body: PushSubscribeRequest,
    user: User = Depends(get_current_user),
    store_group: StoreGroup = Depends(get_store_group),
):
    """同一 endpoint 重复订阅时覆盖密钥并重新激活"""
    subscription = PushSubscription(
        endpoint=body.endpoint,
        user_id=user.user_id,
        p256dh=body.keys.p256dh,
        auth=body.keys.auth,
        created_at=datetime.now(UTC),
    )
    async with store_group.transaction():
        await store_group.subscription_store.save(subscription)
    log.info("push_subscription_saved", user_id=user.user_id)
    return ok({"subscribed": True}, status_code=201)


@router.delete("/api/push/subscriptions")
async def unsubscribe(
    body: PushUnsubscribeRequest | None = None,
    user: User = Depends(get_current_user),
    store_group: StoreGroup = Depends(get_store_group),
):
    async with store_group.transaction():
        if body is not None and body.endpoint:
            count = await store_group.subscription_store.deactivate(
                [body.endpoint], user_id=user.user_id
            )
        else:
            count = await store_group.subscription_store.deactivate_all(user.user_id)
    log.info("push_subscription_removed", user_id=user.user_id, count=count)
    return ok({"deactivated": count})
