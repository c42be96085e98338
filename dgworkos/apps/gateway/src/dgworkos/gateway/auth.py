"""认证依赖 -- authenticate(request) -> User

调用方身份由上游网关写入 X-User-Id 请求头，这里只负责解析为在职用户；
定时 sweep 通过 Authorization: Bearer <DGWORKOS_CRON_SECRET> 调用。
"""

import hmac
from collections.abc import Awaitable, Callable

from dgworkos.core.config import get_cron_secret
from dgworkos.core.errors import AuthError
from dgworkos.core.models import DECIDER_ROLES, User, UserRole
from dgworkos.core.store import StoreGroup
from fastapi import Depends, Header

from .deps import get_store_group
from .permissions import authorize


async def get_current_user(
    x_user_id: str | None = Header(default=None, alias="X-User-Id"),
    store_group: StoreGroup = Depends(get_store_group),
) -> User:
    """authenticate：X-User-Id -> 在职用户

    Raises:
        AuthError: 缺少请求头、用户不存在或已停用（401）
    """
    if not x_user_id:
        raise AuthError("Authentication required", authenticated=False)
    user = await store_group.user_store.get_user(x_user_id)
    if user is None or not user.is_active:
        raise AuthError("Unknown or inactive user", authenticated=False)
    return user


def require_roles(*roles: UserRole) -> Callable[..., Awaitable[User]]:
    """生成角色检查依赖，返回通过检查的当前用户"""

    async def dependency(user: User = Depends(get_current_user)) -> User:
        authorize(user, roles)
        return user

    return dependency


require_decider = require_roles(*sorted(DECIDER_ROLES))


async def verify_cron_secret(
    authorization: str | None = Header(default=None),
) -> None:
    """校验定时任务密钥；未配置密钥时拒绝所有调用

    Raises:
        AuthError: 密钥缺失或不匹配（401）
    """
    secret = get_cron_secret()
    if not secret:
        raise AuthError("Sweep trigger is not configured", authenticated=False)
    expected = f"Bearer {secret}".encode()
    if authorization is None or not hmac.compare_digest(authorization.encode(), expected):
        raise AuthError("Invalid cron credentials", authenticated=False)
