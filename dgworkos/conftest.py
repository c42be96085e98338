"""全局 pytest 配置 -- 临时 SQLite 数据库 + 用户种子数据 fixture"""

from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import UTC, datetime
from pathlib import Path

import pytest_asyncio
from dgworkos.core.models import User, UserRole
from dgworkos.core.store import StoreGroup, create_store_group

UserFactory = Callable[..., Awaitable[User]]


@pytest_asyncio.fixture
async def tmp_db_path(tmp_path: Path) -> Path:
    """提供临时 SQLite 数据库路径"""
    return tmp_path / "sqlite" / "test.db"


@pytest_asyncio.fixture
async def store_group(tmp_db_path: Path) -> AsyncGenerator[StoreGroup, None]:
    """提供已初始化的 StoreGroup（独立数据库）"""
    group = await create_store_group(str(tmp_db_path))
    yield group
    await group.close()


@pytest_asyncio.fixture
async def make_user(store_group: StoreGroup) -> UserFactory:
    """创建用户的工厂 fixture"""

    async def factory(
        user_id: str,
        role: UserRole = UserRole.DATA_ENTRY,
        *,
        email: str | None = None,
        agency: str | None = None,
        is_active: bool = True,
    ) -> User:
        user = User(
            user_id=user_id,
            full_name=user_id.replace("-", " ").title(),
            email=email if email is not None else f"{user_id}@example.gov.gy",
            role=role,
            agency=agency,
            is_active=is_active,
            created_at=datetime.now(UTC),
        )
        async with store_group.transaction():
            await store_group.user_store.create_user(user)
        return user

    return factory


@pytest_asyncio.fixture
async def users(make_user: UserFactory) -> dict[str, User]:
    """标准种子用户：一名主任、一名管理员、两名执行人、一名已停用用户"""
    return {
        "director": await make_user("dir-one", UserRole.DIRECTOR),
        "admin": await make_user("adm-one", UserRole.ADMIN),
        "alice": await make_user("alice", UserRole.DATA_ENTRY, agency="gpl"),
        "bob": await make_user("bob", UserRole.SUPERVISOR, agency="gwi"),
        "inactive": await make_user("carol", UserRole.DATA_ENTRY, is_active=False),
    }
