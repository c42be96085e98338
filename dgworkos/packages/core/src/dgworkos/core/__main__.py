"""CLI 入口模块 -- python -m dgworkos.core <command>

支持的命令：
  init-db                                          初始化数据库 schema
  create-user <user_id> <full_name> <role> [email] [agency]  创建用户
  deactivate-user <user_id> / activate-user <user_id>        停用 / 启用用户
"""

import asyncio
import sys
from datetime import UTC, datetime

from .config import get_db_path
from .models import User, UserRole

_USAGE = """用法: python -m dgworkos.core <command>
命令:
  init-db                                                    初始化数据库 schema
  create-user <user_id> <full_name> <role> [email] [agency]  创建用户
  deactivate-user <user_id>                                  停用用户（不可再被指派）
  activate-user <user_id>                                    重新启用用户"""


def main() -> None:
    """CLI 主入口"""
    if len(sys.argv) < 2:
        print(_USAGE)
        sys.exit(1)

    command = sys.argv[1]

    if command == "init-db":
        asyncio.run(init_database())
    elif command == "create-user":
        args = sys.argv[2:]
        if len(args) < 3:
            print(_USAGE)
            sys.exit(1)
        try:
            role = UserRole(args[2])
        except ValueError:
            print(f"未知角色: {args[2]}，可选: {', '.join(r.value for r in UserRole)}")
            sys.exit(1)
        user = User(
            user_id=args[0],
            full_name=args[1],
            role=role,
            email=args[3] if len(args) > 3 else None,
            agency=args[4] if len(args) > 4 else None,
            created_at=datetime.now(UTC),
        )
        asyncio.run(create_user(user))
    elif command in ("deactivate-user", "activate-user"):
        if len(sys.argv) < 3:
            print(_USAGE)
            sys.exit(1)
        if not asyncio.run(set_user_active(sys.argv[2], command == "activate-user")):
            print(f"用户不存在: {sys.argv[2]}")
            sys.exit(1)
    else:
        print(f"未知命令: {command}")
        print("可用命令: init-db, create-user, deactivate-user, activate-user")
        sys.exit(1)


async def init_database() -> None:
    """创建（或补齐）全部表和索引"""
    from .store import create_store_group

    db_path = get_db_path()
    print(f"数据库路径: {db_path}")
    store_group = await create_store_group(db_path)
    await store_group.close()
    print("初始化完成")


async def create_user(user: User) -> None:
    """写入一个用户"""
    from .store import create_store_group

    store_group = await create_store_group(get_db_path())
    try:
        async with store_group.transaction():
            await store_group.user_store.create_user(user)
        print(f"已创建用户 {user.user_id} ({user.role.value})")
    finally:
        await store_group.close()


async def set_user_active(user_id: str, is_active: bool) -> bool:
    """停用 / 启用用户；用户不存在时返回 False

    停用用户的推送订阅同时失效，未送达的通知不再投递。
    """
    from .store import create_store_group

    store_group = await create_store_group(get_db_path())
    try:
        async with store_group.transaction():
            if await store_group.user_store.get_user(user_id) is None:
                return False
            await store_group.user_store.set_active(user_id, is_active)
            if not is_active:
                await store_group.subscription_store.deactivate_all(user_id)
        print(f"用户 {user_id} 已{'启用' if is_active else '停用'}")
        return True
    finally:
        await store_group.close()


if __name__ == "__main__":
    main()
