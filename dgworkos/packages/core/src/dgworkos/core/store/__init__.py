"""DG Work OS Core Store -- SQLite 持久化实现

提供工厂函数创建 Store 实例组：写连接承载全部写事务，
只读连接承载事务外的查询，只能看到已提交的数据。
"""

import asyncio
from contextlib import AbstractAsyncContextManager
from pathlib import Path

import aiosqlite

from .activity_store import SqliteActivityStore
from .extension_store import SqliteExtensionStore
from .notification_store import SqliteNotificationStore
from .sqlite_init import init_db
from .task_store import SqliteTaskStore
from .transaction import atomic
from .user_store import SqlitePreferenceStore, SqlitePushSubscriptionStore, SqliteUserStore


class ReadStores:
    """绑定只读连接的查询用 Store"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self.conn = conn
        self.user_store = SqliteUserStore(conn)
        self.task_store = SqliteTaskStore(conn)
        self.activity_store = SqliteActivityStore(conn)
        self.extension_store = SqliteExtensionStore(conn)
        self.notification_store = SqliteNotificationStore(conn)
        self.preference_store = SqlitePreferenceStore(conn)


class StoreGroup:
    """Store 实例组 -- 写连接 + 写事务锁，以及一个只读连接

    写连接上的读取会看到进行中事务的未提交行，
    事务外的查询应走 reader。
    """

    def __init__(
        self,
        conn: aiosqlite.Connection,
        read_conn: aiosqlite.Connection | None = None,
    ) -> None:
        self.conn = conn
        self.write_lock = asyncio.Lock()
        self.user_store = SqliteUserStore(conn)
        self.task_store = SqliteTaskStore(conn)
        self.activity_store = SqliteActivityStore(conn)
        self.extension_store = SqliteExtensionStore(conn)
        self.notification_store = SqliteNotificationStore(conn)
        self.subscription_store = SqlitePushSubscriptionStore(conn)
        self.preference_store = SqlitePreferenceStore(conn)
        # 未提供只读连接时退化为共用写连接
        self.reader = ReadStores(read_conn or conn)

    def transaction(self) -> AbstractAsyncContextManager[aiosqlite.Connection]:
        """写事务上下文：BEGIN IMMEDIATE ... COMMIT / ROLLBACK"""
        return atomic(self.conn, self.write_lock)

    async def close(self) -> None:
        if self.reader.conn is not self.conn:
            await self.reader.conn.close()
        await self.conn.close()


async def create_store_group(db_path: str) -> StoreGroup:
    """创建 Store 实例组

    Args:
        db_path: SQLite 数据库文件路径

    Returns:
        StoreGroup 实例
    """
    # 确保数据库目录存在
    db_dir = Path(db_path).parent
    db_dir.mkdir(parents=True, exist_ok=True)

    # 自动提交模式：事务边界由 StoreGroup.transaction() 显式控制
    conn = await aiosqlite.connect(db_path, isolation_level=None)
    conn.row_factory = aiosqlite.Row
    await init_db(conn)

    # WAL 下只读连接读取的是最近一次提交的快照
    read_conn = await aiosqlite.connect(db_path, isolation_level=None)
    read_conn.row_factory = aiosqlite.Row
    await read_conn.execute("PRAGMA query_only = ON;")
    await read_conn.execute("PRAGMA busy_timeout = 5000;")

    return StoreGroup(conn=conn, read_conn=read_conn)


__all__ = [
    "StoreGroup",
    "ReadStores",
    "create_store_group",
    "SqliteUserStore",
    "SqlitePushSubscriptionStore",
    "SqlitePreferenceStore",
    "SqliteTaskStore",
    "SqliteActivityStore",
    "SqliteExtensionStore",
    "SqliteNotificationStore",
    "init_db",
    "atomic",
]
