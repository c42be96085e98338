"""事务边界封装

所有写操作在同一个共享连接上执行 BEGIN IMMEDIATE：
SQLite 在事务开始时即取得写锁，事务内的"读取-校验-写入"不会与其他写者交错，
等价于对任务行 SELECT ... FOR UPDATE。进程内通过 asyncio.Lock 串行化，
避免多个协程在同一连接上共享一个事务。

写连接上的读取能看到进行中事务的未提交行，
事务外的查询走 StoreGroup.reader 的只读连接。
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import aiosqlite


@asynccontextmanager
async def atomic(
    conn: aiosqlite.Connection,
    lock: asyncio.Lock,
) -> AsyncIterator[aiosqlite.Connection]:
    """开启一个写事务，正常退出时提交，异常时回滚并重新抛出

    Args:
        conn: 数据库连接（需以 isolation_level=None 打开）
        lock: 串行化写事务的进程内锁

    Raises:
        Exception: 事务体内的任何异常，回滚后原样抛出
    """
    async with lock:
        await conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            await conn.rollback()
            raise
        else:
            await conn.commit()
