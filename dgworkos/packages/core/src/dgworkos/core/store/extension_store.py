"""ExtensionStore SQLite 实现 -- 延期申请

pending 唯一性由 idx_extensions_one_pending 部分唯一索引保证；
决策通过 WHERE status = 'pending' 的条件更新完成，已决策的行不会被再次修改。
"""

from datetime import date, datetime

import aiosqlite

from ..models.enums import ExtensionStatus
from ..models.extension import ExtensionRequest


class SqliteExtensionStore:
    """ExtensionStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def create_extension(self, ext: ExtensionRequest) -> None:
        """创建延期申请（不提交事务）"""
        await self._conn.execute(
            """
            INSERT INTO extension_requests (extension_id, task_id, requested_by,
                                            original_due_date, requested_due_date,
                                            reason, status, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                ext.extension_id,
                ext.task_id,
                ext.requested_by,
                ext.original_due_date.isoformat(),
                ext.requested_due_date.isoformat(),
                ext.reason,
                ext.status.value,
                ext.created_at.isoformat(),
            ),
        )

    async def get_extension(self, extension_id: str) -> ExtensionRequest | None:
        cursor = await self._conn.execute(
            "SELECT * FROM extension_requests WHERE extension_id = ?",
            (extension_id,),
        )
        row = await cursor.fetchone()
        return self._row_to_extension(row) if row else None

    async def get_pending_for_task(self, task_id: str) -> ExtensionRequest | None:
        cursor = await self._conn.execute(
            "SELECT * FROM extension_requests WHERE task_id = ? AND status = 'pending'",
            (task_id,),
        )
        row = await cursor.fetchone()
        return self._row_to_extension(row) if row else None

    async def list_for_task(self, task_id: str) -> list[ExtensionRequest]:
        """按创建时间倒序列出任务的全部申请"""
        cursor = await self._conn.execute(
            """
            SELECT * FROM extension_requests
            WHERE task_id = ?
            ORDER BY created_at DESC, extension_id DESC
            """,
            (task_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_extension(row) for row in rows]

    async def list_pending(self) -> list[ExtensionRequest]:
        cursor = await self._conn.execute(
            "SELECT * FROM extension_requests WHERE status = 'pending' ORDER BY created_at ASC"
        )
        rows = await cursor.fetchall()
        return [self._row_to_extension(row) for row in rows]

    async def count_pending(self, task_ids_sql: str = "", params: list | None = None) -> int:
        """统计 pending 申请数量

        Args:
            task_ids_sql: 可选的 tasks 表 WHERE 子句，用于按任务过滤
            params: task_ids_sql 的参数
        """
        sql = "SELECT COUNT(*) FROM extension_requests WHERE status = 'pending'"
        if task_ids_sql:
            sql += f" AND task_id IN (SELECT task_id FROM tasks {task_ids_sql})"
        cursor = await self._conn.execute(sql, params or [])
        row = await cursor.fetchone()
        return row[0] if row else 0

    async def decide_if_pending(
        self,
        extension_id: str,
        status: ExtensionStatus,
        decided_by: str,
        decision_note: str | None,
        decided_at: datetime,
    ) -> bool:
        """原子地检查 pending 并写入决策

        Returns:
            True 如果本次调用完成了决策；False 表示已被决策过
        """
        cursor = await self._conn.execute(
            """
            UPDATE extension_requests
            SET status = ?, decided_by = ?, decision_note = ?, decided_at = ?
            WHERE extension_id = ? AND status = 'pending'
            """,
            (status.value, decided_by, decision_note, decided_at.isoformat(), extension_id),
        )
        return cursor.rowcount == 1

    @staticmethod
    def _row_to_extension(row: aiosqlite.Row) -> ExtensionRequest:
        """将数据库行转换为 ExtensionRequest 模型"""
        return ExtensionRequest(
            extension_id=row["extension_id"],
            task_id=row["task_id"],
            requested_by=row["requested_by"],
            original_due_date=date.fromisoformat(row["original_due_date"]),
            requested_due_date=date.fromisoformat(row["requested_due_date"]),
            reason=row["reason"],
            status=ExtensionStatus(row["status"]),
            decided_by=row["decided_by"],
            decision_note=row["decision_note"],
            decided_at=datetime.fromisoformat(row["decided_at"]) if row["decided_at"] else None,
            created_at=datetime.fromisoformat(row["created_at"]),
        )
