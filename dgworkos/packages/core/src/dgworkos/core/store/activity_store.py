"""ActivityStore SQLite 实现 -- 任务时间线

活动表 append-only：只允许插入，不允许更新或删除。
seq 同一 task 内严格单调递增，作为同一时间戳下的先后依据。
"""

import json
from datetime import datetime

import aiosqlite

from ..models.activity import ActivityRecord
from ..models.enums import ActivityAction


class SqliteActivityStore:
    """ActivityStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def append(self, record: ActivityRecord) -> ActivityRecord:
        """追加活动记录（append-only），在写入时分配 seq

        注意：此方法不自动提交事务，需由调用方管理事务，
        以保证与 Task 变更处于同一事务边界。

        Returns:
            带有已分配 seq 的记录副本
        """
        seq = await self.get_next_seq(record.task_id)
        stored = record.model_copy(update={"seq": seq})
        await self._conn.execute(
            """
            INSERT INTO task_activities (activity_id, task_id, seq, action, actor_id,
                                         from_value, to_value, comment, metadata,
                                         created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                stored.activity_id,
                stored.task_id,
                stored.seq,
                stored.action.value,
                stored.actor_id,
                stored.from_value,
                stored.to_value,
                stored.comment,
                json.dumps(stored.metadata, ensure_ascii=False),
                stored.created_at.isoformat(),
            ),
        )
        return stored

    async def list_for_task(self, task_id: str) -> list[ActivityRecord]:
        """查询指定任务的时间线，按创建时间正序，同时间按 seq"""
        cursor = await self._conn.execute(
            """
            SELECT * FROM task_activities
            WHERE task_id = ?
            ORDER BY created_at ASC, seq ASC
            """,
            (task_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_activity(row) for row in rows]

    async def get_next_seq(self, task_id: str) -> int:
        """获取指定任务的下一个 seq（MAX+1）

        在事务内调用以确保原子性。
        """
        cursor = await self._conn.execute(
            "SELECT COALESCE(MAX(seq), 0) FROM task_activities WHERE task_id = ?",
            (task_id,),
        )
        row = await cursor.fetchone()
        return (row[0] if row else 0) + 1

    @staticmethod
    def _row_to_activity(row: aiosqlite.Row) -> ActivityRecord:
        """将数据库行转换为 ActivityRecord 模型"""
        metadata = json.loads(row["metadata"]) if row["metadata"] else {}
        return ActivityRecord(
            activity_id=row["activity_id"],
            task_id=row["task_id"],
            seq=row["seq"],
            action=ActivityAction(row["action"]),
            actor_id=row["actor_id"],
            from_value=row["from_value"],
            to_value=row["to_value"],
            comment=row["comment"],
            metadata=metadata,
            created_at=datetime.fromisoformat(row["created_at"]),
        )
