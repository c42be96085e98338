"""TaskStore SQLite 实现

tasks 表只由 TaskRepository 在事务内写入，此处仅提供数据库操作，
不自动提交事务。
"""

import json
from datetime import date, datetime

import aiosqlite

from ..models.enums import SWEEP_EXCLUDED_STATES, TaskStatus
from ..models.task import Task, TaskFilters

# 排序字段白名单 -> SQL 表达式
_SORT_COLUMNS: dict[str, str] = {
    "created_at": "created_at",
    "updated_at": "updated_at",
    "due_date": "due_date",
    "title": "title COLLATE NOCASE",
    "status": "status",
    "priority": (
        "CASE priority WHEN 'urgent' THEN 0 WHEN 'high' THEN 1 "
        "WHEN 'medium' THEN 2 ELSE 3 END"
    ),
}

_EXCLUDED_PLACEHOLDERS = ", ".join("?" for _ in SWEEP_EXCLUDED_STATES)
_EXCLUDED_VALUES = tuple(s.value for s in SWEEP_EXCLUDED_STATES)


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def build_task_where(filters: TaskFilters) -> tuple[str, list]:
    """根据过滤条件构造 WHERE 子句（不含 LIMIT/ORDER）

    Returns:
        (where_sql, params)，where_sql 为空字符串表示无过滤
    """
    clauses: list[str] = []
    params: list = []

    if filters.agency:
        clauses.append("agency = ?")
        params.append(filters.agency)
    if filters.assignee_id:
        clauses.append("assignee_id = ?")
        params.append(filters.assignee_id)
    if filters.visible_to:
        clauses.append("(assignee_id = ? OR created_by = ?)")
        params.extend([filters.visible_to, filters.visible_to])
    if filters.status:
        placeholders = ", ".join("?" for _ in filters.status)
        clauses.append(f"status IN ({placeholders})")
        params.extend(s.value for s in filters.status)
    if filters.priority:
        clauses.append("priority = ?")
        params.append(filters.priority.value)
    if filters.search:
        pattern = f"%{_escape_like(filters.search.strip())}%"
        clauses.append("(title LIKE ? ESCAPE '\\' OR description LIKE ? ESCAPE '\\')")
        params.extend([pattern, pattern])
    if filters.due_before:
        clauses.append("due_date <= ?")
        params.append(filters.due_before.isoformat())
    if filters.due_after:
        clauses.append("due_date >= ?")
        params.append(filters.due_after.isoformat())

    where_sql = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    return where_sql, params


class SqliteTaskStore:
    """TaskStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def create_task(self, task: Task) -> None:
        """创建任务记录（不提交事务）"""
        await self._conn.execute(
            """
            INSERT INTO tasks (task_id, title, description, assignee_id, created_by,
                               agency, priority, status, due_date, completion_notes,
                               evidence, rejection_reason, source_meeting_id,
                               started_at, submitted_at, verified_at, rejected_at,
                               created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                task.task_id,
                task.title,
                task.description,
                task.assignee_id,
                task.created_by,
                task.agency,
                task.priority.value,
                task.status.value,
                task.due_date.isoformat(),
                task.completion_notes,
                json.dumps(task.evidence, ensure_ascii=False),
                task.rejection_reason,
                task.source_meeting_id,
                _iso(task.started_at),
                _iso(task.submitted_at),
                _iso(task.verified_at),
                _iso(task.rejected_at),
                task.created_at.isoformat(),
                task.updated_at.isoformat(),
            ),
        )

    async def save_task(self, task: Task) -> None:
        """整行覆盖写入可变字段（不提交事务）"""
        await self._conn.execute(
            """
            UPDATE tasks
            SET title = ?, description = ?, assignee_id = ?, agency = ?,
                priority = ?, status = ?, due_date = ?, completion_notes = ?,
                evidence = ?, rejection_reason = ?, started_at = ?,
                submitted_at = ?, verified_at = ?, rejected_at = ?, updated_at = ?
            WHERE task_id = ?
            """,
            (
                task.title,
                task.description,
                task.assignee_id,
                task.agency,
                task.priority.value,
                task.status.value,
                task.due_date.isoformat(),
                task.completion_notes,
                json.dumps(task.evidence, ensure_ascii=False),
                task.rejection_reason,
                _iso(task.started_at),
                _iso(task.submitted_at),
                _iso(task.verified_at),
                _iso(task.rejected_at),
                task.updated_at.isoformat(),
                task.task_id,
            ),
        )

    async def get_task(self, task_id: str) -> Task | None:
        """根据 task_id 查询任务"""
        cursor = await self._conn.execute(
            "SELECT * FROM tasks WHERE task_id = ?",
            (task_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self.row_to_task(row)

    async def list_tasks(self, filters: TaskFilters | None = None) -> list[Task]:
        """按过滤条件查询任务列表，排序字段走白名单"""
        filters = filters or TaskFilters()
        where_sql, params = build_task_where(filters)
        order_sql = _SORT_COLUMNS[filters.sort_by]
        direction = "ASC" if filters.sort_dir == "asc" else "DESC"
        cursor = await self._conn.execute(
            f"SELECT * FROM tasks {where_sql} "
            f"ORDER BY {order_sql} {direction}, task_id {direction} "
            "LIMIT ? OFFSET ?",
            (*params, filters.limit, filters.offset),
        )
        rows = await cursor.fetchall()
        return [self.row_to_task(row) for row in rows]

    async def count_by(self, column: str, filters: TaskFilters) -> dict[str, int]:
        """按 status 或 priority 分组计数"""
        if column not in ("status", "priority"):
            raise ValueError(f"unsupported group column: {column}")
        where_sql, params = build_task_where(filters)
        cursor = await self._conn.execute(
            f"SELECT {column}, COUNT(*) FROM tasks {where_sql} GROUP BY {column}",
            params,
        )
        rows = await cursor.fetchall()
        return {row[0]: row[1] for row in rows}

    async def count_overdue(self, filters: TaskFilters, today: date) -> int:
        """截止日期早于 today 且仍在进行中的任务数"""
        where_sql, params = build_task_where(filters)
        prefix = f"{where_sql} AND" if where_sql else "WHERE"
        cursor = await self._conn.execute(
            f"SELECT COUNT(*) FROM tasks {prefix} due_date < ? "
            f"AND status NOT IN ({_EXCLUDED_PLACEHOLDERS})",
            (*params, today.isoformat(), *_EXCLUDED_VALUES),
        )
        row = await cursor.fetchone()
        return row[0] if row else 0

    async def fetch_open_rows_due_between(
        self,
        due_from: date | None,
        due_to: date,
    ) -> list[aiosqlite.Row]:
        """返回截止日期落在区间内、仍在进行中的原始行

        due_from 为 None 表示不设下限；两端均为闭区间。
        返回原始行而非 Task，由调用方逐行转换以隔离单行数据错误。
        """
        clauses = ["due_date <= ?", f"status NOT IN ({_EXCLUDED_PLACEHOLDERS})"]
        params: list = [due_to.isoformat(), *_EXCLUDED_VALUES]
        if due_from is not None:
            clauses.append("due_date >= ?")
            params.append(due_from.isoformat())
        cursor = await self._conn.execute(
            f"SELECT * FROM tasks WHERE {' AND '.join(clauses)} ORDER BY due_date ASC",
            params,
        )
        return list(await cursor.fetchall())

    @staticmethod
    def row_to_task(row: aiosqlite.Row) -> Task:
        """将数据库行转换为 Task 模型"""
        return Task(
            task_id=row["task_id"],
            title=row["title"],
            description=row["description"],
            assignee_id=row["assignee_id"],
            created_by=row["created_by"],
            agency=row["agency"],
            priority=row["priority"],
            status=TaskStatus(row["status"]),
            due_date=date.fromisoformat(row["due_date"]),
            completion_notes=row["completion_notes"],
            evidence=json.loads(row["evidence"]) if row["evidence"] else [],
            rejection_reason=row["rejection_reason"],
            source_meeting_id=row["source_meeting_id"],
            started_at=_parse(row["started_at"]),
            submitted_at=_parse(row["submitted_at"]),
            verified_at=_parse(row["verified_at"]),
            rejected_at=_parse(row["rejected_at"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None
