"""NotificationStore SQLite 实现

通知创建后只翻转 read / delivered / dismissed 标志，不物理删除。
去重键由 idx_notifications_dedup_key 唯一索引保证；重复插入视为"已存在"。
"""

from collections.abc import Iterable
from datetime import datetime

import aiosqlite
import structlog

from ..models.enums import NotificationType
from ..models.notification import Notification

log = structlog.get_logger()


def _is_dedup_conflict(error: Exception) -> bool:
    if not isinstance(error, aiosqlite.IntegrityError):
        return False
    text = str(error)
    return "idx_notifications_dedup_key" in text or "notifications.dedup_key" in text


class SqliteNotificationStore:
    """NotificationStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def create(self, notification: Notification) -> bool:
        """写入通知（不提交事务）

        Returns:
            True 如果写入成功；False 表示去重键已存在，本次跳过

        Raises:
            aiosqlite.IntegrityError: 去重键以外的约束失败（如接收人不存在）
        """
        try:
            await self._conn.execute(
                """
                INSERT INTO notifications (notification_id, recipient_id, type, task_id,
                                           title, message, priority, is_read, read_at,
                                           is_delivered, delivery_attempts, dismissed_at,
                                           dedup_key, scheduled_for, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    notification.notification_id,
                    notification.recipient_id,
                    notification.type.value,
                    notification.task_id,
                    notification.title,
                    notification.message,
                    notification.priority.value,
                    int(notification.is_read),
                    _iso(notification.read_at),
                    int(notification.is_delivered),
                    notification.delivery_attempts,
                    _iso(notification.dismissed_at),
                    notification.dedup_key,
                    notification.scheduled_for.isoformat(),
                    notification.created_at.isoformat(),
                ),
            )
        except aiosqlite.IntegrityError as exc:
            if not _is_dedup_conflict(exc):
                raise
            log.debug("notification_dedup_skip", dedup_key=notification.dedup_key)
            return False
        return True

    async def get(self, notification_id: str) -> Notification | None:
        cursor = await self._conn.execute(
            "SELECT * FROM notifications WHERE notification_id = ?",
            (notification_id,),
        )
        row = await cursor.fetchone()
        return self._row_to_notification(row) if row else None

    async def get_many(self, notification_ids: Iterable[str]) -> list[Notification]:
        ids = list(notification_ids)
        if not ids:
            return []
        placeholders = ", ".join("?" for _ in ids)
        cursor = await self._conn.execute(
            f"SELECT * FROM notifications WHERE notification_id IN ({placeholders})",
            ids,
        )
        rows = await cursor.fetchall()
        return [self._row_to_notification(row) for row in rows]

    async def list_for_user(
        self,
        user_id: str,
        now: datetime,
        unread_only: bool = False,
        limit: int = 20,
        offset: int = 0,
    ) -> list[Notification]:
        """查询用户可见的通知：已到 scheduled_for、未忽略，按时间倒序"""
        sql = (
            "SELECT * FROM notifications "
            "WHERE recipient_id = ? AND scheduled_for <= ? AND dismissed_at IS NULL"
        )
        if unread_only:
            sql += " AND is_read = 0"
        sql += " ORDER BY scheduled_for DESC, notification_id DESC LIMIT ? OFFSET ?"
        cursor = await self._conn.execute(sql, (user_id, now.isoformat(), limit, offset))
        rows = await cursor.fetchall()
        return [self._row_to_notification(row) for row in rows]

    async def count_unread(self, user_id: str, now: datetime) -> int:
        cursor = await self._conn.execute(
            """
            SELECT COUNT(*) FROM notifications
            WHERE recipient_id = ? AND is_read = 0 AND dismissed_at IS NULL
              AND scheduled_for <= ?
            """,
            (user_id, now.isoformat()),
        )
        row = await cursor.fetchone()
        return row[0] if row else 0

    async def list_by_type(
        self,
        type: NotificationType,
        task_id: str | None = None,
    ) -> list[Notification]:
        """按类型（可选任务）查询全部通知，不做可见性过滤"""
        sql = "SELECT * FROM notifications WHERE type = ?"
        params: list = [type.value]
        if task_id is not None:
            sql += " AND task_id = ?"
            params.append(task_id)
        cursor = await self._conn.execute(sql + " ORDER BY created_at ASC", params)
        rows = await cursor.fetchall()
        return [self._row_to_notification(row) for row in rows]

    async def mark_read(self, notification_id: str, user_id: str, now: datetime) -> bool:
        """标记单条已读；只能操作自己的通知

        Returns:
            True 如果通知存在且属于该用户
        """
        cursor = await self._conn.execute(
            """
            UPDATE notifications
            SET is_read = 1, read_at = COALESCE(read_at, ?)
            WHERE notification_id = ? AND recipient_id = ?
            """,
            (now.isoformat(), notification_id, user_id),
        )
        return cursor.rowcount == 1

    async def mark_all_read(self, user_id: str, now: datetime) -> int:
        cursor = await self._conn.execute(
            """
            UPDATE notifications
            SET is_read = 1, read_at = ?
            WHERE recipient_id = ? AND is_read = 0 AND scheduled_for <= ?
            """,
            (now.isoformat(), user_id, now.isoformat()),
        )
        return cursor.rowcount

    async def dismiss(self, notification_id: str, user_id: str, now: datetime) -> bool:
        cursor = await self._conn.execute(
            """
            UPDATE notifications
            SET dismissed_at = COALESCE(dismissed_at, ?)
            WHERE notification_id = ? AND recipient_id = ?
            """,
            (now.isoformat(), notification_id, user_id),
        )
        return cursor.rowcount == 1

    async def dismiss_all(self, user_id: str, now: datetime) -> int:
        cursor = await self._conn.execute(
            """
            UPDATE notifications
            SET dismissed_at = ?
            WHERE recipient_id = ? AND dismissed_at IS NULL AND scheduled_for <= ?
            """,
            (now.isoformat(), user_id, now.isoformat()),
        )
        return cursor.rowcount

    async def mark_delivered(self, notification_ids: Iterable[str]) -> int:
        ids = list(notification_ids)
        if not ids:
            return 0
        placeholders = ", ".join("?" for _ in ids)
        cursor = await self._conn.execute(
            f"UPDATE notifications SET is_delivered = 1 WHERE notification_id IN ({placeholders})",
            ids,
        )
        return cursor.rowcount

    async def record_delivery_attempt(self, notification_ids: Iterable[str]) -> int:
        """记录一次失败的投递尝试"""
        ids = list(notification_ids)
        if not ids:
            return 0
        placeholders = ", ".join("?" for _ in ids)
        cursor = await self._conn.execute(
            f"""
            UPDATE notifications SET delivery_attempts = delivery_attempts + 1
            WHERE notification_id IN ({placeholders}) AND is_delivered = 0
            """,
            ids,
        )
        return cursor.rowcount

    async def list_pending_delivery(
        self,
        now: datetime,
        max_attempts: int,
        limit: int = 500,
    ) -> list[Notification]:
        """未送达、已到投递时间、尝试次数未超限、未被忽略的通知"""
        cursor = await self._conn.execute(
            """
            SELECT * FROM notifications
            WHERE is_delivered = 0 AND scheduled_for <= ? AND delivery_attempts < ?
              AND dismissed_at IS NULL
            ORDER BY scheduled_for ASC
            LIMIT ?
            """,
            (now.isoformat(), max_attempts, limit),
        )
        rows = await cursor.fetchall()
        return [self._row_to_notification(row) for row in rows]

    @staticmethod
    def _row_to_notification(row: aiosqlite.Row) -> Notification:
        """将数据库行转换为 Notification 模型"""
        return Notification(
            notification_id=row["notification_id"],
            recipient_id=row["recipient_id"],
            type=NotificationType(row["type"]),
            task_id=row["task_id"],
            title=row["title"],
            message=row["message"],
            priority=row["priority"],
            is_read=bool(row["is_read"]),
            read_at=_parse(row["read_at"]),
            is_delivered=bool(row["is_delivered"]),
            delivery_attempts=row["delivery_attempts"],
            dismissed_at=_parse(row["dismissed_at"]),
            dedup_key=row["dedup_key"],
            scheduled_for=datetime.fromisoformat(row["scheduled_for"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None
