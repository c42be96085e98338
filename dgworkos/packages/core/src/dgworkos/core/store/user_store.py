"""UserStore / PushSubscriptionStore / PreferenceStore SQLite 实现"""

from collections.abc import Iterable
from datetime import UTC, datetime, time

import aiosqlite

from ..models.enums import UserRole
from ..models.user import NotificationPreferences, PushSubscription, User


class SqliteUserStore:
    """UserStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def create_user(self, user: User) -> None:
        """创建用户（不提交事务）"""
        await self._conn.execute(
            """
            INSERT INTO users (user_id, full_name, email, role, agency, is_active, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                user.user_id,
                user.full_name,
                user.email,
                user.role.value,
                user.agency,
                int(user.is_active),
                user.created_at.isoformat(),
            ),
        )

    async def set_active(self, user_id: str, is_active: bool) -> None:
        await self._conn.execute(
            "UPDATE users SET is_active = ? WHERE user_id = ?",
            (int(is_active), user_id),
        )

    async def get_user(self, user_id: str) -> User | None:
        cursor = await self._conn.execute(
            "SELECT * FROM users WHERE user_id = ?",
            (user_id,),
        )
        row = await cursor.fetchone()
        return self._row_to_user(row) if row else None

    async def get_users(self, user_ids: Iterable[str]) -> dict[str, User]:
        ids = list(set(user_ids))
        if not ids:
            return {}
        placeholders = ", ".join("?" for _ in ids)
        cursor = await self._conn.execute(
            f"SELECT * FROM users WHERE user_id IN ({placeholders})",
            ids,
        )
        rows = await cursor.fetchall()
        return {row["user_id"]: self._row_to_user(row) for row in rows}

    async def list_active_by_roles(self, roles: Iterable[UserRole]) -> list[User]:
        """按角色列出在职用户，按 user_id 排序"""
        values = [r.value for r in roles]
        if not values:
            return []
        placeholders = ", ".join("?" for _ in values)
        cursor = await self._conn.execute(
            f"""
            SELECT * FROM users
            WHERE is_active = 1 AND role IN ({placeholders})
            ORDER BY user_id
            """,
            values,
        )
        rows = await cursor.fetchall()
        return [self._row_to_user(row) for row in rows]

    @staticmethod
    def _row_to_user(row: aiosqlite.Row) -> User:
        return User(
            user_id=row["user_id"],
            full_name=row["full_name"],
            email=row["email"],
            role=UserRole(row["role"]),
            agency=row["agency"],
            is_active=bool(row["is_active"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )


class SqlitePushSubscriptionStore:
    """Web Push 订阅的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def save(self, subscription: PushSubscription) -> None:
        """按 endpoint upsert；重新订阅会重新激活并转移到当前用户"""
        await self._conn.execute(
            """
            INSERT INTO push_subscriptions (endpoint, user_id, p256dh, auth, is_active, created_at)
            VALUES (?, ?, ?, ?, 1, ?)
            ON CONFLICT(endpoint) DO UPDATE SET
                user_id = excluded.user_id,
                p256dh = excluded.p256dh,
                auth = excluded.auth,
                is_active = 1
            """,
            (
                subscription.endpoint,
                subscription.user_id,
                subscription.p256dh,
                subscription.auth,
                subscription.created_at.isoformat(),
            ),
        )

    async def list_active(self, user_id: str) -> list[PushSubscription]:
        cursor = await self._conn.execute(
            "SELECT * FROM push_subscriptions WHERE user_id = ? AND is_active = 1",
            (user_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_subscription(row) for row in rows]

    async def deactivate(self, endpoints: Iterable[str], user_id: str | None = None) -> int:
        """停用指定 endpoint；传入 user_id 时只停用该用户的订阅"""
        values = list(endpoints)
        if not values:
            return 0
        placeholders = ", ".join("?" for _ in values)
        sql = f"UPDATE push_subscriptions SET is_active = 0 WHERE endpoint IN ({placeholders})"
        if user_id is not None:
            sql += " AND user_id = ?"
            values.append(user_id)
        cursor = await self._conn.execute(sql, values)
        return cursor.rowcount

    async def deactivate_all(self, user_id: str) -> int:
        cursor = await self._conn.execute(
            "UPDATE push_subscriptions SET is_active = 0 WHERE user_id = ? AND is_active = 1",
            (user_id,),
        )
        return cursor.rowcount

    @staticmethod
    def _row_to_subscription(row: aiosqlite.Row) -> PushSubscription:
        return PushSubscription(
            endpoint=row["endpoint"],
            user_id=row["user_id"],
            p256dh=row["p256dh"],
            auth=row["auth"],
            is_active=bool(row["is_active"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )


class SqlitePreferenceStore:
    """通知偏好的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def get(self, user_id: str) -> NotificationPreferences:
        """读取偏好；未保存过时返回默认值"""
        return (await self.get_many([user_id]))[user_id]

    async def get_many(self, user_ids: Iterable[str]) -> dict[str, NotificationPreferences]:
        ids = list(set(user_ids))
        if not ids:
            return {}
        placeholders = ", ".join("?" for _ in ids)
        cursor = await self._conn.execute(
            f"SELECT * FROM notification_preferences WHERE user_id IN ({placeholders})",
            ids,
        )
        rows = await cursor.fetchall()
        found = {row["user_id"]: self._row_to_preferences(row) for row in rows}
        return {uid: found.get(uid) or NotificationPreferences(user_id=uid) for uid in ids}

    async def save(self, prefs: NotificationPreferences) -> None:
        """按 user_id upsert（不提交事务）"""
        await self._conn.execute(
            """
            INSERT INTO notification_preferences (
                user_id, do_not_disturb, quiet_hours_start, quiet_hours_end,
                task_due_reminders, task_overdue_alerts, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                do_not_disturb = excluded.do_not_disturb,
                quiet_hours_start = excluded.quiet_hours_start,
                quiet_hours_end = excluded.quiet_hours_end,
                task_due_reminders = excluded.task_due_reminders,
                task_overdue_alerts = excluded.task_overdue_alerts,
                updated_at = excluded.updated_at
            """,
            (
                prefs.user_id,
                int(prefs.do_not_disturb),
                _hhmm(prefs.quiet_hours_start),
                _hhmm(prefs.quiet_hours_end),
                int(prefs.task_due_reminders),
                int(prefs.task_overdue_alerts),
                (prefs.updated_at or datetime.now(UTC)).isoformat(),
            ),
        )

    @staticmethod
    def _row_to_preferences(row: aiosqlite.Row) -> NotificationPreferences:
        return NotificationPreferences(
            user_id=row["user_id"],
            do_not_disturb=bool(row["do_not_disturb"]),
            quiet_hours_start=_parse_time(row["quiet_hours_start"]),
            quiet_hours_end=_parse_time(row["quiet_hours_end"]),
            task_due_reminders=bool(row["task_due_reminders"]),
            task_overdue_alerts=bool(row["task_overdue_alerts"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )


def _hhmm(value: time | None) -> str | None:
    return value.strftime("%H:%M") if value is not None else None


def _parse_time(value: str | None) -> time | None:
    return time.fromisoformat(value) if value else None
