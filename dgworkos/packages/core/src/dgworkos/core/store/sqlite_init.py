"""SQLite 数据库初始化

PRAGMA 配置 + 七张表 DDL + 索引创建。
使用 aiosqlite 异步操作。
"""

import aiosqlite

# users 表 DDL
_USERS_DDL = """
CREATE TABLE IF NOT EXISTS users (
    user_id     TEXT PRIMARY KEY,
    full_name   TEXT NOT NULL,
    email       TEXT,
    role        TEXT NOT NULL,
    agency      TEXT,
    is_active   INTEGER NOT NULL DEFAULT 1,
    created_at  TEXT NOT NULL
);
"""

_USERS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_users_role ON users(role, is_active);",
]

# tasks 表 DDL
_TASKS_DDL = """
CREATE TABLE IF NOT EXISTS tasks (
    task_id           TEXT PRIMARY KEY,
    title             TEXT NOT NULL,
    description       TEXT NOT NULL DEFAULT '',
    assignee_id       TEXT NOT NULL,
    created_by        TEXT NOT NULL,
    agency            TEXT,
    priority          TEXT NOT NULL DEFAULT 'medium',
    status            TEXT NOT NULL DEFAULT 'assigned',
    due_date          TEXT NOT NULL,
    completion_notes  TEXT,
    evidence          TEXT NOT NULL DEFAULT '[]',
    rejection_reason  TEXT,
    source_meeting_id TEXT,
    started_at        TEXT,
    submitted_at      TEXT,
    verified_at       TEXT,
    rejected_at       TEXT,
    created_at        TEXT NOT NULL,
    updated_at        TEXT NOT NULL,

    FOREIGN KEY (assignee_id) REFERENCES users(user_id),
    FOREIGN KEY (created_by) REFERENCES users(user_id)
);
"""

_TASKS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks(status);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_assignee ON tasks(assignee_id);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_agency ON tasks(agency);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_due_date ON tasks(due_date);",
    "CREATE INDEX IF NOT EXISTS idx_tasks_created_at ON tasks(created_at DESC);",
]

# task_activities 表 DDL（append-only）
_ACTIVITIES_DDL = """
CREATE TABLE IF NOT EXISTS task_activities (
    activity_id  TEXT PRIMARY KEY,
    task_id      TEXT NOT NULL,
    seq          INTEGER NOT NULL,
    action       TEXT NOT NULL,
    actor_id     TEXT,
    from_value   TEXT,
    to_value     TEXT,
    comment      TEXT,
    metadata     TEXT NOT NULL DEFAULT '{}',
    created_at   TEXT NOT NULL,

    FOREIGN KEY (task_id) REFERENCES tasks(task_id)
);
"""

_ACTIVITIES_INDEXES = [
    # 任务内插入序号唯一（同一时间戳下的先后依据）
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_activities_task_seq ON task_activities(task_id, seq);",
    "CREATE INDEX IF NOT EXISTS idx_activities_task_ts ON task_activities(task_id, created_at);",
]

# extension_requests 表 DDL
_EXTENSIONS_DDL = """
CREATE TABLE IF NOT EXISTS extension_requests (
    extension_id        TEXT PRIMARY KEY,
    task_id             TEXT NOT NULL,
    requested_by        TEXT NOT NULL,
    original_due_date   TEXT NOT NULL,
    requested_due_date  TEXT NOT NULL,
    reason              TEXT NOT NULL,
    status              TEXT NOT NULL DEFAULT 'pending',
    decided_by          TEXT,
    decision_note       TEXT,
    decided_at          TEXT,
    created_at          TEXT NOT NULL,

    FOREIGN KEY (task_id) REFERENCES tasks(task_id),
    FOREIGN KEY (requested_by) REFERENCES users(user_id)
);
"""

_EXTENSIONS_INDEXES = [
    # 每个任务最多一条 pending 申请
    (
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_extensions_one_pending "
        "ON extension_requests(task_id) WHERE status = 'pending';"
    ),
    "CREATE INDEX IF NOT EXISTS idx_extensions_status ON extension_requests(status);",
]

# notifications 表 DDL
_NOTIFICATIONS_DDL = """
CREATE TABLE IF NOT EXISTS notifications (
    notification_id    TEXT PRIMARY KEY,
    recipient_id       TEXT NOT NULL,
    type               TEXT NOT NULL,
    task_id            TEXT,
    title              TEXT NOT NULL,
    message            TEXT NOT NULL,
    priority           TEXT NOT NULL DEFAULT 'medium',
    is_read            INTEGER NOT NULL DEFAULT 0,
    read_at            TEXT,
    is_delivered       INTEGER NOT NULL DEFAULT 0,
    delivery_attempts  INTEGER NOT NULL DEFAULT 0,
    dismissed_at       TEXT,
    dedup_key          TEXT,
    scheduled_for      TEXT NOT NULL,
    created_at         TEXT NOT NULL,

    FOREIGN KEY (recipient_id) REFERENCES users(user_id)
);
"""

_NOTIFICATIONS_INDEXES = [
    # 去重键唯一约束（仅对非 NULL 值生效）
    (
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_notifications_dedup_key "
        "ON notifications(dedup_key) WHERE dedup_key IS NOT NULL;"
    ),
    (
        "CREATE INDEX IF NOT EXISTS idx_notifications_recipient "
        "ON notifications(recipient_id, is_read, scheduled_for DESC);"
    ),
    (
        "CREATE INDEX IF NOT EXISTS idx_notifications_undelivered "
        "ON notifications(is_delivered, scheduled_for);"
    ),
]

# push_subscriptions 表 DDL
_PUSH_SUBSCRIPTIONS_DDL = """
CREATE TABLE IF NOT EXISTS push_subscriptions (
    endpoint    TEXT PRIMARY KEY,
    user_id     TEXT NOT NULL,
    p256dh      TEXT NOT NULL,
    auth        TEXT NOT NULL,
    is_active   INTEGER NOT NULL DEFAULT 1,
    created_at  TEXT NOT NULL,

    FOREIGN KEY (user_id) REFERENCES users(user_id)
);
"""

_PUSH_SUBSCRIPTIONS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_push_subscriptions_user ON push_subscriptions(user_id);",
]

# notification_preferences 表 DDL（每用户一行，缺行即默认值）
_NOTIFICATION_PREFERENCES_DDL = """
CREATE TABLE IF NOT EXISTS notification_preferences (
    user_id              TEXT PRIMARY KEY,
    do_not_disturb       INTEGER NOT NULL DEFAULT 0,
    quiet_hours_start    TEXT,
    quiet_hours_end      TEXT,
    task_due_reminders   INTEGER NOT NULL DEFAULT 1,
    task_overdue_alerts  INTEGER NOT NULL DEFAULT 1,
    updated_at           TEXT NOT NULL,

    FOREIGN KEY (user_id) REFERENCES users(user_id)
);
"""


async def init_db(conn: aiosqlite.Connection) -> None:
    """初始化数据库：设置 PRAGMA + 创建表 + 创建索引

    Args:
        conn: aiosqlite 数据库连接
    """
    # 设置 PRAGMA
    await conn.execute("PRAGMA journal_mode = WAL;")
    await conn.execute("PRAGMA foreign_keys = ON;")
    await conn.execute("PRAGMA busy_timeout = 5000;")

    # 创建表
    for ddl in (
        _USERS_DDL,
        _TASKS_DDL,
        _ACTIVITIES_DDL,
        _EXTENSIONS_DDL,
        _NOTIFICATIONS_DDL,
        _PUSH_SUBSCRIPTIONS_DDL,
        _NOTIFICATION_PREFERENCES_DDL,
    ):
        await conn.execute(ddl)

    # 创建索引
    for idx_sql in (
        _USERS_INDEXES
        + _TASKS_INDEXES
        + _ACTIVITIES_INDEXES
        + _EXTENSIONS_INDEXES
        + _NOTIFICATIONS_INDEXES
        + _PUSH_SUBSCRIPTIONS_INDEXES
    ):
        await conn.execute(idx_sql)

    await conn.commit()


async def verify_wal_mode(conn: aiosqlite.Connection) -> bool:
    """验证 WAL 模式是否生效

    Returns:
        True 如果 WAL 模式已启用
    """
    cursor = await conn.execute("PRAGMA journal_mode;")
    row = await cursor.fetchone()
    return row is not None and row[0].lower() == "wal"
