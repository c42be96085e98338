"""配置常量模块 -- 可通过环境变量覆盖

包含数据库路径、定时任务密钥、提醒窗口、投递重试上限等可配置常量。
"""

import os
from pathlib import Path


def _get_base_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("DGWORKOS_DATA_DIR", "data"))


def get_db_path() -> str:
    """获取 SQLite 数据库路径"""
    return os.environ.get(
        "DGWORKOS_DB_PATH",
        str(_get_base_dir() / "sqlite" / "dgworkos.db"),
    )


def get_cron_secret() -> str:
    """获取定时 sweep 调用密钥（空字符串表示未配置，拒绝所有调用）"""
    return os.environ.get("DGWORKOS_CRON_SECRET", "")


# 到期提醒窗口（天）
REMINDER_WINDOW_DAYS: int = int(os.environ.get("DGWORKOS_REMINDER_WINDOW_DAYS", "2"))

# 提醒类通知的投递时刻（UTC 小时）
REMINDER_HOUR_UTC: int = 8

# 单条通知最多投递尝试次数，超过后 sweep 不再重投
MAX_DELIVERY_ATTEMPTS: int = int(os.environ.get("DGWORKOS_MAX_DELIVERY_ATTEMPTS", "3"))

# 投递队列容量
DELIVERY_QUEUE_SIZE: int = int(os.environ.get("DGWORKOS_DELIVERY_QUEUE_SIZE", "256"))

# 评论预览截断长度
MESSAGE_PREVIEW_LENGTH: int = 200

# 时间线折叠窗口（秒）：同一操作者连续同类操作在此窗口内视为一组
TIMELINE_COLLAPSE_WINDOW_S: int = 300
