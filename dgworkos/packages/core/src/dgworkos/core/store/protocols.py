"""Store Protocol 接口定义

时间线存储的抽象接口，使用 Python Protocol 实现结构化子类型（duck typing）。
"""

from typing import Protocol

from ..models.activity import ActivityRecord


class ActivityTimeline(Protocol):
    """时间线存储接口

    append-only：只允许插入，不允许更新或删除。
    """

    async def append(self, record: ActivityRecord) -> ActivityRecord:
        """追加活动记录，返回带 seq 的记录"""
        ...

    async def list_for_task(self, task_id: str) -> list[ActivityRecord]:
        """按创建时间正序（同时间按 seq）返回任务时间线"""
        ...
