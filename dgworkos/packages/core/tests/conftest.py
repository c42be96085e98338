"""packages/core 测试配置 -- 仓储与任务构造 fixture"""

from collections.abc import Awaitable, Callable
from datetime import UTC, date, datetime, timedelta

import pytest_asyncio
from dgworkos.core.models import CreateTaskInput, Task, TaskPriority, TaskStatus, User
from dgworkos.core.repository import TaskRepository
from dgworkos.core.store import StoreGroup

# 从 assigned 出发到达各状态的流转路径
PATH_TO: dict[TaskStatus, list[TaskStatus]] = {
    TaskStatus.ASSIGNED: [],
    TaskStatus.IN_PROGRESS: [TaskStatus.IN_PROGRESS],
    TaskStatus.SUBMITTED: [TaskStatus.IN_PROGRESS, TaskStatus.SUBMITTED],
    TaskStatus.REJECTED: [TaskStatus.IN_PROGRESS, TaskStatus.SUBMITTED, TaskStatus.REJECTED],
    TaskStatus.VERIFIED: [TaskStatus.IN_PROGRESS, TaskStatus.SUBMITTED, TaskStatus.VERIFIED],
    TaskStatus.ARCHIVED: [TaskStatus.ARCHIVED],
}

TaskFactory = Callable[..., Awaitable[Task]]


def today() -> date:
    return datetime.now(UTC).date()


@pytest_asyncio.fixture
async def repo(store_group: StoreGroup) -> TaskRepository:
    return TaskRepository(store_group)


@pytest_asyncio.fixture
async def make_task(repo: TaskRepository, users: dict[str, User]) -> TaskFactory:
    """创建任务并推进到指定状态"""

    async def factory(
        status: TaskStatus = TaskStatus.ASSIGNED,
        *,
        title: str = "Prepare quarterly report",
        assignee: str = "alice",
        due_in_days: int = 7,
        priority: TaskPriority = TaskPriority.MEDIUM,
    ) -> Task:
        director = users["director"].user_id
        task = await repo.create_task(
            CreateTaskInput(
                title=title,
                assignee_id=users[assignee].user_id,
                due_date=today() + timedelta(days=due_in_days),
                priority=priority,
                draft=status == TaskStatus.DRAFT,
            ),
            director,
        )
        for step in PATH_TO.get(status, []):
            task = await repo.update_task_status(
                task.task_id,
                step,
                director,
                rejection_reason="Needs more detail" if step == TaskStatus.REJECTED else None,
            )
        return task

    return factory
