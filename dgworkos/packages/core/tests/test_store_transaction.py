"""事务一致性与并发单元测试

测试内容：
1. 时间线写入失败时任务变更整体回滚
2. 同一任务的并发流转只有一个成功（同连接 / 跨连接）
3. 并发决策同一延期申请只生效一次
4. 并发提交延期申请只保留一条 pending
5. 事务外查询不会读到未提交的行
"""

import asyncio
from datetime import timedelta
from pathlib import Path

import aiosqlite
import pytest
from dgworkos.core.errors import ConflictError, InvalidTransitionError
from dgworkos.core.models import ExtensionStatus, TaskFilters, TaskStatus
from dgworkos.core.repository import TaskRepository
from dgworkos.core.store import create_store_group


class TestTransactionAtomicity:
    """事务一致性测试"""

    async def test_timeline_failure_rolls_back_task(
        self, make_task, repo, store_group, monkeypatch
    ):
        """时间线写入失败时，任务状态保持原值"""
        task = await make_task(TaskStatus.ASSIGNED)

        async def broken_append(record):
            raise aiosqlite.OperationalError("disk I/O error")

        monkeypatch.setattr(store_group.activity_store, "append", broken_append)
        with pytest.raises(aiosqlite.OperationalError):
            await repo.update_task_status(task.task_id, TaskStatus.IN_PROGRESS, "alice")
        monkeypatch.undo()

        stored = await repo.get_task(task.task_id)
        assert stored.status == TaskStatus.ASSIGNED
        assert stored.started_at is None
        assert len(await repo.list_timeline(task.task_id)) == 1

    async def test_extension_rolls_back_with_timeline(
        self, make_task, repo, store_group, monkeypatch
    ):
        task = await make_task()

        async def broken_append(record):
            raise aiosqlite.OperationalError("disk I/O error")

        monkeypatch.setattr(store_group.activity_store, "append", broken_append)
        with pytest.raises(aiosqlite.OperationalError):
            await repo.request_extension(
                task.task_id, "alice", task.due_date + timedelta(days=3), "reason"
            )
        monkeypatch.undo()

        assert await repo.list_extensions(task.task_id) == []

    async def test_transaction_commits_on_success(self, store_group):
        async with store_group.transaction() as conn:
            await conn.execute(
                "INSERT INTO users (user_id, full_name, role, is_active, created_at) "
                "VALUES ('x', 'X', 'admin', 1, '2026-01-01T00:00:00+00:00')"
            )
        assert await store_group.user_store.get_user("x") is not None

    async def test_transaction_rolls_back_on_error(self, store_group):
        with pytest.raises(RuntimeError):
            async with store_group.transaction() as conn:
                await conn.execute(
                    "INSERT INTO users (user_id, full_name, role, is_active, created_at) "
                    "VALUES ('y', 'Y', 'admin', 1, '2026-01-01T00:00:00+00:00')"
                )
                raise RuntimeError("boom")
        assert await store_group.user_store.get_user("y") is None


class TestReadIsolation:
    """事务外的查询走只读连接，只看已提交的数据"""

    async def test_query_during_transaction_sees_committed_row(
        self, make_task, repo, store_group
    ):
        task = await make_task(TaskStatus.ASSIGNED)

        with pytest.raises(RuntimeError):
            async with store_group.transaction() as conn:
                await conn.execute(
                    "UPDATE tasks SET status = 'archived' WHERE task_id = ?", (task.task_id,)
                )
                during = await repo.get_task(task.task_id)
                listed = await repo.list_tasks(TaskFilters(status=[TaskStatus.ARCHIVED]))
                raise RuntimeError("abort")

        assert during.status == TaskStatus.ASSIGNED
        assert listed == []
        assert (await repo.get_task(task.task_id)).status == TaskStatus.ASSIGNED

    async def test_query_sees_row_after_commit(self, make_task, repo, store_group):
        task = await make_task(TaskStatus.ASSIGNED)

        async with store_group.transaction() as conn:
            await conn.execute(
                "UPDATE tasks SET status = 'archived' WHERE task_id = ?", (task.task_id,)
            )

        assert (await repo.get_task(task.task_id)).status == TaskStatus.ARCHIVED

    async def test_reader_connection_rejects_writes(self, store_group):
        with pytest.raises(aiosqlite.OperationalError):
            await store_group.reader.conn.execute(
                "INSERT INTO users (user_id, full_name, role, is_active, created_at) "
                "VALUES ('z', 'Z', 'admin', 1, '2026-01-01T00:00:00+00:00')"
            )


class TestConcurrentTransitions:
    """同一任务的并发写入"""

    async def test_same_transition_twice(self, make_task, repo):
        task = await make_task(TaskStatus.ASSIGNED)

        results = await asyncio.gather(
            repo.update_task_status(task.task_id, TaskStatus.IN_PROGRESS, "alice"),
            repo.update_task_status(task.task_id, TaskStatus.IN_PROGRESS, "alice"),
            return_exceptions=True,
        )

        errors = [r for r in results if isinstance(r, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], InvalidTransitionError)
        timeline = await repo.list_timeline(task.task_id)
        assert [r.to_value for r in timeline].count("in_progress") == 1

    async def test_verify_and_reject_race(self, make_task, repo):
        task = await make_task(TaskStatus.SUBMITTED)

        results = await asyncio.gather(
            repo.update_task_status(task.task_id, TaskStatus.VERIFIED, "dir-one"),
            repo.update_task_status(
                task.task_id, TaskStatus.REJECTED, "adm-one", rejection_reason="no"
            ),
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        assert len(successes) == 1
        stored = await repo.get_task(task.task_id)
        assert stored.status == successes[0].status

    async def test_race_across_connections(self, make_task, repo, tmp_db_path: Path):
        """两个连接（模拟两个进程）同时流转，BEGIN IMMEDIATE 保证只有一个成功"""
        task = await make_task(TaskStatus.ASSIGNED)
        other_group = await create_store_group(str(tmp_db_path))
        try:
            other_repo = TaskRepository(other_group)
            results = await asyncio.gather(
                repo.update_task_status(task.task_id, TaskStatus.IN_PROGRESS, "alice"),
                other_repo.update_task_status(task.task_id, TaskStatus.IN_PROGRESS, "alice"),
                return_exceptions=True,
            )
        finally:
            await other_group.close()

        errors = [r for r in results if isinstance(r, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], InvalidTransitionError)


class TestConcurrentExtensions:
    """延期申请的并发决策 / 并发申请"""

    async def test_concurrent_decisions(self, make_task, repo):
        task = await make_task()
        new_due = task.due_date + timedelta(days=9)
        ext = await repo.request_extension(task.task_id, "alice", new_due, "reason")

        results = await asyncio.gather(
            repo.decide_extension(ext.extension_id, "dir-one", True),
            repo.decide_extension(ext.extension_id, "adm-one", False),
            return_exceptions=True,
        )

        errors = [r for r in results if isinstance(r, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], ConflictError)
        winner = next(r for r in results if not isinstance(r, Exception))
        stored_task = await repo.get_task(task.task_id)
        if winner.status == ExtensionStatus.APPROVED:
            assert stored_task.due_date == new_due
        else:
            assert stored_task.due_date == task.due_date

    async def test_concurrent_requests_leave_one_pending(self, make_task, repo):
        task = await make_task()

        results = await asyncio.gather(
            *[
                repo.request_extension(
                    task.task_id, "alice", task.due_date + timedelta(days=i), f"reason {i}"
                )
                for i in range(1, 4)
            ],
            return_exceptions=True,
        )

        assert sum(1 for r in results if isinstance(r, ConflictError)) == 2
        pending = [e for e in await repo.list_extensions(task.task_id) if e.is_pending]
        assert len(pending) == 1
