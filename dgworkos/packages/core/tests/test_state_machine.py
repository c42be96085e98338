"""状态机流转单元测试

测试内容：
1. 允许表中的流转全部通过，其余组合全部拒绝
2. 终态不可再流转
3. 仓储层：非法流转抛出 InvalidTransitionError，且不写入时间线
"""

import itertools

import pytest
from dgworkos.core.errors import InvalidTransitionError
from dgworkos.core.models import (
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    ActivityAction,
    TaskStatus,
    validate_transition,
)

S = TaskStatus

ALLOWED_EDGES = {
    (S.DRAFT, S.ASSIGNED),
    (S.ASSIGNED, S.IN_PROGRESS),
    (S.IN_PROGRESS, S.SUBMITTED),
    (S.SUBMITTED, S.VERIFIED),
    (S.SUBMITTED, S.REJECTED),
    (S.REJECTED, S.IN_PROGRESS),
    # 任意非终态均可归档
    (S.DRAFT, S.ARCHIVED),
    (S.ASSIGNED, S.ARCHIVED),
    (S.IN_PROGRESS, S.ARCHIVED),
    (S.SUBMITTED, S.ARCHIVED),
    (S.REJECTED, S.ARCHIVED),
}

ALL_PAIRS = list(itertools.product(TaskStatus, TaskStatus))


class TestStateMachineTransitions:
    """状态机流转验证"""

    @pytest.mark.parametrize("from_status,to_status", sorted(ALLOWED_EDGES))
    def test_valid_transition(self, from_status: TaskStatus, to_status: TaskStatus):
        """允许表中的流转应通过验证"""
        assert validate_transition(from_status, to_status) is True

    @pytest.mark.parametrize(
        "from_status,to_status",
        [pair for pair in ALL_PAIRS if pair not in ALLOWED_EDGES],
    )
    def test_invalid_transition(self, from_status: TaskStatus, to_status: TaskStatus):
        """其余组合一律拒绝（含自环）"""
        assert validate_transition(from_status, to_status) is False

    def test_terminal_states_have_empty_transitions(self):
        """终态的合法流转集合为空"""
        assert TERMINAL_STATES == {S.VERIFIED, S.ARCHIVED}
        for status in TERMINAL_STATES:
            assert VALID_TRANSITIONS[status] == set()

    def test_valid_transitions_completeness(self):
        """VALID_TRANSITIONS 覆盖全部状态"""
        for state in TaskStatus:
            assert state in VALID_TRANSITIONS, f"{state} 未在 VALID_TRANSITIONS 中定义"


class TestRepositoryTransitions:
    """仓储层对状态机的执行"""

    @pytest.mark.parametrize(
        "current",
        [S.ASSIGNED, S.IN_PROGRESS, S.SUBMITTED, S.REJECTED, S.VERIFIED, S.ARCHIVED],
    )
    async def test_every_disallowed_edge_is_rejected(self, current, make_task, repo, users):
        """从某一状态出发，不在允许表内的目标全部失败，且任务与时间线不变"""
        task = await make_task(current)
        before = await repo.list_timeline(task.task_id)

        for target in TaskStatus:
            if (current, target) in ALLOWED_EDGES:
                continue
            with pytest.raises(InvalidTransitionError) as exc_info:
                await repo.update_task_status(
                    task.task_id,
                    target,
                    users["director"].user_id,
                    rejection_reason="x",
                )
            assert exc_info.value.current == current.value
            assert exc_info.value.requested == target.value

        assert (await repo.get_task(task.task_id)).status == current
        assert await repo.list_timeline(task.task_id) == before

    async def test_draft_to_assigned(self, make_task, repo, users):
        task = await make_task(S.DRAFT)
        assert task.status == S.DRAFT
        updated = await repo.update_task_status(
            task.task_id, S.ASSIGNED, users["director"].user_id
        )
        assert updated.status == S.ASSIGNED

    async def test_transition_writes_status_changed_activity(self, make_task, repo, users):
        task = await make_task(S.ASSIGNED)
        await repo.update_task_status(
            task.task_id, S.IN_PROGRESS, users["alice"].user_id, "starting"
        )
        timeline = await repo.list_timeline(task.task_id)
        last = timeline[-1]
        assert last.action == ActivityAction.STATUS_CHANGED
        assert last.from_value == "assigned"
        assert last.to_value == "in_progress"
        assert last.actor_id == users["alice"].user_id
        assert last.comment == "starting"

    async def test_system_actor_is_recorded(self, make_task, repo):
        """actor 为 None 表示系统操作"""
        task = await make_task(S.ASSIGNED)
        await repo.update_task_status(task.task_id, S.ARCHIVED, None)
        last = (await repo.list_timeline(task.task_id))[-1]
        assert last.is_system
