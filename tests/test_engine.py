"""
TaskEngine / Reporter 单元测试
"""
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import ScriptedActuator, ScriptedOracle, finish_subtask, make_plan, make_step


def _engine(store, plan, oracle, worker_factory, sleep=None):
    from task_orchestrator.engine import TaskEngine
    from task_orchestrator.orchestrator import TaskOrchestrator
    searcher = MagicMock()
    searcher.search = AsyncMock(return_value="")
    planner = MagicMock()
    planner.create_plan = AsyncMock(return_value=plan)
    orchestrator = TaskOrchestrator(
        store=store,
        searcher=searcher,
        planner=planner,
        worker=worker_factory(oracle, ScriptedActuator()),
    )
    return TaskEngine(orchestrator=orchestrator, sleep=sleep or AsyncMock())


# ============================================================
# TaskEngine
# ============================================================

class TestTaskEngine:
    """测试完整流程"""

    @pytest.mark.asyncio
    async def test_run_to_completion(self, store, worker_factory):
        from task_orchestrator.models import TaskStatus, Tool
        oracle = ScriptedOracle(default=make_step(Tool.DONE, "Found price: $131.00"))
        engine = _engine(store, make_plan([], [0]), oracle, worker_factory)

        text = await engine.run("查询 AAPL 当前股价", "session-1")

        assert text.startswith("✅")
        assert "subtask-1" in text and "subtask-2" in text
        assert "Found price: $131.00" in text
        assert store.list_tasks()[0].status == TaskStatus.DONE

    @pytest.mark.asyncio
    async def test_failed_dependency_stops_run(self, store, worker_factory):
        from task_orchestrator.models import SubtaskStatus, TaskStatus, Tool
        oracle = ScriptedOracle([make_step(Tool.FAIL, "页面需要登录")])
        engine = _engine(store, make_plan([], [0]), oracle, worker_factory)

        text = await engine.run("g", "session-1")

        task = store.list_tasks()[0]
        assert task.status == TaskStatus.FAILED
        assert task.subtasks[1].status == SubtaskStatus.PENDING
        assert text.startswith("❌")
        assert "页面需要登录" in text

    @pytest.mark.asyncio
    async def test_waits_for_subtask_held_by_other_worker(self, store, worker_factory):
        from task_orchestrator.models import SubtaskStatus, TaskStatus, Tool
        oracle = ScriptedOracle(default=make_step(Tool.DONE, "ok"))
        holder = {}

        def finish_other_worker(_interval):
            store.update_subtask_status(holder["task_id"], "subtask-1", SubtaskStatus.DONE)

        sleep = AsyncMock(side_effect=finish_other_worker)
        engine = _engine(store, make_plan([], [0]), oracle, worker_factory, sleep=sleep)

        plan_task = engine.orchestrator.plan_task

        async def plan_then_claim_elsewhere(goal, session_id=None):
            task_id, plan = await plan_task(goal, session_id)
            store.claim_next_subtask(task_id, "worker-other")
            holder["task_id"] = task_id
            return task_id, plan

        engine.orchestrator.plan_task = plan_then_claim_elsewhere

        await engine.run("g", "session-1")

        sleep.assert_awaited_once()
        assert len(oracle.requests) == 1
        assert store.get_task(holder["task_id"]).status == TaskStatus.DONE


# ============================================================
# Reporter
# ============================================================

class TestReporter:
    """测试报告生成"""

    @pytest.mark.asyncio
    async def test_report_done(self, store):
        from task_orchestrator.models import SubtaskStatus, WorkerResult
        from task_orchestrator.reporter import report
        task = store.create_task("查询股价", make_plan([]))
        finish_subtask(
            store, task.id, "subtask-1", SubtaskStatus.DONE,
            WorkerResult(status=SubtaskStatus.DONE, extraction="$131.00"),
        )
        text = await report(task)
        assert text.splitlines()[0] == "✅ 任务已完成：查询股价"
        assert "✅ subtask-1: goal A → $131.00" in text

    @pytest.mark.asyncio
    async def test_report_failed(self, store):
        from task_orchestrator.models import SubtaskStatus, WorkerResult
        from task_orchestrator.reporter import report
        task = store.create_task("查询股价", make_plan([]))
        finish_subtask(
            store, task.id, "subtask-1", SubtaskStatus.FAILED,
            WorkerResult(status=SubtaskStatus.FAILED, error="超过最大步数限制 (15)"),
        )
        text = await report(task)
        assert text.startswith("❌")
        assert "超过最大步数限制 (15)" in text

    @pytest.mark.asyncio
    async def test_report_pending(self, store):
        from task_orchestrator.reporter import report
        task = store.create_task("查询股价", make_plan([], [0]))
        text = await report(task)
        assert text.startswith("⏳")
        assert "⏸️ subtask-2: goal B" in text
