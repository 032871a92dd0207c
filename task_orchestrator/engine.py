"""
任务引擎 - Plan → Claim → Execute → Report

单进程驱动：规划任务后循环认领并执行子任务，直到任务进入终态。
"""
import asyncio
from typing import Any, Awaitable, Callable, Optional

from loguru import logger

from config.settings import settings
from .models import SubtaskStatus, TaskStatus
from .orchestrator import TaskOrchestrator
from .reporter import report


class TaskEngine:
    """
    任务引擎

    使用方式：
        engine = TaskEngine()
        result_text = await engine.run("查询 AAPL 当前股价", session_id="session-1")
    """

    def __init__(
        self,
        orchestrator: Optional[TaskOrchestrator] = None,
        poll_interval_seconds: Optional[float] = None,
        worker_id: str = "worker-1",
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.orchestrator = orchestrator or TaskOrchestrator()
        self._poll_interval = (
            poll_interval_seconds if poll_interval_seconds is not None
            else settings.poll_interval_seconds
        )
        self._worker_id = worker_id
        self._sleep = sleep

    async def run(self, goal: str, session_id: Optional[str] = None) -> str:
        """
        运行完整任务流程

        Args:
            goal: 用户原始目标
            session_id: 浏览器会话句柄

        Returns:
            str: 任务执行报告
        """
        logger.info(f"🚀 [TaskEngine] ===== 开始任务 =====")
        logger.info(f"🚀 [TaskEngine] 目标: {goal}")

        # 1. 规划
        task_id, plan = await self.orchestrator.plan_task(goal, session_id)
        logger.info(f"📋 [TaskEngine] 规划完成: {task_id}, subtasks={len(plan.subtasks)}")
        for i, planned in enumerate(plan.subtasks):
            logger.debug(
                f"📋 [TaskEngine] Subtask[{i}]: goal='{planned.goal}', deps={planned.dependencies}"
            )

        # 2. 认领 → 执行，直到没有可执行的子任务
        while True:
            assignment = self.orchestrator.claim_next_subtask(task_id, self._worker_id)
            if assignment is not None:
                logger.info(f"⚙️ [TaskEngine] 执行 {assignment.subtask_id}: {assignment.subtask_goal}")
                result = await self.orchestrator.run_claimed_subtask(
                    task_id, assignment.subtask_id, session_id, worker_id=self._worker_id
                )
                logger.info(f"⚙️ [TaskEngine] {assignment.subtask_id} 结果: {result.status.value}")
                continue

            view = self.orchestrator.task_status(task_id)
            if view.status in (TaskStatus.DONE, TaskStatus.FAILED):
                break
            in_flight = any(
                s == SubtaskStatus.IN_PROGRESS for s in view.progress.subtask_statuses.values()
            )
            if not in_flight:
                logger.warning(f"⚠️ [TaskEngine] {task_id} 没有可执行的子任务，提前结束")
                break
            await self._sleep(self._poll_interval)

        # 3. 报告
        task = self.orchestrator.store.require_task(task_id)
        logger.info(f"✅ [TaskEngine] 任务结束: status={task.status.value}")
        report_text = await report(task)
        logger.debug(f"📝 [TaskEngine] 报告输出: {report_text}")
        return report_text
