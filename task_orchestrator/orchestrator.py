"""
任务编排门面 - plan → claim → execute → status

供外部调用方（HTTP API、TaskEngine）轮询驱动：
1. plan_task：搜索上下文 → 规划 → 创建任务
2. claim_next_subtask：认领下一个可执行子任务，没有时返回 None，调用方稍后再轮询
3. run_claimed_subtask：执行子任务并无条件回写终态
4. task_status：任务状态 + 进度
"""
from typing import Any, List, Optional, Tuple

from loguru import logger

from .actuators import BrowserServiceActuator
from .exceptions import (
    ClaimConflictError,
    InvalidStatusTransitionError,
    SubtaskNotFoundError,
)
from .models import (
    PlanContext,
    Subtask,
    SubtaskAssignment,
    SubtaskStatus,
    Task,
    TaskPlan,
    TaskStatusView,
    WorkerResult,
)
from .oracle import LLMDecisionOracle
from .planner import TaskPlanner
from .search import ContextSearcher
from .task_store import TaskStore
from .worker import SubtaskWorker


class TaskOrchestrator:
    """
    任务编排门面

    使用方式：
        orchestrator = TaskOrchestrator()
        task_id, plan = await orchestrator.plan_task("查询 AAPL 当前股价", session_id)
        assignment = orchestrator.claim_next_subtask(task_id, "worker-1")
        result = await orchestrator.run_claimed_subtask(task_id, assignment.subtask_id)
    """

    def __init__(
        self,
        store: Optional[TaskStore] = None,
        searcher: Optional[ContextSearcher] = None,
        planner: Optional[TaskPlanner] = None,
        worker: Optional[SubtaskWorker] = None,
    ) -> None:
        self.store = store or TaskStore()
        self._searcher = searcher or ContextSearcher()
        self._planner = planner or TaskPlanner()
        self._worker = worker or SubtaskWorker(LLMDecisionOracle(), BrowserServiceActuator())

    async def plan_task(self, goal: str, session_id: Optional[str] = None) -> Tuple[str, TaskPlan]:
        """
        规划并创建任务

        Raises:
            PlanningError: 搜索或规划失败
            InvalidPlanError: 计划依赖不合法
        """
        logger.info(f"🚀 [Orchestrator] 规划任务: {goal}")
        search_context = await self._searcher.search(goal)
        plan = await self._planner.create_plan(goal, search_context)
        task = self.store.create_task(goal, plan, session_id)
        return task.id, plan

    def claim_next_subtask(self, task_id: str, worker_id: str = "worker-1") -> Optional[SubtaskAssignment]:
        """
        认领下一个子任务

        Returns:
            SubtaskAssignment，没有可认领的子任务时返回 None

        Raises:
            TaskNotFoundError: 任务不存在
        """
        subtask = self.store.claim_next_subtask(task_id, worker_id)
        if subtask is None:
            logger.debug(f"⏳ [Orchestrator] 任务 {task_id} 暂无可认领的子任务")
            return None

        task = self.store.require_task(task_id)
        return SubtaskAssignment(
            task_id=task_id,
            subtask_id=subtask.id,
            overall_goal=task.goal,
            subtask_goal=subtask.goal,
            subtask_description=subtask.description,
        )

    async def run_claimed_subtask(
        self,
        task_id: str,
        subtask_id: str,
        session_id: Optional[str] = None,
        max_retries: Optional[int] = None,
        worker_id: Optional[str] = None,
    ) -> WorkerResult:
        """
        执行子任务并回写终态

        只执行已认领（IN_PROGRESS）的子任务。子任务已是终态时直接返回已保存的结果，
        不会再次驱动浏览器，因此重复轮询是安全的。
        执行器自身崩溃时子任务被强制标记为 FAILED；回写失败只记录日志。

        Args:
            worker_id: 调用方 worker，给出时必须与认领者一致

        Raises:
            TaskNotFoundError / SubtaskNotFoundError: id 不存在（执行前校验）
            InvalidStatusTransitionError: 子任务尚未被认领
            ClaimConflictError: 子任务由其他 worker 持有
        """
        task = self.store.require_task(task_id)
        subtask = task.get_subtask(subtask_id)
        if subtask is None:
            raise SubtaskNotFoundError(task_id, subtask_id)

        if subtask.status.is_terminal:
            logger.info(
                f"🔁 [Orchestrator] {task_id}/{subtask_id} 已是 {subtask.status.value}，返回已保存的结果"
            )
            if subtask.result is not None:
                return subtask.result
            return WorkerResult(status=subtask.status)

        if subtask.status != SubtaskStatus.IN_PROGRESS:
            raise InvalidStatusTransitionError(
                subtask_id, subtask.status.value, SubtaskStatus.IN_PROGRESS.value
            )
        if worker_id and subtask.worker_id and worker_id != subtask.worker_id:
            raise ClaimConflictError(subtask_id, subtask.worker_id, worker_id)

        session = session_id or task.session_id or ""
        if not session:
            logger.warning(f"⚠️ [Orchestrator] 任务 {task_id} 没有关联浏览器会话")

        try:
            result = await self._worker.execute(
                subtask_id=subtask.id,
                session_id=session,
                overall_goal=task.goal,
                subtask_goal=subtask.goal,
                subtask_description=subtask.description,
                plan_context=self._plan_context(task, subtask),
                previous_extraction=self._carried_extraction(task, subtask),
                max_retries=max_retries,
            )
            logger.info(
                f"🏁 [Orchestrator] {task_id}/{subtask_id} 执行结束: {result.status.value}, "
                f"steps={len(result.steps)}, retries={result.retry_count}"
            )
        except Exception as e:
            logger.error(f"❌ [Orchestrator] {task_id}/{subtask_id} 执行器异常: {e}")
            result = WorkerResult(
                status=SubtaskStatus.FAILED,
                steps=[],
                error=str(e) or type(e).__name__,
                retry_count=0,
            )

        try:
            self.store.update_subtask_status(task_id, subtask_id, result.status, result)
        except Exception as e:
            logger.error(f"❌ [Orchestrator] 回写 {task_id}/{subtask_id} 状态失败: {e}")

        return result

    def task_status(self, task_id: str) -> TaskStatusView:
        """
        Raises:
            TaskNotFoundError: 任务不存在
        """
        task = self.store.require_task(task_id)
        progress = self.store.get_task_progress(task_id)
        return TaskStatusView(task_id=task_id, status=task.status, progress=progress)

    @staticmethod
    def _plan_context(task: Task, subtask: Subtask) -> PlanContext:
        position = task.subtasks.index(subtask) + 1
        others: List[Subtask] = [s for s in task.subtasks if s.id != subtask.id]
        return PlanContext(
            plan_description=task.summary,
            subtask_position=position,
            total_subtasks=len(task.subtasks),
            other_subtasks=others,
        )

    @staticmethod
    def _carried_extraction(task: Task, subtask: Subtask) -> Any:
        """按依赖顺序取最后一个已完成依赖的提取结果"""
        carried = None
        for dep_id in subtask.dependencies:
            dep = task.get_subtask(dep_id)
            if dep is None or dep.status != SubtaskStatus.DONE or dep.result is None:
                continue
            if dep.result.extraction is not None:
                carried = dep.result.extraction
        return carried
