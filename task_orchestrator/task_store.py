"""
TaskStore - 任务存储与依赖解析
==============================

持有进程内全部 Task，负责：
- 从规划结果原子地创建 Task（依赖下标 → 子任务 id，环检测）
- 子任务状态迁移与任务汇总状态重算
- 按计划顺序选择下一个可执行子任务
- 认领租约（同一任务同一时间只下发一个 IN_PROGRESS 子任务）
- 进度视图

所有变更在同一把锁内完成，单次变更结束时 Task.status 一定与子任务状态一致。
"""
import threading
import uuid
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Union

import networkx as nx  # type: ignore
from loguru import logger

from config.settings import settings
from .exceptions import (
    InvalidPlanError,
    InvalidStatusTransitionError,
    SubtaskNotFoundError,
    TaskNotFoundError,
)
from .models import (
    Subtask,
    SubtaskStatus,
    Task,
    TaskPlan,
    TaskProgress,
    TaskStatus,
    WorkerResult,
)


def _default_task_id() -> str:
    return f"task-{uuid.uuid4().hex[:12]}"


def subtask_id_for(index: int) -> str:
    """0-based 计划下标 → 子任务 id"""
    return f"subtask-{index + 1}"


class TaskStore:
    """
    内存任务存储

    使用方式：
        store = TaskStore()
        task = store.create_task(goal, plan, session_id)
        subtask = store.get_next_available_subtask(task.id)
    """

    def __init__(
        self,
        tasks: Optional[Dict[str, Task]] = None,
        id_factory: Callable[[], str] = _default_task_id,
        claim_lease_seconds: Optional[float] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        """
        Args:
            tasks: 后备存储（按 id 索引的 Task），测试中每个用例传入新的 dict
            id_factory: Task id 生成函数
            claim_lease_seconds: 认领租约时长，超时后可重新下发
            clock: 时间源
        """
        self._tasks: Dict[str, Task] = tasks if tasks is not None else {}
        self._id_factory = id_factory
        self._lease = timedelta(
            seconds=claim_lease_seconds
            if claim_lease_seconds is not None
            else settings.claim_lease_seconds
        )
        self._clock = clock
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # 创建 / 查询
    # ------------------------------------------------------------------

    def create_task(self, goal: str, plan: TaskPlan, session_id: Optional[str] = None) -> Task:
        """
        从最终计划创建 Task

        Raises:
            InvalidPlanError: 没有子任务、依赖下标越界或依赖图存在环
        """
        if not plan.subtasks:
            raise InvalidPlanError("Plan must contain at least one subtask")

        total = len(plan.subtasks)
        graph = nx.DiGraph()
        graph.add_nodes_from(range(total))

        subtasks: List[Subtask] = []
        for index, planned in enumerate(plan.subtasks):
            dep_ids: List[str] = []
            for dep_index in planned.dependencies:
                if dep_index < 0 or dep_index >= total:
                    raise InvalidPlanError(
                        f"Subtask {index} depends on out-of-range index {dep_index} "
                        f"(plan has {total} subtasks)"
                    )
                graph.add_edge(dep_index, index)
                dep_id = subtask_id_for(dep_index)
                if dep_id not in dep_ids:
                    dep_ids.append(dep_id)

            subtasks.append(Subtask(
                id=subtask_id_for(index),
                description=planned.description,
                goal=planned.goal,
                dependencies=dep_ids,
            ))

        if not nx.is_directed_acyclic_graph(graph):
            cycle = nx.find_cycle(graph)
            raise InvalidPlanError(
                "Plan dependencies form a cycle: "
                + " -> ".join(subtask_id_for(u) for u, _ in cycle)
            )

        with self._lock:
            task_id = self._id_factory()
            while task_id in self._tasks:
                task_id = self._id_factory()
            task = Task(
                id=task_id,
                goal=goal,
                summary=plan.summary,
                subtasks=subtasks,
                session_id=session_id,
            )
            self._tasks[task_id] = task

        logger.info(
            f"📋 [TaskStore] 创建任务 {task_id}: subtasks={total}, "
            f"deps={[s.dependencies for s in subtasks]}"
        )
        return task

    def get_task(self, task_id: str) -> Optional[Task]:
        with self._lock:
            return self._tasks.get(task_id)

    def require_task(self, task_id: str) -> Task:
        task = self.get_task(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def list_tasks(self) -> List[Task]:
        with self._lock:
            return list(self._tasks.values())

    # ------------------------------------------------------------------
    # 依赖解析
    # ------------------------------------------------------------------

    def get_next_available_subtask(self, task_id: str) -> Optional[Subtask]:
        """
        按计划顺序返回第一个可执行子任务（PENDING 且依赖全部 DONE）

        没有可执行子任务时返回 None，这是正常状态（依赖仍在执行中或已无剩余工作）。

        Raises:
            TaskNotFoundError: 任务不存在
        """
        with self._lock:
            task = self.require_task(task_id)
            return self._first_eligible(task)

    def claim_next_subtask(self, task_id: str, worker_id: str) -> Optional[Subtask]:
        """
        认领下一个子任务并标记为 IN_PROGRESS

        - 已有未过期的 IN_PROGRESS 子任务 → 返回 None
        - 已有过期的 IN_PROGRESS 子任务 → 重新下发给当前 worker（保持 IN_PROGRESS）
        - 否则认领第一个可执行子任务

        Raises:
            TaskNotFoundError: 任务不存在
        """
        with self._lock:
            task = self.require_task(task_id)
            now = self._clock()

            for subtask in task.subtasks:
                if subtask.status != SubtaskStatus.IN_PROGRESS:
                    continue
                if subtask.claimed_at is not None and now - subtask.claimed_at < self._lease:
                    logger.debug(
                        f"⏳ [TaskStore] {task_id}/{subtask.id} 仍由 {subtask.worker_id} 执行中"
                    )
                    return None
                logger.warning(
                    f"⚠️ [TaskStore] {task_id}/{subtask.id} 租约已过期 "
                    f"(worker={subtask.worker_id})，重新下发给 {worker_id}"
                )
                subtask.worker_id = worker_id
                subtask.claimed_at = now
                return subtask

            subtask = self._first_eligible(task)
            if subtask is None:
                return None

            subtask.status = SubtaskStatus.IN_PROGRESS
            subtask.worker_id = worker_id
            subtask.claimed_at = now
            self._recompute_status(task)
            logger.info(f"🔒 [TaskStore] {worker_id} 认领 {task_id}/{subtask.id}")
            return subtask

    # ------------------------------------------------------------------
    # 状态迁移
    # ------------------------------------------------------------------

    def update_subtask_status(
        self,
        task_id: str,
        subtask_id: str,
        status: Union[SubtaskStatus, str],
        result: Optional[WorkerResult] = None,
    ) -> Task:
        """
        更新子任务状态并重算任务汇总状态

        合法迁移：PENDING → IN_PROGRESS（仅限可执行子任务）→ DONE / FAILED。
        对同一终态重复调用是幂等的。

        Raises:
            TaskNotFoundError / SubtaskNotFoundError: id 不存在
            InvalidStatusTransitionError: 离开终态、未认领直接进入终态、
                依赖未完成就开始执行，或认领后回到 PENDING
        """
        new_status = SubtaskStatus(status)
        with self._lock:
            task = self.require_task(task_id)
            subtask = task.get_subtask(subtask_id)
            if subtask is None:
                raise SubtaskNotFoundError(task_id, subtask_id)

            current = subtask.status
            if current.is_terminal and new_status != current:
                raise InvalidStatusTransitionError(subtask_id, current.value, new_status.value)
            if new_status == SubtaskStatus.PENDING and current != SubtaskStatus.PENDING:
                raise InvalidStatusTransitionError(subtask_id, current.value, new_status.value)
            if current == SubtaskStatus.PENDING and new_status.is_terminal:
                raise InvalidStatusTransitionError(subtask_id, current.value, new_status.value)
            if (
                current == SubtaskStatus.PENDING
                and new_status == SubtaskStatus.IN_PROGRESS
                and not self._is_eligible(task, subtask)
            ):
                raise InvalidStatusTransitionError(subtask_id, current.value, new_status.value)

            if current.is_terminal:
                logger.debug(f"🔁 [TaskStore] {task_id}/{subtask_id} 已是 {current.value}，重复更新")
            else:
                subtask.status = new_status
                if new_status.is_terminal:
                    subtask.completed_at = self._clock()
                elif new_status == SubtaskStatus.IN_PROGRESS and subtask.claimed_at is None:
                    subtask.claimed_at = self._clock()

            if result is not None:
                subtask.result = result

            previous = task.status
            self._recompute_status(task)

        if previous != task.status:
            logger.info(
                f"📊 [TaskStore] 任务 {task_id} 状态: {previous.value} → {task.status.value} "
                f"({subtask_id}={new_status.value})"
            )
        return task

    # ------------------------------------------------------------------
    # 进度
    # ------------------------------------------------------------------

    def get_task_progress(self, task_id: str) -> TaskProgress:
        """
        任务进度视图，不修改任何状态

        Raises:
            TaskNotFoundError: 任务不存在
        """
        with self._lock:
            task = self.require_task(task_id)
            total = len(task.subtasks)
            completed = sum(1 for s in task.subtasks if s.status == SubtaskStatus.DONE)
            return TaskProgress(
                completed=completed,
                total=total,
                percentage=round(completed / total * 100) if total else 0,
                subtask_statuses={s.id: s.status for s in task.subtasks},
            )

    # ------------------------------------------------------------------
    # 内部
    # ------------------------------------------------------------------

    @staticmethod
    def _is_eligible(task: Task, subtask: Subtask) -> bool:
        if subtask.status != SubtaskStatus.PENDING:
            return False
        for dep_id in subtask.dependencies:
            dep = task.get_subtask(dep_id)
            if dep is None or dep.status != SubtaskStatus.DONE:
                return False
        return True

    def _first_eligible(self, task: Task) -> Optional[Subtask]:
        for subtask in task.subtasks:
            if self._is_eligible(task, subtask):
                return subtask
        return None

    def _recompute_status(self, task: Task) -> None:
        statuses = [s.status for s in task.subtasks]
        if all(s == SubtaskStatus.DONE for s in statuses):
            task.status = TaskStatus.DONE
        elif SubtaskStatus.IN_PROGRESS in statuses:
            task.status = TaskStatus.IN_PROGRESS
        elif SubtaskStatus.FAILED in statuses and self._first_eligible(task) is None:
            # 有失败且已无法继续下发
            task.status = TaskStatus.FAILED
        elif any(s.is_terminal for s in statuses):
            task.status = TaskStatus.IN_PROGRESS
        else:
            task.status = TaskStatus.PENDING
