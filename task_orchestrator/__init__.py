"""
任务编排模块 - 浏览器自动化任务的规划与执行

目标 → 规划为有依赖关系的子任务 → 按依赖顺序认领 → 子任务内
决策 / 执行的有界循环（带循环检测与重试）→ 汇总状态与进度
"""
from .engine import TaskEngine
from .models import (
    Step,
    Subtask,
    SubtaskStatus,
    Task,
    TaskPlan,
    TaskStatus,
    Tool,
    WorkerResult,
)
from .orchestrator import TaskOrchestrator
from .task_store import TaskStore
from .worker import SubtaskWorker

__all__ = [
    "TaskEngine",
    "TaskOrchestrator",
    "TaskStore",
    "SubtaskWorker",
    "Step",
    "Subtask",
    "SubtaskStatus",
    "Task",
    "TaskPlan",
    "TaskStatus",
    "Tool",
    "WorkerResult",
]
