"""
Task / Subtask / Step 数据模型

定义任务编排引擎的核心数据结构，包括：
- Tool：动作词表（封闭枚举）
- SubtaskStatus / TaskStatus：状态枚举
- Step：执行循环中的单个决策 + 动作
- WorkerResult：子任务执行结果
- TaskPlan / PlannedSubtask：规划器输出
- Task / Subtask：任务存储中的任务图
- TaskProgress：只读进度视图
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class Tool(str, Enum):
    """动作词表"""
    GOTO = "GOTO"
    ACT = "ACT"
    EXTRACT = "EXTRACT"
    OBSERVE = "OBSERVE"
    WAIT = "WAIT"
    NAVBACK = "NAVBACK"
    SCREENSHOT = "SCREENSHOT"
    DONE = "DONE"
    FAIL = "FAIL"
    # 旧版单循环遗留：关闭会话，子任务内部会被转换为 DONE
    CLOSE = "CLOSE"


class SubtaskStatus(str, Enum):
    """子任务状态"""
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (SubtaskStatus.DONE, SubtaskStatus.FAILED)


class TaskStatus(str, Enum):
    """任务整体状态（由子任务状态汇总得出）"""
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"
    FAILED = "FAILED"


@dataclass
class Step:
    """
    单个执行步骤

    Attributes:
        text: 本步骤要做什么
        reasoning: 选择该动作的理由
        tool: 动作类型
        instruction: 动作参数（URL、自然语言操作描述、等待毫秒数等）
    """
    text: str
    reasoning: str
    tool: Tool
    instruction: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "reasoning": self.reasoning,
            "tool": self.tool.value,
            "instruction": self.instruction,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Step":
        """
        从 LLM 返回的 JSON 构建 Step

        Raises:
            ValueError: 缺少 tool 字段或 tool 不在动作词表内
        """
        if not isinstance(data, dict):
            raise ValueError(f"step payload must be an object, got {type(data).__name__}")
        raw_tool = str(data.get("tool", "")).strip().upper()
        try:
            tool = Tool(raw_tool)
        except ValueError:
            raise ValueError(f"unknown tool: {raw_tool!r}") from None
        return cls(
            text=str(data.get("text") or ""),
            reasoning=str(data.get("reasoning") or ""),
            tool=tool,
            instruction=str(data.get("instruction") or ""),
        )


@dataclass
class WorkerResult:
    """
    子任务执行结果

    Attributes:
        status: 终态（DONE / FAILED）
        steps: 完整步骤历史
        extraction: 最近一次 EXTRACT 的结果
        error: 失败原因（FAILED 时必有）
        retry_count: 重试次数
    """
    status: SubtaskStatus
    steps: List[Step] = field(default_factory=list)
    extraction: Any = None
    error: Optional[str] = None
    retry_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "steps": [step.to_dict() for step in self.steps],
            "extraction": self.extraction,
            "error": self.error,
            "retryCount": self.retry_count,
        }


@dataclass
class PlannedSubtask:
    """规划器输出的子任务，dependencies 为 0-based 下标"""
    description: str
    goal: str
    dependencies: List[int] = field(default_factory=list)


@dataclass
class TaskPlan:
    """规划器输出的完整计划"""
    summary: str
    subtasks: List[PlannedSubtask] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary,
            "subtasks": [
                {
                    "description": s.description,
                    "goal": s.goal,
                    "dependencies": list(s.dependencies),
                }
                for s in self.subtasks
            ],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaskPlan":
        """
        从 LLM 返回的 JSON 构建 TaskPlan

        Raises:
            ValueError: 结构不合法
        """
        if not isinstance(data, dict):
            raise ValueError("plan payload must be an object")
        raw_subtasks = data.get("subtasks")
        if not isinstance(raw_subtasks, list):
            raise ValueError("plan payload is missing 'subtasks' list")

        subtasks: List[PlannedSubtask] = []
        for index, raw in enumerate(raw_subtasks):
            if not isinstance(raw, dict):
                raise ValueError(f"subtask #{index} must be an object")
            deps = raw.get("dependencies") or []
            if not isinstance(deps, list):
                raise ValueError(f"subtask #{index} dependencies must be a list")
            try:
                dep_indices = [int(d) for d in deps]
            except (TypeError, ValueError):
                raise ValueError(f"subtask #{index} has non-integer dependencies") from None
            subtasks.append(PlannedSubtask(
                description=str(raw.get("description") or ""),
                goal=str(raw.get("goal") or ""),
                dependencies=dep_indices,
            ))
        return cls(summary=str(data.get("summary") or ""), subtasks=subtasks)


@dataclass
class Subtask:
    """
    任务图中的一个节点

    Attributes:
        id: 任务内唯一（subtask-1, subtask-2, ...）
        description: 子任务描述
        goal: 子任务目标
        dependencies: 必须先 DONE 的子任务 id
        status: 当前状态
        result: 执行结果（终态后填充）
        worker_id: 当前认领者
        claimed_at: 认领时间（租约起点）
        completed_at: 进入终态的时间
    """
    id: str
    description: str
    goal: str
    dependencies: List[str] = field(default_factory=list)
    status: SubtaskStatus = SubtaskStatus.PENDING
    result: Optional[WorkerResult] = None
    worker_id: Optional[str] = None
    claimed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "description": self.description,
            "goal": self.goal,
            "dependencies": list(self.dependencies),
            "status": self.status.value,
            "result": self.result.to_dict() if self.result else None,
            "workerId": self.worker_id,
        }


@dataclass
class Task:
    """
    顶层任务

    Attributes:
        id: 任务 id
        goal: 用户原始目标
        summary: 计划摘要
        subtasks: 按计划顺序排列的子任务
        status: 汇总状态
        session_id: 外部浏览器会话句柄
    """
    id: str
    goal: str
    summary: str
    subtasks: List[Subtask] = field(default_factory=list)
    status: TaskStatus = TaskStatus.PENDING
    session_id: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)

    def get_subtask(self, subtask_id: str) -> Optional[Subtask]:
        for subtask in self.subtasks:
            if subtask.id == subtask_id:
                return subtask
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "goal": self.goal,
            "summary": self.summary,
            "status": self.status.value,
            "sessionId": self.session_id,
            "subtasks": [s.to_dict() for s in self.subtasks],
        }


@dataclass
class TaskProgress:
    """任务进度视图（只读）"""
    completed: int
    total: int
    percentage: int
    subtask_statuses: Dict[str, SubtaskStatus] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "completed": self.completed,
            "total": self.total,
            "percentage": self.percentage,
            "subtaskStatuses": {k: v.value for k, v in self.subtask_statuses.items()},
        }


@dataclass
class PlanContext:
    """子任务在整体计划中的位置信息，提供给决策 LLM"""
    plan_description: Optional[str] = None
    subtask_position: Optional[int] = None
    total_subtasks: Optional[int] = None
    other_subtasks: List[Subtask] = field(default_factory=list)


@dataclass
class SubtaskAssignment:
    """认领成功后返回给调用方的子任务信息"""
    task_id: str
    subtask_id: str
    overall_goal: str
    subtask_goal: str
    subtask_description: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subtaskId": self.subtask_id,
            "overallGoal": self.overall_goal,
            "subtaskGoal": self.subtask_goal,
            "subtaskDescription": self.subtask_description,
        }


@dataclass
class TaskStatusView:
    """任务状态 + 进度"""
    task_id: str
    status: TaskStatus
    progress: TaskProgress

    def to_dict(self) -> Dict[str, Any]:
        return {
            "taskId": self.task_id,
            "status": self.status.value,
            "progress": self.progress.to_dict(),
        }
