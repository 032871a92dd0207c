"""
任务编排引擎异常定义
"""


class OrchestratorError(Exception):
    """任务编排引擎异常基类"""
    pass


class InvalidPlanError(OrchestratorError):
    """计划不合法：没有子任务、依赖下标越界或存在环。调用方需要重新规划。"""
    pass


class NotFoundError(OrchestratorError):
    """未知的任务或子任务 id（调用方误用）"""
    pass


class TaskNotFoundError(NotFoundError):
    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Task not found: {task_id}")


class SubtaskNotFoundError(NotFoundError):
    def __init__(self, task_id: str, subtask_id: str):
        self.task_id = task_id
        self.subtask_id = subtask_id
        super().__init__(f"Subtask not found: {subtask_id} (task {task_id})")


class InvalidStatusTransitionError(OrchestratorError):
    """非法状态迁移：离开终态、跳过认领，或被认领后回到 PENDING"""

    def __init__(self, subtask_id: str, current: str, requested: str):
        self.subtask_id = subtask_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Illegal status transition for {subtask_id}: {current} -> {requested}"
        )


class ClaimConflictError(OrchestratorError):
    """子任务当前由其他 worker 持有"""

    def __init__(self, subtask_id: str, holder: str, requester: str):
        self.subtask_id = subtask_id
        self.holder = holder
        self.requester = requester
        super().__init__(
            f"Subtask {subtask_id} is claimed by {holder}, not {requester}"
        )


class ActuatorFault(OrchestratorError):
    """浏览器动作执行失败（可重试）"""
    pass


class OracleFault(OrchestratorError):
    """决策 LLM 调用失败（由回退步骤补偿）"""
    pass


class PlanningError(OrchestratorError):
    """搜索或规划失败，任务无法创建"""
    pass
