"""
任务规划器 - 使用 LLM 将目标拆解为有依赖关系的子任务

设计理念：
- planner 只做粗粒度拆解，每个子任务的具体操作由 worker 的决策 LLM 自主决定
- 依赖用 0-based 下标表达，合法性（越界、环）由 TaskStore 创建任务时校验
"""
from typing import Optional

from loguru import logger

from config.settings import settings
from .exceptions import OracleFault, PlanningError
from .llm_client import LLMClient
from .models import TaskPlan
from .prompts import PLANNER_SYSTEM_PROMPT


class TaskPlanner:
    """
    任务规划器

    使用方式：
        planner = TaskPlanner()
        plan = await planner.create_plan(goal, search_context)
    """

    def __init__(self, client: Optional[LLMClient] = None, model: Optional[str] = None) -> None:
        self._client = client or LLMClient()
        self._model = model or settings.planner_model

    async def create_plan(self, goal: str, search_context: str = "") -> TaskPlan:
        """
        生成任务计划

        Args:
            goal: 用户原始目标
            search_context: 上下文搜索结果

        Returns:
            TaskPlan: 至少包含 1 个子任务的计划

        Raises:
            PlanningError: LLM 调用失败或返回的计划不合法
        """
        user_text = f'I need a plan for accomplishing this task: "{goal}"'
        if search_context:
            user_text += (
                "\n\nHere's some context from my search that may help with planning:\n\n"
                f"{search_context}"
            )
        messages = [
            {"role": "system", "content": PLANNER_SYSTEM_PROMPT},
            {"role": "user", "content": user_text},
        ]

        try:
            data = await self._client.chat_json(self._model, messages)
            plan = TaskPlan.from_dict(data)
        except (OracleFault, ValueError) as e:
            logger.error(f"❌ [Planner] 规划失败: {e}")
            raise PlanningError(f"Planning agent failed: {e}") from e

        if not plan.subtasks:
            raise PlanningError("Planning agent failed: plan contains no subtasks")

        logger.info(f"📋 [Planner] 规划完成: {len(plan.subtasks)} 个子任务 - {plan.summary}")
        for i, subtask in enumerate(plan.subtasks):
            logger.debug(
                f"📋 [Planner] Subtask[{i}]: goal='{subtask.goal}', deps={subtask.dependencies}"
            )
        return plan
