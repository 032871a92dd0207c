"""
决策 Oracle - 为执行循环给出下一步操作

DecisionOracle 是执行循环唯一依赖的接口：给定上下文，返回一个 Step。
LLMDecisionOracle 通过 chat-completions 实现，截图作为图片消息附带。
"""
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from loguru import logger

from config.settings import settings
from .exceptions import OracleFault
from .guard import has_possible_loop
from .llm_client import LLMClient
from .models import PlanContext, Step
from .prompts import WORKER_SYSTEM_PROMPT


@dataclass
class DecisionRequest:
    """
    决策请求

    Attributes:
        overall_goal: 整体任务目标
        subtask_id: 当前子任务 id
        subtask_goal: 子任务目标
        subtask_description: 子任务描述
        plan_context: 子任务在计划中的位置
        previous_steps: 已执行的步骤
        current_url: 当前页面地址
        previous_extraction: 之前提取到的数据
        screenshot: 当前页面截图（base64）
    """
    overall_goal: str
    subtask_id: str
    subtask_goal: str
    subtask_description: str
    plan_context: Optional[PlanContext] = None
    previous_steps: List[Step] = field(default_factory=list)
    current_url: str = "unknown"
    previous_extraction: Any = None
    screenshot: Optional[str] = None


class DecisionOracle(ABC):
    """决策 Oracle 抽象基类"""

    @abstractmethod
    async def decide(self, request: DecisionRequest) -> Step:
        """
        返回下一步操作

        Raises:
            OracleFault: 无法给出决策
        """
        ...


def build_decision_prompt(request: DecisionRequest) -> str:
    """渲染决策 prompt 的文本部分"""
    ctx = request.plan_context or PlanContext()
    lines: List[str] = [f"OVERALL TASK GOAL: {request.overall_goal}"]
    if ctx.plan_description:
        lines.append(f"PLAN DESCRIPTION: {ctx.plan_description}")
    lines.append("")
    lines.append(f"YOUR SUBTASK GOAL: {request.subtask_goal}")
    lines.append(f"SUBTASK DESCRIPTION: {request.subtask_description}")
    if ctx.subtask_position:
        total = ctx.total_subtasks or "?"
        lines.append(f"YOUR SUBTASK POSITION: {ctx.subtask_position} of {total}")

    if ctx.other_subtasks:
        lines.append("")
        lines.append("OTHER SUBTASKS IN THE PLAN:")
        for other in ctx.other_subtasks:
            marker = " (depends on your subtask)" if request.subtask_id in other.dependencies else ""
            lines.append(f"- {other.goal} [{other.status.value}]{marker}")

    if request.previous_steps:
        lines.append("")
        lines.append("PREVIOUS STEPS YOU'VE TAKEN:")
        for i, step in enumerate(request.previous_steps, 1):
            lines.append(
                f"Step {i}: {step.text}\n"
                f"Tool: {step.tool.value}\n"
                f"Instruction: {step.instruction}\n"
                f"Reasoning: {step.reasoning}"
            )

    if request.previous_extraction is not None:
        lines.append("")
        lines.append("PREVIOUS EXTRACTION:")
        try:
            lines.append(json.dumps(request.previous_extraction, ensure_ascii=False, indent=2))
        except (TypeError, ValueError):
            lines.append(str(request.previous_extraction))

    lines.append("")
    lines.append(f"CURRENT URL: {request.current_url}")

    if has_possible_loop(request.previous_steps):
        lines.append("")
        lines.append(
            "WARNING: 你似乎在重复相似的操作而没有进展。请换一种完全不同的方式："
            "换用其它工具、查看截图中的其它区域、或导航到其它页面。"
        )

    lines.append("")
    lines.append(
        "请决定完成子任务的下一步操作。子任务完成时使用 DONE，"
        "遇到无法解决的错误时使用 FAIL。"
    )
    return "\n".join(lines)


class LLMDecisionOracle(DecisionOracle):
    """
    基于 LLM 的决策 Oracle

    使用方式：
        oracle = LLMDecisionOracle()
        step = await oracle.decide(request)
    """

    def __init__(self, client: Optional[LLMClient] = None, model: Optional[str] = None) -> None:
        self._client = client or LLMClient()
        self._model = model or settings.worker_model

    async def decide(self, request: DecisionRequest) -> Step:
        content: List[Dict[str, Any]] = [
            {"type": "text", "text": build_decision_prompt(request)},
        ]
        if request.screenshot:
            content.append({
                "type": "image_url",
                "image_url": {"url": f"data:image/png;base64,{request.screenshot}"},
            })

        messages = [
            {"role": "system", "content": WORKER_SYSTEM_PROMPT},
            {"role": "user", "content": content},
        ]

        data = await self._client.chat_json(self._model, messages)
        try:
            step = Step.from_dict(data)
        except ValueError as e:
            logger.warning(f"⚠️ [Oracle:{request.subtask_id}] 决策结果不合法: {e}")
            raise OracleFault(f"invalid decision: {e}") from e

        logger.debug(
            f"💡 [Oracle:{request.subtask_id}] {step.tool.value} - {step.instruction[:50]}"
        )
        return step
