"""
单会话 Agent - 旧版单循环接口

不经过规划，由调用方逐步驱动同一个浏览器会话：
1. start：选择起始 URL 并打开
2. next_step：根据已执行步骤决定下一步，CLOSE 表示目标已达成
3. execute_step：在会话中执行调用方传回的步骤

供 POST /agent 的 START / GET_NEXT_STEP / EXECUTE_STEP 使用。
"""
import json
from typing import Any, Dict, List, Optional

from loguru import logger

from config.settings import settings
from .actuators import Actuator, BrowserServiceActuator
from .exceptions import ActuatorFault, OracleFault
from .llm_client import LLMClient
from .models import Step, Tool
from .prompts import SESSION_AGENT_SYSTEM_PROMPT, START_URL_SYSTEM_PROMPT

# 单循环可用的工具
SESSION_TOOLS = (
    Tool.GOTO,
    Tool.ACT,
    Tool.EXTRACT,
    Tool.OBSERVE,
    Tool.CLOSE,
    Tool.WAIT,
    Tool.NAVBACK,
)


def build_next_step_prompt(
    goal: str,
    current_url: str,
    previous_steps: List[Step],
) -> str:
    """渲染 next_step prompt 的文本部分"""
    location = f" (URL: {current_url})" if current_url else ""
    lines: List[str] = [f"GOAL: {goal}", f"CURRENT PAGE{location}"]

    if previous_steps:
        lines.append("")
        lines.append("PREVIOUS STEPS:")
        for i, step in enumerate(previous_steps, 1):
            lines.append(
                f"Step {i}:\n"
                f"- Action: {step.text}\n"
                f"- Reasoning: {step.reasoning}\n"
                f"- Tool Used: {step.tool.value}\n"
                f"- Instruction: {step.instruction}"
            )

    lines.append("")
    lines.append("请决定为达成目标紧接着要执行的下一步操作。目标已经达成时返回 CLOSE。")
    return "\n".join(lines)


def describe_previous_result(previous_extraction: Any) -> str:
    """上一次 EXTRACT / OBSERVE 的结果，列表视为 OBSERVE"""
    kind = "observation" if isinstance(previous_extraction, list) else "extraction"
    if isinstance(previous_extraction, str):
        rendered = previous_extraction
    else:
        try:
            rendered = json.dumps(previous_extraction, ensure_ascii=False)
        except (TypeError, ValueError):
            rendered = str(previous_extraction)
    return f"The result of the previous {kind} is: {rendered}."


class SessionAgent:
    """
    单会话 Agent

    使用方式：
        agent = SessionAgent()
        first = await agent.start("查询 AAPL 当前股价", session_id)
        step = await agent.next_step(goal, session_id, [first])
        data = await agent.execute_step(session_id, step)
    """

    def __init__(
        self,
        client: Optional[LLMClient] = None,
        actuator: Optional[Actuator] = None,
        model: Optional[str] = None,
    ) -> None:
        self._client = client or LLMClient()
        self._actuator = actuator or BrowserServiceActuator()
        self._model = model or settings.worker_model

    async def select_starting_url(self, goal: str) -> Dict[str, str]:
        """
        选择起始 URL

        Returns:
            {"url": ..., "reasoning": ...}

        Raises:
            OracleFault: LLM 调用失败或没有返回合法的 http(s) URL
        """
        messages = [
            {"role": "system", "content": START_URL_SYSTEM_PROMPT},
            {"role": "user", "content": f"目标: {goal}"},
        ]
        data = await self._client.chat_json(self._model, messages)
        if not isinstance(data, dict):
            raise OracleFault(f"invalid starting url payload: {str(data)[:200]}")

        url = str(data.get("url") or "").strip()
        if not url.startswith(("http://", "https://")):
            raise OracleFault(f"invalid starting url: {url!r}")
        return {"url": url, "reasoning": str(data.get("reasoning") or "")}

    async def start(self, goal: str, session_id: str) -> Step:
        """
        选择起始 URL 并在会话中打开，返回对应的 GOTO 步骤

        Raises:
            OracleFault: 无法选择起始 URL
            ActuatorFault: 导航失败
        """
        choice = await self.select_starting_url(goal)
        url = choice["url"]
        logger.info(f"🚀 [SessionAgent:{session_id}] 起始页面: {url}")

        await self._actuator.execute(session_id, Tool.GOTO, url)
        return Step(
            text=f"Navigating to {url}",
            reasoning=choice["reasoning"],
            tool=Tool.GOTO,
            instruction=url,
        )

    async def next_step(
        self,
        goal: str,
        session_id: str,
        previous_steps: Optional[List[Step]] = None,
        previous_extraction: Any = None,
    ) -> Step:
        """
        决定下一步操作

        之前有过 GOTO 时附带当前页面截图。

        Raises:
            OracleFault: LLM 调用失败或返回的工具不可用
            ActuatorFault: 截图失败
        """
        previous_steps = previous_steps or []

        try:
            current_url = await self._actuator.current_url(session_id)
        except (ActuatorFault, ValueError) as e:
            logger.warning(f"⚠️ [SessionAgent:{session_id}] 获取当前地址失败: {e}")
            current_url = ""

        content: List[Dict[str, Any]] = [
            {"type": "text", "text": build_next_step_prompt(goal, current_url, previous_steps)},
        ]
        if any(step.tool == Tool.GOTO for step in previous_steps):
            screenshot = await self._actuator.execute(session_id, Tool.SCREENSHOT)
            content.append({
                "type": "image_url",
                "image_url": {"url": f"data:image/png;base64,{screenshot}"},
            })
        if previous_extraction:
            content.append({"type": "text", "text": describe_previous_result(previous_extraction)})

        messages = [
            {"role": "system", "content": SESSION_AGENT_SYSTEM_PROMPT},
            {"role": "user", "content": content},
        ]
        data = await self._client.chat_json(self._model, messages)
        try:
            step = Step.from_dict(data)
        except ValueError as e:
            raise OracleFault(f"invalid decision: {e}") from e
        if step.tool not in SESSION_TOOLS:
            raise OracleFault(f"invalid decision: tool {step.tool.value} is not available")

        logger.info(
            f"💡 [SessionAgent:{session_id}] 第 {len(previous_steps) + 1} 步: "
            f"{step.tool.value} - {step.instruction[:50]}"
        )
        return step

    async def execute_step(self, session_id: str, step: Step) -> Any:
        """
        执行调用方传回的步骤，CLOSE 会关闭浏览器会话

        Raises:
            ValueError: 工具不可用
            ActuatorFault: 执行失败
        """
        if step.tool not in SESSION_TOOLS:
            raise ValueError(f"tool {step.tool.value} is not available in a session loop")
        logger.info(f"⚙️ [SessionAgent:{session_id}] 执行 {step.tool.value}: {step.instruction[:50]}")
        return await self._actuator.execute(session_id, step.tool, step.instruction)
