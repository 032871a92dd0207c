"""
子任务执行器 - 决策 → 循环检测 → 执行 的有界循环

核心执行流程：
1. 捕获初始截图（失败不影响执行）
2. while 循环：
   - 步数达到上限 → FAILED
   - 请求决策 Oracle 给出下一步（Oracle 故障时回退为 SCREENSHOT 步骤）
   - DONE / FAIL → 直接结束
   - 重复动作检测：计入重试；未超限时插入 WAIT 步骤、刷新截图、短暂停顿后重新决策
   - 隐式完成检测：文本里宣布完成 → 补一个 DONE 步骤结束
   - CLOSE → 转换为 DONE（子任务不能关闭整个会话）
   - 执行动作；EXTRACT 结果作为后续上下文，导航后刷新当前地址，动作后刷新截图
   - 执行故障计入重试，超限 → FAILED
3. 任何未预期的异常都收敛为 FAILED，execute 永远返回终态结果而不抛出
"""
import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional

from loguru import logger

from config.settings import settings
from .actuators.base import Actuator
from .exceptions import OracleFault
from .guard import CompletionDetector, RepetitionGuard
from .models import PlanContext, Step, SubtaskStatus, Tool, WorkerResult
from .oracle import DecisionOracle, DecisionRequest

# Oracle 故障时的回退步骤
_FALLBACK_TEXT = "Failed to determine next step, taking a screenshot to reassess"
_FALLBACK_REASONING = "Error occurred in step generation, need to capture current state to recover"


@dataclass
class _ExecutionState:
    """单次子任务执行的本地状态"""
    guard: RepetitionGuard
    steps: List[Step] = field(default_factory=list)
    extraction: Any = None
    previous_extraction: Any = None
    retry_count: int = 0
    screenshot: Optional[str] = None
    current_url: str = "unknown"


def _short(text: str, limit: int = 50) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


class SubtaskWorker:
    """
    子任务执行器

    使用方式：
        worker = SubtaskWorker(oracle, actuator)
        result = await worker.execute(subtask_id=..., session_id=..., ...)
    """

    def __init__(
        self,
        oracle: DecisionOracle,
        actuator: Actuator,
        max_steps: Optional[int] = None,
        max_retries: Optional[int] = None,
        loop_history_size: Optional[int] = None,
        loop_max_duplicates: Optional[int] = None,
        retry_pause_seconds: Optional[float] = None,
        completion_detector: Optional[Callable[[Step], bool]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._oracle = oracle
        self._actuator = actuator
        self.max_steps = max_steps if max_steps is not None else settings.max_steps
        self.max_retries = max_retries if max_retries is not None else settings.max_retries
        self._history_size = loop_history_size or settings.loop_history_size
        self._max_duplicates = loop_max_duplicates or settings.loop_max_duplicates
        self._pause = (
            retry_pause_seconds if retry_pause_seconds is not None else settings.retry_pause_seconds
        )
        self._is_complete = completion_detector or CompletionDetector()
        self._sleep = sleep

    async def execute(
        self,
        subtask_id: str,
        session_id: str,
        overall_goal: str,
        subtask_goal: str,
        subtask_description: str,
        plan_context: Optional[PlanContext] = None,
        previous_extraction: Any = None,
        max_retries: Optional[int] = None,
    ) -> WorkerResult:
        """
        执行子任务直到 DONE 或 FAILED

        Returns:
            WorkerResult: 终态结果（不会抛出异常）
        """
        max_retries = max_retries if max_retries is not None else self.max_retries
        tag = f"[Worker:{subtask_id}]"
        state = _ExecutionState(
            guard=RepetitionGuard(self._history_size, self._max_duplicates),
            previous_extraction=previous_extraction,
        )

        logger.info(f"🤖 {tag} 开始执行子任务: {subtask_goal}")
        if plan_context and plan_context.subtask_position:
            logger.info(
                f"🤖 {tag} 位置: {plan_context.subtask_position}/{plan_context.total_subtasks or '?'}"
            )

        try:
            await self._refresh_screenshot(state, session_id, tag, "initial")

            while True:
                if len(state.steps) >= self.max_steps:
                    logger.warning(f"⏰ {tag} 达到最大步数 ({self.max_steps})，子任务失败")
                    return self._finish(
                        state, SubtaskStatus.FAILED,
                        error=f"超过最大步数限制 ({self.max_steps})",
                    )

                try:
                    step = await self._decide(
                        state, subtask_id, overall_goal, subtask_goal,
                        subtask_description, plan_context, tag,
                    )

                    if step.tool == Tool.DONE:
                        logger.info(f"✅ {tag} 子任务完成: {step.instruction}")
                        state.steps.append(step)
                        return self._finish(state, SubtaskStatus.DONE)

                    if step.tool == Tool.FAIL:
                        logger.warning(f"❌ {tag} 子任务主动失败: {step.instruction}")
                        state.steps.append(step)
                        return self._finish(
                            state, SubtaskStatus.FAILED,
                            error=step.instruction or "子任务被标记为失败",
                        )

                    if state.guard.check(step):
                        state.retry_count += 1
                        logger.warning(
                            f"🔁 {tag} 检测到重复动作: {step.tool.value} - {_short(step.instruction)} "
                            f"(重试 {state.retry_count}/{max_retries})"
                        )
                        if state.retry_count >= max_retries:
                            return self._finish(
                                state, SubtaskStatus.FAILED,
                                error=(
                                    f"重复执行同一动作 ({step.tool.value}) "
                                    f"{state.retry_count} 次，判定为循环"
                                ),
                            )

                        state.steps.append(Step(
                            text="Detected repeated action",
                            reasoning="The same action was attempted multiple times without progress",
                            tool=Tool.WAIT,
                            instruction="Pausing to reassess strategy",
                        ))
                        await self._refresh_screenshot(state, session_id, tag, "loop break")
                        await self._sleep(self._pause)
                        continue

                    state.steps.append(step)

                    if self._is_complete(step):
                        logger.info(f"✅ {tag} 从文本中识别到完成信号，补充 DONE 步骤")
                        state.steps.append(Step(
                            text="Marking subtask as complete",
                            reasoning="Based on completion signals in previous step",
                            tool=Tool.DONE,
                            instruction="Subtask successfully completed",
                        ))
                        return self._finish(state, SubtaskStatus.DONE)

                    if step.tool == Tool.CLOSE:
                        logger.info(f"⚠️ {tag} 子任务不允许关闭会话，CLOSE 转换为 DONE")
                        state.steps.append(Step(
                            text="Marking subtask as complete",
                            reasoning="Based on CLOSE request from agent",
                            tool=Tool.DONE,
                            instruction="Subtask successfully completed",
                        ))
                        return self._finish(state, SubtaskStatus.DONE)

                    await self._perform(state, step, session_id, tag)

                except Exception as e:
                    state.retry_count += 1
                    logger.error(
                        f"❌ {tag} 步骤执行失败 (重试 {state.retry_count}/{max_retries}): {e}"
                    )
                    if state.retry_count >= max_retries:
                        state.steps.append(Step(
                            text="Marking subtask as failed",
                            reasoning="Exceeded maximum retry attempts",
                            tool=Tool.FAIL,
                            instruction=str(e),
                        ))
                        return self._finish(state, SubtaskStatus.FAILED, error=str(e) or type(e).__name__)

                    await self._sleep(self._pause)
                    await self._refresh_screenshot(state, session_id, tag, "recovery")

        except Exception as e:
            logger.exception(f"💥 {tag} 子任务执行出现致命错误: {e}")
            state.steps.append(Step(
                text="Marking subtask as failed",
                reasoning="Fatal error occurred",
                tool=Tool.FAIL,
                instruction=str(e),
            ))
            return self._finish(state, SubtaskStatus.FAILED, error=str(e) or type(e).__name__)

    async def _decide(
        self,
        state: _ExecutionState,
        subtask_id: str,
        overall_goal: str,
        subtask_goal: str,
        subtask_description: str,
        plan_context: Optional[PlanContext],
        tag: str,
    ) -> Step:
        request = DecisionRequest(
            overall_goal=overall_goal,
            subtask_id=subtask_id,
            subtask_goal=subtask_goal,
            subtask_description=subtask_description,
            plan_context=plan_context,
            previous_steps=list(state.steps),
            current_url=state.current_url,
            previous_extraction=state.previous_extraction,
            screenshot=state.screenshot,
        )
        try:
            return await self._oracle.decide(request)
        except OracleFault as e:
            logger.warning(f"⚠️ {tag} 决策失败，回退为截图重新定位: {e}")
            return Step(
                text=_FALLBACK_TEXT,
                reasoning=_FALLBACK_REASONING,
                tool=Tool.SCREENSHOT,
                instruction="",
            )

    async def _perform(self, state: _ExecutionState, step: Step, session_id: str, tag: str) -> None:
        logger.info(f"🌐 {tag} 执行: {step.tool.value} - {_short(step.instruction)}")
        result = await self._actuator.execute(session_id, step.tool, step.instruction)

        if step.tool == Tool.EXTRACT and result is not None:
            state.extraction = result
            state.previous_extraction = result

        if step.tool in (Tool.GOTO, Tool.NAVBACK):
            try:
                state.current_url = await self._actuator.current_url(session_id)
            except Exception as e:
                logger.warning(f"⚠️ {tag} 导航后获取当前地址失败，沿用旧值: {e}")

        if step.tool == Tool.SCREENSHOT:
            if result:
                state.screenshot = result
        else:
            await self._refresh_screenshot(state, session_id, tag, f"after {step.tool.value}")

    async def _refresh_screenshot(
        self, state: _ExecutionState, session_id: str, tag: str, reason: str
    ) -> None:
        """刷新截图，失败时保留上一张"""
        try:
            state.screenshot = await self._actuator.execute(session_id, Tool.SCREENSHOT, "")
            logger.debug(f"📸 {tag} 截图已更新 ({reason})")
        except Exception as e:
            logger.warning(f"⚠️ {tag} 截图失败 ({reason})，沿用上一张: {e}")

    @staticmethod
    def _finish(
        state: _ExecutionState, status: SubtaskStatus, error: Optional[str] = None
    ) -> WorkerResult:
        return WorkerResult(
            status=status,
            steps=state.steps,
            extraction=state.extraction,
            error=error,
            retry_count=state.retry_count,
        )
