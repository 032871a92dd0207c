"""
决策 Oracle 单元测试
"""
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import make_step


def _request(**overrides):
    from task_orchestrator.oracle import DecisionRequest
    kwargs = dict(
        overall_goal="查询 AAPL 当前股价",
        subtask_id="subtask-1",
        subtask_goal="打开行情页",
        subtask_description="进入 AAPL 行情页面",
    )
    kwargs.update(overrides)
    return DecisionRequest(**kwargs)


class TestDecisionPrompt:
    """测试 build_decision_prompt"""

    def test_minimal_prompt(self):
        from task_orchestrator.oracle import build_decision_prompt
        prompt = build_decision_prompt(_request())
        assert "OVERALL TASK GOAL: 查询 AAPL 当前股价" in prompt
        assert "YOUR SUBTASK GOAL: 打开行情页" in prompt
        assert "CURRENT URL: unknown" in prompt
        assert "PREVIOUS STEPS" not in prompt
        assert "WARNING" not in prompt

    def test_plan_context_rendered(self):
        from task_orchestrator.models import PlanContext, Subtask
        from task_orchestrator.oracle import build_decision_prompt
        other = Subtask(
            id="subtask-2", description="读价格", goal="提取价格", dependencies=["subtask-1"],
        )
        ctx = PlanContext(
            plan_description="先打开页面再读价格",
            subtask_position=1,
            total_subtasks=2,
            other_subtasks=[other],
        )
        prompt = build_decision_prompt(_request(plan_context=ctx))
        assert "PLAN DESCRIPTION: 先打开页面再读价格" in prompt
        assert "YOUR SUBTASK POSITION: 1 of 2" in prompt
        assert "- 提取价格 [PENDING] (depends on your subtask)" in prompt

    def test_previous_steps_and_extraction(self):
        from task_orchestrator.models import Tool
        from task_orchestrator.oracle import build_decision_prompt
        prompt = build_decision_prompt(_request(
            previous_steps=[make_step(Tool.GOTO, "https://quote.example.com", text="Open quote page")],
            previous_extraction={"price": "$131.00"},
            current_url="https://quote.example.com",
        ))
        assert "Step 1: Open quote page" in prompt
        assert "Tool: GOTO" in prompt
        assert '"price": "$131.00"' in prompt
        assert "CURRENT URL: https://quote.example.com" in prompt

    def test_loop_warning(self):
        from task_orchestrator.models import Tool
        from task_orchestrator.oracle import build_decision_prompt
        steps = [make_step(Tool.ACT, "click"), make_step(Tool.ACT, "click"), make_step(Tool.ACT, "click")]
        prompt = build_decision_prompt(_request(previous_steps=steps))
        assert "WARNING" in prompt


class TestLLMDecisionOracle:
    """测试 LLMDecisionOracle"""

    @pytest.mark.asyncio
    async def test_decide_parses_step(self):
        from task_orchestrator.models import Tool
        from task_orchestrator.oracle import LLMDecisionOracle
        client = MagicMock()
        client.chat_json = AsyncMock(return_value={
            "text": "Open the quote page",
            "reasoning": "Need to see the price",
            "tool": "GOTO",
            "instruction": "https://quote.example.com/AAPL",
        })
        oracle = LLMDecisionOracle(client=client, model="test-model")
        step = await oracle.decide(_request())

        assert step.tool == Tool.GOTO
        assert step.instruction == "https://quote.example.com/AAPL"
        model, messages = client.chat_json.call_args.args
        assert model == "test-model"
        assert messages[0]["role"] == "system"

    @pytest.mark.asyncio
    async def test_screenshot_attached_as_image(self):
        from task_orchestrator.oracle import LLMDecisionOracle
        client = MagicMock()
        client.chat_json = AsyncMock(return_value={"tool": "SCREENSHOT"})
        oracle = LLMDecisionOracle(client=client, model="m")
        await oracle.decide(_request(screenshot="iVBORw0KGgo"))

        _, messages = client.chat_json.call_args.args
        content = messages[1]["content"]
        assert content[1]["type"] == "image_url"
        assert content[1]["image_url"]["url"] == "data:image/png;base64,iVBORw0KGgo"

    @pytest.mark.asyncio
    async def test_invalid_tool_raises_oracle_fault(self):
        from task_orchestrator.exceptions import OracleFault
        from task_orchestrator.oracle import LLMDecisionOracle
        client = MagicMock()
        client.chat_json = AsyncMock(return_value={"tool": "SCROLL"})
        oracle = LLMDecisionOracle(client=client, model="m")
        with pytest.raises(OracleFault):
            await oracle.decide(_request())

    @pytest.mark.asyncio
    async def test_client_fault_propagates(self):
        from task_orchestrator.exceptions import OracleFault
        from task_orchestrator.oracle import LLMDecisionOracle
        client = MagicMock()
        client.chat_json = AsyncMock(side_effect=OracleFault("HTTP 500"))
        oracle = LLMDecisionOracle(client=client, model="m")
        with pytest.raises(OracleFault, match="HTTP 500"):
            await oracle.decide(_request())
