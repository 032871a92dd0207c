"""
Test configuration
"""
import itertools
import os
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union
from unittest.mock import AsyncMock, MagicMock

import pytest

# Add project root to path
src_path = Path(__file__).parent.parent
sys.path.insert(0, str(src_path))

# Set minimal environment variables for testing
os.environ.setdefault("BROWSER_SERVER_URL", "http://browser.test")
os.environ.setdefault("RETRY_PAUSE_SECONDS", "0")
os.environ.setdefault("POLL_INTERVAL_SECONDS", "0")

from task_orchestrator.actuators.base import Actuator, CURRENT_URL_INSTRUCTION  # noqa: E402
from task_orchestrator.models import PlannedSubtask, Step, TaskPlan, Tool  # noqa: E402
from task_orchestrator.oracle import DecisionOracle, DecisionRequest  # noqa: E402


# ============================================================
# 假的决策 Oracle / 动作执行器
# ============================================================

class ScriptedOracle(DecisionOracle):
    """
    按脚本依次返回步骤

    脚本项可以是 Step（直接返回）或 Exception（抛出）。
    脚本耗尽后返回 default；没有 default 时抛出 AssertionError。
    """

    def __init__(self, script: Optional[List[Union[Step, Exception]]] = None,
                 default: Optional[Step] = None):
        self.script = list(script or [])
        self.default = default
        self.requests: List[DecisionRequest] = []

    async def decide(self, request: DecisionRequest) -> Step:
        self.requests.append(request)
        if self.script:
            item = self.script.pop(0)
        elif self.default is not None:
            item = self.default
        else:
            raise AssertionError("oracle script exhausted")
        if isinstance(item, Exception):
            raise item
        return item


class ScriptedActuator(Actuator):
    """
    记录所有调用的执行器

    results: Tool → 返回值；errors: Tool → 依次抛出的异常列表
    """

    def __init__(self, results: Optional[Dict[Tool, Any]] = None,
                 errors: Optional[Dict[Tool, List[Exception]]] = None,
                 url: str = "https://example.com/page"):
        self.results = dict(results or {})
        self.errors = {tool: list(errs) for tool, errs in (errors or {}).items()}
        self.url = url
        self.calls: List[tuple] = []

    async def execute(self, session_id: str, tool: Tool, instruction: str = "") -> Any:
        self.calls.append((session_id, tool, instruction))
        if tool == Tool.EXTRACT and instruction == CURRENT_URL_INSTRUCTION:
            return self.url
        pending = self.errors.get(tool)
        if pending:
            raise pending.pop(0)
        if tool == Tool.SCREENSHOT:
            return self.results.get(tool, "base64-image")
        return self.results.get(tool)

    @property
    def actions(self) -> List[tuple]:
        """除截图和读取地址之外的动作 (tool, instruction)"""
        return [
            (tool, instruction)
            for _, tool, instruction in self.calls
            if tool != Tool.SCREENSHOT and instruction != CURRENT_URL_INSTRUCTION
        ]


def make_step(tool: Tool, instruction: str = "", text: str = "", reasoning: str = "") -> Step:
    return Step(
        text=text or f"{tool.value} step",
        reasoning=reasoning or "next logical action",
        tool=tool,
        instruction=instruction,
    )


def make_plan(*dependencies: List[int], summary: str = "test plan") -> TaskPlan:
    """make_plan([], [0], [1]) → A, B(依赖 A), C(依赖 B)"""
    return TaskPlan(
        summary=summary,
        subtasks=[
            PlannedSubtask(
                description=f"subtask {chr(ord('A') + i)}",
                goal=f"goal {chr(ord('A') + i)}",
                dependencies=list(deps),
            )
            for i, deps in enumerate(dependencies)
        ],
    )


def finish_subtask(store, task_id: str, subtask_id: str, status, result=None):
    """按合法迁移 PENDING → IN_PROGRESS → 终态 结束一个子任务"""
    from task_orchestrator.models import SubtaskStatus
    store.update_subtask_status(task_id, subtask_id, SubtaskStatus.IN_PROGRESS)
    return store.update_subtask_status(task_id, subtask_id, status, result)


# ============================================================
# Fixtures
# ============================================================

@pytest.fixture
def store():
    """每个用例一个全新的 TaskStore，id 可预测"""
    from task_orchestrator.task_store import TaskStore
    counter = itertools.count(1)
    return TaskStore(tasks={}, id_factory=lambda: f"task-{next(counter)}")


@pytest.fixture
def scripted_oracle() -> Callable[..., ScriptedOracle]:
    return ScriptedOracle


@pytest.fixture
def scripted_actuator() -> Callable[..., ScriptedActuator]:
    return ScriptedActuator


@pytest.fixture
def step_factory() -> Callable[..., Step]:
    return make_step


@pytest.fixture
def plan_factory() -> Callable[..., TaskPlan]:
    return make_plan


@pytest.fixture
def worker_factory():
    """构建不等待的 SubtaskWorker"""
    from task_orchestrator.worker import SubtaskWorker

    def _build(oracle, actuator, **kwargs):
        kwargs.setdefault("retry_pause_seconds", 0)
        kwargs.setdefault("sleep", AsyncMock())
        return SubtaskWorker(oracle, actuator, **kwargs)

    return _build


@pytest.fixture
def http_session_factory():
    """
    构建可替换 aiohttp.ClientSession 的 mock

    用法：
        with patch("aiohttp.ClientSession", return_value=http_session_factory(200, {...})):
    """

    def _build(status: int = 200, json_data: Any = None, text: str = ""):
        mock_resp = MagicMock()
        mock_resp.status = status
        mock_resp.json = AsyncMock(return_value=json_data)
        mock_resp.text = AsyncMock(return_value=text)

        post_cm = MagicMock()
        post_cm.__aenter__ = AsyncMock(return_value=mock_resp)
        post_cm.__aexit__ = AsyncMock(return_value=False)

        mock_session = MagicMock()
        mock_session.post = MagicMock(return_value=post_cm)

        session_cm = MagicMock()
        session_cm.__aenter__ = AsyncMock(return_value=mock_session)
        session_cm.__aexit__ = AsyncMock(return_value=False)
        session_cm.session = mock_session
        return session_cm

    return _build
