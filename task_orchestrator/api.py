"""
任务编排 HTTP 服务

统一入口 POST /agent，根据 action 字段分发：
- PLAN_TASK：规划任务
- GET_WORKER_TASK：认领下一个子任务
- EXECUTE_WORKER_TASK：执行已认领的子任务
- GET_TASK_STATUS：查询任务状态与进度

旧版单循环（不经过规划，调用方逐步驱动同一个会话）：
- START：选择起始 URL 并打开
- GET_NEXT_STEP：决定下一步，done 表示返回了 CLOSE
- EXECUTE_STEP：执行调用方传回的步骤
"""
import json
from typing import Any, Dict, List, Optional

from aiohttp import web
from loguru import logger

from .exceptions import (
    ClaimConflictError,
    InvalidPlanError,
    InvalidStatusTransitionError,
    NotFoundError,
    PlanningError,
)
from .models import Step, Tool
from .orchestrator import TaskOrchestrator
from .session_agent import SessionAgent

ORCHESTRATOR_KEY = web.AppKey("orchestrator", TaskOrchestrator)
SESSION_AGENT_KEY = web.AppKey("session_agent", SessionAgent)

REQUIRED_PARAMS: Dict[str, List[str]] = {
    "START": ["goal", "sessionId"],
    "GET_NEXT_STEP": ["goal", "sessionId"],
    "EXECUTE_STEP": ["sessionId", "step"],
    "PLAN_TASK": ["goal"],
    "GET_WORKER_TASK": ["taskId", "workerId"],
    "EXECUTE_WORKER_TASK": ["taskId", "workerId", "subtaskId"],
    "GET_TASK_STATUS": ["taskId"],
}


def safe_json_response(data, status=200):
    return web.json_response(
        data,
        status=status,
        dumps=lambda x: json.dumps(x, ensure_ascii=False)
    )


def _error(message: str, status: int) -> web.Response:
    return safe_json_response({"success": False, "error": message}, status=status)


def _parse_steps(raw: Any) -> List[Step]:
    """
    Raises:
        ValueError: 不是步骤列表或步骤不合法
    """
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValueError("previousSteps must be a list")
    return [Step.from_dict(item) for item in raw]


# ==================== 旧版单循环处理器 ====================

async def _start(app: web.Application, data: Dict[str, Any]) -> web.Response:
    agent = app[SESSION_AGENT_KEY]
    try:
        step = await agent.start(data["goal"], data["sessionId"])
    except Exception as e:
        logger.error(f"❌ [API] START 失败: {e}")
        return _error(f"Start failed: {e}", 500)
    return safe_json_response({"success": True, "result": step.to_dict(), "done": False})


async def _get_next_step(app: web.Application, data: Dict[str, Any]) -> web.Response:
    try:
        previous_steps = _parse_steps(data.get("previousSteps"))
    except ValueError as e:
        return _error(f"Invalid previousSteps: {e}", 400)

    agent = app[SESSION_AGENT_KEY]
    try:
        step = await agent.next_step(
            data["goal"],
            data["sessionId"],
            previous_steps,
            data.get("previousExtraction"),
        )
    except Exception as e:
        logger.error(f"❌ [API] Get next step failed: {e}")
        return _error(f"Get next step failed: {e}", 500)
    return safe_json_response({
        "success": True,
        "result": step.to_dict(),
        "done": step.tool == Tool.CLOSE,
    })


async def _execute_step(app: web.Application, data: Dict[str, Any]) -> web.Response:
    try:
        step = Step.from_dict(data["step"])
    except ValueError as e:
        return _error(f"Invalid step: {e}", 400)

    agent = app[SESSION_AGENT_KEY]
    try:
        result = await agent.execute_step(data["sessionId"], step)
    except Exception as e:
        logger.error(f"❌ [API] Execute step failed: {e}")
        return _error(f"Execute step failed: {e}", 500)
    return safe_json_response({
        "success": True,
        "result": result,
        "done": step.tool == Tool.CLOSE,
    })


# ==================== 规划 / worker 处理器 ====================

async def _plan_task(app: web.Application, data: Dict[str, Any]) -> web.Response:
    task_id, plan = await app[ORCHESTRATOR_KEY].plan_task(data["goal"], data.get("sessionId"))
    return safe_json_response({"success": True, "taskId": task_id, "plan": plan.to_dict()})


async def _get_worker_task(app: web.Application, data: Dict[str, Any]) -> web.Response:
    assignment = app[ORCHESTRATOR_KEY].claim_next_subtask(data["taskId"], data["workerId"])
    if assignment is None:
        return safe_json_response({"success": True, "hasTask": False})
    return safe_json_response({"success": True, "hasTask": True, **assignment.to_dict()})


async def _execute_worker_task(app: web.Application, data: Dict[str, Any]) -> web.Response:
    result = await app[ORCHESTRATOR_KEY].run_claimed_subtask(
        data["taskId"],
        data["subtaskId"],
        data.get("sessionId"),
        worker_id=data["workerId"],
    )
    return safe_json_response({"success": True, "result": result.to_dict()})


async def _get_task_status(app: web.Application, data: Dict[str, Any]) -> web.Response:
    view = app[ORCHESTRATOR_KEY].task_status(data["taskId"])
    return safe_json_response({
        "success": True,
        "status": view.status.value,
        "progress": view.progress.to_dict(),
    })


_HANDLERS = {
    "START": _start,
    "GET_NEXT_STEP": _get_next_step,
    "EXECUTE_STEP": _execute_step,
    "PLAN_TASK": _plan_task,
    "GET_WORKER_TASK": _get_worker_task,
    "EXECUTE_WORKER_TASK": _execute_worker_task,
    "GET_TASK_STATUS": _get_task_status,
}


# ==================== HTTP 路由处理器 ====================

async def health_handler(request: web.Request) -> web.Response:
    """健康检查端点"""
    store = request.app[ORCHESTRATOR_KEY].store
    return safe_json_response({"status": "ok", "tasks": len(store.list_tasks())})


async def agent_handler(request: web.Request) -> web.Response:
    """
    统一入口

    根据 action 字段分发到对应的处理器
    """
    try:
        data = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return _error("Invalid JSON body", 400)
    if not isinstance(data, dict):
        return _error("Request body must be a JSON object", 400)

    action = data.get("action")
    if not action:
        return _error("Missing 'action' parameter", 400)

    handler = _HANDLERS.get(action)
    if handler is None:
        return _error(f"Unknown action: {action}", 400)

    missing = [name for name in REQUIRED_PARAMS[action] if not data.get(name)]
    if missing:
        return _error(f"Missing required parameters: {', '.join(missing)}", 400)

    logger.info(f"📥 [API] 收到请求: action={action}")
    try:
        return await handler(request.app, data)
    except NotFoundError as e:
        return _error(str(e), 404)
    except (InvalidStatusTransitionError, ClaimConflictError) as e:
        logger.warning(f"⚠️ [API] {action} 被拒绝: {e}")
        return _error(str(e), 409)
    except (InvalidPlanError, PlanningError) as e:
        logger.error(f"❌ [API] 规划失败: {e}")
        return _error(str(e), 500)
    except Exception as e:
        logger.exception(f"❌ [API] {action} 处理异常: {e}")
        return _error(str(e), 500)


# ==================== 应用初始化 ====================

def create_app(
    orchestrator: Optional[TaskOrchestrator] = None,
    session_agent: Optional[SessionAgent] = None,
) -> web.Application:
    """创建 aiohttp 应用"""
    app = web.Application()
    app[ORCHESTRATOR_KEY] = orchestrator or TaskOrchestrator()
    app[SESSION_AGENT_KEY] = session_agent or SessionAgent()

    app.router.add_get("/", health_handler)
    app.router.add_get("/health", health_handler)
    app.router.add_post("/agent", agent_handler)

    return app
