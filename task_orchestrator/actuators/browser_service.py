"""
浏览器服务执行器 - 通过 browser automation server 执行动作

所有浏览器操作通过 HTTP API 调用浏览器服务完成：
POST {browser_server_url}/browser  {"action": "goto", "sessionId": "...", "instruction": "..."}

服务返回：
- 成功：{"success": true, "data": <工具相关结果>}
- 失败：{"success": false, "error": "<原始错误>"}

失败会被转义为带【建议】的可读错误后以 ActuatorFault 抛出，
执行循环把错误信息带进下一轮决策。
"""
import re
from typing import Any, Dict, Optional

import aiohttp
from loguru import logger

from config.settings import settings
from task_orchestrator.actuators.base import Actuator
from task_orchestrator.exceptions import ActuatorFault
from task_orchestrator.models import Tool

# 只在进程内处理、不允许发往浏览器服务的工具
_IN_PROCESS_TOOLS = (Tool.DONE, Tool.FAIL)


# ============================================================
# 错误转义层 - 将浏览器服务原始错误转为可读提示
# ============================================================

def to_readable_error(error_msg: str, tool: Optional[Tool] = None) -> str:
    """
    将浏览器服务原始错误转为带建议的可读提示

    覆盖以下典型场景：
    1. strict mode violation - 指令匹配到多个元素
    2. 元素不可见 / 等待可见超时
    3. 元素被遮挡
    4. 导航 / 操作超时
    5. 元素已从 DOM 移除

    Args:
        error_msg: 浏览器服务返回的原始错误字符串
        tool: 当前执行的工具

    Returns:
        str: 可读的错误提示
    """
    tool_hint = f" ({tool.value})" if tool else ""

    if "strict mode violation" in error_msg:
        count_match = re.search(r"resolved to (\d+) elements", error_msg)
        count = count_match.group(1) if count_match else "多个"
        return (
            f"操作{tool_hint}匹配到了 {count} 个元素，无法确定目标。"
            f"【建议】先 OBSERVE 查看页面元素，再给出更具体的指令。"
        )

    if ("Timeout" in error_msg or "waiting for" in error_msg) and \
       ("to be visible" in error_msg or "not visible" in error_msg):
        return (
            f"操作{tool_hint}的目标元素未找到或不可见（页面可能尚未加载完成）。"
            f"【建议】先 WAIT 一段时间，再 SCREENSHOT 确认页面状态。"
        )

    if "intercepts pointer events" in error_msg or \
       "not receive pointer events" in error_msg:
        return (
            f"操作{tool_hint}的目标元素被其他元素遮挡。"
            f"【建议】先关闭弹窗 / 遮罩层，或滚动页面后重试。"
        )

    if "detached" in error_msg.lower() or "no longer attached" in error_msg.lower():
        return (
            f"操作{tool_hint}的目标元素已从页面移除（页面发生了导航或动态更新）。"
            f"【建议】SCREENSHOT 查看最新页面后重新决定操作。"
        )

    if "timeout" in error_msg.lower():
        return (
            f"操作{tool_hint}超时，页面状态可能已变化。"
            f"【建议】SCREENSHOT 查看当前页面状态后再操作。"
        )

    return (
        f"操作失败{tool_hint}: {error_msg[:300]}。"
        f"【建议】SCREENSHOT 查看当前页面状态后重试。"
    )


class BrowserServiceActuator(Actuator):
    """
    浏览器服务执行器

    通过 HTTP 调用浏览器服务，对指定会话执行单个动作。
    """

    def __init__(
        self,
        server_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        self._server_url = (server_url or settings.browser_server_url).rstrip("/")
        self._timeout = aiohttp.ClientTimeout(
            total=timeout_seconds if timeout_seconds is not None else settings.browser_timeout_seconds
        )

    async def execute(self, session_id: str, tool: Tool, instruction: str = "") -> Any:
        """
        执行单个动作

        Raises:
            ValueError: DONE / FAIL 不应发往浏览器服务
            ActuatorFault: 浏览器服务不可达或返回失败
        """
        if tool in _IN_PROCESS_TOOLS:
            raise ValueError(f"{tool.value} is handled in-process and never reaches the browser")

        payload: Dict[str, Any] = {
            "action": tool.value.lower(),
            "sessionId": session_id,
            "instruction": instruction,
        }
        summary = instruction[:50] + ("..." if len(instruction) > 50 else "")
        logger.debug(f"🌐 [BrowserService] {tool.value}: {summary}")

        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    f"{self._server_url}/browser",
                    json=payload,
                    timeout=self._timeout,
                ) as resp:
                    if resp.status != 200:
                        error_text = await resp.text()
                        friendly = to_readable_error(error_text, tool)
                        logger.error(
                            f"❌ [BrowserService] {tool.value} HTTP {resp.status}: {friendly}"
                        )
                        raise ActuatorFault(friendly)

                    result = await resp.json()

        except aiohttp.ClientConnectorError as e:
            error_msg = (
                f"无法连接到浏览器服务 ({self._server_url})。"
                f"请确保浏览器服务已启动。"
            )
            logger.error(f"❌ [BrowserService] {error_msg}")
            raise ActuatorFault(error_msg) from e
        except ActuatorFault:
            raise
        except Exception as e:
            friendly = to_readable_error(str(e), tool)
            logger.error(f"❌ [BrowserService] {tool.value} 执行异常: {friendly}")
            raise ActuatorFault(friendly) from e

        if not isinstance(result, dict):
            raise ActuatorFault(f"浏览器服务返回了非法结果: {str(result)[:200]}")

        if not result.get("success", True):
            friendly = to_readable_error(str(result.get("error", "unknown error")), tool)
            logger.warning(f"❌ [BrowserService] {tool.value} 执行失败: {friendly}")
            raise ActuatorFault(friendly)

        logger.debug(f"✅ [BrowserService] {tool.value} 完成")
        return result.get("data")
