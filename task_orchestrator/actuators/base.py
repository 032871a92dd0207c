"""
动作执行器抽象基类
"""
from abc import ABC, abstractmethod
from typing import Any

from task_orchestrator.models import Tool

# 获取当前页面地址的 EXTRACT 指令
CURRENT_URL_INSTRUCTION = "return document.location.href"


class Actuator(ABC):
    """
    动作执行器抽象基类

    对外部环境（浏览器会话）执行单个原子动作，返回工具相关的结果：
    导航 / 文本提取返回字符串，OBSERVE 返回列表，SCREENSHOT 返回 base64 图片。
    失败时抛出 ActuatorFault。DONE / FAIL 在进程内处理，不会到达执行器。
    """

    @abstractmethod
    async def execute(self, session_id: str, tool: Tool, instruction: str = "") -> Any:
        """执行单个动作"""
        ...

    async def current_url(self, session_id: str) -> str:
        """
        获取当前页面地址

        默认通过 EXTRACT 读取 document.location.href，子类可覆盖。
        """
        result = await self.execute(session_id, Tool.EXTRACT, CURRENT_URL_INSTRUCTION)
        if isinstance(result, str):
            return result
        if isinstance(result, list) and result:
            return str(result[0])
        raise ValueError(f"unexpected current url payload: {result!r}")
