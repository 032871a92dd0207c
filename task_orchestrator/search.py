"""
上下文搜索 - 为规划器收集任务背景信息
"""
from typing import Optional

from loguru import logger

from config.settings import settings
from .exceptions import OracleFault, PlanningError
from .llm_client import LLMClient
from .prompts import SEARCH_SYSTEM_PROMPT


class ContextSearcher:
    """
    任务上下文搜索

    使用方式：
        searcher = ContextSearcher()
        context = await searcher.search("查询 AAPL 当前股价")
    """

    def __init__(self, client: Optional[LLMClient] = None, model: Optional[str] = None) -> None:
        self._client = client or LLMClient()
        self._model = model or settings.search_model

    async def search(self, goal: str) -> str:
        """
        Raises:
            PlanningError: 搜索失败
        """
        messages = [
            {"role": "system", "content": SEARCH_SYSTEM_PROMPT},
            {"role": "user", "content": goal},
        ]
        try:
            context = await self._client.chat(self._model, messages, temperature=0.3)
        except OracleFault as e:
            logger.error(f"❌ [Search] 搜索失败: {e}")
            raise PlanningError(f"Search agent failed: {e}") from e

        logger.debug(f"🔍 [Search] 上下文: {context[:200]}")
        return context
