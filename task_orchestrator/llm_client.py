"""
LLM 客户端 - OpenAI 兼容的 /v1/chat/completions 调用

规划器、上下文搜索和决策 LLM 共用。
所有失败（未配置、网络、HTTP 非 200、响应无法解析）统一抛出 OracleFault。
"""
import asyncio
import json
import time
from typing import Any, Dict, List, Optional

import aiohttp
from loguru import logger

from config.settings import settings
from .exceptions import OracleFault


class _MinuteThrottle:
    """每分钟限流，窗口到期自动重置计数"""

    def __init__(self, max_per_minute: int) -> None:
        self._max = max_per_minute
        self._count = 0
        self._window_start = time.monotonic()
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        async with self._lock:
            now = time.monotonic()
            if now - self._window_start >= 60:
                self._window_start = now
                self._count = 0
            if self._count >= self._max:
                wait = 60 - (now - self._window_start)
                logger.warning(f"⏳ [LLMClient] 达到每分钟调用上限 ({self._max})，等待 {wait:.1f}s")
                await asyncio.sleep(wait)
                self._window_start = time.monotonic()
                self._count = 0
            self._count += 1


def extract_json(content: str) -> Any:
    """
    解析 LLM 返回的 JSON（处理可能的 markdown 代码块包裹）

    Raises:
        ValueError: 无法解析
    """
    json_str = content.strip()
    if "```" in json_str:
        start = json_str.find("{")
        end = json_str.rfind("}") + 1
        if start != -1 and end > start:
            json_str = json_str[start:end]
    try:
        return json.loads(json_str)
    except (json.JSONDecodeError, TypeError) as e:
        raise ValueError(f"invalid JSON from LLM: {e}") from e


class LLMClient:
    """
    OpenAI 兼容 chat-completions 客户端

    使用方式：
        client = LLMClient()
        data = await client.chat_json("gpt-4o", messages)
    """

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_token: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_per_minute: Optional[int] = None,
    ) -> None:
        self._api_url = api_url or settings.llm_api_url
        self._api_token = api_token if api_token is not None else settings.llm_api_token
        self._timeout = aiohttp.ClientTimeout(
            total=timeout_seconds if timeout_seconds is not None else settings.llm_timeout_seconds
        )
        self._throttle = _MinuteThrottle(max_per_minute or settings.llm_max_per_minute)

    async def chat(
        self,
        model: str,
        messages: List[Dict[str, Any]],
        json_mode: bool = False,
        temperature: float = 0.1,
    ) -> str:
        """
        调用 chat-completions，返回 assistant 文本

        Raises:
            OracleFault: 调用失败
        """
        if not self._api_url:
            raise OracleFault("LLM API URL 未配置 (LLM_API_URL)")

        url = f"{self._api_url.rstrip('/')}/v1/chat/completions"
        payload: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        headers = {"Content-Type": "application/json"}
        if self._api_token:
            headers["Authorization"] = f"Bearer {self._api_token}"

        await self._throttle.acquire()
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(
                    url,
                    json=payload,
                    headers=headers,
                    timeout=self._timeout,
                ) as resp:
                    if resp.status != 200:
                        error_text = await resp.text()
                        logger.warning(
                            f"⚠️ [LLMClient] LLM API 返回 HTTP {resp.status}: {error_text[:200]}"
                        )
                        raise OracleFault(f"LLM API HTTP {resp.status}: {error_text[:200]}")

                    data = await resp.json()
        except OracleFault:
            raise
        except Exception as e:
            logger.error(f"❌ [LLMClient] LLM 调用异常: {e}")
            raise OracleFault(f"LLM 调用异常: {e}") from e

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise OracleFault(f"LLM 响应结构异常: {str(data)[:200]}") from e
        if not content:
            raise OracleFault("LLM 返回了空内容")
        return content.strip()

    async def chat_json(
        self,
        model: str,
        messages: List[Dict[str, Any]],
        temperature: float = 0.1,
    ) -> Any:
        """
        调用 chat-completions 并解析 JSON

        Raises:
            OracleFault: 调用失败或无法解析 JSON
        """
        content = await self.chat(model, messages, json_mode=True, temperature=temperature)
        try:
            return extract_json(content)
        except ValueError as e:
            logger.warning(f"⚠️ [LLMClient] JSON 解析失败: {e}, content='{content[:200]}'")
            raise OracleFault(str(e)) from e
