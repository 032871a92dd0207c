"""
LLMClient 单元测试
"""
from unittest.mock import patch

import aiohttp
import pytest


class TestExtractJson:
    """测试 extract_json"""

    def test_plain_json(self):
        from task_orchestrator.llm_client import extract_json
        assert extract_json('{"tool": "DONE"}') == {"tool": "DONE"}

    def test_markdown_fenced(self):
        from task_orchestrator.llm_client import extract_json
        content = '```json\n{"summary": "s", "subtasks": []}\n```'
        assert extract_json(content) == {"summary": "s", "subtasks": []}

    def test_invalid(self):
        from task_orchestrator.llm_client import extract_json
        with pytest.raises(ValueError):
            extract_json("not json at all")


class TestLLMClient:
    """测试 chat / chat_json"""

    @pytest.mark.asyncio
    async def test_chat_returns_content(self, http_session_factory):
        from task_orchestrator.llm_client import LLMClient
        client = LLMClient(api_url="http://llm.test", api_token="tok", max_per_minute=100)
        session_cm = http_session_factory(200, {"choices": [{"message": {"content": " hello "}}]})

        with patch("aiohttp.ClientSession", return_value=session_cm):
            content = await client.chat("gpt-4o", [{"role": "user", "content": "hi"}])

        assert content == "hello"
        call = session_cm.session.post.call_args
        assert call.args[0] == "http://llm.test/v1/chat/completions"
        assert call.kwargs["headers"]["Authorization"] == "Bearer tok"
        assert call.kwargs["json"]["model"] == "gpt-4o"
        assert "response_format" not in call.kwargs["json"]

    @pytest.mark.asyncio
    async def test_chat_json(self, http_session_factory):
        from task_orchestrator.llm_client import LLMClient
        client = LLMClient(api_url="http://llm.test", max_per_minute=100)
        session_cm = http_session_factory(
            200, {"choices": [{"message": {"content": '{"tool": "WAIT", "instruction": "1000"}'}}]}
        )

        with patch("aiohttp.ClientSession", return_value=session_cm):
            data = await client.chat_json("gpt-4o", [])

        assert data == {"tool": "WAIT", "instruction": "1000"}
        payload = session_cm.session.post.call_args.kwargs["json"]
        assert payload["response_format"] == {"type": "json_object"}

    @pytest.mark.asyncio
    async def test_unconfigured(self):
        from config.settings import settings
        from task_orchestrator.exceptions import OracleFault
        from task_orchestrator.llm_client import LLMClient
        with patch.object(settings, "llm_api_url", None):
            client = LLMClient(max_per_minute=100)
            with pytest.raises(OracleFault, match="未配置"):
                await client.chat("gpt-4o", [])

    @pytest.mark.asyncio
    async def test_http_error(self, http_session_factory):
        from task_orchestrator.exceptions import OracleFault
        from task_orchestrator.llm_client import LLMClient
        client = LLMClient(api_url="http://llm.test", max_per_minute=100)
        with patch("aiohttp.ClientSession", return_value=http_session_factory(500, text="overloaded")):
            with pytest.raises(OracleFault, match="HTTP 500"):
                await client.chat("gpt-4o", [])

    @pytest.mark.asyncio
    async def test_network_error(self, http_session_factory):
        from task_orchestrator.exceptions import OracleFault
        from task_orchestrator.llm_client import LLMClient
        client = LLMClient(api_url="http://llm.test", max_per_minute=100)
        session_cm = http_session_factory()
        session_cm.session.post.side_effect = aiohttp.ClientError("连接失败")
        with patch("aiohttp.ClientSession", return_value=session_cm):
            with pytest.raises(OracleFault, match="连接失败"):
                await client.chat("gpt-4o", [])

    @pytest.mark.asyncio
    async def test_empty_content(self, http_session_factory):
        from task_orchestrator.exceptions import OracleFault
        from task_orchestrator.llm_client import LLMClient
        client = LLMClient(api_url="http://llm.test", max_per_minute=100)
        session_cm = http_session_factory(200, {"choices": [{"message": {"content": ""}}]})
        with patch("aiohttp.ClientSession", return_value=session_cm):
            with pytest.raises(OracleFault):
                await client.chat("gpt-4o", [])

    @pytest.mark.asyncio
    async def test_bad_json_content(self, http_session_factory):
        from task_orchestrator.exceptions import OracleFault
        from task_orchestrator.llm_client import LLMClient
        client = LLMClient(api_url="http://llm.test", max_per_minute=100)
        session_cm = http_session_factory(200, {"choices": [{"message": {"content": "I think GOTO"}}]})
        with patch("aiohttp.ClientSession", return_value=session_cm):
            with pytest.raises(OracleFault):
                await client.chat_json("gpt-4o", [])
