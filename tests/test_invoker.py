"""
Tests for the completion client and the agent invoker.
"""

import json

import httpx
import pytest

from agent_office.agents.invoker import PRIOR_RESULT_SEPARATOR, AgentInvoker
from agent_office.agents.personas import PERSONAS, get_persona
from agent_office.llm_client import CompletionClient, CompletionError
from agent_office.llm_providers import LLMProvider, ProviderConfig
from agent_office.models import AgentRole


def provider_config():
    return ProviderConfig(
        provider=LLMProvider.ZHIPU,
        model_name="glm-4-flash",
        base_url="https://llm.test/api/paas/v4",
        api_key="secret",
    )


def completion_client(handler):
    return CompletionClient(provider_config(), transport=httpx.MockTransport(handler))


def ok_handler(captured):
    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200, json={
            "model": "glm-4-flash",
            "choices": [{"message": {"role": "assistant", "content": "done"}}],
            "usage": {"total_tokens": 17},
        })
    return handler


class TestCompletionClient:
    """Request shape and error mapping."""

    @pytest.mark.asyncio
    async def test_posts_chat_completion(self):
        captured = []
        async with completion_client(ok_handler(captured)) as client:
            response = await client.complete([{"role": "user", "content": "hi"}])

        assert response.content == "done"
        assert response.total_tokens == 17
        request = captured[0]
        assert request.url.path == "/api/paas/v4/chat/completions"
        assert request.headers["Authorization"] == "Bearer secret"
        body = json.loads(request.content)
        assert body["model"] == "glm-4-flash"
        assert body["temperature"] == 0.7
        assert body["max_tokens"] == 4096

    @pytest.mark.asyncio
    async def test_error_payload_becomes_completion_error(self):
        def handler(request):
            return httpx.Response(401, json={"error": {"message": "invalid api key"}})

        async with completion_client(handler) as client:
            with pytest.raises(CompletionError) as exc_info:
                await client.complete([{"role": "user", "content": "hi"}])

        assert exc_info.value.status_code == 401
        assert "invalid api key" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_transport_error_becomes_completion_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with completion_client(handler) as client:
            with pytest.raises(CompletionError):
                await client.complete([{"role": "user", "content": "hi"}])

    @pytest.mark.asyncio
    async def test_test_connection_reports_failure(self):
        def handler(request):
            return httpx.Response(500, text="oops")

        async with completion_client(handler) as client:
            result = await client.test_connection()

        assert result["success"] is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [
        ["unexpected"],
        {"choices": ["done"]},
        {"choices": [{"message": "done"}]},
        {"choices": {"message": {"content": "done"}}},
        {"choices": [{"message": {"content": ["done"]}}]},
    ])
    async def test_malformed_body_becomes_completion_error(self, body):
        """A 200 whose JSON lacks the chat-completions shape is a CompletionError."""
        def handler(request):
            return httpx.Response(200, json=body)

        async with completion_client(handler) as client:
            with pytest.raises(CompletionError, match="unexpected payload"):
                await client.complete([{"role": "user", "content": "hi"}])

    @pytest.mark.asyncio
    async def test_odd_usage_and_model_are_ignored(self):
        def handler(request):
            return httpx.Response(200, json={
                "model": None,
                "choices": [{"message": {"content": "done"}}],
                "usage": "n/a",
            })

        async with completion_client(handler) as client:
            response = await client.complete([{"role": "user", "content": "hi"}])

        assert response.content == "done"
        assert response.model == "glm-4-flash"
        assert response.total_tokens is None


class TestAgentInvoker:
    """One completion call per task; failures returned as data."""

    @pytest.mark.asyncio
    async def test_single_call_with_persona_and_context(self):
        captured = []
        async with completion_client(ok_handler(captured)) as client:
            invoker = AgentInvoker(client)
            result = await invoker.execute(
                AgentRole.translator,
                "translator-1",
                "Translate the summary",
                context="Chinese news summary",
                prior_results=["first", "second"],
            )

        assert result.success is True
        assert result.content == "done"
        assert result.metadata.tokens_used == 17
        assert result.metadata.model == "glm-4-flash"
        assert len(captured) == 1

        messages = json.loads(captured[0].content)["messages"]
        assert messages[0]["role"] == "system"
        assert "Translate-Bot" in messages[0]["content"]
        user = messages[1]["content"]
        assert user.startswith("Task: Translate the summary")
        assert "Context:\nChinese news summary" in user
        assert f"first{PRIOR_RESULT_SEPARATOR}second" in user

    @pytest.mark.asyncio
    async def test_endpoint_error_returns_failed_result(self):
        def handler(request):
            return httpx.Response(503, json={"error": "overloaded"})

        async with completion_client(handler) as client:
            result = await AgentInvoker(client).execute(AgentRole.pm, "pm-1", "Plan it")

        assert result.success is False
        assert "503" in result.error
        assert result.metadata.processing_time_ms is not None

    @pytest.mark.asyncio
    async def test_malformed_body_returns_failed_result(self):
        def handler(request):
            return httpx.Response(200, json=["unexpected"])

        async with completion_client(handler) as client:
            result = await AgentInvoker(client).execute(AgentRole.developer, "dev-1", "Build it")

        assert result.success is False
        assert "unexpected payload" in result.error

    @pytest.mark.asyncio
    async def test_missing_client_returns_failed_result(self):
        invoker = AgentInvoker()

        result = await invoker.execute(AgentRole.pm, "pm-1", "Plan it")

        assert invoker.ready is False
        assert result.success is False
        assert result.error == "Completion endpoint not configured"

    def test_messages_without_context(self):
        messages = AgentInvoker().build_messages(AgentRole.writer, "Write it")

        assert messages[1]["content"] == "Task: Write it"


class TestPersonas:
    """Every role has a persona."""

    def test_every_role_has_persona(self):
        assert set(PERSONAS) == set(AgentRole)

    def test_developer_persona_asks_for_file_paths(self):
        prompt = get_persona(AgentRole.developer).system_prompt()
        assert "File: <relative/path>" in prompt
