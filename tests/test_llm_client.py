"""Tests for the multi-provider LLM client."""
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from agentkit.core.planning import PlanDraft
from agentkit.llms.multi_llm_client import (
    LLMConfig,
    LLMProvider,
    LocalAdapter,
    MultiLLMClient,
    ProviderStatus,
    extract_json,
)


def completion(content, parsed=None):
    message = SimpleNamespace(content=content, parsed=parsed, refusal=None)
    return SimpleNamespace(
        choices=[SimpleNamespace(message=message, finish_reason="stop")],
        usage=SimpleNamespace(prompt_tokens=7, completion_tokens=3, total_tokens=10),
    )


def stub_sdk(create=None, parse=None):
    client = MagicMock()
    client.chat.completions.create = create or AsyncMock()
    client.chat.completions.parse = parse or AsyncMock()
    return client


@pytest.fixture
def offline_client():
    return MultiLLMClient(LLMConfig())


@pytest.fixture
def openai_client():
    client = MultiLLMClient(LLMConfig(openai_api_key="sk-test", fallback_order=["openai", "local"]))
    client.adapters[LLMProvider.OPENAI].client = stub_sdk()
    return client


class TestExtractJson:

    def test_plain_and_fenced(self):
        assert extract_json('{"a": 1}') == {"a": 1}
        assert extract_json('```json\n{"a": [1, 2]}\n```') == {"a": [1, 2]}

    def test_embedded_object(self):
        assert extract_json('Sure! Here it is: {"agents": ["WebAgent"]} Hope that helps.') == {"agents": ["WebAgent"]}

    def test_non_objects(self):
        assert extract_json(None) is None
        assert extract_json("[1, 2]") is None
        assert extract_json("no json here") is None


class TestLocalAdapter:

    @pytest.mark.asyncio
    async def test_echo_condenses_prompt(self):
        adapter = LocalAdapter(LLMConfig())
        response = await adapter.generate("  hello \n\n world  ")
        assert response.success is True
        assert response.text == "hello world"
        assert response.model == "echo"

    @pytest.mark.asyncio
    async def test_last_user_message_wins(self):
        adapter = LocalAdapter(LLMConfig())
        messages = [{"role": "user", "content": "first"}, {"role": "assistant", "content": "x"},
                    {"role": "user", "content": "second"}]
        assert (await adapter.generate("ignored", messages=messages)).text == "second"

    @pytest.mark.asyncio
    async def test_structured_output_fails_on_echo(self):
        response = await LocalAdapter(LLMConfig()).generate_structured("not json", PlanDraft)
        assert response.success is False
        assert response.error_type == "ParseError"


class TestMultiLLMClient:

    def test_only_local_without_keys(self, offline_client):
        assert offline_client.get_available_providers() == ["local"]
        assert offline_client.is_provider_available(LLMProvider.OPENAI) is False

    @pytest.mark.asyncio
    async def test_falls_back_to_local(self, offline_client):
        result = await offline_client.generate("ping", provider=LLMProvider.OPENROUTER)
        assert result["success"] is True
        assert result["provider"] == "local"
        assert result["text"] == "ping"

    @pytest.mark.asyncio
    async def test_no_fallback(self, offline_client):
        result = await offline_client.generate("ping", provider=LLMProvider.OPENAI, enable_fallback=False)
        assert result["success"] is False

    @pytest.mark.asyncio
    async def test_structured_never_uses_local(self, offline_client):
        result = await offline_client.generate_structured("plan", PlanDraft, enable_fallback=True)
        assert result["success"] is False
        assert result["parsed"] is None
        assert "not available" in result["error"]

    @pytest.mark.asyncio
    async def test_generate_json(self, offline_client):
        assert await offline_client.generate_json('{"ok": true}') == {"ok": True}

    @pytest.mark.asyncio
    async def test_openai_generate(self, openai_client):
        sdk = openai_client.adapters[LLMProvider.OPENAI].client
        sdk.chat.completions.create.return_value = completion("Hello!")

        result = await openai_client.generate("hi", system_prompt="be nice", provider=LLMProvider.OPENAI,
                                              model="gpt-4o", temperature=0.3, ignored=True)

        assert result["text"] == "Hello!"
        assert result["usage"] == {"input_tokens": 7, "output_tokens": 3, "total_tokens": 10}
        kwargs = sdk.chat.completions.create.await_args.kwargs
        assert kwargs == {
            "model": "gpt-4o",
            "messages": [{"role": "system", "content": "be nice"}, {"role": "user", "content": "hi"}],
            "temperature": 0.3,
        }

    @pytest.mark.asyncio
    async def test_rate_limit_falls_back(self, openai_client):
        adapter = openai_client.adapters[LLMProvider.OPENAI]
        adapter.client.chat.completions.create.side_effect = RuntimeError("Error code: 429 rate limited")

        result = await openai_client.generate("hello")

        assert result["provider"] == "local"
        assert adapter.status == ProviderStatus.RATE_LIMITED
        assert openai_client.get_provider_status()["openai"]["failed_requests"] == 1

    @pytest.mark.asyncio
    async def test_openai_structured(self, openai_client):
        draft = PlanDraft.model_validate({"intent": "answer", "groups": [[{"kind": "answer", "args": {}}]]})
        sdk = openai_client.adapters[LLMProvider.OPENAI].client
        sdk.chat.completions.parse.return_value = completion('{"intent": "answer"}', parsed=draft)

        result = await openai_client.generate_structured("plan", PlanDraft, provider=LLMProvider.OPENAI, model="gpt-5-mini")

        assert result["success"] is True
        assert result["parsed"] is draft
        assert sdk.chat.completions.parse.await_args.kwargs["response_format"] is PlanDraft

    @pytest.mark.asyncio
    async def test_openrouter_structured_parses_text(self):
        client = MultiLLMClient(LLMConfig(openrouter_api_key="or-test"))
        adapter = client.adapters[LLMProvider.OPENROUTER]
        adapter.client = stub_sdk(create=AsyncMock(return_value=completion(
            '```json\n{"intent": "search", "groups": [[{"kind": "web.search", "args": {"query": "q"}}]]}\n```'
        )))

        result = await client.generate_structured("plan", PlanDraft, provider=LLMProvider.OPENROUTER)

        assert result["success"] is True
        assert result["parsed"].to_plan().groups[0][0].args == {"query": "q"}
        system = adapter.client.chat.completions.create.await_args.kwargs["messages"][0]["content"]
        assert "Respond with a single JSON object" in system

    @pytest.mark.asyncio
    async def test_invalid_structured_output(self):
        client = MultiLLMClient(LLMConfig(openrouter_api_key="or-test"))
        client.adapters[LLMProvider.OPENROUTER].client = stub_sdk(
            create=AsyncMock(return_value=completion('{"intent": "dance", "groups": []}'))
        )
        result = await client.generate_structured("plan", PlanDraft, provider=LLMProvider.OPENROUTER)
        assert result["success"] is False
        assert result["error"].startswith("Invalid structured output")
