"""Tests for the LLM module: providers, factory, reply schemas and gateway."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from conftest import FakeLLM, structured_reply
from journey_mapper.llm.exceptions import (
    LLMAuthenticationError,
    LLMConnectionError,
    LLMInvalidResponseError,
    LLMModelNotFoundError,
    LLMProviderNotConfiguredError,
    LLMResponseError,
)
from journey_mapper.llm.factory import get_available_providers, get_llm, get_provider
from journey_mapper.llm.gateway import JSON_CORRECTION_MESSAGE, LLMGateway, parse_structured_reply
from journey_mapper.llm.llm import OllamaLLM, strip_code_fences
from journey_mapper.llm.providers.claude import ClaudeLLM
from journey_mapper.llm.schemas import (
    ConflictReport,
    OpenQuestion,
    StructuredReply,
    SystemExtraction,
)


def _mock_client(mock_client_class, response):
    mock_client = AsyncMock()
    mock_client.post = AsyncMock(return_value=response)
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=None)
    mock_client_class.return_value = mock_client
    return mock_client


def _response(status_code=200, payload=None, text=""):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload or {}
    response.text = text
    response.headers = {}
    return response


class TestStripCodeFences:
    """Tests for strip_code_fences."""

    def test_removes_json_fence(self):
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_removes_bare_fence(self):
        assert strip_code_fences('```\n{"a": 1}\n```') == '{"a": 1}'

    def test_plain_text_unchanged(self):
        assert strip_code_fences("  hello  ") == "hello"


class TestOllamaLLM:
    """Tests for OllamaLLM."""

    def test_init_defaults(self):
        llm = OllamaLLM()
        assert llm.base_url == "http://ollama:11434"
        assert llm.timeout == 120.0

    def test_base_url_trailing_slash_removed(self):
        llm = OllamaLLM(base_url="http://localhost:11434/")
        assert llm.base_url == "http://localhost:11434"

    @pytest.mark.asyncio
    async def test_chat_success(self):
        """System prompt goes first, token budget goes into options."""
        with patch("httpx.AsyncClient") as mock_client_class:
            client = _mock_client(
                mock_client_class, _response(payload={"message": {"content": "Hello"}})
            )

            llm = OllamaLLM(model="llama3.1:8b")
            result = await llm.chat("Be nice", [{"role": "user", "content": "Hi"}], max_tokens=50)

            assert result == "Hello"
            url = client.post.call_args.args[0]
            payload = client.post.call_args.kwargs["json"]
            assert url.endswith("/api/chat")
            assert payload["messages"][0] == {"role": "system", "content": "Be nice"}
            assert payload["messages"][1] == {"role": "user", "content": "Hi"}
            assert payload["options"]["num_predict"] == 50

    @pytest.mark.asyncio
    async def test_chat_missing_model(self):
        with patch("httpx.AsyncClient") as mock_client_class:
            _mock_client(mock_client_class, _response(status_code=404))

            with pytest.raises(LLMModelNotFoundError):
                await OllamaLLM().chat("s", [{"role": "user", "content": "Hi"}])

    @pytest.mark.asyncio
    async def test_check_health_success(self):
        with patch("httpx.AsyncClient") as mock_client_class:
            mock_client = AsyncMock()
            mock_client.get = AsyncMock(return_value=_response(status_code=200))
            mock_client.__aenter__ = AsyncMock(return_value=mock_client)
            mock_client.__aexit__ = AsyncMock(return_value=None)
            mock_client_class.return_value = mock_client

            assert await OllamaLLM().check_health() is True


class TestClaudeLLM:
    """Tests for ClaudeLLM."""

    def test_init_custom_values(self):
        llm = ClaudeLLM(api_key="test-key", model="claude-test", timeout=5.0, max_tokens=100)
        assert llm.api_key == "test-key"
        assert llm.model == "claude-test"
        assert llm.timeout == 5.0
        assert llm.max_tokens == 100
        assert llm.provider_name == "claude"

    @pytest.mark.asyncio
    async def test_is_available_requires_key(self):
        assert await ClaudeLLM(api_key="k").is_available() is True
        with patch("journey_mapper.llm.providers.claude.settings") as mock_settings:
            mock_settings.ANTHROPIC_API_KEY = ""
            mock_settings.ANTHROPIC_MODEL = "m"
            mock_settings.LLM_TIMEOUT = 1.0
            mock_settings.LLM_MAX_TOKENS = 10
            assert await ClaudeLLM().is_available() is False

    @pytest.mark.asyncio
    async def test_chat_sends_system_and_joins_text_blocks(self):
        with patch("httpx.AsyncClient") as mock_client_class:
            client = _mock_client(
                mock_client_class,
                _response(
                    payload={
                        "content": [
                            {"type": "text", "text": '{"reply": '},
                            {"type": "tool_use", "id": "ignored"},
                            {"type": "text", "text": '"hi"}'},
                        ]
                    }
                ),
            )

            llm = ClaudeLLM(api_key="test-key", model="claude-test")
            result = await llm.chat(
                "SYSTEM", [{"role": "user", "content": "Hello"}], max_tokens=321
            )

            assert result == '{"reply": "hi"}'
            payload = client.post.call_args.kwargs["json"]
            headers = client.post.call_args.kwargs["headers"]
            assert payload["system"] == "SYSTEM"
            assert payload["max_tokens"] == 321
            assert payload["model"] == "claude-test"
            assert headers["x-api-key"] == "test-key"

    @pytest.mark.asyncio
    async def test_chat_invalid_key(self):
        with patch("httpx.AsyncClient") as mock_client_class:
            _mock_client(mock_client_class, _response(status_code=401))

            with pytest.raises(LLMAuthenticationError):
                await ClaudeLLM(api_key="bad").chat("s", [{"role": "user", "content": "x"}])

    @pytest.mark.asyncio
    async def test_chat_bad_request(self):
        with patch("httpx.AsyncClient") as mock_client_class:
            _mock_client(mock_client_class, _response(status_code=400, text="bad request"))

            with pytest.raises(LLMResponseError):
                await ClaudeLLM(api_key="k").chat("s", [{"role": "user", "content": "x"}])

    @pytest.mark.asyncio
    async def test_chat_without_key_fails_fast(self):
        llm = ClaudeLLM(api_key="k")
        llm.api_key = ""
        with pytest.raises(LLMAuthenticationError):
            await llm.chat("s", [{"role": "user", "content": "x"}])


class TestFactory:
    """Tests for the provider registry."""

    def test_builtin_providers_registered(self):
        providers = get_available_providers()
        assert "ollama" in providers
        assert "claude" in providers

    def test_get_provider_unknown(self):
        with pytest.raises(LLMProviderNotConfiguredError):
            get_provider("nope")

    def test_get_provider_instances(self):
        assert isinstance(get_provider("ollama"), OllamaLLM)
        assert isinstance(get_provider("CLAUDE"), ClaudeLLM)

    @pytest.mark.asyncio
    async def test_get_llm_explicit_provider(self):
        llm = await get_llm("ollama")
        assert llm.provider_name == "ollama"

    @pytest.mark.asyncio
    async def test_get_llm_falls_back_when_claude_unconfigured(self):
        with patch("journey_mapper.llm.factory.settings") as mock_settings:
            mock_settings.LLM_PROVIDER = "claude"
            with patch.object(ClaudeLLM, "is_available", AsyncMock(return_value=False)):
                llm = await get_llm()
        assert llm.provider_name == "ollama"


class TestSchemas:
    """Tests for the structured reply models."""

    def test_reply_is_required(self):
        with pytest.raises(ValueError):
            StructuredReply.model_validate({"extractions": {}})

    def test_nulls_fall_back_to_defaults(self):
        reply = StructuredReply.model_validate(
            {"reply": "ok", "extractions": None, "conflicts_detected": None, "conversation_state": None}
        )
        assert reply.extractions.systems == []
        assert reply.conflicts_detected == []
        assert reply.state_updates() == {}

    def test_misshapen_sections_are_dropped(self):
        reply = StructuredReply.model_validate(
            {
                "reply": "ok",
                "extractions": {
                    "systems": [{"system_name": "Opera PMS", "is_new": True}],
                    "gaps": 7,
                    "sme_updates": [],
                },
                "open_questions": 3,
                "conversation_state": "check_in",
            }
        )
        assert reply.extractions.systems == [{"system_name": "Opera PMS", "is_new": True}]
        assert reply.extractions.gaps == []
        assert reply.extractions.sme_updates == {}
        assert reply.open_questions == []
        assert reply.state_updates() == {}

    def test_unknown_keys_ignored(self):
        reply = StructuredReply.model_validate({"reply": "ok", "mood": "cheerful"})
        assert not hasattr(reply, "mood")

    def test_state_updates_only_sent_keys(self):
        reply = StructuredReply.model_validate(
            {"reply": "ok", "conversation_state": {"current_stage": "check_in", "custom": 1}}
        )
        assert reply.state_updates() == {"current_stage": "check_in", "custom": 1}

    def test_system_string_integrations_normalized(self):
        system = SystemExtraction.model_validate(
            {"system_name": "Opera", "integration_with": ["Salesforce"], "is_new": True}
        )
        assert system.integration_with[0].system_name == "Salesforce"

    def test_conflict_report_defaults(self):
        report = ConflictReport.model_validate({"field": "owner", "existing_sme_id": None})
        assert report.severity == "medium"
        assert report.existing_sme_id == ""

    def test_open_question_from_plain_string(self):
        assert OpenQuestion.model_validate("Who owns upsells?").question == "Who owns upsells?"


class TestLLMGateway:
    """Tests for LLMGateway."""

    def test_parse_structured_reply_with_fence(self):
        reply = parse_structured_reply('```json\n{"reply": "hi"}\n```')
        assert reply.reply == "hi"

    def test_parse_structured_reply_rejects_non_object(self):
        with pytest.raises(ValueError):
            parse_structured_reply('["reply"]')

    @pytest.mark.asyncio
    async def test_valid_reply_first_time(self):
        llm = FakeLLM([structured_reply("Welcome")])
        reply = await LLMGateway(llm).generate("sys", [{"role": "user", "content": "hi"}])

        assert reply.reply == "Welcome"
        assert len(llm.calls) == 1
        assert llm.calls[0]["max_tokens"] == 4096

    @pytest.mark.asyncio
    async def test_retries_once_with_correction(self):
        llm = FakeLLM(["Sure! Here you go: not json", structured_reply("Fixed")])

        reply = await LLMGateway(llm).generate("sys", [{"role": "user", "content": "hi"}])

        assert reply.reply == "Fixed"
        assert len(llm.calls) == 2
        retry_messages = llm.calls[1]["messages"]
        assert retry_messages[-2] == {"role": "assistant", "content": "Sure! Here you go: not json"}
        assert retry_messages[-1] == {"role": "user", "content": JSON_CORRECTION_MESSAGE}

    @pytest.mark.asyncio
    async def test_two_failures_raise_with_sample(self):
        garbage = "x" * 500
        llm = FakeLLM(["nope", garbage])

        with pytest.raises(LLMInvalidResponseError) as exc_info:
            await LLMGateway(llm).generate("sys", [{"role": "user", "content": "hi"}])

        assert exc_info.value.raw_sample == "x" * 200
        assert len(llm.calls) == 2

    @pytest.mark.asyncio
    async def test_provider_errors_propagate(self):
        llm = FakeLLM([LLMConnectionError("down", provider="fake")])
        with pytest.raises(LLMConnectionError):
            await LLMGateway(llm).generate("sys", [{"role": "user", "content": "hi"}])

    @pytest.mark.asyncio
    async def test_summary_accepts_plain_text(self):
        llm = FakeLLM(["```\nA plain summary.\n```"])

        reply = await LLMGateway(llm).generate_summary("sys", [{"role": "user", "content": "sum"}])

        assert reply.reply == "A plain summary."
        assert len(llm.calls) == 1
        assert llm.calls[0]["max_tokens"] == 8192

    @pytest.mark.asyncio
    async def test_summary_parses_json(self):
        llm = FakeLLM([json.dumps({"reply": "Structured summary"})])
        reply = await LLMGateway(llm).generate_summary("sys", [{"role": "user", "content": "sum"}])
        assert reply.reply == "Structured summary"
