"""Tests for src.core.llm — provider routing and JSON cleanup.

Provider SDKs are never called: the provider table is patched.
"""

from unittest.mock import AsyncMock

import pytest

from src.config import settings
from src.core import llm


@pytest.fixture(autouse=True)
def _fresh_provider():
    llm.reset_provider()
    yield
    llm.reset_provider()


class TestCleanJsonResponse:
    def test_strips_json_fence(self):
        assert llm.clean_json_response('```json\n{"actions": []}\n```') == '{"actions": []}'

    def test_strips_bare_fence(self):
        assert llm.clean_json_response('```\n{"a": 1}\n```') == '{"a": 1}'

    def test_plain_json_untouched(self):
        assert llm.clean_json_response('  {"a": 1} ') == '{"a": 1}'


class TestComplete:
    @pytest.mark.asyncio
    async def test_routes_to_configured_provider(self, monkeypatch):
        call = AsyncMock(return_value='{"actions": []}')
        monkeypatch.setitem(llm._PROVIDERS, "openai", (call, "gpt-test"))
        monkeypatch.setattr(settings, "LLM_PROVIDER", "OpenAI")
        monkeypatch.setattr(settings, "LLM_MODEL", "")

        text = await llm.complete("system", "hello", max_tokens=100, json_mode=True)

        assert text == '{"actions": []}'
        api_key, model, prompt = call.await_args.args
        assert model == "gpt-test"
        assert api_key == settings.LLM_API_KEY
        assert prompt.json_mode is True
        assert prompt.max_tokens == 100

    @pytest.mark.asyncio
    async def test_model_override(self, monkeypatch):
        call = AsyncMock(return_value="ok")
        monkeypatch.setitem(llm._PROVIDERS, "gemini", (call, "gemini-default"))
        monkeypatch.setattr(settings, "LLM_PROVIDER", "gemini")
        monkeypatch.setattr(settings, "LLM_MODEL", "gemini-custom")

        await llm.complete("system", "hello")
        assert call.await_args.args[1] == "gemini-custom"

    @pytest.mark.asyncio
    async def test_unknown_provider(self, monkeypatch):
        monkeypatch.setattr(settings, "LLM_PROVIDER", "mystery")
        with pytest.raises(ValueError, match="Unknown LLM_PROVIDER"):
            await llm.complete("system", "hello")
