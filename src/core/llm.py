"""
PACT Bridge — LLM Provider Abstraction.

`complete()` sends one system + user prompt to whichever provider
LLM_PROVIDER names (gemini, anthropic, openai, cohere) and returns the raw
text. Extraction asks for `json_mode`: temperature 0, and the provider's
native JSON output switch where it has one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


@dataclass
class Prompt:
    system: str
    user_message: str
    max_tokens: int
    json_mode: bool = False


_CallFn = Callable[[str, str, Prompt], Awaitable[str]]

# ---------------------------------------------------------------------------
# Provider calls — SDKs are imported lazily so only the configured one is needed
# ---------------------------------------------------------------------------


async def _call_gemini(api_key: str, model: str, prompt: Prompt) -> str:
    import google.generativeai as genai

    genai.configure(api_key=api_key)
    kwargs = {}
    if prompt.json_mode:
        kwargs = {"temperature": 0, "response_mime_type": "application/json"}
    config = genai.types.GenerationConfig(max_output_tokens=prompt.max_tokens, **kwargs)
    gm = genai.GenerativeModel(model_name=model, system_instruction=prompt.system)
    response = await gm.generate_content_async(prompt.user_message, generation_config=config)
    return response.text


async def _call_anthropic(api_key: str, model: str, prompt: Prompt) -> str:
    import anthropic

    client = anthropic.AsyncAnthropic(api_key=api_key)
    kwargs = {"temperature": 0} if prompt.json_mode else {}
    response = await client.messages.create(
        model=model,
        max_tokens=prompt.max_tokens,
        system=prompt.system,
        messages=[{"role": "user", "content": prompt.user_message}],
        **kwargs,
    )
    return response.content[0].text


def _chat_messages(prompt: Prompt) -> list[dict]:
    return [
        {"role": "system", "content": prompt.system},
        {"role": "user", "content": prompt.user_message},
    ]


async def _call_openai(api_key: str, model: str, prompt: Prompt) -> str:
    from openai import AsyncOpenAI

    client = AsyncOpenAI(api_key=api_key)
    kwargs = {}
    if prompt.json_mode:
        kwargs = {"temperature": 0, "response_format": {"type": "json_object"}}
    response = await client.chat.completions.create(
        model=model,
        max_tokens=prompt.max_tokens,
        messages=_chat_messages(prompt),
        **kwargs,
    )
    return response.choices[0].message.content


async def _call_cohere(api_key: str, model: str, prompt: Prompt) -> str:
    import cohere

    client = cohere.AsyncClientV2(api_key=api_key)
    kwargs = {}
    if prompt.json_mode:
        kwargs = {"temperature": 0, "response_format": {"type": "json_object"}}
    response = await client.chat(
        model=model,
        max_tokens=prompt.max_tokens,
        messages=_chat_messages(prompt),
        **kwargs,
    )
    return response.message.content[0].text


# name -> (call, default model)
_PROVIDERS: dict[str, tuple[_CallFn, str]] = {
    "gemini": (_call_gemini, "gemini-2.0-flash"),
    "anthropic": (_call_anthropic, "claude-haiku-4-5-20251001"),
    "openai": (_call_openai, "gpt-4o-mini"),
    "cohere": (_call_cohere, "command-a-03-2025"),
}


@dataclass
class _Provider:
    name: str
    call: _CallFn
    model: str
    api_key: str


_active: _Provider | None = None


def _resolve_provider() -> _Provider:
    from src.config import settings

    name = settings.LLM_PROVIDER.lower()
    if name not in _PROVIDERS:
        raise ValueError(
            f"Unknown LLM_PROVIDER={name!r}. Supported: {', '.join(_PROVIDERS)}"
        )
    call, default_model = _PROVIDERS[name]
    provider = _Provider(
        name=name,
        call=call,
        model=settings.LLM_MODEL or default_model,
        api_key=settings.LLM_API_KEY,
    )
    logger.info("LLM provider: %s, model: %s", provider.name, provider.model)
    return provider


def reset_provider() -> None:
    """Forget the cached provider so the next call re-reads settings."""
    global _active
    _active = None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def complete(
    system: str, user_message: str, max_tokens: int = 256, json_mode: bool = False,
) -> str:
    """Return the configured model's reply. API errors propagate to the caller."""
    global _active

    if _active is None:
        _active = _resolve_provider()

    prompt = Prompt(system=system, user_message=user_message, max_tokens=max_tokens, json_mode=json_mode)
    return await _active.call(_active.api_key, _active.model, prompt)


def clean_json_response(raw_text: str) -> str:
    """Strip a ```json fence that some models wrap around JSON output."""
    text = raw_text.strip()
    if text.startswith("```"):
        text = text.removeprefix("```json").removeprefix("```")
        text = text.removesuffix("```")
    return text.strip()
