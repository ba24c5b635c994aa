"""
OpenAI-compatible LLM helpers — one chat completion per call.

Retries live in the step executor, so the client is built with
max_retries=0 and every openai error is translated into a GeneratorError
whose status/code/kind fields the failure classifier reads directly.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass

from openai import APIConnectionError, APIStatusError, APITimeoutError, OpenAI

import config
from models.errors import GeneratorError
from models.schemas import FailureKind

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Provider:
    """One OpenAI-compatible endpoint."""
    name: str
    api_key: str
    model: str
    base_url: str | None = None

    @property
    def configured(self) -> bool:
        return bool(self.api_key)


def default_provider() -> Provider:
    return Provider("openai", config.OPENAI_API_KEY, config.OPENAI_MODEL)


_clients: dict[str, OpenAI] = {}


def get_client(provider: Provider) -> OpenAI:
    if provider.name not in _clients:
        _clients[provider.name] = OpenAI(
            api_key=provider.api_key,
            base_url=provider.base_url,
            timeout=config.GENERATOR_TIMEOUT_SEC,
            max_retries=0,
        )
    return _clients[provider.name]


def _retry_after(e: APIStatusError) -> int | None:
    try:
        value = e.response.headers.get("retry-after")
        return int(float(value)) if value else None
    except (AttributeError, TypeError, ValueError):
        return None


def chat(
    system: str,
    user: str,
    *,
    provider: Provider | None = None,
    model: str | None = None,
    json_mode: bool = False,
    temperature: float = 0.3,
    max_tokens: int = 4096,
) -> str:
    """Send a chat completion request and return the assistant message."""
    provider = provider or default_provider()
    if not provider.configured:
        raise GeneratorError(
            f"No API key configured for provider '{provider.name}'",
            kind=FailureKind.AUTH_ERROR,
            provider=provider.name,
        )

    kwargs: dict = {
        "model": model or provider.model,
        "messages": [
            {"role": "system", "content": system},
            {"role": "user", "content": user},
        ],
        "temperature": temperature,
        "max_tokens": max_tokens,
    }
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}

    try:
        resp = get_client(provider).chat.completions.create(**kwargs)
    except APITimeoutError as e:
        raise GeneratorError(str(e), kind=FailureKind.TIMEOUT, provider=provider.name) from e
    except APIConnectionError as e:
        raise GeneratorError(str(e), kind=FailureKind.NETWORK_ERROR, provider=provider.name) from e
    except APIStatusError as e:
        raise GeneratorError(
            str(e),
            status=e.status_code,
            code=e.code if isinstance(e.code, str) else None,
            retry_after=_retry_after(e),
            provider=provider.name,
        ) from e

    content = resp.choices[0].message.content or ""
    if not content.strip():
        raise GeneratorError("Empty response from model", provider=provider.name)
    log.debug("LLM %s/%s returned %d chars", provider.name, kwargs["model"], len(content))
    return content


def parse_json(raw: str) -> dict:
    """Parse a JSON object out of a model response, tolerating ``` fences."""
    text = raw.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        text = text.rsplit("```", 1)[0]
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        log.error("Failed to parse LLM JSON response: %s", raw[:500])
        raise GeneratorError(f"JSON parse failed: {e}") from e
    if not isinstance(data, dict):
        raise GeneratorError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def chat_json(system: str, user: str, **kwargs) -> dict:
    """Send a chat completion and parse the JSON response."""
    return parse_json(chat(system, user, json_mode=True, **kwargs))
