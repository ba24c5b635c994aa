"""
Provider chain — tries each configured AI provider in order, first success wins.

Each provider attempt is a pseudo-step run by the ordinary StepExecutor:
no dependencies, optional, a single attempt, skipped when the provider has
no API key or an earlier provider already answered. Retrying the chain as a
whole is left to the step that called it.
"""

from __future__ import annotations

import logging
from typing import Any, Callable

import config
from features.checkpoints.store import InMemoryCheckpointStore
from models.errors import AllProvidersFailedError
from models.schemas import StepContext, StepDescriptor
from utils import llm
from utils.llm import Provider
from workflows.executor import StepExecutor

log = logging.getLogger(__name__)

DEFAULT_SYSTEM = (
    "You are a senior product designer and software architect. "
    "Answer precisely and only with what was asked for."
)


def configured_providers() -> list[Provider]:
    """Providers from the environment, in priority order."""
    return [
        Provider("openai", config.OPENAI_API_KEY, config.OPENAI_MODEL),
        Provider("xai", config.XAI_API_KEY, config.XAI_MODEL, config.XAI_BASE_URL),
    ]


class ProviderChain:
    def __init__(self, providers: list[Provider], chat_fn: Callable[..., str] | None = None):
        self.providers = list(providers)
        self.chat_fn = chat_fn or llm.chat

    @property
    def available(self) -> list[str]:
        return [p.name for p in self.providers if p.configured]

    def _steps(self, system: str, prompt: str, json_mode: bool, options: dict, errors: dict) -> list[StepDescriptor]:
        steps = []
        earlier: list[str] = []
        for provider in self.providers:
            def run(ctx: StepContext, provider=provider) -> Any:
                try:
                    raw = self.chat_fn(system, prompt, provider=provider, json_mode=json_mode, **options)
                    return llm.parse_json(raw) if json_mode else raw
                except Exception as e:
                    errors[provider.name] = e
                    raise

            def skip(ctx: StepContext, provider=provider, earlier=tuple(earlier)) -> bool:
                if not provider.configured:
                    return True
                return any(ctx.result(name) is not None for name in earlier)

            steps.append(StepDescriptor(
                id=provider.name,
                run=run,
                name=f"provider:{provider.name}",
                required=False,
                retryable=False,
                allow_fallback=False,
                skip=skip,
            ))
            earlier.append(provider.name)
        return steps

    def _run(self, prompt: str, system: str, json_mode: bool, options: dict) -> Any:
        errors: dict[str, BaseException] = {}
        executor = StepExecutor(
            self._steps(system, prompt, json_mode, options, errors),
            InMemoryCheckpointStore(),
            pipeline="provider-chain",
            max_retries=1,
        )
        result = executor.run()
        for provider in self.providers:
            if provider.name in result.results:
                if errors:
                    log.info("Provider %s answered after failures in %s", provider.name, list(errors))
                return result.results[provider.name]

        attempted = [p.name for p in self.providers if p.name in errors]
        last_error = errors[attempted[-1]] if attempted else None
        raise AllProvidersFailedError(attempted, last_error)

    def generate(self, prompt: str, *, system: str = DEFAULT_SYSTEM, **options) -> str:
        return self._run(prompt, system, False, options)

    def generate_json(self, prompt: str, *, system: str = DEFAULT_SYSTEM, **options) -> dict:
        return self._run(prompt, system, True, options)


def get_provider_chain() -> ProviderChain:
    return ProviderChain(configured_providers())
