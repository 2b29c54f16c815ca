"""
Prompt Completion

The engine asks for text through ``TextCompleter.complete(template, **args)``.
``PromptCompleter`` renders a packaged prompt template and sends it to an
LLM provider, using the template's front-matter ``temperature`` unless the
caller overrides it.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

from sqlcopilot.llm.base import BaseLLMProvider
from sqlcopilot.llm.models import LLMMessage, LLMRequest
from sqlcopilot.prompts import PromptLoader

logger = logging.getLogger(__name__)


class CompletionError(Exception):
    """Raised when a completion request fails."""

    pass


class TextCompleter(ABC):
    """Renders a named prompt with arguments and returns the model's text."""

    @abstractmethod
    async def complete(
        self, template_name: str, temperature: float | None = None, **args: Any
    ) -> str:
        """
        Complete a prompt template.

        Raises:
            CompletionError: If the prompt cannot be rendered or the provider fails
        """
        pass  # pragma: no cover - abstract method

    async def close(self) -> None:
        return None


class PromptCompleter(TextCompleter):
    """TextCompleter backed by PromptLoader and a BaseLLMProvider."""

    def __init__(self, provider: BaseLLMProvider, loader: PromptLoader | None = None):
        self.provider = provider
        self.loader = loader or PromptLoader()

    async def complete(
        self, template_name: str, temperature: float | None = None, **args: Any
    ) -> str:
        try:
            prompt = self.loader.render(template_name, **args)
            metadata = self.loader.get_metadata(template_name)
        except FileNotFoundError as e:
            raise CompletionError(str(e)) from e

        messages = []
        if system := metadata.get("system"):
            messages.append(LLMMessage(role="system", content=system))
        messages.append(LLMMessage(role="user", content=prompt))

        request = LLMRequest(
            messages=messages,
            temperature=temperature if temperature is not None else metadata.get("temperature"),
        )

        try:
            response = await self.provider.generate(request)
        except Exception as e:
            logger.error(
                f"Completion failed for {template_name}: {e}",
                extra={"template": template_name, "provider": self.provider.provider_name},
            )
            raise CompletionError(f"Completion failed for {template_name}: {e}") from e

        return response.content

    async def close(self) -> None:
        await self.provider.close()
