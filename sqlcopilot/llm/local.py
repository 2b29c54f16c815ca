"""
Local LLM Provider

BaseLLMProvider implementation for local model servers. Talks to Ollama's
``/api/chat`` first and falls back to an OpenAI-compatible
``/v1/chat/completions`` endpoint (vLLM, llama.cpp server, ...).
"""

import logging
from typing import Any

import httpx

from sqlcopilot.llm.base import BaseLLMProvider
from sqlcopilot.llm.models import LLMRequest, LLMResponse, LLMUsage

logger = logging.getLogger(__name__)


class LocalProvider(BaseLLMProvider):
    """Provider for self-hosted models."""

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "llama3.1:8b",
        temperature: float = 0.0,
        max_tokens: int = 2000,
        timeout: int = 30,
        client: httpx.AsyncClient | None = None,
    ):
        super().__init__(
            provider_name="local",
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=timeout,
        )
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.client = client or httpx.AsyncClient(timeout=float(timeout))

        logger.info(
            f"Local provider initialized: {base_url} with model: {model}",
            extra={"base_url": base_url, "model": model},
        )

    async def generate(self, request: LLMRequest) -> LLMResponse:
        request = self._apply_defaults(request)
        payload = {
            "model": request.model or self.model,
            "messages": [{"role": msg.role, "content": msg.content} for msg in request.messages],
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
            "stream": False,
        }

        try:
            data = await self._post("/api/chat", payload)
        except httpx.HTTPError as e:
            logger.debug(f"Ollama endpoint unavailable ({e}), trying OpenAI-compatible API")
            data = await self._post("/v1/chat/completions", payload)

        llm_response = LLMResponse(
            content=self._extract_content(data),
            model=data.get("model", self.model),
            usage=LLMUsage(
                prompt_tokens=data.get("prompt_eval_count")
                or data.get("usage", {}).get("prompt_tokens", 0),
                completion_tokens=data.get("eval_count")
                or data.get("usage", {}).get("completion_tokens", 0),
            ),
            provider="local",
            metadata={"base_url": self.base_url},
        )
        self._log_response(llm_response)
        return llm_response

    async def close(self) -> None:
        await self.client.aclose()

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        response = await self.client.post(f"{self.base_url}{path}", json=payload)
        response.raise_for_status()
        return response.json()

    @staticmethod
    def _extract_content(data: dict[str, Any]) -> str:
        if message := data.get("message"):
            return message.get("content", "")
        choices = data.get("choices") or [{}]
        return choices[0].get("message", {}).get("content", "")
