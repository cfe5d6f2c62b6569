from __future__ import annotations

import asyncio
import logging
import time

import httpx

from execintel.core.config import get_settings
from execintel.core.errors import LLMAuthError, LLMError, LLMTimeoutError, ProviderConfigError
from execintel.providers.llm.base import LLMCompletion
from execintel.services.resilience import CircuitBreaker, get_resilience_redis, llm_retry_policy, retry_async


logger = logging.getLogger(__name__)


class OpenAIChatProvider:
    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._settings = get_settings()
        if not self._settings.openai_api_key:
            raise ProviderConfigError("OPENAI_API_KEY is required for the openai LLM provider")
        self._client = client
        self._breaker: CircuitBreaker | None = None

    @property
    def model(self) -> str:
        return self._settings.llm_model

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is not None:
            return self._client
        # Reuse a single client per provider for connection pooling.
        self._client = httpx.AsyncClient(base_url=self._settings.openai_base_url)
        return self._client

    async def _get_breaker(self) -> CircuitBreaker:
        if self._breaker is None:
            self._breaker = CircuitBreaker("llm.openai", redis=await get_resilience_redis())
        return self._breaker

    async def generate(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        temperature: float,
    ) -> LLMCompletion:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        headers = {"Authorization": f"Bearer {self._settings.openai_api_key}"}
        client = self._get_client()
        breaker = await self._get_breaker()
        await breaker.before_call()

        async def _call() -> httpx.Response:
            return await client.post("/v1/chat/completions", json=payload, headers=headers)

        def _retryable(exc: Exception) -> bool:
            return isinstance(exc, (httpx.TimeoutException, httpx.NetworkError))

        start = time.monotonic()
        try:
            response = await retry_async(_call, policy=llm_retry_policy(), retryable=_retryable)
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            await breaker.record_failure()
            raise LLMTimeoutError(f"LLM call exceeded {self._settings.llm_timeout_ms}ms") from exc
        except httpx.HTTPError as exc:
            await breaker.record_failure()
            raise LLMError("LLM request failed") from exc

        latency_ms = int((time.monotonic() - start) * 1000)
        if response.status_code in {401, 403}:
            raise LLMAuthError("LLM auth error: check OPENAI_API_KEY")
        if response.status_code >= 500:
            await breaker.record_failure()
        if response.status_code >= 400:
            logger.warning("llm_call_failed status=%s latency_ms=%s", response.status_code, latency_ms)
            raise LLMError(f"LLM error: {response.status_code}")

        await breaker.record_success()
        body = response.json()
        try:
            content = body["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as exc:
            raise LLMError("LLM response missing choices") from exc
        usage = body.get("usage") or {}
        return LLMCompletion(
            content=content,
            total_tokens=int(usage.get("total_tokens") or 0),
            model=str(body.get("model") or self.model),
        )
