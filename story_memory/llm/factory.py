from __future__ import annotations

import asyncio
from dataclasses import dataclass
import os
import time
from typing import Any, Callable, Mapping, TypeVar

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI
from loguru import logger

from story_memory.config.schema import AppConfigRoot
from story_memory.domain.hashing import sha256_text
from story_memory.llm.cache import ResponseCache


@dataclass
class LLMResponse:
    text: str
    cached: bool


@dataclass(frozen=True)
class ResolvedChatRuntime:
    endpoint_name: str
    provider_name: str
    model: str
    temperature: float
    timeout_s: int
    max_concurrency: int
    retries: int
    max_tokens: int | None
    base_url: str | None
    api_key: str | None


T = TypeVar("T")


def _short_key(value: str | None, length: int = 12) -> str:
    return value[:length] if value else "-"


def resolve_chat_runtime(config: AppConfigRoot) -> ResolvedChatRuntime | None:
    """Returns ``None`` when no storyteller chat route is configured."""

    resolved = config.llm.resolve_chat_route()
    if resolved is None:
        return None
    endpoint_name, endpoint, provider = resolved

    api_key = None
    if provider.api_key_env:
        api_key = os.getenv(provider.api_key_env)
        if not api_key:
            raise ValueError(f"Missing required API key env for storyteller chat: {provider.api_key_env}")

    return ResolvedChatRuntime(
        endpoint_name=endpoint_name,
        provider_name=endpoint.provider,
        model=endpoint.model,
        temperature=config.storyteller.temperature,
        timeout_s=endpoint.timeout_s,
        max_concurrency=endpoint.max_concurrency,
        retries=endpoint.retries,
        max_tokens=endpoint.max_tokens,
        base_url=provider.base_url,
        api_key=api_key,
    )


def _build_chat_model(runtime: ResolvedChatRuntime) -> ChatOpenAI:
    kwargs: dict[str, Any] = {
        "model": runtime.model,
        "temperature": runtime.temperature,
        "timeout": runtime.timeout_s,
        # Attempts are counted by OpenAIChatClient; SDK retries would multiply them.
        "max_retries": 0,
    }
    if runtime.max_tokens:
        kwargs["max_tokens"] = runtime.max_tokens
    if runtime.base_url:
        kwargs["base_url"] = runtime.base_url
    if runtime.api_key:
        kwargs["api_key"] = runtime.api_key
    return ChatOpenAI(**kwargs)


def make_cache_key(*parts: str) -> str:
    return sha256_text("::".join(parts))


class OpenAIChatClient:
    def __init__(self, config: AppConfigRoot, cache: ResponseCache, runtime: ResolvedChatRuntime):
        self.config = config
        self.cache = cache
        self.runtime = runtime
        self.model = _build_chat_model(runtime)
        self.model_identifier = f"{runtime.provider_name}/{runtime.endpoint_name}/{runtime.model}"
        self._semaphore = asyncio.Semaphore(max(1, runtime.max_concurrency))

    def close(self) -> None:
        self.cache.close()

    def _log_context(
        self,
        *,
        cache_key: str | None = None,
        attempt: int | None = None,
        attempts_total: int | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        merged: dict[str, Any] = {"endpoint": self.runtime.endpoint_name, "model": self.runtime.model}
        if context:
            merged.update({key: value for key, value in context.items() if value is not None})
        if cache_key:
            merged["cache_key"] = _short_key(cache_key)
        if attempt is not None and attempts_total is not None:
            merged["attempt"] = f"{attempt}/{attempts_total}"
        return merged

    def _truncate_payload(self, payload: str) -> str:
        max_chars = int(self.config.observability.json_error_payload_max_chars)
        if max_chars <= 0 or len(payload) <= max_chars:
            return payload
        head = max_chars // 2
        return f"{payload[:head]}\n...[truncated {len(payload) - max_chars} chars]...\n{payload[-(max_chars - head):]}"

    def _log_parse_failure(
        self,
        *,
        source: str,
        raw_text: str,
        exc: Exception,
        cache_key: str,
        context: Mapping[str, Any] | None = None,
    ) -> None:
        log = logger.bind(**self._log_context(cache_key=cache_key, context=context))
        log.warning(
            "JSON parse failed source={} error_type={} error={} raw_len={} raw_hash={}",
            source,
            type(exc).__name__,
            exc,
            len(raw_text),
            sha256_text(raw_text),
        )
        if self.config.observability.log_json_error_payload:
            log.warning("JSON parse raw_response={}", self._truncate_payload(raw_text))

    async def complete_json_async(
        self,
        system_prompt: str,
        user_prompt: str,
        cache_key: str,
        parser: Callable[[str], T],
        *,
        context: Mapping[str, Any] | None = None,
    ) -> tuple[LLMResponse, T]:
        cached = self.cache.get(cache_key)
        if cached.hit and cached.value is not None:
            try:
                return LLMResponse(text=cached.value, cached=True), parser(cached.value)
            except Exception as exc:  # noqa: BLE001
                self._log_parse_failure(
                    source="cache", raw_text=cached.value, exc=exc, cache_key=cache_key, context=context
                )
                self.cache.delete(cache_key)

        text, parsed = await self._ainvoke_with_retry(
            system_prompt, user_prompt, parser, cache_key=cache_key, context=context
        )
        self.cache.set(cache_key, text)
        return LLMResponse(text=text, cached=False), parsed

    async def _ainvoke_with_retry(
        self,
        system_prompt: str,
        user_prompt: str,
        parser: Callable[[str], T],
        *,
        cache_key: str,
        context: Mapping[str, Any] | None = None,
    ) -> tuple[str, T]:
        attempts = max(1, self.runtime.retries + 1)
        last_exc: Exception | None = None
        messages = [SystemMessage(system_prompt), HumanMessage(user_prompt)]

        for attempt in range(attempts):
            started = time.perf_counter()
            try:
                async with self._semaphore:
                    response = await asyncio.to_thread(self.model.invoke, messages)
                text = str(response.content).strip()
                if not text:
                    raise ValueError("Empty LLM response")
                try:
                    parsed = parser(text)
                except Exception as parse_exc:  # noqa: BLE001
                    self._log_parse_failure(
                        source="llm_response",
                        raw_text=text,
                        exc=parse_exc,
                        cache_key=cache_key,
                        context=self._log_context(attempt=attempt + 1, attempts_total=attempts, context=context),
                    )
                    raise
                return text, parsed
            except Exception as exc:  # noqa: BLE001
                last_exc = exc
                log = logger.bind(
                    **self._log_context(
                        cache_key=cache_key, attempt=attempt + 1, attempts_total=attempts, context=context
                    )
                )
                if self.config.observability.log_retry_attempts:
                    log.warning(
                        "LLM call failed elapsed_ms={} error_type={} error={}",
                        int((time.perf_counter() - started) * 1000),
                        type(exc).__name__,
                        exc,
                    )
                if attempt < attempts - 1:
                    await asyncio.sleep(min(0.5 * (2**attempt), 4.0))

        raise RuntimeError("LLM call failed after retries") from last_exc


def build_chat_client(config: AppConfigRoot) -> OpenAIChatClient | None:
    """Chat client for story drafting, or ``None`` when no chat route is configured."""

    runtime = resolve_chat_runtime(config)
    if runtime is None:
        return None
    cache = ResponseCache.from_config(config.cache, config.app.data_dir)
    return OpenAIChatClient(config, cache, runtime)
