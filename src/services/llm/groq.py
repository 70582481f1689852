"""Groq LLM service implementation with tool calling."""

from __future__ import annotations

import json
import time
from collections.abc import Mapping
from typing import Any

import groq
from groq import AsyncGroq

from src.config import Settings, get_settings
from src.errors import ValidationError
from src.logging_config import get_logger
from src.services.llm.exceptions import (
    LLMAuthenticationError,
    LLMConnectionError,
    LLMEmptyResponseError,
    LLMRateLimitError,
    LLMServiceError,
)
from src.services.llm.protocol import (
    LLMResponse,
    Message,
    Role,
    ToolCall,
    ToolSpec,
)
from src.services.llm.rate_limiter import TokenBucketRateLimiter
from src.services.llm.token_counter import estimate_request_tokens, estimate_tokens

logger: Any = get_logger(__name__)


class GroqService:
    """Groq chat completions with function calling and rate limiting.

    One `respond` call is one API request: the model either answers in
    text or asks for tools. Tool-call arguments are decoded and validated
    here so the caller only ever sees well-formed invocations.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        model: str | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._model = model or self._settings.groq_model
        self._client: AsyncGroq | None = None
        self._rate_limiter = TokenBucketRateLimiter(
            tokens_per_minute=self._settings.groq_tokens_per_minute,
            requests_per_minute=self._settings.groq_requests_per_minute,
        )

    @property
    def client(self) -> AsyncGroq:
        """Lazy initialization of AsyncGroq client."""
        if self._client is None:
            self._client = AsyncGroq(
                api_key=self._settings.groq_api_key.get_secret_value(),
                timeout=30.0,
                max_retries=2,
            )
        return self._client

    async def respond(
        self,
        messages: list[Message],
        tools: Mapping[str, ToolSpec],
        *,
        max_tokens: int = 256,
        temperature: float = 0.7,
    ) -> LLMResponse:
        """Complete one conversational turn.

        Args:
            messages: Conversation history, system prompt first
            tools: Tool name -> spec offered to the model
            max_tokens: Maximum response tokens (keep low for voice)
            temperature: Response creativity

        Returns:
            LLMResponse with either text or validated tool calls

        Raises:
            ValidationError: Model produced unusable tool calls
            LLMRateLimitError: When rate limit exceeded
            LLMConnectionError: When API unreachable
            LLMAuthenticationError: When API key invalid
            LLMServiceError: For other API errors
        """
        api_messages = self._format_messages(messages)
        api_tools = self._format_tools(tools)
        estimated = estimate_request_tokens(api_messages, api_tools) + max_tokens

        try:
            await self._rate_limiter.acquire(estimated)
        except TimeoutError as e:
            raise LLMRateLimitError("Local rate limit budget exhausted") from e

        request: dict[str, Any] = {
            "messages": api_messages,
            "model": self._model,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if api_tools:
            request["tools"] = api_tools
            request["tool_choice"] = "auto"

        start_time = time.perf_counter()
        try:
            completion = await self.client.chat.completions.create(**request)

        except groq.RateLimitError as e:
            logger.warning(f"Groq rate limit hit: {e}")
            raise LLMRateLimitError(
                "Rate limit exceeded",
                retry_after=self._extract_retry_after(e),
            ) from e

        except groq.APIConnectionError as e:
            logger.error(f"Groq connection error: {e.__cause__}")
            raise LLMConnectionError("Failed to connect to Groq API") from e

        except groq.AuthenticationError as e:
            logger.error("Groq authentication failed")
            raise LLMAuthenticationError("Invalid Groq API key") from e

        except groq.BadRequestError as e:
            if _is_tool_use_failure(e):
                logger.warning(f"Groq rejected malformed tool call: {e.message}")
                raise ValidationError("Model produced a malformed tool call") from e
            logger.error(f"Groq API error: {e.status_code} - {e.message}")
            raise LLMServiceError(f"Groq API error: {e.status_code}") from e

        except groq.APIStatusError as e:
            logger.error(f"Groq API error: {e.status_code} - {e.message}")
            raise LLMServiceError(f"Groq API error: {e.status_code}") from e

        latency_ms = (time.perf_counter() - start_time) * 1000

        prompt_tokens = completion_tokens = 0
        if completion.usage:
            prompt_tokens = completion.usage.prompt_tokens or 0
            completion_tokens = completion.usage.completion_tokens or 0
            self._rate_limiter.record_usage(estimated, completion.usage.total_tokens or 0)

        if not completion.choices:
            raise LLMEmptyResponseError("Groq returned no choices")

        choice = completion.choices[0]
        message = choice.message
        tool_calls = self._parse_tool_calls(message.tool_calls or [], tools)
        text = (message.content or "").strip() or None

        if not tool_calls and text is None:
            raise LLMEmptyResponseError("Groq returned neither text nor tool calls")

        logger.debug(
            f"Groq turn: {latency_ms:.0f}ms, {prompt_tokens}+{completion_tokens} tokens, "
            f"{len(tool_calls)} tool call(s)"
        )

        return LLMResponse(
            text=text,
            tool_calls=tool_calls,
            model=self._model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            latency_ms=latency_ms,
            finish_reason=choice.finish_reason,
        )

    def _parse_tool_calls(
        self,
        raw_calls: list[Any],
        tools: Mapping[str, ToolSpec],
    ) -> tuple[ToolCall, ...]:
        """Decode and validate tool calls before they leave the adapter."""
        calls: list[ToolCall] = []
        for raw in raw_calls:
            name = raw.function.name
            spec = tools.get(name)
            if spec is None:
                raise ValidationError(f"Model called unknown tool {name!r}", field=name)

            try:
                arguments = json.loads(raw.function.arguments or "{}")
            except json.JSONDecodeError as e:
                raise ValidationError(
                    f"Arguments for {name} are not valid JSON: {e}", field=name
                ) from e
            if not isinstance(arguments, dict):
                raise ValidationError(f"Arguments for {name} must be an object", field=name)

            invocation = spec.validator(arguments) if spec.validator else None
            calls.append(
                ToolCall(id=raw.id, name=name, arguments=arguments, invocation=invocation)
            )
        return tuple(calls)

    def _format_messages(self, messages: list[Message]) -> list[dict[str, Any]]:
        """Format messages for the chat completions API."""
        api_messages: list[dict[str, Any]] = []

        for msg in messages:
            if msg.role is Role.TOOL:
                api_messages.append({
                    "role": "tool",
                    "tool_call_id": msg.tool_call_id,
                    "content": msg.content,
                })
            elif msg.tool_calls:
                api_messages.append({
                    "role": "assistant",
                    "content": msg.content or None,
                    "tool_calls": [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {
                                "name": call.name,
                                "arguments": json.dumps(call.arguments),
                            },
                        }
                        for call in msg.tool_calls
                    ],
                })
            else:
                api_messages.append({
                    "role": msg.role.value,
                    "content": msg.content,
                })

        return api_messages

    def _format_tools(self, tools: Mapping[str, ToolSpec]) -> list[dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": name,
                    "description": spec.description,
                    "parameters": spec.parameters,
                },
            }
            for name, spec in tools.items()
        ]

    def estimate_tokens(self, text: str) -> int:
        """Estimate token count for rate limiting."""
        return estimate_tokens(text)

    def _extract_retry_after(self, error: groq.RateLimitError) -> float:
        """Extract retry-after from rate limit error."""
        if hasattr(error, "response") and error.response:
            retry_after = error.response.headers.get("retry-after")
            if retry_after:
                try:
                    return float(retry_after)
                except ValueError:
                    pass
        return 60.0

    async def health_check(self) -> bool:
        """Check if Groq API is reachable."""
        try:
            response = await self.client.chat.completions.create(
                messages=[{"role": "user", "content": "hi"}],
                model=self._model,
                max_tokens=1,
            )
            return bool(response.choices)
        except Exception as e:
            logger.warning(f"Groq health check failed: {e}")
            return False

    async def close(self) -> None:
        """Close the client connection."""
        if self._client:
            await self._client.close()
            self._client = None


def _is_tool_use_failure(error: groq.BadRequestError) -> bool:
    body = error.body if isinstance(error.body, dict) else {}
    detail = body.get("error", body) if isinstance(body, dict) else {}
    return isinstance(detail, dict) and detail.get("code") == "tool_use_failed"
