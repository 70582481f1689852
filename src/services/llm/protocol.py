"""LLM service protocol and data types."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Protocol


class Role(str, Enum):
    """Message role in conversation."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass(frozen=True, slots=True)
class ToolSpec:
    """A tool the model may call.

    `validator` turns raw JSON arguments into a typed value and raises
    ValidationError when they do not fit the schema.
    """

    description: str
    parameters: dict[str, Any]
    validator: Callable[[dict[str, Any]], Any] | None = None


@dataclass(frozen=True, slots=True)
class ToolCall:
    """A validated tool invocation requested by the model."""

    id: str
    name: str
    arguments: dict[str, Any]
    invocation: Any = None  # Typed value produced by ToolSpec.validator


@dataclass(frozen=True, slots=True)
class Message:
    """A single message in conversation history."""

    role: Role
    content: str
    tool_calls: tuple[ToolCall, ...] = ()
    tool_call_id: str | None = None  # Set on Role.TOOL results
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True, slots=True)
class LLMResponse:
    """Exactly one model turn: spoken text or tool calls."""

    text: str | None = None
    tool_calls: tuple[ToolCall, ...] = ()
    model: str = ""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    latency_ms: float = 0.0
    finish_reason: str | None = None

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class LLMService(Protocol):
    """Responder capability."""

    async def respond(
        self,
        messages: list[Message],
        tools: Mapping[str, ToolSpec],
        *,
        max_tokens: int = 256,
        temperature: float = 0.7,
    ) -> LLMResponse:
        """Complete one turn.

        Tool-call arguments are validated before returning; malformed
        model output raises ValidationError instead of becoming a call.
        """
        ...

    def estimate_tokens(self, text: str) -> int:
        """Estimate token count for text (for rate limiting)."""
        ...

    async def close(self) -> None:
        """Close the client connection."""
        ...

    async def health_check(self) -> bool:
        """Check if the service is operational."""
        ...
