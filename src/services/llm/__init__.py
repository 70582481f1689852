"""LLM services (Groq)."""

from src.services.llm.exceptions import (
    LLMAuthenticationError,
    LLMConnectionError,
    LLMEmptyResponseError,
    LLMRateLimitError,
    LLMServiceError,
)
from src.services.llm.groq import GroqService
from src.services.llm.protocol import (
    LLMResponse,
    LLMService,
    Message,
    Role,
    ToolCall,
    ToolSpec,
)
from src.services.llm.rate_limiter import TokenBucketRateLimiter
from src.services.llm.token_counter import estimate_tokens

__all__ = [
    # Protocol and types
    "LLMService",
    "LLMResponse",
    "Message",
    "Role",
    "ToolCall",
    "ToolSpec",
    # Implementation
    "GroqService",
    # Utilities
    "TokenBucketRateLimiter",
    "estimate_tokens",
    # Exceptions
    "LLMServiceError",
    "LLMRateLimitError",
    "LLMConnectionError",
    "LLMAuthenticationError",
    "LLMEmptyResponseError",
]
