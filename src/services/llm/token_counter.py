"""Token estimation for rate limiting.

Groq doesn't expose a tokenizer, so requests are sized with a character
heuristic. Billing and cost accounting use the usage the API reports.
"""

import json
from typing import Any

CHARS_PER_TOKEN = 4
# Per-message framing overhead (role markers, separators)
MESSAGE_OVERHEAD_TOKENS = 4


def estimate_tokens(text: str) -> int:
    """Estimate token count: ~4 characters per token plus a 10% buffer."""
    if not text:
        return 0
    return int(len(text) / CHARS_PER_TOKEN * 1.1) + 1


def estimate_request_tokens(
    api_messages: list[dict[str, Any]],
    tools: list[dict[str, Any]] | None = None,
) -> int:
    """Estimate prompt tokens for a chat request, tool schemas included."""
    total = 0
    for message in api_messages:
        total += MESSAGE_OVERHEAD_TOKENS + estimate_tokens(message.get("content") or "")
        if message.get("tool_calls"):
            total += estimate_tokens(json.dumps(message["tool_calls"]))
    if tools:
        total += estimate_tokens(json.dumps(tools))
    return total
