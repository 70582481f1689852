"""Error taxonomy shared by tools, the store and the session orchestrator.

Vendor adapters keep their own hierarchies (STTServiceError, LLMServiceError,
TTSServiceError); these cover everything the call logic itself raises.
"""

from __future__ import annotations


class VoiceAgentError(Exception):
    """Base error for call handling."""

    pass


class ValidationError(VoiceAgentError):
    """Malformed or insufficient arguments (tool call or model output)."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class NotFoundError(VoiceAgentError):
    """Missing tenant, call or phone-number configuration."""

    pass


class ConfigurationError(NotFoundError):
    """Session metadata is unusable. Fatal before the turn loop starts."""

    pass


class IntegrationError(VoiceAgentError):
    """External calendar, CRM or carrier call failed."""

    def __init__(self, integration: str, message: str) -> None:
        super().__init__(f"{integration}: {message}")
        self.integration = integration


class PersistenceError(VoiceAgentError):
    """Call-record store unreachable or rejected a write."""

    pass
