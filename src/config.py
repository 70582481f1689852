"""Application configuration using Pydantic Settings.

All configuration is loaded from environment variables.
See .env.example for required variables.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # ==========================================================================
    # API Keys
    # ==========================================================================
    groq_api_key: SecretStr = Field(description="Groq API key for LLM")
    deepgram_api_key: SecretStr = Field(description="Deepgram API key for STT")
    plivo_auth_id: str = Field(description="Plivo Auth ID")
    plivo_auth_token: SecretStr = Field(description="Plivo Auth Token")
    elevenlabs_api_key: SecretStr | None = Field(
        default=None, description="ElevenLabs API key for TTS"
    )

    # ==========================================================================
    # Database
    # ==========================================================================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/voice_agent.db",
        description="SQLAlchemy async database URL",
    )

    # ==========================================================================
    # Application
    # ==========================================================================
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", description="Logging level"
    )
    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Deployment environment"
    )
    public_base_url: str = Field(
        default="http://localhost:8000",
        description="Externally reachable base URL for Plivo callbacks",
    )
    max_concurrent_calls: int = Field(
        default=20, ge=1, description="Calls handled at once before rejecting"
    )

    # ==========================================================================
    # Provider Models
    # ==========================================================================
    groq_model: str = Field(
        default="llama-3.3-70b-versatile",
        description="Groq chat model with tool-calling support",
    )
    groq_tokens_per_minute: int = Field(default=6000, description="Groq TPM budget")
    groq_requests_per_minute: int = Field(default=30, description="Groq RPM budget")
    deepgram_model: str = Field(default="nova-2-general", description="Deepgram model")
    deepgram_language: str = Field(default="en-US", description="Deepgram language code")
    elevenlabs_voice_id: str = Field(
        default="pNInz6obpgDQGcFmaJgB",
        description="Default ElevenLabs voice ID (tenants may override)",
    )
    elevenlabs_model_id: str = Field(
        default="eleven_turbo_v2_5",
        description="ElevenLabs model ID",
    )

    # ==========================================================================
    # Telephony Configuration
    # ==========================================================================
    plivo_audio_format: Literal["mulaw", "linear16"] = Field(
        default="linear16",
        description="Audio format for Plivo streams (mulaw or linear16)",
    )
    plivo_sample_rate: int = Field(
        default=16000,
        description="Sample rate for linear16 Plivo audio (8000 or 16000)",
    )

    # ==========================================================================
    # Conversation Pipeline
    # ==========================================================================
    llm_timeout_seconds: float = Field(default=8.0, description="Per-turn LLM timeout")
    tts_timeout_seconds: float = Field(default=15.0, description="Per-utterance TTS timeout")
    llm_max_tokens: int = Field(default=256, description="Max tokens per model turn")
    llm_temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tool_rounds: int = Field(
        default=3, ge=1, description="Responder attempts per turn when tool calls are malformed"
    )
    max_history_messages: int = Field(
        default=20, ge=2, description="Conversation messages sent to the model"
    )
    default_greeting: str = Field(
        default="Hello! Thanks for calling. How can I help you today?",
        description="Greeting when the tenant has none configured",
    )

    # ==========================================================================
    # Cost Rates (USD, converted to integer cents per call)
    # ==========================================================================
    cost_stt_per_minute: float = Field(default=0.0043, description="Deepgram per audio minute")
    cost_llm_per_1k_tokens: float = Field(default=0.000075, description="LLM per 1K tokens")
    cost_tts_per_1k_chars: float = Field(default=0.30, description="ElevenLabs per 1K chars")
    cost_telephony_per_minute: float = Field(
        default=0.0085, description="Plivo per call minute"
    )

    # ==========================================================================
    # Derived Properties
    # ==========================================================================
    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Use dependency injection in FastAPI:
        settings: Settings = Depends(get_settings)
    """
    return Settings()  # type: ignore[call-arg]  # loads from env
