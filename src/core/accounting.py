"""Per-call provider usage and the cost it implies.

Costs are integer cents derived from cumulative usage, so a snapshot can
be taken at any time and persisted repeatedly. A reported cost never goes
down, even if usage is re-derived from a smaller figure.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from src.config import Settings, get_settings
from src.logging_config import get_logger

if TYPE_CHECKING:
    from src.db.store import CallStore

logger: Any = get_logger(__name__)


def to_cents(dollars: float) -> int:
    """Round half up to whole cents."""
    return int(math.floor(dollars * 100 + 0.5))


@dataclass(frozen=True, slots=True)
class CostRates:
    """USD prices per unit of provider usage."""

    stt_per_minute: float = 0.0043
    llm_per_1k_tokens: float = 0.000075
    tts_per_1k_chars: float = 0.30
    telephony_per_minute: float = 0.0085

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> CostRates:
        s = settings or get_settings()
        return cls(
            stt_per_minute=s.cost_stt_per_minute,
            llm_per_1k_tokens=s.cost_llm_per_1k_tokens,
            tts_per_1k_chars=s.cost_tts_per_1k_chars,
            telephony_per_minute=s.cost_telephony_per_minute,
        )


@dataclass(frozen=True, slots=True)
class CostBreakdown:
    """Cost of one call in cents."""

    stt: int = 0
    llm: int = 0
    tts: int = 0
    telephony: int = 0

    @property
    def total(self) -> int:
        return self.stt + self.llm + self.tts + self.telephony

    def as_call_fields(self) -> dict[str, int]:
        return {
            "cost_stt": self.stt,
            "cost_llm": self.llm,
            "cost_tts": self.tts,
            "cost_telephony": self.telephony,
            "cost_total": self.total,
        }


class UsageAccountant:
    """Accumulates raw usage for one call.

    STT and telephony usage are reported as running totals (the provider
    measures them); LLM tokens and TTS characters are added per request.
    """

    def __init__(self, rates: CostRates | None = None) -> None:
        self._rates = rates or CostRates()
        self.stt_seconds = 0.0
        self.llm_input_tokens = 0
        self.llm_output_tokens = 0
        self.tts_characters = 0
        self.telephony_seconds = 0.0
        self._last = CostBreakdown()

    @property
    def rates(self) -> CostRates:
        return self._rates

    def record_stt_audio(self, total_seconds: float) -> None:
        self.stt_seconds = max(self.stt_seconds, total_seconds)

    def record_telephony_duration(self, total_seconds: float) -> None:
        self.telephony_seconds = max(self.telephony_seconds, total_seconds)

    def add_llm_usage(self, prompt_tokens: int, completion_tokens: int) -> None:
        if prompt_tokens < 0 or completion_tokens < 0:
            raise ValueError("Token counts cannot be negative")
        self.llm_input_tokens += prompt_tokens
        self.llm_output_tokens += completion_tokens

    def add_tts_characters(self, characters: int) -> None:
        if characters < 0:
            raise ValueError("Character count cannot be negative")
        self.tts_characters += characters

    def snapshot(self) -> CostBreakdown:
        """Current costs, clamped to never fall below the last snapshot."""
        rates = self._rates
        tokens = self.llm_input_tokens + self.llm_output_tokens
        current = CostBreakdown(
            stt=to_cents(self.stt_seconds / 60 * rates.stt_per_minute),
            llm=to_cents(tokens / 1000 * rates.llm_per_1k_tokens),
            tts=to_cents(self.tts_characters / 1000 * rates.tts_per_1k_chars),
            telephony=to_cents(self.telephony_seconds / 60 * rates.telephony_per_minute),
        )
        last = self._last
        self._last = CostBreakdown(
            stt=max(current.stt, last.stt),
            llm=max(current.llm, last.llm),
            tts=max(current.tts, last.tts),
            telephony=max(current.telephony, last.telephony),
        )
        return self._last

    async def flush(self, store: CallStore, call_id: str) -> CostBreakdown:
        """Persist the current snapshot onto the call row."""
        breakdown = self.snapshot()
        await store.update_call(call_id, **breakdown.as_call_fields())
        logger.debug(f"Call {call_id} costs: {breakdown.total}c total")
        return breakdown
