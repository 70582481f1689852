"""Prometheus metrics for the voice agent.

Covers call outcomes, tool usage, integration health and per-stage
latency of the conversation pipeline.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, generate_latest
from prometheus_client.exposition import CONTENT_TYPE_LATEST

# =============================================================================
# Counters
# =============================================================================

CALL_TOTAL = Counter(
    "voiceagent_call_total",
    "Total calls finalized by the voice agent",
    ["outcome", "business_id"],
)

TOOL_INVOCATIONS = Counter(
    "voiceagent_tool_invocations_total",
    "Tool invocations by tool and whether they completed",
    ["tool", "ok"],
)

INTEGRATION_FAILURES = Counter(
    "voiceagent_integration_failures_total",
    "Failed calls to calendar, CRM or carrier integrations",
    ["integration"],
)

TURN_FAILURES = Counter(
    "voiceagent_turn_failures_total",
    "Conversation turns that ended in a spoken apology",
    ["stage"],
)

# =============================================================================
# Gauges
# =============================================================================

ACTIVE_CALLS = Gauge(
    "voiceagent_active_calls",
    "Calls with a live media session",
)

# =============================================================================
# Histograms
# =============================================================================

CALL_DURATION = Histogram(
    "voiceagent_call_duration_seconds",
    "Call duration in seconds",
    buckets=[10, 30, 60, 120, 300, 600, 900, 1800],
)

CALL_COST = Histogram(
    "voiceagent_call_cost_cents",
    "Total provider cost per call in cents",
    buckets=[1, 2, 5, 10, 25, 50, 100, 250],
)

STT_LATENCY = Histogram(
    "voiceagent_stt_latency_seconds",
    "Speech-to-text latency (time to first word)",
    buckets=[0.1, 0.25, 0.5, 0.75, 1.0, 1.5, 2.0, 3.0, 5.0],
)

LLM_LATENCY = Histogram(
    "voiceagent_llm_latency_seconds",
    "Responder turn latency",
    buckets=[0.1, 0.25, 0.5, 0.75, 1.0, 1.5, 2.0, 3.0, 5.0, 8.0],
)

TTS_FIRST_CHUNK = Histogram(
    "voiceagent_tts_first_chunk_seconds",
    "TTS time to first audio chunk",
    buckets=[0.05, 0.1, 0.25, 0.5, 0.75, 1.0, 1.5, 2.0],
)

# =============================================================================
# Helper Functions
# =============================================================================


def record_call_metrics(
    outcome: str,
    business_id: str,
    duration_seconds: float,
    *,
    cost_cents: int = 0,
    stt_latency_ms: float | None = None,
    llm_latency_ms: float | None = None,
    tts_latency_ms: float | None = None,
) -> None:
    """Record metrics for a finalized call.

    Args:
        outcome: Call outcome, or "none" when no tool set one
        business_id: Business identifier
        duration_seconds: Total call duration
        cost_cents: Total provider cost
        stt_latency_ms: STT time to first word in milliseconds
        llm_latency_ms: Average responder latency in milliseconds
        tts_latency_ms: Average TTS first chunk latency in milliseconds
    """
    CALL_TOTAL.labels(outcome=outcome, business_id=business_id).inc()
    CALL_DURATION.observe(duration_seconds)
    CALL_COST.observe(cost_cents)

    # Latencies arrive in ms
    if stt_latency_ms is not None and stt_latency_ms > 0:
        STT_LATENCY.observe(stt_latency_ms / 1000)

    if llm_latency_ms is not None and llm_latency_ms > 0:
        LLM_LATENCY.observe(llm_latency_ms / 1000)

    if tts_latency_ms is not None and tts_latency_ms > 0:
        TTS_FIRST_CHUNK.observe(tts_latency_ms / 1000)


def record_tool_invocation(tool: str, ok: bool) -> None:
    TOOL_INVOCATIONS.labels(tool=tool, ok=str(ok).lower()).inc()


def record_integration_failure(integration: str) -> None:
    INTEGRATION_FAILURES.labels(integration=integration).inc()


def record_turn_failure(stage: str) -> None:
    """Count a turn that failed at `stage` (stt, llm, tool, tts, store)."""
    TURN_FAILURES.labels(stage=stage).inc()


def get_metrics() -> bytes:
    """Generate Prometheus metrics output.

    Returns:
        Metrics in Prometheus text exposition format.
    """
    return generate_latest()


def get_content_type() -> str:
    """Get the content type for Prometheus metrics."""
    return CONTENT_TYPE_LATEST
