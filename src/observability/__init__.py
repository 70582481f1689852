"""Observability module for Prometheus metrics."""

from src.observability.metrics import (
    ACTIVE_CALLS,
    CALL_COST,
    CALL_DURATION,
    CALL_TOTAL,
    INTEGRATION_FAILURES,
    LLM_LATENCY,
    STT_LATENCY,
    TOOL_INVOCATIONS,
    TTS_FIRST_CHUNK,
    TURN_FAILURES,
    record_call_metrics,
    record_integration_failure,
    record_tool_invocation,
    record_turn_failure,
)

__all__ = [
    "CALL_TOTAL",
    "CALL_DURATION",
    "CALL_COST",
    "ACTIVE_CALLS",
    "TOOL_INVOCATIONS",
    "INTEGRATION_FAILURES",
    "TURN_FAILURES",
    "STT_LATENCY",
    "LLM_LATENCY",
    "TTS_FIRST_CHUNK",
    "record_call_metrics",
    "record_tool_invocation",
    "record_integration_failure",
    "record_turn_failure",
]
