"""Core call orchestration.

- CallSession: per-call lifecycle, transcript, costs and tool execution
- ConversationManager: bounded responder history
- VoicePipeline: the STT → responder → TTS turn loop
- UsageAccountant: provider usage and cost in cents
"""

from src.core.accounting import CostBreakdown, CostRates, UsageAccountant, to_cents
from src.core.context import ConversationManager
from src.core.pipeline import (
    AudioBuffer,
    AudioSender,
    PipelineConfig,
    VoicePipeline,
)
from src.core.session import CallMetrics, CallSession, SessionMetadata, SessionState
from src.core.tasks import BackgroundTasks
from src.core.transcript import Transcript, TranscriptEntry

__all__ = [
    # Session management
    "CallSession",
    "CallMetrics",
    "SessionMetadata",
    "SessionState",
    "BackgroundTasks",
    "Transcript",
    "TranscriptEntry",
    "ConversationManager",
    # Pipeline
    "VoicePipeline",
    "PipelineConfig",
    "AudioBuffer",
    "AudioSender",
    # Costs
    "UsageAccountant",
    "CostRates",
    "CostBreakdown",
    "to_cents",
]
