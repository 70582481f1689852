"""What a tool hands back to the turn loop."""

from __future__ import annotations

from dataclasses import dataclass

from src.db.models import CallOutcome


@dataclass(frozen=True, slots=True)
class ToolResult:
    """Spoken text plus the outcome the tool recorded, if any.

    `ok` is False when the tool fell back to its apology after an error.
    """

    message: str
    outcome: CallOutcome | None = None
    ok: bool = True
