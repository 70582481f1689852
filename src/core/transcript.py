"""In-memory call transcript."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from src.db.models import Speaker


@dataclass(frozen=True, slots=True)
class TranscriptEntry:
    """One line of conversation."""

    speaker: Speaker
    text: str
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "speaker": self.speaker.value,
            "text": self.text,
            "timestamp": self.timestamp.isoformat(),
        }


class Transcript:
    """Append-only, time-ordered transcript.

    Timestamps are clamped so each entry is never earlier than the one
    before it, keeping insertion order and time order identical.
    """

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or (lambda: datetime.now(UTC))
        self._entries: list[TranscriptEntry] = []

    def append(
        self,
        speaker: Speaker,
        text: str,
        timestamp: datetime | None = None,
    ) -> TranscriptEntry:
        ts = timestamp or self._clock()
        if self._entries and ts < self._entries[-1].timestamp:
            ts = self._entries[-1].timestamp
        entry = TranscriptEntry(speaker=speaker, text=text, timestamp=ts)
        self._entries.append(entry)
        return entry

    @property
    def entries(self) -> tuple[TranscriptEntry, ...]:
        return tuple(self._entries)

    def to_list(self) -> list[dict[str, Any]]:
        return [entry.to_dict() for entry in self._entries]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[TranscriptEntry]:
        return iter(self._entries)
