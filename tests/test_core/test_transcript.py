"""Tests for the in-memory transcript."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from src.core import Transcript
from src.db.models import Speaker

T0 = datetime(2025, 6, 4, 14, 0, tzinfo=UTC)


class TestTranscript:

    def test_appends_in_order(self) -> None:
        times = iter([T0, T0 + timedelta(seconds=2)])
        transcript = Transcript(clock=lambda: next(times))

        transcript.append(Speaker.agent, "Hello!")
        transcript.append(Speaker.user, "Hi, I need an appointment")

        assert len(transcript) == 2
        assert [entry.speaker for entry in transcript] == [Speaker.agent, Speaker.user]
        assert transcript.to_list() == [
            {"speaker": "agent", "text": "Hello!", "timestamp": T0.isoformat()},
            {
                "speaker": "user",
                "text": "Hi, I need an appointment",
                "timestamp": (T0 + timedelta(seconds=2)).isoformat(),
            },
        ]

    def test_timestamps_never_go_backward(self) -> None:
        transcript = Transcript()
        transcript.append(Speaker.user, "first", timestamp=T0)

        entry = transcript.append(Speaker.agent, "second", timestamp=T0 - timedelta(seconds=1))

        assert entry.timestamp == T0

    def test_entries_is_a_snapshot(self) -> None:
        transcript = Transcript()
        transcript.append(Speaker.user, "one", timestamp=T0)
        entries = transcript.entries

        transcript.append(Speaker.agent, "two", timestamp=T0)

        assert len(entries) == 1
        assert len(transcript.entries) == 2
