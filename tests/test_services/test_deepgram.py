"""Tests for Deepgram STT service."""

import os
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from deepgram import LiveTranscriptionEvents

from src.services.stt.deepgram import DeepgramService
from src.services.stt.exceptions import STTServiceError
from src.services.stt.protocol import TranscriptEvent, TranscriptEventType


def result(text: str, *, is_final: bool, confidence: float = 0.9):
    """Build an object shaped like a Deepgram live transcription result."""
    alternative = SimpleNamespace(
        transcript=text,
        confidence=confidence,
        words=[SimpleNamespace(start=0.1, end=0.6)],
        languages=None,
    )
    return SimpleNamespace(
        channel=SimpleNamespace(alternatives=[alternative]),
        is_final=is_final,
        speech_final=is_final,
    )


class FakeLiveClient:
    """Live socket that answers every audio chunk with scripted callbacks."""

    def __init__(self, *, started: bool = True, script=None) -> None:
        self.started = started
        self.script = script or []
        self.handlers: dict = {}
        self.options = None
        self.sent: list[bytes] = []
        self.finished = 0

    def on(self, event, handler) -> None:
        self.handlers[event] = handler

    def fire(self, event, payload=None) -> None:
        self.handlers[event](self, payload)

    def start(self, options) -> bool:
        self.options = options
        return self.started

    def send(self, data: bytes) -> None:
        self.sent.append(data)
        for event, payload in self.script:
            self.fire(event, payload)

    def finish(self) -> None:
        self.finished += 1
        if self.finished == 1:
            self.fire(LiveTranscriptionEvents.Close)


async def one_second_of_audio():
    yield b"\x00" * 32000


async def collect(generator) -> list[TranscriptEvent]:
    return [event async for event in generator]


@pytest.fixture
def service(settings_factory) -> DeepgramService:
    return DeepgramService(settings=settings_factory())


def use_live(service: DeepgramService, live: FakeLiveClient) -> None:
    client = MagicMock()
    client.listen.live.v.return_value = live
    service._client = client


class TestDeepgramService:
    """Test suite for DeepgramService."""

    def test_init_default_model(self, service: DeepgramService) -> None:
        assert service._model == "nova-2-general"

    def test_init_custom_model(self, settings_factory) -> None:
        service = DeepgramService(settings=settings_factory(), model="nova-2-phonecall")
        assert service._model == "nova-2-phonecall"

    def test_client_lazy_init(self, service: DeepgramService) -> None:
        assert service._client is None

    def test_client_reused(self, service: DeepgramService) -> None:
        first = service.client
        assert service.client is first

    @pytest.mark.asyncio
    async def test_close(self, service: DeepgramService) -> None:
        _ = service.client
        await service.close()
        assert service._client is None

    @pytest.mark.asyncio
    async def test_health_check_success(self, service: DeepgramService) -> None:
        assert await service.health_check() is True


class TestTranscribeStream:

    @pytest.mark.asyncio
    async def test_events_and_usage(self, service: DeepgramService) -> None:
        live = FakeLiveClient(
            script=[
                (LiveTranscriptionEvents.SpeechStarted, None),
                (LiveTranscriptionEvents.Transcript, result("book a", is_final=False)),
                (LiveTranscriptionEvents.Transcript, result("", is_final=False)),
                (LiveTranscriptionEvents.Transcript, result("Book a cleaning.", is_final=True)),
                (LiveTranscriptionEvents.UtteranceEnd, None),
            ]
        )
        use_live(service, live)

        generator, metadata = await service.transcribe_stream(
            one_second_of_audio(), sample_rate=16000, encoding="linear16"
        )
        events = await collect(generator)

        assert [e.type for e in events] == [
            TranscriptEventType.SPEECH_STARTED,
            TranscriptEventType.INTERIM,
            TranscriptEventType.FINAL,
            TranscriptEventType.UTTERANCE_END,
        ]
        final = events[2]
        assert final.text == "Book a cleaning."
        assert final.speech_final
        assert final.language == "en-US"
        assert (final.start_time, final.end_time) == (0.1, 0.6)

        assert metadata.total_audio_seconds == pytest.approx(1.0)
        assert metadata.total_utterances == 1
        assert metadata.avg_confidence == pytest.approx(0.9)
        assert metadata.first_word_ms is not None
        assert live.options.sample_rate == 16000
        assert live.sent == [b"\x00" * 32000]

    @pytest.mark.asyncio
    async def test_mulaw_audio_duration(self, service: DeepgramService) -> None:
        live = FakeLiveClient()
        use_live(service, live)

        generator, metadata = await service.transcribe_stream(
            one_second_of_audio(), sample_rate=8000, encoding="mulaw"
        )
        assert await collect(generator) == []

        # 32000 mulaw bytes at 8kHz
        assert metadata.total_audio_seconds == pytest.approx(4.0)

    @pytest.mark.asyncio
    async def test_connection_failure_yields_error(self, service: DeepgramService) -> None:
        use_live(service, FakeLiveClient(started=False))

        generator, _ = await service.transcribe_stream(one_second_of_audio())
        events = await collect(generator)

        assert len(events) == 1
        assert events[0].type is TranscriptEventType.ERROR
        assert "connect" in events[0].error

    @pytest.mark.asyncio
    async def test_provider_error_ends_stream(self, service: DeepgramService) -> None:
        live = FakeLiveClient(
            script=[
                (LiveTranscriptionEvents.Transcript, result("hello", is_final=True)),
                (LiveTranscriptionEvents.Error, "socket reset"),
            ]
        )
        use_live(service, live)

        generator, _ = await service.transcribe_stream(one_second_of_audio())
        events = await collect(generator)

        assert [e.type for e in events] == [
            TranscriptEventType.FINAL,
            TranscriptEventType.ERROR,
        ]
        assert events[1].error == "socket reset"


class TestTranscribeFile:

    @pytest.mark.asyncio
    async def test_returns_transcript(self, service: DeepgramService) -> None:
        client = MagicMock()
        alternative = SimpleNamespace(transcript="Hello there", confidence=0.95)
        client.listen.prerecorded.v.return_value.transcribe_file.return_value = SimpleNamespace(
            results=SimpleNamespace(channels=[SimpleNamespace(alternatives=[alternative])])
        )
        service._client = client

        text, metadata = await service.transcribe_file(b"\x00" * 16000)

        assert text == "Hello there"
        assert metadata.avg_confidence == 0.95
        assert metadata.total_utterances == 1
        assert metadata.total_audio_seconds == pytest.approx(0.5)

    @pytest.mark.asyncio
    async def test_request_failure(self, service: DeepgramService) -> None:
        client = MagicMock()
        client.listen.prerecorded.v.return_value.transcribe_file.side_effect = RuntimeError(
            "503"
        )
        service._client = client

        with pytest.raises(STTServiceError):
            await service.transcribe_file(b"\x00" * 16000)


def _has_deepgram_key() -> bool:
    key = os.environ.get("DEEPGRAM_API_KEY", "")
    return bool(key) and not key.startswith("test-")


@pytest.mark.skipif(not _has_deepgram_key(), reason="DEEPGRAM_API_KEY not set")
class TestTranscriptionIntegration:
    """Integration tests for Deepgram API (env-gated)."""

    @pytest.mark.asyncio
    async def test_transcribe_silence(self, settings_factory) -> None:
        service = DeepgramService(
            settings=settings_factory(deepgram_api_key=os.environ["DEEPGRAM_API_KEY"])
        )

        text, metadata = await service.transcribe_file(b"\x00" * 32000)

        assert isinstance(text, str)
        assert metadata.model == service._model
