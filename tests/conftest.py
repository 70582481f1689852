"""Shared pytest fixtures for voice agent tests."""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

# src.main builds a module-level app from the environment
for _key, _value in {
    "GROQ_API_KEY": "test-groq-key",
    "DEEPGRAM_API_KEY": "test-deepgram-key",
    "PLIVO_AUTH_ID": "test-plivo-id",
    "PLIVO_AUTH_TOKEN": "test-plivo-token",
    "DATABASE_URL": "sqlite+aiosqlite:///:memory:",
}.items():
    os.environ.setdefault(_key, _value)

from src.config import Settings
from src.db.models import Business, Call, CallEvent, PhoneNumber
from src.db.repositories import AsyncCallEventRepository
from src.db.store import SQLCallStore
from src.services.llm.protocol import LLMResponse, Message, ToolSpec
from src.services.stt.protocol import TranscriptEvent, TranscriptMetadata
from src.services.tts.protocol import AudioChunk, SynthesisMetadata
from src.tools import CallContext, ToolDependencies

BUSINESS_ID = "biz-acme"
PHONE_NUMBER_ID = "pn-main"
CALL_ID = "call-1"
BUSINESS_LINE = "+15550001111"
FORWARD_TO = "+15559998888"
CALLER_PHONE = "+15551234567"
TELEPHONY_CALL_ID = "plivo-uuid-1"

# Wednesday 2025-06-04, 10:00 in New York
FIXED_NOW = datetime(2025, 6, 4, 14, 0, tzinfo=UTC)


def build_settings(**overrides) -> Settings:
    """Create a Settings object with safe test defaults."""
    base = {
        "groq_api_key": "test-groq-key",
        "deepgram_api_key": "test-deepgram-key",
        "plivo_auth_id": "test-plivo-id",
        "plivo_auth_token": "test-plivo-token",
        "elevenlabs_api_key": "test-elevenlabs-key",
        "database_url": "sqlite+aiosqlite:///:memory:",
        "public_base_url": "https://voice.example.com",
    }
    base.update(overrides)
    return Settings(**base)


@pytest.fixture
def settings_factory() -> Callable[..., Settings]:
    """Return a factory to build Settings with overrides."""
    return build_settings


@pytest.fixture
def settings(settings_factory: Callable[..., Settings]) -> Settings:
    """Default Settings fixture."""
    return settings_factory()


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def async_engine():
    """In-memory SQLite engine shared by every session of one test."""
    from src.db import models  # noqa: F401

    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(async_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def async_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def store(session_factory) -> SQLCallStore:
    return SQLCallStore(session_factory)


@dataclass
class Tenant:
    business: Business
    phone_number: PhoneNumber
    call: Call


async def seed_tenant(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    business_fields: dict[str, Any] | None = None,
    phone_fields: dict[str, Any] | None = None,
    call_fields: dict[str, Any] | None = None,
) -> Tenant:
    """Insert one business, its line and an in-progress inbound call."""
    business = Business(
        **{
            "id": BUSINESS_ID,
            "name": "Acme Dental",
            "agent_name": "Ava",
            "timezone": "America/New_York",
            **(business_fields or {}),
        }
    )
    phone_number = PhoneNumber(
        **{
            "id": PHONE_NUMBER_ID,
            "business_id": BUSINESS_ID,
            "phone_number": BUSINESS_LINE,
            "forward_to": FORWARD_TO,
            "greeting_message": "Thanks for calling Acme Dental, this is Ava.",
            **(phone_fields or {}),
        }
    )
    call = Call(
        **{
            "id": CALL_ID,
            "business_id": BUSINESS_ID,
            "phone_number_id": PHONE_NUMBER_ID,
            "from_number": CALLER_PHONE,
            "to_number": BUSINESS_LINE,
            "session_name": f"call-{CALL_ID}",
            "telephony_call_id": TELEPHONY_CALL_ID,
            "started_at": FIXED_NOW,
            **(call_fields or {}),
        }
    )
    async with session_factory() as session:
        session.add_all([business, phone_number, call])
        await session.commit()
    return Tenant(business=business, phone_number=phone_number, call=call)


@pytest_asyncio.fixture
async def tenant(session_factory) -> Tenant:
    """Default tenant with a forwarding number and no integrations."""
    return await seed_tenant(session_factory)


@pytest.fixture
def tenant_factory(session_factory) -> Callable[..., Any]:
    """Seed a tenant with custom business, line or call fields."""

    async def _seed(**kwargs: Any) -> Tenant:
        return await seed_tenant(session_factory, **kwargs)

    return _seed


@pytest.fixture
def list_events(session_factory) -> Callable[[str], Any]:
    """Return an async helper listing a call's audit events in order."""

    async def _list(call_id: str = CALL_ID) -> list[CallEvent]:
        async with session_factory() as session:
            return await AsyncCallEventRepository(session).list_for_call(call_id)

    return _list


# =============================================================================
# Tool Fixtures
# =============================================================================


@pytest.fixture
def call_context() -> CallContext:
    return CallContext(
        business_id=BUSINESS_ID,
        call_id=CALL_ID,
        caller_phone=CALLER_PHONE,
        telephony_call_id=TELEPHONY_CALL_ID,
    )


@pytest.fixture
def tool_deps(store) -> ToolDependencies:
    return ToolDependencies(
        store=store,
        public_base_url="https://voice.example.com",
        clock=lambda: FIXED_NOW,
    )


# =============================================================================
# Fake Providers
# =============================================================================


class FakeSTT:
    """Transcriber replaying scripted event streams, one per open."""

    def __init__(
        self,
        streams: list[list[TranscriptEvent]] | None = None,
        *,
        audio_seconds: float = 5.0,
        first_word_ms: float | None = 120.0,
    ) -> None:
        self.streams = list(streams or [])
        self.audio_seconds = audio_seconds
        self.first_word_ms = first_word_ms
        self.opened = 0
        self.open_kwargs: list[dict[str, Any]] = []
        self.closed = False

    async def transcribe_stream(self, audio_chunks, **kwargs):
        self.opened += 1
        self.open_kwargs.append(kwargs)
        events = self.streams.pop(0) if self.streams else []
        metadata = TranscriptMetadata(model="fake")

        async def _events():
            for event in events:
                metadata.total_audio_seconds += self.audio_seconds / max(len(events), 1)
                if metadata.first_word_ms is None:
                    metadata.first_word_ms = self.first_word_ms
                yield event

        return _events(), metadata

    async def transcribe_file(self, audio_data, **kwargs):
        return "", TranscriptMetadata()

    async def close(self) -> None:
        self.closed = True

    async def health_check(self) -> bool:
        return True


class FakeLLM:
    """Responder returning scripted responses (or raising scripted errors)."""

    def __init__(self, responses: list[LLMResponse | Exception] | None = None) -> None:
        self.responses = list(responses or [])
        self.requests: list[list[Message]] = []
        self.tools: dict[str, ToolSpec] = {}
        self.closed = False

    async def respond(self, messages, tools, *, max_tokens=256, temperature=0.7):
        self.requests.append(list(messages))
        self.tools = dict(tools)
        if not self.responses:
            return LLMResponse(
                text="Is there anything else?", prompt_tokens=10, completion_tokens=5
            )
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def estimate_tokens(self, text: str) -> int:
        return len(text) // 4

    async def close(self) -> None:
        self.closed = True

    async def health_check(self) -> bool:
        return True


class FakeTTS:
    """Synthesizer yielding two small chunks per request."""

    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.spoken: list[str] = []
        self.voices: list[str | None] = []
        self.closed = False

    async def synthesize_stream(self, text, *, voice=None, chunk_size_ms=100):
        if self.fail:
            raise RuntimeError("synthesizer unavailable")
        self.spoken.append(text)
        self.voices.append(voice)
        metadata = SynthesisMetadata(model="fake", voice=voice or "", input_chars=len(text))

        async def _chunks():
            for index in range(2):
                if metadata.first_chunk_ms is None:
                    metadata.first_chunk_ms = 40.0
                yield AudioChunk(audio_bytes=bytes([index]) * 320, is_final=index == 1)

        return _chunks(), metadata

    async def synthesize(self, text, *, voice=None):
        return b"", SynthesisMetadata()

    async def close(self) -> None:
        self.closed = True

    async def health_check(self) -> bool:
        return True


@dataclass
class FakeSender:
    """Collects audio sent back to the caller."""

    chunks: list[bytes] = field(default_factory=list)

    async def send_audio(self, audio_bytes: bytes) -> None:
        self.chunks.append(audio_bytes)


@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def stt_factory() -> type[FakeSTT]:
    return FakeSTT


@pytest.fixture
def llm_factory() -> type[FakeLLM]:
    return FakeLLM


@pytest.fixture
def tts_factory() -> type[FakeTTS]:
    return FakeTTS


@pytest.fixture
def sender() -> FakeSender:
    return FakeSender()


@pytest.fixture
def fake_stt() -> FakeSTT:
    return FakeSTT()


@pytest.fixture
def fake_llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def fake_tts() -> FakeTTS:
    return FakeTTS()


# =============================================================================
# FastAPI Test Client Fixtures
# =============================================================================


@pytest.fixture
def app_factory(settings, store) -> Callable[..., Any]:
    """Build the app against the test store, without running lifespan."""
    from src.main import create_app

    def _create(**kwargs):
        return create_app(settings, store=store, **kwargs)

    return _create


@pytest_asyncio.fixture
async def api_client(app_factory, session_factory) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Async HTTP client wired to the in-memory database.

    Runs on the test's event loop so the aiosqlite engine is shared safely.
    """
    from src.db.session import get_session

    app = app_factory()

    async def _override_get_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = _override_get_session
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        client.app = app  # type: ignore[attr-defined]
        yield client
