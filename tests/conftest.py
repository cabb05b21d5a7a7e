"""Fakes for every external collaborator. Nothing here touches the network or the OS audio stack."""
from __future__ import annotations

import asyncio

import pytest

from listenkit.audio import CaptureError
from listenkit.auth import AuthState
from listenkit.config import Settings
from listenkit.events import Event, EventBus, EventType
from listenkit.llm import LLMProvider
from listenkit.orchestrator import ConversationOrchestrator
from listenkit.persistence import InMemoryTranscriptRepository
from listenkit.screenshot import ScreenshotCapturer, ScreenshotSnapshot
from listenkit.stt import ProviderEvent, SessionNotActive, STTProvider, STTSessionHandle, SttInitError


def make_settings(**overrides) -> Settings:
    values = dict(
        OPENAI_API_KEY="sk-test",
        COMPLETION_DEBOUNCE_MS=50,
        SCREENSHOT_ENABLED=False,
        SCREENSHOT_INTERVAL_SEC=0.01,
        LOG_FILE="",
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


class FakeSTTHandle(STTSessionHandle):
    def __init__(self, on_event, on_close) -> None:
        self._on_event = on_event
        self._on_close = on_close
        self.sent: list[str] = []
        self.closed = False

    async def send_audio(self, data_b64: str) -> None:
        if self.closed:
            raise SessionNotActive("closed")
        self.sent.append(data_b64)

    async def close(self) -> None:
        self.closed = True

    def delta(self, text: str) -> None:
        self._on_event(ProviderEvent("delta", text))

    def completed(self, text: str) -> None:
        self._on_event(ProviderEvent("completed", text))

    def drop(self, reason: str = "server went away") -> None:
        self.closed = True
        self._on_close(reason)


class FakeSTTProvider(STTProvider):
    """Sessions open in request order: [LOCAL, REMOTE] for both channels, [REMOTE] for system only."""

    name = "fake"

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.handles: list[FakeSTTHandle] = []
        self.languages: list[str] = []

    async def open_session(self, *, language, on_event, on_close) -> FakeSTTHandle:
        self.languages.append(language)
        if self.fail:
            raise SttInitError("handshake rejected")
        handle = FakeSTTHandle(on_event, on_close)
        self.handles.append(handle)
        return handle


class FakeLLMProvider(LLMProvider):
    """
    Yields tokens in order. If hold_after is set, blocks after that many tokens until
    release() (or forever). Counts how many streams were closed.
    """

    def __init__(self, tokens=("Hi", " there"), error: Exception | None = None, hold_after: int | None = None) -> None:
        self.tokens = list(tokens)
        self.error = error
        self.hold_after = hold_after
        self.calls: list[list[dict]] = []
        self.opened = 0
        self.closed = 0
        self.holding = asyncio.Event()
        self._release = asyncio.Event()

    def release(self) -> None:
        self._release.set()

    async def stream_chat(self, messages):
        self.calls.append(messages)
        self.opened += 1
        try:
            for i, token in enumerate(self.tokens):
                if self.hold_after is not None and i == self.hold_after:
                    self.holding.set()
                    await self._release.wait()
                yield token
            if self.error is not None:
                raise self.error
        finally:
            self.closed += 1


class FakeScreenshotCapturer(ScreenshotCapturer):
    def __init__(self) -> None:
        self.calls = 0

    async def capture(self) -> ScreenshotSnapshot | None:
        self.calls += 1
        return ScreenshotSnapshot(base64="aW1n", width=4, height=3, timestamp=1_700_000_000_000)


class FakeSystemCapture:
    def __init__(self, on_chunk, settings=None, on_error=None, fail_kind: str | None = None) -> None:
        self.on_chunk = on_chunk
        self.on_error = on_error
        self.fail_kind = fail_kind
        self.started = False
        self.stopped = False

    async def start(self) -> None:
        if self.fail_kind:
            raise CaptureError(self.fail_kind, f"capture failed: {self.fail_kind}")
        self.started = True

    async def stop(self) -> None:
        self.stopped = True

    async def emit(self, mono: bytes) -> None:
        await self.on_chunk(mono)


class CaptureFactory:
    def __init__(self, fail_kind: str | None = None) -> None:
        self.fail_kind = fail_kind
        self.instances: list[FakeSystemCapture] = []

    def __call__(self, on_chunk, settings=None, on_error=None) -> FakeSystemCapture:
        capture = FakeSystemCapture(on_chunk, settings=settings, on_error=on_error, fail_kind=self.fail_kind)
        self.instances.append(capture)
        return capture


class Recorder:
    """Collects bus events."""

    def __init__(self, bus: EventBus) -> None:
        self.events: list[Event] = []
        bus.subscribe(self.events.append)

    def of(self, type_: EventType) -> list:
        return [e.payload for e in self.events if e.type is type_]


class Harness:
    def __init__(
        self,
        settings: Settings | None = None,
        stt: FakeSTTProvider | None = None,
        llm: FakeLLMProvider | None = None,
        capture: CaptureFactory | None = None,
        auth: AuthState | None = None,
        screenshots: FakeScreenshotCapturer | None = None,
    ) -> None:
        self.settings = settings or make_settings()
        self.stt = stt or FakeSTTProvider()
        self.llm = llm or FakeLLMProvider()
        self.capture = capture or CaptureFactory()
        self.repo = InMemoryTranscriptRepository()
        self.screenshots = screenshots or FakeScreenshotCapturer()
        self.orchestrator = ConversationOrchestrator(
            stt_provider=self.stt,
            llm_provider=self.llm,
            repository=self.repo,
            auth=auth or AuthState(self.settings),
            settings=self.settings,
            screenshot_capturer=self.screenshots,
            capture_factory=self.capture,
        )
        self.recorder = Recorder(self.orchestrator.bus)

    @property
    def local(self) -> FakeSTTHandle:
        return self.stt.handles[0]

    @property
    def remote(self) -> FakeSTTHandle:
        return self.stt.handles[-1]


async def settle(seconds: float = 0) -> None:
    """Let callbacks and spawned tasks run."""
    for _ in range(5):
        await asyncio.sleep(0)
    if seconds:
        await asyncio.sleep(seconds)
        for _ in range(5):
            await asyncio.sleep(0)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
async def harness_factory():
    created: list[Harness] = []

    def factory(**kwargs) -> Harness:
        harness = Harness(**kwargs)
        created.append(harness)
        return harness

    yield factory
    for h in created:
        await h.orchestrator.stop()


@pytest.fixture
async def harness():
    h = Harness()
    yield h
    await h.orchestrator.stop()
