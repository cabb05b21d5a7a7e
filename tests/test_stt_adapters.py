import asyncio
import json

import pytest

from listenkit.stt import GeminiLiveProvider, OpenAIRealtimeProvider, ProviderEvent, SessionNotActive, SttInitError, create_stt_provider

from conftest import make_settings


class FakeWebSocket:
    """Async-iterable stand-in for a websockets client connection."""

    def __init__(self) -> None:
        self.sent: list[dict] = []
        self.closed = False
        self._incoming: asyncio.Queue = asyncio.Queue()

    def push(self, msg) -> None:
        self._incoming.put_nowait(msg if isinstance(msg, (str, type(None))) else json.dumps(msg))

    async def send(self, raw: str) -> None:
        self.sent.append(json.loads(raw))

    async def close(self) -> None:
        self.closed = True
        self._incoming.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        msg = await self._incoming.get()
        if msg is None:
            raise StopAsyncIteration
        return msg


def fake_connect(ws: FakeWebSocket, seen: list):
    async def connect(url, additional_headers=None, max_size=None):
        seen.append((url, additional_headers))
        return ws

    return connect


def test_openai_normalization():
    provider = OpenAIRealtimeProvider(make_settings())
    delta = {"type": "conversation.item.input_audio_transcription.delta", "delta": "Hel"}
    assert provider.normalize(delta) == [ProviderEvent("delta", "Hel")]
    filler = {"type": "conversation.item.input_audio_transcription.delta", "delta": "vq_lbr_audio_42"}
    assert provider.normalize(filler) == []
    done = {"type": "conversation.item.input_audio_transcription.completed", "transcript": " Hello there. "}
    assert provider.normalize(done) == [ProviderEvent("completed", "Hello there.")]
    assert provider.normalize({"type": "conversation.item.input_audio_transcription.completed", "transcript": " "}) == []
    assert provider.normalize({"type": "input_audio_buffer.speech_started"}) == []


def test_gemini_normalization():
    provider = GeminiLiveProvider(make_settings())

    def msg(text):
        return {"serverContent": {"inputTranscription": {"text": text}}}

    assert provider.normalize(msg(" good morning ")) == [ProviderEvent("completed", "good morning")]
    assert provider.normalize(msg("<noise>")) == []
    assert provider.normalize(msg(".")) == []
    assert provider.normalize({"setupComplete": {}}) == []


def test_provider_factory():
    assert create_stt_provider(make_settings(STT_PROVIDER="gemini")).name == "gemini"
    assert create_stt_provider(make_settings()).name == "openai"


async def test_openai_session_handshake_and_events():
    ws, seen, events, closes = FakeWebSocket(), [], [], []
    ws.push({"type": "transcription_session.created"})
    ws.push({"type": "transcription_session.updated"})
    provider = OpenAIRealtimeProvider(make_settings(OPENAI_API_KEY="sk-abc"), connect=fake_connect(ws, seen))

    handle = await provider.open_session(language="de", on_event=events.append, on_close=closes.append)
    assert seen[0][1]["Authorization"] == "Bearer sk-abc"
    setup = ws.sent[0]
    assert setup["type"] == "transcription_session.update"
    assert setup["session"]["input_audio_transcription"]["language"] == "de"

    ws.push("not json")
    ws.push({"type": "conversation.item.input_audio_transcription.delta", "delta": "Hi"})
    await asyncio.sleep(0.01)
    assert events == [ProviderEvent("delta", "Hi")]

    await handle.send_audio("AAAA")
    assert ws.sent[-1] == {"type": "input_audio_buffer.append", "audio": "AAAA"}

    await handle.close()
    assert ws.closed
    assert {"type": "session.close"} in ws.sent
    assert closes == []
    with pytest.raises(SessionNotActive):
        await handle.send_audio("AAAA")


async def test_server_close_is_reported():
    ws, events, closes = FakeWebSocket(), [], []
    ws.push({"setupComplete": {}})
    provider = GeminiLiveProvider(make_settings(GEMINI_API_KEY="g-key"), connect=fake_connect(ws, []))
    await provider.open_session(language="en", on_event=events.append, on_close=closes.append)
    ws.push({"serverContent": {"inputTranscription": {"text": "hey"}}})
    ws.push(None)
    await asyncio.sleep(0.01)
    assert events == [ProviderEvent("completed", "hey")]
    assert closes == ["closed by server"]


async def test_handshake_error_raises_init_error():
    ws = FakeWebSocket()
    ws.push({"type": "error", "error": {"message": "invalid api key"}})
    provider = OpenAIRealtimeProvider(make_settings(), connect=fake_connect(ws, []))
    with pytest.raises(SttInitError, match="invalid api key"):
        await provider.open_session(language="en", on_event=lambda e: None, on_close=lambda r: None)
    assert ws.closed


async def test_handshake_timeout():
    ws = FakeWebSocket()
    provider = OpenAIRealtimeProvider(make_settings(STT_HANDSHAKE_TIMEOUT_SEC=0.05), connect=fake_connect(ws, []))
    with pytest.raises(SttInitError, match="timed out"):
        await provider.open_session(language="en", on_event=lambda e: None, on_close=lambda r: None)


async def test_connect_failure_raises_init_error():
    async def refuse(url, additional_headers=None, max_size=None):
        raise OSError("connection refused")

    provider = OpenAIRealtimeProvider(make_settings(), connect=refuse)
    with pytest.raises(SttInitError, match="connect failed"):
        await provider.open_session(language="en", on_event=lambda e: None, on_close=lambda r: None)
