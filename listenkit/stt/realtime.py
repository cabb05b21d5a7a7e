"""
Realtime websocket transport shared by the STT vendors.

One websocket = one provider session. open_session() connects, sends the vendor setup
message and waits (bounded) for the vendor's acknowledgement. A receive task then decodes
each JSON message, lets the vendor adapter normalize it and hands ProviderEvents on.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from listenkit.config import Settings, get_settings
from listenkit.stt.base import (
    CloseHandler,
    EventHandler,
    ProviderEvent,
    SessionNotActive,
    STTProvider,
    STTSessionHandle,
    SttInitError,
)

logger = logging.getLogger(__name__)


def _decode(raw: str | bytes) -> dict[str, Any] | None:
    try:
        msg = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("Unparseable STT message dropped (%d bytes)", len(raw))
        return None
    return msg if isinstance(msg, dict) else None


class RealtimeWebSocketProvider(STTProvider):
    """Base for websocket STT vendors. Subclasses define the wire shapes."""

    def __init__(self, settings: Settings | None = None, connect=None) -> None:
        self._settings = settings or get_settings()
        self._connect = connect or websockets.connect

    # --- vendor hooks ---

    def url(self) -> str:
        raise NotImplementedError

    def headers(self) -> dict[str, str]:
        return {}

    def setup_message(self, language: str) -> dict[str, Any]:
        raise NotImplementedError

    def is_handshake_ack(self, msg: dict[str, Any]) -> bool:
        raise NotImplementedError

    def error_text(self, msg: dict[str, Any]) -> str | None:
        """Vendor error carried in a message, if any."""
        err = msg.get("error")
        if not err:
            return None
        if isinstance(err, dict):
            return str(err.get("message") or err)
        return str(err)

    def audio_message(self, data_b64: str) -> dict[str, Any]:
        raise NotImplementedError

    def close_message(self) -> dict[str, Any] | None:
        return None

    def normalize(self, msg: dict[str, Any]) -> list[ProviderEvent]:
        raise NotImplementedError

    # --- transport ---

    async def open_session(
        self,
        *,
        language: str,
        on_event: EventHandler,
        on_close: CloseHandler,
    ) -> STTSessionHandle:
        try:
            ws = await self._connect(self.url(), additional_headers=self.headers(), max_size=None)
        except (OSError, WebSocketException) as e:
            raise SttInitError(f"{self.name}: connect failed: {e}") from e
        try:
            await ws.send(json.dumps(self.setup_message(language)))
            await asyncio.wait_for(self._await_ack(ws), timeout=self._settings.STT_HANDSHAKE_TIMEOUT_SEC)
        except asyncio.TimeoutError as e:
            await ws.close()
            raise SttInitError(f"{self.name}: handshake timed out") from e
        except (OSError, WebSocketException) as e:
            await ws.close()
            raise SttInitError(f"{self.name}: handshake failed: {e}") from e
        except SttInitError:
            await ws.close()
            raise
        logger.info("%s STT session opened (language=%s)", self.name, language)
        session = RealtimeWebSocketSession(self, ws, on_event, on_close)
        session.start()
        return session

    async def _await_ack(self, ws) -> None:
        async for raw in ws:
            msg = _decode(raw)
            if msg is None:
                continue
            error = self.error_text(msg)
            if error:
                raise SttInitError(f"{self.name}: {error}")
            if self.is_handshake_ack(msg):
                return
        raise SttInitError(f"{self.name}: connection closed during handshake")


class RealtimeWebSocketSession(STTSessionHandle):
    def __init__(
        self,
        provider: RealtimeWebSocketProvider,
        ws,
        on_event: EventHandler,
        on_close: CloseHandler,
    ) -> None:
        self._provider = provider
        self._ws = ws
        self._on_event = on_event
        self._on_close = on_close
        self._closing = False
        self._task: asyncio.Task | None = None

    def start(self) -> None:
        self._task = asyncio.create_task(self._receive_loop())

    async def _receive_loop(self) -> None:
        reason: str | None = None
        try:
            async for raw in self._ws:
                msg = _decode(raw)
                if msg is None:
                    continue
                error = self._provider.error_text(msg)
                if error:
                    logger.error("%s STT session error: %s", self._provider.name, error)
                for event in self._provider.normalize(msg):
                    self._on_event(event)
        except asyncio.CancelledError:
            raise
        except ConnectionClosed as e:
            reason = str(e)
        except Exception as e:
            logger.exception("%s STT receive loop failed", self._provider.name)
            reason = str(e)
        if not self._closing:
            logger.warning("%s STT session closed: %s", self._provider.name, reason or "closed by server")
            self._on_close(reason or "closed by server")

    async def send_audio(self, data_b64: str) -> None:
        if self._closing:
            raise SessionNotActive(f"{self._provider.name} session is closing")
        await self._ws.send(json.dumps(self._provider.audio_message(data_b64)))

    async def close(self) -> None:
        if self._closing:
            return
        self._closing = True
        goodbye = self._provider.close_message()
        try:
            if goodbye is not None:
                await self._ws.send(json.dumps(goodbye))
            await self._ws.close()
        except (OSError, WebSocketException) as e:
            logger.debug("%s close: %s", self._provider.name, e)
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("%s STT session closed by client", self._provider.name)
