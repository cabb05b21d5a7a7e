"""
TranscriptionSessionManager: up to two provider sessions (local mic, system audio) and
the turn-completion heuristic that turns vendor fragments into utterances.

Turn completion, per speaker S:
- delta: cancel S's completion timer, append to S's in-progress text, emit PARTIAL with
  (completion buffer + in-progress text).
- completed: append fragment to S's completion buffer (single space), restart the debounce
  timer. When the timer fires with no newer fragment, emit FINAL with the whole buffer.
- Speaker switch: any event for S while the other speaker has a pending completion buffer
  flushes that buffer first, so two speakers' fragments never merge into one utterance.

All of this runs on the event loop; timers are loop.call_later handles, at most one per speaker.
"""
from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from listenkit.config import Settings, get_settings
from listenkit.stt.base import (
    ProviderEvent,
    SessionNotActive,
    STTProvider,
    STTSessionHandle,
    SttInitError,
)
from listenkit.transcript.models import Speaker, UtteranceEvent

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    CLOSED = "closed"
    INITIALIZING = "initializing"
    ACTIVE = "active"
    CLOSING = "closing"


class ChannelMode(str, Enum):
    BOTH = "both"
    SYSTEM_ONLY = "system_only"


@dataclass
class TranscriptionSession:
    """Per-speaker provider session plus its turn accumulation state."""

    speaker: Speaker
    state: SessionState = SessionState.CLOSED
    handle: STTSessionHandle | None = None
    in_progress: str = ""
    completion_buffer: str = ""
    timer: asyncio.TimerHandle | None = None
    turn_id: str | None = None

    def reset_turn(self) -> None:
        self.in_progress = ""
        self.completion_buffer = ""
        self.turn_id = None


class TranscriptionSessionManager:
    """Owns the per-speaker sessions. Emits UtteranceEvents through on_utterance."""

    def __init__(
        self,
        provider: STTProvider,
        on_utterance: Callable[[UtteranceEvent], None],
        settings: Settings | None = None,
        on_session_lost: Callable[[Speaker, str], None] | None = None,
    ) -> None:
        settings = settings or get_settings()
        self._provider = provider
        self._on_utterance = on_utterance
        self._on_session_lost = on_session_lost
        self._debounce_sec = settings.COMPLETION_DEBOUNCE_MS / 1000.0
        self._sessions: dict[Speaker, TranscriptionSession] = {
            Speaker.LOCAL: TranscriptionSession(Speaker.LOCAL),
            Speaker.REMOTE: TranscriptionSession(Speaker.REMOTE),
        }
        self._mode: ChannelMode | None = None
        self._turn_seq = itertools.count(1)

    @property
    def mode(self) -> ChannelMode | None:
        return self._mode

    def state(self, speaker: Speaker) -> SessionState:
        return self._sessions[speaker].state

    def active_speakers(self) -> list[Speaker]:
        return [s.speaker for s in self._sessions.values() if s.state is SessionState.ACTIVE]

    def is_active(self) -> bool:
        return bool(self.active_speakers())

    # --- lifecycle ---

    async def initialize(self, language: str, mode: ChannelMode = ChannelMode.BOTH) -> None:
        """Open one (system only) or two provider sessions. Raises SttInitError; nothing stays open then."""
        if any(s.state is not SessionState.CLOSED for s in self._sessions.values()):
            await self.close()
        speakers = [Speaker.REMOTE] if mode is ChannelMode.SYSTEM_ONLY else [Speaker.LOCAL, Speaker.REMOTE]
        self._mode = mode
        for speaker in speakers:
            self._sessions[speaker].state = SessionState.INITIALIZING
        results = await asyncio.gather(
            *(self._open(speaker, language) for speaker in speakers),
            return_exceptions=True,
        )
        failures = [r for r in results if isinstance(r, BaseException)]
        if failures:
            await self.close()
            first = failures[0]
            if isinstance(first, SttInitError):
                raise first
            raise SttInitError(str(first)) from first
        logger.info("STT sessions initialized (%s, language=%s)", mode.value, language)

    async def _open(self, speaker: Speaker, language: str) -> None:
        session = self._sessions[speaker]
        handle = await self._provider.open_session(
            language=language,
            on_event=lambda event: self._on_provider_event(speaker, event),
            on_close=lambda reason: self._on_provider_closed(speaker, reason),
        )
        if session.state is not SessionState.INITIALIZING:
            # close() ran while the handshake was in flight
            await handle.close()
            return
        session.handle = handle
        session.state = SessionState.ACTIVE

    async def close(self) -> None:
        """Tear down all sessions and clear all timers. Pending fragments are discarded."""
        handles: list[STTSessionHandle] = []
        for session in self._sessions.values():
            self._cancel_timer(session)
            session.reset_turn()
            if session.handle is not None:
                handles.append(session.handle)
            session.handle = None
            if session.state is not SessionState.CLOSED:
                session.state = SessionState.CLOSING
        results = await asyncio.gather(*(h.close() for h in handles), return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                logger.warning("STT session close failed: %s", result)
        for session in self._sessions.values():
            session.state = SessionState.CLOSED
        self._mode = None
        if handles:
            logger.info("All STT sessions closed")

    async def send_audio(self, speaker: Speaker, data_b64: str) -> None:
        session = self._sessions[speaker]
        if session.state is not SessionState.ACTIVE or session.handle is None:
            raise SessionNotActive(f"{speaker.value} STT session not active ({session.state.value})")
        await session.handle.send_audio(data_b64)

    # --- turn completion ---

    def has_pending(self) -> bool:
        """True when a completion buffer is waiting for its debounce flush."""
        return any(s.completion_buffer.strip() for s in self._sessions.values())

    def flush_pending(self) -> int:
        """Flush every pending completion buffer now. Returns number of finals emitted."""
        flushed = 0
        for session in self._sessions.values():
            if session.completion_buffer.strip():
                self._flush(session)
                flushed += 1
        return flushed

    def _on_provider_event(self, speaker: Speaker, event: ProviderEvent) -> None:
        session = self._sessions[speaker]
        if session.state is not SessionState.ACTIVE:
            logger.debug("Ignoring %s event for inactive %s session", event.kind, speaker.value)
            return
        self._flush_other_speakers(speaker)
        if event.kind == "delta":
            self._handle_delta(session, event.text)
        elif event.kind == "completed":
            self._handle_completed(session, event.text)

    def _flush_other_speakers(self, speaker: Speaker) -> None:
        for other in self._sessions.values():
            if other.speaker is not speaker and other.completion_buffer.strip():
                logger.debug("Speaker switch %s -> %s: flushing", other.speaker.value, speaker.value)
                self._flush(other)

    def _handle_delta(self, session: TranscriptionSession, text: str) -> None:
        self._cancel_timer(session)
        if session.turn_id is None:
            session.turn_id = self._new_turn_id(session.speaker)
        session.in_progress += text
        prefix = f"{session.completion_buffer} " if session.completion_buffer else ""
        self._emit(UtteranceEvent.partial(session.speaker, prefix + session.in_progress, session.turn_id))

    def _handle_completed(self, session: TranscriptionSession, text: str) -> None:
        text = text.strip()
        if not text:
            return
        if session.turn_id is None:
            session.turn_id = self._new_turn_id(session.speaker)
        session.in_progress = ""
        session.completion_buffer = f"{session.completion_buffer} {text}" if session.completion_buffer else text
        self._cancel_timer(session)
        loop = asyncio.get_running_loop()
        session.timer = loop.call_later(self._debounce_sec, self._on_completion_timer, session.speaker)

    def _on_completion_timer(self, speaker: Speaker) -> None:
        session = self._sessions[speaker]
        session.timer = None
        if session.state is not SessionState.ACTIVE:
            return
        self._flush(session)

    def _flush(self, session: TranscriptionSession) -> None:
        self._cancel_timer(session)
        text = session.completion_buffer.strip()
        turn_id = session.turn_id
        session.reset_turn()
        if not text:
            return
        self._emit(UtteranceEvent.final(session.speaker, text, turn_id))

    def _on_provider_closed(self, speaker: Speaker, reason: str | None) -> None:
        session = self._sessions[speaker]
        if session.state is not SessionState.ACTIVE:
            return
        self._flush(session)
        session.state = SessionState.CLOSED
        session.handle = None
        if self._on_session_lost is not None:
            self._on_session_lost(speaker, reason or "closed")

    # --- helpers ---

    def _new_turn_id(self, speaker: Speaker) -> str:
        return f"{speaker.name.lower()}-{next(self._turn_seq)}"

    @staticmethod
    def _cancel_timer(session: TranscriptionSession) -> None:
        if session.timer is not None:
            session.timer.cancel()
            session.timer = None

    def _emit(self, event: UtteranceEvent) -> None:
        try:
            self._on_utterance(event)
        except Exception:
            logger.exception("Utterance handler failed")
