"""
ConversationOrchestrator: the continuous-listening state machine.

  Idle --start--> Listening <--pause/resume--> Paused
  Listening|Paused --request_summary--> Processing --done|error|cancel--> Paused
  any --stop--> Idle

Owns the audio pipeline, the STT session manager, the conversation buffer and the single
in-flight LLM request. Everything observable goes out through the EventBus.
Pause keeps capture and STT sessions open; audio is simply not forwarded while not Listening.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import aclosing
from dataclasses import dataclass
from typing import Callable

from listenkit.audio import AudioIngestPipeline, CaptureError
from listenkit.auth import AuthState
from listenkit.commands import Command, transition
from listenkit.config import Settings, get_settings
from listenkit.events import EventBus, EventType
from listenkit.llm import ChatMessage, LLMProvider, LLMRequestError
from listenkit.persistence import TranscriptRepository
from listenkit.schemas.events import (
    AudioFramePayload,
    ConversationMessage,
    ConversationUpdatePayload,
    LLMErrorPayload,
    ListenErrorPayload,
    ListenStatePayload,
    SttUpdatePayload,
)
from listenkit.screenshot import ScreenshotCapturer, ScreenshotSnapshot
from listenkit.stt import ChannelMode, SessionNotActive, STTProvider, SttInitError, TranscriptionSessionManager
from listenkit.transcript.models import (
    ConversationBuffer,
    ConversationEntry,
    ListenState,
    Speaker,
    UtteranceEvent,
    render_conversation,
)

logger = logging.getLogger(__name__)

# Error messages surfaced to the user (continuous-listen-error)
ERROR_TEXT = {
    "auth": "User not logged in",
    "api_key": "No API key configured for the speech-to-text service",
    "stt_init": "Failed to initialize speech-to-text service. Please check your API key.",
    "stt_session": "Speech-to-text connection lost",
    "persistence": "Could not open a transcript session",
}


@dataclass
class PendingLLMRequest:
    """The single in-flight summary request. message_id is the AI message's stable id."""

    message_id: str
    task: asyncio.Task | None = None
    cancel_reason: str | None = None
    response: str = ""

    async def wait(self) -> str | None:
        """Final response text; None when the request failed or was cancelled."""
        if self.task is None:
            return None
        results = await asyncio.gather(self.task, return_exceptions=True)
        result = results[0]
        return None if isinstance(result, BaseException) else result


def build_summary_messages(
    system_prompt: str,
    entries: tuple[ConversationEntry, ...],
    screenshot: ScreenshotSnapshot | None = None,
) -> list[ChatMessage]:
    """System prompt + one user message holding the conversation (and optional screen image)."""
    text = "Here is the conversation so far:\n\n" + (render_conversation(entries) or "(nothing yet)")
    content: list[dict] = [{"type": "text", "text": text}]
    if screenshot is not None:
        content.append({"type": "image", "data": screenshot.base64, "mime_type": screenshot.mime_type})
    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": content},
    ]


class ConversationOrchestrator:
    def __init__(
        self,
        stt_provider: STTProvider,
        llm_provider: LLMProvider,
        repository: TranscriptRepository,
        auth: AuthState | None = None,
        settings: Settings | None = None,
        screenshot_capturer: ScreenshotCapturer | None = None,
        bus: EventBus | None = None,
        capture_factory: Callable | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._auth = auth or AuthState(self._settings)
        self._repository = repository
        self._llm = llm_provider
        self._screenshot_capturer = screenshot_capturer if self._settings.SCREENSHOT_ENABLED else None
        self.bus = bus or EventBus()

        self._sessions = TranscriptionSessionManager(
            stt_provider,
            on_utterance=self._on_utterance,
            settings=self._settings,
            on_session_lost=self._on_session_lost,
        )
        self._audio = AudioIngestPipeline(
            sink=self._forward_audio,
            frame_tap=self._on_audio_frame,
            settings=self._settings,
            capture_factory=capture_factory,
            on_error=self._on_capture_error,
        )
        self._buffer = ConversationBuffer(self._settings.CONVERSATION_HISTORY_MAX)
        self._state = ListenState.IDLE
        self._session_id: str | None = None
        self._screenshot: ScreenshotSnapshot | None = None
        self._screenshot_task: asyncio.Task | None = None
        self._pending: PendingLLMRequest | None = None
        self._background: set[asyncio.Task] = set()
        self._lifecycle = asyncio.Lock()

    # --- queries ---

    @property
    def state(self) -> ListenState:
        return self._state

    @property
    def is_listening(self) -> bool:
        return self._state is not ListenState.IDLE

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def conversation(self) -> tuple[ConversationEntry, ...]:
        return self._buffer.snapshot()

    @property
    def latest_screenshot(self) -> ScreenshotSnapshot | None:
        return self._screenshot

    @property
    def pending_request(self) -> PendingLLMRequest | None:
        return self._pending

    @property
    def sessions(self) -> TranscriptionSessionManager:
        return self._sessions

    def history(self) -> list[dict]:
        """get-conversation-history: finalized turns as utterances."""
        return [
            {
                "speaker": e.speaker.value,
                "text": e.text,
                "timestamp": e.timestamp,
                "isPartial": False,
                "isFinal": True,
                "messageId": e.message_id,
            }
            for e in self._buffer.snapshot()
        ]

    # --- lifecycle ---

    async def start(self) -> bool:
        """Idle -> Listening. Returns False (and stays Idle) on any fatal start error."""
        async with self._lifecycle:
            if self._state is not ListenState.IDLE:
                return True
            user_id = self._auth.user_id
            if not user_id:
                self._report("auth")
                return False
            if not self._auth.api_key:
                self._report("api_key")
                return False

            try:
                session_id = await self._repository.get_or_create_active_session(
                    user_id, self._settings.SESSION_KIND
                )
            except Exception as e:
                logger.exception("Failed to open transcript session: %s", e)
                self._report("persistence")
                return False

            mode = ChannelMode(self._settings.LISTEN_CHANNELS)
            try:
                await self._sessions.initialize(self._settings.STT_LANGUAGE, mode)
            except SttInitError as e:
                logger.error("STT initialization failed: %s", e)
                self._report("stt_init")
                await self._end_session(session_id)
                return False

            try:
                channels = await self._start_audio(mode)
                if channels:
                    self._session_id = session_id
                    self._set_state(transition(self._state, Command.START))
                else:
                    logger.error("No audio channel could be started")
            except Exception as e:
                logger.exception("Continuous listening failed to start: %s", e)
                channels = []
            if not channels:
                self._state = ListenState.IDLE
                self._session_id = None
                await self._audio.stop_all()
                await self._sessions.close()
                await self._end_session(session_id)
                return False

            if self._screenshot_capturer is not None:
                self._screenshot_task = asyncio.create_task(self._screenshot_loop())
            logger.info(
                "Continuous listening started (session=%s, channels=%s)",
                session_id,
                ",".join(s.value for s in channels),
            )
            return True

    async def _start_audio(self, mode: ChannelMode) -> list[Speaker]:
        channels: list[Speaker] = []
        if mode is ChannelMode.BOTH:
            await self._audio.start_capture(Speaker.LOCAL)
            channels.append(Speaker.LOCAL)
        try:
            await self._audio.start_capture(Speaker.REMOTE)
            channels.append(Speaker.REMOTE)
        except CaptureError as e:
            logger.warning("System audio unavailable (%s): %s", e.kind, e)
            self._report(e.kind, str(e))
        return channels

    async def stop(self) -> bool:
        """Any state -> Idle. Idempotent."""
        async with self._lifecycle:
            if self._state is ListenState.IDLE:
                return True
            session_id = self._session_id
            self._state = ListenState.IDLE
            self._session_id = None

            if self._pending is not None:
                await self._cancel_pending("stopped")
            if self._screenshot_task is not None:
                self._screenshot_task.cancel()
                await asyncio.gather(self._screenshot_task, return_exceptions=True)
                self._screenshot_task = None
            await self._audio.stop_all()
            await self._sessions.close()
            # let queued transcript writes land; stop() itself may be one of the background tasks
            others = [t for t in self._background if t is not asyncio.current_task()]
            if others:
                await asyncio.gather(*others, return_exceptions=True)
            if session_id is not None:
                await self._end_session(session_id)

            self._buffer = ConversationBuffer(self._settings.CONVERSATION_HISTORY_MAX)
            self._screenshot = None
            self._publish_state()
            logger.info("Continuous listening stopped")
            return True

    async def shutdown(self) -> None:
        await self.stop()
        self.bus.close()

    async def pause(self) -> bool:
        """Listening -> Paused. Buffered fragments are finalized first. No-op elsewhere."""
        target = transition(self._state, Command.PAUSE)
        if target is self._state:
            return True
        self._sessions.flush_pending()
        self._set_state(target)
        logger.info("Listening paused")
        return True

    async def resume(self) -> bool:
        """Paused -> Listening. Raises CommandRejected while Idle or Processing."""
        target = transition(self._state, Command.RESUME)
        if target is not self._state:
            self._set_state(target)
            logger.info("Listening resumed")
        return True

    async def push_audio(self, source: Speaker, data_b64: str) -> bool:
        """Externally captured chunk (microphone). False when that channel is not open."""
        try:
            return await self._audio.push_chunk(source, data_b64)
        except SessionNotActive:
            logger.debug("Dropping %s chunk: no active STT session", source.value)
            return False

    # --- LLM request ---

    async def request_summary(self, include_screenshot: bool = False) -> PendingLLMRequest | None:
        """
        Pause, finalize what is buffered, and stream an AI reply to the conversation so far.
        Returns the started request, or None when there is nothing to send.
        Raises CommandRejected (busy | not_listening).
        """
        target = transition(self._state, Command.SEND_TO_LLM)
        if len(self._buffer) == 0 and not self._sessions.has_pending():
            logger.info("Nothing to send: conversation is empty")
            return None
        self._sessions.flush_pending()
        entries = self._buffer.snapshot()
        screenshot = self._screenshot if include_screenshot else None
        messages = build_summary_messages(self._settings.SUMMARY_SYSTEM_PROMPT, entries, screenshot)

        request = PendingLLMRequest(message_id=f"ai-{uuid.uuid4().hex[:12]}")
        self._pending = request
        self._set_state(target)
        request.task = asyncio.create_task(self._run_summary(request, messages, screenshot))
        logger.info("LLM request %s started (%d turns, screenshot=%s)", request.message_id, len(entries), screenshot is not None)
        return request

    async def cancel_summary(self) -> bool:
        """Abort the in-flight request. False when nothing is in flight."""
        if self._pending is None:
            return False
        await self._cancel_pending("cancelled by user")
        return True

    async def _cancel_pending(self, reason: str) -> None:
        request = self._pending
        if request is None or request.task is None:
            return
        request.cancel_reason = reason
        request.task.cancel()
        await asyncio.gather(request.task, return_exceptions=True)
        if self._pending is request:
            # cancelled before its first step, so _run_summary never ran
            self._report_aborted(request)
            self._finish_request(request)

    def _report_aborted(self, request: PendingLLMRequest) -> None:
        logger.info("LLM request %s aborted: %s", request.message_id, request.cancel_reason)
        self._report_llm(LLMRequestError("abort", request.cancel_reason or ""))

    def _finish_request(self, request: PendingLLMRequest) -> None:
        if self._pending is request:
            self._pending = None
            if self._state is ListenState.PROCESSING:
                self._set_state(ListenState.PAUSED)

    async def _run_summary(
        self,
        request: PendingLLMRequest,
        messages: list[ChatMessage],
        screenshot: ScreenshotSnapshot | None,
    ) -> str | None:
        try:
            async with aclosing(self._llm.stream_chat(messages)) as stream:
                async for token in stream:
                    request.response += token
                    self._publish_utterance(UtteranceEvent.partial(Speaker.AI, request.response, request.message_id))
            text = request.response.strip()
            if not text:
                logger.warning("LLM request %s returned no text", request.message_id)
                return None
            final = UtteranceEvent.final(Speaker.AI, text, request.message_id)
            self._publish_utterance(final)
            self._record_final(final)
            self._publish_conversation(screenshot)
            logger.info("LLM request %s completed (%d chars)", request.message_id, len(text))
            return text
        except asyncio.CancelledError:
            self._report_aborted(request)
            raise
        except LLMRequestError as e:
            logger.warning("LLM request %s failed (%s): %s", request.message_id, e.kind, e.detail)
            self._report_llm(e)
            return None
        except Exception as e:
            logger.exception("LLM request %s failed", request.message_id)
            self._report_llm(LLMRequestError("unknown", str(e)))
            return None
        finally:
            self._finish_request(request)

    # --- STT / audio callbacks ---

    async def _forward_audio(self, source: Speaker, data_b64: str) -> None:
        if self._state is not ListenState.LISTENING:
            return
        await self._sessions.send_audio(source, data_b64)

    def _on_audio_frame(self, source: Speaker, data_b64: str) -> None:
        if source is Speaker.REMOTE and self._state is not ListenState.IDLE:
            self.bus.publish(EventType.AUDIO_FRAME, AudioFramePayload(data=data_b64))

    def _on_utterance(self, event: UtteranceEvent) -> None:
        if self._state is ListenState.IDLE:
            return
        self._publish_utterance(event)
        if event.is_final:
            self._record_final(event)

    def _on_session_lost(self, speaker: Speaker, reason: str) -> None:
        if self._state is ListenState.IDLE:
            return
        logger.warning("STT session for %s lost: %s", speaker.value, reason)
        self._report("stt_session", f"{ERROR_TEXT['stt_session']} ({speaker.value}): {reason}")
        if self._sessions.is_active():
            self._spawn(self._audio.stop_capture(speaker))
        else:
            self._spawn(self.stop())

    def _on_capture_error(self, error: CaptureError) -> None:
        if self._state is ListenState.IDLE:
            return
        logger.warning("System audio capture failed (%s): %s", error.kind, error)
        self._report(error.kind, str(error))
        if self._audio.is_capturing(Speaker.LOCAL):
            self._spawn(self._audio.stop_capture(Speaker.REMOTE))
        else:
            self._spawn(self.stop())

    # --- background loops / persistence ---

    async def _screenshot_loop(self) -> None:
        interval = self._settings.SCREENSHOT_INTERVAL_SEC
        while True:
            await asyncio.sleep(interval)
            if self._state is not ListenState.LISTENING:
                continue
            try:
                snapshot = await self._screenshot_capturer.capture()
            except Exception as e:
                logger.warning("Screenshot capture failed: %s", e)
                continue
            if snapshot is not None:
                self._screenshot = snapshot

    def _record_final(self, event: UtteranceEvent) -> None:
        self._buffer.append(event.speaker, event.text, event.timestamp, event.message_id)
        if self._session_id is not None:
            self._spawn(self._save_transcript(self._session_id, event.speaker, event.text))

    async def _save_transcript(self, session_id: str, speaker: Speaker, text: str) -> None:
        try:
            await self._repository.touch(session_id)
            await self._repository.add_transcript(session_id, speaker.value, text)
        except Exception as e:
            logger.warning("Failed to save transcript: %s", e)

    async def _end_session(self, session_id: str) -> None:
        try:
            await self._repository.end_session(session_id)
        except Exception as e:
            logger.warning("Failed to end session %s: %s", session_id, e)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    # --- event emission ---

    def _set_state(self, state: ListenState) -> None:
        if state is self._state:
            return
        self._state = state
        self._publish_state()

    def _publish_state(self) -> None:
        self.bus.publish(EventType.STATE, ListenStatePayload.from_state(self._state, self._session_id))

    def _publish_utterance(self, event: UtteranceEvent) -> None:
        self.bus.publish(EventType.STT_UPDATE, SttUpdatePayload.from_event(event))

    def _publish_conversation(self, screenshot: ScreenshotSnapshot | None) -> None:
        entries = self._buffer.snapshot()
        self.bus.publish(
            EventType.CONVERSATION_UPDATE,
            ConversationUpdatePayload(
                messages=[ConversationMessage.from_entry(e) for e in entries],
                conversation_text=render_conversation(entries),
                screenshot=screenshot.to_dict() if screenshot is not None else None,
            ),
        )

    def _report(self, kind: str, message: str | None = None) -> None:
        self.bus.publish(EventType.ERROR, ListenErrorPayload(error=message or ERROR_TEXT.get(kind, kind), type=kind))

    def _report_llm(self, error: LLMRequestError) -> None:
        self.bus.publish(EventType.LLM_ERROR, LLMErrorPayload(error=error.user_message, type=error.kind))
