"""
Typed command surface: one enum, one pure transition function, one dispatch table.

transition(state, command) says which ListenState a command leads to (or rejects it);
the orchestrator performs the side effects. dispatch() is what the HTTP/websocket layer calls.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from listenkit.schemas.commands import CommandResponse, MicAudioRequest, SendToLLMRequest
from listenkit.transcript.models import ListenState, Speaker

if TYPE_CHECKING:
    from listenkit.orchestrator import ConversationOrchestrator
    from listenkit.transcript.presenter import TranscriptPresenter

logger = logging.getLogger(__name__)


class Command(str, Enum):
    START = "start-continuous-listening"
    STOP = "stop-continuous-listening"
    TOGGLE = "toggle-continuous-listening"
    PAUSE = "pause-listening"
    RESUME = "resume-listening"
    SEND_TO_LLM = "send-conversation-to-llm"
    CANCEL_LLM = "cancel-llm-request"
    PUSH_MIC_AUDIO = "push-microphone-audio"
    GET_STATE = "get-continuous-listening-state"
    GET_HISTORY = "get-conversation-history"
    GET_TRANSCRIPT = "get-transcript"


class CommandRejected(Exception):
    """reason: busy | not_listening"""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


_IDLE, _LISTENING, _PAUSED, _PROCESSING = (
    ListenState.IDLE,
    ListenState.LISTENING,
    ListenState.PAUSED,
    ListenState.PROCESSING,
)

# (state, command) -> next state
_TRANSITIONS: dict[tuple[ListenState, Command], ListenState] = {
    (_IDLE, Command.START): _LISTENING,
    (_IDLE, Command.STOP): _IDLE,
    (_IDLE, Command.PAUSE): _IDLE,
    (_IDLE, Command.CANCEL_LLM): _IDLE,
    (_LISTENING, Command.START): _LISTENING,
    (_LISTENING, Command.STOP): _IDLE,
    (_LISTENING, Command.PAUSE): _PAUSED,
    (_LISTENING, Command.RESUME): _LISTENING,
    (_LISTENING, Command.SEND_TO_LLM): _PROCESSING,
    (_LISTENING, Command.CANCEL_LLM): _LISTENING,
    (_PAUSED, Command.START): _PAUSED,
    (_PAUSED, Command.STOP): _IDLE,
    (_PAUSED, Command.PAUSE): _PAUSED,
    (_PAUSED, Command.RESUME): _LISTENING,
    (_PAUSED, Command.SEND_TO_LLM): _PROCESSING,
    (_PAUSED, Command.CANCEL_LLM): _PAUSED,
    (_PROCESSING, Command.START): _PROCESSING,
    (_PROCESSING, Command.STOP): _IDLE,
    (_PROCESSING, Command.PAUSE): _PROCESSING,
    (_PROCESSING, Command.CANCEL_LLM): _PAUSED,
}

# (state, command) -> rejection reason
_REJECTIONS: dict[tuple[ListenState, Command], str] = {
    (_IDLE, Command.RESUME): "not_listening",
    (_IDLE, Command.SEND_TO_LLM): "not_listening",
    (_PROCESSING, Command.RESUME): "busy",
    (_PROCESSING, Command.SEND_TO_LLM): "busy",
}


def transition(state: ListenState, command: Command) -> ListenState:
    """Next state for command in state. Raises CommandRejected. Pure."""
    if command is Command.TOGGLE:
        return _LISTENING if state is _IDLE else _IDLE
    reason = _REJECTIONS.get((state, command))
    if reason is not None:
        raise CommandRejected(reason)
    return _TRANSITIONS.get((state, command), state)


Handler = Callable[[dict[str, Any]], Awaitable[Any]]


class CommandDispatcher:
    """Single dispatch table from Command to handler."""

    def __init__(
        self,
        orchestrator: "ConversationOrchestrator",
        presenter: "TranscriptPresenter | None" = None,
    ) -> None:
        self._orchestrator = orchestrator
        self._presenter = presenter
        self._table: dict[Command, Handler] = {
            Command.START: self._start,
            Command.STOP: self._stop,
            Command.TOGGLE: self._toggle,
            Command.PAUSE: self._pause,
            Command.RESUME: self._resume,
            Command.SEND_TO_LLM: self._send_to_llm,
            Command.CANCEL_LLM: self._cancel_llm,
            Command.PUSH_MIC_AUDIO: self._push_mic_audio,
            Command.GET_STATE: self._get_state,
            Command.GET_HISTORY: self._get_history,
            Command.GET_TRANSCRIPT: self._get_transcript,
        }

    async def dispatch(self, command: Command | str, payload: dict[str, Any] | None = None) -> Any:
        command = Command(command)
        logger.debug("command %s", command.value)
        return await self._table[command](payload or {})

    async def _start(self, payload: dict[str, Any]) -> bool:
        return await self._orchestrator.start()

    async def _stop(self, payload: dict[str, Any]) -> dict:
        await self._orchestrator.stop()
        return CommandResponse(success=True).wire()

    async def _toggle(self, payload: dict[str, Any]) -> dict:
        if self._orchestrator.state is ListenState.IDLE:
            ok = await self._orchestrator.start()
        else:
            ok = await self._orchestrator.stop()
        return CommandResponse(success=ok, is_listening=self._orchestrator.is_listening).wire()

    async def _pause(self, payload: dict[str, Any]) -> dict:
        return CommandResponse(success=await self._orchestrator.pause()).wire()

    async def _resume(self, payload: dict[str, Any]) -> dict:
        try:
            ok = await self._orchestrator.resume()
        except CommandRejected as e:
            return CommandResponse(success=False, error=e.reason).wire()
        return CommandResponse(success=ok).wire()

    async def _send_to_llm(self, payload: dict[str, Any]) -> dict:
        req = SendToLLMRequest.model_validate(payload)
        try:
            await self._orchestrator.request_summary(include_screenshot=req.include_screenshot)
        except CommandRejected as e:
            return CommandResponse(success=False, error=e.reason).wire()
        return CommandResponse(success=True).wire()

    async def _cancel_llm(self, payload: dict[str, Any]) -> dict:
        return CommandResponse(success=await self._orchestrator.cancel_summary()).wire()

    async def _push_mic_audio(self, payload: dict[str, Any]) -> dict:
        req = MicAudioRequest.model_validate(payload)
        return CommandResponse(success=await self._orchestrator.push_audio(Speaker.LOCAL, req.data)).wire()

    async def _get_state(self, payload: dict[str, Any]) -> dict:
        return CommandResponse(is_listening=self._orchestrator.is_listening).wire()

    async def _get_history(self, payload: dict[str, Any]) -> list[dict]:
        return self._orchestrator.history()

    async def _get_transcript(self, payload: dict[str, Any]) -> list[dict]:
        if self._presenter is None:
            return []
        return [m.to_dict() for m in self._presenter.visible_messages()]
