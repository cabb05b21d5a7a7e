"""
Payloads of events emitted to clients. Field names go on the wire in camelCase
(isListening, messageId, ...).
"""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from listenkit.transcript.models import ConversationEntry, ListenState, Speaker, UtteranceEvent


class _Payload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ListenStatePayload(_Payload):
    """continuous-listen-state"""

    is_listening: bool = False
    is_paused: bool = False
    is_processing: bool = False
    session_id: str | None = None

    @classmethod
    def from_state(cls, state: ListenState, session_id: str | None) -> "ListenStatePayload":
        return cls(
            is_listening=state is not ListenState.IDLE,
            is_paused=state is ListenState.PAUSED,
            is_processing=state is ListenState.PROCESSING,
            session_id=session_id,
        )


class ListenErrorPayload(_Payload):
    """continuous-listen-error; type: auth | api_key | stt_init | stt_session | audio_permission | platform"""

    error: str
    type: str


class LLMErrorPayload(_Payload):
    """llm-request-error; type: network | rate_limit | server | abort | unknown"""

    error: str
    type: str


class SttUpdatePayload(_Payload):
    """stt-update"""

    speaker: Speaker
    text: str
    is_partial: bool
    is_final: bool
    message_id: str | None = None
    timestamp: int | None = None

    @classmethod
    def from_event(cls, event: UtteranceEvent) -> "SttUpdatePayload":
        return cls(
            speaker=event.speaker,
            text=event.text,
            is_partial=event.is_partial,
            is_final=event.is_final,
            message_id=event.message_id,
            timestamp=event.timestamp,
        )

    def to_event(self) -> UtteranceEvent:
        return UtteranceEvent(
            speaker=self.speaker,
            text=self.text,
            is_partial=self.is_partial,
            is_final=self.is_final,
            message_id=self.message_id,
            timestamp=self.timestamp if self.timestamp is not None else 0,
        )


class ConversationMessage(_Payload):
    speaker: Speaker
    text: str
    timestamp: int
    message_id: str | None = None

    @classmethod
    def from_entry(cls, entry: ConversationEntry) -> "ConversationMessage":
        return cls(speaker=entry.speaker, text=entry.text, timestamp=entry.timestamp, message_id=entry.message_id)


class ConversationUpdatePayload(_Payload):
    """stt-conversation-update"""

    messages: list[ConversationMessage] = Field(default_factory=list)
    conversation_text: str = ""
    screenshot: dict[str, Any] | None = None


class AudioFramePayload(_Payload):
    """system-audio-data: raw mono frame copy for waveform display"""

    data: str
