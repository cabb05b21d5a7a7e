"""Pydantic schemas for events and commands."""
from listenkit.schemas.commands import CommandResponse, MicAudioRequest, SendToLLMRequest
from listenkit.schemas.events import (
    AudioFramePayload,
    ConversationMessage,
    ConversationUpdatePayload,
    LLMErrorPayload,
    ListenErrorPayload,
    ListenStatePayload,
    SttUpdatePayload,
)

__all__ = [
    "CommandResponse",
    "MicAudioRequest",
    "SendToLLMRequest",
    "AudioFramePayload",
    "ConversationMessage",
    "ConversationUpdatePayload",
    "LLMErrorPayload",
    "ListenErrorPayload",
    "ListenStatePayload",
    "SttUpdatePayload",
]
