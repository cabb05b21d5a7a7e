"""Transcript handling: conversation model. The presenter lives in transcript.presenter."""
from .models import (
    ConversationBuffer,
    ConversationEntry,
    ListenState,
    Speaker,
    UtteranceEvent,
    render_conversation,
)

__all__ = [
    "ConversationBuffer",
    "ConversationEntry",
    "ListenState",
    "Speaker",
    "UtteranceEvent",
    "render_conversation",
]
