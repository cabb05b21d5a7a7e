"""
LLM streaming boundary.

Messages are provider-agnostic: {"role": "system"|"user"|"assistant", "content": str | [part, ...]}
with parts {"type": "text", "text": ...} or {"type": "image", "data": <base64>, "mime_type": ...}.
stream_chat() is an async generator of text tokens; closing it (aclose) releases the
underlying HTTP response in every exit path.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator

ChatMessage = dict[str, Any]

# User-facing message per error kind
ERROR_MESSAGES: dict[str, str] = {
    "network": "Network error: could not reach the AI service. Check your connection and try again.",
    "rate_limit": "The AI service is rate limiting requests. Please wait a moment and try again.",
    "server": "The AI service had a problem handling the request. Please try again later.",
    "abort": "The request was cancelled.",
    "unknown": "Something went wrong while asking the AI. Please try again.",
}


class LLMRequestError(Exception):
    """kind: network | rate_limit | server | abort | unknown"""

    def __init__(self, kind: str, detail: str = "") -> None:
        super().__init__(detail or kind)
        self.kind = kind if kind in ERROR_MESSAGES else "unknown"
        self.detail = detail

    @property
    def user_message(self) -> str:
        return ERROR_MESSAGES[self.kind]


def classify_status(status_code: int) -> str:
    if status_code == 429:
        return "rate_limit"
    if status_code >= 500:
        return "server"
    return "unknown"


class LLMProvider(ABC):
    @abstractmethod
    def stream_chat(self, messages: list[ChatMessage]) -> AsyncIterator[str]:
        """Open a token stream. Raises LLMRequestError (from iteration)."""
        ...
