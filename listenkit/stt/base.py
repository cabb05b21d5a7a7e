"""
STT provider boundary: swappable realtime transcription vendors.

Implementations: OpenAIRealtimeProvider, GeminiLiveProvider.
Vendor message shapes are normalized to ProviderEvent before reaching the session manager:
- "delta": partial text appended to the current utterance.
- "completed": a finished fragment of speech (vendor end-of-segment).
Filler/noise tokens are dropped inside the adapter.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Literal


@dataclass
class ProviderEvent:
    """Normalized transcript event from one provider session."""

    kind: Literal["delta", "completed"]
    text: str


class SttInitError(Exception):
    """Provider session could not be opened / handshake rejected."""


class SessionNotActive(Exception):
    """Audio sent to a speaker whose session is not Active."""


EventHandler = Callable[[ProviderEvent], None]
CloseHandler = Callable[[str | None], None]


class STTSessionHandle(ABC):
    """One open provider session. Accepts base64 PCM16 mono chunks."""

    @abstractmethod
    async def send_audio(self, data_b64: str) -> None:
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the session. Safe to call more than once."""
        ...


class STTProvider(ABC):
    """Factory for provider sessions."""

    name: str = "stt"

    @abstractmethod
    async def open_session(
        self,
        *,
        language: str,
        on_event: EventHandler,
        on_close: CloseHandler,
    ) -> STTSessionHandle:
        """
        Open a session; return once the handshake configuration is accepted.
        on_event gets normalized events; on_close(reason) fires if the session ends
        without close() being called. Raises SttInitError.
        """
        ...
