"""STT: swappable realtime transcription vendors + turn-completion session manager."""
from .base import ProviderEvent, SessionNotActive, STTProvider, STTSessionHandle, SttInitError
from .openai_realtime import OpenAIRealtimeProvider
from .gemini_live import GeminiLiveProvider
from .session_manager import ChannelMode, SessionState, TranscriptionSession, TranscriptionSessionManager

__all__ = [
    "ProviderEvent",
    "SessionNotActive",
    "STTProvider",
    "STTSessionHandle",
    "SttInitError",
    "OpenAIRealtimeProvider",
    "GeminiLiveProvider",
    "ChannelMode",
    "SessionState",
    "TranscriptionSession",
    "TranscriptionSessionManager",
    "create_stt_provider",
]


def create_stt_provider(settings) -> STTProvider:
    """Provider from config (STT_PROVIDER)."""
    if settings.STT_PROVIDER == "gemini":
        return GeminiLiveProvider(settings)
    return OpenAIRealtimeProvider(settings)
