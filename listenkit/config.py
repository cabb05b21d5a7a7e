"""Application configuration. Loads from env vars."""
from pydantic_settings import BaseSettings
from typing import Literal


class Settings(BaseSettings):
    """App settings. Override via environment variables."""

    # Audio: PCM 16-bit, 24kHz. System capture delivers stereo; STT receives mono.
    SAMPLE_RATE: int = 24000
    SAMPLE_WIDTH: int = 2  # 16-bit
    CAPTURE_CHANNELS: int = 2

    # One chunk forwarded to STT: 100ms
    CHUNK_DURATION_MS: int = 100

    # System audio capture command (stdout = raw PCM). Empty = platform default.
    SYSTEM_AUDIO_COMMAND: str = ""

    # STT provider: "openai" (realtime transcription) | "gemini" (live API)
    STT_PROVIDER: Literal["openai", "gemini"] = "openai"
    STT_LANGUAGE: str = "en"
    STT_MODEL: str = "gpt-4o-mini-transcribe"
    GEMINI_LIVE_MODEL: str = "models/gemini-live-2.5-flash-preview"
    STT_HANDSHAKE_TIMEOUT_SEC: float = 10.0
    # "both" = local mic + system audio; "system_only" = system audio session only
    LISTEN_CHANNELS: Literal["both", "system_only"] = "both"

    # Turn completion: completed fragments are merged until this much quiet time passes.
    COMPLETION_DEBOUNCE_MS: int = 2000

    # Conversation orchestrator
    CONVERSATION_HISTORY_MAX: int = 100  # rolling buffer, oldest dropped first
    SCREENSHOT_ENABLED: bool = True
    SCREENSHOT_INTERVAL_SEC: float = 5.0
    USER_ID: str = "default_user"  # local mode: always logged in as this user
    SESSION_KIND: str = "continuous-listen"

    # LLM (summary / assistance request)
    LLM_MODEL: str = "gpt-4.1"
    LLM_TEMPERATURE: float = 0.7
    LLM_MAX_TOKENS: int = 2048
    SUMMARY_SYSTEM_PROMPT: str = (
        "You are a meeting assistant. The user shares the recent conversation "
        "(and optionally their screen). Summarize what was said and suggest what to say next."
    )

    # Credentials
    OPENAI_API_KEY: str = ""
    OPENAI_BASE_URL: str = "https://api.openai.com/v1"
    OPENAI_REALTIME_URL: str = "wss://api.openai.com/v1/realtime?intent=transcription"
    GEMINI_API_KEY: str = ""

    # Transcript presenter (dedup + visibility gating)
    PRESENTER_DEDUP_WINDOW_MS: int = 2000  # same speaker+text within this window = duplicate
    PRESENTER_RECENT_FINALS: int = 10  # how many recent finals the text scan looks at
    # Recent-text scan: "always" | "untimed" (only events without timestamp) | "off"
    PRESENTER_RECENT_TEXT_DEDUP: Literal["always", "untimed", "off"] = "untimed"
    PRESENTER_CLEAR_ON_RESUME: bool = False  # True = wipe displayed history when resuming
    PRESENTER_HASH_TTL_SEC: float = 300.0

    # Transcript persistence: "memory" | "file" (one append-only .txt per session)
    TRANSCRIPT_STORE: Literal["memory", "file"] = "memory"
    TRANSCRIPT_DIR: str = "./transcripts"

    # Logging: level (DEBUG, INFO, WARNING, ERROR); file path = also write log to file (empty = console only).
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    class Config:
        env_file = ".env"
        extra = "ignore"

    @property
    def chunk_bytes(self) -> int:
        """Bytes of captured (multi-channel) PCM per forwarded chunk."""
        frames = self.SAMPLE_RATE * self.CHUNK_DURATION_MS // 1000
        return frames * self.SAMPLE_WIDTH * self.CAPTURE_CHANNELS

    @property
    def provider_api_key(self) -> str:
        """Credential for the configured STT provider."""
        if self.STT_PROVIDER == "gemini":
            return self.GEMINI_API_KEY
        return self.OPENAI_API_KEY


def get_settings() -> Settings:
    return Settings()
