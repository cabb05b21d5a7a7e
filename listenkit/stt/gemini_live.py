"""
Gemini Live session used for input transcription only.

Gemini sends transcription fragments without a partial/final split; each fragment is
treated as a completed fragment and merged by the session manager's debounce.
"""
from __future__ import annotations

import re
from typing import Any

from listenkit.stt.base import ProviderEvent
from listenkit.stt.realtime import RealtimeWebSocketProvider

LIVE_URL = (
    "wss://generativelanguage.googleapis.com/ws/"
    "google.ai.generativelanguage.v1beta.GenerativeService.BidiGenerateContent"
)
_NOISE = re.compile(r"<noise>")


class GeminiLiveProvider(RealtimeWebSocketProvider):
    name = "gemini"

    def url(self) -> str:
        return f"{LIVE_URL}?key={self._settings.GEMINI_API_KEY}"

    def setup_message(self, language: str) -> dict[str, Any]:
        return {
            "setup": {
                "model": self._settings.GEMINI_LIVE_MODEL,
                "generationConfig": {
                    "responseModalities": ["TEXT"],
                    "speechConfig": {"languageCode": language or "en"},
                },
                "inputAudioTranscription": {},
            }
        }

    def is_handshake_ack(self, msg: dict[str, Any]) -> bool:
        return "setupComplete" in msg

    def audio_message(self, data_b64: str) -> dict[str, Any]:
        return {
            "realtimeInput": {
                "audio": {"data": data_b64, "mimeType": f"audio/pcm;rate={self._settings.SAMPLE_RATE}"}
            }
        }

    def normalize(self, msg: dict[str, Any]) -> list[ProviderEvent]:
        content = msg.get("serverContent") or {}
        text = ((content.get("inputTranscription") or {}).get("text") or "").strip()
        text = _NOISE.sub("", text).strip()
        if not text or text == ".":
            return []
        return [ProviderEvent("completed", text)]
