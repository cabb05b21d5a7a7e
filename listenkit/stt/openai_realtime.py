"""OpenAI realtime transcription session (intent=transcription, server VAD)."""
from __future__ import annotations

from typing import Any

from listenkit.stt.base import ProviderEvent
from listenkit.stt.realtime import RealtimeWebSocketProvider

DELTA = "conversation.item.input_audio_transcription.delta"
COMPLETED = "conversation.item.input_audio_transcription.completed"
SESSION_UPDATED = "transcription_session.updated"
# Placeholder tokens the service emits for non-speech audio
FILLER_MARKER = "vq_lbr_audio_"


class OpenAIRealtimeProvider(RealtimeWebSocketProvider):
    name = "openai"

    def url(self) -> str:
        return self._settings.OPENAI_REALTIME_URL

    def headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._settings.OPENAI_API_KEY}",
            "OpenAI-Beta": "realtime=v1",
        }

    def setup_message(self, language: str) -> dict[str, Any]:
        return {
            "type": "transcription_session.update",
            "session": {
                "input_audio_format": "pcm16",
                "input_audio_transcription": {
                    "model": self._settings.STT_MODEL,
                    "prompt": "",
                    "language": language or "en",
                },
                "turn_detection": {
                    "type": "server_vad",
                    "threshold": 0.5,
                    "prefix_padding_ms": 50,
                    "silence_duration_ms": 25,
                },
                "input_audio_noise_reduction": {"type": "near_field"},
            },
        }

    def is_handshake_ack(self, msg: dict[str, Any]) -> bool:
        return msg.get("type") == SESSION_UPDATED

    def audio_message(self, data_b64: str) -> dict[str, Any]:
        return {"type": "input_audio_buffer.append", "audio": data_b64}

    def close_message(self) -> dict[str, Any] | None:
        return {"type": "session.close"}

    def normalize(self, msg: dict[str, Any]) -> list[ProviderEvent]:
        kind = msg.get("type")
        if kind == DELTA:
            text = msg.get("delta") or ""
            if not text or FILLER_MARKER in text:
                return []
            return [ProviderEvent("delta", text)]
        if kind == COMPLETED:
            text = (msg.get("transcript") or "").strip()
            if not text:
                return []
            return [ProviderEvent("completed", text)]
        return []
