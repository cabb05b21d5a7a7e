"""
Conversation data model: speakers, utterance events, the rolling conversation buffer.

- UtteranceEvent: one update from STT or the LLM stream. Partial events may be replaced
  by later events with the same message_id; final events are settled.
- ConversationBuffer: finalized turns only, bounded (oldest dropped first).
"""
from __future__ import annotations

import time
from collections import deque
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Iterable


class Speaker(str, Enum):
    """Who said it. LOCAL = microphone, REMOTE = system audio."""

    LOCAL = "Me"
    REMOTE = "Them"
    AI = "AI"
    SYSTEM = "System"


class ListenState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    PAUSED = "paused"
    PROCESSING = "processing"


def unix_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class UtteranceEvent:
    """Speaker-attributed transcript update (stt-update payload)."""

    speaker: Speaker
    text: str
    is_partial: bool
    is_final: bool
    message_id: str | None = None
    timestamp: int = field(default_factory=unix_ms)  # unix_ms

    @classmethod
    def partial(cls, speaker: Speaker, text: str, message_id: str | None = None) -> "UtteranceEvent":
        return cls(speaker=speaker, text=text, is_partial=True, is_final=False, message_id=message_id)

    @classmethod
    def final(cls, speaker: Speaker, text: str, message_id: str | None = None) -> "UtteranceEvent":
        return cls(speaker=speaker, text=text, is_partial=False, is_final=True, message_id=message_id)


@dataclass(frozen=True)
class ConversationEntry:
    """One finalized turn in the conversation buffer."""

    speaker: Speaker
    text: str
    timestamp: int  # unix_ms
    message_id: str | None = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["speaker"] = self.speaker.value
        return data


def format_timestamp(timestamp_ms: int) -> str:
    """ISO-8601 UTC, millisecond precision."""
    seconds, millis = divmod(timestamp_ms, 1000)
    return time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime(seconds)) + f".{millis:03d}Z"


class ConversationBuffer:
    """
    Ordered, bounded history of finalized turns. FIFO eviction once capacity is reached.
    Only the orchestrator appends; everyone else gets snapshots.
    """

    def __init__(self, capacity: int = 100) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._entries: deque[ConversationEntry] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._entries.maxlen or 0

    def append(
        self,
        speaker: Speaker,
        text: str,
        timestamp: int | None = None,
        message_id: str | None = None,
    ) -> ConversationEntry:
        entry = ConversationEntry(speaker=speaker, text=text, timestamp=timestamp or unix_ms(), message_id=message_id)
        self._entries.append(entry)
        return entry

    def snapshot(self) -> tuple[ConversationEntry, ...]:
        """Immutable point-in-time copy."""
        return tuple(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(tuple(self._entries))


def render_conversation(entries: Iterable[ConversationEntry]) -> str:
    """One line per turn: [timestamp] speaker: text"""
    return "\n".join(
        f"[{format_timestamp(e.timestamp)}] {e.speaker.value}: {e.text}" for e in entries
    )
