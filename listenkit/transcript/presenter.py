"""
TranscriptPresenter: turns the utterance/state event feed into a display-ready message list.

Replacement: an event whose message_id matches a displayed message replaces it in place;
an event without id replaces the speaker's last partial; anything else is appended.

Dedup (final events only), rejected when:
- message_id was already processed;
- same speaker + text was seen within PRESENTER_DEDUP_WINDOW_MS;
- same text from the same speaker is among the last PRESENTER_RECENT_FINALS finals
  (policy PRESENTER_RECENT_TEXT_DEDUP: always | untimed = only events without timestamp | off).

Gating: while paused or processing only AI messages are visible. Other speakers' events are
accepted and held; they are applied (appended after whatever is displayed) on resume.
Displayed history survives pause/resume unless PRESENTER_CLEAR_ON_RESUME is set.
"""
from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from typing import Callable, Iterable

from listenkit.config import Settings, get_settings
from listenkit.events import Event, EventType
from listenkit.schemas.events import ConversationMessage, ListenStatePayload
from listenkit.transcript.models import ListenState, Speaker, UtteranceEvent, unix_ms

logger = logging.getLogger(__name__)

# Partials matching one of this many recent finals (same speaker) are echoes
_PARTIAL_ECHO_WINDOW = 5


@dataclass
class DisplayMessage:
    id: int
    speaker: Speaker
    text: str
    is_partial: bool
    is_final: bool
    message_id: str | None = None
    timestamp: int | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "speaker": self.speaker.value,
            "text": self.text,
            "isPartial": self.is_partial,
            "isFinal": self.is_final,
            "messageId": self.message_id,
            "timestamp": self.timestamp,
        }


class TranscriptPresenter:
    def __init__(self, settings: Settings | None = None, clock: Callable[[], int] = unix_ms) -> None:
        settings = settings or get_settings()
        self._clock = clock
        self._dedup_window_ms = settings.PRESENTER_DEDUP_WINDOW_MS
        self._recent_finals = settings.PRESENTER_RECENT_FINALS
        self._recent_text_policy = settings.PRESENTER_RECENT_TEXT_DEDUP
        self._clear_on_resume = settings.PRESENTER_CLEAR_ON_RESUME
        self._hash_ttl_ms = int(settings.PRESENTER_HASH_TTL_SEC * 1000)

        self._ids = itertools.count()
        self._messages: list[DisplayMessage] = []
        self._pending: list[UtteranceEvent] = []
        self._processed_ids: set[str] = set()
        self._recent_hashes: dict[tuple[Speaker, str], int] = {}
        self._state = ListenState.IDLE

    # --- views ---

    @property
    def state(self) -> ListenState:
        return self._state

    @property
    def gated(self) -> bool:
        return self._state in (ListenState.PAUSED, ListenState.PROCESSING)

    @property
    def messages(self) -> list[DisplayMessage]:
        """Everything displayed so far, including what is hidden while gated."""
        return list(self._messages)

    def visible_messages(self) -> list[DisplayMessage]:
        if self.gated:
            return [m for m in self._messages if m.speaker is Speaker.AI]
        return list(self._messages)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def transcript_text(self) -> str:
        return "\n".join(f"{m.speaker.value}: {m.text}" for m in self._messages)

    # --- event feed ---

    def handle_event(self, event: Event) -> None:
        """EventBus subscriber."""
        if event.type is EventType.STT_UPDATE:
            self.on_utterance(event.payload.to_event())
        elif event.type is EventType.STATE:
            self.on_state(_state_from_payload(event.payload))
        elif event.type is EventType.CONVERSATION_UPDATE:
            self.on_conversation(event.payload.messages)

    def on_utterance(self, event: UtteranceEvent) -> bool:
        """Returns False when the event was rejected (empty or duplicate)."""
        if not event.text:
            return False
        if event.is_final:
            if self._is_duplicate(event):
                return False
            self._mark_processed(event)
        elif self._echoes_recent_final(event):
            logger.debug("Skipping partial: same text already final for %s", event.speaker.value)
            return False
        if self.gated and event.speaker is not Speaker.AI:
            self._pending.append(event)
            return True
        self._apply(event)
        return True

    def on_state(self, state: ListenState) -> None:
        was_gated = self.gated
        self._state = state
        if self.gated:
            return
        if was_gated and state is ListenState.LISTENING and self._clear_on_resume:
            self._messages.clear()
        if self._pending:
            pending, self._pending = self._pending, []
            logger.debug("Releasing %d held events", len(pending))
            for event in pending:
                self._apply(event)

    def on_conversation(self, messages: Iterable[ConversationMessage]) -> bool:
        """Replace the whole list with a conversation snapshot (ignored while gated unless it has AI)."""
        messages = list(messages)
        has_ai = any(m.speaker is Speaker.AI for m in messages)
        if self.gated and not has_ai:
            return False
        self._messages = [
            DisplayMessage(
                id=next(self._ids),
                speaker=m.speaker,
                text=m.text,
                is_partial=False,
                is_final=True,
                message_id=m.message_id,
                timestamp=m.timestamp,
            )
            for m in messages
        ]
        self._processed_ids.clear()
        self._recent_hashes.clear()
        for m in self._messages:
            if m.message_id is not None:
                self._processed_ids.add(m.message_id)
            self._recent_hashes[(m.speaker, m.text)] = m.timestamp or self._clock()
        return True

    def reset(self) -> None:
        self._messages.clear()
        self._pending.clear()
        self._processed_ids.clear()
        self._recent_hashes.clear()

    # --- internals ---

    def _is_duplicate(self, event: UtteranceEvent) -> bool:
        if event.message_id is not None and event.message_id in self._processed_ids:
            logger.debug("Duplicate by messageId: %s", event.message_id)
            return True
        seen = self._recent_hashes.get((event.speaker, event.text))
        if seen is not None:
            now = event.timestamp or self._clock()
            if abs(now - seen) <= self._dedup_window_ms:
                logger.debug("Duplicate by content within %d ms", self._dedup_window_ms)
                return True
        if self._recent_text_policy == "always" or (self._recent_text_policy == "untimed" and not event.timestamp):
            if event.text in self._recent_final_texts(event.speaker, self._recent_finals):
                logger.debug("Duplicate by recent final text")
                return True
        return False

    def _mark_processed(self, event: UtteranceEvent) -> None:
        if event.message_id is not None:
            self._processed_ids.add(event.message_id)
        now = self._clock()
        self._recent_hashes[(event.speaker, event.text)] = event.timestamp or now
        cutoff = now - self._hash_ttl_ms
        for key in [k for k, ts in self._recent_hashes.items() if ts < cutoff]:
            del self._recent_hashes[key]

    def _recent_final_texts(self, speaker: Speaker, window: int) -> list[str]:
        """Texts of finals among the last `window` messages (displayed, then held) for speaker."""
        recent = [(m.speaker, m.text, m.is_final) for m in self._messages]
        recent += [(e.speaker, e.text, e.is_final) for e in self._pending]
        return [text for s, text, final in recent[-window:] if s is speaker and final]

    def _echoes_recent_final(self, event: UtteranceEvent) -> bool:
        return event.text in self._recent_final_texts(event.speaker, _PARTIAL_ECHO_WINDOW)

    def _find_target(self, event: UtteranceEvent) -> int:
        if event.message_id is not None:
            for i in range(len(self._messages) - 1, -1, -1):
                if self._messages[i].message_id == event.message_id:
                    return i
            return -1
        for i in range(len(self._messages) - 1, -1, -1):
            m = self._messages[i]
            if m.speaker is event.speaker and m.is_partial:
                return i
        return -1

    def _apply(self, event: UtteranceEvent) -> None:
        idx = self._find_target(event)
        if idx != -1:
            target = self._messages[idx]
            if target.is_final and event.is_partial:
                return
            target.text = event.text
            target.is_partial = event.is_partial
            target.is_final = event.is_final
            target.timestamp = event.timestamp or target.timestamp
            return
        if event.is_partial and any(
            m.speaker is event.speaker and m.is_partial and m.text == event.text for m in self._messages
        ):
            return
        self._messages.append(
            DisplayMessage(
                id=next(self._ids),
                speaker=event.speaker,
                text=event.text,
                is_partial=event.is_partial,
                is_final=event.is_final,
                message_id=event.message_id,
                timestamp=event.timestamp or None,
            )
        )


def _state_from_payload(payload: ListenStatePayload) -> ListenState:
    if not payload.is_listening:
        return ListenState.IDLE
    if payload.is_processing:
        return ListenState.PROCESSING
    if payload.is_paused:
        return ListenState.PAUSED
    return ListenState.LISTENING
