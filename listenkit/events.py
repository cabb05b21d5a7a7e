"""
Typed event channel owned by the orchestrator.

Subscribers are plain callbacks (presenter, tests) or asyncio queues (websocket clients).
publish() never blocks and never raises: a failing callback is logged, a full queue drops
the event for that subscriber only.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    STATE = "continuous-listen-state"
    ERROR = "continuous-listen-error"
    STT_UPDATE = "stt-update"
    CONVERSATION_UPDATE = "stt-conversation-update"
    AUDIO_FRAME = "system-audio-data"
    LLM_ERROR = "llm-request-error"


@dataclass(frozen=True)
class Event:
    type: EventType
    payload: BaseModel

    def to_json(self) -> dict[str, Any]:
        return {"type": self.type.value, "payload": self.payload.model_dump(by_alias=True, mode="json")}


EventCallback = Callable[[Event], None]


class EventBus:
    def __init__(self) -> None:
        self._callbacks: list[EventCallback] = []
        self._queues: list[asyncio.Queue[Event]] = []

    def subscribe(self, callback: EventCallback) -> Callable[[], None]:
        """Register callback; returns an unsubscribe function."""
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def subscribe_queue(self, maxsize: int = 1000) -> asyncio.Queue[Event]:
        queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=maxsize)
        self._queues.append(queue)
        return queue

    def unsubscribe_queue(self, queue: asyncio.Queue[Event]) -> None:
        if queue in self._queues:
            self._queues.remove(queue)

    def publish(self, type_: EventType, payload: BaseModel) -> Event:
        event = Event(type_, payload)
        for callback in list(self._callbacks):
            try:
                callback(event)
            except Exception:
                logger.exception("Event subscriber failed on %s", type_.value)
        for queue in list(self._queues):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning("Event queue full, dropping %s", type_.value)
        return event

    def close(self) -> None:
        self._callbacks.clear()
        self._queues.clear()
