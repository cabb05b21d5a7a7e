"""
Transcript persistence: listen sessions and their finalized turns.

The orchestrator only talks to TranscriptRepository. Two implementations:
- InMemoryTranscriptRepository: process-lifetime store (default).
- FileTranscriptRepository: same, plus one append-only .txt per session
  ({TRANSCRIPT_DIR}/{session_id}.txt, one line per final turn). Partial text is never written.
"""
from __future__ import annotations

import asyncio
import logging
import os
import uuid
from abc import ABC, abstractmethod
from typing import Any

from listenkit.config import Settings, get_settings
from listenkit.transcript.models import unix_ms

logger = logging.getLogger(__name__)


class SessionNotFound(KeyError):
    pass


class TranscriptRepository(ABC):
    @abstractmethod
    async def get_or_create_active_session(self, user_id: str, kind: str) -> str:
        """Return the open session of this kind for user_id, creating one if none is open."""
        ...

    @abstractmethod
    async def touch(self, session_id: str) -> None:
        ...

    @abstractmethod
    async def add_transcript(self, session_id: str, speaker: str, text: str) -> None:
        ...

    @abstractmethod
    async def end_session(self, session_id: str) -> None:
        ...


class InMemoryTranscriptRepository(TranscriptRepository):
    def __init__(self) -> None:
        # session_id -> {"user_id", "kind", "started_at", "updated_at", "ended_at", "transcripts": [...]}
        self._sessions: dict[str, dict[str, Any]] = {}

    async def get_or_create_active_session(self, user_id: str, kind: str) -> str:
        for session_id, s in self._sessions.items():
            if s["user_id"] == user_id and s["kind"] == kind and s["ended_at"] is None:
                return session_id
        session_id = uuid.uuid4().hex[:12]
        now = unix_ms()
        self._sessions[session_id] = {
            "user_id": user_id,
            "kind": kind,
            "started_at": now,
            "updated_at": now,
            "ended_at": None,
            "transcripts": [],
        }
        logger.info("Created %s session %s for user %s", kind, session_id, user_id)
        return session_id

    def _get(self, session_id: str) -> dict[str, Any]:
        try:
            return self._sessions[session_id]
        except KeyError:
            raise SessionNotFound(session_id) from None

    async def touch(self, session_id: str) -> None:
        self._get(session_id)["updated_at"] = unix_ms()

    async def add_transcript(self, session_id: str, speaker: str, text: str) -> None:
        text = (text or "").strip()
        if not text:
            return
        self._get(session_id)["transcripts"].append({"speaker": speaker, "text": text, "created_at": unix_ms()})

    async def end_session(self, session_id: str) -> None:
        s = self._get(session_id)
        if s["ended_at"] is None:
            s["ended_at"] = unix_ms()
            logger.info("Ended session %s (%d transcripts)", session_id, len(s["transcripts"]))

    def session(self, session_id: str) -> dict[str, Any] | None:
        """Read-only view for inspection."""
        return self._sessions.get(session_id)

    def transcripts(self, session_id: str) -> list[dict[str, Any]]:
        s = self._sessions.get(session_id)
        return list(s["transcripts"]) if s else []


def _format_line(timestamp_ms: int, session_start_ms: int, speaker: str, text: str) -> str:
    """[MM:SS.ss] [speaker] text (elapsed since session start)."""
    elapsed_sec = max(0, timestamp_ms - session_start_ms) / 1000.0
    mm = int(elapsed_sec // 60)
    ss = elapsed_sec % 60
    return f"[{mm:02d}:{ss:05.2f}] [{speaker}] {text.strip()}"


def _append_line_sync(path: str, line: str) -> None:
    with open(path, "a", encoding="utf-8") as f:
        f.write(line + "\n")


class FileTranscriptRepository(InMemoryTranscriptRepository):
    def __init__(self, transcript_dir: str) -> None:
        super().__init__()
        self._dir = transcript_dir

    def path_for(self, session_id: str) -> str:
        return os.path.join(self._dir, f"{session_id}.txt")

    async def add_transcript(self, session_id: str, speaker: str, text: str) -> None:
        await super().add_transcript(session_id, speaker, text)
        text = (text or "").strip()
        if not text:
            return
        s = self._get(session_id)
        line = _format_line(unix_ms(), s["started_at"], speaker, text)
        loop = asyncio.get_running_loop()
        os.makedirs(self._dir, exist_ok=True)
        await loop.run_in_executor(None, _append_line_sync, self.path_for(session_id), line)


def create_repository(settings: Settings | None = None) -> TranscriptRepository:
    settings = settings or get_settings()
    if settings.TRANSCRIPT_STORE == "file":
        return FileTranscriptRepository(settings.TRANSCRIPT_DIR)
    return InMemoryTranscriptRepository()
