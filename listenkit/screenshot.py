"""
Screen snapshot for LLM requests. Capture is blocking (mss), so it runs in the executor.
Only the latest snapshot is kept by the orchestrator.
"""
from __future__ import annotations

import asyncio
import base64
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

from listenkit.transcript.models import unix_ms

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScreenshotSnapshot:
    base64: str  # PNG
    width: int
    height: int
    timestamp: int  # unix_ms

    @property
    def mime_type(self) -> str:
        return "image/png"

    def to_dict(self) -> dict:
        return {"base64": self.base64, "width": self.width, "height": self.height, "timestamp": self.timestamp}


class ScreenshotCapturer(ABC):
    @abstractmethod
    async def capture(self) -> ScreenshotSnapshot | None:
        """Latest screen image, or None when capture failed."""
        ...


def _grab_primary_monitor() -> ScreenshotSnapshot:
    import mss
    import mss.tools

    with mss.mss() as sct:
        monitors = sct.monitors
        # monitors[0] is the combined virtual screen
        monitor = monitors[1] if len(monitors) > 1 else monitors[0]
        shot = sct.grab(monitor)
        png = mss.tools.to_png(shot.rgb, shot.size)
    return ScreenshotSnapshot(
        base64=base64.b64encode(png).decode("ascii"),
        width=shot.size[0],
        height=shot.size[1],
        timestamp=unix_ms(),
    )


class MssScreenshotCapturer(ScreenshotCapturer):
    """Primary monitor via mss, PNG-encoded."""

    async def capture(self) -> ScreenshotSnapshot | None:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, _grab_primary_monitor)
        except Exception as e:
            logger.warning("Screenshot capture failed: %s", e)
            return None
