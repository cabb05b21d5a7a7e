"""
Audio ingest: system-audio capture process + routing of chunks to STT sessions.

- SystemAudioCapture spawns a helper whose stdout is raw PCM 16-bit (SystemAudioDump on
  macOS, parec on the default PulseAudio/PipeWire monitor on Linux). Reads are assembled
  into fixed chunks, downmixed to mono and handed on as bytes.
- AudioIngestPipeline owns the captures per source, base64-encodes chunks, taps a copy
  for waveform display (never blocks forwarding) and forwards to the sink (STT).
- The local speaker (microphone) is captured by the client; its chunks arrive via push_chunk().
"""
from __future__ import annotations

import asyncio
import logging
import shlex
import sys
from typing import Awaitable, Callable

from listenkit.audio.convert import downmix_to_mono, pcm_to_base64
from listenkit.audio.receiver import ChunkAssembler
from listenkit.config import Settings, get_settings
from listenkit.transcript.models import Speaker

logger = logging.getLogger(__name__)

# Pipe read size; independent of chunk size (assembler carries the remainder)
READ_SIZE = 4096
STOP_TIMEOUT_SEC = 2.0

AudioSink = Callable[[Speaker, str], Awaitable[None]]
FrameTap = Callable[[Speaker, str], None]


class CaptureError(Exception):
    """Capture could not start. kind: "audio_permission" | "platform"."""

    def __init__(self, kind: str, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message


def system_audio_command(settings: Settings, platform: str | None = None) -> list[str] | None:
    """Command for system audio capture on this platform, or None when unsupported."""
    if settings.SYSTEM_AUDIO_COMMAND.strip():
        return shlex.split(settings.SYSTEM_AUDIO_COMMAND)
    platform = platform or sys.platform
    if platform == "darwin":
        return ["SystemAudioDump"]
    if platform.startswith("linux"):
        return [
            "parec",
            "--raw",
            "--format=s16le",
            f"--rate={settings.SAMPLE_RATE}",
            f"--channels={settings.CAPTURE_CHANNELS}",
            "--device=@DEFAULT_MONITOR@",
        ]
    return None


class SystemAudioCapture:
    """
    One capture subprocess. on_chunk receives mono PCM bytes of one chunk duration.
    on_error is called if the process dies before delivering any audio (permission denied).
    """

    def __init__(
        self,
        on_chunk: Callable[[bytes], Awaitable[None]],
        settings: Settings | None = None,
        command: list[str] | None = None,
        on_error: Callable[[CaptureError], None] | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._command = command if command is not None else system_audio_command(self._settings)
        self._on_chunk = on_chunk
        self._on_error = on_error
        self._assembler = ChunkAssembler(self._settings.chunk_bytes)
        self._proc: asyncio.subprocess.Process | None = None
        self._reader_task: asyncio.Task | None = None
        self._stderr_task: asyncio.Task | None = None
        self._chunks_delivered = 0

    @property
    def running(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    async def start(self) -> None:
        if self._proc is not None:
            return
        if not self._command:
            raise CaptureError("platform", f"System audio capture is not supported on {sys.platform}")
        try:
            self._proc = await asyncio.create_subprocess_exec(
                *self._command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise CaptureError("platform", f"System audio helper not found: {self._command[0]}") from e
        except PermissionError as e:
            raise CaptureError("audio_permission", f"Not allowed to run {self._command[0]}: {e}") from e
        logger.info("System audio capture started (pid=%s): %s", self._proc.pid, self._command[0])
        self._chunks_delivered = 0
        self._reader_task = asyncio.create_task(self._read_loop(self._proc))
        self._stderr_task = asyncio.create_task(self._drain_stderr(self._proc))

    async def _read_loop(self, proc: asyncio.subprocess.Process) -> None:
        assert proc.stdout is not None
        channels = self._settings.CAPTURE_CHANNELS
        try:
            while True:
                data = await proc.stdout.read(READ_SIZE)
                if not data:
                    break
                self._assembler.feed(data)
                for chunk in self._assembler.drain_chunks():
                    await self._on_chunk(downmix_to_mono(chunk, channels))
                    self._chunks_delivered += 1
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("System audio read loop failed")
            return
        code = await proc.wait()
        logger.info("System audio capture process exited with code %s", code)
        if code not in (0, None) and self._chunks_delivered == 0 and self._proc is proc and self._on_error:
            self._on_error(
                CaptureError(
                    "audio_permission",
                    "Failed to capture system audio. Check screen/audio recording permissions.",
                )
            )

    async def _drain_stderr(self, proc: asyncio.subprocess.Process) -> None:
        assert proc.stderr is not None
        while True:
            line = await proc.stderr.readline()
            if not line:
                return
            logger.debug("capture stderr: %s", line.decode(errors="replace").rstrip())

    async def stop(self) -> None:
        proc, self._proc = self._proc, None
        for task in (self._reader_task, self._stderr_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._reader_task = None
        self._stderr_task = None
        if proc is not None and proc.returncode is None:
            proc.terminate()
            try:
                await asyncio.wait_for(proc.wait(), timeout=STOP_TIMEOUT_SEC)
            except asyncio.TimeoutError:
                proc.kill()
                await proc.wait()
            logger.info("System audio capture stopped")
        self._assembler.reset()


class AudioIngestPipeline:
    """
    Routes audio to the STT sink per source. REMOTE = system audio (subprocess capture),
    LOCAL = externally supplied microphone chunks (base64 PCM16 mono).
    """

    def __init__(
        self,
        sink: AudioSink,
        frame_tap: FrameTap | None = None,
        settings: Settings | None = None,
        capture_factory: Callable[..., SystemAudioCapture] | None = None,
        on_error: Callable[[CaptureError], None] | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._sink = sink
        self._frame_tap = frame_tap
        self._capture_factory = capture_factory or SystemAudioCapture
        self._on_error = on_error
        self._system_capture: SystemAudioCapture | None = None
        self._external_open: set[Speaker] = set()
        self._forwarded: dict[Speaker, int] = {Speaker.LOCAL: 0, Speaker.REMOTE: 0}

    def is_capturing(self, source: Speaker) -> bool:
        if source is Speaker.REMOTE:
            return self._system_capture is not None
        return source in self._external_open

    async def start_capture(self, source: Speaker) -> None:
        """Begin producing chunks for source. Raises CaptureError; pipeline stays stopped then."""
        if source is Speaker.LOCAL:
            self._external_open.add(source)
            return
        if source is not Speaker.REMOTE:
            raise ValueError(f"Cannot capture audio for {source}")
        if self._system_capture is not None:
            return

        async def on_chunk(mono: bytes) -> None:
            await self._forward(Speaker.REMOTE, mono)

        capture = self._capture_factory(on_chunk=on_chunk, settings=self._settings, on_error=self._on_error)
        await capture.start()
        self._system_capture = capture

    async def stop_capture(self, source: Speaker) -> None:
        if source is Speaker.REMOTE:
            capture, self._system_capture = self._system_capture, None
            if capture is not None:
                await capture.stop()
        else:
            self._external_open.discard(source)

    async def stop_all(self) -> None:
        await self.stop_capture(Speaker.REMOTE)
        self._external_open.clear()

    async def push_chunk(self, source: Speaker, data_b64: str) -> bool:
        """Externally captured chunk (already mono, base64). False when the source is not open."""
        if source not in self._external_open:
            logger.debug("Dropping %s chunk: capture not started", source.value)
            return False
        if not data_b64:
            return False
        await self._sink(source, data_b64)
        self._forwarded[source] += 1
        return True

    async def _forward(self, source: Speaker, mono: bytes) -> None:
        if not mono:
            return
        data_b64 = pcm_to_base64(mono)
        if self._frame_tap is not None:
            try:
                self._frame_tap(source, data_b64)
            except Exception:
                logger.exception("Frame tap failed")
        await self._deliver(source, data_b64)

    async def _deliver(self, source: Speaker, data_b64: str) -> None:
        try:
            await self._sink(source, data_b64)
        except Exception as e:
            logger.warning("Error sending %s audio: %s", source.value, e)
            return
        self._forwarded[source] += 1
        if self._forwarded[source] % 50 == 0:
            logger.debug("%s audio chunks forwarded: %d", source.value, self._forwarded[source])
