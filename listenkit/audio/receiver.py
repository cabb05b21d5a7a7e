"""
ChunkAssembler: accepts raw PCM bytes from the capture process and yields fixed-size chunks.

- Input arrives in arbitrary pieces (pipe reads); zero-length and partial reads are fine.
- Emits only complete chunks (e.g. 100ms of 24kHz 16-bit stereo = 9600 bytes).
- Any remainder is kept for the next read.
"""
from __future__ import annotations


class ChunkAssembler:
    """Buffers incoming bytes into fixed-size chunks. Remainder carries over."""

    def __init__(self, chunk_bytes: int) -> None:
        if chunk_bytes <= 0:
            raise ValueError("chunk_bytes must be positive")
        self._chunk_bytes = chunk_bytes
        self._buffer = bytearray()

    @property
    def chunk_bytes(self) -> int:
        return self._chunk_bytes

    def feed(self, data: bytes) -> None:
        """Append raw PCM bytes (any length, including empty)."""
        if data:
            self._buffer.extend(data)

    def drain_chunks(self) -> list[bytes]:
        """
        Drain all complete chunks from the buffer.
        Returns list of full chunks; remainder stays in buffer.
        """
        out: list[bytes] = []
        while len(self._buffer) >= self._chunk_bytes:
            out.append(bytes(self._buffer[: self._chunk_bytes]))
            del self._buffer[: self._chunk_bytes]
        return out

    def remaining_bytes(self) -> int:
        """Bytes left in buffer (incomplete chunk)."""
        return len(self._buffer)

    def reset(self) -> None:
        self._buffer.clear()
