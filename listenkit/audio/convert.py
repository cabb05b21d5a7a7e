"""PCM helpers: channel downmix and base64 transport encoding."""
from __future__ import annotations

import base64

import numpy as np


def downmix_to_mono(pcm_bytes: bytes, channels: int) -> bytes:
    """Interleaved PCM 16-bit (little-endian) -> mono by averaging channels."""
    if channels <= 1:
        return pcm_bytes
    samples = np.frombuffer(pcm_bytes, dtype="<i2")
    usable = len(samples) - (len(samples) % channels)
    if usable == 0:
        return b""
    frames = samples[:usable].reshape(-1, channels).astype(np.int32)
    mono = frames.mean(axis=1).round().clip(-32768, 32767).astype("<i2")
    return mono.tobytes()


def pcm_to_base64(pcm_bytes: bytes) -> str:
    return base64.b64encode(pcm_bytes).decode("ascii")


def base64_to_pcm(data: str) -> bytes:
    return base64.b64decode(data)
