"""Audio pipeline: chunk assembly, downmix, system capture, routing to STT."""
from .receiver import ChunkAssembler
from .convert import base64_to_pcm, downmix_to_mono, pcm_to_base64
from .capture import AudioIngestPipeline, CaptureError, SystemAudioCapture, system_audio_command

__all__ = [
    "ChunkAssembler",
    "AudioIngestPipeline",
    "CaptureError",
    "SystemAudioCapture",
    "system_audio_command",
    "base64_to_pcm",
    "downmix_to_mono",
    "pcm_to_base64",
]
