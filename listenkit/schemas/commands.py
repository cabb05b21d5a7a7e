"""Request/response bodies of the command surface (camelCase on the wire)."""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _Model(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SendToLLMRequest(_Model):
    include_screenshot: bool = Field(False, description="Attach the latest screen snapshot")


class MicAudioRequest(_Model):
    data: str = Field(..., description="Base64 PCM 16-bit mono chunk from the microphone")


class CommandResponse(_Model):
    """Union of command results; unset fields are omitted on the wire."""

    success: bool | None = None
    is_listening: bool | None = None
    error: str | None = Field(None, description="Rejection reason: busy | not_listening | ...")

    def wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)
