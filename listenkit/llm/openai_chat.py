"""
OpenAI chat completions, streamed (SSE) over httpx.

Each "data: {...}" line carries one token in choices[0].delta.content; "data: [DONE]" ends
the stream. Lines that do not parse are skipped; they never abort the stream.
"""
from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator

import httpx

from listenkit.config import Settings, get_settings
from listenkit.llm.base import ChatMessage, LLMProvider, LLMRequestError, classify_status

logger = logging.getLogger(__name__)

_DONE = object()


def to_openai_messages(messages: list[ChatMessage]) -> list[dict[str, Any]]:
    """Provider-agnostic parts -> OpenAI content parts (images as data URLs)."""
    out: list[dict[str, Any]] = []
    for msg in messages:
        content = msg.get("content")
        if isinstance(content, str):
            out.append({"role": msg["role"], "content": content})
            continue
        parts: list[dict[str, Any]] = []
        for part in content or []:
            if part.get("type") == "image":
                mime = part.get("mime_type") or "image/png"
                parts.append({"type": "image_url", "image_url": {"url": f"data:{mime};base64,{part['data']}"}})
            else:
                parts.append({"type": "text", "text": part.get("text", "")})
        out.append({"role": msg["role"], "content": parts})
    return out


def parse_sse_line(line: str) -> Any:
    """Token text, None (nothing to emit) or _DONE."""
    line = line.strip()
    if not line.startswith("data:"):
        return None
    data = line[len("data:"):].strip()
    if data == "[DONE]":
        return _DONE
    try:
        obj = json.loads(data)
    except json.JSONDecodeError:
        logger.warning("Skipping unparseable stream fragment: %.80s", data)
        return None
    try:
        return obj["choices"][0]["delta"].get("content") or None
    except (KeyError, IndexError, TypeError, AttributeError):
        return None


class OpenAIChatStreamer(LLMProvider):
    def __init__(self, settings: Settings | None = None, client: httpx.AsyncClient | None = None) -> None:
        self._settings = settings or get_settings()
        self._client = client

    async def stream_chat(self, messages: list[ChatMessage]) -> AsyncIterator[str]:
        settings = self._settings
        url = settings.OPENAI_BASE_URL.rstrip("/") + "/chat/completions"
        headers = {"Authorization": f"Bearer {settings.OPENAI_API_KEY}"}
        payload = {
            "model": settings.LLM_MODEL,
            "messages": to_openai_messages(messages),
            "temperature": settings.LLM_TEMPERATURE,
            "max_tokens": settings.LLM_MAX_TOKENS,
            "stream": True,
        }
        client = self._client or httpx.AsyncClient(timeout=httpx.Timeout(30.0, read=None))
        try:
            async with client.stream("POST", url, headers=headers, json=payload) as resp:
                if resp.status_code != 200:
                    body = (await resp.aread()).decode(errors="replace")
                    raise LLMRequestError(
                        classify_status(resp.status_code),
                        f"OpenAI API error: {resp.status_code} {body[:200]}",
                    )
                async for line in resp.aiter_lines():
                    token = parse_sse_line(line)
                    if token is _DONE:
                        return
                    if token:
                        yield token
        except httpx.TransportError as e:
            raise LLMRequestError("network", str(e)) from e
        finally:
            if self._client is None:
                await client.aclose()
