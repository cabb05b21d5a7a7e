"""LLM: streaming chat providers."""
from .base import ERROR_MESSAGES, ChatMessage, LLMProvider, LLMRequestError, classify_status
from .openai_chat import OpenAIChatStreamer, parse_sse_line, to_openai_messages

__all__ = [
    "ERROR_MESSAGES",
    "ChatMessage",
    "LLMProvider",
    "LLMRequestError",
    "classify_status",
    "OpenAIChatStreamer",
    "parse_sse_line",
    "to_openai_messages",
]
