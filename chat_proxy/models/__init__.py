"""Pydantic schemas exposed by the chat proxy."""
from .chat import ChatResponse, ReplyMetadata
from .tool import ToolRequest
from .upstream import UpstreamChatRequest, UpstreamMessage

__all__ = [
    "ChatResponse",
    "ReplyMetadata",
    "ToolRequest",
    "UpstreamChatRequest",
    "UpstreamMessage",
]
