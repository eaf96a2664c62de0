"""Failure modes of the chat pipeline and their user-facing replies."""
from __future__ import annotations

from typing import Dict, Optional

from .models import ChatResponse

UPSTREAM_STATUS_MESSAGES: Dict[int, str] = {
    400: "Bad request to AI service.",
    401: "Invalid API key. Please check your LongCat API key.",
    403: "Access forbidden to AI service.",
    429: "Too many requests. Please wait a moment and try again.",
    500: "AI service internal error.",
    502: "AI service is temporarily unavailable.",
    503: "AI service is overloaded.",
    504: "AI service timeout.",
}
UPSTREAM_FALLBACK_MESSAGE = "AI service error. Please try again."
UNEXPECTED_REPLY = "❌ An unexpected error occurred. Please try again."


class ChatProxyError(Exception):
    """Base class for failures converted into an error response."""

    status_code: int = 500
    reply: str = UNEXPECTED_REPLY
    error: Optional[str] = None

    def __init__(
        self,
        reply: Optional[str] = None,
        *,
        error: Optional[str] = None,
        details: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        if reply is not None:
            self.reply = reply
        if error is not None:
            self.error = error
        if status_code is not None:
            self.status_code = status_code
        self.details = details
        super().__init__(self.reply)

    def to_response(self, include_details: bool = False) -> ChatResponse:
        return ChatResponse(
            reply=self.reply,
            error=self.error,
            details=self.details if include_details else None,
        )


class MethodNotAllowedError(ChatProxyError):
    status_code = 405
    reply = "Only POST requests are allowed."
    error = "Method not allowed"


class ConfigurationError(ChatProxyError):
    status_code = 500
    reply = "Server configuration error. Please check your API key setup."
    error = "Missing API Key"


class MessageValidationError(ChatProxyError):
    status_code = 400


class ContentBlockedError(ChatProxyError):
    status_code = 400
    reply = "Message contains blocked content."


class MalformedJSONError(ChatProxyError):
    """Raised when a JSON document (inbound or upstream) cannot be decoded."""

    status_code = 400
    reply = "📄 Invalid request format. Please check your input."
    error = "Invalid JSON"


class UpstreamTimeoutError(ChatProxyError):
    status_code = 504
    reply = "⏱️ Request timed out. Please try a shorter message or try again later."
    error = "Timeout"


class UpstreamNetworkError(ChatProxyError):
    status_code = 502
    reply = "🔌 Network error. Please check your connection and try again."
    error = "Network Error"


class UpstreamStatusError(ChatProxyError):
    """Non-success HTTP status returned by the upstream chat service."""

    def __init__(self, upstream_status: int, reason: str, body: str = "") -> None:
        self.upstream_status = upstream_status
        message = UPSTREAM_STATUS_MESSAGES.get(upstream_status, UPSTREAM_FALLBACK_MESSAGE)
        super().__init__(
            f"🤖 {message}",
            error=reason or None,
            details=body or None,
            status_code=502 if upstream_status >= 500 else upstream_status,
        )
