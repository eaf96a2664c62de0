"""Validation and upstream-call pipeline behind the chat endpoint."""
from __future__ import annotations

import json
import logging
import traceback
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Protocol

from .completion import ShapeMismatch, parse_completion
from .config import Settings
from .content_filter import ContentFilter
from .errors import (
    UNEXPECTED_REPLY,
    ChatProxyError,
    ConfigurationError,
    ContentBlockedError,
    MalformedJSONError,
    MessageValidationError,
    MethodNotAllowedError,
)
from .models import ChatResponse, ReplyMetadata, UpstreamChatRequest

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 2000
MAX_REPLY_LENGTH = 5000
TRUNCATION_MARKER = "... [response truncated due to length]"
MISSING_REPLY = "⚠️ AI did not return a response."
EMPTY_REPLY = "AI returned an empty response."


class ChatCompletionClient(Protocol):
    async def create_chat_completion(self, request: UpstreamChatRequest) -> Any:
        ...


@dataclass
class PipelineResponse:
    """HTTP status and body produced for one request; ``body`` is ``None`` for preflight."""

    status_code: int
    body: Optional[ChatResponse] = None


def _preview(text: str, limit: int) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def coerce_message(value: Any) -> Optional[str]:
    """Turn the raw ``message`` field into text; ``None`` means it was not provided."""

    if value is None:
        return None
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


def post_process_reply(content: str) -> tuple[str, bool]:
    """Trim, bound and default the assistant text; return it with the truncation flag."""

    reply = content.strip()
    if len(reply) > MAX_REPLY_LENGTH:
        return reply[:MAX_REPLY_LENGTH] + TRUNCATION_MARKER, True
    if not reply:
        return EMPTY_REPLY, False
    return reply, False


class ChatPipeline:
    """Turns one inbound chat request into one structured response.

    :meth:`handle` never raises: every failure is converted into a
    :class:`PipelineResponse` carrying a human readable ``reply``.
    """

    def __init__(
        self,
        settings: Settings,
        client: ChatCompletionClient,
        content_filter: Optional[ContentFilter] = None,
    ) -> None:
        self._settings = settings
        self._client = client
        self._filter = content_filter or ContentFilter(settings.blocked_patterns)

    async def handle(self, method: str, body: bytes) -> PipelineResponse:
        method = method.upper()
        if method == "OPTIONS":
            return PipelineResponse(status_code=200)

        try:
            return await self._run(method, body)
        except ChatProxyError as exc:
            return PipelineResponse(
                status_code=exc.status_code,
                body=exc.to_response(include_details=self._settings.is_development),
            )
        except Exception as exc:
            logger.exception("Unhandled error in chat pipeline")
            details = None
            if self._settings.is_development:
                details = "".join(traceback.format_exception(exc))
            return PipelineResponse(
                status_code=500,
                body=ChatResponse(
                    reply=UNEXPECTED_REPLY,
                    error="Internal Server Error",
                    details=details,
                ),
            )

    async def _run(self, method: str, body: bytes) -> PipelineResponse:
        if method != "POST":
            raise MethodNotAllowedError()

        if not self._settings.longcat_api_key:
            logger.error("LONGCAT_API_KEY is not configured")
            raise ConfigurationError()

        message = self.validate_message(self._parse_body(body))
        self.check_content(message)

        logger.info("Processing message: %r", _preview(message, 100))
        request = UpstreamChatRequest.for_chat(
            message,
            model=self._settings.longcat_model,
            today=datetime.now(timezone.utc).date(),
        )
        payload = await self._client.create_chat_completion(request)
        return self._build_success(payload)

    @staticmethod
    def _parse_body(body: bytes) -> Any:
        if not body.strip():
            return {}
        try:
            return json.loads(body)
        except ValueError as exc:
            raise MalformedJSONError(details=str(exc)) from exc

    @staticmethod
    def validate_message(data: Any) -> str:
        """Return the trimmed message or raise :class:`MessageValidationError`."""

        raw = data.get("message") if isinstance(data, dict) else None
        message = coerce_message(raw)
        if message is None:
            raise MessageValidationError("Please provide a message.")

        trimmed = message.strip()
        if not trimmed:
            raise MessageValidationError("Message cannot be empty.")
        if len(trimmed) > MAX_MESSAGE_LENGTH:
            raise MessageValidationError(
                f"Message is too long. Please keep it under {MAX_MESSAGE_LENGTH} characters."
            )
        return trimmed

    def check_content(self, message: str) -> None:
        pattern = self._filter.find_match(message)
        if pattern is not None:
            logger.warning(
                "Blocked potentially harmful message: %r",
                _preview(message, 50),
                extra={"pattern": pattern},
            )
            raise ContentBlockedError()

    def _build_success(self, payload: Any) -> PipelineResponse:
        parsed = parse_completion(payload)
        if isinstance(parsed, ShapeMismatch):
            logger.warning("Unexpected API response structure", extra=parsed.as_log_extra())
            reply, truncated = MISSING_REPLY, False
        else:
            reply, truncated = post_process_reply(parsed.content)

        logger.info("Request completed: %s tokens used", parsed.total_tokens)
        return PipelineResponse(
            status_code=200,
            body=ChatResponse(
                reply=reply,
                metadata=ReplyMetadata(
                    tokens=parsed.total_tokens,
                    model=parsed.model or self._settings.longcat_model,
                    timestamp=_utc_timestamp(),
                    truncated=truncated,
                ),
            ),
        )
