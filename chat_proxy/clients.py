"""Async client for the upstream chat completion service."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict

import httpx
from opentelemetry import trace
from opentelemetry.propagate import inject
from opentelemetry.trace import Status, StatusCode

from .errors import (
    ChatProxyError,
    MalformedJSONError,
    UpstreamNetworkError,
    UpstreamStatusError,
    UpstreamTimeoutError,
)
from .models import UpstreamChatRequest
from .telemetry import get_correlation_id

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class LongCatClient:
    """Calls the OpenAI-compatible LongCat chat completion API.

    Every call is bounded by a wall-clock timeout; on expiry the in-flight
    request is cancelled and :class:`UpstreamTimeoutError` is raised. No
    retries are attempted.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        timeout: float = 15.0,
        user_agent: str = "chat-proxy/1.0",
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._user_agent = user_agent

    @property
    def timeout(self) -> float:
        return self._timeout

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "User-Agent": self._user_agent,
        }
        correlation_id = get_correlation_id()
        if correlation_id:
            headers["X-Correlation-ID"] = correlation_id
        inject(headers)
        return headers

    async def _post(self, url: str, payload: Dict[str, Any]) -> httpx.Response:
        try:
            async with asyncio.timeout(self._timeout):
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    return await client.post(url, headers=self._headers(), json=payload)
        except TimeoutError as exc:
            logger.warning("Upstream call exceeded %.1fs and was cancelled", self._timeout)
            raise UpstreamTimeoutError(details=f"No response within {self._timeout}s") from exc
        except httpx.TimeoutException as exc:
            logger.warning("Upstream transport timed out: %s", exc)
            raise UpstreamTimeoutError(details=str(exc)) from exc
        except httpx.HTTPError as exc:
            logger.exception("Upstream request failed: POST %s", url)
            raise UpstreamNetworkError(details=str(exc)) from exc

    async def create_chat_completion(self, request: UpstreamChatRequest) -> Any:
        """Send ``request`` and return the decoded JSON body.

        The body is returned untouched; callers validate its shape.
        """

        url = f"{self._base_url}/chat/completions"
        span_attributes = {
            "llm.system": "longcat",
            "llm.operation": "chat.completion",
            "llm.model": request.model,
        }
        correlation_id = get_correlation_id()
        if correlation_id:
            span_attributes["correlation.id"] = correlation_id

        with tracer.start_as_current_span("LongCat.chatCompletion") as span:
            for key, value in span_attributes.items():
                span.set_attribute(key, value)
            try:
                response = await self._post(url, request.to_payload())
                span.set_attribute("http.status_code", response.status_code)

                if not 200 <= response.status_code < 300:
                    body = response.text
                    logger.error(
                        "LongCat API error %s %s: %s",
                        response.status_code,
                        response.reason_phrase,
                        body[:500],
                    )
                    raise UpstreamStatusError(response.status_code, response.reason_phrase, body)

                try:
                    data = response.json()
                except ValueError as exc:
                    logger.error("LongCat API returned a non-JSON body: %s", response.text[:500])
                    raise MalformedJSONError(details=str(exc)) from exc
            except ChatProxyError as exc:
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, exc.reply))
                raise

            span.set_status(Status(StatusCode.OK))
            usage = data.get("usage") if isinstance(data, dict) else None
            if isinstance(usage, dict) and isinstance(usage.get("total_tokens"), int):
                span.set_attribute("llm.usage.total_tokens", usage["total_tokens"])
            return data
