#!/usr/bin/env python3
"""Chat proxy application forwarding user messages to the LongCat chat API."""
from __future__ import annotations

from dotenv import load_dotenv

load_dotenv()

import logging
import os
import time
import uuid
from typing import Any, Dict

import structlog
from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.exception_handlers import http_exception_handler
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from opentelemetry._logs import set_logger_provider
from opentelemetry.exporter.otlp.proto.http._log_exporter import OTLPLogExporter
from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
from opentelemetry.sdk.resources import Resource
from starlette.datastructures import Headers
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from structlog.contextvars import bind_contextvars, unbind_contextvars
from structlog.stdlib import ProcessorFormatter

from .clients import LongCatClient
from .completion import ShapeMismatch, parse_completion
from .config import Settings, get_settings
from .errors import ChatProxyError, ConfigurationError, MethodNotAllowedError
from .models import ChatResponse, ToolRequest, UpstreamChatRequest
from .pipeline import ChatPipeline
from .telemetry import (
    configure_tracing,
    get_correlation_id,
    reset_correlation_id,
    set_correlation_id,
    tracing_requested,
)

SERVICE_NAME = "chat-proxy"
logger = logging.getLogger("chat_proxy")


class CorrelationIdFilter(logging.Filter):
    """Inject the correlation identifier into log records."""

    def filter(self, record: logging.LogRecord) -> bool:  # pragma: no cover - logging helper
        record.correlation_id = get_correlation_id() or "unknown"
        return True


def _add_correlation_id(_: Any, __: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:  # pragma: no cover - logging helper
    event_dict.setdefault("correlation_id", get_correlation_id() or "unknown")
    return event_dict


def _configure_otlp_logging(service_name: str) -> None:
    if not (
        os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
        or os.getenv("OTEL_EXPORTER_OTLP_LOGS_ENDPOINT")
    ):
        return

    root_logger = logging.getLogger()
    try:
        resource = Resource.create(
            {"service.name": os.getenv("OTEL_SERVICE_NAME", service_name)}
        )
        logger_provider = LoggerProvider(resource=resource)
        logger_provider.add_log_record_processor(BatchLogRecordProcessor(OTLPLogExporter()))
        set_logger_provider(logger_provider)
        root_logger.addHandler(LoggingHandler(level=logging.NOTSET, logger_provider=logger_provider))
        root_logger.debug(
            "OTLP log exporter configured",
            extra={"service_name": resource.attributes.get("service.name")},
        )
    except Exception:  # pragma: no cover - exporter misconfiguration must not stop the service
        root_logger.exception("Failed to configure OTLP log exporter")


def configure_logging(service_name: str = SERVICE_NAME) -> None:
    timestamper = structlog.processors.TimeStamper(fmt="iso", utc=True)
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        _add_correlation_id,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.ExtraAdder(),
        timestamper,
        structlog.processors.format_exc_info,
    ]

    formatter = ProcessorFormatter(
        processor=structlog.processors.JSONRenderer(),
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    handler.addFilter(CorrelationIdFilter())

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())

    structlog.configure(
        processors=shared_processors + [ProcessorFormatter.wrap_for_formatter],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    _configure_otlp_logging(service_name)


configure_logging()


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Attach correlation identifiers and latency to responses."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        correlation_id = request.headers.get("X-Correlation-ID", str(uuid.uuid4()))
        token = set_correlation_id(correlation_id)
        bind_contextvars(correlation_id=correlation_id)
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            logger.exception("Unhandled exception during request", extra={"path": request.url.path})
            raise
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            reset_correlation_id(token)
            unbind_contextvars("correlation_id")
            logger.info(
                "Request completed",
                extra={
                    "path": request.url.path,
                    "method": request.method,
                    "duration_ms": round(duration_ms, 2),
                },
            )

        response.headers["X-Correlation-ID"] = correlation_id
        response.headers["X-Process-Time-ms"] = f"{duration_ms:.2f}"
        return response


class PreflightCORSMiddleware(CORSMiddleware):
    """CORS middleware answering accepted preflights with an empty body."""

    def preflight_response(self, request_headers: Headers) -> Response:
        response = super().preflight_response(request_headers)
        if response.status_code != 200:
            return response
        headers = {
            key: value
            for key, value in response.headers.items()
            if key.lower() not in ("content-length", "content-type")
        }
        return Response(status_code=200, headers=headers)


app = FastAPI(title="Chat Proxy", version="1.0.0")
settings = get_settings()
app.add_middleware(
    PreflightCORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(CorrelationIdMiddleware)
if tracing_requested():
    configure_tracing(app, SERVICE_NAME)


@app.exception_handler(StarletteHTTPException)
async def chat_method_not_allowed(request: Request, exc: StarletteHTTPException) -> Response:
    """Keep the chat reply contract for verbs the router rejects itself."""

    if exc.status_code == 405 and request.url.path == "/api/chat":
        return JSONResponse(
            status_code=405,
            content=MethodNotAllowedError().to_response().model_dump(exclude_none=True),
            headers=exc.headers,
        )
    return await http_exception_handler(request, exc)


# Dependency factories -----------------------------------------------------

def get_longcat_client(settings: Settings = Depends(get_settings)) -> LongCatClient:
    return LongCatClient(
        api_key=settings.longcat_api_key or "",
        base_url=settings.longcat_base_url,
        timeout=settings.upstream_timeout_seconds,
        user_agent=settings.user_agent,
    )


def get_chat_pipeline(
    settings: Settings = Depends(get_settings),
    client: LongCatClient = Depends(get_longcat_client),
) -> ChatPipeline:
    return ChatPipeline(settings=settings, client=client)


# Routes -------------------------------------------------------------------


@app.get("/")
async def root() -> Dict[str, str]:
    return {"message": "Chat proxy operational"}


@app.get("/healthz")
async def healthz(settings: Settings = Depends(get_settings)) -> Dict[str, str]:
    """Simple readiness probe for container orchestrators."""

    return {"status": "ok", "longcat": "configured" if settings.longcat_api_key else "missing"}


@app.api_route(
    "/api/chat",
    methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    response_model=ChatResponse,
    response_model_exclude_none=True,
)
async def chat(
    request: Request,
    pipeline: ChatPipeline = Depends(get_chat_pipeline),
) -> Response:
    result = await pipeline.handle(request.method, await request.body())
    if result.body is None:
        return Response(status_code=result.status_code)
    return JSONResponse(
        status_code=result.status_code,
        content=result.body.model_dump(exclude_none=True),
    )


@app.post("/api/tool")
async def run_tool(
    payload: ToolRequest,
    client: LongCatClient = Depends(get_longcat_client),
    settings: Settings = Depends(get_settings),
) -> str:
    """Forward a single prompt and return the raw assistant text."""

    try:
        if not settings.longcat_api_key:
            raise ConfigurationError()
        data = await client.create_chat_completion(
            UpstreamChatRequest.for_tool(payload.prompt, model=settings.longcat_model)
        )
    except ChatProxyError as exc:
        logger.error("Tool prompt failed: %s", exc.reply)
        raise HTTPException(status_code=exc.status_code, detail=exc.reply) from exc

    parsed = parse_completion(data)
    if isinstance(parsed, ShapeMismatch):
        logger.warning("Unexpected API response structure", extra=parsed.as_log_extra())
        raise HTTPException(status_code=502, detail="AI did not return a response.")
    return parsed.content
