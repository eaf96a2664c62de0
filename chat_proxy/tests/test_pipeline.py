from __future__ import annotations

import json

import pytest

from chat_proxy.config import Settings
from chat_proxy.content_filter import ContentFilter
from chat_proxy.errors import (
    MalformedJSONError,
    UpstreamNetworkError,
    UpstreamStatusError,
    UpstreamTimeoutError,
)
from chat_proxy.pipeline import (
    EMPTY_REPLY,
    MISSING_REPLY,
    TRUNCATION_MARKER,
    ChatPipeline,
    coerce_message,
    post_process_reply,
)


def _body(data: object) -> bytes:
    return json.dumps(data).encode()


@pytest.fixture()
def pipeline(settings: Settings, dummy_client) -> ChatPipeline:
    return ChatPipeline(settings=settings, client=dummy_client)


@pytest.mark.asyncio
async def test_upstream_request_is_fixed(pipeline: ChatPipeline, dummy_client) -> None:
    result = await pipeline.handle("POST", _body({"message": "  What is Python?\n"}))

    assert result.status_code == 200
    payload = dummy_client.requests[0].to_payload()
    assert payload["model"] == "LongCat-Flash-Chat"
    assert [message["role"] for message in payload["messages"]] == ["system", "user"]
    assert payload["messages"][1]["content"] == "What is Python?"
    assert "Current date:" in payload["messages"][0]["content"]
    assert payload["max_tokens"] == 300
    assert payload["temperature"] == 0.7
    assert payload["top_p"] == 0.9
    assert payload["frequency_penalty"] == 0.1
    assert payload["presence_penalty"] == 0.1
    assert payload["stream"] is False


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("data", "reply"),
    [
        ({}, "Please provide a message."),
        ({"message": None}, "Please provide a message."),
        (["message"], "Please provide a message."),
        ({"message": ""}, "Message cannot be empty."),
        ({"message": " \t\n "}, "Message cannot be empty."),
    ],
)
async def test_missing_or_empty_message_never_calls_upstream(
    pipeline: ChatPipeline, dummy_client, data: object, reply: str
) -> None:
    result = await pipeline.handle("POST", _body(data))

    assert result.status_code == 400
    assert result.body is not None
    assert result.body.reply == reply
    assert dummy_client.requests == []


@pytest.mark.asyncio
async def test_empty_body_is_treated_as_missing_message(pipeline: ChatPipeline) -> None:
    result = await pipeline.handle("POST", b"")

    assert result.status_code == 400
    assert result.body.reply == "Please provide a message."


@pytest.mark.asyncio
async def test_message_length_limit(pipeline: ChatPipeline, dummy_client) -> None:
    accepted = await pipeline.handle("POST", _body({"message": "  " + "a" * 2000 + "  "}))
    rejected = await pipeline.handle("POST", _body({"message": "a" * 2001}))

    assert accepted.status_code == 200
    assert rejected.status_code == 400
    assert rejected.body.reply == "Message is too long. Please keep it under 2000 characters."
    assert len(dummy_client.requests) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("message", ["how to HACK a site", "SQL Injection tips", "Exploited"])
async def test_blocked_content_never_calls_upstream(
    pipeline: ChatPipeline, dummy_client, message: str
) -> None:
    result = await pipeline.handle("POST", _body({"message": message}))

    assert result.status_code == 400
    assert result.body.reply == "Message contains blocked content."
    assert dummy_client.requests == []


@pytest.mark.asyncio
async def test_custom_content_filter(settings: Settings, dummy_client) -> None:
    pipeline = ChatPipeline(settings, dummy_client, ContentFilter([r"\bforbidden\b"]))

    blocked = await pipeline.handle("POST", _body({"message": "this is Forbidden"}))
    allowed = await pipeline.handle("POST", _body({"message": "hack the planet"}))

    assert blocked.status_code == 400
    assert allowed.status_code == 200


@pytest.mark.asyncio
async def test_non_string_message_is_coerced(pipeline: ChatPipeline, dummy_client) -> None:
    result = await pipeline.handle("POST", _body({"message": 42}))

    assert result.status_code == 200
    assert dummy_client.requests[0].messages[1].content == "42"


@pytest.mark.asyncio
@pytest.mark.parametrize(("value", "sent"), [(0, "0"), (False, "false")])
async def test_falsy_scalars_are_forwarded_as_text(
    pipeline: ChatPipeline, dummy_client, value: object, sent: str
) -> None:
    result = await pipeline.handle("POST", _body({"message": value}))

    assert result.status_code == 200
    assert dummy_client.requests[0].messages[1].content == sent


@pytest.mark.asyncio
async def test_configuration_checked_before_body(dummy_client) -> None:
    pipeline = ChatPipeline(Settings(longcat_api_key=""), dummy_client)

    result = await pipeline.handle("POST", b"{broken")

    assert result.status_code == 500
    assert result.body.error == "Missing API Key"
    assert dummy_client.requests == []


@pytest.mark.asyncio
async def test_options_and_other_methods(pipeline: ChatPipeline) -> None:
    preflight = await pipeline.handle("OPTIONS", b"")
    rejected = await pipeline.handle("DELETE", b"")

    assert preflight.status_code == 200
    assert preflight.body is None
    assert rejected.status_code == 405


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("error", "status"),
    [
        (UpstreamTimeoutError(), 504),
        (UpstreamNetworkError(details="connection refused"), 502),
        (MalformedJSONError(details="Expecting value"), 400),
        (UpstreamStatusError(401, "Unauthorized"), 401),
        (UpstreamStatusError(403, "Forbidden"), 403),
        (UpstreamStatusError(503, "Service Unavailable"), 502),
    ],
)
async def test_upstream_failures_map_to_status(
    pipeline: ChatPipeline, dummy_client, error: Exception, status: int
) -> None:
    dummy_client.error = error

    result = await pipeline.handle("POST", _body({"message": "hi"}))

    assert result.status_code == status
    assert result.body.reply
    assert result.body.details is None


@pytest.mark.asyncio
async def test_unexpected_error_is_contained(pipeline: ChatPipeline, dummy_client) -> None:
    dummy_client.error = RuntimeError("boom")

    result = await pipeline.handle("POST", _body({"message": "hi"}))

    assert result.status_code == 500
    assert result.body.reply == "❌ An unexpected error occurred. Please try again."
    assert result.body.details is None


@pytest.mark.asyncio
async def test_unexpected_error_details_in_development(dummy_client) -> None:
    settings = Settings(longcat_api_key="test-key", environment="development")
    dummy_client.error = RuntimeError("boom")

    result = await ChatPipeline(settings, dummy_client).handle("POST", _body({"message": "hi"}))

    assert result.status_code == 500
    assert "RuntimeError: boom" in result.body.details


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"choices": None},
        {"choices": []},
        {"choices": [{}]},
        {"choices": [{"message": {"content": ""}}]},
        {"choices": [{"message": {"content": ["not", "text"]}}]},
        ["not", "an", "object"],
    ],
)
async def test_shape_mismatch_returns_placeholder(
    pipeline: ChatPipeline, dummy_client, payload: object
) -> None:
    dummy_client.payload = payload

    result = await pipeline.handle("POST", _body({"message": "hi"}))

    assert result.status_code == 200
    assert result.body.reply == MISSING_REPLY
    assert result.body.metadata.tokens == 0
    assert result.body.metadata.model == "LongCat-Flash-Chat"


@pytest.mark.asyncio
async def test_metadata_defaults_when_usage_missing(
    pipeline: ChatPipeline, dummy_client
) -> None:
    dummy_client.payload = {"choices": [{"message": {"content": "hi back"}}]}

    result = await pipeline.handle("POST", _body({"message": "hi"}))

    assert result.body.reply == "hi back"
    assert result.body.metadata.tokens == 0
    assert result.body.metadata.model == "LongCat-Flash-Chat"
    assert result.body.metadata.timestamp.endswith("Z")


def test_post_process_reply() -> None:
    assert post_process_reply("  hello \n") == ("hello", False)
    assert post_process_reply("   ") == (EMPTY_REPLY, False)
    assert post_process_reply("y" * 5000) == ("y" * 5000, False)

    reply, truncated = post_process_reply("z" * 5001)
    assert truncated is True
    assert reply == "z" * 5000 + TRUNCATION_MARKER


def test_coerce_message() -> None:
    assert coerce_message(None) is None
    assert coerce_message("text") == "text"
    assert coerce_message(True) == "true"
    assert coerce_message(1.5) == "1.5"
    assert coerce_message({"a": "é"}) == '{"a": "é"}'
