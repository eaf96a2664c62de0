from __future__ import annotations

import os
import sys
from collections.abc import Generator
from pathlib import Path
from typing import Any, Callable, List, Optional

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("LONGCAT_API_KEY", "test-key")

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from chat_proxy import main
from chat_proxy.config import Settings
from chat_proxy.models import UpstreamChatRequest


def completion_payload(content: Any = "hello", **overrides: Any) -> dict:
    payload = {
        "id": "chatcmpl-1",
        "model": "LongCat-Flash-Chat",
        "choices": [{"index": 0, "message": {"role": "assistant", "content": content}}],
        "usage": {"prompt_tokens": 20, "completion_tokens": 22, "total_tokens": 42},
    }
    payload.update(overrides)
    return payload


class DummyChatClient:
    """Stands in for :class:`LongCatClient` and records every request."""

    def __init__(
        self,
        payload: Any = None,
        error: Optional[Exception] = None,
        handler: Optional[Callable[[UpstreamChatRequest], Any]] = None,
    ) -> None:
        self.payload = completion_payload() if payload is None else payload
        self.error = error
        self.handler = handler
        self.requests: List[UpstreamChatRequest] = []

    async def create_chat_completion(self, request: UpstreamChatRequest) -> Any:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if self.handler is not None:
            return self.handler(request)
        return self.payload


@pytest.fixture()
def settings() -> Settings:
    return Settings(longcat_api_key="test-key")


@pytest.fixture()
def dummy_client() -> DummyChatClient:
    return DummyChatClient()


@pytest.fixture()
def client(
    settings: Settings,
    dummy_client: DummyChatClient,
) -> Generator[TestClient, None, None]:
    main.app.dependency_overrides[main.get_settings] = lambda: settings
    main.app.dependency_overrides[main.get_longcat_client] = lambda: dummy_client
    with TestClient(main.app) as http_client:
        yield http_client
    main.app.dependency_overrides.clear()


@pytest.fixture()
def make_payload() -> Callable[..., dict]:
    return completion_payload
