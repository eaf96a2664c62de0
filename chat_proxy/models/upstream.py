"""Pydantic models for requests sent to the upstream chat service."""
from __future__ import annotations

from datetime import date
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

CHAT_SYSTEM_PROMPT = (
    "You are a helpful AI assistant. Respond in clear, concise Markdown format when appropriate.\n"
    "Current date: {today}\n"
    "Be friendly, helpful, and accurate."
)
TOOL_SYSTEM_PROMPT = "You are an AI tool engine. Output only."


class UpstreamMessage(BaseModel):
    """Single message item in an upstream conversation."""

    role: Literal["system", "user", "assistant"]
    content: str


class UpstreamChatRequest(BaseModel):
    """Chat completion payload in the OpenAI-compatible format."""

    model: str
    messages: List[UpstreamMessage] = Field(..., min_length=1)
    max_tokens: int = Field(default=300, ge=1)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    top_p: Optional[float] = Field(default=None, gt=0.0, le=1.0)
    frequency_penalty: Optional[float] = None
    presence_penalty: Optional[float] = None
    stream: Optional[bool] = None

    @classmethod
    def for_chat(cls, message: str, model: str, today: date) -> "UpstreamChatRequest":
        """Build the fixed request used by the chat endpoint."""

        return cls(
            model=model,
            messages=[
                UpstreamMessage(
                    role="system",
                    content=CHAT_SYSTEM_PROMPT.format(today=today.isoformat()),
                ),
                UpstreamMessage(role="user", content=message),
            ],
            max_tokens=300,
            temperature=0.7,
            top_p=0.9,
            frequency_penalty=0.1,
            presence_penalty=0.1,
            stream=False,
        )

    @classmethod
    def for_tool(cls, prompt: str, model: str) -> "UpstreamChatRequest":
        return cls(
            model=model,
            messages=[
                UpstreamMessage(role="system", content=TOOL_SYSTEM_PROMPT),
                UpstreamMessage(role="user", content=prompt),
            ],
            max_tokens=200,
            temperature=0.6,
        )

    def to_payload(self) -> dict:
        return self.model_dump(exclude_none=True)
