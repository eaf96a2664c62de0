"""Pydantic models for the public chat endpoint."""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class ReplyMetadata(BaseModel):
    """Diagnostic information attached to successful replies."""

    tokens: int = Field(default=0, ge=0, description="Total tokens reported by the provider")
    model: str = Field(..., description="Model that generated the reply")
    timestamp: str = Field(..., description="ISO-8601 UTC time the reply was produced")
    truncated: bool = Field(default=False, description="Whether the reply was shortened")


class ChatResponse(BaseModel):
    """Body returned on every path of the chat endpoint."""

    reply: str = Field(..., description="Human readable reply or error message")
    metadata: Optional[ReplyMetadata] = None
    error: Optional[str] = Field(default=None, description="Short machine oriented error label")
    details: Optional[str] = Field(
        default=None, description="Diagnostic detail, only exposed in development"
    )
