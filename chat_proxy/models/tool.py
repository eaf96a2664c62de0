"""Pydantic models for the tool prompt endpoint."""
from __future__ import annotations

from pydantic import BaseModel, Field


class ToolRequest(BaseModel):
    """Request payload for single-shot tool prompts."""

    prompt: str = Field(..., min_length=1, description="Instruction forwarded to the model")
