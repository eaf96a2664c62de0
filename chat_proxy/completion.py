"""Typed extraction of the assistant reply from an upstream response body."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, List, Optional, Union


@dataclass
class Completion:
    """Fields read from a well-formed chat completion."""

    content: str
    model: Optional[str] = None
    total_tokens: int = 0


@dataclass
class ShapeMismatch:
    """Describes an upstream body lacking ``choices[0].message.content``."""

    has_choices: bool
    choices_length: Optional[int]
    has_message: bool
    keys: List[str] = field(default_factory=list)
    model: Optional[str] = None
    total_tokens: int = 0

    def as_log_extra(self) -> dict:
        return {
            "has_choices": self.has_choices,
            "choices_length": self.choices_length,
            "has_message": self.has_message,
            "data_keys": self.keys,
        }


CompletionParse = Union[Completion, ShapeMismatch]


def _read_model(payload: dict) -> Optional[str]:
    model = payload.get("model")
    if isinstance(model, str) and model:
        return model
    return None


def _read_total_tokens(payload: dict) -> int:
    usage = payload.get("usage")
    if not isinstance(usage, dict):
        return 0
    total = usage.get("total_tokens")
    if isinstance(total, bool) or not isinstance(total, int) or total < 0:
        return 0
    return total


def parse_completion(payload: Any) -> CompletionParse:
    """Return a :class:`Completion` or the :class:`ShapeMismatch` observed.

    Empty or non-string content counts as a mismatch. ``model`` and
    ``usage.total_tokens`` are read on both branches when present.
    """

    if not isinstance(payload, dict):
        return ShapeMismatch(has_choices=False, choices_length=None, has_message=False)

    keys = sorted(str(key) for key in payload)
    model = _read_model(payload)
    total_tokens = _read_total_tokens(payload)

    def mismatch(has_choices: bool, choices_length: Optional[int], has_message: bool) -> ShapeMismatch:
        return ShapeMismatch(
            has_choices=has_choices,
            choices_length=choices_length,
            has_message=has_message,
            keys=keys,
            model=model,
            total_tokens=total_tokens,
        )

    choices = payload.get("choices")
    if not isinstance(choices, list):
        return mismatch(choices is not None, None, False)
    if not choices:
        return mismatch(True, 0, False)

    first = choices[0]
    message = first.get("message") if isinstance(first, dict) else None
    if not isinstance(message, dict):
        return mismatch(True, len(choices), False)

    content = message.get("content")
    if not isinstance(content, str) or not content:
        return mismatch(True, len(choices), True)

    return Completion(content=content, model=model, total_tokens=total_tokens)
