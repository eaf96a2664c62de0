"""Local denylist filtering of user messages."""
from __future__ import annotations

import re
from typing import Iterable, List, Optional, Pattern


class ContentFilter:
    """Case-insensitive regex denylist applied before any upstream call."""

    def __init__(self, patterns: Iterable[str]) -> None:
        self._patterns: List[Pattern[str]] = [
            re.compile(pattern, re.IGNORECASE) for pattern in patterns
        ]

    @property
    def patterns(self) -> List[str]:
        return [pattern.pattern for pattern in self._patterns]

    def find_match(self, text: str) -> Optional[str]:
        """Return the first pattern matching ``text``, or ``None``."""

        for pattern in self._patterns:
            if pattern.search(text):
                return pattern.pattern
        return None

    def is_blocked(self, text: str) -> bool:
        return self.find_match(text) is not None
