"""Cheap token estimation used for budgeting before exact counts are known."""

from __future__ import annotations

import math
from typing import Iterable

from context_cache.models import Message

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Return ``ceil(len(text) / 4)``."""
    return math.ceil(len(text or "") / CHARS_PER_TOKEN)


def message_tokens(message: Message) -> int:
    count = message.token_count
    if isinstance(count, int) and not isinstance(count, bool) and count > 0:
        return count
    return estimate_tokens(message.content)


def total_tokens(messages: Iterable[Message]) -> int:
    """Return the summed token cost of ``messages``."""
    return sum(message_tokens(m) for m in messages)
