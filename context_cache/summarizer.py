"""Keyword-based conversation summarizer."""

from __future__ import annotations

from typing import List, Sequence, Tuple

from context_cache.interfaces import Summarizer
from context_cache.models import Message, Sender, SubjectInfo

# (label, trigger substrings) in reporting order
TOPIC_VOCABULARY: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("bug analysis", ("bug", "error")),
    ("feature discussion", ("feature", "enhancement")),
    ("testing", ("test", "testing")),
    ("priority", ("priority", "urgent")),
    ("assignment", ("assign", "responsible")),
    ("timeline", ("deadline", "schedule")),
    ("status update", ("status", "progress")),
)

KEY_POINT_MARKERS: Tuple[str, ...] = ("Key point:", "Important:", "Recommendation:", "Summary:")

MAX_TOPICS = 5
MAX_KEY_POINTS = 3


def extract_topics(messages: Sequence[Message], limit: int = MAX_TOPICS) -> List[str]:
    """Return topic labels whose trigger words appear in ``messages``."""
    topics: List[str] = []
    for message in messages:
        content = message.content.lower()
        for label, triggers in TOPIC_VOCABULARY:
            if label not in topics and any(t in content for t in triggers):
                topics.append(label)
    return topics[:limit]


def extract_key_points(messages: Sequence[Message], limit: int = MAX_KEY_POINTS) -> List[str]:
    """Return marker lines (``Key point:`` etc.) from assistant messages."""
    points: List[str] = []
    for message in messages:
        if message.sender is not Sender.ASSISTANT:
            continue
        for line in message.content.split("\n"):
            stripped = line.strip()
            if stripped.startswith(KEY_POINT_MARKERS):
                points.append(stripped)
    return points[:limit]


class KeywordSummarizer(Summarizer):
    """Summarize with a fixed topic vocabulary and marker lines."""

    def summarize(self, messages: List[Message], subject: SubjectInfo) -> str:
        user_count = sum(1 for m in messages if m.sender is Sender.USER)
        assistant_count = len(messages) - user_count
        topics = extract_topics(messages)
        key_points = extract_key_points(messages)

        lines = [
            f'Previous conversation summary for "{subject.title}":',
            f"- {user_count} user questions/requests, {assistant_count} AI replies",
            f"- Key topics discussed: {', '.join(topics) if topics else 'none'}",
            f"- Main AI insights: {'; '.join(key_points) if key_points else 'none'}",
            f"- Total messages: {len(messages)}",
        ]
        return "\n".join(lines)
