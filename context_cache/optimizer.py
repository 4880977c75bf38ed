from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

import structlog

from context_cache.interfaces import Summarizer
from context_cache.models import HistoryRecord, Message, Sender
from context_cache.summarizer import KeywordSummarizer
from context_cache.tokens import CHARS_PER_TOKEN, estimate_tokens, message_tokens, total_tokens

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class OptimizationOptions:
    max_messages: int = 10
    max_tokens: int = 8000
    summary_tokens: int = 500
    preserve_user_messages: bool = True


# Leaves room for the subject body and the model's reply.
PROMPT_OPTIONS = OptimizationOptions(max_messages=8, max_tokens=6000)


@dataclass
class PreparedContext:
    context: str
    recent_messages: List[Message]
    estimated_tokens: int


class ContextOptimizer:
    """Compact a chat history into a bounded prompt context.

    Works on in-memory records only and never raises for well-formed input.
    """

    def __init__(self, summarizer: Optional[Summarizer] = None) -> None:
        self.summarizer = summarizer or KeywordSummarizer()

    def optimize_context(
        self,
        record: HistoryRecord,
        options: Optional[OptimizationOptions] = None,
    ) -> HistoryRecord:
        """Return ``record`` trimmed to the budget in ``options``.

        Records already within both limits are returned unchanged, which also
        makes the operation idempotent.
        """
        opts = options or OptimizationOptions()
        messages = list(record.messages)

        total = total_tokens(messages)
        if total <= opts.max_tokens and len(messages) <= opts.max_messages:
            return record

        logger.debug("optimizing_context", messages=len(messages), tokens=total)

        recent = self.keep_recent_messages(messages, opts)
        if total_tokens(recent) <= opts.max_tokens:
            return record.model_copy(
                update={
                    "messages": recent,
                    "last_summary_index": len(messages) - len(recent) - 1,
                }
            )
        return self._summarize_and_optimize(record, recent, opts)

    def keep_recent_messages(
        self,
        messages: List[Message],
        options: OptimizationOptions,
    ) -> List[Message]:
        """Walk from newest to oldest until a limit is hit.

        A user message that would break the token limit is still kept as the
        oldest element, so the latest user turn is never dropped.
        """
        result: List[Message] = []
        token_count = 0
        for message in reversed(messages):
            if len(result) >= options.max_messages:
                break
            tokens = message_tokens(message)
            if token_count + tokens > options.max_tokens:
                if options.preserve_user_messages and message.sender is Sender.USER:
                    result.append(message)
                break
            result.append(message)
            token_count += tokens
        result.reverse()
        return result

    def _summarize_and_optimize(
        self,
        record: HistoryRecord,
        recent: List[Message],
        options: OptimizationOptions,
    ) -> HistoryRecord:
        cutoff = len(record.messages) - len(recent)
        if cutoff <= 0:
            return record

        older = list(record.messages[:cutoff])
        summary = self._truncate(
            self.summarizer.summarize(older, record.subject_info), options.summary_tokens
        )
        return record.model_copy(
            update={
                "messages": recent,
                "context_summary": summary,
                "last_summary_index": cutoff - 1,
                "total_tokens_used": (record.total_tokens_used or 0) + total_tokens(older),
            }
        )

    @staticmethod
    def _truncate(summary: str, max_tokens: int) -> str:
        if estimate_tokens(summary) <= max_tokens:
            return summary
        return summary[: max_tokens * CHARS_PER_TOKEN]

    def prepare_optimized_context(
        self,
        record: HistoryRecord,
        new_user_message: str,
        subject_body: str,
    ) -> PreparedContext:
        """Assemble the prompt string for the next model call."""
        optimized = self.optimize_context(record, PROMPT_OPTIONS)
        subject = optimized.subject_info

        context = f"Ticket: {subject.title}\n"
        context += f"Status: {subject.status}\n"
        if subject.assignee:
            context += f"Assignee: {subject.assignee}\n"
        context += f"\nTicket Content:\n{subject_body}\n\n"

        if optimized.context_summary:
            context += f"{optimized.context_summary}\n\n"

        if optimized.messages:
            context += "Recent conversation:\n"
            for msg in optimized.messages:
                speaker = "User" if msg.sender is Sender.USER else "AI"
                context += f"{speaker}: {msg.content}\n"
            context += "\n"

        context += f"User: {new_user_message}\n"
        context += "AI:"

        return PreparedContext(
            context=context,
            recent_messages=list(optimized.messages),
            estimated_tokens=estimate_tokens(context),
        )


_default_optimizer = ContextOptimizer()


def optimize_context(
    record: HistoryRecord, options: Optional[OptimizationOptions] = None
) -> HistoryRecord:
    return _default_optimizer.optimize_context(record, options)


def prepare_optimized_context(
    record: HistoryRecord, new_user_message: str, subject_body: str
) -> PreparedContext:
    return _default_optimizer.prepare_optimized_context(record, new_user_message, subject_body)
