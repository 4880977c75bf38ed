import pytest

from context_cache.models import HistoryRecord, Message, Sender, SubjectInfo
from context_cache.optimizer import (
    ContextOptimizer,
    OptimizationOptions,
    optimize_context,
    prepare_optimized_context,
)
from context_cache.tokens import total_tokens
from tests.mocks import make_message, make_messages

SUBJECT = SubjectInfo(title="Fix bug", status="Open")


def record_of(messages, **kwargs):
    return HistoryRecord(
        key="ABC-1",
        messages=messages,
        last_updated=0,
        subject_info=kwargs.pop("subject_info", SUBJECT),
        **kwargs,
    )


def fifty_token_messages(n=20):
    # 200 characters -> 50 estimated tokens each; user on even indices
    return [make_message(i, content=f"{i:03d}" + "x" * 197) for i in range(n)]


def test_noop_below_limits():
    record = record_of(make_messages(4))
    assert optimize_context(record) is record


def test_empty_history_is_unchanged():
    record = record_of([])
    assert optimize_context(record) is record


def test_keeps_last_messages_when_only_count_exceeded():
    messages = fifty_token_messages()
    result = optimize_context(record_of(messages), OptimizationOptions(max_messages=10, max_tokens=100000))
    assert result.messages == messages[10:]
    assert result.last_summary_index == 9
    assert result.context_summary is None


def test_token_limit_hit_on_assistant_turn_trims_without_summary():
    messages = fifty_token_messages()
    result = optimize_context(record_of(messages), OptimizationOptions(max_tokens=300))
    assert result.messages == messages[14:]
    assert result.last_summary_index == 13
    assert result.context_summary is None
    assert total_tokens(result.messages) == 300


def test_summarizes_when_user_turn_breaks_budget():
    # user on odd indices so the message breaching the budget is a user turn
    messages = [
        make_message(i, content=f"{i:03d} bug report " + "x" * 184, sender=Sender.USER if i % 2 else Sender.ASSISTANT)
        for i in range(20)
    ]
    result = optimize_context(record_of(messages), OptimizationOptions(max_tokens=300))

    assert len(result.messages) < 10
    assert result.messages[-1] == messages[-1]
    assert result.messages == messages[-len(result.messages):]
    assert result.messages[0].sender is Sender.USER
    assert total_tokens(result.messages) > 300
    assert result.context_summary
    assert "bug analysis" in result.context_summary
    cutoff = len(messages) - len(result.messages)
    assert result.last_summary_index == cutoff - 1
    assert result.total_tokens_used == total_tokens(messages[:cutoff])


def test_oversized_last_user_message_is_kept():
    messages = make_messages(4) + [make_message(4, sender=Sender.USER, content="q" * 4000)]
    result = optimize_context(record_of(messages), OptimizationOptions(max_tokens=300))
    assert result.messages[-1] == messages[-1]
    assert len(result.messages) == 1


def test_assistant_message_is_not_preserved_over_budget():
    messages = [make_message(i, token_count=100, sender=Sender.ASSISTANT) for i in range(5)]
    result = optimize_context(record_of(messages), OptimizationOptions(max_tokens=250))
    assert result.messages == messages[-2:]
    assert result.last_summary_index == 2


def test_preserve_user_messages_can_be_disabled():
    messages = [make_message(i, token_count=100, sender=Sender.USER) for i in range(5)]
    opts = OptimizationOptions(max_tokens=250, preserve_user_messages=False)
    result = optimize_context(record_of(messages), opts)
    assert result.messages == messages[-2:]


@pytest.mark.parametrize("max_messages,max_tokens", [(10, 100000), (10, 300), (3, 120), (8, 6000)])
def test_optimize_is_idempotent_and_bounded(max_messages, max_tokens):
    messages = [
        make_message(i, token_count=50 + (i % 3) * 20) for i in range(25)
    ]
    opts = OptimizationOptions(max_messages=max_messages, max_tokens=max_tokens)
    once = optimize_context(record_of(messages), opts)
    twice = optimize_context(once, opts)
    assert twice == once
    assert len(once.messages) <= max_messages
    if total_tokens(once.messages) > max_tokens:
        # only the oldest kept message may overrun, and it is a user turn
        assert once.messages[0].sender is Sender.USER
        assert total_tokens(once.messages[1:]) <= max_tokens


def test_summary_vocabulary_and_key_points():
    messages = [
        make_message(0, sender="user", content="There is an ERROR on save, is it urgent?"),
        make_message(1, sender="assistant", content="Key point: reproduce first\nnoise\n  Important: check logs"),
        make_message(2, sender="user", content="Who is responsible? What is the deadline?"),
        make_message(3, sender="assistant", content="Recommendation: assign to QA\nSummary: done"),
        make_message(4, sender="user", content="Add a test for the new feature"),
        make_message(5, sender="user", content="Key point: users do not count"),
    ]
    optimizer = ContextOptimizer()
    summary = optimizer.summarizer.summarize(messages, SUBJECT)
    assert '"Fix bug"' in summary
    assert "4 user questions/requests, 2 AI replies" in summary
    assert "bug analysis, priority, assignment, timeline, feature discussion" in summary
    assert "Key point: reproduce first; Important: check logs; Recommendation: assign to QA" in summary
    assert "users do not count" not in summary
    assert "Total messages: 6" in summary


def test_custom_summarizer_is_used():
    class Fixed:
        def summarize(self, messages, subject):
            return f"{len(messages)} older messages"

    messages = [make_message(i, token_count=100, sender=Sender.USER) for i in range(5)]
    result = ContextOptimizer(Fixed()).optimize_context(
        record_of(messages), OptimizationOptions(max_tokens=150)
    )
    assert result.context_summary == "3 older messages"


def test_summary_respects_token_budget():
    class Verbose:
        def summarize(self, messages, subject):
            return "y" * 10000

    messages = [make_message(i, token_count=100, sender=Sender.USER) for i in range(5)]
    result = ContextOptimizer(Verbose()).optimize_context(
        record_of(messages), OptimizationOptions(max_tokens=150, summary_tokens=10)
    )
    assert len(result.context_summary) == 40


def test_prepare_optimized_context_layout():
    messages = [
        Message(id="1", content="what is wrong?", sender="user", timestamp=0),
        Message(id="2", content="the save handler", sender="ai", timestamp=1),
    ]
    prepared = prepare_optimized_context(record_of(messages), "add detail", "Steps to reproduce")
    ctx = prepared.context

    assert ctx.endswith("User: add detail\nAI:")
    assert ctx.index("Ticket: Fix bug") < ctx.index("Status: Open") < ctx.index("Steps to reproduce")
    assert ctx.index("Steps to reproduce") < ctx.index("User: what is wrong?") < ctx.index("AI: the save handler")
    assert "Assignee" not in ctx
    assert prepared.recent_messages == messages
    assert prepared.estimated_tokens == -(-len(ctx) // 4)


def test_prepare_includes_summary_and_assignee():
    subject = SubjectInfo(title="Fix bug", status="Open", assignee="alice")
    messages = [make_message(i, token_count=1000, sender=Sender.USER) for i in range(12)]
    prepared = prepare_optimized_context(record_of(messages, subject_info=subject), "next?", "body")
    ctx = prepared.context
    assert "Assignee: alice" in ctx
    assert "Previous conversation summary" in ctx
    assert ctx.index("Previous conversation summary") < ctx.index("Recent conversation:")
    assert len(prepared.recent_messages) <= 8
