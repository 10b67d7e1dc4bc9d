"""Tests for conversation history helpers and the general specialist's memory."""
import asyncio

import pytest

from assistant_bot.core.errors import CompletionError
from assistant_bot.core.models import ChatTurn, Handled, UserContext
from assistant_bot.database import history as history_module
from assistant_bot.database.history import format_history, tail_within_tokens, trim_history
from assistant_bot.specialists.general import GeneralSpecialist

from fakes import FailingHistory, FakeCompleter, FakeHistory


def turns(n: int) -> list[ChatTurn]:
    return [
        ChatTurn(role="user" if i % 2 == 0 else "assistant", content=f"message {i}")
        for i in range(n)
    ]


@pytest.fixture
def word_tokens(monkeypatch):
    """Count one token per whitespace-separated word."""
    monkeypatch.setattr(history_module, "count_tokens", lambda text: len(text.split()))


class TestHelpers:

    def test_format_history(self):
        assert format_history(turns(2)) == "USER: message 0\nASSISTANT: message 1"
        assert format_history([]) == ""

    def test_trim_keeps_trailing_window(self):
        trimmed = trim_history(turns(14), max_messages=10)
        assert len(trimmed) == 10
        assert trimmed[0].content == "message 4"
        assert trimmed[-1].content == "message 13"

    def test_trim_short_history_unchanged(self):
        assert trim_history(turns(3)) == turns(3)

    def test_tail_within_tokens_keeps_newest(self, word_tokens):
        # Each formatted turn is three words
        kept = tail_within_tokens(turns(5), max_tokens=7)
        assert [t.content for t in kept] == ["message 3", "message 4"]

    def test_tail_within_tokens_empty_budget(self, word_tokens):
        assert tail_within_tokens(turns(3), max_tokens=0) == []


class TestGeneralMemory:

    def test_history_is_bounded_to_ten_entries(self):
        completer = FakeCompleter(lambda system, user, mode: f"reply to {user}")
        store = FakeHistory(max_messages=10)
        general = GeneralSpecialist(completer, store)

        async def chat():
            for i in range(7):
                context = UserContext(sender_id="1", message=f"hi {i}", display_name="Ana")
                await general.run(context)

        asyncio.run(chat())

        stored = store.turns["1"]
        assert len(stored) == 10
        assert stored[0] == ChatTurn(role="user", content="hi 2")
        assert stored[-1] == ChatTurn(role="assistant", content="reply to hi 6")

    def test_prompt_includes_previous_exchanges(self):
        completer = FakeCompleter(lambda system, user, mode: "sure")
        store = FakeHistory()
        asyncio.run(store.append_turn("1", "can you remind me?", "Want a reminder at 8?"))
        general = GeneralSpecialist(completer, store)

        asyncio.run(general.run(UserContext(sender_id="1", message="yes", display_name="Ana")))

        assert "ASSISTANT: Want a reminder at 8?" in completer.calls[0][0]

    def test_empty_reply_raises_and_records_nothing(self):
        completer = FakeCompleter(lambda system, user, mode: "  ")
        store = FakeHistory()
        general = GeneralSpecialist(completer, store)

        with pytest.raises(CompletionError):
            asyncio.run(general.run(UserContext(sender_id="1", message="hi", display_name="Ana")))
        assert store.appends == []

    def test_history_write_failure_still_returns_reply(self):
        completer = FakeCompleter(lambda system, user, mode: "Good morning, Ana!")
        general = GeneralSpecialist(completer, FailingHistory())

        outcome = asyncio.run(general.run(UserContext(sender_id="1", message="bom dia", display_name="Ana")))

        assert outcome == Handled(text="Good morning, Ana!")
