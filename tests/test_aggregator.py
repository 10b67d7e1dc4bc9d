"""Tests for merging specialist outcomes into one reply."""
import asyncio

import pytest

from assistant_bot.core.errors import CompletionError, RenderingError
from assistant_bot.core.models import (
    Declined,
    Handled,
    HandledStructured,
    UserConfig,
    UserContext,
)
from assistant_bot.integrations.completion import CompletionMode
from assistant_bot.orchestration.aggregator import ResponseAggregator
from assistant_bot.orchestration.persona import PersonaRenderer
from assistant_bot.specialists.general import GeneralSpecialist

from fakes import FakeCompleter, FakeHistory


def persona_responder(system, user, mode):
    if "SUMMARIZER" in system:
        return "FUSED"
    if "structured record" in system:
        return "RENDERED"
    return "CHAT"


def make_aggregator(responder=persona_responder):
    completer = FakeCompleter(responder)
    history = FakeHistory()
    aggregator = ResponseAggregator(PersonaRenderer(completer), GeneralSpecialist(completer, history))
    return aggregator, completer, history


def make_context(language: str = "Portuguese") -> UserContext:
    return UserContext(
        sender_id="5511999990000",
        message="hello there",
        display_name="Ana",
        config=UserConfig(language=language),
    )


class TestSingleResult:

    def test_handled_text_is_returned_verbatim(self):
        aggregator, completer, history = make_aggregator()

        result = asyncio.run(aggregator.aggregate(
            [("finance", Handled(text="Expense of 50.00 recorded.")), ("market", Declined())],
            make_context(),
        ))

        assert result.text == "Expense of 50.00 recorded."
        assert result.used_fallback is False
        assert completer.calls == []
        assert history.appends == []

    def test_structured_payload_is_rendered(self):
        aggregator, completer, _ = make_aggregator()
        payload = {"task": "pay rent", "status": "pending", "action": "added", "detail": ""}

        result = asyncio.run(aggregator.aggregate(
            [("todo", HandledStructured(payload=payload))],
            make_context(),
        ))

        assert result.text == "RENDERED"
        system, _, mode = completer.calls[0]
        assert mode == CompletionMode.QUALITY
        assert "pay rent" in system


class TestFusion:

    def test_multiple_results_are_fused_once(self):
        aggregator, completer, history = make_aggregator()

        result = asyncio.run(aggregator.aggregate(
            [
                ("finance", Handled(text="Expense recorded")),
                ("todo", HandledStructured(payload={"task": "pay rent", "status": "pending", "action": "added"})),
            ],
            make_context(),
        ))

        assert result.text == "FUSED"
        assert result.sources == ["finance", "todo"]
        assert len(completer.calls) == 1
        system = completer.calls[0][0]
        assert "Expense recorded" in system
        assert "pay rent" in system
        # Task actions are not remembered as conversation
        assert history.appends == []

    def test_fusion_enforces_configured_language(self):
        aggregator, completer, _ = make_aggregator()

        asyncio.run(aggregator.aggregate(
            [("finance", Handled(text="Despesa registrada")), ("market", Handled(text="Leite adicionado"))],
            make_context(language="English"),
        ))

        assert 'MANDATORY OUTPUT LANGUAGE: "English"' in completer.calls[0][0]

    def test_fusion_failure_raises_rendering_error(self):
        def failing(system, user, mode):
            raise CompletionError("overloaded")

        aggregator, _, _ = make_aggregator(failing)
        with pytest.raises(RenderingError):
            asyncio.run(aggregator.aggregate(
                [("finance", Handled(text="a")), ("todo", Handled(text="b"))],
                make_context(),
            ))


class TestFallback:

    def test_no_results_uses_general_and_records_history(self):
        aggregator, completer, history = make_aggregator()

        result = asyncio.run(aggregator.aggregate([], make_context()))

        assert result.text == "CHAT"
        assert result.used_fallback is True
        assert history.appends == [("5511999990000", "hello there", "CHAT")]

    def test_all_declined_uses_general(self):
        aggregator, _, history = make_aggregator()

        result = asyncio.run(aggregator.aggregate(
            [("finance", Declined(reason="timeout")), ("todo", Declined())],
            make_context(),
        ))

        assert result.used_fallback is True
        assert len(history.appends) == 1

    def test_general_failure_propagates(self):
        def failing(system, user, mode):
            raise CompletionError("overloaded")

        aggregator, _, history = make_aggregator(failing)
        with pytest.raises(CompletionError):
            asyncio.run(aggregator.aggregate([], make_context()))
        assert history.appends == []
