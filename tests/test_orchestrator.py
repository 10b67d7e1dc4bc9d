"""
End-to-end tests for one turn: classification, dispatch, aggregation and
delivery, with real specialists over in-memory stores.
"""
import asyncio
import json
from decimal import Decimal

from assistant_bot.core.config import AssistantConfig
from assistant_bot.core.errors import CompletionError
from assistant_bot.core.models import ChatTurn, Turn, TurnState, UserConfig
from assistant_bot.integrations.completion import CompletionMode
from assistant_bot.orchestration.aggregator import ResponseAggregator
from assistant_bot.orchestration.classifier import IntentClassifier
from assistant_bot.orchestration.dispatcher import SpecialistDispatcher
from assistant_bot.orchestration.orchestrator import Orchestrator
from assistant_bot.orchestration.persona import PersonaRenderer
from assistant_bot.specialists import FinanceSpecialist, GeneralSpecialist, MarketSpecialist, TodoSpecialist
from assistant_bot.temporal.message_buffer import MessageBuffer

from fakes import (
    FakeCompleter,
    FakeConfigProvider,
    FakeHistory,
    FakeLedger,
    FakeMarket,
    FakeSender,
    FakeTodos,
)

SENDER = "5511999990000"

FINANCE_JSON = json.dumps({
    "intent": "add_transaction",
    "amount": "50",
    "type": "expense",
    "description": "groceries",
    "category": "food",
    "date": None,
})
TODO_JSON = json.dumps({"intent": "add", "items": [{"task": "pay rent", "deadline": None}]})


def scripted(keywords: str = "finance, todo"):
    """Responder covering classifier, extraction and persona prompts."""
    def responder(system, user, mode):
        if mode == CompletionMode.FAST:
            return keywords
        if mode == CompletionMode.JSON:
            if "Finance Specialist" in system:
                return FINANCE_JSON
            if "Task Manager" in system:
                return TODO_JSON
            return '{"action": "none"}'
        if "SUMMARIZER" in system:
            return "Fused reply"
        if "structured record" in system:
            return "Task noted"
        if "GENERALIST" in system:
            return "Hi Ana!"
        return "Expense confirmed"
    return responder


class Pipeline:
    """Orchestrator wired with fakes for every external collaborator."""

    def __init__(self, responder, sender=None, user_config=None, config_fails=False):
        self.completer = FakeCompleter(responder)
        self.history = FakeHistory()
        self.sender = sender or FakeSender()
        self.ledger = FakeLedger()
        self.todos = FakeTodos()
        self.market = FakeMarket()
        persona = PersonaRenderer(self.completer)
        registry = {
            "finance": FinanceSpecialist(self.completer, persona, self.ledger),
            "todo": TodoSpecialist(self.completer, persona, self.todos, self.history),
            "market": MarketSpecialist(self.completer, persona, self.market),
        }
        self.config = AssistantConfig(apology_message="Sorry, try again.")
        self.orchestrator = Orchestrator(
            classifier=IntentClassifier(self.completer),
            dispatcher=SpecialistDispatcher(registry, timeout=1.0),
            aggregator=ResponseAggregator(persona, GeneralSpecialist(self.completer, self.history)),
            sender=self.sender,
            config_provider=FakeConfigProvider(user_config, fail=config_fails),
            history=self.history,
            config=self.config,
        )

    def handle(self, text: str):
        turn = Turn(
            sender_id=SENDER,
            display_name="Ana",
            text=text,
            message_count=1,
            first_timestamp=1,
            last_timestamp=1,
        )
        return asyncio.run(self.orchestrator.handle_turn(turn))


class TestHappyPath:

    def test_finance_and_todo_fused_into_one_message(self):
        pipeline = Pipeline(scripted("finance, todo"))

        report = pipeline.handle("spent 50 on groceries and remind me to pay rent")

        assert report.state == TurnState.DELIVERED
        assert report.keywords == ["finance", "todo"]
        assert report.outcomes == {"finance": "handled", "todo": "structured"}
        assert report.used_fallback is False
        assert [text for _, text, _ in pipeline.sender.sent] == ["Fused reply"]

        assert len(pipeline.ledger.transactions) == 1
        assert str(pipeline.ledger.transactions[0].amount) == "50.00"
        assert [t.task for t in pipeline.todos.items] == ["pay rent"]
        # Multi-specialist turns are not written to conversation history
        assert pipeline.history.appends == []

    def test_small_talk_goes_to_general_and_is_remembered(self):
        pipeline = Pipeline(scripted("general"))

        report = pipeline.handle("hello!")

        assert report.used_fallback is True
        assert report.state == TurnState.DELIVERED
        assert [text for _, text, _ in pipeline.sender.sent] == ["Hi Ana!"]
        assert pipeline.history.appends == [(SENDER, "hello!", "Hi Ana!")]

    def test_single_handled_reply_is_sent_unmodified(self):
        pipeline = Pipeline(scripted("finance"))

        pipeline.handle("spent 50 on groceries")

        assert [text for _, text, _ in pipeline.sender.sent] == ["Expense confirmed"]
        fusion_prompts = [s for s in pipeline.completer.prompts_for(CompletionMode.QUALITY) if "SUMMARIZER" in s]
        assert fusion_prompts == []

    def test_delivery_options_carry_config_and_original_text(self):
        pipeline = Pipeline(scripted("general"), user_config=UserConfig(send_audio=True))

        pipeline.handle("hello!")

        _, _, options = pipeline.sender.sent[0]
        assert options.original_text == "hello!"
        assert options.config.send_audio is True

    def test_classifier_sees_recent_history(self, monkeypatch):
        monkeypatch.setattr(
            "assistant_bot.database.history.count_tokens",
            lambda text: len(text.split()),
        )
        pipeline = Pipeline(scripted("general"))
        pipeline.history.turns[SENDER] = [
            ChatTurn(role="user", content="should I remind you?"),
            ChatTurn(role="assistant", content="Want a reminder at 8?"),
        ]

        pipeline.handle("yes")

        classifier_prompt = pipeline.completer.prompts_for(CompletionMode.FAST)[0]
        assert "ASSISTANT: Want a reminder at 8?" in classifier_prompt


class TestBufferedBurst:

    def test_two_fragments_become_one_fused_reply(self):
        def responder(system, user, mode):
            if mode == CompletionMode.JSON and "Finance Specialist" in system:
                return json.dumps({"intent": "add_transaction", "amount": "50", "type": "expense",
                                   "description": "mercado", "date": None})
            if mode == CompletionMode.JSON and "Task Manager" in system:
                return json.dumps({"intent": "add", "items": [{"task": "pagar a conta de luz", "deadline": None}]})
            return scripted("finance, todo")(system, user, mode)

        pipeline = Pipeline(responder)
        reports = []

        async def scenario():
            async def on_turn(turn: Turn):
                reports.append(await pipeline.orchestrator.handle_turn(turn))

            buffer = MessageBuffer(quiet_period=0.05, flush_callback=on_turn)
            await buffer.enqueue(SENDER, "Ana", "gastei 50 reais no mercado", 1_700_000_000)
            await buffer.enqueue(SENDER, "Ana", "e lembra de pagar a conta de luz", 1_700_000_002)
            await buffer.wait_idle()

        asyncio.run(scenario())

        assert len(reports) == 1
        assert reports[0].keywords == ["finance", "todo"]
        assert reports[0].state == TurnState.DELIVERED
        classifier_input = [u for _, u, m in pipeline.completer.calls if m == CompletionMode.FAST][0]
        assert "gastei 50 reais no mercado. e lembra de pagar a conta de luz" in classifier_input
        assert [(t.amount, t.description) for t in pipeline.ledger.transactions] == [(Decimal("50.00"), "mercado")]
        assert [t.task for t in pipeline.todos.items] == ["pagar a conta de luz"]
        assert [text for _, text, _ in pipeline.sender.sent] == ["Fused reply"]


class TestLanguage:

    def test_rendering_prompt_enforces_configured_language(self):
        pipeline = Pipeline(scripted("todo"), user_config=UserConfig(language="English"))

        pipeline.handle("lembrar de pagar o aluguel")

        render_prompts = [
            s for s in pipeline.completer.prompts_for(CompletionMode.QUALITY) if "structured record" in s
        ]
        assert len(render_prompts) == 1
        assert 'MANDATORY OUTPUT LANGUAGE: "English"' in render_prompts[0]

    def test_config_lookup_failure_uses_defaults(self):
        pipeline = Pipeline(scripted("general"), config_fails=True)

        report = pipeline.handle("hello!")

        assert report.state == TurnState.DELIVERED
        general_prompt = pipeline.completer.prompts_for(CompletionMode.QUALITY)[0]
        assert 'MANDATORY OUTPUT LANGUAGE: "Portuguese"' in general_prompt
        assert "Assessor" in general_prompt


class TestFailures:

    def test_classification_failure_sends_apology(self):
        def responder(system, user, mode):
            if mode == CompletionMode.FAST:
                raise CompletionError("timed out")
            raise AssertionError("nothing else should run")

        pipeline = Pipeline(responder)

        report = pipeline.handle("spent 50")

        assert report.state == TurnState.APOLOGY_SENT
        assert [text for _, text, _ in pipeline.sender.sent] == ["Sorry, try again."]
        assert pipeline.ledger.transactions == []

    def test_general_failure_sends_apology(self):
        base = scripted("general")

        def responder(system, user, mode):
            if mode == CompletionMode.QUALITY:
                raise CompletionError("overloaded")
            return base(system, user, mode)

        pipeline = Pipeline(responder)

        report = pipeline.handle("hello!")

        assert report.state == TurnState.APOLOGY_SENT
        assert [text for _, text, _ in pipeline.sender.sent] == ["Sorry, try again."]
        assert pipeline.history.appends == []

    def test_failed_specialist_does_not_block_sibling(self):
        base = scripted("finance, todo")

        def responder(system, user, mode):
            if mode == CompletionMode.JSON and "Finance Specialist" in system:
                raise CompletionError("extraction failed")
            return base(system, user, mode)

        pipeline = Pipeline(responder)

        report = pipeline.handle("spent 50 and remind me to pay rent")

        assert report.outcomes == {"finance": "declined", "todo": "structured"}
        assert [text for _, text, _ in pipeline.sender.sent] == ["Task noted"]

    def test_delivery_failure_is_reported_not_raised(self):
        pipeline = Pipeline(scripted("finance"), sender=FakeSender(fail=True))

        report = pipeline.handle("spent 50")

        assert report.state == TurnState.UNDELIVERED
        assert report.reply == "Expense confirmed"
        assert "channel down" in report.error
