"""Tests for keyword parsing and the intent classifier."""
import asyncio

import pytest

from assistant_bot.core.errors import ClassificationError, CompletionError
from assistant_bot.integrations.completion import CompletionMode
from assistant_bot.orchestration.classifier import IntentClassifier, parse_keywords

from fakes import FakeCompleter


class TestParseKeywords:

    def test_comma_separated(self):
        assert parse_keywords("finance, todo") == ["finance", "todo"]

    def test_whitespace_and_case(self):
        assert parse_keywords("  Finance ,TODO  ") == ["finance", "todo"]

    def test_duplicates_removed_in_order(self):
        assert parse_keywords("todo, finance, todo") == ["todo", "finance"]

    def test_sentinel_tokens_dropped(self):
        assert parse_keywords("finance, <|separator|>, market") == ["finance", "market"]

    def test_unknown_words_dropped(self):
        assert parse_keywords("finance, weather, banana") == ["finance"]

    def test_newlines_and_quotes(self):
        assert parse_keywords("'finance'\n\"market\"") == ["finance", "market"]

    def test_empty_output(self):
        assert parse_keywords("") == []
        assert parse_keywords(" , ,") == []

    def test_custom_vocabulary(self):
        assert parse_keywords("alpha, finance", vocabulary=("alpha",)) == ["alpha"]


class TestIntentClassifier:

    def test_uses_fast_mode_and_includes_history(self):
        completer = FakeCompleter(lambda system, user, mode: "finance, todo")
        classifier = IntentClassifier(completer)

        keywords = asyncio.run(classifier.classify("spent 50 and remind me to pay rent", "USER: hi"))

        assert keywords == ["finance", "todo"]
        system, user, mode = completer.calls[0]
        assert mode == CompletionMode.FAST
        assert "USER: hi" in system
        assert user == "spent 50 and remind me to pay rent"

    def test_general_only(self):
        completer = FakeCompleter(lambda system, user, mode: "general")
        keywords = asyncio.run(IntentClassifier(completer).classify("hello!"))
        assert keywords == ["general"]

    def test_completion_failure_becomes_classification_error(self):
        def fail(system, user, mode):
            raise CompletionError("timeout")

        classifier = IntentClassifier(FakeCompleter(fail))
        with pytest.raises(ClassificationError):
            asyncio.run(classifier.classify("anything"))

    def test_non_text_output_rejected(self):
        classifier = IntentClassifier(FakeCompleter(lambda system, user, mode: None))
        with pytest.raises(ClassificationError):
            asyncio.run(classifier.classify("anything"))
