"""
Intent classifier.

Asks the fast model which specialist keyword(s) apply to a turn. One turn
may name several keywords ("spent $50 on groceries and remind me to pay
rent" -> finance, todo); the dispatcher runs them all and the aggregator
fuses the results.
"""
import logging
import re
from typing import Iterable

from assistant_bot.core.config import KEYWORD_VOCABULARY
from assistant_bot.core.errors import ClassificationError, CompletionError
from assistant_bot.integrations.completion import Completer, CompletionMode

logger = logging.getLogger(__name__)

# Artifacts some models emit between list items
SENTINEL_TOKENS = frozenset({"<|separator|>", "<|endoftext|>", "none", "n/a"})
_SPLIT = re.compile(r"[,\n;]+")
_STRIP_CHARS = " \t\r'\"`.*[]()-"

DISPATCH_PROMPT = """You are a Task Planner (Dispatcher). Decide which specialists to activate for the user's *latest* message.

AVAILABLE KEYWORDS: {keywords}.

### EXCLUSION RULE ###
- If you identify a clear technical intent (finance, todo, gym, ...), do NOT include 'general'.
- 'general' is only for small talk or topics with no specific tool.

### DECISION RULES ###
1. FINANCE (finance): expenses, payments, salary, balance, fixed monthly bills, investments, income or
   spending-limit settings ("I spent X", "my balance is Y", "I invested 1k in CDB").
2. FINANCE + GOALS (finance, goals): financial wins ("I managed to save", "I got a bonus"). Use BOTH.
3. TO-DO LIST (todo): "remind me to", "I need to", "note that", task lists, deadlines on tasks
   ("add X to the list for 10pm"), finished tasks ("I did X", "done"), and a "yes" to a reminder offer.
4. VAULT (vault): passwords, keys, logins, bank details, documents to keep safe.
5. GYM (gym): workouts, exercises, training plans, weight/height/age.
6. GOALS (goals): long-term goals on their own ("I want to save 100k", "read 12 books this year").
7. MARKET (market): physical shopping list (milk, bread, shampoo).
8. STUDY (study): subjects, study content, study plans and progress on them.
9. IDEAS (ideas): capturing ideas, insights and loose notes.
10. CONTINUED CONVERSATION: use the history below to understand short replies.

### CONVERSATION HISTORY ###
{history}

Return ONLY the keywords, separated by commas."""


def parse_keywords(output: str, vocabulary: Iterable[str] = KEYWORD_VOCABULARY) -> list[str]:
    """
    Turn the model's comma-separated answer into a clean keyword list.

    Order follows the model's output; duplicates, empty tokens, sentinel
    artifacts and words outside the vocabulary are dropped.
    """
    allowed = set(vocabulary)
    keywords: list[str] = []
    for raw in _SPLIT.split(output or ""):
        token = raw.strip(_STRIP_CHARS).lower()
        if not token or token in SENTINEL_TOKENS:
            continue
        if token not in allowed:
            logger.debug(f"Dropping unknown keyword from classifier: {token!r}")
            continue
        if token not in keywords:
            keywords.append(token)
    return keywords


class IntentClassifier:
    """Maps a turn plus recent history to specialist keywords."""

    def __init__(self, completer: Completer, vocabulary: Iterable[str] = KEYWORD_VOCABULARY):
        self.completer = completer
        self.vocabulary = tuple(vocabulary)

    async def classify(self, text: str, history_text: str = "") -> list[str]:
        """
        Classify one turn.

        Args:
            text: Merged turn text
            history_text: Bounded trailing window of the conversation

        Returns:
            Keywords in emission order (may be empty)

        Raises:
            ClassificationError: If the completion call fails.
        """
        system_prompt = DISPATCH_PROMPT.format(
            keywords=", ".join(f"'{k}'" for k in self.vocabulary),
            history=history_text or "(no previous messages)",
        )
        try:
            output = await self.completer.complete(system_prompt, text, CompletionMode.FAST)
        except CompletionError as e:
            raise ClassificationError(f"Could not classify turn: {e}") from e

        if not isinstance(output, str):
            raise ClassificationError(f"Unexpected classifier output type: {type(output).__name__}")

        keywords = parse_keywords(output, self.vocabulary)
        logger.info(f"Classifier identified: {', '.join(keywords) or '(none)'}")
        return keywords
