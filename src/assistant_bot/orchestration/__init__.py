"""Classification, dispatch, aggregation and per-turn orchestration."""

from assistant_bot.orchestration.aggregator import ResponseAggregator
from assistant_bot.orchestration.classifier import IntentClassifier
from assistant_bot.orchestration.dispatcher import SpecialistDispatcher
from assistant_bot.orchestration.orchestrator import Orchestrator
from assistant_bot.orchestration.persona import PersonaRenderer

__all__ = [
    "ResponseAggregator",
    "IntentClassifier",
    "SpecialistDispatcher",
    "Orchestrator",
    "PersonaRenderer",
]
