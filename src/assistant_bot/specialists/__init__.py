"""Domain specialists and the keyword registry."""

from typing import Iterable, Optional

from assistant_bot.database.history import HistoryStore
from assistant_bot.database.records import (
    GoalStore,
    GymStore,
    IdeaStore,
    LedgerStore,
    MarketListStore,
    ReminderStore,
    StudyStore,
    TodoStore,
    VaultStore,
)
from assistant_bot.integrations.completion import Completer
from assistant_bot.orchestration.persona import PersonaRenderer
from assistant_bot.specialists.base import ExtractionSpecialist, Specialist
from assistant_bot.specialists.finance import FinanceSpecialist
from assistant_bot.specialists.general import GeneralSpecialist
from assistant_bot.specialists.goals import GoalsSpecialist
from assistant_bot.specialists.gym import GymSpecialist
from assistant_bot.specialists.ideas import IdeasSpecialist
from assistant_bot.specialists.market import MarketSpecialist
from assistant_bot.specialists.study import StudySpecialist
from assistant_bot.specialists.todo import TodoSpecialist
from assistant_bot.specialists.vault import VaultSpecialist


def build_registry(
    completer: Completer,
    persona: PersonaRenderer,
    history: Optional[HistoryStore] = None,
    enabled: Optional[Iterable[str]] = None,
    reminders: Optional[ReminderStore] = None,
) -> dict[str, Specialist]:
    """
    Build the keyword -> specialist routing table.

    Args:
        completer: Completion service shared by all specialists
        persona: Persona renderer for confirmations
        history: History store (read-only for domain specialists)
        enabled: Keywords to include; all known specialists when None
        reminders: Reminder queue shared with the background jobs
    """
    specialists: list[Specialist] = [
        FinanceSpecialist(completer, persona, LedgerStore()),
        TodoSpecialist(completer, persona, TodoStore(), history, reminders or ReminderStore()),
        MarketSpecialist(completer, persona, MarketListStore()),
        GoalsSpecialist(completer, persona, GoalStore()),
        IdeasSpecialist(completer, persona, IdeaStore(), history),
        VaultSpecialist(completer, persona, VaultStore()),
        GymSpecialist(completer, persona, GymStore()),
        StudySpecialist(completer, persona, StudyStore(), history),
    ]
    allowed = set(enabled) if enabled is not None else None
    return {
        s.keyword: s
        for s in specialists
        if allowed is None or s.keyword in allowed
    }


__all__ = [
    "Specialist",
    "ExtractionSpecialist",
    "FinanceSpecialist",
    "GeneralSpecialist",
    "GoalsSpecialist",
    "GymSpecialist",
    "IdeasSpecialist",
    "MarketSpecialist",
    "StudySpecialist",
    "TodoSpecialist",
    "VaultSpecialist",
    "build_registry",
]
