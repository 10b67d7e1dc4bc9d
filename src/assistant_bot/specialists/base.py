"""Base specialist interface."""

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

from assistant_bot.core.models import (
    Declined,
    HandledStructured,
    SpecialistOutcome,
    UserContext,
    outcome_from_text,
)
from assistant_bot.integrations.completion import (
    Completer,
    CompletionMode,
    format_now,
    parse_json_payload,
)
from assistant_bot.orchestration.persona import PersonaRenderer

logger = logging.getLogger(__name__)


class Specialist(ABC):
    """A domain handler that either declines a turn or produces a result."""

    @property
    @abstractmethod
    def keyword(self) -> str:
        """Classifier keyword routed to this specialist."""
        pass

    @abstractmethod
    async def run(self, context: UserContext) -> SpecialistOutcome:
        """Inspect the turn and return Declined, Handled or HandledStructured."""
        pass


class ExtractionSpecialist(Specialist):
    """
    Specialist that extracts a JSON intention, acts on it, then confirms.

    Subclasses build the extraction prompt and act on the parsed data;
    this base class handles the JSON round trip and persona confirmation.
    """

    def __init__(self, completer: Completer, persona: PersonaRenderer):
        self.completer = completer
        self.persona = persona

    async def extract(self, prompt: str, context: UserContext) -> Optional[Any]:
        """Run a JSON extraction with the current time injected; None if inconclusive."""
        final_prompt = f"[CURRENT DATE/TIME: {format_now(context.config.timezone)}]\n{prompt}"
        raw = await self.completer.complete(final_prompt, context.message, CompletionMode.JSON)
        data = parse_json_payload(raw)
        if data is None:
            logger.info(f"[{self.keyword}] extraction inconclusive for {context.sender_id}")
        return data

    async def confirm(self, context: UserContext, fact: str, extra: str = "") -> SpecialistOutcome:
        """Render a technical confirmation in the persona's voice."""
        instruction = f'Confirm the action: "{fact}"'
        if extra:
            instruction += f"\n\n{extra}"
        text = await self.persona.render(
            instruction, context.message, context.config, context.user_nickname
        )
        return outcome_from_text(text)

    @staticmethod
    def structured(payload: dict[str, Any]) -> SpecialistOutcome:
        if not payload:
            return Declined(reason="empty payload")
        return HandledStructured(payload=payload)
