"""
Response aggregator.

Turns zero or more specialist outcomes into exactly one outbound message:
- nothing handled   -> general fallback specialist (which records history)
- one text result   -> returned unmodified
- one structured    -> rendered by the persona step
- several results   -> fused by the persona step into one message
"""
import json
import logging
from typing import Protocol

from pydantic import BaseModel

from assistant_bot.core.models import (
    Handled,
    HandledStructured,
    SpecialistOutcome,
    UserContext,
)
from assistant_bot.orchestration.persona import PersonaRenderer

logger = logging.getLogger(__name__)


class FallbackSpecialist(Protocol):
    async def run(self, context: UserContext) -> Handled: ...


class AggregateResult(BaseModel):
    text: str
    used_fallback: bool = False
    sources: list[str] = []


def _as_fusion_input(outcome: SpecialistOutcome) -> str:
    if isinstance(outcome, HandledStructured):
        return json.dumps(outcome.payload, ensure_ascii=False, default=str)
    return outcome.text


class ResponseAggregator:
    """Merges specialist outcomes into one reply."""

    def __init__(self, persona: PersonaRenderer, fallback: FallbackSpecialist):
        self.persona = persona
        self.fallback = fallback

    async def aggregate(
        self,
        outcomes: list[tuple[str, SpecialistOutcome]],
        context: UserContext,
    ) -> AggregateResult:
        """
        Produce the final message for a turn.

        Raises:
            RenderingError: If persona rendering or fusion fails.
            CompletionError: If the fallback conversation fails.
        """
        produced = [
            (keyword, outcome)
            for keyword, outcome in outcomes
            if isinstance(outcome, (Handled, HandledStructured))
        ]

        if not produced:
            logger.info(f"No specialist handled the turn for {context.sender_id}, using general conversation")
            result = await self.fallback.run(context)
            return AggregateResult(text=result.text, used_fallback=True, sources=["general"])

        sources = [keyword for keyword, _ in produced]

        if len(produced) == 1:
            outcome = produced[0][1]
            if isinstance(outcome, Handled):
                return AggregateResult(text=outcome.text, sources=sources)
            text = await self.persona.render_payload(
                outcome.payload, context.message, context.config, context.user_nickname
            )
            return AggregateResult(text=text, sources=sources)

        logger.info(f"Fusing {len(produced)} specialist results ({', '.join(sources)})")
        text = await self.persona.fuse(
            [_as_fusion_input(outcome) for _, outcome in produced],
            context.message,
            context.config,
            context.user_nickname,
        )
        return AggregateResult(text=text, sources=sources)
