"""
Specialist dispatcher.

Runs the specialists named by the classifier concurrently. A specialist that
raises or exceeds its timeout is logged and counted as Declined; it never
aborts or alters its siblings.
"""
import asyncio
import logging
from typing import TYPE_CHECKING, Iterable, Mapping

from assistant_bot.core.config import GENERAL_KEYWORD
from assistant_bot.core.models import Declined, SpecialistOutcome, UserContext

if TYPE_CHECKING:
    from assistant_bot.specialists.base import Specialist

logger = logging.getLogger(__name__)


class SpecialistDispatcher:
    """
    Concurrent fan-out over the specialist registry.

    Attributes:
        registry: keyword -> specialist routing table
        timeout: Per-specialist deadline in seconds
    """

    def __init__(self, registry: Mapping[str, "Specialist"], timeout: float = 90.0):
        self.registry = dict(registry)
        self.timeout = timeout

    def routable(self, keywords: Iterable[str]) -> list[str]:
        """Keywords that map to a registered domain specialist, deduplicated."""
        selected: list[str] = []
        for keyword in keywords:
            if keyword == GENERAL_KEYWORD or keyword not in self.registry:
                if keyword != GENERAL_KEYWORD:
                    logger.debug(f"No specialist registered for keyword {keyword!r}, ignoring")
                continue
            if keyword not in selected:
                selected.append(keyword)
        return selected

    async def dispatch(
        self,
        keywords: Iterable[str],
        context: UserContext,
    ) -> list[tuple[str, SpecialistOutcome]]:
        """
        Run every routable specialist for the turn.

        Returns:
            (keyword, outcome) pairs in keyword order. Failed or timed-out
            specialists appear as Declined.
        """
        selected = self.routable(keywords)
        if not selected:
            return []

        outcomes = await asyncio.gather(
            *(self._run_one(keyword, context) for keyword in selected)
        )
        return list(zip(selected, outcomes))

    async def _run_one(self, keyword: str, context: UserContext) -> SpecialistOutcome:
        specialist = self.registry[keyword]
        try:
            outcome = await asyncio.wait_for(specialist.run(context), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error(f"Specialist {keyword!r} timed out after {self.timeout}s for {context.sender_id}")
            return Declined(reason="timeout")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Specialist {keyword!r} failed for {context.sender_id}: {e}", exc_info=True)
            return Declined(reason=f"error: {type(e).__name__}")

        if outcome is None:
            return Declined(reason="no outcome")
        logger.debug(f"Specialist {keyword!r} -> {outcome.kind}")
        return outcome
