"""Ideas and notes specialist."""
import logging
from typing import Any, Optional

from assistant_bot.core.models import Declined, SpecialistOutcome, UserContext
from assistant_bot.database.history import HistoryStore, format_history
from assistant_bot.database.records import IdeaStore
from assistant_bot.integrations.completion import Completer
from assistant_bot.orchestration.persona import PersonaRenderer
from assistant_bot.specialists.base import ExtractionSpecialist

logger = logging.getLogger(__name__)

MIN_IDEA_LENGTH = 6

EXTRACTION_PROMPT = """You manage the user's ideas and notes. Return ONLY JSON.

ACTIONS:
- "save": an insight, plan, or thought worth keeping. "content" is the idea itself, cleaned up.
- "list": show saved ideas.
- "clear": delete ALL ideas. Set "confirmed" to true only if the history shows the assistant asked and the user agreed now.
- "none": nothing to save.

RECENT HISTORY:
{history}

JSON: {{"action": "...", "content": "...", "tags": "comma,separated,tags", "confirmed": false}}"""


def parse_tags(raw: Any) -> list[str]:
    if isinstance(raw, list):
        parts = [str(t) for t in raw]
    elif isinstance(raw, str):
        parts = raw.split(",")
    else:
        return []
    return [t.strip().lstrip("#").lower() for t in parts if t.strip().lstrip("#")]


class IdeasSpecialist(ExtractionSpecialist):
    """Save, list and clear ideas."""

    keyword = "ideas"

    def __init__(
        self,
        completer: Completer,
        persona: PersonaRenderer,
        ideas: IdeaStore,
        history: Optional[HistoryStore] = None,
    ):
        super().__init__(completer, persona)
        self.ideas = ideas
        self.history = history

    async def run(self, context: UserContext) -> SpecialistOutcome:
        history_text = ""
        if self.history is not None:
            history_text = format_history(await self.history.load_recent(context.sender_id, 2))

        data = await self.extract(EXTRACTION_PROMPT.format(history=history_text or "(none)"), context)
        if not isinstance(data, dict):
            return Declined(reason="inconclusive extraction")

        action = data.get("action") or "none"
        logger.info(f"[ideas] action={action} for {context.sender_id}")

        if action == "save":
            content = (data.get("content") or "").strip()
            if len(content) < MIN_IDEA_LENGTH:
                return Declined(reason="idea too short")
            idea = await self.ideas.add(context.sender_id, content, parse_tags(data.get("tags")))
            fact = f'Idea saved: "{idea.content}"'
            if idea.tags:
                fact += f" (tags: {', '.join(idea.tags)})"
            return await self.confirm(context, fact + ".")

        if action == "list":
            ideas = await self.ideas.list_ideas(context.sender_id)
            if not ideas:
                return await self.confirm(context, "No ideas saved yet.")
            lines = "\n".join(
                f"- {i.content}" + (f" [{', '.join(i.tags)}]" if i.tags else "") for i in ideas
            )
            return await self.confirm(context, f"Saved ideas:\n{lines}")

        if action == "clear":
            if data.get("confirmed") is not True:
                return await self.confirm(
                    context,
                    "Nothing deleted yet.",
                    "Ask the user to confirm that ALL saved ideas should be deleted.",
                )
            count = await self.ideas.clear(context.sender_id)
            return await self.confirm(context, f"All ideas deleted ({count} removed).")

        return Declined(reason=f"action {action!r}")
