"""Shopping list specialist."""
import logging

from assistant_bot.core.models import Declined, SpecialistOutcome, UserContext
from assistant_bot.database.records import MarketListStore
from assistant_bot.integrations.completion import Completer
from assistant_bot.orchestration.persona import PersonaRenderer
from assistant_bot.specialists.base import ExtractionSpecialist

logger = logging.getLogger(__name__)

EXTRACTION_PROMPT = """You extract shopping-list actions. Return ONLY JSON.

ACTIONS:
- "add": physical items to buy, with quantities (default 1).
- "list": the user wants to see the list.
- "remove": one or more items were bought or should be removed.
- "clear": empty the whole list.
- "none": nothing shopping-related.

JSON: {"action": "...", "items": [{"item_name": "milk", "quantity": 2}]}"""


def _quantity(raw) -> int:
    try:
        return max(1, int(raw))
    except (TypeError, ValueError):
        return 1


class MarketSpecialist(ExtractionSpecialist):
    """Shopping list: add, list, remove, clear."""

    keyword = "market"

    def __init__(self, completer: Completer, persona: PersonaRenderer, items: MarketListStore):
        super().__init__(completer, persona)
        self.items = items

    async def run(self, context: UserContext) -> SpecialistOutcome:
        data = await self.extract(EXTRACTION_PROMPT, context)
        # Some models answer a bare array for additions
        if isinstance(data, list):
            data = {"action": "add", "items": data}
        if not isinstance(data, dict):
            return Declined(reason="inconclusive extraction")

        action = data.get("action") or "none"
        entries = [
            i for i in (data.get("items") or [])
            if isinstance(i, dict) and (i.get("item_name") or "").strip()
        ]
        sender_id = context.sender_id

        if action == "add" and entries:
            added = []
            for entry in entries:
                item = await self.items.add(sender_id, entry["item_name"].strip(), _quantity(entry.get("quantity")))
                added.append(f"{item.quantity}x {item.item_name}")
            return await self.confirm(context, f"Added to the shopping list: {', '.join(added)}.")

        if action == "list":
            current = await self.items.list_items(sender_id)
            if not current:
                return await self.confirm(context, "The shopping list is empty.")
            lines = "\n".join(f"- {i.quantity}x {i.item_name}" for i in current)
            return await self.confirm(context, f"Shopping list:\n{lines}")

        if action == "remove" and entries:
            removed = []
            for entry in entries:
                if await self.items.remove(sender_id, entry["item_name"].strip()):
                    removed.append(entry["item_name"].strip())
            if not removed:
                return await self.confirm(context, "None of those items were on the shopping list.")
            return await self.confirm(context, f"Removed from the shopping list: {', '.join(removed)}.")

        if action == "clear":
            count = await self.items.clear(sender_id)
            return await self.confirm(context, f"Shopping list cleared ({count} item(s) removed).")

        return Declined(reason=f"action {action!r}")
