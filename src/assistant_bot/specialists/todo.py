"""
To-do specialist.

Adds, completes, lists and deletes tasks, and schedules reminders for task
deadlines. Results are returned as structured TaskStatusPayload records; the
aggregator renders them in the persona's voice.

A reminder is scheduled when the user asks for one while adding a task with
a deadline. Otherwise the payload asks the persona to offer one, and a
later "yes" arrives as the schedule_reminder intent.
"""
import logging
import re
from datetime import datetime
from typing import Any, Optional

import pytz

from assistant_bot.core.models import Declined, SpecialistOutcome, TaskStatusPayload, UserContext
from assistant_bot.database.history import HistoryStore, format_history
from assistant_bot.database.records import ReminderStore, TodoItem, TodoStore
from assistant_bot.integrations.completion import Completer, now_in_timezone
from assistant_bot.orchestration.persona import PersonaRenderer
from assistant_bot.specialists.base import ExtractionSpecialist

logger = logging.getLogger(__name__)

EXTRACTION_PROMPT = """Task Manager. Extract the intention as JSON.

INTENTS:
1. "add": add task(s). For relative deadlines ("in 3 minutes", "tomorrow at 10") compute the exact date/time in ISO format.
2. "complete": the user finished something ("I did X").
3. "list": show pending tasks.
4. "delete": remove task(s).
5. "schedule_reminder": the user accepts a reminder offered in the history ("yes", "please remind me").
6. "none": nothing task-related.

Set "reminder_requested" to true when the user asks to be reminded or notified.

RECENT HISTORY:
{history}

JSON: {{
  "intent": "...",
  "reminder_requested": false,
  "items": [{{"task": "...", "deadline": "YYYY-MM-DDTHH:MM:SS or null"}}]
}}"""

REMINDER_WORDS = re.compile(r"\b(lembr\w*|avis\w*|notifi\w*|alert\w*|remind\w*|notify)\b", re.IGNORECASE)

OFFER_REMINDER = "No reminder was requested; offer to set one for the deadline."


def parse_deadline(raw: Optional[str], tz_name: str) -> Optional[datetime]:
    """Parse an ISO deadline; naive values are taken in the user's timezone."""
    if not raw:
        return None
    text = str(raw).strip()
    # fromisoformat only accepts a "Z" suffix from Python 3.11
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        value = datetime.fromisoformat(text)
    except ValueError:
        return None
    if value.tzinfo is None:
        try:
            value = pytz.timezone(tz_name).localize(value)
        except pytz.UnknownTimeZoneError:
            value = pytz.utc.localize(value)
    return value


def _items(data: dict[str, Any]) -> list[dict[str, Any]]:
    items = data.get("items") or []
    if not items and data.get("task"):
        items = [{"task": data["task"], "deadline": data.get("deadline")}]
    return [i for i in items if isinstance(i, dict) and (i.get("task") or "").strip()]


def _describe(item: TodoItem) -> str:
    if item.deadline:
        return f'"{item.task}" (due {item.deadline.strftime("%d/%m %H:%M")})'
    return f'"{item.task}"'


def reminder_requested(data: dict[str, Any], message: str) -> bool:
    return data.get("reminder_requested") is True or bool(REMINDER_WORDS.search(message or ""))


class TodoSpecialist(ExtractionSpecialist):
    """Task list management and deadline reminders."""

    keyword = "todo"

    def __init__(
        self,
        completer: Completer,
        persona: PersonaRenderer,
        todos: TodoStore,
        history: Optional[HistoryStore] = None,
        reminders: Optional[ReminderStore] = None,
    ):
        super().__init__(completer, persona)
        self.todos = todos
        self.history = history
        self.reminders = reminders

    async def run(self, context: UserContext) -> SpecialistOutcome:
        history_text = ""
        if self.history is not None:
            history_text = format_history(await self.history.load_recent(context.sender_id, 2))

        data = await self.extract(
            EXTRACTION_PROMPT.format(history=history_text or "(none)"), context
        )
        if not isinstance(data, dict):
            return Declined(reason="inconclusive extraction")

        intent = data.get("intent") or "none"
        items = _items(data)
        logger.info(f"[todo] intent={intent} items={len(items)} for {context.sender_id}")

        if intent == "add" and items:
            return await self._add(context, items, reminder_requested(data, context.message))

        if intent == "schedule_reminder":
            return await self._schedule_latest(context)

        if intent == "complete" and items:
            completed = []
            for item in items:
                done = await self.todos.complete(context.sender_id, item["task"].strip())
                if done:
                    completed.append(done)
            if not completed:
                return Declined(reason="no matching task to complete")
            return self.structured(TaskStatusPayload(
                task="; ".join(t.task for t in completed),
                status="done",
                action="completed",
            ).model_dump())

        if intent == "list":
            pending = await self.todos.list_pending(context.sender_id)
            detail = "\n".join(f"- {_describe(t)}" for t in pending) or "The list is empty."
            return self.structured(TaskStatusPayload(
                task="",
                status="pending",
                action="listed",
                detail=detail,
            ).model_dump())

        if intent == "delete" and items:
            deleted = []
            for item in items:
                removed = await self.todos.delete(context.sender_id, item["task"].strip())
                if removed:
                    deleted.append(removed)
            if not deleted:
                return self.structured(TaskStatusPayload(
                    task="; ".join(i["task"] for i in items),
                    status="not_found",
                    action="delete",
                    detail="No matching task was found to delete.",
                ).model_dump())
            return self.structured(TaskStatusPayload(
                task="; ".join(t.task for t in deleted),
                status="deleted",
                action="deleted",
            ).model_dump())

        return Declined(reason=f"intent {intent!r}")

    async def _add(self, context: UserContext, items: list[dict[str, Any]], wants_reminder: bool) -> SpecialistOutcome:
        now = now_in_timezone(context.config.timezone)
        added: list[TodoItem] = []
        notes: list[str] = []
        for item in items:
            created = await self.todos.add(
                context.sender_id,
                item["task"].strip(),
                parse_deadline(item.get("deadline"), context.config.timezone),
            )
            added.append(created)
            if created.deadline is None or created.deadline <= now or self.reminders is None:
                continue
            if wants_reminder:
                await self.reminders.schedule(context.sender_id, created.task, created.deadline)
                notes.append(f"Reminder set for {_describe(created)}.")
            elif OFFER_REMINDER not in notes:
                notes.append(OFFER_REMINDER)

        detail = ", ".join(_describe(t) for t in added)
        if notes:
            detail += "\n" + " ".join(notes)
        return self.structured(TaskStatusPayload(
            task="; ".join(t.task for t in added),
            status="pending",
            action="added",
            detail=detail,
        ).model_dump())

    async def _schedule_latest(self, context: UserContext) -> SpecialistOutcome:
        """Schedule a reminder for the most recent pending task with a deadline."""
        if self.reminders is None:
            return Declined(reason="reminders unavailable")
        item = await self.todos.latest_with_deadline(context.sender_id)
        now = now_in_timezone(context.config.timezone)
        if item is None or item.deadline is None or item.deadline <= now:
            return self.structured(TaskStatusPayload(
                task="",
                status="not_found",
                action="reminder",
                detail="There is no pending task with an upcoming deadline to remind about.",
            ).model_dump())
        await self.reminders.schedule(context.sender_id, item.task, item.deadline)
        return self.structured(TaskStatusPayload(
            task=item.task,
            status="scheduled",
            action="reminder",
            detail=f"Reminder set for {_describe(item)}.",
        ).model_dump())
