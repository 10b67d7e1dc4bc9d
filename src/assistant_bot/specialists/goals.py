"""
Goals specialist.

Creates long-term goals with a numeric target, logs progress against them,
lists and deletes them. A message may carry several actions at once
("I want to save 10k by December and I already have 2k").
"""
import logging
import re
from datetime import date
from typing import Any, Optional

from assistant_bot.core.models import Declined, SpecialistOutcome, UserContext
from assistant_bot.database.records import Goal, GoalStore
from assistant_bot.integrations.completion import Completer, CompletionMode, parse_json_payload
from assistant_bot.orchestration.persona import PersonaRenderer
from assistant_bot.specialists.base import ExtractionSpecialist
from assistant_bot.specialists.finance import format_money, parse_money

logger = logging.getLogger(__name__)

ASK_DAY = "ASK_DAY"

EXTRACTION_PROMPT = """You are a Goals Specialist. Extract every goal action in the message as JSON.

ACTIONS ("action_type"):
- "create": a new goal with a numeric target ("I want to read 12 books this year").
- "update_progress": progress toward an existing goal ("I read another book", "saved 500 more").
- "delete": remove a goal.
- "list": show goals and progress.

RULES:
1. "target_amount" and "progress_amount" are numbers.
2. "metric_unit": what is counted ("books", "km", "R$").
3. "deadline": YYYY-MM-DD. If the user gave a month but no day, answer "ASK_DAY".
4. A goal created with an initial amount gets one "create" item plus one "update_progress" item.

JSON: {"items": [{"action_type": "...", "goal_name": "...", "category": "...", "target_amount": null,
"metric_unit": "...", "deadline": null, "progress_amount": null, "description": "..."}]}"""

MATCH_PROMPT = """Pick which existing goal the user means. Return ONLY JSON.

EXISTING GOALS:
{names}

The user referred to: "{term}"

JSON: {{"match": "exact goal name from the list, or null"}}"""

MONEY_UNIT = re.compile(r"(R\$|\$|reais|real|brl|usd|dollar)", re.IGNORECASE)


def _deadline(raw: Any) -> Optional[date]:
    if not raw or raw == ASK_DAY:
        return None
    try:
        return date.fromisoformat(str(raw)[:10])
    except ValueError:
        return None


def describe_goal(goal: Goal) -> str:
    text = (
        f"{goal.goal_name}: {format_money(goal.current_progress)}/{format_money(goal.target_amount)} "
        f"{goal.metric_unit} ({goal.progress_percent}%)"
    )
    if goal.deadline:
        text += f", due {goal.deadline.isoformat()}"
    return text


class GoalsSpecialist(ExtractionSpecialist):
    """Long-term goals and progress tracking."""

    keyword = "goals"

    def __init__(self, completer: Completer, persona: PersonaRenderer, goals: GoalStore):
        super().__init__(completer, persona)
        self.goals = goals

    async def run(self, context: UserContext) -> SpecialistOutcome:
        data = await self.extract(EXTRACTION_PROMPT, context)
        if isinstance(data, dict):
            data = data.get("items") or ([data] if data.get("action_type") else [])
        if not isinstance(data, list):
            return Declined(reason="inconclusive extraction")

        items = [i for i in data if isinstance(i, dict) and i.get("action_type")]
        if not items:
            return Declined(reason="no goal actions")

        # An update for a goal created in the same message is its initial amount
        created = {
            (i.get("goal_name") or "").strip().lower()
            for i in items if i["action_type"] == "create"
        }

        facts: list[str] = []
        extras: list[str] = []
        for item in items:
            action = item["action_type"]
            name = (item.get("goal_name") or "").strip()
            logger.info(f"[goals] action={action} goal={name!r} for {context.sender_id}")

            if action == "create" and name:
                await self._create(context, item, name, facts, extras)
            elif action == "update_progress" and name:
                await self._progress(context, item, name, name.lower() in created, facts, extras)
            elif action == "delete" and name:
                removed = await self.goals.delete(context.sender_id, name)
                facts.append(f'Goal "{removed.goal_name}" deleted.' if removed else f'No goal matching "{name}".')
            elif action == "list":
                goals = await self.goals.list_goals(context.sender_id)
                if goals:
                    facts.append("Goals:\n" + "\n".join(f"- {describe_goal(g)}" for g in goals))
                else:
                    facts.append("No goals registered yet.")

        if not facts and not extras:
            return Declined(reason="no actionable goal items")
        return await self.confirm(context, " ".join(facts) or "Goal details needed.", "\n".join(extras))

    async def _create(
        self, context: UserContext, item: dict[str, Any], name: str, facts: list[str], extras: list[str]
    ) -> None:
        target = parse_money(item.get("target_amount"))
        if target is None:
            extras.append(f'Ask the user for the numeric target of the goal "{name}".')
            return
        if item.get("deadline") == ASK_DAY:
            extras.append(f'Ask which day of the month the goal "{name}" should be due; it was not created yet.')
            return
        goal = await self.goals.create(
            context.sender_id,
            Goal(
                goal_name=name,
                category=item.get("category") or "General",
                target_amount=target,
                metric_unit=item.get("metric_unit") or "units",
                deadline=_deadline(item.get("deadline")),
            ),
        )
        facts.append(f"Goal created: {describe_goal(goal)}.")

    async def _progress(
        self,
        context: UserContext,
        item: dict[str, Any],
        name: str,
        initial: bool,
        facts: list[str],
        extras: list[str],
    ) -> None:
        amount = parse_money(item.get("progress_amount"))
        if amount is None:
            return
        description = item.get("description") or ("Initial amount" if initial else None)
        goal = await self.goals.add_progress(context.sender_id, name, amount, description)
        if goal is None:
            match = await self._match(context, name)
            if match:
                goal = await self.goals.add_progress(context.sender_id, match, amount, description)
        if goal is None:
            facts.append(f'No goal matching "{name}" was found.')
            return

        facts.append(f"Progress of {format_money(amount)} logged. {describe_goal(goal)}.")
        if goal.is_completed:
            extras.append(f'Celebrate: the goal "{goal.goal_name}" is reached.')
        if MONEY_UNIT.search(goal.metric_unit) and not initial:
            extras.append("Ask whether this amount should also be recorded in finance.")

    async def _match(self, context: UserContext, term: str) -> Optional[str]:
        """Ask the model to map a loose reference onto an existing goal name."""
        goals = await self.goals.list_goals(context.sender_id)
        if not goals:
            return None
        names = [g.goal_name for g in goals]
        prompt = MATCH_PROMPT.format(names="\n".join(f"- {n}" for n in names), term=term)
        data = parse_json_payload(await self.completer.complete(prompt, context.message, CompletionMode.JSON))
        match = data.get("match") if isinstance(data, dict) else None
        return match if match in names else None
