"""
Gym specialist.

Keeps a small health profile (weight, height, age, goal) and a weekly
workout plan, one workout per weekday. A full plan can be generated from
the profile.
"""
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from assistant_bot.core.models import Declined, SpecialistOutcome, UserContext
from assistant_bot.database.records import WEEKDAYS, GymStore, HealthProfile, Workout
from assistant_bot.integrations.completion import Completer
from assistant_bot.orchestration.persona import PersonaRenderer
from assistant_bot.specialists.base import ExtractionSpecialist

logger = logging.getLogger(__name__)

EXTRACTION_PROMPT = """You are a Personal Trainer assistant. Extract the intention as JSON.

ACTIONS:
- "config_health": the user gives weight (kg), height (cm), age, or fitness goal.
- "set_workout": the user defines the workout for a weekday.
- "generate_plan": the user asks you to create a weekly workout plan.
- "list_plan": the user wants to see the weekly plan.
- "none": nothing fitness-related.

Weekdays in English lowercase: monday ... sunday.

JSON: {"action": "...", "weight_kg": null, "height_cm": null, "age": null, "goal": null,
"day_of_week": null, "focus": null, "exercises": []}"""

PLAN_PROMPT = """Create a weekly workout plan for this person. Return ONLY JSON.

PROFILE:
- Weight: {weight} kg
- Height: {height} cm
- Age: {age}
- Goal: {goal}

Include 3 to 6 training days. Each exercise reads like "Squat 4x10".

JSON: {{"workouts": [{{"day_of_week": "monday", "focus": "...", "exercises": ["..."]}}]}}"""

DAY_ALIASES = {
    "segunda": "monday", "segunda-feira": "monday",
    "terca": "tuesday", "terça": "tuesday", "terça-feira": "tuesday", "terca-feira": "tuesday",
    "quarta": "wednesday", "quarta-feira": "wednesday",
    "quinta": "thursday", "quinta-feira": "thursday",
    "sexta": "friday", "sexta-feira": "friday",
    "sabado": "saturday", "sábado": "saturday",
    "domingo": "sunday",
}


def normalize_day(raw: Any) -> Optional[str]:
    if not raw:
        return None
    day = str(raw).strip().lower()
    day = DAY_ALIASES.get(day, day)
    return day if day in WEEKDAYS else None


def _number(raw: Any) -> Optional[Decimal]:
    if raw is None or raw == "":
        return None
    try:
        value = Decimal(str(raw).replace(",", "."))
    except InvalidOperation:
        return None
    return value if value > 0 else None


def _age(raw: Any) -> Optional[int]:
    try:
        age = int(raw)
    except (TypeError, ValueError):
        return None
    return age if 0 < age < 130 else None


def _workout(raw: Any) -> Optional[Workout]:
    if not isinstance(raw, dict):
        return None
    day = normalize_day(raw.get("day_of_week"))
    if day is None:
        return None
    exercises = raw.get("exercises") or []
    if isinstance(exercises, str):
        exercises = [e.strip() for e in exercises.split(",") if e.strip()]
    return Workout(day_of_week=day, focus=raw.get("focus") or "General", exercises=[str(e) for e in exercises])


def describe_plan(plan: list[Workout]) -> str:
    return "\n".join(
        f"- {w.day_of_week.capitalize()} ({w.focus}): {', '.join(w.exercises) or 'rest'}" for w in plan
    )


class GymSpecialist(ExtractionSpecialist):
    """Health profile and weekly workouts."""

    keyword = "gym"

    def __init__(self, completer: Completer, persona: PersonaRenderer, gym: GymStore):
        super().__init__(completer, persona)
        self.gym = gym

    async def run(self, context: UserContext) -> SpecialistOutcome:
        data = await self.extract(EXTRACTION_PROMPT, context)
        if not isinstance(data, dict):
            return Declined(reason="inconclusive extraction")

        action = data.get("action") or "none"
        sender_id = context.sender_id
        logger.info(f"[gym] action={action} for {sender_id}")

        if action == "config_health":
            update = HealthProfile(
                weight_kg=_number(data.get("weight_kg")),
                height_cm=_number(data.get("height_cm")),
                age=_age(data.get("age")),
                goal=(data.get("goal") or None),
            )
            if update == HealthProfile():
                return Declined(reason="no profile fields")
            profile = await self.gym.save_profile(sender_id, update)
            fact = (
                f"Health profile saved: weight {profile.weight_kg or '?'} kg, height {profile.height_cm or '?'} cm, "
                f"age {profile.age or '?'}, goal {profile.goal or '?'}."
            )
            return await self.confirm(context, fact)

        if action == "set_workout":
            workout = _workout(data)
            if workout is None:
                return await self.confirm(context, "Workout not saved.", "Ask which weekday the workout is for.")
            await self.gym.save_workout(sender_id, workout)
            return await self.confirm(context, f"Workout saved:\n{describe_plan([workout])}")

        if action == "generate_plan":
            return await self._generate(context)

        if action == "list_plan":
            plan = await self.gym.weekly_plan(sender_id)
            if not plan:
                return await self.confirm(context, "No workout plan yet.", "Offer to generate one.")
            return await self.confirm(context, f"Weekly workout plan:\n{describe_plan(plan)}")

        return Declined(reason=f"action {action!r}")

    async def _generate(self, context: UserContext) -> SpecialistOutcome:
        profile = await self.gym.get_profile(context.sender_id)
        if profile is None or not profile.ready_for_plan:
            return await self.confirm(
                context,
                "Cannot generate a plan yet.",
                "Ask for the user's weight and fitness goal first.",
            )

        prompt = PLAN_PROMPT.format(
            weight=profile.weight_kg,
            height=profile.height_cm or "unknown",
            age=profile.age or "unknown",
            goal=profile.goal,
        )
        data = await self.extract(prompt, context)
        raw = data.get("workouts") if isinstance(data, dict) else data
        workouts = [w for w in (_workout(r) for r in (raw or [])) if w is not None]
        if not workouts:
            return Declined(reason="plan generation inconclusive")

        for workout in workouts:
            await self.gym.save_workout(context.sender_id, workout)
        return await self.confirm(context, f"New weekly workout plan saved:\n{describe_plan(workouts)}")
