"""
Study specialist.

Walks the user through a study plan, one open plan at a time:

- no open plan: register subjects, then define what to study, which opens
  a draft plan;
- draft: generate a step-by-step plan (activates it) or ask for tips;
- active: confirm progress step by step until the plan completes, or
  finish it early.

The extraction prompt depends on the state, so the model only sees the
actions that make sense at that point.
"""
import logging
from typing import Any, Optional

from assistant_bot.core.models import Declined, SpecialistOutcome, UserContext
from assistant_bot.database.history import HistoryStore, format_history
from assistant_bot.database.records import StudyPlan, StudyStep, StudyStore
from assistant_bot.integrations.completion import Completer
from assistant_bot.orchestration.persona import PersonaRenderer
from assistant_bot.specialists.base import ExtractionSpecialist

logger = logging.getLogger(__name__)

MIN_STEPS = 5
MAX_STEPS = 10

NO_PLAN_PROMPT = """You are a study coach. The user has no study plan open. Return ONLY JSON.

ACTIONS:
- "add_subject": register subjects to study ("I want to study math and physics").
- "list_subjects": show registered subjects.
- "select_subject": the user picks a subject but has not said what to study in it.
- "content_definition": the user says what specifically to study in a subject ("derivatives in calculus").
- "none": nothing study-related.

RECENT HISTORY:
{history}

JSON: {{"action": "...", "subjects": ["..."], "subject": "...", "category": null, "content": "..."}}"""

DRAFT_PROMPT = """You are a study coach. The user has a draft plan: {subject} / {content}. Return ONLY JSON.

ACTIONS:
- "request_plan": the user wants the step-by-step plan.
- "request_tip": the user wants study tips.
- "none": anything else.

JSON: {{"action": "..."}}"""

ACTIVE_PROMPT = """You are a study coach. Active plan: {subject} / {content}.
Current step {current}/{total}: {task}. Return ONLY JSON.

ACTIONS:
- "confirm_progress": the user finished the current step.
- "complete_plan": the user says the whole plan is done.
- "cancel_plan": the user wants to stop this plan.
- "none": anything else.

JSON: {{"action": "..."}}"""

STEPS_PROMPT = """Build a study plan for "{content}" ({subject}) with {min_steps} to {max_steps} sequential steps.
Return ONLY JSON.

JSON: {{"steps": [{{"order": 1, "task": "...", "duration": "e.g. 2 days"}}]}}"""


def parse_steps(data: Any) -> list[StudyStep]:
    raw = data.get("steps") if isinstance(data, dict) else data
    steps = []
    for entry in raw or []:
        if isinstance(entry, dict) and (entry.get("task") or "").strip():
            steps.append(StudyStep(
                order=len(steps) + 1,
                task=entry["task"].strip(),
                duration=entry.get("duration") or None,
            ))
    return steps[:MAX_STEPS]


def describe_step(plan: StudyPlan) -> str:
    step = plan.current
    if step is None:
        return "no current step"
    text = f"step {step.order}/{len(plan.steps)}: {step.task}"
    if step.duration:
        text += f" ({step.duration})"
    return text


class StudySpecialist(ExtractionSpecialist):
    """Study subjects and step-by-step plans."""

    keyword = "study"

    def __init__(
        self,
        completer: Completer,
        persona: PersonaRenderer,
        study: StudyStore,
        history: Optional[HistoryStore] = None,
    ):
        super().__init__(completer, persona)
        self.study = study
        self.history = history

    async def run(self, context: UserContext) -> SpecialistOutcome:
        plan = await self.study.open_plan(context.sender_id)
        if plan is None:
            return await self._no_plan(context)
        if plan.status == "draft":
            return await self._draft(context, plan)
        return await self._active(context, plan)

    async def _no_plan(self, context: UserContext) -> SpecialistOutcome:
        history_text = ""
        if self.history is not None:
            history_text = format_history(await self.history.load_recent(context.sender_id, 2))
        data = await self.extract(NO_PLAN_PROMPT.format(history=history_text or "(none)"), context)
        if not isinstance(data, dict):
            return Declined(reason="inconclusive extraction")

        action = data.get("action") or "none"
        sender_id = context.sender_id
        logger.info(f"[study] state=none action={action} for {sender_id}")

        if action == "add_subject":
            names = [n.strip() for n in (data.get("subjects") or []) if isinstance(n, str) and n.strip()]
            if not names and (data.get("subject") or "").strip():
                names = [data["subject"].strip()]
            if not names:
                return Declined(reason="no subjects")
            for name in names:
                await self.study.add_subject(sender_id, name, data.get("category") or None)
            return await self.confirm(
                context,
                f"Subjects registered: {', '.join(names)}.",
                "Ask which subject and what specific content they want to start with.",
            )

        if action == "list_subjects":
            subjects = await self.study.list_subjects(sender_id)
            if not subjects:
                return await self.confirm(context, "No subjects registered yet.")
            return await self.confirm(context, "Subjects:\n" + "\n".join(f"- {s.name}" for s in subjects))

        subject_name = (data.get("subject") or "").strip()
        if action == "select_subject" and subject_name:
            subject = await self.study.find_subject(sender_id, subject_name)
            if subject is None:
                subject = await self.study.add_subject(sender_id, subject_name)
            return await self.confirm(
                context,
                f"Subject selected: {subject.name}.",
                f"Ask what specific content of {subject.name} they want to study.",
            )

        content = (data.get("content") or "").strip()
        if action == "content_definition" and subject_name and content:
            subject = await self.study.find_subject(sender_id, subject_name)
            if subject is None:
                subject = await self.study.add_subject(sender_id, subject_name)
            plan = await self.study.create_draft(sender_id, subject.id, content)
            return await self.confirm(
                context,
                f"Study goal defined: {plan.subject_name} / {plan.content}.",
                "Offer to build a step-by-step plan or to give study tips.",
            )

        return Declined(reason=f"action {action!r}")

    async def _draft(self, context: UserContext, plan: StudyPlan) -> SpecialistOutcome:
        data = await self.extract(DRAFT_PROMPT.format(subject=plan.subject_name, content=plan.content), context)
        action = data.get("action") if isinstance(data, dict) else None
        logger.info(f"[study] state=draft action={action} for {context.sender_id}")

        if action == "request_plan":
            steps = parse_steps(await self.extract(
                STEPS_PROMPT.format(
                    subject=plan.subject_name, content=plan.content,
                    min_steps=MIN_STEPS, max_steps=MAX_STEPS,
                ),
                context,
            ))
            if not steps:
                return Declined(reason="plan generation inconclusive")
            plan = await self.study.activate(plan.id, steps)
            lines = "\n".join(
                f"{s.order}. {s.task}" + (f" ({s.duration})" if s.duration else "") for s in plan.steps
            )
            return await self.confirm(
                context,
                f"Study plan for {plan.subject_name} / {plan.content}:\n{lines}\nStarting at {describe_step(plan)}.",
            )

        if action == "request_tip":
            return await self.confirm(
                context,
                f"Study tips requested for {plan.subject_name} / {plan.content}.",
                "Give three short, practical tips for studying this content.",
            )

        return Declined(reason=f"action {action!r}")

    async def _active(self, context: UserContext, plan: StudyPlan) -> SpecialistOutcome:
        step = plan.current
        data = await self.extract(
            ACTIVE_PROMPT.format(
                subject=plan.subject_name,
                content=plan.content,
                current=plan.current_step,
                total=len(plan.steps),
                task=step.task if step else "-",
            ),
            context,
        )
        if not isinstance(data, dict):
            return Declined(reason="inconclusive extraction")
        action = data.get("action") or "none"
        logger.info(f"[study] state=active step={plan.current_step} action={action} for {context.sender_id}")

        if action == "confirm_progress":
            if plan.on_last_step:
                plan = await self.study.finish(plan.id)
                return await self.confirm(
                    context, f"Last step done. Study plan {plan.subject_name} / {plan.content} completed!"
                )
            plan = await self.study.advance(plan.id)
            return await self.confirm(context, f"Step done. Next, {describe_step(plan)}.")

        if action in ("complete_plan", "cancel_plan"):
            plan = await self.study.finish(plan.id)
            return await self.confirm(context, f"Study plan {plan.subject_name} / {plan.content} closed.")

        return await self.confirm(
            context,
            f"Study plan in progress: {plan.subject_name} / {plan.content}, {describe_step(plan)}.",
            "Remind the user of the current step.",
        )
