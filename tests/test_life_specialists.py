"""Tests for the goals, ideas, vault, gym and study specialists."""
import asyncio
import json
from decimal import Decimal

import pytest

from assistant_bot.core.models import Declined, Handled, UserConfig, UserContext
from assistant_bot.database.records import Goal, HealthProfile, StudyStep, VaultStore
from assistant_bot.integrations.completion import CompletionMode
from assistant_bot.orchestration.persona import PersonaRenderer
from assistant_bot.specialists import (
    GoalsSpecialist,
    GymSpecialist,
    IdeasSpecialist,
    StudySpecialist,
    VaultSpecialist,
)
from assistant_bot.specialists.gym import normalize_day
from assistant_bot.specialists.ideas import parse_tags

from fakes import FakeCompleter, FakeGoals, FakeGym, FakeHistory, FakeIdeas, FakeStudy, FakeVault

SENDER = "5511999990000"


def extractions(*payloads, confirmation: str = "Confirmed"):
    """Responder answering successive JSON extractions in order, then a fixed persona reply."""
    queue = list(payloads)

    def responder(system, user, mode):
        if mode == CompletionMode.JSON:
            payload = queue.pop(0)
            return payload if isinstance(payload, str) else json.dumps(payload)
        return confirmation
    return responder


def make_context(message: str = "msg") -> UserContext:
    return UserContext(sender_id=SENDER, message=message, display_name="Ana", config=UserConfig())


def rendered(completer: FakeCompleter) -> str:
    return completer.prompts_for(CompletionMode.QUALITY)[-1]


class TestGoalsSpecialist:

    def test_create_with_initial_amount(self):
        completer = FakeCompleter(extractions({"items": [
            {"action_type": "create", "goal_name": "Viagem", "target_amount": 10000, "metric_unit": "R$",
             "deadline": "2026-12-20"},
            {"action_type": "update_progress", "goal_name": "Viagem", "progress_amount": 2000},
        ]}))
        goals = FakeGoals()
        specialist = GoalsSpecialist(completer, PersonaRenderer(completer), goals)

        outcome = asyncio.run(specialist.run(make_context("quero juntar 10 mil pra viagem, já tenho 2 mil")))

        assert isinstance(outcome, Handled)
        assert goals.goals[0].current_progress == Decimal("2000.00")
        assert goals.progress_log == [("Viagem", Decimal("2000.00"), "Initial amount")]
        assert "(20.00%)" in rendered(completer)
        # The initial amount is not new money, so finance is not offered
        assert "recorded in finance" not in rendered(completer)

    def test_money_progress_offers_finance_entry(self):
        completer = FakeCompleter(extractions({"items": [
            {"action_type": "update_progress", "goal_name": "viagem", "progress_amount": "500"},
        ]}))
        goals = FakeGoals()
        asyncio.run(goals.create(SENDER, Goal(goal_name="Viagem Japão", target_amount=Decimal("10000"), metric_unit="R$")))
        specialist = GoalsSpecialist(completer, PersonaRenderer(completer), goals)

        asyncio.run(specialist.run(make_context("guardei mais 500 pra viagem")))

        assert goals.goals[0].current_progress == Decimal("500.00")
        assert "Ask whether this amount should also be recorded in finance." in rendered(completer)

    def test_reaching_target_is_celebrated(self):
        completer = FakeCompleter(extractions({"items": [
            {"action_type": "update_progress", "goal_name": "books", "progress_amount": 1},
        ]}))
        goals = FakeGoals()
        asyncio.run(goals.create(SENDER, Goal(
            goal_name="books", target_amount=Decimal("12"), current_progress=Decimal("11"), metric_unit="books",
        )))
        specialist = GoalsSpecialist(completer, PersonaRenderer(completer), goals)

        asyncio.run(specialist.run(make_context("finished another book")))

        assert 'the goal "books" is reached' in rendered(completer)

    def test_missing_day_asks_instead_of_creating(self):
        completer = FakeCompleter(extractions({"items": [
            {"action_type": "create", "goal_name": "Marathon", "target_amount": 42, "metric_unit": "km",
             "deadline": "ASK_DAY"},
        ]}))
        goals = FakeGoals()
        specialist = GoalsSpecialist(completer, PersonaRenderer(completer), goals)

        asyncio.run(specialist.run(make_context("run a marathon in october")))

        assert goals.goals == []
        assert "Ask which day of the month" in rendered(completer)

    def test_loose_reference_is_matched_by_model(self):
        completer = FakeCompleter(extractions(
            {"items": [{"action_type": "update_progress", "goal_name": "trip", "progress_amount": 100}]},
            {"match": "Viagem Japão"},
        ))
        goals = FakeGoals()
        asyncio.run(goals.create(SENDER, Goal(goal_name="Viagem Japão", target_amount=Decimal("1000"), metric_unit="R$")))
        specialist = GoalsSpecialist(completer, PersonaRenderer(completer), goals)

        asyncio.run(specialist.run(make_context("100 more for the trip")))

        assert goals.goals[0].current_progress == Decimal("100.00")
        assert "- Viagem Japão" in completer.prompts_for(CompletionMode.JSON)[1]

    def test_list_and_delete(self):
        completer = FakeCompleter(extractions(
            {"items": [{"action_type": "list"}]},
            {"items": [{"action_type": "delete", "goal_name": "books"}]},
        ))
        goals = FakeGoals()
        asyncio.run(goals.create(SENDER, Goal(goal_name="books", target_amount=Decimal("12"), metric_unit="books")))
        specialist = GoalsSpecialist(completer, PersonaRenderer(completer), goals)

        asyncio.run(specialist.run(make_context("my goals")))
        assert "- books: 0.00/12.00 books (0.00%)" in rendered(completer)

        asyncio.run(specialist.run(make_context("delete the books goal")))
        assert goals.goals == []

    def test_declines_without_actions(self):
        completer = FakeCompleter(extractions({"items": []}))
        specialist = GoalsSpecialist(completer, PersonaRenderer(completer), FakeGoals())
        assert isinstance(asyncio.run(specialist.run(make_context())), Declined)


class TestIdeasSpecialist:

    def test_save_with_tags(self):
        completer = FakeCompleter(extractions(
            {"action": "save", "content": "App that splits bills by photo", "tags": "#app, Finance"}
        ))
        ideas = FakeIdeas()
        specialist = IdeasSpecialist(completer, PersonaRenderer(completer), ideas)

        asyncio.run(specialist.run(make_context("ideia: app que divide conta por foto")))

        assert ideas.ideas[0].tags == ["app", "finance"]
        assert "(tags: app, finance)" in rendered(completer)

    def test_short_content_declines(self):
        completer = FakeCompleter(extractions({"action": "save", "content": "hmm"}))
        ideas = FakeIdeas()
        specialist = IdeasSpecialist(completer, PersonaRenderer(completer), ideas)

        assert isinstance(asyncio.run(specialist.run(make_context("hmm"))), Declined)
        assert ideas.ideas == []

    def test_clear_needs_confirmation(self):
        completer = FakeCompleter(extractions(
            {"action": "clear", "confirmed": False},
            {"action": "clear", "confirmed": True},
        ))
        ideas = FakeIdeas()
        asyncio.run(ideas.add(SENDER, "keep me around", []))
        history = FakeHistory()
        specialist = IdeasSpecialist(completer, PersonaRenderer(completer), ideas, history)

        asyncio.run(specialist.run(make_context("apaga todas as ideias")))
        assert len(ideas.ideas) == 1
        assert "Ask the user to confirm" in rendered(completer)

        asyncio.run(specialist.run(make_context("sim, pode apagar")))
        assert ideas.ideas == []
        assert "1 removed" in rendered(completer)

    @pytest.mark.parametrize("raw, expected", [
        ("a, b", ["a", "b"]),
        (["#X", " "], ["x"]),
        (None, []),
    ])
    def test_parse_tags(self, raw, expected):
        assert parse_tags(raw) == expected


class TestVaultSpecialist:

    def test_save_then_update(self):
        payload = {"action": "save", "title": "Netflix", "category": "login",
                   "content": {"user": "ana@mail.com", "senha": "hunter2"}}
        completer = FakeCompleter(extractions(payload, payload))
        vault = FakeVault()
        specialist = VaultSpecialist(completer, PersonaRenderer(completer), vault)

        asyncio.run(specialist.run(make_context("guarda meu login da Netflix")))
        assert 'Record "Netflix" created in the vault.' in rendered(completer)
        assert "stored encrypted" in rendered(completer)

        asyncio.run(specialist.run(make_context("atualiza a senha da Netflix")))
        assert 'Record "Netflix" updated in the vault.' in rendered(completer)
        assert list(vault.entries) == ["netflix"]

    def test_unknown_category_becomes_other(self):
        completer = FakeCompleter(extractions(
            {"action": "save", "title": "Gate code", "category": "house", "content": "4321"}
        ))
        vault = FakeVault()
        specialist = VaultSpecialist(completer, PersonaRenderer(completer), vault)

        asyncio.run(specialist.run(make_context("gate code is 4321")))

        entry = vault.entries["gate code"]
        assert (entry.category, entry.content) == ("other", {"note": "4321"})

    def test_search_shows_fields(self):
        completer = FakeCompleter(extractions({"action": "search", "title": "net"}))
        vault = FakeVault()
        asyncio.run(vault.save(SENDER, "Netflix", "login", {"user": "ana@mail.com"}))
        specialist = VaultSpecialist(completer, PersonaRenderer(completer), vault)

        asyncio.run(specialist.run(make_context("qual meu login da netflix?")))

        assert "user: ana@mail.com" in rendered(completer)

    def test_delete_missing_record(self):
        completer = FakeCompleter(extractions({"action": "delete", "title": "Bank"}))
        specialist = VaultSpecialist(completer, PersonaRenderer(completer), FakeVault())

        asyncio.run(specialist.run(make_context("delete my bank record")))

        assert 'No vault record named "Bank".' in rendered(completer)

    def test_store_requires_encryption_key(self, monkeypatch):
        monkeypatch.delenv("VAULT_ENCRYPTION_KEY", raising=False)
        store = VaultStore()
        with pytest.raises(RuntimeError):
            asyncio.run(store.save(SENDER, "Netflix", "login", {"user": "ana"}))


class TestGymSpecialist:

    def test_profile_update_keeps_known_fields(self):
        completer = FakeCompleter(extractions({"action": "config_health", "weight_kg": "72,5", "goal": None}))
        gym = FakeGym(HealthProfile(goal="hypertrophy"))
        specialist = GymSpecialist(completer, PersonaRenderer(completer), gym)

        asyncio.run(specialist.run(make_context("estou com 72,5 kg")))

        assert gym.profile.weight_kg == Decimal("72.5")
        assert gym.profile.goal == "hypertrophy"

    def test_set_workout_with_portuguese_day(self):
        completer = FakeCompleter(extractions({
            "action": "set_workout", "day_of_week": "Segunda", "focus": "Legs", "exercises": "Squat 4x10, Lunge 3x12",
        }))
        gym = FakeGym()
        specialist = GymSpecialist(completer, PersonaRenderer(completer), gym)

        asyncio.run(specialist.run(make_context("segunda é perna: agachamento e afundo")))

        assert gym.workouts["monday"].exercises == ["Squat 4x10", "Lunge 3x12"]

    def test_generate_plan_requires_profile(self):
        completer = FakeCompleter(extractions({"action": "generate_plan"}))
        gym = FakeGym()
        specialist = GymSpecialist(completer, PersonaRenderer(completer), gym)

        asyncio.run(specialist.run(make_context("monta meu treino")))

        assert gym.workouts == {}
        assert "weight and fitness goal" in rendered(completer)

    def test_generate_plan_saves_workouts_in_weekday_order(self):
        completer = FakeCompleter(extractions(
            {"action": "generate_plan"},
            {"workouts": [
                {"day_of_week": "wednesday", "focus": "Back", "exercises": ["Row 4x10"]},
                {"day_of_week": "monday", "focus": "Chest", "exercises": ["Bench 4x8"]},
                {"day_of_week": "someday", "focus": "?", "exercises": []},
            ]},
        ))
        gym = FakeGym(HealthProfile(weight_kg=Decimal("80"), goal="strength"))
        specialist = GymSpecialist(completer, PersonaRenderer(completer), gym)

        asyncio.run(specialist.run(make_context("create a workout plan for me")))

        assert [w.day_of_week for w in asyncio.run(gym.weekly_plan(SENDER))] == ["monday", "wednesday"]
        assert "Goal: strength" in completer.prompts_for(CompletionMode.JSON)[1]

    def test_normalize_day(self):
        assert normalize_day("Sábado") == "saturday"
        assert normalize_day("FRIDAY") == "friday"
        assert normalize_day("holiday") is None


class TestStudySpecialist:

    def test_full_plan_lifecycle(self):
        completer = FakeCompleter(extractions(
            {"action": "content_definition", "subject": "Calculus", "content": "derivatives"},
            {"action": "request_plan"},
            {"steps": [{"task": "Limits"}, {"task": "Derivative rules", "duration": "2 days"}]},
            {"action": "confirm_progress"},
            {"action": "confirm_progress"},
        ))
        study = FakeStudy()
        specialist = StudySpecialist(completer, PersonaRenderer(completer), study)

        asyncio.run(specialist.run(make_context("quero estudar derivadas de cálculo")))
        assert asyncio.run(study.open_plan(SENDER)).status == "draft"

        asyncio.run(specialist.run(make_context("monta o plano")))
        plan = asyncio.run(study.open_plan(SENDER))
        assert (plan.status, plan.current_step) == ("active", 1)
        assert "Starting at step 1/2: Limits." in rendered(completer)

        asyncio.run(specialist.run(make_context("terminei")))
        assert "Next, step 2/2: Derivative rules (2 days)." in rendered(completer)

        asyncio.run(specialist.run(make_context("terminei de novo")))
        assert asyncio.run(study.open_plan(SENDER)) is None
        assert study.plans[0].status == "completed"

    def test_definition_after_finished_plan_opens_new_draft(self):
        completer = FakeCompleter(extractions(
            {"action": "content_definition", "subject": "Physics", "content": "kinematics"},
        ))
        study = FakeStudy()
        subject = asyncio.run(study.add_subject(SENDER, "Calculus"))
        asyncio.run(study.create_draft(SENDER, subject.id, "integrals"))
        asyncio.run(study.finish(1))
        specialist = StudySpecialist(completer, PersonaRenderer(completer), study)

        asyncio.run(specialist.run(make_context("agora física: cinemática")))

        assert [(p.subject_name, p.status) for p in study.plans] == [
            ("Calculus", "completed"), ("Physics", "draft"),
        ]

    def test_add_subjects(self):
        completer = FakeCompleter(extractions({"action": "add_subject", "subjects": ["Math", "Physics", " "]}))
        study = FakeStudy()
        specialist = StudySpecialist(completer, PersonaRenderer(completer), study, FakeHistory())

        asyncio.run(specialist.run(make_context("quero estudar matemática e física")))

        assert [s.name for s in study.subjects] == ["Math", "Physics"]

    def test_active_plan_reminds_current_step(self):
        completer = FakeCompleter(extractions({"action": "none"}))
        study = FakeStudy()
        subject = asyncio.run(study.add_subject(SENDER, "Calculus"))
        draft = asyncio.run(study.create_draft(SENDER, subject.id, "derivatives"))
        asyncio.run(study.activate(draft.id, [StudyStep(order=1, task="Limits")]))
        specialist = StudySpecialist(completer, PersonaRenderer(completer), study)

        asyncio.run(specialist.run(make_context("e aí?")))

        assert "step 1/1: Limits" in rendered(completer)
        assert "Remind the user of the current step." in rendered(completer)

    def test_cancel_closes_plan(self):
        completer = FakeCompleter(extractions({"action": "cancel_plan"}))
        study = FakeStudy()
        subject = asyncio.run(study.add_subject(SENDER, "Calculus"))
        asyncio.run(study.create_draft(SENDER, subject.id, "derivatives"))
        asyncio.run(study.activate(1, []))
        specialist = StudySpecialist(completer, PersonaRenderer(completer), study)

        asyncio.run(specialist.run(make_context("desisto")))

        assert asyncio.run(study.open_plan(SENDER)) is None
