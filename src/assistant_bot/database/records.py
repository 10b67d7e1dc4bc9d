"""
Domain record stores used by the specialists.

Plain CRUD over the per-domain tables (ledger, to-dos and reminders,
shopping list, goals, ideas, vault, gym, study). Each store is keyed by the
normalized sender id.
"""

from __future__ import annotations

import json
import os
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal, Optional

import asyncpg
from pydantic import BaseModel, Field

from assistant_bot.database.pool import get_connection


class Transaction(BaseModel):
    id: Optional[int] = None
    kind: Literal["income", "expense"]
    amount: Decimal
    category: Optional[str] = None
    description: Optional[str] = None
    occurred_on: date


class MonthSummary(BaseModel):
    income: Decimal = Decimal("0")
    expenses: Decimal = Decimal("0")
    count: int = 0

    @property
    def balance(self) -> Decimal:
        return self.income - self.expenses


class FinanceSettings(BaseModel):
    monthly_income: Optional[Decimal] = None
    spending_limit: Optional[Decimal] = None
    currency: str = "BRL"


class RecurringTransaction(BaseModel):
    id: Optional[int] = None
    kind: Literal["income", "expense"]
    amount: Decimal
    category: Optional[str] = None
    description: Optional[str] = None
    day_of_month: int = Field(ge=1, le=31)
    last_posted_on: Optional[date] = None


class InvestmentTotal(BaseModel):
    asset_name: str
    total: Decimal
    contributions: int = 1


class TodoItem(BaseModel):
    id: Optional[int] = None
    task: str
    deadline: Optional[datetime] = None
    done: bool = False


class Reminder(BaseModel):
    id: Optional[int] = None
    sender_id: str
    message: str
    send_at: datetime
    status: str = "pending"


class MarketItem(BaseModel):
    id: Optional[int] = None
    item_name: str
    quantity: int = 1


class Goal(BaseModel):
    id: Optional[int] = None
    goal_name: str
    category: str = "General"
    target_amount: Decimal
    current_progress: Decimal = Decimal("0")
    metric_unit: str = "units"
    deadline: Optional[date] = None

    @property
    def progress_percent(self) -> Decimal:
        if self.target_amount <= 0:
            return Decimal("0")
        return (self.current_progress / self.target_amount * 100).quantize(Decimal("0.01"))

    @property
    def is_completed(self) -> bool:
        return self.current_progress >= self.target_amount


class Idea(BaseModel):
    id: Optional[int] = None
    content: str
    tags: list[str] = Field(default_factory=list)


class VaultEntry(BaseModel):
    title: str
    category: str = "other"
    content: dict[str, Any] = Field(default_factory=dict)


class HealthProfile(BaseModel):
    weight_kg: Optional[Decimal] = None
    height_cm: Optional[Decimal] = None
    age: Optional[int] = None
    goal: Optional[str] = None

    @property
    def ready_for_plan(self) -> bool:
        return self.weight_kg is not None and bool(self.goal)


class Workout(BaseModel):
    day_of_week: str
    focus: str
    exercises: list[str] = Field(default_factory=list)


class StudySubject(BaseModel):
    id: Optional[int] = None
    name: str
    category: Optional[str] = None


class StudyStep(BaseModel):
    order: int
    task: str
    duration: Optional[str] = None


class StudyPlan(BaseModel):
    id: int
    subject_id: int
    subject_name: str
    content: str
    steps: list[StudyStep] = Field(default_factory=list)
    status: Literal["draft", "active", "completed", "archived"] = "draft"
    current_step: int = 0

    @property
    def current(self) -> Optional[StudyStep]:
        if 1 <= self.current_step <= len(self.steps):
            return self.steps[self.current_step - 1]
        return None

    @property
    def on_last_step(self) -> bool:
        return self.current_step >= len(self.steps)


def _row_to_model(row: asyncpg.Record, model: type[BaseModel]) -> BaseModel:
    return model(**dict(row))


def _decode_json(raw: Any, default: Any) -> Any:
    if raw is None:
        return default
    if isinstance(raw, (str, bytes)):
        return json.loads(raw)
    return raw


def _affected(status: str) -> int:
    """Row count from an asyncpg command status such as 'DELETE 3'."""
    return int(status.split()[-1])


class LedgerStore:
    """Income and expense records, finance settings, recurring entries and investments."""

    async def add_transaction(self, sender_id: str, tx: Transaction) -> Transaction:
        async with get_connection() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO transactions (sender_id, kind, amount, category, description, occurred_on)
                VALUES ($1, $2, $3, $4, $5, $6)
                RETURNING id, kind, amount, category, description, occurred_on
                """,
                sender_id, tx.kind, tx.amount, tx.category, tx.description, tx.occurred_on,
            )
        return _row_to_model(row, Transaction)

    async def month_summary(self, sender_id: str, month: date) -> MonthSummary:
        async with get_connection() as conn:
            row = await conn.fetchrow(
                """
                SELECT
                    COALESCE(SUM(amount) FILTER (WHERE kind = 'income'), 0) AS income,
                    COALESCE(SUM(amount) FILTER (WHERE kind = 'expense'), 0) AS expenses,
                    COUNT(*) AS count
                FROM transactions
                WHERE sender_id = $1
                  AND date_trunc('month', occurred_on) = date_trunc('month', $2::date)
                """,
                sender_id, month,
            )
        return MonthSummary(**dict(row))

    async def balance(self, sender_id: str) -> Decimal:
        """All-time account balance (income minus expenses)."""
        async with get_connection() as conn:
            value = await conn.fetchval(
                """
                SELECT COALESCE(SUM(CASE WHEN kind = 'income' THEN amount ELSE -amount END), 0)
                FROM transactions WHERE sender_id = $1
                """,
                sender_id,
            )
        return Decimal(value)

    async def get_settings(self, sender_id: str) -> FinanceSettings:
        async with get_connection() as conn:
            row = await conn.fetchrow(
                "SELECT monthly_income, spending_limit, currency FROM finance_settings WHERE sender_id = $1",
                sender_id,
            )
        return _row_to_model(row, FinanceSettings) if row else FinanceSettings()

    async def save_settings(
        self,
        sender_id: str,
        monthly_income: Optional[Decimal] = None,
        spending_limit: Optional[Decimal] = None,
        currency: Optional[str] = None,
    ) -> FinanceSettings:
        """Upsert settings; None leaves the stored value unchanged."""
        async with get_connection() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO finance_settings (sender_id, monthly_income, spending_limit, currency)
                VALUES ($1, $2, $3, COALESCE($4::varchar, 'BRL'))
                ON CONFLICT (sender_id) DO UPDATE SET
                    monthly_income = COALESCE(EXCLUDED.monthly_income, finance_settings.monthly_income),
                    spending_limit = COALESCE(EXCLUDED.spending_limit, finance_settings.spending_limit),
                    currency = COALESCE($4::varchar, finance_settings.currency),
                    updated_at = NOW()
                RETURNING monthly_income, spending_limit, currency
                """,
                sender_id, monthly_income, spending_limit, currency,
            )
        return _row_to_model(row, FinanceSettings)

    async def add_recurring(self, sender_id: str, rec: RecurringTransaction) -> RecurringTransaction:
        async with get_connection() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO recurring_transactions
                    (sender_id, kind, amount, category, description, day_of_month)
                VALUES ($1, $2, $3, $4, $5, $6)
                RETURNING id, kind, amount, category, description, day_of_month, last_posted_on
                """,
                sender_id, rec.kind, rec.amount, rec.category, rec.description, rec.day_of_month,
            )
        return _row_to_model(row, RecurringTransaction)

    async def post_due_recurring(self, today: date, last_day_of_month: bool) -> list[tuple[str, Transaction]]:
        """
        Post every recurring entry due today that has not been posted yet.

        Entries on day 29-31 fall on the last day of shorter months.

        Returns:
            (sender_id, transaction) pairs for the posted entries.
        """
        posted: list[tuple[str, Transaction]] = []
        async with get_connection() as conn:
            async with conn.transaction():
                rows = await conn.fetch(
                    """
                    SELECT id, sender_id, kind, amount, category, description
                    FROM recurring_transactions
                    WHERE (day_of_month = $1 OR ($2 AND day_of_month > $1))
                      AND (last_posted_on IS NULL OR last_posted_on < $3)
                    FOR UPDATE SKIP LOCKED
                    """,
                    today.day, last_day_of_month, today,
                )
                for row in rows:
                    tx_row = await conn.fetchrow(
                        """
                        INSERT INTO transactions (sender_id, kind, amount, category, description, occurred_on)
                        VALUES ($1, $2, $3, $4, $5, $6)
                        RETURNING id, kind, amount, category, description, occurred_on
                        """,
                        row["sender_id"], row["kind"], row["amount"], row["category"],
                        row["description"], today,
                    )
                    await conn.execute(
                        "UPDATE recurring_transactions SET last_posted_on = $1 WHERE id = $2",
                        today, row["id"],
                    )
                    posted.append((row["sender_id"], _row_to_model(tx_row, Transaction)))
        return posted

    async def add_investment(
        self, sender_id: str, asset_name: str, amount: Decimal, invested_on: date
    ) -> InvestmentTotal:
        """Record a contribution and return the asset's running total."""
        async with get_connection() as conn:
            await conn.execute(
                "INSERT INTO investments (sender_id, asset_name, amount, invested_on) VALUES ($1, $2, $3, $4)",
                sender_id, asset_name, amount, invested_on,
            )
            row = await conn.fetchrow(
                """
                SELECT $2::text AS asset_name, SUM(amount) AS total, COUNT(*) AS contributions
                FROM investments WHERE sender_id = $1 AND asset_name ILIKE $2
                """,
                sender_id, asset_name,
            )
        return _row_to_model(row, InvestmentTotal)

    async def list_investments(self, sender_id: str) -> list[InvestmentTotal]:
        async with get_connection() as conn:
            rows = await conn.fetch(
                """
                SELECT asset_name, SUM(amount) AS total, COUNT(*) AS contributions
                FROM investments WHERE sender_id = $1
                GROUP BY asset_name ORDER BY total DESC
                """,
                sender_id,
            )
        return [_row_to_model(r, InvestmentTotal) for r in rows]


class TodoStore:
    """The user's to-do list."""

    async def add(self, sender_id: str, task: str, deadline: Optional[datetime] = None) -> TodoItem:
        async with get_connection() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO todos (sender_id, task, deadline)
                VALUES ($1, $2, $3)
                RETURNING id, task, deadline, done
                """,
                sender_id, task, deadline,
            )
        return _row_to_model(row, TodoItem)

    async def list_pending(self, sender_id: str) -> list[TodoItem]:
        async with get_connection() as conn:
            rows = await conn.fetch(
                """
                SELECT id, task, deadline, done FROM todos
                WHERE sender_id = $1 AND done = FALSE
                ORDER BY deadline NULLS LAST, created_at
                """,
                sender_id,
            )
        return [_row_to_model(r, TodoItem) for r in rows]

    async def latest_with_deadline(self, sender_id: str) -> Optional[TodoItem]:
        """Most recently added pending task that has a deadline."""
        async with get_connection() as conn:
            row = await conn.fetchrow(
                """
                SELECT id, task, deadline, done FROM todos
                WHERE sender_id = $1 AND done = FALSE AND deadline IS NOT NULL
                ORDER BY created_at DESC LIMIT 1
                """,
                sender_id,
            )
        return _row_to_model(row, TodoItem) if row else None

    async def complete(self, sender_id: str, term: str) -> Optional[TodoItem]:
        """Mark the oldest pending task containing ``term`` as done."""
        async with get_connection() as conn:
            row = await conn.fetchrow(
                """
                UPDATE todos SET done = TRUE
                WHERE id = (
                    SELECT id FROM todos
                    WHERE sender_id = $1 AND done = FALSE AND task ILIKE '%' || $2 || '%'
                    ORDER BY created_at LIMIT 1
                )
                RETURNING id, task, deadline, done
                """,
                sender_id, term,
            )
        return _row_to_model(row, TodoItem) if row else None

    async def delete(self, sender_id: str, term: str) -> Optional[TodoItem]:
        async with get_connection() as conn:
            row = await conn.fetchrow(
                """
                DELETE FROM todos
                WHERE id = (
                    SELECT id FROM todos
                    WHERE sender_id = $1 AND task ILIKE '%' || $2 || '%'
                    ORDER BY created_at LIMIT 1
                )
                RETURNING id, task, deadline, done
                """,
                sender_id, term,
            )
        return _row_to_model(row, TodoItem) if row else None


class ReminderStore:
    """Queue of reminder messages delivered by the background jobs."""

    async def schedule(self, sender_id: str, message: str, send_at: datetime) -> Reminder:
        async with get_connection() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO reminders (sender_id, message, send_at)
                VALUES ($1, $2, $3)
                RETURNING id, sender_id, message, send_at, status
                """,
                sender_id, message, send_at,
            )
        return _row_to_model(row, Reminder)

    async def claim_due(self, now: datetime, limit: int = 15) -> list[Reminder]:
        """Move due reminders to 'sending' and return them; concurrent claimers skip locked rows."""
        async with get_connection() as conn:
            rows = await conn.fetch(
                """
                UPDATE reminders SET status = 'sending', updated_at = NOW()
                WHERE id IN (
                    SELECT id FROM reminders
                    WHERE status = 'pending' AND send_at <= $1
                    ORDER BY send_at
                    LIMIT $2
                    FOR UPDATE SKIP LOCKED
                )
                RETURNING id, sender_id, message, send_at, status
                """,
                now, limit,
            )
        return [_row_to_model(r, Reminder) for r in rows]

    async def mark_sent(self, reminder_id: int) -> None:
        async with get_connection() as conn:
            await conn.execute(
                "UPDATE reminders SET status = 'sent', updated_at = NOW() WHERE id = $1",
                reminder_id,
            )

    async def mark_failed(self, reminder_id: int, error: str) -> None:
        async with get_connection() as conn:
            await conn.execute(
                "UPDATE reminders SET status = 'failed', last_error = $2, updated_at = NOW() WHERE id = $1",
                reminder_id, error[:500],
            )


class MarketListStore:
    """Shopping list items."""

    async def add(self, sender_id: str, item_name: str, quantity: int = 1) -> MarketItem:
        async with get_connection() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO market_items (sender_id, item_name, quantity)
                VALUES ($1, $2, $3)
                RETURNING id, item_name, quantity
                """,
                sender_id, item_name, quantity,
            )
        return _row_to_model(row, MarketItem)

    async def list_items(self, sender_id: str) -> list[MarketItem]:
        async with get_connection() as conn:
            rows = await conn.fetch(
                "SELECT id, item_name, quantity FROM market_items WHERE sender_id = $1 ORDER BY created_at",
                sender_id,
            )
        return [_row_to_model(r, MarketItem) for r in rows]

    async def remove(self, sender_id: str, item_name: str) -> bool:
        async with get_connection() as conn:
            result = await conn.execute(
                "DELETE FROM market_items WHERE sender_id = $1 AND item_name ILIKE $2",
                sender_id, item_name,
            )
        return _affected(result) > 0

    async def clear(self, sender_id: str) -> int:
        async with get_connection() as conn:
            result = await conn.execute(
                "DELETE FROM market_items WHERE sender_id = $1",
                sender_id,
            )
        return _affected(result)


_GOAL_COLUMNS = "id, goal_name, category, target_amount, current_progress, metric_unit, deadline"

# Shortest name containing the search term wins
_GOAL_MATCH = """
    SELECT id FROM goals
    WHERE sender_id = $1 AND goal_name ILIKE '%' || $2 || '%'
    ORDER BY LENGTH(goal_name) LIMIT 1
"""


class GoalStore:
    """Long-term goals and their progress log."""

    async def create(self, sender_id: str, goal: Goal) -> Goal:
        async with get_connection() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO goals (sender_id, goal_name, category, target_amount, metric_unit, deadline)
                VALUES ($1, $2, $3, $4, $5, $6)
                RETURNING {_GOAL_COLUMNS}
                """,
                sender_id, goal.goal_name, goal.category, goal.target_amount,
                goal.metric_unit, goal.deadline,
            )
        return _row_to_model(row, Goal)

    async def list_goals(self, sender_id: str) -> list[Goal]:
        async with get_connection() as conn:
            rows = await conn.fetch(
                f"SELECT {_GOAL_COLUMNS} FROM goals WHERE sender_id = $1 ORDER BY created_at DESC",
                sender_id,
            )
        return [_row_to_model(r, Goal) for r in rows]

    async def add_progress(
        self, sender_id: str, name: str, amount: Decimal, description: Optional[str] = None
    ) -> Optional[Goal]:
        """Add to the best-matching goal's progress; None if no goal matches."""
        async with get_connection() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    f"""
                    UPDATE goals
                    SET current_progress = current_progress + $3, updated_at = NOW()
                    WHERE id = ({_GOAL_MATCH})
                    RETURNING {_GOAL_COLUMNS}
                    """,
                    sender_id, name, amount,
                )
                if row is None:
                    return None
                await conn.execute(
                    "INSERT INTO goal_progress (goal_id, amount, description) VALUES ($1, $2, $3)",
                    row["id"], amount, description,
                )
        return _row_to_model(row, Goal)

    async def delete(self, sender_id: str, name: str) -> Optional[Goal]:
        async with get_connection() as conn:
            row = await conn.fetchrow(
                f"DELETE FROM goals WHERE id = ({_GOAL_MATCH}) RETURNING {_GOAL_COLUMNS}",
                sender_id, name,
            )
        return _row_to_model(row, Goal) if row else None


class IdeaStore:
    """Captured ideas and notes."""

    async def add(self, sender_id: str, content: str, tags: list[str]) -> Idea:
        async with get_connection() as conn:
            row = await conn.fetchrow(
                "INSERT INTO ideas (sender_id, content, tags) VALUES ($1, $2, $3) RETURNING id, content, tags",
                sender_id, content, tags,
            )
        return _row_to_model(row, Idea)

    async def list_ideas(self, sender_id: str) -> list[Idea]:
        async with get_connection() as conn:
            rows = await conn.fetch(
                "SELECT id, content, tags FROM ideas WHERE sender_id = $1 ORDER BY created_at DESC",
                sender_id,
            )
        return [_row_to_model(r, Idea) for r in rows]

    async def clear(self, sender_id: str) -> int:
        async with get_connection() as conn:
            result = await conn.execute("DELETE FROM ideas WHERE sender_id = $1", sender_id)
        return _affected(result)


class VaultStore:
    """
    Personal records (logins, bank details, notes) encrypted at rest.

    Content is stored with pgcrypto's ``pgp_sym_encrypt`` under the key from
    VAULT_ENCRYPTION_KEY; the plaintext never lands in a column.
    """

    def __init__(self, key: Optional[str] = None):
        self._key = key or os.getenv("VAULT_ENCRYPTION_KEY")

    def _require_key(self) -> str:
        if not self._key:
            raise RuntimeError("VAULT_ENCRYPTION_KEY environment variable is not set")
        return self._key

    async def save(
        self, sender_id: str, title: str, category: str, content: dict[str, Any]
    ) -> Literal["created", "updated"]:
        """Create the entry, or replace the content of one with the same title."""
        key = self._require_key()
        payload = json.dumps(content, ensure_ascii=False)
        async with get_connection() as conn:
            async with conn.transaction():
                existing = await conn.fetchval(
                    "SELECT id FROM vault_entries WHERE sender_id = $1 AND title ILIKE $2 LIMIT 1",
                    sender_id, title,
                )
                if existing is not None:
                    await conn.execute(
                        """
                        UPDATE vault_entries
                        SET category = $2, content_encrypted = pgp_sym_encrypt($3, $4), updated_at = NOW()
                        WHERE id = $1
                        """,
                        existing, category, payload, key,
                    )
                    return "updated"
                await conn.execute(
                    """
                    INSERT INTO vault_entries (sender_id, title, category, content_encrypted)
                    VALUES ($1, $2, $3, pgp_sym_encrypt($4, $5))
                    """,
                    sender_id, title, category, payload, key,
                )
        return "created"

    async def search(self, sender_id: str, term: str) -> list[VaultEntry]:
        key = self._require_key()
        async with get_connection() as conn:
            rows = await conn.fetch(
                """
                SELECT title, category, pgp_sym_decrypt(content_encrypted, $3) AS content
                FROM vault_entries
                WHERE sender_id = $1 AND title ILIKE '%' || $2 || '%'
                ORDER BY title
                """,
                sender_id, term, key,
            )
        return [
            VaultEntry(title=r["title"], category=r["category"], content=_decode_json(r["content"], {}))
            for r in rows
        ]

    async def delete(self, sender_id: str, title: str) -> bool:
        async with get_connection() as conn:
            result = await conn.execute(
                "DELETE FROM vault_entries WHERE sender_id = $1 AND title ILIKE $2",
                sender_id, title,
            )
        return _affected(result) > 0

    async def list_entries(self, sender_id: str) -> list[VaultEntry]:
        """Titles and categories only; content stays encrypted."""
        async with get_connection() as conn:
            rows = await conn.fetch(
                "SELECT title, category FROM vault_entries WHERE sender_id = $1 ORDER BY category, title",
                sender_id,
            )
        return [_row_to_model(r, VaultEntry) for r in rows]


WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


class GymStore:
    """Health profile and weekly workout plan."""

    async def get_profile(self, sender_id: str) -> Optional[HealthProfile]:
        async with get_connection() as conn:
            row = await conn.fetchrow(
                "SELECT weight_kg, height_cm, age, goal FROM health_profiles WHERE sender_id = $1",
                sender_id,
            )
        return _row_to_model(row, HealthProfile) if row else None

    async def save_profile(self, sender_id: str, profile: HealthProfile) -> HealthProfile:
        """Upsert; fields left as None keep their stored value."""
        async with get_connection() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO health_profiles (sender_id, weight_kg, height_cm, age, goal)
                VALUES ($1, $2, $3, $4, $5)
                ON CONFLICT (sender_id) DO UPDATE SET
                    weight_kg = COALESCE(EXCLUDED.weight_kg, health_profiles.weight_kg),
                    height_cm = COALESCE(EXCLUDED.height_cm, health_profiles.height_cm),
                    age = COALESCE(EXCLUDED.age, health_profiles.age),
                    goal = COALESCE(EXCLUDED.goal, health_profiles.goal),
                    updated_at = NOW()
                RETURNING weight_kg, height_cm, age, goal
                """,
                sender_id, profile.weight_kg, profile.height_cm, profile.age, profile.goal,
            )
        return _row_to_model(row, HealthProfile)

    async def save_workout(self, sender_id: str, workout: Workout) -> Workout:
        """Store the workout for its weekday, replacing any previous one."""
        async with get_connection() as conn:
            await conn.execute(
                """
                INSERT INTO workouts (sender_id, day_of_week, focus, exercises)
                VALUES ($1, $2, $3, $4::jsonb)
                ON CONFLICT (sender_id, day_of_week) DO UPDATE SET
                    focus = EXCLUDED.focus,
                    exercises = EXCLUDED.exercises,
                    updated_at = NOW()
                """,
                sender_id, workout.day_of_week, workout.focus,
                json.dumps(workout.exercises, ensure_ascii=False),
            )
        return workout

    async def weekly_plan(self, sender_id: str) -> list[Workout]:
        async with get_connection() as conn:
            rows = await conn.fetch(
                """
                SELECT day_of_week, focus, exercises FROM workouts
                WHERE sender_id = $1
                ORDER BY array_position($2::text[], day_of_week::text) NULLS LAST
                """,
                sender_id, list(WEEKDAYS),
            )
        return [
            Workout(day_of_week=r["day_of_week"], focus=r["focus"], exercises=_decode_json(r["exercises"], []))
            for r in rows
        ]


_PLAN_SELECT = """
    SELECT p.id, p.subject_id, s.name AS subject_name, p.content, p.steps, p.status, p.current_step
    FROM study_plans p JOIN study_subjects s ON s.id = p.subject_id
"""


def _row_to_plan(row: asyncpg.Record) -> StudyPlan:
    data = dict(row)
    data["steps"] = _decode_json(data.get("steps"), [])
    return StudyPlan(**data)


class StudyStore:
    """Study subjects and the single open (draft or active) plan per sender."""

    async def add_subject(self, sender_id: str, name: str, category: Optional[str] = None) -> StudySubject:
        async with get_connection() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO study_subjects (sender_id, name, category)
                VALUES ($1, $2, $3)
                ON CONFLICT (sender_id, name) DO UPDATE SET
                    category = COALESCE(EXCLUDED.category, study_subjects.category)
                RETURNING id, name, category
                """,
                sender_id, name, category,
            )
        return _row_to_model(row, StudySubject)

    async def list_subjects(self, sender_id: str) -> list[StudySubject]:
        async with get_connection() as conn:
            rows = await conn.fetch(
                "SELECT id, name, category FROM study_subjects WHERE sender_id = $1 ORDER BY name",
                sender_id,
            )
        return [_row_to_model(r, StudySubject) for r in rows]

    async def find_subject(self, sender_id: str, term: str) -> Optional[StudySubject]:
        async with get_connection() as conn:
            row = await conn.fetchrow(
                """
                SELECT id, name, category FROM study_subjects
                WHERE sender_id = $1 AND name ILIKE '%' || $2 || '%'
                ORDER BY LENGTH(name) LIMIT 1
                """,
                sender_id, term,
            )
        return _row_to_model(row, StudySubject) if row else None

    async def open_plan(self, sender_id: str) -> Optional[StudyPlan]:
        async with get_connection() as conn:
            row = await conn.fetchrow(
                _PLAN_SELECT + """
                WHERE p.sender_id = $1 AND p.status IN ('draft', 'active')
                ORDER BY p.created_at DESC LIMIT 1
                """,
                sender_id,
            )
        return _row_to_plan(row) if row else None

    async def create_draft(self, sender_id: str, subject_id: int, content: str) -> StudyPlan:
        """Archive any open plan and start a new draft."""
        async with get_connection() as conn:
            async with conn.transaction():
                await conn.execute(
                    """
                    UPDATE study_plans SET status = 'archived', updated_at = NOW()
                    WHERE sender_id = $1 AND status IN ('draft', 'active')
                    """,
                    sender_id,
                )
                plan_id = await conn.fetchval(
                    """
                    INSERT INTO study_plans (sender_id, subject_id, content)
                    VALUES ($1, $2, $3) RETURNING id
                    """,
                    sender_id, subject_id, content,
                )
                row = await conn.fetchrow(_PLAN_SELECT + " WHERE p.id = $1", plan_id)
        return _row_to_plan(row)

    async def activate(self, plan_id: int, steps: list[StudyStep]) -> StudyPlan:
        return await self._update(
            plan_id,
            "steps = $2::jsonb, status = 'active', current_step = 1",
            json.dumps([s.model_dump() for s in steps], ensure_ascii=False),
        )

    async def advance(self, plan_id: int) -> StudyPlan:
        return await self._update(plan_id, "current_step = current_step + 1")

    async def finish(self, plan_id: int) -> StudyPlan:
        return await self._update(plan_id, "status = 'completed'")

    async def _update(self, plan_id: int, assignments: str, *args: Any) -> StudyPlan:
        async with get_connection() as conn:
            async with conn.transaction():
                await conn.execute(
                    f"UPDATE study_plans SET {assignments}, updated_at = NOW() WHERE id = $1",
                    plan_id, *args,
                )
                row = await conn.fetchrow(_PLAN_SELECT + " WHERE p.id = $1", plan_id)
        return _row_to_plan(row)
