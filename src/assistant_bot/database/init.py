"""
Database initialization.

Creates the tables the pipeline and its specialists read and write. Every statement is
idempotent, so this runs on each daemon start.
"""
import logging

from assistant_bot.database.pool import get_connection

logger = logging.getLogger(__name__)

SCHEMA_STATEMENTS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS users (
        id SERIAL PRIMARY KEY,
        full_name TEXT NOT NULL,
        phone_number VARCHAR(32) UNIQUE NOT NULL,
        created_at TIMESTAMPTZ DEFAULT NOW(),
        updated_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS user_configs (
        user_id INTEGER PRIMARY KEY REFERENCES users(id) ON DELETE CASCADE,
        user_nickname TEXT,
        agent_nickname TEXT DEFAULT 'Assessor',
        agent_gender TEXT DEFAULT 'male',
        agent_personality TEXT[] DEFAULT ARRAY['Friendly', 'Efficient'],
        agent_voice_id TEXT,
        language TEXT,
        timezone TEXT,
        ai_send_audio BOOLEAN DEFAULT FALSE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS chat_histories (
        sender_id VARCHAR(255) PRIMARY KEY,
        history JSONB NOT NULL DEFAULT '[]'::jsonb,
        updated_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS transactions (
        id SERIAL PRIMARY KEY,
        sender_id VARCHAR(255) NOT NULL,
        kind VARCHAR(16) NOT NULL CHECK (kind IN ('income', 'expense')),
        amount NUMERIC(14, 2) NOT NULL,
        category TEXT,
        description TEXT,
        occurred_on DATE NOT NULL DEFAULT CURRENT_DATE,
        created_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS todos (
        id SERIAL PRIMARY KEY,
        sender_id VARCHAR(255) NOT NULL,
        task TEXT NOT NULL,
        deadline TIMESTAMPTZ,
        done BOOLEAN NOT NULL DEFAULT FALSE,
        created_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS market_items (
        id SERIAL PRIMARY KEY,
        sender_id VARCHAR(255) NOT NULL,
        item_name TEXT NOT NULL,
        quantity INTEGER NOT NULL DEFAULT 1,
        created_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS finance_settings (
        sender_id VARCHAR(255) PRIMARY KEY,
        monthly_income NUMERIC(14, 2),
        spending_limit NUMERIC(14, 2),
        currency VARCHAR(8) NOT NULL DEFAULT 'BRL',
        updated_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS recurring_transactions (
        id SERIAL PRIMARY KEY,
        sender_id VARCHAR(255) NOT NULL,
        kind VARCHAR(16) NOT NULL CHECK (kind IN ('income', 'expense')),
        amount NUMERIC(14, 2) NOT NULL,
        category TEXT,
        description TEXT,
        day_of_month SMALLINT NOT NULL CHECK (day_of_month BETWEEN 1 AND 31),
        last_posted_on DATE,
        created_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS investments (
        id SERIAL PRIMARY KEY,
        sender_id VARCHAR(255) NOT NULL,
        asset_name TEXT NOT NULL,
        amount NUMERIC(14, 2) NOT NULL,
        invested_on DATE NOT NULL DEFAULT CURRENT_DATE,
        created_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS reminders (
        id SERIAL PRIMARY KEY,
        sender_id VARCHAR(255) NOT NULL,
        message TEXT NOT NULL,
        send_at TIMESTAMPTZ NOT NULL,
        status VARCHAR(16) NOT NULL DEFAULT 'pending',
        last_error TEXT,
        created_at TIMESTAMPTZ DEFAULT NOW(),
        updated_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_reminders_due ON reminders (send_at) WHERE status = 'pending'
    """,
    """
    CREATE TABLE IF NOT EXISTS goals (
        id SERIAL PRIMARY KEY,
        sender_id VARCHAR(255) NOT NULL,
        goal_name TEXT NOT NULL,
        category TEXT NOT NULL DEFAULT 'General',
        target_amount NUMERIC(14, 2) NOT NULL CHECK (target_amount > 0),
        current_progress NUMERIC(14, 2) NOT NULL DEFAULT 0,
        metric_unit TEXT NOT NULL DEFAULT 'units',
        deadline DATE,
        created_at TIMESTAMPTZ DEFAULT NOW(),
        updated_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS goal_progress (
        id SERIAL PRIMARY KEY,
        goal_id INTEGER NOT NULL REFERENCES goals(id) ON DELETE CASCADE,
        amount NUMERIC(14, 2) NOT NULL,
        description TEXT,
        created_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS ideas (
        id SERIAL PRIMARY KEY,
        sender_id VARCHAR(255) NOT NULL,
        content TEXT NOT NULL,
        tags TEXT[] NOT NULL DEFAULT '{}',
        created_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,
    """
    CREATE EXTENSION IF NOT EXISTS pgcrypto
    """,
    """
    CREATE TABLE IF NOT EXISTS vault_entries (
        id SERIAL PRIMARY KEY,
        sender_id VARCHAR(255) NOT NULL,
        title TEXT NOT NULL,
        category TEXT NOT NULL DEFAULT 'other',
        content_encrypted BYTEA NOT NULL,
        created_at TIMESTAMPTZ DEFAULT NOW(),
        updated_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS health_profiles (
        sender_id VARCHAR(255) PRIMARY KEY,
        weight_kg NUMERIC(5, 1),
        height_cm NUMERIC(5, 1),
        age SMALLINT,
        goal TEXT,
        updated_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS workouts (
        sender_id VARCHAR(255) NOT NULL,
        day_of_week VARCHAR(16) NOT NULL,
        focus TEXT NOT NULL,
        exercises JSONB NOT NULL DEFAULT '[]'::jsonb,
        updated_at TIMESTAMPTZ DEFAULT NOW(),
        PRIMARY KEY (sender_id, day_of_week)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS study_subjects (
        id SERIAL PRIMARY KEY,
        sender_id VARCHAR(255) NOT NULL,
        name TEXT NOT NULL,
        category TEXT,
        created_at TIMESTAMPTZ DEFAULT NOW(),
        UNIQUE (sender_id, name)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS study_plans (
        id SERIAL PRIMARY KEY,
        sender_id VARCHAR(255) NOT NULL,
        subject_id INTEGER NOT NULL REFERENCES study_subjects(id) ON DELETE CASCADE,
        content TEXT NOT NULL,
        steps JSONB NOT NULL DEFAULT '[]'::jsonb,
        status VARCHAR(16) NOT NULL DEFAULT 'draft'
            CHECK (status IN ('draft', 'active', 'completed', 'archived')),
        current_step INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMPTZ DEFAULT NOW(),
        updated_at TIMESTAMPTZ DEFAULT NOW()
    )
    """,
)


async def init_database() -> None:
    """
    Create pipeline tables if they don't exist.

    Raises:
        RuntimeError: If the database is unreachable or DATABASE_URL is unset.
    """
    try:
        async with get_connection() as conn:
            for statement in SCHEMA_STATEMENTS:
                await conn.execute(statement)
    except RuntimeError:
        raise
    except Exception as e:
        raise RuntimeError(f"Could not initialize database: {e}") from e

    logger.info(f"Database ready ({len(SCHEMA_STATEMENTS)} schema statements applied)")
