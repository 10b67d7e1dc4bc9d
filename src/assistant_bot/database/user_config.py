"""
Per-user persona configuration lookup.

The lookup never fails a turn: a missing user, a missing config row, NULL
columns or a database error all fall back to the UserConfig defaults.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Protocol

from assistant_bot.core.models import UserConfig
from assistant_bot.database.pool import get_connection

logger = logging.getLogger(__name__)

# user_configs column -> UserConfig field
COLUMN_MAP = {
    "agent_nickname": "agent_name",
    "agent_gender": "agent_gender",
    "agent_personality": "agent_personality",
    "user_nickname": "user_nickname",
    "language": "language",
    "timezone": "timezone",
    "ai_send_audio": "send_audio",
    "agent_voice_id": "voice_id",
}


class ConfigProvider(Protocol):
    async def get_config(self, sender_id: str) -> UserConfig: ...


def config_from_row(row: Optional[dict[str, Any]]) -> UserConfig:
    """Build a UserConfig from a joined users/user_configs row, ignoring NULLs."""
    if not row:
        return UserConfig()
    values = {
        field: row[column]
        for column, field in COLUMN_MAP.items()
        if row.get(column) is not None
    }
    return UserConfig(**values)


class PostgresConfigProvider:
    """Reads persona configuration from ``users`` + ``user_configs``."""

    async def get_config(self, sender_id: str) -> UserConfig:
        try:
            async with get_connection() as conn:
                row = await conn.fetchrow(
                    """
                    SELECT u.id, u.full_name, uc.*
                    FROM users u
                    LEFT JOIN user_configs uc ON u.id = uc.user_id
                    WHERE u.phone_number = $1
                    """,
                    sender_id,
                )
            return config_from_row(dict(row) if row else None)
        except Exception as e:
            logger.warning(f"Config lookup failed for {sender_id}, using defaults: {e}")
            return UserConfig()
