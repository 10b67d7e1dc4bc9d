"""
Conversation history store.

Each sender has a single JSONB row holding a bounded trailing window of
chat turns. Only the general (fallback) conversation path appends to it.
"""

from __future__ import annotations

import json
import logging
from typing import Optional, Protocol

import tiktoken

from assistant_bot.core.models import ChatTurn
from assistant_bot.database.pool import get_connection

logger = logging.getLogger(__name__)

MAX_HISTORY_MESSAGES = 10  # 5 user/assistant exchanges

_encoding: Optional[tiktoken.Encoding] = None


def _get_encoding() -> tiktoken.Encoding:
    """Lazy load tiktoken encoding."""
    global _encoding
    if _encoding is None:
        _encoding = tiktoken.get_encoding("cl100k_base")
    return _encoding


def count_tokens(text: str) -> int:
    """Count tokens in text using tiktoken."""
    if not text:
        return 0
    return len(_get_encoding().encode(text))


class HistoryStore(Protocol):
    """What the pipeline needs from conversation history storage."""

    async def append_turn(self, sender_id: str, user_text: str, assistant_text: str) -> None: ...

    async def load_recent(self, sender_id: str, limit: int) -> list[ChatTurn]: ...

    async def load_all(self, sender_id: str) -> list[ChatTurn]: ...


def format_history(turns: list[ChatTurn]) -> str:
    """Render turns as ``ROLE: content`` lines for prompt injection."""
    return "\n".join(f"{turn.role.upper()}: {turn.content}" for turn in turns)


def tail_within_tokens(turns: list[ChatTurn], max_tokens: int) -> list[ChatTurn]:
    """
    Keep the newest turns whose formatted text fits the token budget.

    Args:
        turns: Turns in chronological order
        max_tokens: Token budget for the formatted history

    Returns:
        Suffix of ``turns`` (still chronological)
    """
    kept: list[ChatTurn] = []
    used = 0
    for turn in reversed(turns):
        cost = count_tokens(f"{turn.role.upper()}: {turn.content}\n")
        if used + cost > max_tokens:
            break
        kept.append(turn)
        used += cost
    kept.reverse()
    return kept


def trim_history(turns: list[ChatTurn], max_messages: int = MAX_HISTORY_MESSAGES) -> list[ChatTurn]:
    """Keep only the last ``max_messages`` entries."""
    if len(turns) > max_messages:
        return turns[len(turns) - max_messages:]
    return turns


def _decode_history(raw) -> list[ChatTurn]:
    if raw is None:
        return []
    if isinstance(raw, str):
        raw = json.loads(raw)
    return [ChatTurn(**item) for item in raw]


class PostgresHistoryStore:
    """Conversation history backed by the ``chat_histories`` table."""

    def __init__(self, max_messages: int = MAX_HISTORY_MESSAGES):
        self.max_messages = max_messages

    async def load_all(self, sender_id: str) -> list[ChatTurn]:
        async with get_connection() as conn:
            raw = await conn.fetchval(
                "SELECT history FROM chat_histories WHERE sender_id = $1",
                sender_id,
            )
        return _decode_history(raw)

    async def load_recent(self, sender_id: str, limit: int) -> list[ChatTurn]:
        if limit <= 0:
            return []
        turns = await self.load_all(sender_id)
        return turns[-limit:]

    async def append_turn(self, sender_id: str, user_text: str, assistant_text: str) -> None:
        """
        Append one user/assistant exchange and trim to the trailing window.

        Read-modify-write under a row lock. Concurrent turns for the same
        sender are last-write-wins on the trimmed window.
        """
        async with get_connection() as conn:
            async with conn.transaction():
                raw = await conn.fetchval(
                    "SELECT history FROM chat_histories WHERE sender_id = $1 FOR UPDATE",
                    sender_id,
                )
                turns = _decode_history(raw)
                turns.append(ChatTurn(role="user", content=user_text))
                turns.append(ChatTurn(role="assistant", content=assistant_text))
                turns = trim_history(turns, self.max_messages)

                await conn.execute(
                    """
                    INSERT INTO chat_histories (sender_id, history, updated_at)
                    VALUES ($1, $2::jsonb, NOW())
                    ON CONFLICT (sender_id)
                    DO UPDATE SET history = $2::jsonb, updated_at = NOW()
                    """,
                    sender_id,
                    json.dumps([t.model_dump() for t in turns], ensure_ascii=False),
                )

        logger.debug(f"History for {sender_id} now holds {len(turns)} message(s)")
