"""Database pool, schema and stores."""

from assistant_bot.database.init import init_database
from assistant_bot.database.pool import close_pool, get_connection, get_pool

__all__ = [
    "init_database",
    "close_pool",
    "get_connection",
    "get_pool",
]
