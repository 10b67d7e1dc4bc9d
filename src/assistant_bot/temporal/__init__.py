"""Temporal processing modules (debounce buffering, periodic jobs)."""

from assistant_bot.temporal.jobs import BackgroundJobs
from assistant_bot.temporal.message_buffer import MessageBuffer, merge_messages

__all__ = [
    "BackgroundJobs",
    "MessageBuffer",
    "merge_messages",
]
