"""External service integrations (Anthropic completions, Telegram delivery, ElevenLabs speech)."""

from assistant_bot.integrations.completion import CompletionMode, CompletionService
from assistant_bot.integrations.sender import TelegramSender
from assistant_bot.integrations.voice import ElevenLabsSynthesizer

__all__ = [
    "CompletionMode",
    "CompletionService",
    "ElevenLabsSynthesizer",
    "TelegramSender",
]
