"""Core assistant modules."""

from assistant_bot.core.models import (
    BufferedMessage,
    Turn,
    UserConfig,
    UserContext,
    ChatTurn,
    Declined,
    Handled,
    HandledStructured,
    SpecialistOutcome,
    TaskStatusPayload,
    DeliveryOptions,
    TurnState,
    TurnReport,
)

__all__ = [
    "BufferedMessage",
    "Turn",
    "UserConfig",
    "UserContext",
    "ChatTurn",
    "Declined",
    "Handled",
    "HandledStructured",
    "SpecialistOutcome",
    "TaskStatusPayload",
    "DeliveryOptions",
    "TurnState",
    "TurnReport",
]
