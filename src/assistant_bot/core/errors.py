"""Exception hierarchy for the assistant pipeline."""


class AssistantError(Exception):
    """Base class for pipeline errors."""


class CompletionError(AssistantError):
    """The completion service failed or timed out."""


class ClassificationError(AssistantError):
    """The intent classifier could not produce keywords for a turn."""


class RenderingError(AssistantError):
    """Persona rendering or fusion of specialist results failed."""


class DeliveryError(AssistantError):
    """The outbound channel rejected or failed to send a message."""
