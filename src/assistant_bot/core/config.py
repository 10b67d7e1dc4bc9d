"""
Assistant configuration.

Behavioral settings live in a JSON file inside CONFIG_DIR (created with
defaults on first run). Secrets and deployment values come from the
environment (.env is loaded via python-dotenv).
"""
import json
import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# Configuration paths - resolve for Docker (/app/config) or local development
PACKAGE_DIR = Path(__file__).parent.parent  # src/assistant_bot/
PROJECT_ROOT = PACKAGE_DIR.parent.parent
if Path("/app/config").exists():
    CONFIG_DIR = Path("/app/config")
else:
    CONFIG_DIR = PROJECT_ROOT / "config"

ASSISTANT_CONFIG_FILE = CONFIG_DIR / "assistant_config.json"

load_dotenv(PROJECT_ROOT / ".env")
load_dotenv()

# Keywords the classifier may emit. "general" routes to the fallback specialist.
KEYWORD_VOCABULARY: tuple[str, ...] = (
    "finance",
    "todo",
    "market",
    "goals",
    "ideas",
    "vault",
    "gym",
    "study",
    "general",
)
GENERAL_KEYWORD = "general"

DEFAULT_APOLOGY = "Sorry, something went wrong on my side. Could you send that again?"


class AssistantConfig(BaseModel):
    """Configuration for the inbound pipeline."""
    # Debounce buffer
    quiet_period_seconds: float = 2.0  # no new arrivals for this long -> flush
    serialize_per_sender: bool = True  # one orchestration at a time per sender

    # Timeouts (seconds) on externally awaited calls
    completion_timeout_seconds: float = 45.0
    specialist_timeout_seconds: float = 90.0

    # Completion models
    fast_model: str = "claude-haiku-4-5"
    quality_model: str = "claude-sonnet-4-5"
    max_tokens: int = 1024
    creative_temperature: float = 0.7

    # Conversation history
    history_max_turns: int = 10  # stored entries (5 exchanges)
    classifier_history_turns: int = 6
    classifier_history_tokens: int = 800

    # Outbound
    apology_message: str = DEFAULT_APOLOGY
    audio_max_words: int = 70
    default_voice_id: Optional[str] = None

    # Text-to-speech (ElevenLabs); voice replies are off without an API key
    tts_model: str = "eleven_multilingual_v2"
    tts_output_format: str = "opus_48000_64"  # OGG/Opus, what Telegram plays as a voice note
    tts_timeout_seconds: float = 30.0

    # Background jobs: due reminders and recurring transactions
    jobs_interval_seconds: float = 30.0

    enabled_specialists: list[str] = Field(
        default_factory=lambda: ["finance", "todo", "market", "goals", "ideas", "vault", "gym", "study"]
    )

    @field_validator(
        "quiet_period_seconds",
        "completion_timeout_seconds",
        "specialist_timeout_seconds",
        "tts_timeout_seconds",
        "jobs_interval_seconds",
    )
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Durations must be positive")
        return v


def apply_env_overrides(config: AssistantConfig) -> AssistantConfig:
    """Let deployment tweak a few values without editing the JSON file."""
    quiet = os.getenv("ASSISTANT_QUIET_PERIOD")
    if quiet:
        config = config.model_copy(update={"quiet_period_seconds": float(quiet)})
    serialize = os.getenv("ASSISTANT_SERIALIZE_PER_SENDER")
    if serialize:
        config = config.model_copy(
            update={"serialize_per_sender": serialize.lower() == "true"}
        )
    return config


def load_config(config_file: Optional[Path] = None) -> AssistantConfig:
    """Load assistant configuration, writing a default file if none exists."""
    config_file = config_file or ASSISTANT_CONFIG_FILE
    config_file.parent.mkdir(parents=True, exist_ok=True)

    if config_file.exists():
        with open(config_file, 'r', encoding='utf-8') as f:
            data = json.load(f)
        config = AssistantConfig(**data)
    else:
        config = AssistantConfig()
        with open(config_file, 'w', encoding='utf-8') as f:
            json.dump(config.model_dump(), f, indent=2, ensure_ascii=False)
        logger.info(f"Wrote default assistant config to {config_file}")

    return apply_env_overrides(config)
