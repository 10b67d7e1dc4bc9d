"""
Text-completion service backed by the Anthropic Messages API.

Three modes:
- FAST: low-latency model, used for classification and short rewrites
- QUALITY: higher-quality model, used for persona-voiced generation
- JSON: fast model at temperature 0, instructed to answer with JSON only.
  The caller parses optimistically with parse_json_payload() and treats a
  parse failure as an inconclusive extraction.

Every call is bounded by the configured timeout; failures surface as
CompletionError.
"""
import asyncio
import json
import logging
import os
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional, Protocol

import pytz
from dotenv import load_dotenv

from assistant_bot.core.config import AssistantConfig
from assistant_bot.core.errors import CompletionError

load_dotenv()

if TYPE_CHECKING:
    from anthropic import AsyncAnthropic

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "America/Sao_Paulo"

JSON_ONLY_INSTRUCTION = (
    "\n\nRespond with a single valid JSON value only. "
    "No prose, no markdown fences, no comments."
)


class CompletionMode(str, Enum):
    FAST = "fast"
    QUALITY = "quality"
    JSON = "json"


class Completer(Protocol):
    async def complete(
        self,
        system_prompt: str,
        user_message: str,
        mode: CompletionMode = CompletionMode.FAST,
    ) -> str: ...


def now_in_timezone(tz_name: Optional[str]) -> datetime:
    """Current time in the given IANA timezone (falls back to Sao Paulo)."""
    try:
        tz = pytz.timezone(tz_name or DEFAULT_TIMEZONE)
    except pytz.UnknownTimeZoneError:
        logger.warning(f"Unknown timezone {tz_name!r}, using {DEFAULT_TIMEZONE}")
        tz = pytz.timezone(DEFAULT_TIMEZONE)
    return datetime.now(tz)


def format_now(tz_name: Optional[str]) -> str:
    return now_in_timezone(tz_name).strftime("%Y-%m-%d %H:%M:%S %Z")


def parse_json_payload(raw: Optional[str]) -> Optional[Any]:
    """
    Parse the JSON value embedded in a model answer.

    Takes the span from the first ``{``/``[`` to the last ``}``/``]`` so
    stray prose or code fences around the payload are tolerated.

    Returns:
        The decoded value, or None when nothing parseable is found.
    """
    if not raw:
        return None

    starts = [i for i in (raw.find("{"), raw.find("[")) if i != -1]
    ends = [i for i in (raw.rfind("}"), raw.rfind("]")) if i != -1]
    if not starts or not ends:
        return None

    start, end = min(starts), max(ends)
    if end < start:
        return None

    try:
        return json.loads(raw[start:end + 1])
    except json.JSONDecodeError:
        logger.debug(f"Unparseable JSON payload: {raw[:120]!r}")
        return None


class CompletionService:
    """
    Anthropic-backed implementation of the completion contract.

    Attributes:
        client: AsyncAnthropic client
        config: Assistant configuration (models, timeout, token limits)
    """

    def __init__(self, config: AssistantConfig, client: Optional["AsyncAnthropic"] = None):
        if client is None:
            from anthropic import AsyncAnthropic
            client = AsyncAnthropic(api_key=os.getenv("ANTHROPIC_API_KEY"))
        self.client = client
        self.config = config

    def _model_for(self, mode: CompletionMode) -> str:
        if mode == CompletionMode.QUALITY:
            return self.config.quality_model
        return self.config.fast_model

    async def complete(
        self,
        system_prompt: str,
        user_message: str,
        mode: CompletionMode = CompletionMode.FAST,
    ) -> str:
        """
        Run one system + user completion.

        Raises:
            CompletionError: On API failure, timeout, or an empty answer
                for JSON mode.
        """
        model = self._model_for(mode)
        temperature = 0.0 if mode == CompletionMode.JSON else self.config.creative_temperature
        if mode == CompletionMode.JSON:
            system_prompt = system_prompt + JSON_ONLY_INSTRUCTION

        try:
            response = await asyncio.wait_for(
                self.client.messages.create(
                    model=model,
                    max_tokens=self.config.max_tokens,
                    temperature=temperature,
                    system=system_prompt,
                    messages=[{"role": "user", "content": user_message}],
                ),
                timeout=self.config.completion_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            logger.error(f"Completion timed out after {self.config.completion_timeout_seconds}s (model: {model})")
            raise CompletionError(f"Completion timed out (model: {model})") from e
        except Exception as e:
            logger.error(f"Completion API error (model: {model}): {e}")
            raise CompletionError(f"Completion failed (model: {model})") from e

        text = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        ).strip()

        if mode == CompletionMode.JSON and not text:
            raise CompletionError(f"Empty JSON completion (model: {model})")

        return text
