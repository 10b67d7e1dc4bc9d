"""
Per-turn orchestration.

Drives one coalesced turn through config lookup, intent classification,
concurrent specialist dispatch, aggregation and delivery. Whatever happens
inside, the sender receives exactly one outbound message: the reply, or the
fixed apology if the pipeline failed before a reply was produced.
"""
import asyncio
import logging
import time
from datetime import datetime

from assistant_bot.core.config import AssistantConfig
from assistant_bot.core.errors import ClassificationError, DeliveryError
from assistant_bot.core.models import (
    DeliveryOptions,
    Turn,
    TurnReport,
    TurnState,
    UserConfig,
    UserContext,
)
from assistant_bot.database.history import HistoryStore, format_history, tail_within_tokens
from assistant_bot.database.user_config import ConfigProvider
from assistant_bot.integrations.sender import Sender
from assistant_bot.orchestration.aggregator import ResponseAggregator
from assistant_bot.orchestration.classifier import IntentClassifier
from assistant_bot.orchestration.dispatcher import SpecialistDispatcher

logger = logging.getLogger(__name__)


class Orchestrator:
    """
    Handles one Turn from classification to delivery.

    Attributes:
        classifier: Keyword classifier
        dispatcher: Concurrent specialist fan-out
        aggregator: Outcome merger (owns the general fallback)
        sender: Outbound channel
        config_provider: Per-user persona configuration
        history: Conversation history (read here for classification only)
    """

    def __init__(
        self,
        classifier: IntentClassifier,
        dispatcher: SpecialistDispatcher,
        aggregator: ResponseAggregator,
        sender: Sender,
        config_provider: ConfigProvider,
        history: HistoryStore,
        config: AssistantConfig | None = None,
    ):
        self.classifier = classifier
        self.dispatcher = dispatcher
        self.aggregator = aggregator
        self.sender = sender
        self.config_provider = config_provider
        self.history = history
        self.config = config or AssistantConfig()

    async def handle_turn(self, turn: Turn) -> TurnReport:
        """Process one turn. Never raises except for cancellation."""
        started = time.monotonic()
        report = TurnReport(sender_id=turn.sender_id, started_at=datetime.now())
        logger.info(
            f"Processing turn from {turn.display_name} ({turn.sender_id}), "
            f"{turn.message_count} message(s)"
        )

        try:
            user_config = await self._load_user_config(turn.sender_id)
            context = UserContext(
                sender_id=turn.sender_id,
                message=turn.text,
                display_name=turn.display_name,
                config=user_config,
            )

            history_text = await self._classifier_history(turn.sender_id)
            keywords = await self.classifier.classify(turn.text, history_text)
            report.keywords = keywords

            outcomes = await self.dispatcher.dispatch(keywords, context)
            report.outcomes = {keyword: outcome.kind for keyword, outcome in outcomes}

            result = await self.aggregator.aggregate(outcomes, context)
            report.used_fallback = result.used_fallback
            report.reply = result.text
        except asyncio.CancelledError:
            raise
        except ClassificationError as e:
            logger.error(f"Classification failed for {turn.sender_id}: {e}")
            report.error = str(e)
            await self._send_apology(turn.sender_id, report)
            return self._finish(report, started)
        except Exception as e:
            logger.error(f"Turn failed for {turn.sender_id}: {e}", exc_info=True)
            report.error = str(e)
            await self._send_apology(turn.sender_id, report)
            return self._finish(report, started)

        try:
            await self.sender.send(
                turn.sender_id,
                report.reply,
                DeliveryOptions(config=user_config, original_text=turn.text),
            )
            report.state = TurnState.DELIVERED
        except asyncio.CancelledError:
            raise
        except Exception as e:
            # The reply exists but could not be sent; nothing else to try
            logger.error(f"Delivery failed for {turn.sender_id}: {e}")
            report.error = str(e)
            report.state = TurnState.UNDELIVERED

        return self._finish(report, started)

    async def _load_user_config(self, sender_id: str) -> UserConfig:
        try:
            return await self.config_provider.get_config(sender_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Using default persona config for {sender_id}: {e}")
            return UserConfig()

    async def _classifier_history(self, sender_id: str) -> str:
        """Bounded trailing history window; empty on any read failure."""
        try:
            turns = await self.history.load_recent(sender_id, self.config.classifier_history_turns)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"History unavailable for {sender_id}: {e}")
            return ""
        return format_history(tail_within_tokens(turns, self.config.classifier_history_tokens))

    async def _send_apology(self, sender_id: str, report: TurnReport) -> None:
        try:
            await self.sender.send(sender_id, self.config.apology_message)
            report.state = TurnState.APOLOGY_SENT
            report.reply = self.config.apology_message
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if isinstance(e, DeliveryError):
                logger.error(f"Could not deliver apology to {sender_id}: {e}")
            else:
                logger.error(f"Apology send raised for {sender_id}: {e}", exc_info=True)
            report.state = TurnState.UNDELIVERED

    def _finish(self, report: TurnReport, started: float) -> TurnReport:
        report.duration_seconds = round(time.monotonic() - started, 3)
        logger.info(
            f"Turn for {report.sender_id} finished: {report.state} "
            f"(keywords={report.keywords or '[]'}, fallback={report.used_fallback}, "
            f"{report.duration_seconds}s)"
        )
        return report
