#!/usr/bin/env python3
"""
Assistant Daemon.
Long-running service that receives Telegram messages, coalesces bursts per
sender and answers each turn through the specialist pipeline.
"""
import argparse
import asyncio
import logging
import os
import signal
from datetime import datetime
from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from telethon import TelegramClient, events

from assistant_bot.core.config import AssistantConfig, load_config
from assistant_bot.core.identity import normalize_sender_id
from assistant_bot.core.models import Turn, TurnReport, TurnState
from assistant_bot.database.history import PostgresHistoryStore
from assistant_bot.database.init import init_database
from assistant_bot.database.pool import close_pool
from assistant_bot.database.records import LedgerStore, ReminderStore
from assistant_bot.database.user_config import PostgresConfigProvider
from assistant_bot.integrations.completion import CompletionService
from assistant_bot.integrations.sender import TelegramSender
from assistant_bot.integrations.voice import ElevenLabsSynthesizer
from assistant_bot.orchestration.aggregator import ResponseAggregator
from assistant_bot.orchestration.classifier import IntentClassifier
from assistant_bot.orchestration.dispatcher import SpecialistDispatcher
from assistant_bot.orchestration.orchestrator import Orchestrator
from assistant_bot.orchestration.persona import PersonaRenderer
from assistant_bot.specialists import GeneralSpecialist, build_registry
from assistant_bot.temporal.jobs import BackgroundJobs
from assistant_bot.temporal.message_buffer import MessageBuffer

console = Console()
logger = logging.getLogger(__name__)

# Placeholders for media that arrives without a caption
MEDIA_PLACEHOLDERS = {
    "photo": "[Photo]",
    "video": "[Video]",
    "voice": "[Voice message]",
    "sticker": "[Sticker]",
    "document": "[File]",
}


def describe_message(event) -> str:
    """Text to buffer for an incoming event, with a placeholder for bare media."""
    text = event.text or ""
    if text.strip():
        return text
    message = event.message
    if getattr(message, "voice", None):
        return MEDIA_PLACEHOLDERS["voice"]
    if getattr(message, "sticker", None):
        return MEDIA_PLACEHOLDERS["sticker"]
    if getattr(message, "photo", None):
        return MEDIA_PLACEHOLDERS["photo"]
    if getattr(message, "video", None):
        return MEDIA_PLACEHOLDERS["video"]
    if getattr(message, "document", None):
        return MEDIA_PLACEHOLDERS["document"]
    return ""


class AssistantDaemon:
    """Main daemon that wires the buffer, orchestrator and Telegram client."""

    def __init__(self, config: Optional[AssistantConfig] = None):
        self.config = config
        self.client = None
        self.sender: Optional[TelegramSender] = None
        self.orchestrator: Optional[Orchestrator] = None
        self.message_buffer: Optional[MessageBuffer] = None
        self.jobs: Optional[BackgroundJobs] = None
        self.running = False
        self.stats = {
            "messages_received": 0,
            "turns_processed": 0,
            "replies_delivered": 0,
            "apologies_sent": 0,
            "undelivered": 0,
            "fallback_turns": 0,
            "started_at": None,
        }

    async def initialize(self) -> None:
        """Initialize all components."""
        console.print("[bold blue]Initializing Assistant Daemon...[/bold blue]")

        if self.config is None:
            self.config = load_config()
        console.print("  [green]✓[/green] Config loaded")

        try:
            await init_database()
        except RuntimeError as e:
            console.print(f"[red bold]Database initialization failed: {e}[/red bold]")
            raise
        console.print("  [green]✓[/green] Database ready")

        api_id = os.getenv("TELEGRAM_API_ID")
        api_hash = os.getenv("TELEGRAM_API_HASH")
        if not api_id or not api_hash:
            raise RuntimeError("TELEGRAM_API_ID and TELEGRAM_API_HASH must be set")
        session = os.getenv("TELEGRAM_SESSION", "assistant_bot")
        self.client = TelegramClient(session, int(api_id), api_hash)
        await self.client.start()
        me = await self.client.get_me()
        console.print(f"  [green]✓[/green] Connected as @{me.username or me.id}")

        completer = CompletionService(self.config)
        persona = PersonaRenderer(completer)
        history = PostgresHistoryStore(max_messages=self.config.history_max_turns)

        reminders = ReminderStore()
        registry = build_registry(
            completer, persona, history, enabled=self.config.enabled_specialists, reminders=reminders
        )
        console.print(f"  [green]✓[/green] Specialists: {', '.join(registry) or '(none)'}")

        # Voice replies are optional - requires ELEVENLABS_API_KEY
        try:
            voice = ElevenLabsSynthesizer(config=self.config)
            console.print("  [green]✓[/green] Voice replies enabled (ElevenLabs)")
        except ValueError as e:
            voice = None
            console.print(f"  [yellow]![/yellow] Voice replies disabled: {e}")

        self.sender = TelegramSender(
            self.client,
            completer=completer,
            voice=voice,
            audio_max_words=self.config.audio_max_words,
            default_voice_id=self.config.default_voice_id,
        )
        self.orchestrator = Orchestrator(
            classifier=IntentClassifier(completer),
            dispatcher=SpecialistDispatcher(registry, timeout=self.config.specialist_timeout_seconds),
            aggregator=ResponseAggregator(
                persona,
                GeneralSpecialist(completer, history, history_limit=self.config.history_max_turns),
            ),
            sender=self.sender,
            config_provider=PostgresConfigProvider(),
            history=history,
            config=self.config,
        )

        self.message_buffer = MessageBuffer(
            quiet_period=self.config.quiet_period_seconds,
            flush_callback=self._process_turn,
            serialize_per_sender=self.config.serialize_per_sender,
        )
        console.print(f"  [green]✓[/green] Message buffer ({self.config.quiet_period_seconds}s quiet period)")

        self.jobs = BackgroundJobs(reminders, LedgerStore(), self.sender)
        console.print(f"  [green]✓[/green] Background jobs (every {self.config.jobs_interval_seconds}s)")

        self._register_handlers()
        console.print("[bold green]Initialization complete![/bold green]")

    async def _process_turn(self, turn: Turn) -> TurnReport:
        """Flush callback: run the orchestrator and record stats."""
        report = await self.orchestrator.handle_turn(turn)
        self.stats["turns_processed"] += 1
        if report.used_fallback:
            self.stats["fallback_turns"] += 1
        if report.state == TurnState.DELIVERED:
            self.stats["replies_delivered"] += 1
        elif report.state == TurnState.APOLOGY_SENT:
            self.stats["apologies_sent"] += 1
        else:
            self.stats["undelivered"] += 1
        return report

    def _register_handlers(self) -> None:
        """Register Telegram event handlers."""

        @self.client.on(events.NewMessage(incoming=True))
        async def handle_incoming(event):
            """Handle incoming messages."""
            if not event.is_private:
                return

            sender = await event.get_sender()
            if not sender or getattr(sender, "bot", False):
                return

            phone = getattr(sender, "phone", None)
            sender_id = normalize_sender_id(phone) if phone else str(sender.id)
            display_name = sender.first_name or sender.username or "there"

            text = describe_message(event)
            if not text.strip():
                return

            self.sender.register_peer(sender_id, sender)
            self.stats["messages_received"] += 1

            await self.message_buffer.enqueue(
                sender_id,
                display_name,
                text,
                int(event.date.timestamp()),
                message_id=event.id,
            )
            logger.debug(
                f"Buffered message from {display_name} ({sender_id}), "
                f"{self.message_buffer.get_buffer_size(sender_id)} pending"
            )

    def _create_status_table(self) -> Table:
        """Create a status table for display."""
        table = Table(title="Assistant Status")
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="green")

        if self.stats["started_at"]:
            uptime = datetime.now() - self.stats["started_at"]
            table.add_row("Uptime", str(uptime).split('.')[0])

        table.add_row("Messages Received", str(self.stats["messages_received"]))
        table.add_row("Turns Processed", str(self.stats["turns_processed"]))
        table.add_row("Replies Delivered", str(self.stats["replies_delivered"]))
        table.add_row("General Fallbacks", str(self.stats["fallback_turns"]))
        table.add_row("Apologies Sent", str(self.stats["apologies_sent"]))
        table.add_row("Undelivered", str(self.stats["undelivered"]))

        if self.message_buffer:
            table.add_row("Pending Buffers", str(len(self.message_buffer.get_all_pending_sender_ids())))
            table.add_row("Turns In Flight", str(self.message_buffer.in_flight_count))

        if self.jobs:
            table.add_row("Reminders Sent", str(self.jobs.stats["reminders_sent"]))
            table.add_row("Recurring Posted", str(self.jobs.stats["recurring_posted"]))

        return table

    async def run(self) -> None:
        """Run the daemon."""
        self.running = True
        self.stats["started_at"] = datetime.now()

        console.print(Panel.fit(
            "[bold green]Assistant Daemon Started[/bold green]\n"
            "Press Ctrl+C to stop",
            title="Status"
        ))

        check_interval = 60 * 5
        last_check = datetime.now()
        last_jobs_run: Optional[datetime] = None

        try:
            while self.running:
                if last_jobs_run is None or (
                    (datetime.now() - last_jobs_run).total_seconds() >= self.config.jobs_interval_seconds
                ):
                    await self.jobs.run_once()
                    last_jobs_run = datetime.now()

                if (datetime.now() - last_check).total_seconds() >= check_interval:
                    console.print(self._create_status_table())
                    last_check = datetime.now()

                await asyncio.sleep(1)

        except asyncio.CancelledError:
            console.print("\n[yellow]Shutdown requested...[/yellow]")
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        """Gracefully shutdown the daemon."""
        self.running = False
        console.print("[yellow]Shutting down...[/yellow]")

        # Pending buffers are answered before the client goes away
        if self.message_buffer:
            pending = self.message_buffer.get_all_pending_sender_ids()
            if pending:
                console.print(f"[cyan]Flushing {len(pending)} pending buffer(s)...[/cyan]")
                await self.message_buffer.flush_all()
            await self.message_buffer.wait_idle()
            console.print("[green]Message buffers drained[/green]")

        try:
            await close_pool()
            console.print("[green]Database connections closed[/green]")
        except Exception as e:
            console.print(f"[yellow]Warning: Error closing database pool: {e}[/yellow]")

        if self.client:
            await self.client.disconnect()
            console.print("[green]Disconnected from Telegram[/green]")

        console.print(Panel.fit(
            f"[bold]Final Stats[/bold]\n"
            f"Messages Received: {self.stats['messages_received']}\n"
            f"Turns Processed: {self.stats['turns_processed']}\n"
            f"Replies Delivered: {self.stats['replies_delivered']}\n"
            f"General Fallbacks: {self.stats['fallback_turns']}\n"
            f"Apologies Sent: {self.stats['apologies_sent']}\n"
            f"Undelivered: {self.stats['undelivered']}",
            title="Session Summary"
        ))


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    # Telethon is chatty at INFO
    logging.getLogger("telethon").setLevel(logging.WARNING)


async def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Assistant Daemon")
    parser.add_argument(
        '--quiet-period',
        type=float,
        default=None,
        help='Override the debounce quiet period in seconds',
    )
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable debug logging')
    args = parser.parse_args()

    setup_logging(args.verbose)

    config = load_config()
    if args.quiet_period is not None:
        config = config.model_copy(update={"quiet_period_seconds": args.quiet_period})

    daemon = AssistantDaemon(config=config)

    loop = asyncio.get_running_loop()

    def signal_handler():
        daemon.running = False

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await daemon.initialize()
        await daemon.run()
    except KeyboardInterrupt:
        pass
    except Exception as e:
        console.print(f"[red bold]Fatal error: {e}[/red bold]")
        raise


def cli() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    cli()
