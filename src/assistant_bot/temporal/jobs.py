"""
Periodic background jobs.

The daemon calls ``run_once`` on a fixed interval:

- due reminders are claimed from the queue and delivered through the sender;
- recurring transactions due today are posted to the ledger (at most once a
  day per entry, tracked in the database).
"""
import asyncio
import calendar
import logging
from datetime import date, datetime
from typing import Optional

import pytz

from assistant_bot.core.errors import DeliveryError
from assistant_bot.database.records import LedgerStore, ReminderStore
from assistant_bot.integrations.completion import now_in_timezone
from assistant_bot.integrations.sender import Sender

logger = logging.getLogger(__name__)

REMINDER_BATCH_SIZE = 15


def is_last_day_of_month(day: date) -> bool:
    return day.day == calendar.monthrange(day.year, day.month)[1]


class BackgroundJobs:
    """Reminder delivery and recurring-transaction posting."""

    def __init__(
        self,
        reminders: ReminderStore,
        ledger: LedgerStore,
        sender: Sender,
        timezone: str = "America/Sao_Paulo",
    ):
        self.reminders = reminders
        self.ledger = ledger
        self.sender = sender
        self.timezone = timezone
        self.stats = {"reminders_sent": 0, "reminders_failed": 0, "recurring_posted": 0}

    async def deliver_due_reminders(self, now: Optional[datetime] = None) -> int:
        """Send every due reminder; returns how many were delivered."""
        now = now or datetime.now(pytz.utc)
        due = await self.reminders.claim_due(now, REMINDER_BATCH_SIZE)
        delivered = 0
        for reminder in due:
            try:
                await self.sender.send(reminder.sender_id, f"🔔 Reminder: {reminder.message}")
            except DeliveryError as e:
                logger.warning(f"Reminder {reminder.id} for {reminder.sender_id} not delivered: {e}")
                await self.reminders.mark_failed(reminder.id, str(e))
                self.stats["reminders_failed"] += 1
                continue
            await self.reminders.mark_sent(reminder.id)
            delivered += 1
        if due:
            logger.info(f"Reminders: {delivered}/{len(due)} delivered")
        self.stats["reminders_sent"] += delivered
        return delivered

    async def post_recurring(self, today: Optional[date] = None) -> int:
        """Post recurring transactions due today; returns how many were posted."""
        today = today or now_in_timezone(self.timezone).date()
        posted = await self.ledger.post_due_recurring(today, is_last_day_of_month(today))
        for sender_id, tx in posted:
            logger.info(f"Posted recurring {tx.kind} of {tx.amount} for {sender_id}")
        self.stats["recurring_posted"] += len(posted)
        return len(posted)

    async def run_once(self) -> None:
        """Run every job once; a failing job is logged and does not stop the others."""
        for job in (self.deliver_due_reminders, self.post_recurring):
            try:
                await job()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Background job {job.__name__} failed: {e}")
