"""
Finance specialist.

Records one-off and monthly recurring income/expenses, investment
contributions and the user's income/spending-limit settings, and reports the
current month's balance. Amounts are accepted in Brazilian ("R$ 1.234,56")
or US ("$1,234.56") notation.
"""
import logging
import re
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from assistant_bot.core.models import Declined, SpecialistOutcome, UserContext
from assistant_bot.database.records import LedgerStore, RecurringTransaction, Transaction
from assistant_bot.integrations.completion import Completer, now_in_timezone
from assistant_bot.orchestration.persona import PersonaRenderer
from assistant_bot.specialists.base import ExtractionSpecialist

logger = logging.getLogger(__name__)

EXTRACTION_PROMPT = """You are a Finance Specialist. Analyze the message and extract the data as JSON.

INTENTS ("intent"):
- "add_transaction": one-off expenses or income ("I spent 170", "I received my salary").
- "add_recurring": fixed monthly bills or income ("rent is 1500 every 5th", "Netflix 55 monthly").
- "add_investment": money put into an asset ("I invested 1000 in Tesouro Selic").
- "list_investments": the user wants to see their investments.
- "configure_settings": monthly income, spending limit or current balance ("my salary is 5000", "my limit is 3000", "I have 2000 in the account").
- "list_report": the user wants to see this month's totals or balance.
- "none": the message has no financial content.

EXTRACTION RULES:
1. AMOUNT, TYPE and DATE are the priority.
2. DESCRIPTION: capture what was paid or received, as specific as possible.
3. "I spent 170" -> "add_transaction" with type "expense".
4. "day_of_month" only for "add_recurring": the day the bill or income repeats (1-31).
5. For "configure_settings" fill only the fields the user stated.

MANDATORY ANSWER (pure JSON):
{
  "intent": "...",
  "amount": "value as written",
  "type": "income or expense",
  "description": "what it was",
  "category": "category if mentioned",
  "date": "YYYY-MM-DD",
  "day_of_month": null,
  "asset_name": "investment asset or null",
  "monthly_income": null,
  "spending_limit": null,
  "current_balance": null
}"""


_MONEY_CHARS = re.compile(r"[^0-9,.\-]")


def parse_money(raw) -> Optional[Decimal]:
    """
    Parse a money amount.

    Numbers are taken as-is; strings may use Brazilian or US notation.

    Returns:
        Positive Decimal with two places, or None if not a valid amount.
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float, Decimal)):
        try:
            value = abs(Decimal(str(raw))).quantize(Decimal("0.01"))
        except InvalidOperation:
            return None
        return value if value > 0 else None

    text = _MONEY_CHARS.sub("", str(raw))
    if not text:
        return None

    if "," in text and "." in text:
        # Whichever separator comes last is the decimal one
        if text.rfind(",") > text.rfind("."):
            text = text.replace(".", "").replace(",", ".")
        else:
            text = text.replace(",", "")
    elif "," in text:
        head, _, tail = text.rpartition(",")
        if len(tail) in (1, 2):
            text = head.replace(",", "") + "." + tail
        else:
            text = text.replace(",", "")
    elif text.count(".") > 1 or (text.count(".") == 1 and len(text.rpartition(".")[2]) == 3):
        text = text.replace(".", "")

    try:
        value = abs(Decimal(text)).quantize(Decimal("0.01"))
    except InvalidOperation:
        return None
    return value if value > 0 else None


def parse_date(raw: Optional[str], fallback: date) -> date:
    if not raw:
        return fallback
    try:
        return date.fromisoformat(str(raw)[:10])
    except ValueError:
        return fallback


def format_money(value: Decimal) -> str:
    return f"{value:,.2f}"


def parse_day_of_month(raw: Any, fallback: int) -> int:
    try:
        day = int(raw)
    except (TypeError, ValueError):
        return fallback
    return day if 1 <= day <= 31 else fallback


class FinanceSpecialist(ExtractionSpecialist):
    """Transactions, recurring entries, investments, settings and monthly balance."""

    keyword = "finance"

    def __init__(self, completer: Completer, persona: PersonaRenderer, ledger: LedgerStore):
        super().__init__(completer, persona)
        self.ledger = ledger

    async def run(self, context: UserContext) -> SpecialistOutcome:
        data = await self.extract(EXTRACTION_PROMPT, context)
        if not isinstance(data, dict):
            return Declined(reason="inconclusive extraction")

        intent = data.get("intent") or "none"
        logger.info(f"[finance] intent={intent} amount={data.get('amount')!r} for {context.sender_id}")
        today = now_in_timezone(context.config.timezone).date()
        kind = "income" if data.get("type") == "income" else "expense"

        if intent == "add_transaction":
            amount = parse_money(data.get("amount"))
            if amount is None:
                return Declined(reason="no amount")
            tx = await self.ledger.add_transaction(
                context.sender_id,
                Transaction(
                    kind=kind,
                    amount=amount,
                    category=data.get("category") or None,
                    description=data.get("description") or None,
                    occurred_on=parse_date(data.get("date"), today),
                ),
            )
            label = "Income" if tx.kind == "income" else "Expense"
            fact = f"{label} of {format_money(tx.amount)} recorded"
            if tx.description:
                fact += f" ({tx.description})"
            fact += f" on {tx.occurred_on.isoformat()}."
            return await self.confirm(context, fact)

        if intent == "add_recurring":
            amount = parse_money(data.get("amount"))
            if amount is None:
                return Declined(reason="no amount")
            rec = await self.ledger.add_recurring(
                context.sender_id,
                RecurringTransaction(
                    kind=kind,
                    amount=amount,
                    category=data.get("category") or None,
                    description=data.get("description") or None,
                    day_of_month=parse_day_of_month(data.get("day_of_month"), today.day),
                ),
            )
            label = "income" if rec.kind == "income" else "expense"
            fact = f"Recurring {label} of {format_money(rec.amount)}"
            if rec.description:
                fact += f" ({rec.description})"
            fact += f" scheduled for day {rec.day_of_month} of every month."
            return await self.confirm(context, fact)

        if intent == "add_investment":
            amount = parse_money(data.get("amount"))
            asset = (data.get("asset_name") or data.get("description") or "").strip()
            if amount is None or not asset:
                return Declined(reason="no amount or asset")
            total = await self.ledger.add_investment(context.sender_id, asset, amount, today)
            fact = (
                f"Investment of {format_money(amount)} in {asset} recorded. "
                f"Total in {asset}: {format_money(total.total)} over {total.contributions} contribution(s)."
            )
            return await self.confirm(context, fact)

        if intent == "list_investments":
            holdings = await self.ledger.list_investments(context.sender_id)
            if not holdings:
                return await self.confirm(context, "No investments recorded yet.")
            lines = "\n".join(
                f"- {h.asset_name}: {format_money(h.total)} ({h.contributions} contribution(s))"
                for h in holdings
            )
            grand_total = sum((h.total for h in holdings), Decimal("0"))
            return await self.confirm(context, f"Investments (total {format_money(grand_total)}):\n{lines}")

        if intent == "configure_settings":
            return await self._configure(context, data, today)

        if intent == "list_report":
            summary = await self.ledger.month_summary(context.sender_id, today)
            settings = await self.ledger.get_settings(context.sender_id)
            fact = (
                f"Report for {today.strftime('%Y-%m')}: income {format_money(summary.income)}, "
                f"expenses {format_money(summary.expenses)}, balance {format_money(summary.balance)} "
                f"across {summary.count} transaction(s)."
            )
            if settings.spending_limit is not None:
                remaining = settings.spending_limit - summary.expenses
                fact += (
                    f" Spending limit {format_money(settings.spending_limit)}, "
                    f"{format_money(remaining)} left."
                )
            return await self.confirm(context, fact)

        return Declined(reason=f"intent {intent!r}")

    async def _configure(self, context: UserContext, data: dict[str, Any], today: date) -> SpecialistOutcome:
        income = parse_money(data.get("monthly_income"))
        limit = parse_money(data.get("spending_limit"))
        target = parse_money(data.get("current_balance"))
        if target is None and income is None and limit is None:
            # "I have 2000 in the account" sometimes comes back as a bare amount
            target = parse_money(data.get("amount"))
        if target is None and income is None and limit is None:
            return Declined(reason="no settings")

        facts = []
        if income is not None or limit is not None:
            settings = await self.ledger.save_settings(context.sender_id, income, limit)
            if settings.monthly_income is not None:
                facts.append(f"monthly income {format_money(settings.monthly_income)}")
            if settings.spending_limit is not None:
                facts.append(f"spending limit {format_money(settings.spending_limit)}")

        if target is not None:
            current = await self.ledger.balance(context.sender_id)
            diff = target - current
            if diff != 0:
                await self.ledger.add_transaction(
                    context.sender_id,
                    Transaction(
                        kind="income" if diff > 0 else "expense",
                        amount=abs(diff),
                        category="Adjustment",
                        description="Initial balance" if current == 0 else "Manual balance adjustment",
                        occurred_on=today,
                    ),
                )
            facts.append(f"current balance {format_money(target)}")

        return await self.confirm(context, f"Finance settings updated: {', '.join(facts)}.")
