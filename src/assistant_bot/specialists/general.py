"""
General conversation specialist.

The fallback for turns no domain specialist handled. It is the only path
that writes to the conversation history: small talk is remembered, task
actions are not. Its failures propagate so the orchestrator sends the
apology. A failure to record history is logged and the reply still goes out.
"""
import asyncio
import logging

from assistant_bot.core.errors import CompletionError
from assistant_bot.core.models import Handled, UserContext
from assistant_bot.database.history import HistoryStore, format_history
from assistant_bot.integrations.completion import Completer, CompletionMode, format_now
from assistant_bot.orchestration.persona import FORMATTING_RULES, language_rule

logger = logging.getLogger(__name__)

GENERAL_PROMPT = """===[SYSTEM: current date/time {now}]===
You are a personal assistant. Your identity:
- Name: {agent_name}
- Gender: {agent_gender}
- Personality: {personality}

You are talking to {user_nickname}.

### YOUR MISSION (GENERALIST) ###
Chat, answer general questions, thank, and be good company.

### PROHIBITIONS (HIGHEST PRIORITY) ###
1. You have NO technical tools here.
2. NEVER say you scheduled, created a task, recorded money or saved files. If the user asked for that and it landed here, say you did not understand and ask them to rephrase.
3. NEVER invent data that is not in the history.

### REMINDER CONTINUITY ###
If the assistant's last message in the history offered a reminder and the user said yes, reply positively and confirmatively.

### CONVERSATION HISTORY ###
{history}

Stay in character and answer the user's latest message.

{formatting}

{language}"""


class GeneralSpecialist:
    """Persona-voiced small talk with conversation memory."""

    keyword = "general"

    def __init__(self, completer: Completer, history: HistoryStore, history_limit: int = 10):
        self.completer = completer
        self.history = history
        self.history_limit = history_limit

    async def run(self, context: UserContext) -> Handled:
        """
        Reply conversationally and record the exchange in history.

        Raises:
            CompletionError: If the completion fails or returns nothing.
        """
        config = context.config
        turns = await self.history.load_recent(context.sender_id, self.history_limit)

        system_prompt = GENERAL_PROMPT.format(
            now=format_now(config.timezone),
            agent_name=config.agent_name,
            agent_gender=config.agent_gender,
            personality=config.personality_text(),
            user_nickname=context.user_nickname,
            history=format_history(turns) or "(no previous messages)",
            formatting=FORMATTING_RULES,
            language=language_rule(config.language),
        )

        reply = await self.completer.complete(system_prompt, context.message, CompletionMode.QUALITY)
        if not reply or not reply.strip():
            raise CompletionError("General conversation returned an empty reply")
        reply = reply.strip()

        try:
            await self.history.append_turn(context.sender_id, context.message, reply)
            logger.debug(f"[general] recorded exchange for {context.sender_id}")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[general] failed to record history for {context.sender_id}: {e}")
        return Handled(text=reply)
