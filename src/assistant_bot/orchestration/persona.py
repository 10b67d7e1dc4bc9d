"""
Persona rendering.

Specialists and the classifier work in a fixed working language and produce
technical confirmations. This step turns those into the final user-facing
message: the configured persona's voice, chat-friendly formatting, and above
all the configured output language, whatever language the inputs used.
"""
import json
import logging
from typing import Any

from assistant_bot.core.errors import CompletionError, RenderingError
from assistant_bot.core.models import UserConfig
from assistant_bot.integrations.completion import Completer, CompletionMode

logger = logging.getLogger(__name__)

FORMATTING_RULES = """### FORMATTING RULES (CHAT) ###
1. Bold: ONE asterisk on each side (*text*). Never two.
2. Italic: underscores (_text_).
3. Strikethrough: tildes (~text~).
4. Monospace: triple backticks, only for code.
5. Be concise but useful, and stay in character."""


def language_rule(language: str) -> str:
    """Hard output-language block appended to every user-facing prompt."""
    return f"""===================================================
MANDATORY OUTPUT LANGUAGE: "{language}"
===================================================
- Write the whole reply in {language}.
- IGNORE the language of the user's message and of any text quoted above.
- IGNORE the fact that these instructions are written in English.
- Translate facts, names of actions and confirmations into {language}."""


def persona_block(config: UserConfig, user_nickname: str) -> str:
    return f"""===[AGENT IDENTITY]===
Name: {config.agent_name}
Gender: {config.agent_gender}
Personality: {config.personality_text()}
User: {user_nickname}"""


class PersonaRenderer:
    """Produces persona-voiced, language-correct text via the quality model."""

    def __init__(self, completer: Completer):
        self.completer = completer

    async def render(
        self,
        instruction: str,
        user_message: str,
        config: UserConfig,
        user_nickname: str = "",
    ) -> str:
        """
        Render a technical instruction as the persona's reply.

        Args:
            instruction: What the reply must convey (e.g. 'Confirm the action: ...')
            user_message: The user's turn text, for conversational context
            config: Persona configuration
            user_nickname: How to address the user

        Raises:
            RenderingError: If the completion call fails or returns nothing.
        """
        system_prompt = f"""{persona_block(config, user_nickname or config.user_nickname or "")}

===[YOUR SPECIFIC TASK]===
{instruction}

{FORMATTING_RULES}

{language_rule(config.language)}"""
        return await self._complete(system_prompt, user_message)

    async def render_payload(
        self,
        payload: dict[str, Any],
        user_message: str,
        config: UserConfig,
        user_nickname: str = "",
    ) -> str:
        """Render a structured specialist result as the fact to confirm."""
        fact = json.dumps(payload, ensure_ascii=False, default=str)
        instruction = (
            "Confirm to the user the result described by this structured record "
            f"(fields: task, status, action, detail): {fact}"
        )
        return await self.render(instruction, user_message, config, user_nickname)

    async def fuse(
        self,
        responses: list[str],
        user_message: str,
        config: UserConfig,
        user_nickname: str = "",
    ) -> str:
        """
        Merge several specialist replies into one coherent message.

        Completed actions are confirmed first; clarification questions and
        generic comments come after them. Output language is enforced.
        """
        numbered = "\n".join(
            f'[Specialist {i + 1}]: "{response}"' for i, response in enumerate(responses)
        )
        system_prompt = f"""You are the SUMMARIZER of the assistant {config.agent_name}.

### GOAL
Merge the technical replies from the specialists below into ONE cohesive, fluent, natural message.

### REPLIES RECEIVED
{numbered}

### RULES
1. Smart merge: if [Specialist 1] said "Income recorded" and [Specialist 2] said "Goal updated", say "I recorded the income and also updated your goal!".
2. Action priority: every action a specialist completed MUST be confirmed, even if another specialist only asked a clarification question. Put confirmations first, questions after.
3. No redundancy: never repeat the same fact twice.
4. Personality: keep the tone: {config.personality_text()}.

{FORMATTING_RULES}

{language_rule(config.language)}

Write the unified reply now."""
        return await self._complete(system_prompt, user_message or "Merge the replies above.")

    async def _complete(self, system_prompt: str, user_message: str) -> str:
        try:
            text = await self.completer.complete(system_prompt, user_message, CompletionMode.QUALITY)
        except CompletionError as e:
            raise RenderingError(f"Persona rendering failed: {e}") from e
        if not text or not text.strip():
            raise RenderingError("Persona rendering returned an empty message")
        return text.strip()
