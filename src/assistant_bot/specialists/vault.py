"""
Vault specialist.

Stores personal records (logins, bank details, documents, notes) and
retrieves them on request. Content is encrypted at rest by VaultStore.
"""
import logging
import re
from typing import Any

from assistant_bot.core.models import Declined, SpecialistOutcome, UserContext
from assistant_bot.database.records import VaultEntry, VaultStore
from assistant_bot.integrations.completion import Completer
from assistant_bot.orchestration.persona import PersonaRenderer
from assistant_bot.specialists.base import ExtractionSpecialist

logger = logging.getLogger(__name__)

CATEGORIES = ("login", "bank", "document", "contact", "note", "other")

EXTRACTION_PROMPT = """You manage the user's personal vault of records. Return ONLY JSON.

ACTIONS:
- "save": store or update a record. "title" names it ("Netflix", "Nubank account").
  "content" is an object with the fields given ({"user": "...", "password": "..."}).
- "search": the user wants a stored record back; "title" is the search term.
- "delete": remove a record by "title".
- "list": show what is stored (titles only).
- "none": nothing vault-related.

"category": one of login, bank, document, contact, note, other.

JSON: {"action": "...", "title": "...", "category": "...", "content": {}}"""

SENSITIVE_FIELD = re.compile(r"(senha|pass|key|chave|token|pin|cvv|secret)", re.IGNORECASE)


def has_sensitive_fields(content: dict[str, Any]) -> bool:
    return any(SENSITIVE_FIELD.search(str(k)) for k in content)


def _render(entry: VaultEntry) -> str:
    fields = "\n".join(f"  {k}: {v}" for k, v in entry.content.items())
    return f"{entry.title} ({entry.category})" + (f"\n{fields}" if fields else "")


class VaultSpecialist(ExtractionSpecialist):
    """Encrypted personal records."""

    keyword = "vault"

    def __init__(self, completer: Completer, persona: PersonaRenderer, vault: VaultStore):
        super().__init__(completer, persona)
        self.vault = vault

    async def run(self, context: UserContext) -> SpecialistOutcome:
        data = await self.extract(EXTRACTION_PROMPT, context)
        if not isinstance(data, dict):
            return Declined(reason="inconclusive extraction")

        action = data.get("action") or "none"
        title = (data.get("title") or "").strip()
        logger.info(f"[vault] action={action} title={title!r} for {context.sender_id}")

        if action == "save" and title:
            content = data.get("content")
            if isinstance(content, str):
                content = {"note": content}
            if not isinstance(content, dict) or not content:
                return Declined(reason="nothing to store")
            category = data.get("category") if data.get("category") in CATEGORIES else "other"
            result = await self.vault.save(context.sender_id, title, category, content)
            extra = ""
            if has_sensitive_fields(content):
                extra = "Mention that the sensitive data is stored encrypted."
            return await self.confirm(context, f'Record "{title}" {result} in the vault.', extra)

        if action == "search" and title:
            entries = await self.vault.search(context.sender_id, title)
            if not entries:
                return await self.confirm(context, f'Nothing in the vault matches "{title}".')
            return await self.confirm(
                context,
                "Vault records found:\n" + "\n".join(_render(e) for e in entries),
                "Show every field exactly as stored.",
            )

        if action == "delete" and title:
            if await self.vault.delete(context.sender_id, title):
                return await self.confirm(context, f'Record "{title}" deleted from the vault.')
            return await self.confirm(context, f'No vault record named "{title}".')

        if action == "list":
            entries = await self.vault.list_entries(context.sender_id)
            if not entries:
                return await self.confirm(context, "The vault is empty.")
            lines = "\n".join(f"- [{e.category}] {e.title}" for e in entries)
            return await self.confirm(context, f"Vault records:\n{lines}")

        return Declined(reason=f"action {action!r}")
