"""
Outbound delivery over Telegram.

Replies go out as text by default. When the user's persona config asks for
audio replies and a voice synthesizer is configured, short conversational
replies are normalized for speech and sent as voice notes instead; any
synthesis/upload failure falls back to a plain text send.
"""
import logging
import re
from collections import OrderedDict
from pathlib import Path
from typing import Any, Optional, Protocol

from assistant_bot.core.errors import DeliveryError
from assistant_bot.core.models import DeliveryOptions, UserConfig
from assistant_bot.integrations.completion import Completer, CompletionMode

logger = logging.getLogger(__name__)

# User explicitly asked for written output ("manda escrito", "in writing", ...)
ASKED_FOR_TEXT_PATTERN = re.compile(
    r"(escreva|escreve|escrito|texto|listar|lista|leia|ler|lendo|"
    r"in writing|written|write it|text me|list)",
    re.IGNORECASE,
)
BULLET_PATTERN = re.compile(r"•|- ")

MAX_KNOWN_PEERS = 1000

SPEECH_PROMPT = """You write scripts for text-to-speech narration.
Rewrite the user's text so it sounds natural when read aloud by a voice engine.

RULES:
1. Numbers and currency: spell them out ("R$ 50,00" -> "fifty reais", in the text's language).
2. Links: drop the protocol ("https://google.com" -> "google dot com", in the text's language).
3. Emojis: remove ALL emojis.
4. Formatting: remove asterisks, underscores and other markup characters.
5. Lists: turn them into flowing sentences.
Keep the original language of the text.

Return ONLY the rewritten text."""


class Sender(Protocol):
    async def send(self, sender_id: str, text: str, options: Optional[DeliveryOptions] = None) -> None: ...


class VoiceSynthesizer(Protocol):
    """Text-to-speech backend producing an OGG/Opus file."""

    async def synthesize(self, text: str, voice_id: Optional[str]) -> Path: ...


def should_send_audio(
    text: str,
    original_text: str,
    config: UserConfig,
    max_words: int = 70,
) -> bool:
    """
    Decide whether a reply should be delivered as a voice note.

    Audio only when the user opted in, the reply is short, it isn't a list
    (more than two bullet markers), and the user didn't ask for text.
    """
    if not config.send_audio:
        return False
    if len(text.split()) > max_words:
        return False
    if ASKED_FOR_TEXT_PATTERN.search(original_text or ""):
        return False
    if len(BULLET_PATTERN.findall(text)) > 2:
        return False
    return True


class TelegramSender:
    """
    Sends replies through a connected Telethon client.

    Attributes:
        client: Connected telethon.TelegramClient
        completer: Completion service used to normalize text for speech
        voice: Optional synthesizer; without it every reply is text
    """

    def __init__(
        self,
        client: Any,
        completer: Optional[Completer] = None,
        voice: Optional[VoiceSynthesizer] = None,
        audio_max_words: int = 70,
        default_voice_id: Optional[str] = None,
        max_peers: int = MAX_KNOWN_PEERS,
    ):
        self.client = client
        self.completer = completer
        self.voice = voice
        self.audio_max_words = audio_max_words
        self.default_voice_id = default_voice_id
        self._peers: OrderedDict[str, Any] = OrderedDict()
        self._max_peers = max_peers

    def register_peer(self, sender_id: str, peer: Any) -> None:
        """Remember the Telegram entity to reply to for a sender id (LRU bounded)."""
        if sender_id in self._peers:
            self._peers.move_to_end(sender_id)
        elif len(self._peers) >= self._max_peers:
            self._peers.popitem(last=False)
        self._peers[sender_id] = peer

    @property
    def known_peer_count(self) -> int:
        return len(self._peers)

    def _resolve_peer(self, sender_id: str) -> Any:
        """
        Registered entity for a sender, else its numeric Telegram id.

        Raises:
            DeliveryError: If the sender is unknown and not numeric.
        """
        peer = self._peers.get(sender_id)
        if peer is not None:
            self._peers.move_to_end(sender_id)
            return peer
        try:
            return int(sender_id)
        except (TypeError, ValueError) as e:
            raise DeliveryError(f"No Telegram peer known for sender {sender_id!r}") from e

    async def send(self, sender_id: str, text: str, options: Optional[DeliveryOptions] = None) -> None:
        """
        Deliver a reply.

        Raises:
            DeliveryError: If the peer cannot be resolved or the text send fails.
        """
        options = options or DeliveryOptions()
        peer = self._resolve_peer(sender_id)

        if self.voice and self.completer and should_send_audio(
            text, options.original_text, options.config, self.audio_max_words
        ):
            try:
                await self._send_voice(peer, text, options.config)
                logger.info(f"Sent voice reply to {sender_id}")
                return
            except Exception as e:
                logger.warning(f"Voice reply failed for {sender_id}, falling back to text: {e}")

        try:
            await self.client.send_message(peer, text)
        except Exception as e:
            raise DeliveryError(f"Failed to send message to {sender_id}: {e}") from e
        logger.info(f"Sent text reply to {sender_id} ({len(text)} chars)")

    async def _send_voice(self, peer: Any, text: str, config: UserConfig) -> None:
        speech_text = await self.completer.complete(SPEECH_PROMPT, text, CompletionMode.FAST)
        voice_id = config.voice_id or self.default_voice_id
        audio_path = await self.voice.synthesize(speech_text, voice_id)
        try:
            await self.client.send_file(peer, str(audio_path), voice_note=True)
        finally:
            audio_path.unlink(missing_ok=True)
