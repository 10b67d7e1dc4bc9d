"""
Text-to-speech via ElevenLabs.

Produces OGG/Opus files that Telegram plays as voice notes. The caller owns
the returned file and deletes it after upload.

Requires ELEVENLABS_API_KEY (ELEVEN_LABS_API_KEY is accepted too).
"""
import asyncio
import inspect
import logging
import os
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

from dotenv import load_dotenv
from elevenlabs import VoiceSettings

from assistant_bot.core.config import AssistantConfig

load_dotenv()

if TYPE_CHECKING:
    from elevenlabs.client import AsyncElevenLabs

logger = logging.getLogger(__name__)

DEFAULT_STABILITY = 0.5
DEFAULT_SIMILARITY_BOOST = 0.75


class ElevenLabsSynthesizer:
    """
    Synthesizes speech with the ElevenLabs text-to-speech API.

    Attributes:
        client: AsyncElevenLabs client
        model_id: TTS model (multilingual by default)
        output_format: ElevenLabs output format; must be an Opus format
        default_voice_id: Voice used when the caller passes none

    Example:
        synthesizer = ElevenLabsSynthesizer(config=config)
        path = await synthesizer.synthesize("Tudo certo!", "voice-id")
        ...
        path.unlink()
    """

    def __init__(
        self,
        config: Optional[AssistantConfig] = None,
        api_key: Optional[str] = None,
        client: Optional["AsyncElevenLabs"] = None,
        output_dir: Optional[Path] = None,
    ):
        """
        Initialize the synthesizer.

        Raises:
            ValueError: If no client is given and no API key is configured.
        """
        config = config or AssistantConfig()
        if client is None:
            api_key = api_key or os.getenv("ELEVENLABS_API_KEY") or os.getenv("ELEVEN_LABS_API_KEY")
            if not api_key:
                raise ValueError("ELEVENLABS_API_KEY is not set")
            from elevenlabs.client import AsyncElevenLabs
            client = AsyncElevenLabs(api_key=api_key)

        self.client = client
        self.model_id = config.tts_model
        self.output_format = config.tts_output_format
        self.default_voice_id = config.default_voice_id
        self.timeout = config.tts_timeout_seconds
        self.output_dir = output_dir

    async def synthesize(self, text: str, voice_id: Optional[str]) -> Path:
        """
        Render text to a temporary .ogg file.

        Raises:
            ValueError: If no voice id is available.
            RuntimeError: If the API returns no audio.
        """
        voice_id = voice_id or self.default_voice_id
        if not voice_id:
            raise ValueError("No ElevenLabs voice id configured")

        audio = await asyncio.wait_for(self._collect(text, voice_id), timeout=self.timeout)
        if not audio:
            raise RuntimeError("ElevenLabs returned no audio")

        fd, name = tempfile.mkstemp(suffix=".ogg", dir=self.output_dir)
        with os.fdopen(fd, "wb") as f:
            f.write(audio)
        logger.info(f"Synthesized {len(audio)} bytes of speech with voice {voice_id}")
        return Path(name)

    async def _collect(self, text: str, voice_id: str) -> bytes:
        stream: Any = self.client.text_to_speech.convert(
            voice_id=voice_id,
            text=text,
            model_id=self.model_id,
            output_format=self.output_format,
            voice_settings=VoiceSettings(
                stability=DEFAULT_STABILITY,
                similarity_boost=DEFAULT_SIMILARITY_BOOST,
            ),
        )
        # SDK releases differ on whether convert() must be awaited first
        if inspect.isawaitable(stream):
            stream = await stream

        chunks = []
        async for chunk in stream:
            if chunk:
                chunks.append(chunk)
        return b"".join(chunks)
