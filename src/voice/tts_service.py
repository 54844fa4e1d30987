"""Waves TTS service — text-to-speech via Smallest.ai with voice fallback."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

try:
    from smallestai import AsyncWavesClient

    SMALLESTAI_AVAILABLE = True
except ImportError:
    SMALLESTAI_AVAILABLE = False

from src.errors import SynthesisError

if TYPE_CHECKING:
    from src.config import Settings

logger = logging.getLogger("sanka")


class TTSService:
    """Async text-to-speech that walks a prioritized voice list.

    One Waves client is built per voice; :meth:`synthesize` returns the
    audio of the first voice that succeeds.
    """

    def __init__(self, settings: "Settings") -> None:
        if not SMALLESTAI_AVAILABLE:
            raise ImportError(
                "smallestai is required for TTS. Install with: pip install smallestai"
            )
        if not settings.smallest_api_key:
            raise ValueError("SMALLEST_API_KEY is not set")

        self.voices = settings.voices
        self.clients = {
            voice: AsyncWavesClient(
                api_key=settings.smallest_api_key,
                model=settings.voice_model,
                sample_rate=settings.voice_sample_rate,
                voice_id=voice,
            )
            for voice in self.voices
        }

    async def synthesize(self, text: str) -> tuple[bytes, str]:
        """Return ``(audio_bytes, voice_id)`` for the first voice that works."""
        for voice in self.voices:
            try:
                audio = await self.clients[voice].synthesize(text)
            except Exception as e:
                logger.warning("TTS voice %r failed: %s", voice, str(e)[:200])
                continue
            if audio:
                return audio, voice
            logger.warning("TTS voice %r returned no audio", voice)
        raise SynthesisError(self.voices)
