"""Voice session — streaming transcription with silence-triggered finalization.

States::

    IDLE ─start/audio→ LISTENING ─final or silence→ FINALIZING ─→ LISTENING
      ↑                                                             │
      └──────────────────────────── stop / close ───────────────────┘

At most one recognition stream is open per connection. A transcript is
finalized either when the recognizer marks a result final or when no new
interim arrives within the silence window; in the latter case the last
interim becomes the final transcript. With auto-reply enabled a canned
reply is synthesized after each finalization and recognition restarts
after a cooldown, since synthesis and recognition never share the channel.
"""

from __future__ import annotations

import asyncio
import base64
import enum
import json
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from src.errors import RecognitionStreamError, SankaError, SynthesisError
from src.voice.audio import decode_audio_payload

if TYPE_CHECKING:
    from src.voice.recognizer import RecognitionStream, RecognizerFactory
    from src.voice.tts_service import TTSService

logger = logging.getLogger("sanka")

Send = Callable[[dict[str, Any]], Awaitable[None]]

REPLY_TEMPLATE = 'done {user}, have a look. I generated a TODO app for you based on: "{transcript}"'


class VoiceState(str, enum.Enum):
    IDLE = "idle"
    LISTENING = "listening"
    FINALIZING = "finalizing"


class SpeechSession:
    def __init__(
        self,
        send: Send,
        recognizer_factory: "RecognizerFactory | None",
        tts: "TTSService | None",
        *,
        silence_timeout: float = 1.5,
        restart_delay: float = 0.5,
        auto_reply: bool = False,
        user_name: str = "friend",
    ) -> None:
        self._send = send
        self._factory = recognizer_factory
        self.tts = tts
        self.silence_timeout = silence_timeout
        self.restart_delay = restart_delay
        self.auto_reply = auto_reply
        self.user_name = user_name

        self.state = VoiceState.IDLE
        self._stream: "RecognitionStream | None" = None
        self._last_interim = ""
        self._silence_final: str | None = None
        self._silence_task: asyncio.Task | None = None
        self._restart_task: asyncio.Task | None = None
        self._closed = False

    @property
    def recognition_active(self) -> bool:
        return self._stream is not None

    # -- inbound events -----------------------------------------------------

    async def handle(self, raw: str) -> None:
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            data = None
        if not isinstance(data, dict):
            await self._send({"error": "bad_message", "message": "invalid json"})
            return

        event = data.get("event")
        if event == "start":
            await self._guarded(self.start())
        elif event == "audio":
            await self._guarded(self.feed_audio(data.get("audio")))
        elif event == "stop":
            await self._guarded(self.stop())
        elif event == "tts":
            await self._guarded(self.speak(data.get("text")))
        else:
            await self._send({"echo_server": data})

    async def handle_audio(self, chunk: bytes) -> None:
        """Binary frame from the socket; failures become error events."""
        await self._guarded(self.feed_audio(chunk))

    async def _guarded(self, action: Awaitable[None]) -> None:
        try:
            await action
        except RecognitionStreamError as e:
            logger.error("STT error: %s", e)
            await self._send({"error": "stt_error", "message": e.message})
        except Exception as e:
            logger.error("Failed to handle WS message: %s", e)
            await self._send({"error": "server_error", "message": str(e)})

    async def start(self) -> None:
        """(Re)open the recognition stream, closing any previous one first."""
        if self._factory is None:
            raise RecognitionStreamError("Speech recognition is not configured")
        self._cancel_silence()
        self._cancel_restart()
        await self._close_stream()
        self._last_interim = ""
        self._silence_final = None

        stream = self._factory(self._on_result, self._on_error)
        await stream.start()
        self._stream = stream
        self.state = VoiceState.LISTENING

    async def feed_audio(self, payload: Any) -> None:
        if self._stream is None:
            await self.start()
        chunk = decode_audio_payload(payload)
        if chunk is None:
            logger.warning("Unknown audio payload format")
            return
        try:
            await self._stream.write(chunk)
        except RecognitionStreamError as e:
            logger.error("Stream write error: %s", e)
            await self._close_stream()

    async def stop(self) -> None:
        """Close the stream and clear timers; safe to call repeatedly."""
        self._cancel_silence()
        self._cancel_restart()
        await self._close_stream()
        self.state = VoiceState.IDLE

    async def close(self) -> None:
        """Connection is gone: stop and never restart."""
        self._closed = True
        await self.stop()

    async def speak(self, text: Any) -> None:
        if not text or not isinstance(text, str):
            await self._send({"error": "invalid_tts_text"})
            return
        try:
            audio = await self._synthesize(text)
        except SankaError as e:
            logger.error("TTS synth error: %s", e)
            await self._send({"error": "tts_failed", "message": e.message})
            return
        await self._send({"audio": audio, "text": text})

    # -- recognizer callbacks -----------------------------------------------

    async def _on_result(self, transcript: str, is_final: bool) -> None:
        if not transcript:
            return
        await self._send({"transcript": transcript, "isFinal": is_final})

        if is_final:
            self._cancel_silence()
            if transcript == self._silence_final:
                # already finalized by the silence timer
                self._silence_final = None
                return
            self._last_interim = transcript
            await self._finalize(transcript)
            return

        self._last_interim = transcript
        self._silence_final = None
        self._cancel_silence()
        self._silence_task = asyncio.create_task(self._silence_expired())

    async def _on_error(self, error: RecognitionStreamError) -> None:
        logger.error("STT stream error: %s", error)
        self._stream = None
        if self.state is VoiceState.LISTENING:
            self.state = VoiceState.IDLE
        await self._send({"error": "stt_error", "message": error.message})

    # -- finalization -------------------------------------------------------

    async def _silence_expired(self) -> None:
        await asyncio.sleep(self.silence_timeout)
        self._silence_task = None
        transcript = self._last_interim
        logger.info("Silence detected → finalizing: %s", transcript)
        self._silence_final = transcript
        await self._finalize(transcript)

    async def _finalize(self, transcript: str) -> None:
        self.state = VoiceState.FINALIZING
        await self._send({"final": transcript})
        if self.auto_reply:
            await self._reply(transcript)
        else:
            self.state = VoiceState.LISTENING if self._stream else VoiceState.IDLE

    async def _reply(self, transcript: str) -> None:
        await self._close_stream()
        reply = REPLY_TEMPLATE.format(user=self.user_name, transcript=transcript)
        try:
            audio = await self._synthesize(reply)
            await self._send({"audio": audio, "text": reply})
        except SankaError as e:
            logger.error("Auto TTS failed: %s", e)
            await self._send({"error": "auto_tts_failed", "message": e.message})
        finally:
            if not self._closed:
                self._restart_task = asyncio.create_task(self._restart_after_cooldown())

    async def _restart_after_cooldown(self) -> None:
        await asyncio.sleep(self.restart_delay)
        self._restart_task = None
        if self._closed:
            return
        try:
            await self.start()
        except RecognitionStreamError as e:
            logger.error("STT restart failed: %s", e)
            await self._send({"error": "stt_error", "message": e.message})

    # -- helpers ------------------------------------------------------------

    async def _synthesize(self, text: str) -> str:
        if self.tts is None:
            raise SynthesisError([])
        audio, voice = await self.tts.synthesize(text)
        logger.debug("Synthesized %d bytes with voice %s", len(audio), voice)
        return base64.b64encode(audio).decode()

    async def _close_stream(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            await stream.close()
        except Exception as e:
            logger.warning("Closing recognition stream failed: %s", e)

    def _cancel_silence(self) -> None:
        task, self._silence_task = self._silence_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    def _cancel_restart(self) -> None:
        task, self._restart_task = self._restart_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
