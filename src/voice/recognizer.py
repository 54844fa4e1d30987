"""Deepgram live-listen client for streaming PCM-16 recognition."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Awaitable, Callable, Protocol

import websockets

from src.errors import RecognitionStreamError

logger = logging.getLogger("sanka")

OnResult = Callable[[str, bool], Awaitable[None]]
OnError = Callable[[RecognitionStreamError], Awaitable[None]]


class RecognitionStream(Protocol):
    async def start(self) -> None: ...

    async def write(self, chunk: bytes) -> None: ...

    async def close(self) -> None: ...


RecognizerFactory = Callable[[OnResult, OnError], RecognitionStream]


class DeepgramStream:
    """One streaming recognition session.

    Audio goes out as binary frames; every ``Results`` message is reported
    through *on_result* as ``(transcript, is_final)``. A dropped socket is
    reported once through *on_error*.
    """

    WS_URL = "wss://api.deepgram.com/v1/listen"

    def __init__(
        self,
        api_key: str,
        on_result: OnResult,
        on_error: OnError,
        *,
        sample_rate: int = 16_000,
        language: str = "en-US",
    ) -> None:
        self._api_key = api_key
        self._on_result = on_result
        self._on_error = on_error
        self._sample_rate = sample_rate
        self._language = language
        self._ws = None
        self._receiver: asyncio.Task | None = None
        self._closing = False

    async def start(self) -> None:
        url = (
            f"{self.WS_URL}"
            f"?encoding=linear16&sample_rate={self._sample_rate}"
            f"&channels=1&language={self._language}&model=nova-2&interim_results=true"
        )
        try:
            self._ws = await websockets.connect(
                url, additional_headers={"Authorization": f"Token {self._api_key}"}
            )
        except (OSError, websockets.exceptions.WebSocketException) as e:
            raise RecognitionStreamError(f"Could not open recognition stream: {e}") from e
        self._receiver = asyncio.create_task(self._receive())
        logger.info("STT started")

    async def write(self, chunk: bytes) -> None:
        if self._ws is None:
            raise RecognitionStreamError("Recognition stream is not open")
        try:
            await self._ws.send(chunk)
        except websockets.exceptions.ConnectionClosed as e:
            raise RecognitionStreamError(f"Recognition stream closed: {e}") from e

    async def close(self) -> None:
        if self._closing:
            return
        self._closing = True
        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.send(json.dumps({"type": "CloseStream"}))
            except websockets.exceptions.ConnectionClosed:
                pass
            await ws.close()
        if self._receiver is not None and self._receiver is not asyncio.current_task():
            self._receiver.cancel()
        logger.info("STT stopped")

    async def _receive(self) -> None:
        ws = self._ws
        try:
            async for raw in ws:
                try:
                    payload = json.loads(raw)
                except (json.JSONDecodeError, TypeError):
                    continue
                if not isinstance(payload, dict) or payload.get("type") != "Results":
                    continue
                alternatives = payload.get("channel", {}).get("alternatives") or [{}]
                transcript = str(alternatives[0].get("transcript") or "").strip()
                await self._on_result(transcript, bool(payload.get("is_final")))
        except websockets.exceptions.ConnectionClosed as e:
            if not self._closing:
                await self._on_error(RecognitionStreamError(f"Recognition stream dropped: {e}"))


def deepgram_factory(api_key: str, sample_rate: int = 16_000) -> RecognizerFactory:
    def factory(on_result: OnResult, on_error: OnError) -> DeepgramStream:
        return DeepgramStream(api_key, on_result, on_error, sample_rate=sample_rate)

    return factory
