"""Normalization of inbound audio payloads to raw bytes."""

from __future__ import annotations

import base64
import binascii
from typing import Any


def decode_audio_payload(audio: Any) -> bytes | None:
    """Return the audio chunk as bytes, or ``None`` for an unknown shape.

    Accepts a base64 string, a list of byte values (0-255) or raw bytes.
    """
    if isinstance(audio, str):
        try:
            return base64.b64decode(audio)
        except (binascii.Error, ValueError):
            return None
    if isinstance(audio, (bytes, bytearray, memoryview)):
        return bytes(audio)
    if isinstance(audio, list):
        try:
            return bytes(int(v) & 0xFF for v in audio)
        except (TypeError, ValueError):
            return None
    return None
