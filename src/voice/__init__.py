from src.voice.speech_session import SpeechSession, VoiceState
from src.voice.tts_service import TTSService

__all__ = [
    "SpeechSession",
    "TTSService",
    "VoiceState",
]
