"""voicetutor - Realtime voice math tutoring over Gemini Live and OpenAI Realtime."""

from voicetutor._version import __version__
from voicetutor.errors import (
    DevicePermissionError,
    NegotiationError,
    ProviderError,
    SessionConnectError,
    TransportError,
    VoiceTutorError,
)
from voicetutor.prompts import build_math_tutor_instruction, build_openai_instruction
from voicetutor.providers.gemini import GeminiLiveConfig, GeminiLiveSession
from voicetutor.providers.openai import OpenAIWebRTCConfig, OpenAIWebRTCSession
from voicetutor.transcript import TranscriptLog
from voicetutor.voice.base import SessionConfig, SessionState, TranscriptEntry, TranscriptRole
from voicetutor.voice.realtime.session import TutorSession

__all__ = [
    "__version__",
    # Sessions
    "GeminiLiveConfig",
    "GeminiLiveSession",
    "OpenAIWebRTCConfig",
    "OpenAIWebRTCSession",
    "TutorSession",
    # Models
    "SessionConfig",
    "SessionState",
    "TranscriptEntry",
    "TranscriptLog",
    "TranscriptRole",
    # Prompts
    "build_math_tutor_instruction",
    "build_openai_instruction",
    # Errors
    "DevicePermissionError",
    "NegotiationError",
    "ProviderError",
    "SessionConnectError",
    "TransportError",
    "VoiceTutorError",
]
