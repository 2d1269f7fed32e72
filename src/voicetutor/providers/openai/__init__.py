"""OpenAI Realtime provider (WebRTC)."""

from voicetutor.providers.openai.config import OpenAIWebRTCConfig
from voicetutor.providers.openai.relay import RelayClient, RelayCredential
from voicetutor.providers.openai.webrtc import OpenAIWebRTCSession, classify_openai_event

__all__ = [
    "OpenAIWebRTCConfig",
    "OpenAIWebRTCSession",
    "RelayClient",
    "RelayCredential",
    "classify_openai_event",
]
