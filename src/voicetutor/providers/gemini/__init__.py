"""Google Gemini Live provider."""

from voicetutor.providers.gemini.config import GeminiLiveConfig
from voicetutor.providers.gemini.live import GeminiLiveSession, classify_gemini_message

__all__ = ["GeminiLiveConfig", "GeminiLiveSession", "classify_gemini_message"]
