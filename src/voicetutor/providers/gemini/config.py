"""Gemini Live session configuration."""

from __future__ import annotations

from pydantic import BaseModel, SecretStr


class GeminiLiveConfig(BaseModel):
    """Gemini Live session configuration.

    Attributes:
        api_key: Gemini API key passed to ``genai.Client``.
        model: Live model identifier.
        voice: Prebuilt voice name for audio output.
        input_sample_rate: Rate of the PCM16 audio sent to the model (Hz).
        output_sample_rate: Rate of the PCM16 audio the model sends back (Hz).
        capture_sample_rate: Microphone rate; ``None`` uses the device's native rate.
        capture_block_size: Samples per captured frame.
        ping_interval: WebSocket keepalive interval handed to the SDK client.
        ping_timeout: WebSocket keepalive timeout handed to the SDK client.
    """

    api_key: SecretStr
    model: str = "gemini-2.5-flash-native-audio-preview-09-2025"
    voice: str = "Zephyr"
    input_sample_rate: int = 16000
    output_sample_rate: int = 24000
    capture_sample_rate: int | None = None
    capture_block_size: int = 512
    connect_timeout: float = 15.0
    greeting: str = (
        "The student is ready. Introduce yourself and ask what they need to solve the question."
    )
    language: str = "English"
    mute_mic_during_playback: bool = True
    """Drop microphone frames while the tutor is speaking (half-duplex)."""
    echo_suppression_window: float = 1.2
    response_watchdog_timeout: float = 12.0
    ping_interval: float = 10.0
    ping_timeout: float = 5.0
