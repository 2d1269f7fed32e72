"""OpenAI Realtime (WebRTC) session configuration."""

from __future__ import annotations

from pydantic import BaseModel


class OpenAIWebRTCConfig(BaseModel):
    """OpenAI Realtime over WebRTC session configuration.

    No API key lives here: the relay exchanges its server-held key for a
    short-lived client secret on every connect.

    Attributes:
        relay_url: Base URL of the relay's OpenAI routes (``POST {relay_url}/session``).
        realtime_url: OpenAI endpoint receiving the SDP offer.
        voice: Output voice.
        transcription_model: Model transcribing the student's speech.
        max_response_output_tokens: Cap on each tutor response.
        capture_sample_rate: Microphone rate fed into the outbound media track.
        capture_block_size: Samples per captured frame.
    """

    relay_url: str = "http://localhost:3000/api/openai"
    realtime_url: str = "https://api.openai.com/v1/realtime"
    voice: str = "alloy"
    transcription_model: str = "gpt-4o-mini-transcribe"
    max_response_output_tokens: int = 320
    capture_sample_rate: int = 48000
    capture_block_size: int = 960
    connect_timeout: float = 15.0
    http_timeout: float = 15.0
    language: str = "English"
    greeting_instructions: str = (
        "The student is ready. Begin with your greeting in English only. Keep it short, "
        "give one hint for this exact problem, ask where they are stuck, then stop and wait."
    )
    response_instructions: str = (
        "Respond only in English. Keep the student focused on this exact problem and "
        "reaching the correct answer. Give one concise tutoring response, then stop and "
        "wait for the student."
    )
    mute_mic_during_playback: bool = True
    """Silence microphone frames while the tutor is speaking (half-duplex)."""
    echo_suppression_window: float = 1.2
    response_watchdog_timeout: float = 12.0
