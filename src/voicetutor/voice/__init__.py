"""Audio capture, encoding, playback scheduling and turn-taking."""

from voicetutor.voice.analyser import AnalyserTap
from voicetutor.voice.audio_frame import AudioFrame, InboundAudioPayload, OutboundChunk
from voicetutor.voice.base import SessionConfig, SessionState, TranscriptEntry, TranscriptRole
from voicetutor.voice.capture import AudioCapture
from voicetutor.voice.codec import (
    OutboundEncoder,
    float_to_pcm16,
    pcm16_to_float,
    resample_linear,
    resample_nearest,
)
from voicetutor.voice.device import AudioDevice, default_audio_device
from voicetutor.voice.mock import MockSoundDevice
from voicetutor.voice.scheduler import InboundAudioScheduler, PlaybackTimeline, ScheduledPlayback
from voicetutor.voice.turn import (
    ClientTurnCoordinator,
    ServerTurnCoordinator,
    TurnCoordinator,
    TurnState,
)

__all__ = [
    # Data models
    "AudioFrame",
    "InboundAudioPayload",
    "OutboundChunk",
    "SessionConfig",
    "SessionState",
    "TranscriptEntry",
    "TranscriptRole",
    # Capture and encoding
    "AnalyserTap",
    "AudioCapture",
    "AudioDevice",
    "OutboundEncoder",
    "default_audio_device",
    "float_to_pcm16",
    "pcm16_to_float",
    "resample_linear",
    "resample_nearest",
    # Playback
    "InboundAudioScheduler",
    "PlaybackTimeline",
    "ScheduledPlayback",
    # Turn-taking
    "ClientTurnCoordinator",
    "ServerTurnCoordinator",
    "TurnCoordinator",
    "TurnState",
    # Mocks
    "MockSoundDevice",
]
