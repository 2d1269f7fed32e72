"""Transport session contract and inbound event types."""

from voicetutor.voice.realtime.events import (
    AudioPayloadEvent,
    InboundEvent,
    ResponseKind,
    ResponseLifecycle,
    SessionEventKind,
    SessionLifecycle,
    TranscriptDelta,
)
from voicetutor.voice.realtime.session import SessionContext, TutorSession

__all__ = [
    # ABCs
    "SessionContext",
    "TutorSession",
    # Events
    "AudioPayloadEvent",
    "InboundEvent",
    "ResponseKind",
    "ResponseLifecycle",
    "SessionEventKind",
    "SessionLifecycle",
    "TranscriptDelta",
]
