"""Inbound event types produced by provider message classification.

Every inbound provider message maps to zero or more of these events.
Unknown shapes map to nothing and are dropped.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum, unique

from voicetutor.voice.base import TranscriptRole


@unique
class ResponseKind(StrEnum):
    CREATED = "created"
    DONE = "done"
    ERROR = "error"
    INTERRUPTED = "interrupted"


@unique
class SessionEventKind(StrEnum):
    UPDATED = "updated"
    GO_AWAY = "go_away"


@dataclass(frozen=True)
class TranscriptDelta:
    """Transcript text tagged by speaker.

    ``final`` marks a completed utterance rather than a streaming fragment.
    """

    role: TranscriptRole
    text: str
    final: bool = False


@dataclass(frozen=True)
class AudioPayloadEvent:
    """Provider audio as raw PCM16 bytes at ``sample_rate``."""

    data: bytes
    sample_rate: int


@dataclass(frozen=True)
class ResponseLifecycle:
    kind: ResponseKind
    code: str = ""
    message: str = ""


@dataclass(frozen=True)
class SessionLifecycle:
    kind: SessionEventKind
    detail: str = ""


InboundEvent = TranscriptDelta | AudioPayloadEvent | ResponseLifecycle | SessionLifecycle
