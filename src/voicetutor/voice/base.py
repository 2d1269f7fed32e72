"""Base models for tutor voice sessions."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum, unique
from typing import Any


@unique
class SessionState(StrEnum):
    """Connection state of a tutor session."""

    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSING = "closing"


@unique
class TranscriptRole(StrEnum):
    """Who produced a piece of transcript text."""

    USER = "user"
    AGENT = "agent"


TranscriptCallback = Callable[[str], Any]
"""Callback receiving transcript text; may be sync or async."""

StateChangeCallback = Callable[[SessionState, SessionState], Any]
"""Callback for state transitions: (old_state, new_state)."""

ErrorCallback = Callable[[Exception], Any]
"""Callback for mid-session errors (transport or provider)."""


@dataclass(frozen=True)
class SessionConfig:
    """Everything one tutoring session needs; immutable once connected.

    Attributes:
        question: The math problem the student is working on.
        correct_answer: Reference answer, given to the model but never to be revealed.
        wrong_attempt: The student's previous incorrect answer, if any.
        on_user_transcript: Receives completed user utterances.
        on_agent_transcript: Receives agent transcript deltas.
    """

    question: str
    correct_answer: str
    wrong_attempt: str | None = None
    on_user_transcript: TranscriptCallback | None = None
    on_agent_transcript: TranscriptCallback | None = None

    def __post_init__(self) -> None:
        if not self.question.strip():
            raise ValueError("question must not be empty")
        if not self.correct_answer.strip():
            raise ValueError("correct_answer must not be empty")


@dataclass(frozen=True)
class TranscriptEntry:
    """One line of the visible conversation."""

    role: TranscriptRole
    text: str
