"""Conversation transcript with the display merge policy."""

from __future__ import annotations

from collections.abc import Callable

from voicetutor.voice.base import TranscriptEntry, TranscriptRole


class TranscriptLog:
    """Collects transcript deltas into displayable entries.

    Consecutive deltas from the same role are concatenated into one entry.
    A delta from the other role starts a new entry.  Blank deltas are
    ignored.  Nothing outlives the log object.
    """

    def __init__(self) -> None:
        self._entries: list[TranscriptEntry] = []

    @property
    def entries(self) -> list[TranscriptEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def add(self, role: TranscriptRole, text: str) -> None:
        if not text.strip():
            return
        if self._entries and self._entries[-1].role == role:
            last = self._entries[-1]
            self._entries[-1] = TranscriptEntry(role=role, text=last.text + text)
        else:
            self._entries.append(TranscriptEntry(role=role, text=text.strip()))

    def user_callback(self) -> Callable[[str], None]:
        """A callback suitable for ``SessionConfig.on_user_transcript``."""
        return lambda text: self.add(TranscriptRole.USER, text)

    def agent_callback(self) -> Callable[[str], None]:
        """A callback suitable for ``SessionConfig.on_agent_transcript``."""
        return lambda text: self.add(TranscriptRole.AGENT, text)

    def clear(self) -> None:
        self._entries.clear()
