"""Turn-taking coordination between the student and the remote agent.

Two provider behaviours are covered by one interface.  With server-side
turn detection the provider starts every reply on its own
(:class:`ServerTurnCoordinator`).  Without it the client must request each
reply after a completed user utterance (:class:`ClientTurnCoordinator`).
Both share transcript de-duplication, echo suppression and a response
watchdog.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from voicetutor.voice.base import TranscriptCallback

logger = logging.getLogger("voicetutor.voice.turn")

RequestResponse = Callable[[], Awaitable[bool]]
"""Asks the provider for a new response; returns whether the request went out."""


@dataclass
class TurnState:
    """Mutable turn bookkeeping for one session."""

    agent_responding: bool = False
    last_user_transcript: str = ""
    last_agent_turn_ended_at: float | None = None
    watchdog: asyncio.TimerHandle | None = None

    def disarm(self) -> None:
        if self.watchdog is not None:
            self.watchdog.cancel()
            self.watchdog = None

    def reset(self) -> None:
        self.disarm()
        self.agent_responding = False
        self.last_user_transcript = ""
        self.last_agent_turn_ended_at = None


class TurnCoordinator(ABC):
    """Tracks who holds the floor and filters user transcripts.

    Args:
        on_user_transcript: Receives every accepted user utterance.
        echo_window: Seconds after an agent turn during which user
            transcripts are treated as speaker echo and dropped.
        watchdog_timeout: Seconds after which an unfinished agent turn
            is forgotten so the student can speak again.
        clock: Monotonic time source in seconds.
    """

    def __init__(
        self,
        on_user_transcript: TranscriptCallback | None = None,
        *,
        echo_window: float = 1.2,
        watchdog_timeout: float = 12.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._on_user_transcript = on_user_transcript
        self._echo_window = echo_window
        self._watchdog_timeout = watchdog_timeout
        self._clock = clock
        self.state = TurnState()

    @property
    def agent_responding(self) -> bool:
        return self.state.agent_responding

    @property
    def watchdog_armed(self) -> bool:
        return self.state.watchdog is not None

    async def on_user_utterance_complete(self, text: str) -> bool:
        """Handle a completed user transcript; returns whether it was accepted."""
        text = text.strip()
        if not text:
            return False
        normalized = text.lower()
        state = self.state
        if normalized == state.last_user_transcript:
            logger.debug("Dropping duplicate user transcript")
            return False
        ended = state.last_agent_turn_ended_at
        if ended is not None and self._clock() - ended < self._echo_window:
            logger.debug("Dropping user transcript inside echo window: %r", text)
            return False
        state.last_user_transcript = normalized
        await self._forward(text)
        await self._after_user_accepted()
        return True

    def on_agent_turn_started(self) -> None:
        self.state.agent_responding = True
        self.arm_watchdog()

    def on_agent_turn_ended(self) -> None:
        self.state.agent_responding = False
        self.state.last_agent_turn_ended_at = self._clock()
        self.state.disarm()

    def on_agent_turn_interrupted(self) -> None:
        """The student barged in; the agent turn ends without an echo window."""
        self.state.agent_responding = False
        self.state.disarm()

    def arm_watchdog(self) -> None:
        """(Re)start the response watchdog."""
        self.state.disarm()
        loop = asyncio.get_running_loop()
        self.state.watchdog = loop.call_later(self._watchdog_timeout, self._on_watchdog)

    def reset(self) -> None:
        self.state.reset()

    def _on_watchdog(self) -> None:
        self.state.watchdog = None
        if self.state.agent_responding:
            logger.warning(
                "No response completion after %.1fs; clearing responding flag",
                self._watchdog_timeout,
            )
        self.state.agent_responding = False
        self.state.last_agent_turn_ended_at = self._clock()

    async def _forward(self, text: str) -> None:
        cb = self._on_user_transcript
        if cb is None:
            return
        try:
            result: Any = cb(text)
            if hasattr(result, "__await__"):
                await result
        except Exception:
            logger.exception("Error in user transcript callback")

    @abstractmethod
    async def _after_user_accepted(self) -> None:
        """Provider-specific reaction to an accepted user utterance."""
        ...


class ServerTurnCoordinator(TurnCoordinator):
    """For providers whose voice-activity detection starts replies itself."""

    async def _after_user_accepted(self) -> None:
        return None


class ClientTurnCoordinator(TurnCoordinator):
    """For providers that need an explicit request for every reply.

    Args:
        request_response: Coroutine function that sends the request.
    """

    def __init__(
        self,
        request_response: RequestResponse,
        on_user_transcript: TranscriptCallback | None = None,
        *,
        echo_window: float = 1.2,
        watchdog_timeout: float = 12.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(
            on_user_transcript,
            echo_window=echo_window,
            watchdog_timeout=watchdog_timeout,
            clock=clock,
        )
        self._request_response = request_response

    async def _after_user_accepted(self) -> None:
        if self.state.agent_responding:
            logger.debug("Response already in flight; not requesting another")
            return
        if await self._request_response():
            self.state.agent_responding = True
            self.arm_watchdog()
            logger.info("Requested agent response")
