"""TutorSession abstract base class and per-connection session context."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, field
from typing import Any

from voicetutor.errors import (
    NegotiationError,
    ProviderError,
    SessionConnectError,
    TransportError,
    VoiceTutorError,
)
from voicetutor.voice.analyser import AnalyserTap
from voicetutor.voice.audio_frame import OutboundChunk
from voicetutor.voice.base import (
    ErrorCallback,
    SessionConfig,
    SessionState,
    StateChangeCallback,
    TranscriptCallback,
)
from voicetutor.voice.capture import AudioCapture
from voicetutor.voice.device import AudioDevice, default_audio_device
from voicetutor.voice.scheduler import InboundAudioScheduler
from voicetutor.voice.turn import TurnCoordinator

logger = logging.getLogger("voicetutor.voice.realtime.session")


class SessionAbandoned(Exception):
    """Raised inside ``connect()`` when a disconnect overtook it."""


@dataclass
class SessionContext:
    """Everything one connection attempt owns.

    A fresh context is created on every ``connect()``.  Asynchronous
    continuations keep a reference to their context and check
    :attr:`closed` before touching shared state, so work that finishes
    after a disconnect never leaks into the next session.
    """

    id: str
    config: SessionConfig
    resources: contextlib.AsyncExitStack = field(default_factory=contextlib.AsyncExitStack)
    tasks: set[asyncio.Task[Any]] = field(default_factory=set)
    established: asyncio.Event = field(default_factory=asyncio.Event)
    failure: SessionConnectError | None = None
    capture: AudioCapture | None = None
    scheduler: InboundAudioScheduler | None = None
    turns: TurnCoordinator | None = None
    channel: Any = None
    track: Any = None
    peer: Any = None
    greeting_sent: bool = False
    closed: bool = False

    def ensure_live(self) -> None:
        if self.closed:
            raise SessionAbandoned(f"session {self.id} was closed")

    async def hold(self, release: Callable[..., Any], *args: Any, what: str) -> None:
        """Register ``release(*args)`` to run on teardown (last in, first out).

        If the session was already closed while the resource was being
        acquired, the resource is released immediately instead and
        :class:`SessionAbandoned` is raised.
        """

        async def _release() -> None:
            try:
                result = release(*args)
                if hasattr(result, "__await__"):
                    await result
            except Exception:
                logger.warning("Error releasing %s (session %s)", what, self.id, exc_info=True)
            else:
                logger.debug("Released %s (session %s)", what, self.id)

        if self.closed:
            await _release()
            raise SessionAbandoned(f"session {self.id} closed while acquiring {what}")
        self.resources.push_async_callback(_release)

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=f"{name}-{self.id[:8]}")
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)
        return task


class TutorSession(ABC):
    """One realtime voice tutoring session against a remote provider.

    Concrete variants implement the provider handshake (:meth:`_open`) and
    the outbound path (:meth:`_transmit`).  This base class owns the state
    machine, the session context, and teardown.

    Example:
        session = GeminiLiveSession(GeminiLiveConfig(api_key="..."))
        session.on_error(lambda err: print("error:", err))

        await session.connect(SessionConfig(question="2+2?", correct_answer="4"))
        ...
        await session.disconnect()

    Args:
        audio_device: Shared audio device; defaults to the process-wide one.
        connect_timeout: Seconds to wait for the provider to confirm the session.
    """

    def __init__(
        self,
        *,
        audio_device: AudioDevice | None = None,
        connect_timeout: float = 15.0,
    ) -> None:
        self._device = audio_device or default_audio_device()
        self._connect_timeout = connect_timeout
        self._state = SessionState.IDLE
        self._ctx: SessionContext | None = None
        self._error: VoiceTutorError | None = None
        self._muted = False
        self._state_callbacks: list[StateChangeCallback] = []
        self._error_callbacks: list[ErrorCallback] = []

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name (e.g. 'gemini_live', 'openai_webrtc')."""
        ...

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is SessionState.CONNECTED

    @property
    def error(self) -> VoiceTutorError | None:
        """The last connection or mid-session error, if any."""
        return self._error

    @property
    def context(self) -> SessionContext | None:
        return self._ctx

    @property
    def audio_device(self) -> AudioDevice:
        return self._device

    @property
    def muted(self) -> bool:
        return self._muted

    @property
    def input_analyser(self) -> AnalyserTap | None:
        """Microphone visualization tap (available once capture starts)."""
        ctx = self._ctx
        if ctx is None or ctx.capture is None:
            return None
        return ctx.capture.analyser

    @property
    def output_analyser(self) -> AnalyserTap | None:
        """Playback visualization tap (available after the first inbound audio)."""
        ctx = self._ctx
        if ctx is None or ctx.scheduler is None:
            return None
        return ctx.scheduler.analyser

    def on_state_change(self, callback: StateChangeCallback) -> None:
        self._state_callbacks.append(callback)

    def on_error(self, callback: ErrorCallback) -> None:
        self._error_callbacks.append(callback)

    def set_muted(self, muted: bool) -> None:
        """Mute or unmute the microphone without stopping capture."""
        self._muted = muted
        ctx = self._ctx
        if ctx is not None and ctx.capture is not None:
            ctx.capture.muted = muted

    # -- Lifecycle --

    async def connect(self, config: SessionConfig) -> None:
        """Acquire audio, dial the provider and wait until it is established.

        Returns immediately when a session is already pending or active.

        Raises:
            DevicePermissionError: The microphone could not be opened.
            NegotiationError: Credential exchange, dial or handshake failed.
        """
        if self._state is not SessionState.IDLE:
            logger.debug("connect() ignored: %s session is %s", self.name, self._state)
            return

        ctx = SessionContext(id=uuid.uuid4().hex, config=config)
        self._ctx = ctx
        self._error = None
        await self._set_state(SessionState.CONNECTING)
        logger.info("Connecting %s session %s", self.name, ctx.id)

        try:
            await self._open(ctx)
            try:
                await asyncio.wait_for(ctx.established.wait(), timeout=self._connect_timeout)
            except TimeoutError as exc:
                raise NegotiationError(
                    f"{self.name} session not established after {self._connect_timeout:.0f}s"
                ) from exc
            if ctx.failure is not None:
                raise ctx.failure
            ctx.ensure_live()
        except SessionAbandoned:
            logger.info("Connect of session %s abandoned by disconnect", ctx.id)
            return
        except SessionConnectError as exc:
            await self._abort_connect(ctx, exc)
            raise
        except (ImportError, asyncio.CancelledError):
            await self._teardown(ctx)
            raise
        except Exception as exc:
            error = NegotiationError(f"{self.name} connect failed: {exc}")
            await self._abort_connect(ctx, error)
            raise error from exc

        await self._set_state(SessionState.CONNECTED)
        logger.info("%s session %s connected", self.name, ctx.id)

    async def send(self, chunk: OutboundChunk) -> None:
        """Forward encoded audio; silently dropped unless connected."""
        ctx = self._ctx
        if ctx is None or ctx.closed or self._state is not SessionState.CONNECTED:
            return
        await self._transmit(ctx, chunk)

    async def disconnect(self) -> None:
        """Tear down everything the session owns.  Safe to call at any time."""
        ctx = self._ctx
        if ctx is None:
            return
        logger.info("Disconnecting %s session %s", self.name, ctx.id)
        await self._teardown(ctx)

    # -- Provider hooks --

    @abstractmethod
    async def _open(self, ctx: SessionContext) -> None:
        """Acquire resources and start the handshake.

        Every acquired resource must be registered with :meth:`SessionContext.hold`
        as soon as it exists.  Call :meth:`_mark_established` once the
        provider confirms the session.
        """
        ...

    @abstractmethod
    async def _transmit(self, ctx: SessionContext, chunk: OutboundChunk) -> None:
        """Put one outbound chunk on the wire."""
        ...

    # -- Shared helpers for variants --

    async def _acquire_audio(
        self,
        ctx: SessionContext,
        *,
        sample_rate: int | None,
        block_size: int,
        mute_mic_during_playback: bool,
    ) -> AudioCapture:
        """Open the speaker, the microphone and the playback scheduler."""
        self._device.acquire()
        await ctx.hold(self._device.release, what="audio device")

        capture = AudioCapture(
            self._device,
            sample_rate=sample_rate,
            block_size=block_size,
            mute_mic_during_playback=mute_mic_during_playback,
        )
        capture.muted = self._muted
        await capture.start()
        ctx.capture = capture
        await ctx.hold(capture.stop, what="microphone")

        scheduler = InboundAudioScheduler(self._device)
        scheduler.start()
        ctx.scheduler = scheduler
        await ctx.hold(scheduler.stop, what="playback scheduler")
        return capture

    def _mark_established(self, ctx: SessionContext) -> None:
        if ctx.closed:
            return
        ctx.established.set()

    async def _fail(self, ctx: SessionContext, error: TransportError) -> None:
        """Route a channel failure: abort a pending connect or end the session."""
        if ctx.closed or self._ctx is not ctx:
            return
        if self._state is SessionState.CONNECTING:
            if ctx.failure is None:
                ctx.failure = NegotiationError(str(error))
            ctx.established.set()
            return
        logger.error("%s session %s failed: %s", self.name, ctx.id, error)
        self._error = error
        await self._fire_error(error)
        await self._teardown(ctx)

    async def _report_provider_error(self, ctx: SessionContext, error: ProviderError) -> None:
        if ctx.closed:
            return
        logger.error("%s error [%s]: %s", self.name, error.code, error)
        self._error = error
        await self._fire_error(error)

    async def _emit_transcript(self, callback: TranscriptCallback | None, text: str) -> None:
        if callback is None or not text:
            return
        try:
            result = callback(text)
            if hasattr(result, "__await__"):
                await result
        except Exception:
            logger.exception("Error in transcript callback")

    # -- Internals --

    async def _abort_connect(self, ctx: SessionContext, error: SessionConnectError) -> None:
        logger.error("%s connect failed: %s", self.name, error)
        self._error = error
        await self._teardown(ctx)

    async def _teardown(self, ctx: SessionContext) -> None:
        if ctx.closed:
            return
        ctx.closed = True
        ctx.established.set()
        if self._ctx is ctx:
            await self._set_state(SessionState.CLOSING)

        current = asyncio.current_task()
        tasks = [t for t in ctx.tasks if t is not current]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        await ctx.resources.aclose()
        if ctx.turns is not None:
            ctx.turns.reset()

        if self._ctx is ctx:
            self._ctx = None
            self._muted = False
            await self._set_state(SessionState.IDLE)
        logger.info("%s session %s closed", self.name, ctx.id)

    async def _set_state(self, new: SessionState) -> None:
        old = self._state
        if old is new:
            return
        self._state = new
        for cb in self._state_callbacks:
            try:
                result = cb(old, new)
                if hasattr(result, "__await__"):
                    await result
            except Exception:
                logger.exception("Error in state callback (%s -> %s)", old, new)

    async def _fire_error(self, error: VoiceTutorError) -> None:
        for cb in self._error_callbacks:
            try:
                result = cb(error)
                if hasattr(result, "__await__"):
                    await result
            except Exception:
                logger.exception("Error in error callback")
