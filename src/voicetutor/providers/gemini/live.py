"""Gemini Live tutor session built on the ``google-genai`` SDK.

``client.aio.live.connect()`` sends the setup message and only yields the
live session once the server has acknowledged it, so the greeting turn is
sent right after the connection opens, exactly once per session.

Requires the ``google-genai`` package.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from websockets.exceptions import ConnectionClosed

from voicetutor.errors import NegotiationError, TransportError
from voicetutor.prompts.math_tutor import build_math_tutor_instruction
from voicetutor.providers.gemini.config import GeminiLiveConfig
from voicetutor.voice.audio_frame import AudioFrame, OutboundChunk
from voicetutor.voice.base import TranscriptRole
from voicetutor.voice.codec import OutboundEncoder
from voicetutor.voice.device import AudioDevice
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
from voicetutor.voice.turn import ServerTurnCoordinator

logger = logging.getLogger("voicetutor.providers.gemini.live")

LiveConnector = Callable[[str, Any], Any]
"""Returns an async context manager yielding a live session for ``(model, config)``."""

_DEFAULT_OUTPUT_RATE = 24000
_UPLINK_QUEUE_SIZE = 50
_LOG_EVERY = 100


def _import_genai() -> tuple[Any, Any]:
    try:
        from google import genai as _genai
        from google.genai import types as _types
    except ImportError as exc:
        raise ImportError(
            "google-genai is required for GeminiLiveSession. "
            "Install it with: pip install google-genai"
        ) from exc
    return _genai, _types


def _rate_from_mime(mime_type: str, default: int) -> int:
    """Extract ``rate=N`` from an ``audio/pcm;rate=N`` MIME type."""
    for param in mime_type.split(";")[1:]:
        key, _, value = param.strip().partition("=")
        if key == "rate" and value.isdigit():
            return int(value)
    return default


def _close_detail(exc: ConnectionClosed) -> str:
    frame = exc.rcvd
    if frame is None:
        return "no close frame"
    return f"code={frame.code} {frame.reason}".strip()


def _status_of(exc: Exception) -> int | None:
    code = getattr(exc, "code", None)
    if isinstance(code, int):
        return code
    return getattr(getattr(exc, "response", None), "status_code", None)


def classify_gemini_message(
    message: Any, *, default_rate: int = _DEFAULT_OUTPUT_RATE
) -> list[InboundEvent]:
    """Map one ``LiveServerMessage`` to inbound events.

    A single ``server_content`` can carry audio, transcripts and turn
    markers at once; they are returned in the order they should be
    applied.  ``go_away`` comes last.  Unknown shapes return an empty list.
    """
    events: list[InboundEvent] = []
    content = getattr(message, "server_content", None)
    if content is not None:
        turn = getattr(content, "model_turn", None)
        for part in getattr(turn, "parts", None) or []:
            inline = getattr(part, "inline_data", None)
            if inline is None or not inline.data:
                continue
            mime = inline.mime_type or ""
            if mime and not mime.startswith("audio/pcm"):
                continue
            events.append(AudioPayloadEvent(bytes(inline.data), _rate_from_mime(mime, default_rate)))

        user = getattr(content, "input_transcription", None)
        if user is not None and user.text:
            events.append(TranscriptDelta(TranscriptRole.USER, user.text, bool(user.finished)))
        agent = getattr(content, "output_transcription", None)
        if agent is not None and agent.text:
            events.append(TranscriptDelta(TranscriptRole.AGENT, agent.text, bool(agent.finished)))

        if getattr(content, "interrupted", None):
            events.append(ResponseLifecycle(ResponseKind.INTERRUPTED))
        if getattr(content, "turn_complete", None):
            events.append(ResponseLifecycle(ResponseKind.DONE))

    go_away = getattr(message, "go_away", None)
    if go_away is not None:
        time_left = getattr(go_away, "time_left", None)
        events.append(SessionLifecycle(SessionEventKind.GO_AWAY, str(time_left or "")))
    return events


class GeminiLiveSession(TutorSession):
    """Tutor session using the Gemini Live API.

    Microphone frames are resampled to 16 kHz, encoded as PCM16 and sent
    with ``send_realtime_input``.  The model answers with 24 kHz PCM16
    inline audio that is scheduled for gapless playback.  Gemini starts its
    replies from server-side voice activity detection, so the client never
    requests a response.

    Example:
        session = GeminiLiveSession(GeminiLiveConfig(api_key="..."))
        await session.connect(SessionConfig(question="2x = 6", correct_answer="x = 3"))

    Args:
        config: Provider configuration.
        audio_device: Shared audio device; defaults to the process-wide one.
        connector: Replaces ``client.aio.live.connect`` (for tests).
    """

    def __init__(
        self,
        config: GeminiLiveConfig,
        *,
        audio_device: AudioDevice | None = None,
        connector: LiveConnector | None = None,
    ) -> None:
        super().__init__(audio_device=audio_device, connect_timeout=config.connect_timeout)
        self._config = config
        self._connector = connector
        self._client: Any = None
        self._encoder = OutboundEncoder(config.input_sample_rate)
        self._user_buffer: list[str] = []
        self._chunks_sent = 0
        self._chunks_received = 0

    @property
    def name(self) -> str:
        return "gemini_live"

    @property
    def config(self) -> GeminiLiveConfig:
        return self._config

    def build_live_config(self, system_instruction: str) -> Any:
        """Modality, voice, instruction and transcription toggles for the session."""
        _, types = _import_genai()
        return types.LiveConnectConfig(
            response_modalities=[types.Modality.AUDIO],
            speech_config=types.SpeechConfig(
                voice_config=types.VoiceConfig(
                    prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=self._config.voice)
                )
            ),
            system_instruction=types.Content(parts=[types.Part(text=system_instruction)]),
            input_audio_transcription=types.AudioTranscriptionConfig(),
            output_audio_transcription=types.AudioTranscriptionConfig(),
        )

    # -- Handshake --

    async def _open(self, ctx: SessionContext) -> None:
        cfg = self._config
        self._user_buffer = []
        self._chunks_sent = 0
        self._chunks_received = 0
        ctx.turns = ServerTurnCoordinator(
            ctx.config.on_user_transcript,
            echo_window=cfg.echo_suppression_window,
            watchdog_timeout=cfg.response_watchdog_timeout,
        )

        capture = await self._acquire_audio(
            ctx,
            sample_rate=cfg.capture_sample_rate,
            block_size=cfg.capture_block_size,
            mute_mic_during_playback=cfg.mute_mic_during_playback,
        )
        uplink: asyncio.Queue[AudioFrame] = asyncio.Queue(maxsize=_UPLINK_QUEUE_SIZE)
        capture.on_frame(lambda frame: self._enqueue_frame(ctx, uplink, frame))

        instruction = build_math_tutor_instruction(
            ctx.config.question,
            ctx.config.correct_answer,
            ctx.config.wrong_attempt,
            language=cfg.language,
        )
        connection = self._connect_live(self.build_live_config(instruction))
        live = await self._enter_live(ctx, connection)
        await ctx.hold(connection.__aexit__, None, None, None, what="live session")
        ctx.channel = live
        logger.info("Gemini Live setup acknowledged for %s (session %s)", cfg.model, ctx.id)

        self._mark_established(ctx)
        await self._send_greeting(ctx)

        ctx.spawn(self._receive_loop(ctx), name="gemini_recv")
        ctx.spawn(self._uplink_loop(ctx, uplink), name="gemini_uplink")

    def _connect_live(self, live_config: Any) -> Any:
        if self._connector is not None:
            return self._connector(self._config.model, live_config)
        if self._client is None:
            genai, types = _import_genai()
            # Tighter keepalive than the websockets defaults to notice dead links sooner
            self._client = genai.Client(
                api_key=self._config.api_key.get_secret_value(),
                http_options=types.HttpOptions(
                    async_client_args={
                        "ping_interval": self._config.ping_interval,
                        "ping_timeout": self._config.ping_timeout,
                    }
                ),
            )
        return self._client.aio.live.connect(model=self._config.model, config=live_config)

    async def _enter_live(self, ctx: SessionContext, connection: Any) -> Any:
        """Open the live connection, giving up on disconnect or timeout."""
        entering = asyncio.ensure_future(connection.__aenter__())
        closing = asyncio.ensure_future(ctx.established.wait())
        try:
            done, _ = await asyncio.wait(
                {entering, closing},
                timeout=self._connect_timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            closing.cancel()

        if entering not in done:
            entering.cancel()
            await asyncio.gather(entering, return_exceptions=True)
            ctx.ensure_live()
            raise NegotiationError(
                f"gemini_live setup not acknowledged after {self._connect_timeout:.0f}s"
            )

        try:
            return entering.result()
        except ImportError:
            raise
        except ConnectionClosed as exc:
            raise NegotiationError(
                f"Gemini Live closed the connection during setup ({_close_detail(exc)})"
            ) from exc
        except OSError as exc:
            raise NegotiationError(f"Could not reach Gemini Live: {exc}") from exc
        except Exception as exc:
            raise NegotiationError(
                f"Gemini Live rejected the session: {exc}", status_code=_status_of(exc)
            ) from exc

    async def _send_greeting(self, ctx: SessionContext) -> None:
        if ctx.greeting_sent or ctx.closed:
            return
        ctx.greeting_sent = True
        from google.genai import types

        try:
            await ctx.channel.send_client_content(
                turns=types.Content(role="user", parts=[types.Part(text=self._config.greeting)]),
                turn_complete=True,
            )
        except Exception as exc:
            raise NegotiationError(f"Gemini greeting failed: {exc}") from exc
        logger.info("Greeting sent (session %s)", ctx.id)

    # -- Outbound --

    def _enqueue_frame(
        self, ctx: SessionContext, uplink: asyncio.Queue[AudioFrame], frame: AudioFrame
    ) -> None:
        if ctx.closed or not self.is_connected:
            return
        if uplink.full():
            uplink.get_nowait()
            logger.debug("Uplink queue full; dropped oldest frame")
        uplink.put_nowait(frame)

    async def _uplink_loop(self, ctx: SessionContext, uplink: asyncio.Queue[AudioFrame]) -> None:
        while not ctx.closed:
            frame = await uplink.get()
            await self.send(self._encoder.encode(frame))

    async def _transmit(self, ctx: SessionContext, chunk: OutboundChunk) -> None:
        from google.genai import types

        try:
            await ctx.channel.send_realtime_input(
                audio=types.Blob(data=chunk.data, mime_type=chunk.mime_type),
            )
        except Exception as exc:
            await self._fail(ctx, TransportError(f"Gemini send failed: {exc}"))
            return
        self._chunks_sent += 1
        if self._chunks_sent == 1 or self._chunks_sent % _LOG_EVERY == 0:
            logger.debug("Sent audio chunk #%d (%d bytes)", self._chunks_sent, len(chunk.data))

    # -- Inbound --

    async def _receive_loop(self, ctx: SessionContext) -> None:
        """Process server messages until the connection ends.

        ``live.receive()`` stops after each ``turn_complete``, so it is
        called again for every turn.  A pass that yields nothing means the
        server closed the connection.
        """
        live = ctx.channel
        try:
            while not ctx.closed:
                received = 0
                async for message in live.receive():
                    received += 1
                    try:
                        for event in classify_gemini_message(
                            message, default_rate=self._config.output_sample_rate
                        ):
                            await self._dispatch(ctx, event)
                    except Exception:
                        logger.exception("Error handling Gemini message (session %s)", ctx.id)
                    if ctx.closed:
                        return
                if received == 0:
                    break
        except asyncio.CancelledError:
            raise
        except ConnectionClosed as exc:
            await self._fail(
                ctx, TransportError(f"Gemini closed the connection ({_close_detail(exc)})")
            )
            return
        except Exception as exc:
            await self._fail(ctx, TransportError(f"Gemini connection lost: {exc}"))
            return
        if not ctx.closed:
            await self._fail(ctx, TransportError("Gemini closed the connection"))

    async def _dispatch(self, ctx: SessionContext, event: InboundEvent) -> None:
        turns = ctx.turns
        assert turns is not None
        if isinstance(event, SessionLifecycle):
            if event.kind is SessionEventKind.GO_AWAY:
                logger.warning("Gemini GoAway received (time left: %s)", event.detail or "?")
        elif isinstance(event, AudioPayloadEvent):
            await self._begin_agent_turn(ctx)
            if ctx.scheduler is not None:
                ctx.scheduler.schedule_pcm16(event.data, event.sample_rate)
            self._chunks_received += 1
            if self._chunks_received == 1 or self._chunks_received % _LOG_EVERY == 0:
                logger.debug("Received audio chunk #%d", self._chunks_received)
        elif isinstance(event, TranscriptDelta):
            if event.role is TranscriptRole.USER:
                self._user_buffer.append(event.text)
                if event.final:
                    await self._flush_user_utterance(ctx)
            else:
                await self._begin_agent_turn(ctx)
                await self._emit_transcript(ctx.config.on_agent_transcript, event.text)
        elif isinstance(event, ResponseLifecycle):
            if event.kind is ResponseKind.INTERRUPTED:
                logger.info("Tutor interrupted by student (session %s)", ctx.id)
                if ctx.scheduler is not None:
                    ctx.scheduler.flush()
                turns.on_agent_turn_interrupted()
            elif event.kind is ResponseKind.DONE:
                await self._flush_user_utterance(ctx)
                turns.on_agent_turn_ended()

    async def _begin_agent_turn(self, ctx: SessionContext) -> None:
        await self._flush_user_utterance(ctx)
        if ctx.turns is not None and not ctx.turns.agent_responding:
            ctx.turns.on_agent_turn_started()

    async def _flush_user_utterance(self, ctx: SessionContext) -> None:
        if not self._user_buffer or ctx.turns is None:
            return
        text = "".join(self._user_buffer)
        self._user_buffer = []
        await ctx.turns.on_user_utterance_complete(text)
