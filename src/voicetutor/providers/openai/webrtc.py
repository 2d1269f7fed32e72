"""OpenAI Realtime tutor session over WebRTC.

Audio travels as live media tracks on an ``aiortc`` peer connection while
transcripts and response lifecycle events travel as JSON on the
``oai-events`` data channel.  The provider's turn detection is configured
not to start responses on its own, so every tutor reply is requested
explicitly after a completed student utterance.

Requires the ``aiortc`` and ``httpx`` packages.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any

from voicetutor.errors import NegotiationError, ProviderError, TransportError
from voicetutor.prompts.math_tutor import build_openai_instruction
from voicetutor.providers.openai.config import OpenAIWebRTCConfig
from voicetutor.providers.openai.relay import RelayClient, RelayCredential
from voicetutor.voice.audio_frame import AudioFrame, InboundAudioPayload, OutboundChunk
from voicetutor.voice.base import TranscriptRole
from voicetutor.voice.codec import pcm16_to_float
from voicetutor.voice.device import AudioDevice
from voicetutor.voice.realtime.events import (
    InboundEvent,
    ResponseKind,
    ResponseLifecycle,
    SessionEventKind,
    SessionLifecycle,
    TranscriptDelta,
)
from voicetutor.voice.realtime.session import SessionContext, TutorSession
from voicetutor.voice.turn import ClientTurnCoordinator

logger = logging.getLogger("voicetutor.providers.openai.webrtc")

DATA_CHANNEL_LABEL = "oai-events"

PeerFactory = Callable[[], Any]
"""Creates an ``RTCPeerConnection``-compatible object."""

_CLOSED = object()


def _import_webrtc() -> tuple[Any, Any]:
    """Import aiortc and the track module, raising a clear error if missing."""
    try:
        import aiortc as _aiortc

        from voicetutor.providers.openai import tracks as _tracks
    except ImportError as exc:
        raise ImportError(
            "aiortc is required for OpenAIWebRTCSession. Install it with: pip install aiortc"
        ) from exc
    return _aiortc, _tracks


def _error_fields(error: Any) -> tuple[str, str]:
    if not isinstance(error, dict):
        return "unknown", str(error or "")
    code = error.get("code") or error.get("type") or "unknown"
    return str(code), str(error.get("message", ""))


def classify_openai_event(event: dict[str, Any]) -> list[InboundEvent]:
    """Map one data-channel event to inbound events; unknown types map to nothing."""
    if not isinstance(event, dict):
        return []
    event_type = event.get("type", "")

    if event_type == "conversation.item.input_audio_transcription.completed":
        text = str(event.get("transcript") or "")
        if not text.strip():
            return []
        return [TranscriptDelta(TranscriptRole.USER, text, final=True)]

    if event_type in ("response.audio_transcript.delta", "response.output_audio_transcript.delta"):
        delta = str(event.get("delta") or "")
        return [TranscriptDelta(TranscriptRole.AGENT, delta)] if delta else []

    if event_type == "response.created":
        return [ResponseLifecycle(ResponseKind.CREATED)]

    if event_type == "response.done":
        response = event.get("response") or {}
        if response.get("status") == "failed":
            details = response.get("status_details") or {}
            code, message = _error_fields(details.get("error"))
            return [ResponseLifecycle(ResponseKind.ERROR, code, message)]
        return [ResponseLifecycle(ResponseKind.DONE)]

    if event_type == "response.output_item.done":
        return [ResponseLifecycle(ResponseKind.DONE)]

    if event_type in ("response.error", "error"):
        code, message = _error_fields(event.get("error"))
        return [ResponseLifecycle(ResponseKind.ERROR, code, message)]

    if event_type in ("session.created", "session.updated"):
        return [SessionLifecycle(SessionEventKind.UPDATED, event_type)]

    # response.audio_transcript.done and everything else
    return []


class OpenAIWebRTCSession(TutorSession):
    """Tutor session using OpenAI Realtime over a WebRTC peer connection.

    Connect order: audio device, microphone, playback scheduler, relay
    credential, outbound track, peer connection, data channel, SDP
    offer/answer.  The session counts as established once the data channel
    opens; at that point it configures the remote session and asks for the
    greeting.

    Example:
        session = OpenAIWebRTCSession(OpenAIWebRTCConfig(relay_url="http://localhost:3000/api/openai"))
        await session.connect(SessionConfig(question="2x = 6", correct_answer="x = 3"))

    Args:
        config: Provider configuration.
        audio_device: Shared audio device; defaults to the process-wide one.
        relay: Credential source; built from ``config.relay_url`` when omitted.
        http_client: ``httpx.AsyncClient`` used for the SDP exchange (and the relay).
        peer_factory: Builds the peer connection (for tests).
    """

    def __init__(
        self,
        config: OpenAIWebRTCConfig | None = None,
        *,
        audio_device: AudioDevice | None = None,
        relay: RelayClient | None = None,
        http_client: Any = None,
        peer_factory: PeerFactory | None = None,
    ) -> None:
        config = config or OpenAIWebRTCConfig()
        super().__init__(audio_device=audio_device, connect_timeout=config.connect_timeout)
        self._config = config
        self._relay = relay or RelayClient(
            config.relay_url, client=http_client, timeout=config.http_timeout
        )
        self._http_client = http_client
        self._peer_factory = peer_factory
        self._model: str | None = None

    @property
    def name(self) -> str:
        return "openai_webrtc"

    @property
    def config(self) -> OpenAIWebRTCConfig:
        return self._config

    @property
    def model(self) -> str | None:
        """Model named by the relay for the current session."""
        return self._model

    def build_session_update(self, instructions: str) -> dict[str, Any]:
        cfg = self._config
        return {
            "type": "session.update",
            "session": {
                "modalities": ["audio", "text"],
                "instructions": instructions,
                "voice": cfg.voice,
                "input_audio_transcription": {"model": cfg.transcription_model},
                "turn_detection": {
                    "type": "server_vad",
                    "create_response": False,
                    "interrupt_response": True,
                },
                "max_response_output_tokens": cfg.max_response_output_tokens,
            },
        }

    @staticmethod
    def build_response_request(instructions: str) -> dict[str, Any]:
        return {
            "type": "response.create",
            "response": {"modalities": ["audio", "text"], "instructions": instructions},
        }

    # -- Handshake --

    async def _open(self, ctx: SessionContext) -> None:
        cfg = self._config
        aiortc, tracks = _import_webrtc()
        ctx.turns = ClientTurnCoordinator(
            lambda: self._request_response(ctx),
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

        credential = await self._relay.create_session()
        ctx.ensure_live()
        self._model = credential.model

        track = tracks.MicrophoneTrack(cfg.capture_sample_rate)
        await ctx.hold(track.stop, what="microphone track")
        ctx.track = track
        capture.on_frame(lambda frame: self._forward_frame(ctx, frame))

        pc = self._peer_factory() if self._peer_factory is not None else aiortc.RTCPeerConnection()
        await ctx.hold(pc.close, what="peer connection")
        ctx.peer = pc

        channel = pc.createDataChannel(DATA_CHANNEL_LABEL)
        await ctx.hold(channel.close, what="data channel")
        ctx.channel = channel
        pc.addTrack(track)

        self._register_handlers(ctx, pc, channel, tracks)

        offer = await pc.createOffer()
        await pc.setLocalDescription(offer)
        ctx.ensure_live()

        answer_sdp = await self._exchange_sdp(pc.localDescription.sdp, credential)
        ctx.ensure_live()
        await pc.setRemoteDescription(aiortc.RTCSessionDescription(sdp=answer_sdp, type="answer"))
        logger.info("SDP negotiated with %s (session %s)", credential.model, ctx.id)

    def _register_handlers(self, ctx: SessionContext, pc: Any, channel: Any, tracks: Any) -> None:
        inbox: asyncio.Queue[Any] = asyncio.Queue()
        ctx.spawn(self._receive_loop(ctx, inbox), name="openai_recv")

        @pc.on("track")
        def on_track(remote: Any) -> None:
            if ctx.closed or remote.kind != "audio":
                return
            logger.info("Remote audio track received (session %s)", ctx.id)
            ctx.spawn(self._pump_remote_audio(ctx, remote, tracks), name="openai_remote_audio")

        @pc.on("connectionstatechange")
        def on_connection_state() -> None:
            state = pc.connectionState
            logger.debug("Peer connection state: %s (session %s)", state, ctx.id)
            if state in ("failed", "closed") and not ctx.closed:
                ctx.spawn(
                    self._fail(ctx, TransportError(f"Peer connection {state}")),
                    name="openai_fail",
                )

        @channel.on("open")
        def on_open() -> None:
            if not ctx.closed:
                ctx.spawn(self._on_channel_open(ctx), name="openai_configure")

        @channel.on("message")
        def on_message(message: Any) -> None:
            if not ctx.closed:
                inbox.put_nowait(message)

        @channel.on("close")
        def on_close() -> None:
            if not ctx.closed:
                inbox.put_nowait(_CLOSED)

    async def _exchange_sdp(self, offer_sdp: str, credential: RelayCredential) -> str:
        import httpx

        url = self._config.realtime_url
        params = {"model": credential.model}
        headers = {
            "Authorization": f"Bearer {credential.client_secret}",
            "Content-Type": "application/sdp",
        }
        try:
            if self._http_client is not None:
                resp = await self._http_client.post(
                    url,
                    params=params,
                    content=offer_sdp,
                    headers=headers,
                    timeout=self._config.http_timeout,
                )
            else:
                async with httpx.AsyncClient(timeout=self._config.http_timeout) as client:
                    resp = await client.post(url, params=params, content=offer_sdp, headers=headers)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise NegotiationError(
                f"SDP exchange failed with HTTP {exc.response.status_code}",
                status_code=exc.response.status_code,
                details=exc.response.text,
            ) from exc
        except httpx.HTTPError as exc:
            raise NegotiationError(f"SDP exchange failed: {exc}") from exc
        answer = resp.text
        if not answer.strip():
            raise NegotiationError("SDP exchange returned an empty answer")
        return answer

    async def _on_channel_open(self, ctx: SessionContext) -> None:
        cfg = self._config
        instructions = build_openai_instruction(
            ctx.config.question,
            ctx.config.correct_answer,
            ctx.config.wrong_attempt,
            language=cfg.language,
        )
        if not self.send_event(self.build_session_update(instructions)):
            return
        if not ctx.greeting_sent:
            ctx.greeting_sent = True
            self.send_event(self.build_response_request(cfg.greeting_instructions))
            logger.info("Greeting requested (session %s)", ctx.id)
        if ctx.turns is not None:
            ctx.turns.arm_watchdog()
        if ctx.track is not None:
            ctx.track.clear()
        self._mark_established(ctx)

    # -- Outbound --

    def send_event(self, event: dict[str, Any]) -> bool:
        """Send a control event on the data channel; returns whether it went out."""
        ctx = self._ctx
        if ctx is None or ctx.closed or ctx.channel is None:
            return False
        if ctx.channel.readyState != "open":
            logger.debug("Data channel not open; dropping %s", event.get("type"))
            return False
        ctx.channel.send(json.dumps(event))
        return True

    async def _request_response(self, ctx: SessionContext) -> bool:
        if ctx.closed:
            return False
        return self.send_event(self.build_response_request(self._config.response_instructions))

    def _forward_frame(self, ctx: SessionContext, frame: AudioFrame) -> None:
        # Audio captured before the session is connected is never sent
        if ctx.closed or not self.is_connected or ctx.track is None:
            return
        ctx.track.push(frame)

    async def _transmit(self, ctx: SessionContext, chunk: OutboundChunk) -> None:
        if ctx.track is None:
            return
        ctx.track.push(AudioFrame(samples=pcm16_to_float(chunk.data), sample_rate=chunk.sample_rate))

    # -- Inbound --

    async def _pump_remote_audio(self, ctx: SessionContext, remote: Any, tracks: Any) -> None:
        received = 0
        while not ctx.closed:
            try:
                frame = await remote.recv()
            except tracks.MediaStreamError:
                logger.debug("Remote audio track ended after %d frames", received)
                return
            if ctx.scheduler is None:
                continue
            ctx.scheduler.schedule(
                InboundAudioPayload(
                    samples=tracks.audio_frame_to_mono(frame),
                    sample_rate=frame.sample_rate,
                    arrival_time=self._device.current_time,
                )
            )
            received += 1

    async def _receive_loop(self, ctx: SessionContext, inbox: asyncio.Queue[Any]) -> None:
        while not ctx.closed:
            raw = await inbox.get()
            if raw is _CLOSED:
                await self._fail(ctx, TransportError("OpenAI data channel closed"))
                return
            try:
                event = json.loads(raw)
            except (json.JSONDecodeError, TypeError, UnicodeDecodeError):
                logger.warning("Invalid JSON on data channel (session %s)", ctx.id)
                continue
            try:
                for inbound in classify_openai_event(event):
                    await self._dispatch(ctx, inbound)
            except Exception:
                logger.exception("Error handling OpenAI event (session %s)", ctx.id)

    async def _dispatch(self, ctx: SessionContext, event: InboundEvent) -> None:
        turns = ctx.turns
        assert turns is not None
        if isinstance(event, TranscriptDelta):
            if event.role is TranscriptRole.USER:
                await turns.on_user_utterance_complete(event.text)
            else:
                await self._emit_transcript(ctx.config.on_agent_transcript, event.text)
        elif isinstance(event, ResponseLifecycle):
            if event.kind is ResponseKind.CREATED:
                turns.on_agent_turn_started()
            elif event.kind is ResponseKind.DONE:
                turns.on_agent_turn_ended()
            elif event.kind is ResponseKind.ERROR:
                turns.on_agent_turn_ended()
                await self._report_provider_error(
                    ctx, ProviderError(event.message or "OpenAI response failed", code=event.code)
                )
        elif isinstance(event, SessionLifecycle):
            logger.debug("OpenAI %s (session %s)", event.detail, ctx.id)
