"""Tests for the OpenAI Realtime WebRTC session."""

from __future__ import annotations

import asyncio
import json
from typing import Any

import numpy as np
import pytest

pytest.importorskip("aiortc")

import av  # noqa: E402
import httpx  # noqa: E402
from aiortc.mediastreams import MediaStreamError  # noqa: E402

from voicetutor.errors import (  # noqa: E402
    DevicePermissionError,
    NegotiationError,
    ProviderError,
    TransportError,
    VoiceTutorError,
)
from voicetutor.prompts.math_tutor import build_openai_instruction  # noqa: E402
from voicetutor.providers.openai import (  # noqa: E402
    OpenAIWebRTCConfig,
    OpenAIWebRTCSession,
    RelayCredential,
)
from voicetutor.voice.base import SessionConfig, SessionState  # noqa: E402
from voicetutor.voice.device import AudioDevice  # noqa: E402
from voicetutor.voice.mock import MockSoundDevice  # noqa: E402

ANSWER_SDP = "v=0\r\no=- 0 0 IN IP4 127.0.0.1\r\ns=-\r\n"


class FakeEmitter:
    """Minimal pyee-style ``on`` decorator registry."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[Any]] = {}

    def on(self, event: str) -> Any:
        def register(fn: Any) -> Any:
            self._handlers.setdefault(event, []).append(fn)
            return fn

        return register

    def emit(self, event: str, *args: Any) -> None:
        for fn in self._handlers.get(event, []):
            fn(*args)


class FakeDataChannel(FakeEmitter):
    def __init__(self, label: str) -> None:
        super().__init__()
        self.label = label
        self.readyState = "connecting"
        self.sent: list[dict[str, Any]] = []

    def send(self, data: str) -> None:
        self.sent.append(json.loads(data))

    def close(self) -> None:
        self.readyState = "closed"

    def open(self) -> None:
        self.readyState = "open"
        self.emit("open")

    def deliver(self, event: dict[str, Any]) -> None:
        self.emit("message", json.dumps(event))

    def of_type(self, event_type: str) -> list[dict[str, Any]]:
        return [e for e in self.sent if e.get("type") == event_type]


class FakeDescription:
    def __init__(self, sdp: str, type: str) -> None:
        self.sdp = sdp
        self.type = type


class FakePeerConnection(FakeEmitter):
    def __init__(self) -> None:
        super().__init__()
        self.channel: FakeDataChannel | None = None
        self.tracks: list[Any] = []
        self.localDescription: FakeDescription | None = None
        self.remoteDescription: Any = None
        self.connectionState = "new"
        self.closed = False

    def createDataChannel(self, label: str) -> FakeDataChannel:  # noqa: N802
        self.channel = FakeDataChannel(label)
        return self.channel

    def addTrack(self, track: Any) -> None:  # noqa: N802
        self.tracks.append(track)

    async def createOffer(self) -> FakeDescription:  # noqa: N802
        return FakeDescription("v=0\r\noffer\r\n", "offer")

    async def setLocalDescription(self, description: FakeDescription) -> None:  # noqa: N802
        self.localDescription = description

    async def setRemoteDescription(self, description: Any) -> None:  # noqa: N802
        self.remoteDescription = description

    async def close(self) -> None:
        self.closed = True
        self.connectionState = "closed"

    def change_state(self, state: str) -> None:
        self.connectionState = state
        self.emit("connectionstatechange")


class PeerFactory:
    def __init__(self) -> None:
        self.peers: list[FakePeerConnection] = []

    def __call__(self) -> FakePeerConnection:
        pc = FakePeerConnection()
        self.peers.append(pc)
        return pc

    @property
    def pc(self) -> FakePeerConnection:
        return self.peers[-1]

    @property
    def channel(self) -> FakeDataChannel:
        assert self.peers[-1].channel is not None
        return self.peers[-1].channel


class FakeRelay:
    def __init__(self, error: Exception | None = None, model: str = "gpt-realtime") -> None:
        self.error = error
        self.model = model
        self.calls = 0
        self.gate: asyncio.Event | None = None

    async def create_session(self) -> RelayCredential:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return RelayCredential(client_secret="ek_test", model=self.model)


class FakeRemoteTrack:
    kind = "audio"

    def __init__(self, frames: list[Any]) -> None:
        self._frames = list(frames)

    async def recv(self) -> Any:
        if not self._frames:
            raise MediaStreamError
        return self._frames.pop(0)


class Harness:
    """Wires an OpenAIWebRTCSession to fakes for relay, HTTP and peer connection."""

    def __init__(
        self,
        audio_device: AudioDevice,
        *,
        sdp_status: int = 201,
        relay: FakeRelay | None = None,
        **options: Any,
    ) -> None:
        self.requests: list[httpx.Request] = []
        self.sdp_status = sdp_status
        self.relay = relay or FakeRelay()
        self.peers = PeerFactory()
        self.http = httpx.AsyncClient(transport=httpx.MockTransport(self._handle))
        self.session = OpenAIWebRTCSession(
            OpenAIWebRTCConfig(**options),
            audio_device=audio_device,
            relay=self.relay,  # type: ignore[arg-type]
            http_client=self.http,
            peer_factory=self.peers,
        )

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.sdp_status >= 400:
            return httpx.Response(self.sdp_status, json={"error": {"message": "bad key"}})
        return httpx.Response(self.sdp_status, text=ANSWER_SDP)

    async def connect(self, config: SessionConfig, advance) -> None:
        task = asyncio.create_task(self.session.connect(config))
        await advance(20)
        self.peers.channel.open()
        await task


class TestHandshake:
    async def test_offer_answer_and_configuration(
        self, audio_device: AudioDevice, session_config: SessionConfig, advance
    ) -> None:
        h = Harness(audio_device, voice="verse")
        states: list[SessionState] = []
        h.session.on_state_change(lambda old, new: states.append(new))

        await h.connect(session_config, advance)

        assert h.session.is_connected
        assert states == [SessionState.CONNECTING, SessionState.CONNECTED]
        assert h.session.model == "gpt-realtime"
        assert h.peers.channel.label == "oai-events"
        assert len(h.peers.pc.tracks) == 1

        request = h.requests[0]
        assert str(request.url) == "https://api.openai.com/v1/realtime?model=gpt-realtime"
        assert request.headers["authorization"] == "Bearer ek_test"
        assert request.headers["content-type"] == "application/sdp"
        assert request.content == b"v=0\r\noffer\r\n"
        assert h.peers.pc.remoteDescription.sdp == ANSWER_SDP
        assert h.peers.pc.remoteDescription.type == "answer"

        update = h.peers.channel.sent[0]
        assert update["type"] == "session.update"
        session = update["session"]
        assert session["voice"] == "verse"
        assert session["turn_detection"]["create_response"] is False
        assert session["turn_detection"]["interrupt_response"] is True
        assert session["instructions"] == build_openai_instruction(
            "Solve x^2-4=0", "x=2 or x=-2", "x=3"
        )
        greeting = h.peers.channel.sent[1]
        assert greeting["type"] == "response.create"
        assert greeting["response"]["instructions"] == h.session.config.greeting_instructions
        assert greeting["response"]["modalities"] == ["audio", "text"]

        await h.session.disconnect()

    async def test_greeting_requested_once(
        self, audio_device: AudioDevice, session_config: SessionConfig, advance
    ) -> None:
        h = Harness(audio_device)
        await h.connect(session_config, advance)
        h.peers.channel.open()
        await advance()
        assert len(h.peers.channel.of_type("response.create")) == 1
        await h.session.disconnect()

    async def test_model_is_query_encoded(
        self, audio_device: AudioDevice, session_config: SessionConfig, advance
    ) -> None:
        h = Harness(audio_device, relay=FakeRelay(model="gpt realtime&beta=1"))
        await h.connect(session_config, advance)
        request = h.requests[0]
        assert request.url.params["model"] == "gpt realtime&beta=1"
        assert list(request.url.params.keys()) == ["model"]
        assert "&beta" not in request.url.query.decode()
        await h.session.disconnect()

    async def test_send_event_requires_open_channel(self, audio_device: AudioDevice) -> None:
        h = Harness(audio_device)
        assert not h.session.send_event({"type": "response.create"})


class TestConnectFailures:
    async def test_permission_denied(
        self,
        sound_device: MockSoundDevice,
        audio_device: AudioDevice,
        session_config: SessionConfig,
    ) -> None:
        """Denied microphone: back to idle, one error, no peer, nothing left open."""
        sound_device.deny_input = True
        h = Harness(audio_device)
        with pytest.raises(DevicePermissionError):
            await h.session.connect(session_config)
        assert h.session.state is SessionState.IDLE
        assert isinstance(h.session.error, DevicePermissionError)
        assert h.relay.calls == 0
        assert h.peers.peers == []
        assert sound_device.open_streams == []

    async def test_relay_failure(
        self,
        sound_device: MockSoundDevice,
        audio_device: AudioDevice,
        session_config: SessionConfig,
    ) -> None:
        relay = FakeRelay(error=NegotiationError("relay down", status_code=500))
        h = Harness(audio_device, relay=relay)
        with pytest.raises(NegotiationError) as info:
            await h.session.connect(session_config)
        assert info.value.status_code == 500
        assert h.session.state is SessionState.IDLE
        assert h.peers.peers == []
        assert sound_device.open_streams == []

    async def test_sdp_rejected(
        self,
        sound_device: MockSoundDevice,
        audio_device: AudioDevice,
        session_config: SessionConfig,
    ) -> None:
        h = Harness(audio_device, sdp_status=401)
        with pytest.raises(NegotiationError) as info:
            await h.session.connect(session_config)
        assert info.value.status_code == 401
        assert "bad key" in info.value.details
        assert h.peers.pc.closed
        assert h.peers.channel.readyState == "closed"
        assert sound_device.open_streams == []

    async def test_disconnect_during_credential_exchange(
        self, audio_device: AudioDevice, session_config: SessionConfig, advance
    ) -> None:
        """A credential arriving after disconnect is never used."""
        relay = FakeRelay()
        relay.gate = asyncio.Event()
        h = Harness(audio_device, relay=relay)

        task = asyncio.create_task(h.session.connect(session_config))
        await advance()
        await h.session.disconnect()
        relay.gate.set()
        await task

        assert h.session.state is SessionState.IDLE
        assert h.session.error is None
        assert h.peers.peers == []
        assert h.requests == []
        assert h.session.model is None


class TestTurnTaking:
    async def test_user_utterance_requests_response(
        self,
        audio_device: AudioDevice,
        session_config: SessionConfig,
        transcripts: dict[str, list[str]],
        advance,
    ) -> None:
        h = Harness(audio_device)
        await h.connect(session_config, advance)
        channel = h.peers.channel

        channel.deliver(
            {
                "type": "conversation.item.input_audio_transcription.completed",
                "transcript": "Is it x equals 3?",
            }
        )
        await advance()

        assert transcripts["user"] == ["Is it x equals 3?"]
        requests = channel.of_type("response.create")
        assert len(requests) == 2
        assert requests[1]["response"]["instructions"] == h.session.config.response_instructions
        assert requests[1]["response"]["modalities"] == ["audio", "text"]

        channel.deliver(
            {
                "type": "conversation.item.input_audio_transcription.completed",
                "transcript": "Or maybe 4?",
            }
        )
        await advance()
        assert len(channel.of_type("response.create")) == 2
        await h.session.disconnect()

    async def test_agent_transcript_forwarded(
        self,
        audio_device: AudioDevice,
        session_config: SessionConfig,
        transcripts: dict[str, list[str]],
        advance,
    ) -> None:
        h = Harness(audio_device)
        await h.connect(session_config, advance)
        h.peers.channel.deliver({"type": "response.audio_transcript.delta", "delta": "Hi "})
        h.peers.channel.deliver({"type": "response.audio_transcript.delta", "delta": "there"})
        await advance()
        assert transcripts["agent"] == ["Hi ", "there"]
        await h.session.disconnect()

    async def test_watchdog_recovers_from_missing_done(
        self, audio_device: AudioDevice, session_config: SessionConfig, advance
    ) -> None:
        """A response that never finishes does not block the next request."""
        h = Harness(audio_device, response_watchdog_timeout=0.05, echo_suppression_window=0.0)
        await h.connect(session_config, advance)
        channel = h.peers.channel
        ctx = h.session.context
        assert ctx is not None and ctx.turns is not None

        channel.deliver({"type": "response.created"})
        await advance()
        assert ctx.turns.agent_responding

        await asyncio.sleep(0.1)
        assert not ctx.turns.agent_responding

        channel.deliver(
            {
                "type": "conversation.item.input_audio_transcription.completed",
                "transcript": "hello?",
            }
        )
        await advance()
        assert len(channel.of_type("response.create")) == 2
        await h.session.disconnect()

    async def test_failed_response_reports_provider_error(
        self, audio_device: AudioDevice, session_config: SessionConfig, advance
    ) -> None:
        h = Harness(audio_device)
        errors: list[VoiceTutorError] = []
        h.session.on_error(errors.append)
        await h.connect(session_config, advance)

        h.peers.channel.deliver({"type": "response.created"})
        h.peers.channel.deliver(
            {
                "type": "response.done",
                "response": {
                    "status": "failed",
                    "status_details": {"error": {"code": "server_error", "message": "oops"}},
                },
            }
        )
        await advance()

        assert len(errors) == 1
        assert isinstance(errors[0], ProviderError)
        assert errors[0].code == "server_error"
        assert h.session.is_connected
        ctx = h.session.context
        assert ctx is not None and ctx.turns is not None
        assert not ctx.turns.agent_responding
        await h.session.disconnect()

    async def test_malformed_messages_ignored(
        self, audio_device: AudioDevice, session_config: SessionConfig, advance
    ) -> None:
        h = Harness(audio_device)
        await h.connect(session_config, advance)
        h.peers.channel.emit("message", "{oops")
        h.peers.channel.deliver({"type": "something.new"})
        await advance()
        assert h.session.is_connected
        await h.session.disconnect()


class TestMedia:
    async def test_microphone_frames_feed_track(
        self,
        sound_device: MockSoundDevice,
        audio_device: AudioDevice,
        session_config: SessionConfig,
        advance,
    ) -> None:
        h = Harness(audio_device)
        await h.connect(session_config, advance)
        sound_device.input_streams[0].emit(np.full(960, 0.1))
        await advance()
        track = h.peers.pc.tracks[0]
        assert track.buffered_seconds == pytest.approx(0.02)
        await h.session.disconnect()
        assert track.readyState == "ended"

    async def test_audio_captured_while_connecting_is_not_sent(
        self,
        sound_device: MockSoundDevice,
        audio_device: AudioDevice,
        session_config: SessionConfig,
        advance,
    ) -> None:
        h = Harness(audio_device)
        task = asyncio.create_task(h.session.connect(session_config))
        await advance(20)
        assert h.session.state is SessionState.CONNECTING
        for _ in range(40):
            sound_device.input_streams[0].emit(np.full(960, 0.1))
        await advance()
        track = h.peers.pc.tracks[0]
        assert track.buffered_seconds == 0.0

        h.peers.channel.open()
        await task
        assert h.session.is_connected
        assert track.buffered_seconds == 0.0

        sound_device.input_streams[0].emit(np.full(960, 0.1))
        await advance()
        assert track.buffered_seconds == pytest.approx(0.02)
        await h.session.disconnect()

    async def test_remote_audio_scheduled(
        self, audio_device: AudioDevice, session_config: SessionConfig, advance
    ) -> None:
        h = Harness(audio_device)
        await h.connect(session_config, advance)
        frame = av.AudioFrame.from_ndarray(
            np.full((1, 960), 8192, dtype=np.int16), format="s16", layout="mono"
        )
        frame.sample_rate = 48000
        h.peers.pc.emit("track", FakeRemoteTrack([frame]))
        await advance()

        ctx = h.session.context
        assert ctx is not None and ctx.scheduler is not None
        assert ctx.scheduler.scheduled_count == 1
        assert h.session.output_analyser is not None
        await h.session.disconnect()


class TestTeardown:
    async def test_data_channel_close_ends_session(
        self,
        sound_device: MockSoundDevice,
        audio_device: AudioDevice,
        session_config: SessionConfig,
        advance,
    ) -> None:
        h = Harness(audio_device)
        errors: list[VoiceTutorError] = []
        h.session.on_error(errors.append)
        await h.connect(session_config, advance)

        h.peers.channel.emit("close")
        await advance(10)

        assert len(errors) == 1
        assert isinstance(errors[0], TransportError)
        assert h.session.state is SessionState.IDLE
        assert h.peers.pc.closed
        assert sound_device.open_streams == []

    async def test_peer_failure_ends_session(
        self, audio_device: AudioDevice, session_config: SessionConfig, advance
    ) -> None:
        h = Harness(audio_device)
        errors: list[VoiceTutorError] = []
        h.session.on_error(errors.append)
        await h.connect(session_config, advance)

        h.peers.pc.change_state("failed")
        await advance(10)

        assert [type(e) for e in errors] == [TransportError]
        assert h.session.state is SessionState.IDLE

    async def test_disconnect_is_idempotent(
        self,
        sound_device: MockSoundDevice,
        audio_device: AudioDevice,
        session_config: SessionConfig,
        advance,
    ) -> None:
        h = Harness(audio_device)
        await h.connect(session_config, advance)
        await h.session.disconnect()
        await h.session.disconnect()
        assert h.session.state is SessionState.IDLE
        assert h.peers.pc.closed
        assert sound_device.open_streams == []
        assert audio_device.users == 0
