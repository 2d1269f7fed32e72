"""Tests for the microphone capture pipeline."""

from __future__ import annotations

import numpy as np
import pytest

from voicetutor.errors import DevicePermissionError
from voicetutor.voice.audio_frame import AudioFrame
from voicetutor.voice.capture import AudioCapture
from voicetutor.voice.device import AudioDevice
from voicetutor.voice.mock import MockSoundDevice


class TestStart:
    async def test_uses_native_rate_by_default(
        self, sound_device: MockSoundDevice, audio_device: AudioDevice
    ) -> None:
        capture = AudioCapture(audio_device)
        await capture.start()
        assert capture.sample_rate == 48000
        assert capture.active
        stream = sound_device.input_streams[0]
        assert stream.kwargs["samplerate"] == 48000
        assert stream.kwargs["blocksize"] == 512
        assert stream.active

    async def test_explicit_rate(self, sound_device: MockSoundDevice) -> None:
        capture = AudioCapture(AudioDevice(sd=sound_device), sample_rate=16000, block_size=256)
        await capture.start()
        assert sound_device.input_streams[0].kwargs["samplerate"] == 16000

    async def test_permission_denied(self, sound_device: MockSoundDevice) -> None:
        sound_device.deny_input = True
        capture = AudioCapture(AudioDevice(sd=sound_device), sample_rate=16000)
        with pytest.raises(DevicePermissionError):
            await capture.start()
        assert not capture.active

    async def test_stop_is_idempotent(
        self, sound_device: MockSoundDevice, audio_device: AudioDevice
    ) -> None:
        capture = AudioCapture(audio_device)
        await capture.start()
        capture.stop()
        capture.stop()
        assert not capture.active
        assert sound_device.input_streams[0].closed


class TestFrames:
    async def test_frames_delivered_on_loop(
        self, sound_device: MockSoundDevice, audio_device: AudioDevice, advance
    ) -> None:
        frames: list[AudioFrame] = []
        capture = AudioCapture(audio_device)
        capture.on_frame(frames.append)
        await capture.start()

        sound_device.input_streams[0].emit(np.full(512, 0.25))
        await advance()

        assert len(frames) == 1
        assert frames[0].sample_rate == 48000
        assert np.allclose(frames[0].samples, 0.25)
        assert capture.analyser.level_db() > -20.0

    async def test_muted_frames_are_silence(
        self, sound_device: MockSoundDevice, audio_device: AudioDevice, advance
    ) -> None:
        frames: list[AudioFrame] = []
        capture = AudioCapture(audio_device)
        capture.on_frame(frames.append)
        await capture.start()
        capture.muted = True

        sound_device.input_streams[0].emit(np.full(512, 0.25))
        await advance()

        assert len(frames) == 1
        assert np.all(frames[0].samples == 0.0)
        assert sound_device.input_streams[0].active

    async def test_no_frames_after_stop(
        self, sound_device: MockSoundDevice, audio_device: AudioDevice, advance
    ) -> None:
        frames: list[AudioFrame] = []
        capture = AudioCapture(audio_device)
        capture.on_frame(frames.append)
        await capture.start()
        stream = sound_device.input_streams[0]
        stream.emit(np.zeros(512))
        capture.stop()
        await advance()
        assert frames == []

    async def test_half_duplex_drops_during_playback(
        self, sound_device: MockSoundDevice, audio_device: AudioDevice, advance
    ) -> None:
        frames: list[AudioFrame] = []
        audio_device.acquire()
        capture = AudioCapture(audio_device, mute_mic_during_playback=True)
        capture.on_frame(frames.append)
        await capture.start()

        audio_device.play_at(0.0, np.ones(480, dtype=np.float32), owner="agent")
        sound_device.input_streams[0].emit(np.full(512, 0.1))
        await advance()
        assert frames == []

        sound_device.output_streams[0].render(480)
        sound_device.input_streams[0].emit(np.full(512, 0.1))
        await advance()
        assert len(frames) == 1

    async def test_callback_error_is_contained(
        self, sound_device: MockSoundDevice, audio_device: AudioDevice, advance
    ) -> None:
        frames: list[AudioFrame] = []

        def broken(frame: AudioFrame) -> None:
            raise RuntimeError("encoder failed")

        capture = AudioCapture(audio_device)
        capture.on_frame(broken)
        capture.on_frame(frames.append)
        await capture.start()
        sound_device.input_streams[0].emit(np.zeros(512))
        await advance()
        assert len(frames) == 1
