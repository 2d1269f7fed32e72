"""Microphone capture pipeline."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

import numpy as np

from voicetutor.voice.analyser import AnalyserTap
from voicetutor.voice.audio_frame import AudioFrame
from voicetutor.voice.device import AudioDevice

logger = logging.getLogger("voicetutor.voice.capture")

FrameCallback = Callable[[AudioFrame], Any]


class AudioCapture:
    """Captures mono microphone audio and delivers fixed-size frames.

    Frames are produced on the PortAudio thread and handed to the event
    loop, where the analyser tap is fed and every ``on_frame`` callback
    runs.  While muted the stream keeps running and frames carry silence.

    Args:
        device: Audio device that opens the input stream.
        sample_rate: Capture rate in Hz; ``None`` uses the device's native rate.
        block_size: Samples per delivered frame.
        mute_mic_during_playback: Drop frames while the speaker is playing
            (half-duplex echo suppression for setups without headphones).
    """

    def __init__(
        self,
        device: AudioDevice,
        *,
        sample_rate: int | None = None,
        block_size: int = 512,
        mute_mic_during_playback: bool = False,
    ) -> None:
        self._device = device
        self._requested_rate = sample_rate
        self._sample_rate = sample_rate or 0
        self._block_size = block_size
        self._mute_mic_during_playback = mute_mic_during_playback
        self._stream: Any = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._analyser = AnalyserTap(256, smoothing=0.8)
        self._callbacks: list[FrameCallback] = []
        self._muted = False
        self._frames = 0

    @property
    def analyser(self) -> AnalyserTap:
        return self._analyser

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def active(self) -> bool:
        return self._stream is not None

    @property
    def muted(self) -> bool:
        return self._muted

    @muted.setter
    def muted(self, value: bool) -> None:
        if value != self._muted:
            logger.info("Microphone %s", "muted" if value else "unmuted")
        self._muted = value

    def on_frame(self, callback: FrameCallback) -> None:
        """Register a callback for every captured frame."""
        self._callbacks.append(callback)

    async def start(self) -> None:
        """Open the microphone.

        Raises:
            DevicePermissionError: The microphone is missing or access was denied.
        """
        if self._stream is not None:
            logger.warning("Capture already started")
            return
        self._loop = asyncio.get_running_loop()
        rate = self._requested_rate or self._device.default_input_rate()
        self._sample_rate = rate
        self._frames = 0
        self._stream = self._device.open_input(rate, self._block_size, self._on_audio)
        logger.info("Mic capture started: rate=%d, block=%d", rate, self._block_size)

    def stop(self) -> None:
        """Close the microphone; safe to call repeatedly."""
        stream = self._stream
        if stream is None:
            return
        self._stream = None
        try:
            stream.stop()
        except Exception:
            logger.warning("Error stopping mic stream", exc_info=True)
        finally:
            stream.close()
        self._analyser.reset()
        logger.info("Mic capture stopped after %d frames", self._frames)

    def _on_audio(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        if status:
            logger.warning("Mic status: %s", status)
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        samples = np.array(indata[:, 0], dtype=np.float32)
        loop.call_soon_threadsafe(self._deliver, samples)

    def _deliver(self, samples: np.ndarray) -> None:
        # The stream may have been stopped while this hop was queued.
        if self._stream is None:
            return
        if self._muted:
            samples = np.zeros_like(samples)
        self._analyser.feed(samples)
        if self._mute_mic_during_playback and self._device.is_playing():
            return
        frame = AudioFrame(
            samples=samples,
            sample_rate=self._sample_rate,
            timestamp=self._loop.time() if self._loop is not None else None,
        )
        self._frames += 1
        for cb in self._callbacks:
            try:
                cb(frame)
            except Exception:
                logger.exception("Error in frame callback")
