"""aiortc media tracks bridging local audio and the peer connection.

Requires the ``aiortc`` package.
"""

from __future__ import annotations

import asyncio
import fractions
import logging
import time
from typing import Any

import av
import numpy as np
from aiortc import MediaStreamTrack
from aiortc.mediastreams import MediaStreamError

from voicetutor.voice.audio_frame import AudioFrame
from voicetutor.voice.codec import float_to_pcm16, resample_nearest

logger = logging.getLogger("voicetutor.providers.openai.tracks")

_PTIME = 0.02
_MAX_BUFFER_SECONDS = 1.0


class MicrophoneTrack(MediaStreamTrack):
    """Outbound audio track fed by the capture pipeline.

    Frames pushed from capture are buffered as PCM16 and handed to the
    peer connection in real-time 20 ms packets.  When capture falls behind
    the track emits silence so the media clock keeps running.

    Args:
        sample_rate: Rate of the emitted frames (Hz).
    """

    kind = "audio"

    def __init__(self, sample_rate: int = 48000) -> None:
        super().__init__()
        self._sample_rate = sample_rate
        self._samples_per_frame = int(sample_rate * _PTIME)
        self._buffer = bytearray()
        self._max_bytes = int(sample_rate * _MAX_BUFFER_SECONDS) * 2
        self._start: float | None = None
        self._timestamp = 0

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def buffered_seconds(self) -> float:
        return len(self._buffer) / 2 / self._sample_rate

    def push(self, frame: AudioFrame) -> None:
        """Queue a captured frame for sending."""
        samples = resample_nearest(frame.samples, frame.sample_rate, self._sample_rate)
        self.push_pcm16(float_to_pcm16(samples))

    def push_pcm16(self, data: bytes) -> None:
        if self.readyState != "live":
            return
        self._buffer.extend(data)
        overflow = len(self._buffer) - self._max_bytes
        if overflow > 0:
            del self._buffer[: overflow + (overflow % 2)]

    def clear(self) -> None:
        """Drop any audio queued but not yet sent."""
        self._buffer.clear()

    async def recv(self) -> av.AudioFrame:
        if self.readyState != "live":
            raise MediaStreamError

        if self._start is None:
            self._start = time.time()
            self._timestamp = 0
        else:
            self._timestamp += self._samples_per_frame
            wait = self._start + (self._timestamp / self._sample_rate) - time.time()
            if wait > 0:
                await asyncio.sleep(wait)

        needed = self._samples_per_frame * 2
        chunk = bytes(self._buffer[:needed])
        del self._buffer[:needed]
        if len(chunk) < needed:
            chunk += b"\x00" * (needed - len(chunk))

        frame = av.AudioFrame(format="s16", layout="mono", samples=self._samples_per_frame)
        frame.planes[0].update(chunk)
        frame.pts = self._timestamp
        frame.sample_rate = self._sample_rate
        frame.time_base = fractions.Fraction(1, self._sample_rate)
        return frame


def audio_frame_to_mono(frame: Any) -> np.ndarray:
    """Convert a decoded ``av.AudioFrame`` to mono float32 samples."""
    data = frame.to_ndarray()
    scale = 32768.0 if np.issubdtype(data.dtype, np.integer) else 1.0
    samples = data.astype(np.float32) / scale
    channels = len(frame.layout.channels)
    if channels == 1:
        mono = samples.reshape(-1)
    elif frame.format.is_planar:
        mono = samples.reshape(channels, -1).mean(axis=0)
    else:
        mono = samples.reshape(-1, channels).mean(axis=1)
    return mono.astype(np.float32)
