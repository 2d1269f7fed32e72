"""Mock audio hardware for testing.

:class:`MockSoundDevice` stands in for the ``sounddevice`` module so an
:class:`~voicetutor.voice.device.AudioDevice` can run without PortAudio.

Example:
    sd = MockSoundDevice()
    device = AudioDevice(sd=sd, output_sample_rate=24000)

    device.acquire()
    sd.output_streams[0].render(480)   # advance the playback clock by 20 ms
    assert device.current_time == 0.02

    sd.deny_input = True               # next microphone open fails
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import numpy as np


class MockPortAudioError(Exception):
    """Mirror of ``sounddevice.PortAudioError``."""


@dataclass
class MockCall:
    """Record of a call made to MockSoundDevice."""

    method: str
    args: dict[str, Any] = field(default_factory=dict)


class MockStream:
    """A fake PortAudio stream driven by the test."""

    def __init__(self, kind: str, kwargs: dict[str, Any]) -> None:
        self.kind = kind
        self.kwargs = kwargs
        self.callback = kwargs.get("callback")
        self.samplerate = kwargs.get("samplerate")
        self.started = False
        self.stopped = False
        self.closed = False

    @property
    def active(self) -> bool:
        return self.started and not self.stopped and not self.closed

    def start(self) -> None:
        self.started = True

    def stop(self) -> None:
        self.stopped = True

    def abort(self) -> None:
        self.stopped = True

    def close(self) -> None:
        self.closed = True

    def emit(self, samples: np.ndarray | list[float]) -> None:
        """Deliver microphone samples through the input callback."""
        data = np.asarray(samples, dtype=np.float32).reshape(-1, 1)
        if self.callback is not None:
            self.callback(data, len(data), None, None)

    def render(self, frames: int) -> np.ndarray:
        """Pull ``frames`` samples through the output callback."""
        outdata = np.zeros((frames, 1), dtype=np.float32)
        if self.callback is not None:
            self.callback(outdata, frames, None, None)
        return outdata[:, 0].copy()


class MockSoundDevice:
    """Drop-in replacement for the parts of ``sounddevice`` voicetutor uses.

    Args:
        input_rate: Value reported as the input device's default sample rate.
    """

    PortAudioError = MockPortAudioError

    def __init__(self, *, input_rate: int = 48000) -> None:
        self.input_rate = input_rate
        self.deny_input = False
        self.deny_output = False
        self.calls: list[MockCall] = []
        self.input_streams: list[MockStream] = []
        self.output_streams: list[MockStream] = []

    @property
    def open_streams(self) -> list[MockStream]:
        """Streams that were created and not closed yet."""
        return [s for s in self.input_streams + self.output_streams if not s.closed]

    def InputStream(self, **kwargs: Any) -> MockStream:  # noqa: N802
        self.calls.append(MockCall(method="InputStream", args=kwargs))
        if self.deny_input:
            raise MockPortAudioError("Error opening InputStream: Permission denied")
        stream = MockStream("input", kwargs)
        self.input_streams.append(stream)
        return stream

    def OutputStream(self, **kwargs: Any) -> MockStream:  # noqa: N802
        self.calls.append(MockCall(method="OutputStream", args=kwargs))
        if self.deny_output:
            raise MockPortAudioError("Error opening OutputStream: Device unavailable")
        stream = MockStream("output", kwargs)
        self.output_streams.append(stream)
        return stream

    def query_devices(self, device: Any = None, kind: str | None = None) -> dict[str, Any]:
        self.calls.append(MockCall(method="query_devices", args={"device": device, "kind": kind}))
        if kind == "input" and self.deny_input:
            raise MockPortAudioError("No input device")
        return {"name": "mock", "default_samplerate": float(self.input_rate)}
