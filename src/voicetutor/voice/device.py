"""Process-wide audio device shared by tutor sessions.

The device owns the speaker output stream and hands out microphone input
streams.  The output stream is opened when the first session acquires
the device and closed when the last one releases it.  Playback is
clock-driven: callers schedule buffers at absolute times on the device
clock (:attr:`AudioDevice.current_time`, in seconds of rendered audio)
and the PortAudio callback mixes whatever is due.

Requires the ``sounddevice`` dependency::

    pip install voicetutor
"""

from __future__ import annotations

import contextlib
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

import numpy as np

from voicetutor.errors import DevicePermissionError

logger = logging.getLogger("voicetutor.voice.device")

InputCallback = Callable[[Any, int, Any, Any], None]
"""PortAudio input callback: (indata, frames, time_info, status)."""


def _import_sounddevice() -> Any:
    """Import sounddevice, raising a clear error if missing."""
    try:
        import sounddevice as _sd

        return _sd
    except ImportError as exc:
        raise ImportError(
            "sounddevice is required for local audio. Install it with: pip install sounddevice"
        ) from exc


class OutputTap(Protocol):
    def feed(self, samples: np.ndarray) -> None: ...


@dataclass
class _ScheduledBuffer:
    start_index: int
    samples: np.ndarray
    owner: object

    @property
    def end_index(self) -> int:
        return self.start_index + len(self.samples)


class AudioDevice:
    """Speaker output plus microphone access with refcounted lifetime.

    Args:
        output_sample_rate: Rate of the playback stream (Hz).
        input_device: Sounddevice input device index or name (None = default).
        output_device: Sounddevice output device index or name (None = default).
        block_size: Output block size in frames (0 lets PortAudio choose).
        sd: A sounddevice-compatible module; imported lazily when omitted.
    """

    def __init__(
        self,
        *,
        output_sample_rate: int = 48000,
        input_device: int | str | None = None,
        output_device: int | str | None = None,
        block_size: int = 0,
        sd: Any = None,
    ) -> None:
        self._output_sample_rate = output_sample_rate
        self._input_device = input_device
        self._output_device = output_device
        self._block_size = block_size
        self._sd = sd

        self._users = 0
        self._output_stream: Any = None
        self._frames_rendered = 0
        self._scheduled: list[_ScheduledBuffer] = []
        self._taps: list[OutputTap] = []
        self._lock = threading.Lock()

    @property
    def sd(self) -> Any:
        if self._sd is None:
            self._sd = _import_sounddevice()
        return self._sd

    @property
    def output_sample_rate(self) -> int:
        return self._output_sample_rate

    @property
    def users(self) -> int:
        return self._users

    @property
    def is_open(self) -> bool:
        return self._output_stream is not None

    @property
    def current_time(self) -> float:
        """Playback clock in seconds since the output stream opened."""
        with self._lock:
            return self._frames_rendered / self._output_sample_rate

    # -------------------------------------------------------------------------
    # Lifetime
    # -------------------------------------------------------------------------

    def acquire(self) -> None:
        """Register a user, opening the output stream on first use."""
        if self._users == 0:
            self._open_output()
        self._users += 1
        logger.debug("Audio device acquired (users=%d)", self._users)

    def release(self) -> None:
        """Drop a user, closing the output stream after the last one."""
        if self._users == 0:
            logger.debug("Audio device release without matching acquire")
            return
        self._users -= 1
        logger.debug("Audio device released (users=%d)", self._users)
        if self._users == 0:
            self._close_output()

    def _open_output(self) -> None:
        sd = self.sd
        try:
            stream = sd.OutputStream(
                samplerate=self._output_sample_rate,
                blocksize=self._block_size,
                channels=1,
                dtype="float32",
                device=self._output_device,
                callback=self._render,
            )
            stream.start()
        except (sd.PortAudioError, OSError, ValueError) as exc:
            raise DevicePermissionError(f"Audio output unavailable: {exc}") from exc
        with self._lock:
            self._frames_rendered = 0
            self._scheduled.clear()
        self._output_stream = stream
        logger.info(
            "Speaker stream opened: rate=%dHz device=%s",
            self._output_sample_rate,
            self._output_device or "default",
        )

    def _close_output(self) -> None:
        stream = self._output_stream
        self._output_stream = None
        with self._lock:
            self._scheduled.clear()
            self._taps.clear()
        if stream is None:
            return
        try:
            stream.abort()
        except Exception:
            logger.debug("Error aborting speaker stream", exc_info=True)
        finally:
            with contextlib.suppress(Exception):
                stream.close()
        logger.info("Speaker stream closed")

    # -------------------------------------------------------------------------
    # Microphone
    # -------------------------------------------------------------------------

    def default_input_rate(self) -> int:
        """Native sample rate of the selected input device."""
        sd = self.sd
        try:
            info = sd.query_devices(self._input_device, "input")
        except (sd.PortAudioError, ValueError) as exc:
            raise DevicePermissionError(f"No microphone available: {exc}") from exc
        return int(info["default_samplerate"])

    def open_input(self, sample_rate: int, block_size: int, callback: InputCallback) -> Any:
        """Open and start a mono float32 microphone stream."""
        sd = self.sd
        try:
            stream = sd.InputStream(
                samplerate=sample_rate,
                blocksize=block_size,
                channels=1,
                dtype="float32",
                device=self._input_device,
                callback=callback,
            )
            stream.start()
        except (sd.PortAudioError, OSError, ValueError) as exc:
            raise DevicePermissionError(f"Microphone unavailable: {exc}") from exc
        return stream

    # -------------------------------------------------------------------------
    # Playback
    # -------------------------------------------------------------------------

    def play_at(self, start_time: float, samples: np.ndarray, owner: object) -> None:
        """Schedule ``samples`` to start at ``start_time`` on the device clock."""
        if self._output_stream is None:
            logger.debug("Dropping %d samples: speaker stream is closed", len(samples))
            return
        start_index = round(start_time * self._output_sample_rate)
        with self._lock:
            self._scheduled.append(
                _ScheduledBuffer(start_index, np.asarray(samples, dtype=np.float32), owner)
            )

    def cancel(self, owner: object) -> int:
        """Drop every buffer scheduled by ``owner``; returns how many."""
        with self._lock:
            before = len(self._scheduled)
            self._scheduled = [b for b in self._scheduled if b.owner is not owner]
            return before - len(self._scheduled)

    def is_playing(self, owner: object | None = None) -> bool:
        """Whether scheduled audio is pending or sounding."""
        with self._lock:
            return any(
                b.end_index > self._frames_rendered
                for b in self._scheduled
                if owner is None or b.owner is owner
            )

    def add_output_tap(self, tap: OutputTap) -> None:
        with self._lock:
            if tap not in self._taps:
                self._taps.append(tap)

    def remove_output_tap(self, tap: OutputTap) -> None:
        with self._lock:
            if tap in self._taps:
                self._taps.remove(tap)

    def _render(self, outdata: Any, frames: int, time_info: Any, status: Any) -> None:
        """PortAudio output callback: mix every buffer due in this block."""
        if status:
            logger.warning("Speaker callback status: %s", status)
        mix = np.zeros(frames, dtype=np.float32)
        with self._lock:
            block_start = self._frames_rendered
            block_end = block_start + frames
            remaining: list[_ScheduledBuffer] = []
            wrote = False
            for buf in self._scheduled:
                if buf.end_index <= block_start:
                    continue
                if buf.start_index < block_end:
                    lo = max(buf.start_index, block_start)
                    hi = min(buf.end_index, block_end)
                    mix[lo - block_start : hi - block_start] += buf.samples[
                        lo - buf.start_index : hi - buf.start_index
                    ]
                    wrote = True
                if buf.end_index > block_end:
                    remaining.append(buf)
            self._scheduled = remaining
            self._frames_rendered = block_end
            taps = list(self._taps) if wrote else []
        outdata[:, 0] = np.clip(mix, -1.0, 1.0)
        for tap in taps:
            with contextlib.suppress(Exception):
                tap.feed(mix)


_default_device: AudioDevice | None = None


def default_audio_device() -> AudioDevice:
    """Return the process-wide :class:`AudioDevice`, creating it on first use."""
    global _default_device
    if _default_device is None:
        _default_device = AudioDevice()
    return _default_device
