"""Visualization tap over an audio signal.

An :class:`AnalyserTap` observes samples without altering them and keeps
enough history for a UI to draw a waveform or a spectrum.  Samples are
fed from the PortAudio thread and read from the event loop, so all state
is guarded by a lock.
"""

from __future__ import annotations

import math
import threading

import numpy as np

_SILENCE_DB = -100.0


class AnalyserTap:
    """Rolling FFT/level analyser for one direction of audio.

    Args:
        fft_size: Window length in samples; must be a power of two.
        smoothing: Exponential smoothing applied between spectrum reads (0..1).
        min_db: Level mapped to 0 in byte frequency data.
        max_db: Level mapped to 255 in byte frequency data.
    """

    def __init__(
        self,
        fft_size: int = 256,
        *,
        smoothing: float = 0.8,
        min_db: float = -100.0,
        max_db: float = -30.0,
    ) -> None:
        if fft_size < 32 or fft_size & (fft_size - 1):
            raise ValueError(f"fft_size must be a power of two >= 32, got {fft_size}")
        if not 0.0 <= smoothing < 1.0:
            raise ValueError(f"smoothing must be in [0, 1), got {smoothing}")
        if min_db >= max_db:
            raise ValueError("min_db must be lower than max_db")
        self._fft_size = fft_size
        self._smoothing = smoothing
        self._min_db = min_db
        self._max_db = max_db
        self._buffer = np.zeros(fft_size, dtype=np.float32)
        self._window = np.blackman(fft_size).astype(np.float32)
        self._smoothed = np.zeros(fft_size // 2, dtype=np.float32)
        self._lock = threading.Lock()

    @property
    def fft_size(self) -> int:
        return self._fft_size

    @property
    def frequency_bin_count(self) -> int:
        return self._fft_size // 2

    def feed(self, samples: np.ndarray) -> None:
        """Append samples to the rolling window."""
        if len(samples) == 0:
            return
        tail = np.asarray(samples, dtype=np.float32)[-self._fft_size :]
        with self._lock:
            self._buffer = np.roll(self._buffer, -len(tail))
            self._buffer[-len(tail) :] = tail

    def get_float_time_domain_data(self) -> np.ndarray:
        with self._lock:
            return self._buffer.copy()

    def get_byte_time_domain_data(self) -> np.ndarray:
        """Waveform scaled to ``0..255`` with 128 as the zero line."""
        data = self.get_float_time_domain_data()
        return np.clip(128.0 * (data + 1.0), 0, 255).astype(np.uint8)

    def get_float_frequency_data(self) -> np.ndarray:
        """Smoothed magnitude spectrum in dBFS, one value per bin."""
        with self._lock:
            windowed = self._buffer * self._window
            magnitude = np.abs(np.fft.rfft(windowed))[: self.frequency_bin_count]
            magnitude = magnitude / self._fft_size
            self._smoothed = (
                self._smoothing * self._smoothed + (1.0 - self._smoothing) * magnitude
            ).astype(np.float32)
            smoothed = self._smoothed.copy()
        with np.errstate(divide="ignore"):
            db = 20.0 * np.log10(smoothed)
        return np.where(np.isfinite(db), db, _SILENCE_DB).astype(np.float32)

    def get_byte_frequency_data(self) -> np.ndarray:
        """Spectrum scaled to ``0..255`` between ``min_db`` and ``max_db``."""
        db = self.get_float_frequency_data()
        scaled = 255.0 * (db - self._min_db) / (self._max_db - self._min_db)
        return np.clip(scaled, 0, 255).astype(np.uint8)

    def level_db(self) -> float:
        """RMS level of the current window in dBFS (``-60.0`` for silence)."""
        data = self.get_float_time_domain_data()
        rms = float(np.sqrt(np.mean(np.square(data, dtype=np.float64))))
        if rms < 1e-10:
            return -60.0
        return max(-60.0, 20.0 * math.log10(rms))

    def reset(self) -> None:
        with self._lock:
            self._buffer[:] = 0.0
            self._smoothed[:] = 0.0
