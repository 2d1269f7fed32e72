"""PCM16 codec and resampling helpers for the outbound and inbound paths."""

from __future__ import annotations

import logging

import numpy as np

from voicetutor.voice.audio_frame import AudioFrame, InboundAudioPayload, OutboundChunk

logger = logging.getLogger("voicetutor.voice.codec")

_POSITIVE_SCALE = 32767.0
_NEGATIVE_SCALE = 32768.0


def float_to_pcm16(samples: np.ndarray) -> bytes:
    """Convert float samples to little-endian signed 16-bit PCM.

    Samples are clamped to ``[-1.0, 1.0]`` and scaled asymmetrically so
    that ``1.0`` maps to ``32767`` and ``-1.0`` maps to ``-32768``.
    Fractional results are truncated toward zero.
    """
    clipped = np.clip(np.asarray(samples, dtype=np.float64), -1.0, 1.0)
    scaled = np.where(clipped < 0, clipped * _NEGATIVE_SCALE, clipped * _POSITIVE_SCALE)
    return np.trunc(scaled).astype("<i2").tobytes()


def pcm16_to_float(data: bytes) -> np.ndarray:
    """Decode little-endian signed 16-bit PCM into float32 samples.

    Uses the inverse of the encoder's asymmetric scale, so ``32767`` decodes
    to ``1.0`` and ``-32768`` to ``-1.0``.
    """
    usable = len(data) - (len(data) % 2)
    if usable != len(data):
        logger.debug("Dropping trailing odd byte from %d-byte PCM16 buffer", len(data))
    ints = np.frombuffer(data[:usable], dtype="<i2")
    values = ints.astype(np.float32)
    return np.where(values < 0, values / _NEGATIVE_SCALE, values / _POSITIVE_SCALE).astype(
        np.float32
    )


def resample_nearest(samples: np.ndarray, src_rate: int, dst_rate: int) -> np.ndarray:
    """Point-sample ``samples`` from ``src_rate`` to ``dst_rate``.

    Output sample ``i`` is input sample ``floor(i * src_rate / dst_rate)``.
    There is no anti-aliasing filter; speech stays intelligible but
    content above the new Nyquist frequency folds back.
    """
    if src_rate == dst_rate or len(samples) == 0:
        return samples
    new_length = len(samples) * dst_rate // src_rate
    if new_length <= 0:
        return samples[:0]
    indices = np.arange(new_length, dtype=np.int64) * src_rate // dst_rate
    np.minimum(indices, len(samples) - 1, out=indices)
    return samples[indices]


def resample_linear(samples: np.ndarray, num_samples: int) -> np.ndarray:
    """Stretch ``samples`` to exactly ``num_samples`` with linear interpolation."""
    if num_samples <= 0 or len(samples) == 0:
        return np.zeros(max(num_samples, 0), dtype=np.float32)
    if num_samples == len(samples):
        return samples.astype(np.float32, copy=False)
    src_positions = np.linspace(0.0, len(samples) - 1, num=num_samples)
    return np.interp(src_positions, np.arange(len(samples)), samples).astype(np.float32)


def decode_pcm16_payload(
    data: bytes, sample_rate: int, *, arrival_time: float | None = None
) -> InboundAudioPayload:
    """Decode a provider PCM16 buffer into a schedulable payload."""
    return InboundAudioPayload(
        samples=pcm16_to_float(data),
        sample_rate=sample_rate,
        arrival_time=arrival_time,
    )


class OutboundEncoder:
    """Turns captured frames into PCM16 chunks at the wire sample rate.

    Args:
        target_rate: Sample rate the remote endpoint expects (Hz).
    """

    def __init__(self, target_rate: int = 16000) -> None:
        self._target_rate = target_rate
        self._frames = 0

    @property
    def target_rate(self) -> int:
        return self._target_rate

    @property
    def frames_encoded(self) -> int:
        return self._frames

    def encode(self, frame: AudioFrame) -> OutboundChunk:
        samples = resample_nearest(frame.samples, frame.sample_rate, self._target_rate)
        self._frames += 1
        if self._frames == 1 and frame.sample_rate != self._target_rate:
            logger.info(
                "Resampling capture audio %dHz -> %dHz (point sampling)",
                frame.sample_rate,
                self._target_rate,
            )
        return OutboundChunk(data=float_to_pcm16(samples), sample_rate=self._target_rate)
