"""Audio data models flowing through a tutor session."""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np


@dataclass
class AudioFrame:
    """One block of captured microphone audio.

    Produced by the capture pipeline on every device callback and consumed
    (then discarded) by the outbound encoder or the local media track.
    """

    samples: np.ndarray
    """Mono float32 samples in ``[-1.0, 1.0]``."""

    sample_rate: int = 16000
    """Sample rate in Hz."""

    channels: int = 1
    """Number of audio channels (always 1 for capture)."""

    timestamp: float | None = None
    """Capture time on the event loop clock, in seconds."""

    def __post_init__(self) -> None:
        if not isinstance(self.samples, np.ndarray):
            raise ValueError("AudioFrame.samples must be a numpy array")
        if self.samples.ndim != 1:
            raise ValueError(f"AudioFrame.samples must be 1-D, got shape {self.samples.shape}")
        if self.sample_rate <= 0 or self.sample_rate > 192_000:
            raise ValueError(f"sample_rate must be between 1 and 192000, got {self.sample_rate}")
        if self.channels != 1:
            raise ValueError(f"channels must be 1, got {self.channels}")
        if self.samples.dtype != np.float32:
            self.samples = self.samples.astype(np.float32)

    @property
    def duration(self) -> float:
        """Frame duration in seconds."""
        return len(self.samples) / self.sample_rate


@dataclass
class InboundAudioPayload:
    """Decoded audio received from the provider, scheduled exactly once."""

    samples: np.ndarray
    """Mono float32 samples at ``sample_rate``."""

    sample_rate: int = 24000
    """Native sample rate of the payload (usually higher than capture)."""

    arrival_time: float | None = None
    """Playback-clock time at which the payload arrived."""

    def __post_init__(self) -> None:
        if self.sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {self.sample_rate}")
        if self.samples.dtype != np.float32:
            self.samples = self.samples.astype(np.float32)

    @property
    def duration(self) -> float:
        return len(self.samples) / self.sample_rate


@dataclass
class OutboundChunk:
    """PCM16 audio ready for the wire; owned by the transport once sent."""

    data: bytes
    """Little-endian signed 16-bit mono PCM."""

    sample_rate: int = 16000
    metadata: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if len(self.data) % 2 != 0:
            raise ValueError(f"PCM16 data length must be even, got {len(self.data)}")

    @property
    def mime_type(self) -> str:
        return f"audio/pcm;rate={self.sample_rate}"

    @property
    def duration(self) -> float:
        return len(self.data) / 2 / self.sample_rate
