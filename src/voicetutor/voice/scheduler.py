"""Gapless playback of inbound provider audio."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from voicetutor.voice.analyser import AnalyserTap
from voicetutor.voice.audio_frame import InboundAudioPayload
from voicetutor.voice.codec import decode_pcm16_payload, resample_linear
from voicetutor.voice.device import AudioDevice

logger = logging.getLogger("voicetutor.voice.scheduler")

_LOG_EVERY = 50


@dataclass(frozen=True)
class ScheduledPlayback:
    """Where one payload landed on the playback timeline (seconds)."""

    start: float
    duration: float

    @property
    def end(self) -> float:
        return self.start + self.duration


class PlaybackTimeline:
    """A single monotonically advancing "next free slot".

    Every reservation starts at ``max(now, next_free_slot)`` and pushes the
    slot forward by its duration, so reservations never overlap and keep
    their arrival order.  A late reservation leaves a gap; nothing is
    buffered ahead to hide it.
    """

    def __init__(self, start: float = 0.0) -> None:
        self._next = start

    @property
    def next_free_slot(self) -> float:
        return self._next

    def reserve(self, duration: float, now: float) -> ScheduledPlayback:
        if duration < 0:
            raise ValueError(f"duration must be non-negative, got {duration}")
        start = max(now, self._next)
        self._next = start + duration
        return ScheduledPlayback(start=start, duration=duration)

    def reset(self, at: float) -> None:
        self._next = at


class InboundAudioScheduler:
    """Decodes provider audio and queues it back-to-back on the device clock.

    The output analyser is attached on the first scheduled payload, so a
    session that never receives audio never taps the speaker.

    Args:
        device: Audio device providing the playback clock.
        initial_lead: Head start between :meth:`start` and the first slot (seconds).
    """

    def __init__(self, device: AudioDevice, *, initial_lead: float = 0.1) -> None:
        self._device = device
        self._initial_lead = initial_lead
        self._timeline = PlaybackTimeline()
        self._analyser: AnalyserTap | None = None
        self._active = False
        self._scheduled = 0

    @property
    def timeline(self) -> PlaybackTimeline:
        return self._timeline

    @property
    def analyser(self) -> AnalyserTap | None:
        return self._analyser

    @property
    def active(self) -> bool:
        return self._active

    @property
    def scheduled_count(self) -> int:
        return self._scheduled

    @property
    def is_playing(self) -> bool:
        return self._device.is_playing(self)

    def start(self) -> None:
        self._timeline.reset(self._device.current_time + self._initial_lead)
        self._scheduled = 0
        self._active = True

    def schedule_pcm16(self, data: bytes, sample_rate: int) -> ScheduledPlayback | None:
        """Decode a raw PCM16 buffer and schedule it."""
        payload = decode_pcm16_payload(
            data, sample_rate, arrival_time=self._device.current_time
        )
        return self.schedule(payload)

    def schedule(self, payload: InboundAudioPayload) -> ScheduledPlayback | None:
        """Queue ``payload`` after everything already scheduled.

        Returns ``None`` when the scheduler is stopped or the payload is empty.
        """
        if not self._active:
            logger.debug("Scheduler stopped; dropping inbound payload")
            return None
        if len(payload.samples) == 0:
            return None
        if self._analyser is None:
            self._analyser = AnalyserTap(256, smoothing=0.8)
            self._device.add_output_tap(self._analyser)

        now = self._device.current_time
        slot = self._timeline.reserve(payload.duration, now)

        rate = self._device.output_sample_rate
        # Integer sample bounds shared with the device so consecutive slots abut.
        n_out = round(slot.end * rate) - round(slot.start * rate)
        samples = payload.samples
        if payload.sample_rate != rate or len(samples) != n_out:
            samples = resample_linear(samples, n_out)
        self._device.play_at(slot.start, samples, owner=self)

        self._scheduled += 1
        if self._scheduled == 1 or self._scheduled % _LOG_EVERY == 0:
            logger.debug(
                "Scheduled payload #%d at %.3fs (%.3fs, lag %.3fs)",
                self._scheduled,
                slot.start,
                slot.duration,
                slot.start - now,
            )
        return slot

    def flush(self) -> int:
        """Drop queued playback (barge-in) and pull the slot back to now."""
        dropped = self._device.cancel(self)
        self._timeline.reset(self._device.current_time)
        if dropped:
            logger.info("Flushed %d scheduled payloads", dropped)
        return dropped

    def stop(self) -> None:
        """Stop scheduling and release the speaker tap; safe to repeat."""
        if not self._active:
            return
        self._active = False
        self._device.cancel(self)
        if self._analyser is not None:
            self._device.remove_output_tap(self._analyser)
        logger.debug("Scheduler stopped after %d payloads", self._scheduled)
