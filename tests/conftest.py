"""Shared test fixtures and helpers."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Coroutine
from typing import Any

import pytest

from voicetutor.voice.base import SessionConfig
from voicetutor.voice.device import AudioDevice
from voicetutor.voice.mock import MockSoundDevice


@pytest.fixture
def advance() -> Callable[[int], Coroutine[Any, Any, None]]:
    """Yield control to let pending tasks run without real delay.

        await advance()       # 5 yields (default)
        await advance(10)     # 10 yields for heavier workloads
    """

    async def _advance(n: int = 5) -> None:
        for _ in range(n):
            await asyncio.sleep(0)

    return _advance


@pytest.fixture
def sound_device() -> MockSoundDevice:
    return MockSoundDevice(input_rate=48000)


@pytest.fixture
def audio_device(sound_device: MockSoundDevice) -> AudioDevice:
    return AudioDevice(sd=sound_device, output_sample_rate=24000)


@pytest.fixture
def transcripts() -> dict[str, list[str]]:
    return {"user": [], "agent": []}


@pytest.fixture
def session_config(transcripts: dict[str, list[str]]) -> SessionConfig:
    return SessionConfig(
        question="Solve x^2-4=0",
        correct_answer="x=2 or x=-2",
        wrong_attempt="x=3",
        on_user_transcript=transcripts["user"].append,
        on_agent_transcript=transcripts["agent"].append,
    )
