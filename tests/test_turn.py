"""Tests for turn-taking coordination."""

from __future__ import annotations

import asyncio

from voicetutor.voice.turn import ClientTurnCoordinator, ServerTurnCoordinator


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


class TestUserTranscripts:
    async def test_forwards_stripped_text(self) -> None:
        seen: list[str] = []
        turns = ServerTurnCoordinator(seen.append)
        assert await turns.on_user_utterance_complete("  I think x is 2  ")
        assert seen == ["I think x is 2"]

    async def test_blank_dropped(self) -> None:
        seen: list[str] = []
        turns = ServerTurnCoordinator(seen.append)
        assert not await turns.on_user_utterance_complete("   ")
        assert seen == []

    async def test_duplicate_is_case_insensitive(self) -> None:
        seen: list[str] = []
        turns = ServerTurnCoordinator(seen.append)
        await turns.on_user_utterance_complete("Hello")
        assert not await turns.on_user_utterance_complete("hello")
        assert seen == ["Hello"]

    async def test_echo_window_drops_then_accepts(self) -> None:
        """Speech right after the agent finishes is treated as echo."""
        clock = FakeClock()
        seen: list[str] = []
        turns = ServerTurnCoordinator(seen.append, echo_window=1.2, clock=clock)
        turns.on_agent_turn_started()
        turns.on_agent_turn_ended()

        clock.now += 0.5
        assert not await turns.on_user_utterance_complete("what is the answer")
        clock.now += 1.0
        assert await turns.on_user_utterance_complete("what is the answer")
        assert seen == ["what is the answer"]

    async def test_interruption_opens_no_echo_window(self) -> None:
        clock = FakeClock()
        seen: list[str] = []
        turns = ServerTurnCoordinator(seen.append, clock=clock)
        turns.on_agent_turn_started()
        turns.on_agent_turn_interrupted()
        assert not turns.agent_responding
        assert not turns.watchdog_armed
        assert await turns.on_user_utterance_complete("wait")

    async def test_async_callback_awaited(self) -> None:
        seen: list[str] = []

        async def record(text: str) -> None:
            seen.append(text)

        turns = ServerTurnCoordinator(record)
        await turns.on_user_utterance_complete("two")
        assert seen == ["two"]

    async def test_callback_error_does_not_propagate(self) -> None:
        def boom(text: str) -> None:
            raise RuntimeError("ui gone")

        turns = ServerTurnCoordinator(boom)
        assert await turns.on_user_utterance_complete("hi")


class TestClientTurnCoordinator:
    async def test_requests_response_once(self) -> None:
        requests: list[int] = []

        async def request() -> bool:
            requests.append(1)
            return True

        turns = ClientTurnCoordinator(request, watchdog_timeout=5.0)
        await turns.on_user_utterance_complete("first")
        assert turns.agent_responding
        assert turns.watchdog_armed
        await turns.on_user_utterance_complete("second")
        assert len(requests) == 1

    async def test_failed_request_leaves_floor_open(self) -> None:
        async def request() -> bool:
            return False

        turns = ClientTurnCoordinator(request)
        await turns.on_user_utterance_complete("hello")
        assert not turns.agent_responding
        assert not turns.watchdog_armed

    async def test_watchdog_clears_stuck_response(self) -> None:
        """A response that never completes stops blocking new requests."""
        requests: list[int] = []

        async def request() -> bool:
            requests.append(1)
            return True

        clock = FakeClock()
        turns = ClientTurnCoordinator(request, watchdog_timeout=0.01, echo_window=1.2, clock=clock)
        await turns.on_user_utterance_complete("first")
        assert turns.agent_responding

        await asyncio.sleep(0.05)
        assert not turns.agent_responding
        assert not turns.watchdog_armed

        clock.now += 2.0
        await turns.on_user_utterance_complete("second")
        assert len(requests) == 2

    async def test_turn_end_disarms_watchdog(self) -> None:
        async def request() -> bool:
            return True

        turns = ClientTurnCoordinator(request)
        turns.on_agent_turn_started()
        assert turns.watchdog_armed
        turns.on_agent_turn_ended()
        assert not turns.watchdog_armed

    async def test_reset(self) -> None:
        async def request() -> bool:
            return True

        turns = ClientTurnCoordinator(request)
        await turns.on_user_utterance_complete("hello")
        turns.reset()
        assert not turns.agent_responding
        assert not turns.watchdog_armed
        assert turns.state.last_user_transcript == ""
