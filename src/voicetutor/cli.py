"""Command line entry point: run a tutoring session or the credential relay."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys

from voicetutor.errors import SessionConnectError, VoiceTutorError
from voicetutor.transcript import TranscriptLog
from voicetutor.voice.base import SessionConfig, SessionState, TranscriptRole
from voicetutor.voice.realtime.session import TutorSession

logger = logging.getLogger("voicetutor.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="voicetutor", description="Voice math tutor.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    sub = parser.add_subparsers(dest="command")

    for name, help_text in (
        ("gemini", "Tutor over Gemini Live."),
        ("openai", "Tutor over OpenAI Realtime (WebRTC)."),
    ):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("--question", required=True, help="The math problem.")
        cmd.add_argument("--answer", required=True, help="The correct answer.")
        cmd.add_argument("--attempt", help="The student's wrong attempt.")
        cmd.add_argument("--input-device", help="Microphone device index or name.")
        cmd.add_argument("--output-device", help="Speaker device index or name.")
        cmd.add_argument("--output-rate", type=int, default=48000, help="Speaker sample rate.")
        cmd.add_argument(
            "--full-duplex",
            action="store_true",
            help="Keep the microphone open while the tutor speaks (use headphones).",
        )

    gemini = sub.choices["gemini"]
    gemini.add_argument("--api-key", help="Gemini API key (default: $GEMINI_API_KEY).")
    gemini.add_argument("--model", help="Gemini Live model.")
    gemini.add_argument("--voice", default="Zephyr", help="Prebuilt voice name.")

    openai = sub.choices["openai"]
    openai.add_argument(
        "--relay-url",
        help="Relay base URL (default: $VOICETUTOR_RELAY_URL or http://localhost:3000/api/openai).",
    )
    openai.add_argument("--voice", default="alloy", help="Output voice.")

    relay = sub.add_parser("relay", help="Run the credential relay server.")
    relay.add_argument("--host", help="Bind address.")
    relay.add_argument("--port", type=int, help="Bind port.")
    return parser


def _device_arg(value: str | None) -> int | str | None:
    if value is None:
        return None
    return int(value) if value.isdigit() else value


def build_session(args: argparse.Namespace) -> TutorSession:
    """Create the provider session selected on the command line."""
    from voicetutor.voice.device import AudioDevice

    device = AudioDevice(
        output_sample_rate=args.output_rate,
        input_device=_device_arg(args.input_device),
        output_device=_device_arg(args.output_device),
    )
    if args.command == "gemini":
        from voicetutor.providers.gemini import GeminiLiveConfig, GeminiLiveSession

        api_key = args.api_key or os.environ.get("GEMINI_API_KEY")
        if not api_key:
            raise SystemExit("Set GEMINI_API_KEY or pass --api-key.")
        options: dict[str, object] = {"voice": args.voice}
        if args.model:
            options["model"] = args.model
        gemini_config = GeminiLiveConfig(
            api_key=api_key, mute_mic_during_playback=not args.full_duplex, **options
        )
        return GeminiLiveSession(gemini_config, audio_device=device)

    from voicetutor.providers.openai import OpenAIWebRTCConfig, OpenAIWebRTCSession

    relay_url = (
        args.relay_url
        or os.environ.get("VOICETUTOR_RELAY_URL")
        or OpenAIWebRTCConfig.model_fields["relay_url"].default
    )
    openai_config = OpenAIWebRTCConfig(
        relay_url=relay_url,
        voice=args.voice,
        mute_mic_during_playback=not args.full_duplex,
    )
    return OpenAIWebRTCSession(openai_config, audio_device=device)


async def run_session(session: TutorSession, args: argparse.Namespace) -> int:
    transcript = TranscriptLog()

    def show_user(text: str) -> None:
        transcript.add(TranscriptRole.USER, text)
        print(f"\nstudent> {text}", flush=True)

    def show_agent(text: str) -> None:
        transcript.add(TranscriptRole.AGENT, text)
        print(text, end="", flush=True)

    config = SessionConfig(
        question=args.question,
        correct_answer=args.answer,
        wrong_attempt=args.attempt,
        on_user_transcript=show_user,
        on_agent_transcript=show_agent,
    )

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    def on_state(old: SessionState, new: SessionState) -> None:
        if new is SessionState.IDLE:
            stop.set()

    def on_error(error: VoiceTutorError) -> None:
        print(f"\n[error] {error}", file=sys.stderr, flush=True)

    session.on_state_change(on_state)
    session.on_error(on_error)

    try:
        await session.connect(config)
    except SessionConnectError as exc:
        print(f"Could not start the session: {exc}", file=sys.stderr)
        return 1

    print("Connected. Speak to your tutor; press Ctrl+C to stop.", flush=True)
    try:
        await stop.wait()
    finally:
        await session.disconnect()
    logger.info("Session ended with %d transcript entries", len(transcript))
    return 1 if session.error is not None else 0


def run_relay(args: argparse.Namespace) -> int:
    import uvicorn

    from voicetutor.relay import RelaySettings, create_app

    settings = RelaySettings()
    host = args.host or settings.host
    port = args.port or settings.port
    uvicorn.run(create_app(settings), host=host, port=port)
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    if args.command == "relay":
        return run_relay(args)
    if args.command in ("gemini", "openai"):
        session = build_session(args)
        return asyncio.run(run_session(session, args))

    parser.print_help()
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
