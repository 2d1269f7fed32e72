"""Credential relay server."""

from __future__ import annotations

from voicetutor.relay.app import create_app
from voicetutor.relay.config import RelaySettings

__all__ = ["RelaySettings", "create_app"]
