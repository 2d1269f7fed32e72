"""Relay server configuration via environment variables."""

from __future__ import annotations

from pydantic import SecretStr
from pydantic_settings import BaseSettings


class RelaySettings(BaseSettings):
    """Settings for the credential relay.

    Values come from the environment (``OPENAI_API_KEY``, ``PORT``, ...)
    and from a ``.env`` file in the working directory.
    """

    openai_api_key: SecretStr | None = None
    openai_realtime_model: str = "gpt-realtime"
    openai_voice: str = "alloy"
    openai_sessions_url: str = "https://api.openai.com/v1/realtime/sessions"
    upstream_timeout: float = 15.0

    host: str = "0.0.0.0"
    port: int = 3000

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}
