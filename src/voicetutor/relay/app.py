"""Credential relay: trades the server-held OpenAI key for a short-lived client secret."""

from __future__ import annotations

import logging
from typing import Any

import httpx
from fastapi import FastAPI
from fastapi.responses import JSONResponse

from voicetutor.relay.config import RelaySettings

logger = logging.getLogger("voicetutor.relay.app")


def create_app(
    settings: RelaySettings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Create the relay application.

    Args:
        settings: Relay settings; read from the environment when omitted.
        transport: Optional httpx transport for the upstream call (for tests).
    """
    settings = settings or RelaySettings()
    app = FastAPI(
        title="Voice Tutor Relay",
        description="Mints short-lived OpenAI Realtime credentials",
        version="0.1.0",
    )
    app.state.settings = settings

    @app.get("/api/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/api/openai/session")
    async def create_openai_session() -> JSONResponse:
        if settings.openai_api_key is None or not settings.openai_api_key.get_secret_value():
            return JSONResponse(
                {"error": "OPENAI_API_KEY is not configured on the server."}, status_code=500
            )

        try:
            async with httpx.AsyncClient(
                transport=transport, timeout=settings.upstream_timeout
            ) as client:
                resp = await client.post(
                    settings.openai_sessions_url,
                    headers={
                        "Authorization": f"Bearer {settings.openai_api_key.get_secret_value()}",
                        "Content-Type": "application/json",
                    },
                    json={
                        "model": settings.openai_realtime_model,
                        "voice": settings.openai_voice,
                    },
                )
            if not resp.is_success:
                logger.warning("Upstream session request failed: HTTP %d", resp.status_code)
                return JSONResponse(
                    {
                        "error": "Failed to create OpenAI realtime session.",
                        "details": resp.text,
                    },
                    status_code=resp.status_code,
                )
            data: Any = resp.json()
        except (httpx.HTTPError, ValueError):
            logger.exception("OpenAI session creation failed")
            return JSONResponse(
                {"error": "Unexpected error creating OpenAI realtime session."}, status_code=500
            )

        secret = data.get("client_secret") if isinstance(data, dict) else None
        client_secret = secret.get("value") if isinstance(secret, dict) else None
        if not client_secret:
            return JSONResponse(
                {"error": "OpenAI session response missing client secret."}, status_code=500
            )

        logger.info("Issued realtime client secret for %s", settings.openai_realtime_model)
        return JSONResponse(
            {"clientSecret": client_secret, "model": settings.openai_realtime_model}
        )

    return app
