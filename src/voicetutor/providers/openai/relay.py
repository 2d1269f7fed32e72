"""Client for the relay that mints short-lived OpenAI Realtime credentials."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from voicetutor.errors import NegotiationError

if TYPE_CHECKING:
    import httpx

logger = logging.getLogger("voicetutor.providers.openai.relay")


@dataclass(frozen=True)
class RelayCredential:
    """A short-lived client secret and the model it is valid for."""

    client_secret: str
    model: str

    def __repr__(self) -> str:
        return f"RelayCredential(client_secret='**********', model={self.model!r})"


class RelayClient:
    """Exchanges nothing for ``{clientSecret, model}`` via ``POST {relay_url}/session``.

    Args:
        relay_url: Base URL of the relay's OpenAI routes.
        client: Optional shared ``httpx.AsyncClient``; one is created per call otherwise.
        timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        relay_url: str,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 15.0,
    ) -> None:
        try:
            import httpx as _httpx
        except ImportError as exc:
            raise ImportError(
                "httpx is required for RelayClient. Install it with: pip install httpx"
            ) from exc
        self._httpx = _httpx
        self._relay_url = relay_url.rstrip("/")
        self._client = client
        self._timeout = timeout

    @property
    def session_url(self) -> str:
        return f"{self._relay_url}/session"

    async def create_session(self) -> RelayCredential:
        """Fetch a fresh credential.

        Raises:
            NegotiationError: The relay is unreachable, answered with a
                non-success status, or returned an unusable body.
        """
        try:
            if self._client is not None:
                resp = await self._client.post(self.session_url, timeout=self._timeout)
            else:
                async with self._httpx.AsyncClient(timeout=self._timeout) as client:
                    resp = await client.post(self.session_url)
            resp.raise_for_status()
            data: dict[str, Any] = resp.json()
        except self._httpx.TimeoutException as exc:
            raise NegotiationError("Relay session request timed out") from exc
        except self._httpx.HTTPStatusError as exc:
            details = _error_details(exc.response)
            raise NegotiationError(
                f"Relay session request failed with HTTP {exc.response.status_code}",
                status_code=exc.response.status_code,
                details=details,
            ) from exc
        except self._httpx.HTTPError as exc:
            raise NegotiationError(f"Relay unreachable: {exc}") from exc
        except ValueError as exc:
            raise NegotiationError("Relay returned invalid JSON") from exc

        secret = data.get("clientSecret") if isinstance(data, dict) else None
        model = data.get("model") if isinstance(data, dict) else None
        if not secret or not model:
            raise NegotiationError("Relay response is missing clientSecret or model")
        logger.info("Obtained realtime credential for model %s", model)
        return RelayCredential(client_secret=secret, model=model)


def _error_details(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict):
        return str(body.get("details") or body.get("error") or body)
    return str(body)
