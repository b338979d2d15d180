"""HTTP transport for the SendGrid v3 API.

The transport never interprets responses.  It returns the raw body, the status
code and, when the request could not complete at all, the transport-level
exception.  Classifying that triple is the client's job.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import TracebackType
from typing import Any

import httpx

logger = logging.getLogger(__name__)

SENDGRID_API_BASE_URL = "https://api.sendgrid.com/v3"
DEFAULT_REQUEST_TIMEOUT_SECONDS = 30.0
USER_AGENT = "gridsync/0.1.0"


@dataclass(frozen=True)
class TransportResponse:
    """Raw outcome of one request.

    ``status_code`` is 0 when ``error`` is set, since no response was received.
    """

    body: bytes
    status_code: int
    error: httpx.HTTPError | None = None
    headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


class SendGridTransport:
    """Authenticated request helper over a shared ``httpx.AsyncClient``.

    When no client is injected the transport creates and owns one, and closes
    it in :meth:`aclose`.
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = SENDGRID_API_BASE_URL,
        timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_key.strip():
            raise ValueError("api_key must be a non-empty string")
        self._api_key = api_key.strip()
        self._base_url = base_url.rstrip("/")
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout_seconds)

    @property
    def base_url(self) -> str:
        return self._base_url

    async def issue_request(
        self,
        method: str,
        path: str,
        body: Any = None,
        *,
        params: dict[str, Any] | None = None,
    ) -> TransportResponse:
        normalized_path = path if path.startswith("/") else f"/{path}"
        url = f"{self._base_url}{normalized_path}"
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
        }
        try:
            response = await self._http_client.request(
                method,
                url,
                params=params,
                json=body,
                headers=headers,
            )
        except httpx.HTTPError as exc:
            logger.debug("SendGrid %s %s failed before a response: %s", method, path, exc)
            return TransportResponse(body=b"", status_code=0, error=exc)

        logger.debug("SendGrid %s %s -> %d", method, path, response.status_code)
        return TransportResponse(
            body=response.content,
            status_code=response.status_code,
            headers=dict(response.headers),
        )

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http_client.aclose()

    async def __aenter__(self) -> SendGridTransport:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()
