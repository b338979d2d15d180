"""Shared fixtures: an in-memory SendGrid served through ``httpx.MockTransport``."""

from __future__ import annotations

import itertools
import json
from collections.abc import AsyncIterator
from typing import Any

import httpx
import pytest

from gridsync.client import SendGridClient
from gridsync.config import RetryConfig
from gridsync.transport import SENDGRID_API_BASE_URL, SendGridTransport

TEST_API_KEY = "SG.test-key-id.test-key-secret"
API_PREFIX = "/v3"


def _error(status_code: int, message: str) -> httpx.Response:
    return httpx.Response(status_code, json={"errors": [{"field": None, "message": message}]})


class FakeSendGrid:
    """Minimal stateful emulation of the subuser and API key endpoints.

    Every request is recorded in ``requests``.  Responses queued with
    :meth:`queue` are served first for a matching method and path.
    """

    def __init__(self) -> None:
        self.subusers: dict[str, dict[str, Any]] = {}
        self.api_keys: dict[str, dict[str, Any]] = {}
        self.requests: list[httpx.Request] = []
        self._queued: list[tuple[str, str, httpx.Response | Exception]] = []
        self._user_ids = itertools.count(1001)
        self._key_ids = itertools.count(1)

    # -- test controls ---------------------------------------------------

    def queue(self, method: str, path: str, response: httpx.Response | Exception) -> None:
        """Serve *response* (or raise *exception*) for the next ``method path`` request."""
        self._queued.append((method, path, response))

    def calls(self, method: str | None = None, path: str | None = None) -> list[httpx.Request]:
        return [
            r
            for r in self.requests
            if (method is None or r.method == method)
            and (path is None or r.url.path == f"{API_PREFIX}{path}")
        ]

    # -- routing ---------------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix(API_PREFIX)

        for index, (method, queued_path, response) in enumerate(self._queued):
            if method == request.method and queued_path == path:
                del self._queued[index]
                if isinstance(response, Exception):
                    raise response
                return response

        body = json.loads(request.content) if request.content else None
        parts = [p for p in path.split("/") if p]

        if parts[:1] == ["subusers"]:
            return self._subusers(request, parts[1:], body)
        if parts[:1] == ["api_keys"]:
            return self._api_keys(request, parts[1:], body)
        return _error(404, "unknown endpoint")

    def _subusers(self, request: httpx.Request, parts: list[str], body: Any) -> httpx.Response:
        method = request.method
        if not parts and method == "POST":
            username = body["username"]
            if username in self.subusers:
                return _error(400, "username exists")
            user_id = next(self._user_ids)
            self.subusers[username] = {
                "id": user_id,
                "username": username,
                "email": body["email"],
                "disabled": False,
                "ips": list(body["ips"]),
            }
            return httpx.Response(
                201,
                json={
                    "username": username,
                    "user_id": user_id,
                    "email": body["email"],
                    "signup_session_token": f"signup-{user_id}",
                    "authorization_token": f"auth-{user_id}",
                    "credit_allocation": {"type": "unlimited"},
                },
            )
        if not parts and method == "GET":
            wanted = request.url.params.get("username")
            listing = [
                {k: v for k, v in record.items() if k != "ips"}
                for name, record in self.subusers.items()
                if wanted is None or name == wanted
            ]
            return httpx.Response(200, json=listing)

        record = self.subusers.get(parts[0])
        if record is None:
            return _error(404, "subuser not found")
        if len(parts) == 1 and method == "PATCH":
            record["disabled"] = bool(body["disabled"])
            return httpx.Response(204)
        if len(parts) == 2 and parts[1] == "ips" and method == "PUT":
            record["ips"] = list(body)
            return httpx.Response(200, json={"ips": record["ips"]})
        if len(parts) == 1 and method == "DELETE":
            del self.subusers[parts[0]]
            return httpx.Response(204)
        return _error(405, "method not allowed")

    def _api_keys(self, request: httpx.Request, parts: list[str], body: Any) -> httpx.Response:
        method = request.method
        if not parts and method == "POST":
            key_id = f"key-{next(self._key_ids)}"
            record = {"api_key_id": key_id, "name": body["name"], "scopes": body.get("scopes", [])}
            self.api_keys[key_id] = record
            return httpx.Response(201, json={**record, "api_key": f"SG.{key_id}.secret"})

        record = self.api_keys.get(parts[0]) if parts else None
        if record is None:
            return _error(404, "unable to find API Key")
        if method == "GET":
            return httpx.Response(200, json=record)
        if method == "PATCH":
            record["name"] = body["name"]
            return httpx.Response(200, json={"api_key_id": record["api_key_id"], "name": body["name"]})
        if method == "PUT":
            if not body.get("name"):
                return _error(400, "name is required")
            record["name"] = body["name"]
            record["scopes"] = body.get("scopes", record["scopes"])
            return httpx.Response(200, json=record)
        if method == "DELETE":
            del self.api_keys[parts[0]]
            return httpx.Response(204)
        return _error(405, "method not allowed")


@pytest.fixture
def fake_sendgrid() -> FakeSendGrid:
    return FakeSendGrid()


@pytest.fixture
async def sendgrid_client(fake_sendgrid: FakeSendGrid) -> AsyncIterator[SendGridClient]:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(fake_sendgrid.handler))
    transport = SendGridTransport(
        TEST_API_KEY, base_url=SENDGRID_API_BASE_URL, http_client=http_client
    )
    try:
        yield SendGridClient(transport)
    finally:
        await http_client.aclose()


class RecordingSleep:
    """Stand-in for ``asyncio.sleep`` that records delays and returns immediately."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def fast_retry() -> RetryConfig:
    return RetryConfig(
        create_timeout_seconds=5.0,
        update_timeout_seconds=5.0,
        delete_timeout_seconds=5.0,
        initial_backoff_seconds=0.5,
        backoff_multiplier=1.0,
        max_backoff_seconds=0.5,
    )
