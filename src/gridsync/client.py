"""Resource operations for SendGrid subusers and API keys.

Each operation validates its required inputs locally, shapes a compact
request body, issues it through :class:`~gridsync.transport.SendGridTransport`
and decodes the response.

Identity differs per entity type:

- subusers are addressed by the caller-supplied ``username``;
- API keys are addressed by the remote-assigned ``api_key_id``.

Reads return ``None`` when the entity does not exist.  Deletes treat a 404 as
success so that repeating a delete converges instead of failing.
"""

from __future__ import annotations

import json
import logging
from types import TracebackType
from typing import Any, TypeVar
from urllib.parse import quote

from pydantic import BaseModel, ValidationError

from gridsync.errors import (
    NOT_FOUND_STATUS_CODE,
    RATE_LIMITED_STATUS_CODE,
    DecodeError,
    PreconditionError,
    RateLimitedError,
    RemoteRejection,
    Requirement,
    TransportError,
)
from gridsync.models import (
    APIKey,
    APIKeyCreate,
    APIKeyUpdate,
    Subuser,
    SubuserCreate,
    SubuserUpdate,
    compact_body,
)
from gridsync.transport import SendGridTransport, TransportResponse

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

OP_CREATE_SUBUSER = "creating subuser"
OP_READ_SUBUSER = "reading subuser"
OP_UPDATE_SUBUSER = "updating subuser"
OP_DELETE_SUBUSER = "deleting subuser"
OP_CREATE_API_KEY = "creating API key"
OP_READ_API_KEY = "reading API key"
OP_UPDATE_API_KEY = "updating API key"
OP_DELETE_API_KEY = "deleting API key"


def _parse_retry_after(headers: Any) -> float | None:
    for key, value in dict(headers).items():
        if key.lower() != "retry-after":
            continue
        try:
            seconds = float(value)
        except (TypeError, ValueError):
            return None
        return seconds if seconds >= 0 else None
    return None


def _rejection(
    response: TransportResponse,
    *,
    operation: str,
    identifier: str | None,
) -> RemoteRejection:
    if response.status_code == RATE_LIMITED_STATUS_CODE:
        return RateLimitedError(
            operation=operation,
            identifier=identifier,
            body=response.text,
            retry_after=_parse_retry_after(response.headers),
        )
    return RemoteRejection(
        operation=operation,
        identifier=identifier,
        status_code=response.status_code,
        body=response.text,
    )


def _load_json(response: TransportResponse, *, operation: str, identifier: str | None) -> Any:
    try:
        return json.loads(response.body)
    except ValueError as exc:
        raise DecodeError(operation=operation, identifier=identifier, reason=str(exc)) from exc


def _decode_model(
    payload: Any,
    model: type[ModelT],
    *,
    operation: str,
    identifier: str | None,
) -> ModelT:
    if not isinstance(payload, dict):
        raise DecodeError(
            operation=operation,
            identifier=identifier,
            reason=f"expected a JSON object, got {type(payload).__name__}",
        )
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        reason = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
            for err in exc.errors()
        )
        raise DecodeError(operation=operation, identifier=identifier, reason=reason) from exc


class SendGridClient:
    """Create/read/update/delete operations for subusers and API keys."""

    def __init__(self, transport: SendGridTransport) -> None:
        self._transport = transport

    @property
    def transport(self) -> SendGridTransport:
        return self._transport

    async def _send(
        self,
        method: str,
        path: str,
        body: Any = None,
        *,
        operation: str,
        identifier: str | None,
        params: dict[str, Any] | None = None,
    ) -> TransportResponse:
        response = await self._transport.issue_request(method, path, body, params=params)
        if response.error is not None:
            raise TransportError(
                operation=operation,
                identifier=identifier,
                cause=response.error,
            ) from response.error
        return response

    async def _send_checked(
        self,
        method: str,
        path: str,
        body: Any = None,
        *,
        operation: str,
        identifier: str | None,
        params: dict[str, Any] | None = None,
    ) -> TransportResponse:
        response = await self._send(
            method,
            path,
            body,
            operation=operation,
            identifier=identifier,
            params=params,
        )
        if response.status_code >= 300:
            raise _rejection(response, operation=operation, identifier=identifier)
        return response

    async def _send_update(
        self,
        method: str,
        path: str,
        body: Any,
        *,
        operation: str,
        identifier: str,
    ) -> TransportResponse | None:
        """Issue an update write; ``None`` when the target no longer exists."""
        response = await self._send(
            method, path, body, operation=operation, identifier=identifier
        )
        if response.status_code == NOT_FOUND_STATUS_CODE:
            logger.debug("%s: '%s' is gone; nothing to update", operation, identifier)
            return None
        if response.status_code >= 300:
            raise _rejection(response, operation=operation, identifier=identifier)
        return response

    # ------------------------------------------------------------------
    # Subusers
    # ------------------------------------------------------------------

    async def create_subuser(self, payload: SubuserCreate) -> Subuser:
        """Create a subuser and return it with its system-assigned fields."""
        identifier = payload.username or None
        if not payload.username:
            raise PreconditionError(Requirement.USERNAME_REQUIRED, operation=OP_CREATE_SUBUSER)
        if not payload.email:
            raise PreconditionError(
                Requirement.EMAIL_REQUIRED, operation=OP_CREATE_SUBUSER, identifier=identifier
            )
        if not payload.password:
            raise PreconditionError(
                Requirement.PASSWORD_REQUIRED, operation=OP_CREATE_SUBUSER, identifier=identifier
            )
        if not payload.ips:
            raise PreconditionError(
                Requirement.IPS_REQUIRED, operation=OP_CREATE_SUBUSER, identifier=identifier
            )

        body = compact_body(
            {
                "username": payload.username,
                "email": payload.email,
                "password": payload.password,
                "ips": payload.ips,
            }
        )
        response = await self._send_checked(
            "POST",
            "/subusers",
            body,
            operation=OP_CREATE_SUBUSER,
            identifier=identifier,
        )
        created = _decode_model(
            _load_json(response, operation=OP_CREATE_SUBUSER, identifier=identifier),
            Subuser,
            operation=OP_CREATE_SUBUSER,
            identifier=identifier,
        )
        logger.info("Created subuser %s (user_id=%s)", created.username, created.user_id)
        return created

    async def read_subuser(self, username: str) -> Subuser | None:
        """Fetch a subuser by username; ``None`` when no subuser matches."""
        username = username.strip()
        if not username:
            raise PreconditionError(Requirement.USERNAME_REQUIRED, operation=OP_READ_SUBUSER)

        response = await self._send_checked(
            "GET",
            "/subusers",
            operation=OP_READ_SUBUSER,
            identifier=username,
            params={"username": username},
        )
        payload = _load_json(response, operation=OP_READ_SUBUSER, identifier=username)
        if not isinstance(payload, list):
            raise DecodeError(
                operation=OP_READ_SUBUSER,
                identifier=username,
                reason=f"expected a JSON array, got {type(payload).__name__}",
            )

        # The listing filters by prefix; only the exact match is decoded.
        for item in payload:
            if not isinstance(item, dict) or item.get("username") != username:
                continue
            return _decode_model(item, Subuser, operation=OP_READ_SUBUSER, identifier=username)

        logger.debug("read_subuser: no subuser named '%s'", username)
        return None

    async def update_subuser(self, username: str, patch: SubuserUpdate) -> Subuser | None:
        """Write only the supplied fields, then return the re-read subuser.

        Each field goes through its own endpoint so unrelated fields are never
        touched.  An empty patch issues no writes.  Returns ``None`` when the
        subuser no longer exists.
        """
        username = username.strip()
        if not username:
            raise PreconditionError(Requirement.USERNAME_REQUIRED, operation=OP_UPDATE_SUBUSER)

        encoded = quote(username, safe="")
        if patch.disabled is not None:
            written = await self._send_update(
                "PATCH",
                f"/subusers/{encoded}",
                {"disabled": patch.disabled},
                operation=OP_UPDATE_SUBUSER,
                identifier=username,
            )
            if written is None:
                return None
        if patch.ips:
            written = await self._send_update(
                "PUT",
                f"/subusers/{encoded}/ips",
                list(patch.ips),
                operation=OP_UPDATE_SUBUSER,
                identifier=username,
            )
            if written is None:
                return None

        return await self.read_subuser(username)

    async def delete_subuser(self, username: str) -> bool:
        """Delete a subuser.  An already-absent subuser counts as deleted."""
        username = username.strip()
        if not username:
            raise PreconditionError(Requirement.USERNAME_REQUIRED, operation=OP_DELETE_SUBUSER)

        response = await self._send(
            "DELETE",
            f"/subusers/{quote(username, safe='')}",
            operation=OP_DELETE_SUBUSER,
            identifier=username,
        )
        if response.status_code == NOT_FOUND_STATUS_CODE:
            logger.debug("delete_subuser: '%s' already absent; treating as success", username)
            return True
        if response.status_code > 299:
            raise _rejection(response, operation=OP_DELETE_SUBUSER, identifier=username)
        return True

    # ------------------------------------------------------------------
    # API keys
    # ------------------------------------------------------------------

    async def create_api_key(self, payload: APIKeyCreate) -> APIKey:
        """Create an API key.  The returned model carries the secret."""
        if not payload.name:
            raise PreconditionError(Requirement.NAME_REQUIRED, operation=OP_CREATE_API_KEY)

        response = await self._send_checked(
            "POST",
            "/api_keys",
            compact_body({"name": payload.name, "scopes": payload.scopes}),
            operation=OP_CREATE_API_KEY,
            identifier=payload.name,
        )
        created = _decode_model(
            _load_json(response, operation=OP_CREATE_API_KEY, identifier=payload.name),
            APIKey,
            operation=OP_CREATE_API_KEY,
            identifier=payload.name,
        )
        logger.info("Created API key %s (%s)", created.api_key_id, created.name)
        return created

    async def read_api_key(self, api_key_id: str) -> APIKey | None:
        """Fetch an API key by ID; ``None`` when SendGrid reports 404."""
        api_key_id = api_key_id.strip()
        if not api_key_id:
            raise PreconditionError(Requirement.API_KEY_ID_REQUIRED, operation=OP_READ_API_KEY)

        response = await self._send(
            "GET",
            f"/api_keys/{quote(api_key_id, safe='')}",
            operation=OP_READ_API_KEY,
            identifier=api_key_id,
        )
        if response.status_code == NOT_FOUND_STATUS_CODE:
            return None
        if response.status_code >= 300:
            raise _rejection(response, operation=OP_READ_API_KEY, identifier=api_key_id)

        return _decode_model(
            _load_json(response, operation=OP_READ_API_KEY, identifier=api_key_id),
            APIKey,
            operation=OP_READ_API_KEY,
            identifier=api_key_id,
        )

    async def update_api_key(self, api_key_id: str, patch: APIKeyUpdate) -> APIKey | None:
        """Write only the supplied fields and return the re-read key.

        A name-only change uses ``PATCH``.  A scope change uses ``PUT``, which
        SendGrid only accepts with a name, so the current name is read first
        when the patch does not carry one.  Returns ``None`` when the key no
        longer exists.
        """
        api_key_id = api_key_id.strip()
        if not api_key_id:
            raise PreconditionError(
                Requirement.API_KEY_ID_REQUIRED, operation=OP_UPDATE_API_KEY
            )
        if patch.is_empty():
            return await self.read_api_key(api_key_id)

        path = f"/api_keys/{quote(api_key_id, safe='')}"
        if patch.scopes:
            name = patch.name
            if name is None:
                current = await self.read_api_key(api_key_id)
                if current is None:
                    return None
                name = current.name
            method = "PUT"
            body = compact_body({"name": name, "scopes": patch.scopes})
        else:
            method = "PATCH"
            body = {"name": patch.name}

        written = await self._send_update(
            method,
            path,
            body,
            operation=OP_UPDATE_API_KEY,
            identifier=api_key_id,
        )
        if written is None:
            return None
        # PATCH answers with a partial key, so always re-read the full one.
        return await self.read_api_key(api_key_id)

    async def delete_api_key(self, api_key_id: str) -> bool:
        """Delete an API key.  An already-absent key counts as deleted."""
        api_key_id = api_key_id.strip()
        if not api_key_id:
            raise PreconditionError(
                Requirement.API_KEY_ID_REQUIRED, operation=OP_DELETE_API_KEY
            )

        response = await self._send(
            "DELETE",
            f"/api_keys/{quote(api_key_id, safe='')}",
            operation=OP_DELETE_API_KEY,
            identifier=api_key_id,
        )
        if response.status_code == NOT_FOUND_STATUS_CODE:
            logger.debug("delete_api_key: '%s' already absent; treating as success", api_key_id)
            return True
        if response.status_code > 299:
            raise _rejection(response, operation=OP_DELETE_API_KEY, identifier=api_key_id)
        return True

    async def aclose(self) -> None:
        await self._transport.aclose()

    async def __aenter__(self) -> SendGridClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()
