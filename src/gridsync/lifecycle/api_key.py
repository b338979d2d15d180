"""API key lifecycle.

An API key is identified by the ``api_key_id`` SendGrid assigns on creation.
The secret itself is only returned once, by the create call, and is carried
over from the prior state on every later read.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from gridsync.client import (
    OP_CREATE_API_KEY,
    OP_DELETE_API_KEY,
    OP_UPDATE_API_KEY,
    SendGridClient,
)
from gridsync.core.telemetry import lifecycle_span
from gridsync.errors import PreconditionError, Requirement
from gridsync.lifecycle.base import ResourceLifecycle
from gridsync.models import APIKey, APIKeyCreate, APIKeyUpdate, normalize_string_set
from gridsync.retry import AttemptOutcome, outcome_of

logger = logging.getLogger(__name__)

RESOURCE_TYPE = "api_key"


class APIKeySpec(BaseModel):
    """Declared desired state of an API key."""

    model_config = ConfigDict(extra="forbid")

    name: str = ""
    scopes: list[str] = Field(default_factory=list)

    @field_validator("name")
    @classmethod
    def _strip(cls, value: str) -> str:
        return value.strip()

    @field_validator("scopes", mode="before")
    @classmethod
    def _normalize_scopes(cls, value: Any) -> Any:
        return normalize_string_set(value) or []


class APIKeyState(APIKeySpec):
    id: str
    api_key: str | None = Field(default=None, repr=False)


def _merge(key: APIKey, prior: APIKeyState | None) -> APIKeyState:
    return APIKeyState(
        id=key.api_key_id,
        name=key.name if key.name is not None else (prior.name if prior else ""),
        scopes=list(key.scopes),
        api_key=key.api_key or (prior.api_key if prior else None),
    )


@dataclass(frozen=True)
class _CreateContext:
    client: SendGridClient
    payload: APIKeyCreate


@dataclass(frozen=True)
class _UpdateContext:
    client: SendGridClient
    api_key_id: str
    patch: APIKeyUpdate


@dataclass(frozen=True)
class _DeleteContext:
    client: SendGridClient
    api_key_id: str


async def _attempt_create(ctx: _CreateContext) -> AttemptOutcome[APIKey]:
    return await outcome_of(ctx.client.create_api_key(ctx.payload))


async def _attempt_update(ctx: _UpdateContext) -> AttemptOutcome[APIKey | None]:
    return await outcome_of(ctx.client.update_api_key(ctx.api_key_id, ctx.patch))


async def _attempt_delete(ctx: _DeleteContext) -> AttemptOutcome[bool]:
    return await outcome_of(ctx.client.delete_api_key(ctx.api_key_id))


class APIKeyLifecycle(ResourceLifecycle[APIKeySpec, APIKeyState]):
    """Reconciles one API key at a time against its declared spec."""

    @property
    def resource_type(self) -> str:
        return RESOURCE_TYPE

    async def create(self, spec: APIKeySpec) -> APIKeyState:
        payload = APIKeyCreate(name=spec.name, scopes=spec.scopes)
        with lifecycle_span(RESOURCE_TYPE, "create", identifier=payload.name or None):
            created = await self._retry_write(
                _attempt_create,
                _CreateContext(self._client, payload),
                timeout_seconds=self._retry.create_timeout_seconds,
                operation=OP_CREATE_API_KEY,
                identifier=payload.name or None,
            )
            state = _merge(created, None)
            refreshed = await self.read(state.id, prior=state)

        if refreshed is None:
            logger.warning(
                "API key '%s' not visible right after creation; keeping create response",
                state.id,
            )
            return state
        return refreshed

    async def read(self, identifier: str, prior: APIKeyState | None = None) -> APIKeyState | None:
        with lifecycle_span(RESOURCE_TYPE, "read", identifier=identifier or None):
            key = await self._client.read_api_key(identifier)
            if key is None:
                logger.info("API key '%s' is gone", identifier)
                return None
            return _merge(key, prior)

    async def update(self, prior: APIKeyState, desired: APIKeySpec) -> APIKeyState | None:
        name_changed = desired.name != prior.name
        if name_changed and not desired.name:
            raise PreconditionError(
                Requirement.NAME_REQUIRED, operation=OP_UPDATE_API_KEY, identifier=prior.id
            )
        patch = APIKeyUpdate(
            name=desired.name if name_changed else None,
            scopes=desired.scopes if set(desired.scopes) != set(prior.scopes) else None,
        )

        with lifecycle_span(RESOURCE_TYPE, "update", identifier=prior.id):
            if patch.is_empty():
                logger.debug("API key '%s' has no changes to apply", prior.id)
                return await self.read(prior.id, prior=prior)

            updated = await self._retry_write(
                _attempt_update,
                _UpdateContext(self._client, prior.id, patch),
                timeout_seconds=self._retry.update_timeout_seconds,
                operation=OP_UPDATE_API_KEY,
                identifier=prior.id,
            )
            if updated is None:
                logger.info("API key '%s' is gone after update", prior.id)
                return None
            return _merge(updated, prior)

    async def delete(self, identifier: str) -> bool:
        with lifecycle_span(RESOURCE_TYPE, "delete", identifier=identifier or None):
            deleted = await self._retry_write(
                _attempt_delete,
                _DeleteContext(self._client, identifier),
                timeout_seconds=self._retry.delete_timeout_seconds,
                operation=OP_DELETE_API_KEY,
                identifier=identifier or None,
            )
        logger.info("Deleted API key '%s'", identifier)
        return deleted
