"""Subuser lifecycle.

A subuser is identified by its caller-supplied ``username``.  The listing
endpoint used by reads only reports ``id``, ``username``, ``email`` and
``disabled``; the password, IP set and tokens are carried over from the prior
state.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from gridsync.client import (
    OP_CREATE_SUBUSER,
    OP_DELETE_SUBUSER,
    OP_UPDATE_SUBUSER,
    SendGridClient,
)
from gridsync.core.telemetry import lifecycle_span
from gridsync.errors import PreconditionError, Requirement
from gridsync.lifecycle.base import ResourceLifecycle
from gridsync.models import Subuser, SubuserCreate, SubuserUpdate, normalize_string_set
from gridsync.retry import AttemptOutcome, outcome_of

logger = logging.getLogger(__name__)

RESOURCE_TYPE = "subuser"


class SubuserSpec(BaseModel):
    """Declared desired state of a subuser."""

    model_config = ConfigDict(extra="forbid")

    username: str = ""
    email: str = ""
    password: str = Field(default="", repr=False)
    ips: list[str] = Field(default_factory=list)
    disabled: bool = False

    @field_validator("username", "email")
    @classmethod
    def _strip(cls, value: str) -> str:
        return value.strip()

    @field_validator("ips", mode="before")
    @classmethod
    def _normalize_ips(cls, value: Any) -> Any:
        return normalize_string_set(value) or []


class SubuserState(SubuserSpec):
    """Tracked state of a subuser: declared fields plus system-assigned ones."""

    id: str
    user_id: int | None = None
    signup_session_token: str | None = Field(default=None, repr=False)
    authorization_token: str | None = Field(default=None, repr=False)
    credit_allocation_type: str | None = None

    @classmethod
    def from_spec(cls, spec: SubuserSpec) -> SubuserState:
        return cls(id=spec.username, **spec.model_dump())


def _merge(subuser: Subuser, prior: SubuserState | None) -> SubuserState:
    """Populate tracked fields from the latest decoded entity.

    Values the remote returned always win over *prior*; fields the remote did
    not return are carried over.
    """
    return SubuserState(
        id=subuser.username,
        username=subuser.username,
        email=subuser.email if subuser.email is not None else (prior.email if prior else ""),
        password=prior.password if prior else "",
        ips=list(prior.ips) if prior else [],
        disabled=subuser.disabled,
        user_id=subuser.user_id if subuser.user_id is not None else (
            prior.user_id if prior else None
        ),
        signup_session_token=subuser.signup_session_token
        or (prior.signup_session_token if prior else None),
        authorization_token=subuser.authorization_token
        or (prior.authorization_token if prior else None),
        credit_allocation_type=subuser.credit_allocation_type
        or (prior.credit_allocation_type if prior else None),
    )


# ---------------------------------------------------------------------------
# Retry attempts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _CreateContext:
    client: SendGridClient
    payload: SubuserCreate


@dataclass(frozen=True)
class _UpdateContext:
    client: SendGridClient
    username: str
    patch: SubuserUpdate


@dataclass(frozen=True)
class _DeleteContext:
    client: SendGridClient
    username: str


async def _attempt_create(ctx: _CreateContext) -> AttemptOutcome[Subuser]:
    return await outcome_of(ctx.client.create_subuser(ctx.payload))


async def _attempt_update(ctx: _UpdateContext) -> AttemptOutcome[Subuser | None]:
    return await outcome_of(ctx.client.update_subuser(ctx.username, ctx.patch))


async def _attempt_delete(ctx: _DeleteContext) -> AttemptOutcome[bool]:
    return await outcome_of(ctx.client.delete_subuser(ctx.username))


class SubuserLifecycle(ResourceLifecycle[SubuserSpec, SubuserState]):
    """Reconciles one subuser at a time against its declared spec."""

    @property
    def resource_type(self) -> str:
        return RESOURCE_TYPE

    async def create(self, spec: SubuserSpec) -> SubuserState:
        payload = SubuserCreate(
            username=spec.username,
            email=spec.email,
            password=spec.password,
            ips=spec.ips,
        )
        identifier = payload.username or None
        with lifecycle_span(RESOURCE_TYPE, "create", identifier=identifier):
            created = await self._retry_write(
                _attempt_create,
                _CreateContext(self._client, payload),
                timeout_seconds=self._retry.create_timeout_seconds,
                operation=OP_CREATE_SUBUSER,
                identifier=identifier,
            )
            state = _merge(created, SubuserState.from_spec(spec))

            # "disabled" cannot be set at creation time.
            if spec.disabled:
                refreshed = await self._write_update(
                    state.id, SubuserUpdate(disabled=True), basis=state
                )
            else:
                refreshed = await self.read(state.id, prior=state)

        if refreshed is None:
            logger.warning(
                "Subuser '%s' not visible right after creation; keeping create response",
                state.id,
            )
            return state.model_copy(update={"disabled": spec.disabled})
        return refreshed

    async def read(
        self, identifier: str, prior: SubuserState | None = None
    ) -> SubuserState | None:
        with lifecycle_span(RESOURCE_TYPE, "read", identifier=identifier or None):
            subuser = await self._client.read_subuser(identifier)
            if subuser is None:
                logger.info("Subuser '%s' is gone", identifier)
                return None
            return _merge(subuser, prior)

    async def update(self, prior: SubuserState, desired: SubuserSpec) -> SubuserState | None:
        for field_name in ("username", "email"):
            if getattr(desired, field_name) != getattr(prior, field_name):
                raise PreconditionError(
                    Requirement.REPLACEMENT_REQUIRED,
                    operation=OP_UPDATE_SUBUSER,
                    identifier=prior.id,
                    detail=field_name,
                )
        # An imported subuser has no known password; adopting one is not a change.
        if prior.password and desired.password != prior.password:
            raise PreconditionError(
                Requirement.REPLACEMENT_REQUIRED,
                operation=OP_UPDATE_SUBUSER,
                identifier=prior.id,
                detail="password",
            )

        patch = SubuserUpdate(
            disabled=desired.disabled if desired.disabled != prior.disabled else None,
            ips=desired.ips if set(desired.ips) != set(prior.ips) else None,
        )
        basis = prior.model_copy(
            update={
                "password": desired.password or prior.password,
                "ips": list(desired.ips) if patch.ips else list(prior.ips),
            }
        )

        with lifecycle_span(RESOURCE_TYPE, "update", identifier=prior.id):
            if patch.is_empty():
                logger.debug("Subuser '%s' has no changes to apply", prior.id)
                return await self.read(prior.id, prior=basis)
            return await self._write_update(prior.id, patch, basis=basis)

    async def delete(self, identifier: str) -> bool:
        with lifecycle_span(RESOURCE_TYPE, "delete", identifier=identifier or None):
            deleted = await self._retry_write(
                _attempt_delete,
                _DeleteContext(self._client, identifier),
                timeout_seconds=self._retry.delete_timeout_seconds,
                operation=OP_DELETE_SUBUSER,
                identifier=identifier or None,
            )
        logger.info("Deleted subuser '%s'", identifier)
        return deleted

    async def _write_update(
        self, username: str, patch: SubuserUpdate, *, basis: SubuserState
    ) -> SubuserState | None:
        updated = await self._retry_write(
            _attempt_update,
            _UpdateContext(self._client, username, patch),
            timeout_seconds=self._retry.update_timeout_seconds,
            operation=OP_UPDATE_SUBUSER,
            identifier=username,
        )
        if updated is None:
            logger.info("Subuser '%s' is gone after update", username)
            return None
        return _merge(updated, basis)
