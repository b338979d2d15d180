"""Typed request and response shapes for SendGrid subusers and API keys.

Input models carry already-typed values from the caller; they normalize
whitespace but do not enforce required-ness.  Required fields are checked by
the client so that a missing value surfaces as a ``PreconditionError`` rather
than a pydantic ``ValidationError``.
"""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


def normalize_string_set(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list | tuple | set | frozenset):
        return value
    normalized: list[str] = []
    for item in value:
        if not isinstance(item, str):
            return value
        stripped = item.strip()
        if stripped and stripped not in normalized:
            normalized.append(stripped)
    return sorted(normalized)


# ---------------------------------------------------------------------------
# Subusers
# ---------------------------------------------------------------------------


class CreditAllocation(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str | None = None


class Subuser(BaseModel):
    """A subuser as decoded from SendGrid.

    The create response reports ``user_id`` while the listing reports ``id``;
    both land in ``user_id``.  Tokens and credit allocation are only present on
    the create response.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    username: str
    user_id: int | None = Field(default=None, validation_alias=AliasChoices("user_id", "id"))
    email: str | None = None
    disabled: bool = False
    signup_session_token: str | None = None
    authorization_token: str | None = None
    credit_allocation: CreditAllocation | None = None

    @property
    def credit_allocation_type(self) -> str | None:
        if self.credit_allocation is None:
            return None
        return self.credit_allocation.type


class SubuserCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    username: str = ""
    email: str = ""
    password: str = Field(default="", repr=False)
    ips: list[str] = Field(default_factory=list)

    @field_validator("username", "email")
    @classmethod
    def _strip(cls, value: str) -> str:
        return value.strip()

    @field_validator("ips", mode="before")
    @classmethod
    def _normalize_ips(cls, value: Any) -> Any:
        return normalize_string_set(value) or []


class SubuserUpdate(BaseModel):
    """Fields to change on a subuser.  ``None`` means leave unchanged."""

    model_config = ConfigDict(extra="forbid")

    disabled: bool | None = None
    ips: list[str] | None = None

    @field_validator("ips", mode="before")
    @classmethod
    def _normalize_ips(cls, value: Any) -> Any:
        return normalize_string_set(value)

    def is_empty(self) -> bool:
        return self.disabled is None and not self.ips


# ---------------------------------------------------------------------------
# API keys
# ---------------------------------------------------------------------------


class APIKey(BaseModel):
    """An API key as decoded from SendGrid.

    ``api_key`` (the secret) is only returned by the create call.
    """

    model_config = ConfigDict(extra="ignore")

    api_key_id: str
    name: str | None = None
    scopes: list[str] = Field(default_factory=list)
    api_key: str | None = Field(default=None, repr=False)

    @field_validator("scopes", mode="before")
    @classmethod
    def _normalize_scopes(cls, value: Any) -> Any:
        return normalize_string_set(value) or []


class APIKeyCreate(BaseModel):
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


class APIKeyUpdate(BaseModel):
    """Fields to change on an API key.  ``None`` means leave unchanged."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = None
    scopes: list[str] | None = None

    @field_validator("name")
    @classmethod
    def _strip(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None

    @field_validator("scopes", mode="before")
    @classmethod
    def _normalize_scopes(cls, value: Any) -> Any:
        return normalize_string_set(value)

    def is_empty(self) -> bool:
        return self.name is None and not self.scopes


def compact_body(values: dict[str, Any]) -> dict[str, Any]:
    """Drop ``None``, empty strings and empty collections from a write body.

    Absent fields mean "no change" on the wire.  Booleans are kept, so an
    explicit ``False`` is still sent.
    """
    body: dict[str, Any] = {}
    for key, value in values.items():
        if value is None:
            continue
        if isinstance(value, str) and not value:
            continue
        if isinstance(value, list | tuple | set | frozenset | dict) and not value:
            continue
        body[key] = value
    return body
