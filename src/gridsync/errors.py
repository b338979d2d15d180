"""Error model shared by every remote-facing operation.

Every failure raised by the transport, client, orchestrator and lifecycle
layers is a ``GridsyncError``.  Each error knows its ``ErrorKind``, the HTTP
status it maps to, the operation that failed and the identifier it failed
for, so a caller can branch on the kind instead of matching message text.

``RequestResult`` is the status/error pair view of an outcome: a non-empty
error is authoritative over the status code.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

INTERNAL_STATUS_CODE = 500
NOT_FOUND_STATUS_CODE = 404
RATE_LIMITED_STATUS_CODE = 429

# Maximum length of the raw remote body embedded in an error message.
MAX_BODY_IN_MESSAGE = 500


class ErrorKind(StrEnum):
    """Named error kinds; the only condition retried is ``RATE_LIMITED``."""

    PRECONDITION = "precondition"
    TRANSPORT = "transport"
    REMOTE_REJECTION = "remote_rejection"
    RATE_LIMITED = "rate_limited"
    DECODE = "decode"
    NOT_FOUND = "not_found"
    RETRY_TIMEOUT = "retry_timeout"


class Requirement(StrEnum):
    """Precondition failures detected before the network is touched."""

    USERNAME_REQUIRED = "username is required"
    EMAIL_REQUIRED = "email is required"
    PASSWORD_REQUIRED = "password is required"
    IPS_REQUIRED = "at least one IP address is required"
    NAME_REQUIRED = "name is required"
    API_KEY_ID_REQUIRED = "API key ID is required"
    REPLACEMENT_REQUIRED = "field cannot be changed in place"


class GridsyncError(RuntimeError):
    """Base error for every remote-facing operation."""

    kind: ErrorKind = ErrorKind.REMOTE_REJECTION

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        identifier: str | None = None,
        status_code: int = INTERNAL_STATUS_CODE,
    ) -> None:
        self.message = message
        self.operation = operation
        self.identifier = identifier
        self.status_code = status_code
        super().__init__(message)

    @property
    def result(self) -> RequestResult:
        return RequestResult(status_code=self.status_code, error=self)


class PreconditionError(GridsyncError):
    """Raised when a required local field is missing; no request is issued."""

    kind = ErrorKind.PRECONDITION

    def __init__(
        self,
        requirement: Requirement,
        *,
        operation: str | None = None,
        identifier: str | None = None,
        detail: str | None = None,
    ) -> None:
        self.requirement = requirement
        message = str(requirement) if detail is None else f"{requirement}: {detail}"
        super().__init__(
            message,
            operation=operation,
            identifier=identifier,
            status_code=INTERNAL_STATUS_CODE,
        )


class TransportError(GridsyncError):
    """Raised when the request itself could not complete (DNS, connect, timeout)."""

    kind = ErrorKind.TRANSPORT

    def __init__(
        self,
        *,
        operation: str,
        identifier: str | None,
        cause: BaseException,
    ) -> None:
        self.cause = cause
        super().__init__(
            f"{_describe(operation, identifier)}: {type(cause).__name__}: {cause}",
            operation=operation,
            identifier=identifier,
            status_code=INTERNAL_STATUS_CODE,
        )


class RemoteRejection(GridsyncError):
    """Raised when SendGrid answers with a non-success status code."""

    kind = ErrorKind.REMOTE_REJECTION

    def __init__(
        self,
        *,
        operation: str,
        identifier: str | None,
        status_code: int,
        body: str,
    ) -> None:
        self.body = body
        shown = body if len(body) <= MAX_BODY_IN_MESSAGE else body[:MAX_BODY_IN_MESSAGE] + "..."
        super().__init__(
            f"{_describe(operation, identifier)}, status: {status_code}, response: {shown}",
            operation=operation,
            identifier=identifier,
            status_code=status_code,
        )


class RateLimitedError(RemoteRejection):
    """HTTP 429: the caller is issuing requests too fast.  The only retryable kind."""

    kind = ErrorKind.RATE_LIMITED

    def __init__(
        self,
        *,
        operation: str,
        identifier: str | None,
        body: str,
        retry_after: float | None = None,
    ) -> None:
        self.retry_after = retry_after
        super().__init__(
            operation=operation,
            identifier=identifier,
            status_code=RATE_LIMITED_STATUS_CODE,
            body=body,
        )


class DecodeError(GridsyncError):
    """Raised when a successful response does not parse into the expected shape."""

    kind = ErrorKind.DECODE

    def __init__(self, *, operation: str, identifier: str | None, reason: str) -> None:
        super().__init__(
            f"{_describe(operation, identifier)}: could not decode response: {reason}",
            operation=operation,
            identifier=identifier,
            status_code=INTERNAL_STATUS_CODE,
        )


class ResourceNotFoundError(GridsyncError):
    """Raised only where a missing resource cannot be a valid outcome (import)."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, *, operation: str, identifier: str) -> None:
        super().__init__(
            f"{_describe(operation, identifier)}: resource was not found",
            operation=operation,
            identifier=identifier,
            status_code=NOT_FOUND_STATUS_CODE,
        )


class RetryTimeoutError(GridsyncError):
    """Raised when rate limiting outlasts the retry budget."""

    kind = ErrorKind.RETRY_TIMEOUT

    def __init__(
        self,
        *,
        operation: str,
        identifier: str | None,
        attempts: int,
        timeout_seconds: float,
        last_error: GridsyncError,
    ) -> None:
        self.attempts = attempts
        self.timeout_seconds = timeout_seconds
        self.last_error = last_error
        super().__init__(
            f"{_describe(operation, identifier)}: gave up after {attempts} attempt(s) "
            f"within {timeout_seconds:g}s: {last_error.message}",
            operation=operation,
            identifier=identifier,
            status_code=last_error.status_code,
        )


@dataclass(frozen=True)
class RequestResult:
    """Status code paired with an optional error.

    ``ok`` is decided by the error alone: when the two disagree the error wins.
    """

    status_code: int
    error: GridsyncError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error


def _describe(operation: str | None, identifier: str | None) -> str:
    if not operation:
        return "request failed"
    if identifier:
        return f"failed {operation} '{identifier}'"
    return f"failed {operation}"


def _redact_credential_values(message: str) -> str:
    """Redact credential-looking values (passwords, keys, tokens) from *message*."""
    keys = r"password|api_key|authorization_token|signup_session_token|token"
    redacted = re.sub(
        rf"""(?i)(['"]?(?:{keys})['"]?\s*:\s*)(['"]).*?\2""",
        r'\1"[REDACTED]"',
        message,
    )
    redacted = re.sub(
        rf"(?i)\b({keys})\s*=\s*([^\s,;]+)",
        r"\1=[REDACTED]",
        redacted,
    )
    # Bearer credentials and raw SendGrid secrets (SG.<id>.<secret>).
    redacted = re.sub(r"(?i)\bBearer\s+\S+", "Bearer [REDACTED]", redacted)
    redacted = re.sub(r"\bSG\.[A-Za-z0-9_\-]+\.[A-Za-z0-9_\-]+", "[REDACTED]", redacted)
    return redacted


def build_structured_error(exc: GridsyncError) -> dict[str, Any]:
    """Render *exc* as a dict safe to print or log.

    Credential values are redacted and whitespace is normalized.
    """
    sanitized = " ".join(_redact_credential_values(exc.message).split())
    return {
        "status": "error",
        "error": sanitized,
        "error_type": type(exc).__name__,
        "kind": str(exc.kind),
        "status_code": exc.status_code,
        "operation": exc.operation,
        "identifier": exc.identifier,
    }
