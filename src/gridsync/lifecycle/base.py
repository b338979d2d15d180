"""Shared lifecycle contract used by every reconciled resource type."""

from __future__ import annotations

import abc
import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Generic, TypeVar

from gridsync.client import SendGridClient
from gridsync.config import RetryConfig
from gridsync.errors import ResourceNotFoundError
from gridsync.retry import AttemptOutcome, run_with_retry

logger = logging.getLogger(__name__)

SpecT = TypeVar("SpecT")
StateT = TypeVar("StateT")
C = TypeVar("C")
T = TypeVar("T")


class ResourceLifecycle(abc.ABC, Generic[SpecT, StateT]):
    """Create/read/update/delete/import contract exposed to the host.

    ``read`` returns ``None`` when the resource is gone so the host can drop
    it from its state instead of failing.  ``delete`` succeeds on a resource
    that is already absent.  Writes run under the retry orchestrator.
    """

    def __init__(
        self,
        client: SendGridClient,
        retry: RetryConfig | None = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._retry = retry or RetryConfig()
        self._sleep = sleep

    @property
    @abc.abstractmethod
    def resource_type(self) -> str:
        """Short resource name used in spans and log context (e.g. ``subuser``)."""
        ...

    @abc.abstractmethod
    async def create(self, spec: SpecT) -> StateT:
        """Create the resource and return its fully populated state."""
        ...

    @abc.abstractmethod
    async def read(self, identifier: str, prior: StateT | None = None) -> StateT | None:
        """Refresh state from the remote; ``None`` when the resource is gone."""
        ...

    @abc.abstractmethod
    async def update(self, prior: StateT, desired: SpecT) -> StateT | None:
        """Apply the difference between *prior* and *desired*, then refresh."""
        ...

    @abc.abstractmethod
    async def delete(self, identifier: str) -> bool:
        """Delete the resource; ``True`` also when it was already gone."""
        ...

    async def import_state(self, identifier: str) -> StateT:
        """Adopt an existing resource given only its identifier.

        Raises
        ------
        ResourceNotFoundError
            When nothing exists under *identifier*.
        """
        state = await self.read(identifier)
        if state is None:
            raise ResourceNotFoundError(
                operation=f"importing {self.resource_type}",
                identifier=identifier,
            )
        logger.info("Imported %s '%s'", self.resource_type, identifier)
        return state

    async def _retry_write(
        self,
        attempt: Callable[[C], Awaitable[AttemptOutcome[T]]],
        context: C,
        *,
        timeout_seconds: float,
        operation: str,
        identifier: str | None,
    ) -> T:
        return await run_with_retry(
            attempt,
            context,
            timeout_seconds=timeout_seconds,
            operation=operation,
            identifier=identifier,
            backoff=self._retry.backoff,
            sleep=self._sleep,
        )
