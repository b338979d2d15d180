"""Lifecycle controllers that reconcile SendGrid resources with declared state."""

from gridsync.lifecycle.api_key import APIKeyLifecycle, APIKeySpec, APIKeyState
from gridsync.lifecycle.base import ResourceLifecycle
from gridsync.lifecycle.subuser import SubuserLifecycle, SubuserSpec, SubuserState

__all__ = [
    "APIKeyLifecycle",
    "APIKeySpec",
    "APIKeyState",
    "ResourceLifecycle",
    "SubuserLifecycle",
    "SubuserSpec",
    "SubuserState",
]
