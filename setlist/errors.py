"""Error taxonomy shared by the engine, the stores and the RPC layer."""

from __future__ import annotations


class SetlistError(Exception):
    """Base class for orchestrator errors."""


class NotFoundError(SetlistError):
    """Unknown strategy, run, context or current step."""


class ValidationError(SetlistError):
    """Malformed metadata or output payload."""


class DispatchError(SetlistError):
    """Remote call construction or invocation failure."""


class PersistenceError(SetlistError):
    """Store read or write failure."""


class ConflictError(SetlistError):
    """Lost a concurrent update race on a playlist."""


__all__ = [
    "SetlistError",
    "NotFoundError",
    "ValidationError",
    "DispatchError",
    "PersistenceError",
    "ConflictError",
]
