"""Typed failures raised by the ingest core."""

from __future__ import annotations

from typing import Any


class IngestError(Exception):
    """Base class for every error the ingest core raises."""


class ValidationError(IngestError, ValueError):
    """Malformed input, rejected before any state mutation.

    ``errors`` holds one ``{"field": ..., "message": ...}`` entry per problem.
    """

    def __init__(self, errors: list[dict[str, Any]] | str, field: str | None = None):
        if isinstance(errors, str):
            errors = [{"field": field, "message": errors}]
        self.errors = errors
        super().__init__("; ".join(_describe(e) for e in errors))


class NotFound(IngestError):
    """Referenced entity does not exist."""

    def __init__(self, entity: str, key: Any):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} {key} not found")


class InvalidTransition(IngestError):
    """Requested status change is not reachable from the current status."""

    def __init__(self, entity: str, key: Any, current: str, target: str):
        self.entity = entity
        self.key = key
        self.current = current
        self.target = target
        super().__init__(f"{entity} {key}: cannot move from {current} to {target}")


class ConflictingState(IngestError):
    """Structural operation attempted against a record in an incompatible state."""


class StorageError(IngestError):
    """Persistence failure. Callers only ever see the generic message."""

    def __init__(self, message: str = "Storage failure"):
        super().__init__(message)


def _describe(error: dict[str, Any]) -> str:
    field = error.get("field")
    return f"{field}: {error['message']}" if field else str(error["message"])
